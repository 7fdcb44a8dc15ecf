"""Run tracking: create runs, update their status and read them back."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping

from .config import SearchRunConfig
from .results import SearchResult
from .run_management import RunArtifacts, prepare_run_environment


@dataclass(frozen=True)
class RunHandle:
    config: SearchRunConfig
    artifacts: RunArtifacts

    @property
    def run_id(self) -> str:
        return self.artifacts.run_id

    @property
    def run_dir(self) -> Path:
        return self.artifacts.run_dir


@dataclass(frozen=True)
class RunMetadata:
    """Parsed ``meta.json`` of one run."""

    run_id: str
    run_dir: Path
    meta_path: Path
    created_at: datetime | None
    status: str | None
    status_payload: Mapping[str, Any]
    metadata: Mapping[str, Any]
    search: Mapping[str, Any]
    seed: int | None
    artifacts: Mapping[str, Any]
    source: Mapping[str, Any]
    raw: Mapping[str, Any]

    def artifact_path(self, name: str) -> Path | None:
        value = self.artifacts.get(name)
        return Path(value) if isinstance(value, str) else None

    @property
    def best_value(self) -> float | None:
        value = self.status_payload.get("best_value")
        return float(value) if isinstance(value, (int, float)) else None


def create_run(
    config: SearchRunConfig,
    *,
    config_source: Path | None = None,
    runs_root: Path | None = None,
) -> RunHandle:
    resolved, artifacts = prepare_run_environment(
        config,
        config_source=config_source,
        runs_root=runs_root,
    )
    return RunHandle(config=resolved, artifacts=artifacts)


def result_status_payload(result: SearchResult) -> Dict[str, Any]:
    """Status fields recorded in ``meta.json`` once a search returns."""

    payload: Dict[str, Any] = {
        "search_state": result.status.value,
        "stop_reason": result.stop_reason,
        "iterations_completed": result.iterations_completed,
        "observations": result.n_observations,
        "failures": result.failures,
        "restarts": result.restarts,
        "best_value": result.best_mean,
    }
    if result.best is not None:
        payload["best_params"] = result.best.configuration.as_dict()
        payload["best_std_error"] = result.best.std_error
    return payload


def update_run_status(
    run_id: str | Path,
    status: str,
    *,
    runs_root: Path | None = None,
    **payload: Any,
) -> RunMetadata:
    """Replace the ``status`` stanza of a run's ``meta.json``."""

    metadata = load_run(run_id, runs_root=runs_root)
    data = dict(metadata.raw)
    data["status"] = {
        **payload,
        "state": status,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    metadata.meta_path.write_text(
        json.dumps(data, indent=2, ensure_ascii=False, default=str),
        encoding="utf-8",
    )
    return _read_metadata(metadata.meta_path)


def list_runs(
    filters: Mapping[str, Any] | None = None,
    *,
    runs_root: Path | None = None,
) -> list[RunMetadata]:
    """Runs under ``runs_root`` whose metadata matches every filter (dotted keys allowed)."""

    base_dir = Path(runs_root) if runs_root is not None else Path("runs")
    if not base_dir.exists():
        return []
    runs = [_read_metadata(path) for path in sorted(base_dir.glob("*/meta.json"))]
    return [run for run in runs if _matches(run, filters)]


def load_run(run_id: str | Path, *, runs_root: Path | None = None) -> RunMetadata:
    candidate = Path(run_id)
    if (candidate / "meta.json").exists():
        return _read_metadata(candidate / "meta.json")
    base_dir = Path(runs_root) if runs_root is not None else Path("runs")
    meta_path = base_dir / str(run_id) / "meta.json"
    if meta_path.exists():
        return _read_metadata(meta_path)
    raise FileNotFoundError(f"No run metadata found for '{run_id}'")


def _matches(run: RunMetadata, filters: Mapping[str, Any] | None) -> bool:
    for key, expected in (filters or {}).items():
        if key == "run_id":
            actual: Any = run.run_id
        elif key == "status":
            actual = run.status
        else:
            actual = _lookup(run.raw, key)
        if actual != expected:
            return False
    return True


def _lookup(payload: Mapping[str, Any], dotted_key: str) -> Any:
    current: Any = payload
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _read_metadata(meta_path: Path) -> RunMetadata:
    raw = json.loads(meta_path.read_text(encoding="utf-8"))
    status_payload = _mapping(raw.get("status"))
    run_id = raw.get("run_id")
    run_dir = raw.get("run_dir")
    seed = raw.get("seed")
    return RunMetadata(
        run_id=run_id if isinstance(run_id, str) and run_id else meta_path.parent.name,
        run_dir=Path(run_dir) if isinstance(run_dir, str) else meta_path.parent,
        meta_path=meta_path,
        created_at=_parse_datetime(raw.get("created_at")),
        status=status_payload.get("state"),
        status_payload=status_payload,
        metadata=_mapping(raw.get("metadata")),
        search=_mapping(raw.get("search")),
        seed=seed if isinstance(seed, int) else None,
        artifacts=_mapping(raw.get("artifacts")),
        source=_mapping(raw.get("source")),
        raw=raw,
    )


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


__all__ = [
    "RunHandle",
    "RunMetadata",
    "create_run",
    "list_runs",
    "load_run",
    "result_status_payload",
    "update_run_status",
]
