"""Run directories and the ``meta.json`` written when a search run is created."""
from __future__ import annotations

import json
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import yaml

from .config import SearchRunConfig


@dataclass(frozen=True)
class RunArtifacts:
    """Files belonging to one run directory."""

    run_id: str
    run_dir: Path
    config_original: Path
    config_resolved: Path
    log_path: Path
    report_path: Path
    meta_path: Path


def prepare_run_environment(
    config_model: SearchRunConfig,
    *,
    config_source: Path | None = None,
    runs_root: Path | None = None,
) -> tuple[SearchRunConfig, RunArtifacts]:
    """Allocate a run directory and point the log and report into it.

    An explicit ``artifacts.run_root`` is used as is; otherwise a fresh
    directory named after ``metadata.name`` is created under ``runs_root``.
    """

    data: Dict[str, Any] = config_model.model_dump(mode="python")
    artifacts_cfg = dict(data.get("artifacts") or {})

    explicit_root = artifacts_cfg.get("run_root")
    if explicit_root:
        run_dir = Path(explicit_root)
    else:
        run_dir = _allocate_run_directory(
            runs_root or Path("runs"),
            _slugify(config_model.metadata.name),
        )
    artifacts_cfg["run_root"] = str(run_dir)
    artifacts_cfg["log_file"] = str(run_dir / "log.csv")
    data["artifacts"] = artifacts_cfg

    report_cfg = dict(data.get("report") or {})
    report_cfg["output_dir"] = str(run_dir)
    report_cfg["filename"] = report_cfg.get("filename") or "report.md"
    data["report"] = report_cfg

    resolved = SearchRunConfig.model_validate(data)
    artifacts = _write_run_metadata(resolved, config_source=config_source, run_dir=run_dir)
    return resolved, artifacts


def _slugify(value: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return cleaned or "run"


def _allocate_run_directory(base_dir: Path, base_name: str) -> Path:
    base_dir.mkdir(parents=True, exist_ok=True)
    run_dir = base_dir / base_name
    counter = 2
    while run_dir.exists():
        run_dir = base_dir / f"{base_name}-{counter:02d}"
        counter += 1
    return run_dir


def _current_git_commit() -> str | None:
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return completed.stdout.strip() or None


def _write_run_metadata(
    model: SearchRunConfig,
    *,
    config_source: Path | None,
    run_dir: Path,
) -> RunArtifacts:
    run_dir.mkdir(parents=True, exist_ok=True)
    assert model.artifacts is not None
    log_path = Path(model.artifacts.log_file)
    report_path = Path(model.report.output_dir) / (model.report.filename or "report.md")

    original_path = run_dir / "config_original.yaml"
    if config_source and config_source.exists():
        shutil.copyfile(config_source, original_path)
    else:
        with original_path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(model.model_dump(mode="json"), fh, allow_unicode=True, sort_keys=False)

    resolved_path = run_dir / "config_resolved.json"
    resolved_path.write_text(
        json.dumps(model.model_dump(mode="json"), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )

    now = datetime.now(timezone.utc).isoformat()
    meta: Dict[str, Any] = {
        "run_id": run_dir.name,
        "run_dir": str(run_dir),
        "created_at": now,
        "status": {"state": "created", "updated_at": now},
        "metadata": model.metadata.model_dump(mode="json"),
        "seed": model.seed,
        "search": {
            "strategy": model.search.strategy,
            "direction": model.search.direction,
            "metric": model.search.metric,
            "n_iter": model.search.n_iter,
        },
        "artifacts": {
            "config_original": str(original_path),
            "config_resolved": str(resolved_path),
            "log": str(log_path),
            "report": str(report_path),
        },
        "source": {
            "config_path": str(config_source) if config_source else None,
            "git_commit": _current_git_commit(),
        },
    }
    meta_path = run_dir / "meta.json"
    meta_path.write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")

    return RunArtifacts(
        run_id=run_dir.name,
        run_dir=run_dir,
        config_original=original_path,
        config_resolved=resolved_path,
        log_path=log_path,
        report_path=report_path,
        meta_path=meta_path,
    )


__all__ = ["RunArtifacts", "prepare_run_environment"]
