"""Progress records emitted once per search iteration, and the sinks that consume them."""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Protocol, Sequence, Union, runtime_checkable

import pandas as pd

from .annealing import Decision
from .space import Configuration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressRecord:
    """Structured description of what happened in one iteration."""

    iteration: int
    configuration: Configuration | None
    decision: Decision
    mean: float | None = None
    std_error: float | None = None
    best_mean: float | None = None
    mode: str = "initial"
    acquisition: float | None = None
    reason: str | None = None

    def as_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "iteration": self.iteration,
            "mode": self.mode,
            "decision": self.decision.value,
            "mean": self.mean,
            "std_error": self.std_error,
            "best_mean": self.best_mean,
            "acquisition": self.acquisition,
            "reason": self.reason,
        }
        if self.configuration is not None:
            for name, value in self.configuration.values:
                row[f"param_{name}"] = value
        return row


@runtime_checkable
class SupportsEmit(Protocol):
    def emit(self, record: ProgressRecord) -> None: ...


ProgressSink = Union[SupportsEmit, Callable[[ProgressRecord], None]]


def emit_all(sinks: Iterable[ProgressSink], record: ProgressRecord) -> None:
    """Deliver ``record`` to every sink; sink errors are logged and ignored."""

    for sink in sinks:
        try:
            if isinstance(sink, SupportsEmit):
                sink.emit(record)
            else:
                sink(record)
        except Exception as exc:  # noqa: BLE001 - progress output is best effort
            logger.warning("Progress sink %r failed: %s", sink, exc)


@dataclass
class ListSink:
    """Keep every record in memory."""

    records: List[ProgressRecord] = field(default_factory=list)

    def emit(self, record: ProgressRecord) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


_SYMBOLS = {
    Decision.INITIAL: "i",
    Decision.NEW_BEST: "♥",
    Decision.BETTER_SUBOPTIMAL: "+",
    Decision.ACCEPT_SUBOPTIMAL: "─",
    Decision.DISCARD_SUBOPTIMAL: "✗",
    Decision.NO_IMPROVEMENT: "ⓧ",
    Decision.RESTART: "↻",
    Decision.FAILED: "!",
}


class LoggingSink:
    """Write one human readable line per iteration to a logger."""

    def __init__(self, log: logging.Logger | None = None, *, level: int = logging.INFO) -> None:
        self.log = log or logging.getLogger("tidytune.progress")
        self.level = level

    def emit(self, record: ProgressRecord) -> None:
        symbol = _SYMBOLS.get(record.decision, "?")
        if record.decision is Decision.FAILED:
            self.log.log(
                self.level,
                "%3d %s %-18s %s (%s)",
                record.iteration,
                symbol,
                record.decision.value,
                record.configuration if record.configuration is not None else "-",
                record.reason or "error",
            )
            return
        if record.mean is None:
            self.log.log(
                self.level,
                "%3d %s %-18s",
                record.iteration,
                symbol,
                record.decision.value,
            )
            return
        self.log.log(
            self.level,
            "%3d %s %-18s mean=%.4f (+/-%.4f) best=%.4f [%s] %s",
            record.iteration,
            symbol,
            record.decision.value,
            record.mean,
            record.std_error or 0.0,
            record.best_mean if record.best_mean is not None else float("nan"),
            record.mode,
            record.configuration if record.configuration is not None else "-",
        )


class CsvProgressLogger:
    """Append progress records to a CSV log file."""

    FIELDS = ("iteration", "mode", "decision", "mean", "std_error", "best_mean", "acquisition", "reason")

    def __init__(self, path: Path, param_names: Sequence[str]) -> None:
        self.path = Path(path)
        self.param_names = list(param_names)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        write_header = not self.path.exists() or self.path.stat().st_size == 0
        self._fh = self.path.open("a", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(
            self._fh,
            fieldnames=[*self.FIELDS, *[f"param_{name}" for name in self.param_names]],
            extrasaction="ignore",
        )
        if write_header:
            self._writer.writeheader()

    def emit(self, record: ProgressRecord) -> None:
        self._writer.writerow(record.as_row())
        self._fh.flush()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()

    def __enter__(self) -> "CsvProgressLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_log_dataframe(path: Path) -> pd.DataFrame:
    """Read a progress CSV log into a pandas ``DataFrame``."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Log file not found: {path}")
    try:
        return pd.read_csv(path)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()


__all__ = [
    "CsvProgressLogger",
    "ListSink",
    "LoggingSink",
    "ProgressRecord",
    "ProgressSink",
    "SupportsEmit",
    "emit_all",
    "read_log_dataframe",
]
