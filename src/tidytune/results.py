"""Observations, search results and helpers for choosing a final configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

import pandas as pd

from .acquisition import Direction
from .progress import ProgressRecord
from .space import Configuration, ParameterSpace

OBSERVATION_SOURCES = ("initial", "prior", "bayes", "uncertainty", "fallback", "annealing")


class SearchStatus(str, Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    STOPPED_BUDGET = "stopped_budget"
    STOPPED_NO_IMPROVEMENT = "stopped_no_improvement"
    STOPPED_INTERRUPTED = "stopped_interrupted"

    @property
    def stopped(self) -> bool:
        return self.value.startswith("stopped")


@dataclass(frozen=True)
class Observation:
    """One successful evaluation. Never modified once recorded."""

    configuration: Configuration
    mean: float
    std_error: float
    iteration: int
    source: str = "initial"

    def as_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = dict(self.configuration.values)
        row.update(
            {
                "mean": self.mean,
                "std_error": self.std_error,
                "iteration": self.iteration,
                "source": self.source,
            }
        )
        return row


@dataclass(frozen=True)
class SearchResult:
    """Everything a search produced, returned on completion and on interruption."""

    space: ParameterSpace
    direction: Direction
    history: Tuple[Observation, ...]
    best: Observation | None
    status: SearchStatus
    stop_reason: str | None = None
    iterations_completed: int = 0
    restarts: int = 0
    failures: int = 0
    records: Tuple[ProgressRecord, ...] = field(default_factory=tuple)
    strategy: str = "bayes"
    seed: int | None = None

    @property
    def best_configuration(self) -> Configuration | None:
        return self.best.configuration if self.best is not None else None

    @property
    def best_mean(self) -> float | None:
        return self.best.mean if self.best is not None else None

    @property
    def n_observations(self) -> int:
        return len(self.history)

    @property
    def failed_out(self) -> bool:
        """True when the search stopped because evaluations kept failing."""

        return self.stop_reason == "consecutive_failures"

    def to_frame(self) -> pd.DataFrame:
        return collect_metrics(self)

    def show_best(self, n: int = 5) -> pd.DataFrame:
        return show_best(self, n=n)


def collect_metrics(result: SearchResult) -> pd.DataFrame:
    """One row per observation: parameter columns then ``mean``, ``std_error``, ``iteration``, ``source``."""

    columns = [*result.space.names, "mean", "std_error", "iteration", "source"]
    rows = [observation.as_row() for observation in result.history]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame.from_records(rows, columns=columns)


def _ranked(result: SearchResult) -> pd.DataFrame:
    frame = collect_metrics(result)
    if frame.empty:
        return frame
    ascending = Direction(result.direction) is Direction.MINIMIZE
    # stable sort keeps earlier observations first among equal means
    return frame.sort_values("mean", ascending=ascending, kind="mergesort")


def show_best(result: SearchResult, n: int = 5) -> pd.DataFrame:
    """The ``n`` best observations, best first."""

    if n < 1:
        raise ValueError("n must be a positive integer")
    return _ranked(result).head(n).reset_index(drop=True)


def select_best(result: SearchResult) -> Configuration:
    if result.best is None:
        raise ValueError("search result holds no successful observations")
    return result.best.configuration


def _sort_keys(order_by: Sequence[str], space: ParameterSpace) -> Tuple[List[str], List[bool]]:
    if not order_by:
        raise ValueError("at least one parameter to order by is required")
    columns: List[str] = []
    ascending: List[bool] = []
    for key in order_by:
        descending = key.startswith("-")
        name = key[1:] if descending else key
        if name not in space.names:
            raise KeyError(f"unknown parameter {name!r}")
        columns.append(name)
        ascending.append(not descending)
    return columns, ascending


def _first_by(frame: pd.DataFrame, order_by: Sequence[str], result: SearchResult) -> Configuration:
    columns, ascending = _sort_keys(order_by, result.space)
    chosen = frame.sort_values(columns, ascending=ascending, kind="mergesort").iloc[0]
    return result.space.configuration({name: _plain(chosen[name]) for name in result.space.names})


def select_by_one_std_err(result: SearchResult, *order_by: str) -> Configuration:
    """Simplest configuration within one standard error of the best.

    ``order_by`` names parameters from simplest to most complex; prefix a
    name with ``-`` to treat larger values as simpler.
    """

    best = result.best
    if best is None:
        raise ValueError("search result holds no successful observations")
    frame = collect_metrics(result)
    if Direction(result.direction) is Direction.MAXIMIZE:
        within = frame[frame["mean"] >= best.mean - best.std_error]
    else:
        within = frame[frame["mean"] <= best.mean + best.std_error]
    return _first_by(within, order_by, result)


def select_by_pct_loss(result: SearchResult, *order_by: str, limit: float = 2.0) -> Configuration:
    """Simplest configuration whose loss relative to the best is at most ``limit`` percent."""

    best = result.best
    if best is None:
        raise ValueError("search result holds no successful observations")
    frame = collect_metrics(result)
    scale = abs(best.mean) if best.mean != 0 else 1.0
    loss = (frame["mean"] - best.mean).abs() / scale * 100.0
    return _first_by(frame[loss <= limit], order_by, result)


def _plain(value: Any) -> Any:
    # pandas hands back numpy scalars
    return value.item() if hasattr(value, "item") else value


__all__ = [
    "OBSERVATION_SOURCES",
    "Observation",
    "SearchResult",
    "SearchStatus",
    "collect_metrics",
    "select_best",
    "select_by_one_std_err",
    "select_by_pct_loss",
    "show_best",
]
