"""Run a search described by a :class:`SearchRunConfig`."""
from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import optuna

from .config import SearchRunConfig
from .design import levels_from_mapping, regular_grid
from .evaluators import BaseEvaluator
from .progress import CsvProgressLogger, LoggingSink, ProgressSink
from .report import build_report
from .results import SearchResult
from .search import InitialDesign, IterativeSearch, SupportsIsSet
from .space import ParameterSpace
from .study_bridge import to_optuna_study

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """What a configured run produced."""

    result: SearchResult
    log_path: Path
    report_path: Path | None = None
    exported_study: str | None = None


def load_evaluator(config: Mapping[str, Any]) -> Callable[..., Any]:
    """Resolve ``evaluator.module``/``evaluator.callable`` into a ``(params, seed)`` callable.

    Single-argument factories are called with the evaluator section so that
    extra keys (noise level, folds, ...) reach them.
    """

    module = importlib.import_module(config["module"])
    target = getattr(module, config["callable"])

    evaluator_obj: Any
    if isinstance(target, BaseEvaluator):
        evaluator_obj = target
    elif isinstance(target, type) and issubclass(target, BaseEvaluator):
        evaluator_obj = target()  # type: ignore[abstract]
    elif callable(target):
        if len(inspect.signature(target).parameters) <= 1:
            evaluator_obj = target(config)
        else:
            evaluator_obj = target
    else:
        raise TypeError(
            "Evaluator callable must be a function, factory, or BaseEvaluator instance."
        )

    if isinstance(evaluator_obj, BaseEvaluator):
        return evaluator_obj.evaluate
    if callable(evaluator_obj):
        return evaluator_obj
    raise TypeError("Evaluator factory did not return a callable or BaseEvaluator instance.")


def resolve_initial_design(config: SearchRunConfig, space: ParameterSpace) -> InitialDesign:
    search = config.search
    if search.initial_study is not None:
        return optuna.load_study(
            study_name=search.initial_study.study_name,
            storage=search.initial_study.storage,
        )
    if search.grid is not None:
        return regular_grid(space, levels_from_mapping(search.grid))
    assert search.initial is not None
    return search.initial


def ensure_directories(config: SearchRunConfig) -> Path:
    artifacts = config.artifacts
    log_path = Path(artifacts.log_file if artifacts is not None else "runs/log.csv")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    Path(config.report.output_dir).mkdir(parents=True, exist_ok=True)
    if artifacts is not None and artifacts.run_root:
        Path(artifacts.run_root).mkdir(parents=True, exist_ok=True)
    return log_path


def run_from_config(
    config: SearchRunConfig | Mapping[str, Any],
    *,
    interrupt: SupportsIsSet | None = None,
    sinks: Sequence[ProgressSink] = (),
) -> RunOutcome:
    """Execute the configured search, then write the report and optional study export."""

    model = config if isinstance(config, SearchRunConfig) else SearchRunConfig.model_validate(config)
    log_path = ensure_directories(model)
    evaluator = load_evaluator(model.evaluator.model_dump())
    space = model.build_space()

    with CsvProgressLogger(log_path, space.names) as csv_sink:
        search = IterativeSearch(
            space,
            evaluator,
            strategy=model.search.strategy,
            direction=model.search.direction,
            initial=resolve_initial_design(model, space),
            stopping=model.stopping_rules(),
            bayes=model.bayes.to_settings(),
            annealing=model.annealing.to_settings(),
            seed=model.seed,
            sinks=[csv_sink, LoggingSink(), *sinks],
            tolerance=model.search.tolerance,
        )
        result = search.run(interrupt)

    outcome = RunOutcome(result=result, log_path=log_path)
    try:
        outcome.report_path = build_report(model, result, log_path=log_path)
    except OSError as exc:
        logger.warning("Failed to write report: %s", exc)

    storage = model.artifacts.export_study if model.artifacts is not None else None
    if storage:
        try:
            to_optuna_study(result, study_name=model.metadata.name, storage=storage)
            outcome.exported_study = storage
        except (optuna.exceptions.OptunaError, ValueError) as exc:
            logger.warning("Failed to export results to optuna storage %s: %s", storage, exc)
    return outcome


__all__ = [
    "RunOutcome",
    "ensure_directories",
    "load_evaluator",
    "resolve_initial_design",
    "run_from_config",
]
