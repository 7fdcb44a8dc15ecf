"""Exchange search results with optuna studies."""
from __future__ import annotations

import logging
import math
from typing import List

import optuna
from optuna.trial import TrialState

from .acquisition import Direction
from .errors import ConfigurationError
from .results import Observation, SearchResult
from .space import ParameterSpace

logger = logging.getLogger(__name__)


def study_direction(study: optuna.study.Study) -> Direction:
    if len(study.directions) != 1:
        raise ValueError("only single-objective studies are supported")
    if study.direction == optuna.study.StudyDirection.MINIMIZE:
        return Direction.MINIMIZE
    return Direction.MAXIMIZE


def to_optuna_study(
    result: SearchResult,
    *,
    study_name: str | None = None,
    storage: str | optuna.storages.BaseStorage | None = None,
) -> optuna.study.Study:
    """Copy every observation of ``result`` into a new study as a completed trial.

    The standard error, iteration and source of each observation are kept as
    trial user attributes so the study can seed a later search.
    """

    study = optuna.create_study(
        direction=Direction(result.direction).value,
        study_name=study_name,
        storage=storage,
    )
    distributions = result.space.distributions()
    for observation in result.history:
        trial = optuna.trial.create_trial(
            params=observation.configuration.as_dict(),
            distributions=distributions,
            value=observation.mean,
            user_attrs={
                "std_error": observation.std_error,
                "iteration": observation.iteration,
                "source": observation.source,
            },
        )
        study.add_trial(trial)
    return study


def observations_from_study(
    study: optuna.study.Study,
    space: ParameterSpace,
) -> List[Observation]:
    """Completed trials of ``study`` that fit ``space``, as prior observations."""

    study_direction(study)
    observations: List[Observation] = []
    for trial in study.get_trials(deepcopy=False, states=(TrialState.COMPLETE,)):
        if trial.value is None or not math.isfinite(trial.value):
            continue
        try:
            config = space.configuration({name: trial.params[name] for name in space.names})
        except (KeyError, ConfigurationError) as exc:
            logger.warning("Skipping trial %d from study: %s", trial.number, exc)
            continue
        std_error = trial.user_attrs.get("std_error", 0.0)
        observations.append(
            Observation(
                configuration=config,
                mean=float(trial.value),
                std_error=float(std_error) if std_error is not None else 0.0,
                iteration=0,
                source="prior",
            )
        )
    return observations


__all__ = ["observations_from_study", "study_direction", "to_optuna_study"]
