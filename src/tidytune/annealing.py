"""Acceptance rules for simulated annealing."""
from __future__ import annotations

import math
from enum import Enum

import numpy as np

from .acquisition import Direction


class Decision(str, Enum):
    """Outcome labels recorded for every search iteration."""

    INITIAL = "initial"
    NEW_BEST = "new_best"
    BETTER_SUBOPTIMAL = "better_suboptimal"
    ACCEPT_SUBOPTIMAL = "accept_suboptimal"
    DISCARD_SUBOPTIMAL = "discard_suboptimal"
    RESTART = "restart_from_best"
    NO_IMPROVEMENT = "no_improvement"
    FAILED = "failed"

    @property
    def accepted(self) -> bool:
        return self in {
            Decision.NEW_BEST,
            Decision.BETTER_SUBOPTIMAL,
            Decision.ACCEPT_SUBOPTIMAL,
        }


def percent_difference(
    value: float,
    reference: float,
    direction: Direction | str = Direction.MAXIMIZE,
) -> float:
    """Signed percent change of ``value`` relative to ``reference``.

    Negative values always mean a worse result, whatever the direction.
    A zero ``reference`` has no relative scale, so the absolute difference
    is used instead and the result is that difference times 100.
    """

    direction = Direction(direction)
    if reference == 0:
        scale = 1.0
    else:
        scale = abs(reference)
    return direction.sign * (value - reference) / scale * 100.0


def acceptance_probability(degradation: float, iteration: int, coefficient: float) -> float:
    """``exp(coefficient * degradation * iteration)``, capped at one."""

    exponent = coefficient * degradation * iteration
    if exponent >= 0:
        return 1.0
    return math.exp(exponent)


class AcceptanceController:
    """Decide whether annealing moves away from the last accepted configuration."""

    def __init__(
        self,
        direction: Direction | str,
        rng: np.random.Generator,
        *,
        coefficient: float = 0.02,
        restart: int | None = 8,
    ) -> None:
        self.direction = Direction(direction)
        self.rng = rng
        self.coefficient = float(coefficient)
        self.restart = restart

    def decide(
        self,
        value: float,
        *,
        best: float,
        current: float,
        iteration: int,
        draw: float | None = None,
    ) -> Decision:
        if self.direction.better(value, best):
            return Decision.NEW_BEST
        if self.direction.better(value, current):
            return Decision.BETTER_SUBOPTIMAL
        degradation = percent_difference(value, current, self.direction)
        if draw is None:
            draw = float(self.rng.uniform())
        if accept(degradation, iteration, self.coefficient, draw):
            return Decision.ACCEPT_SUBOPTIMAL
        return Decision.DISCARD_SUBOPTIMAL

    def accept(
        self,
        current_best: float,
        candidate_result: float,
        iteration: int,
        *,
        draw: float | None = None,
    ) -> bool:
        decision = self.decide(
            candidate_result,
            best=current_best,
            current=current_best,
            iteration=iteration,
            draw=draw,
        )
        return decision.accepted

    def should_restart(self, no_improve_count: int) -> bool:
        return (
            self.restart is not None
            and self.restart > 0
            and no_improve_count > 0
            and no_improve_count % self.restart == 0
        )


def accept(degradation: float, iteration: int, coefficient: float, draw: float) -> bool:
    """Accept a suboptimal result when ``draw`` falls below the acceptance probability."""

    return draw < acceptance_probability(degradation, iteration, coefficient)


__all__ = [
    "AcceptanceController",
    "Decision",
    "accept",
    "acceptance_probability",
    "percent_difference",
]
