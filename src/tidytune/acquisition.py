"""Acquisition functions scoring surrogate predictions."""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

import numpy as np
from scipy.stats import norm


class Direction(str, Enum):
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"

    def better(self, candidate: float, reference: float | None) -> bool:
        """Strict improvement of ``candidate`` over ``reference``."""

        if reference is None:
            return True
        if self is Direction.MINIMIZE:
            return candidate < reference
        return candidate > reference

    @property
    def sign(self) -> float:
        return 1.0 if self is Direction.MAXIMIZE else -1.0


class Acquisition(str, Enum):
    EXPECTED_IMPROVEMENT = "expected_improvement"
    PROBABILITY_OF_IMPROVEMENT = "probability_of_improvement"
    CONFIDENCE_BOUND = "confidence_bound"
    UNCERTAINTY = "uncertainty"


@dataclass(frozen=True)
class TradeOff:
    """Exploration trade-off as a function of the iteration number.

    ``decay == 0`` keeps ``start`` constant; otherwise the value decays as
    ``start * exp(-decay * (iteration - 1))`` and never drops below ``limit``.
    """

    start: float = 0.0
    decay: float = 0.0
    limit: float = 0.0

    def at(self, iteration: int) -> float:
        if self.decay <= 0:
            return float(self.start)
        value = self.start * math.exp(-self.decay * max(0, iteration - 1))
        return float(max(self.limit, value))


def _as_arrays(mean: Sequence[float], variance: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    mu = np.asarray(mean, dtype=float)
    sd = np.sqrt(np.maximum(np.asarray(variance, dtype=float), 0.0))
    return mu, sd


def expected_improvement(
    mean: Sequence[float],
    variance: Sequence[float],
    current_best: float,
    direction: Direction | str = Direction.MAXIMIZE,
    *,
    trade_off: float = 0.0,
) -> np.ndarray:
    """Closed-form expected improvement over ``current_best``."""

    direction = Direction(direction)
    mu, sd = _as_arrays(mean, variance)
    improvement = direction.sign * (mu - current_best) - trade_off
    out = np.zeros_like(mu)
    positive = sd > 1e-12
    z = improvement[positive] / sd[positive]
    out[positive] = improvement[positive] * norm.cdf(z) + sd[positive] * norm.pdf(z)
    out[~positive] = np.maximum(improvement[~positive], 0.0)
    return out


def probability_of_improvement(
    mean: Sequence[float],
    variance: Sequence[float],
    current_best: float,
    direction: Direction | str = Direction.MAXIMIZE,
    *,
    trade_off: float = 0.0,
) -> np.ndarray:
    direction = Direction(direction)
    mu, sd = _as_arrays(mean, variance)
    improvement = direction.sign * (mu - current_best) - trade_off
    out = (improvement > 0).astype(float)
    positive = sd > 1e-12
    out[positive] = norm.cdf(improvement[positive] / sd[positive])
    return out


def confidence_bound(
    mean: Sequence[float],
    variance: Sequence[float],
    direction: Direction | str = Direction.MAXIMIZE,
    *,
    kappa: float = 0.1,
) -> np.ndarray:
    """``mean + kappa * sd`` when maximising, ``-(mean - kappa * sd)`` when minimising.

    Larger ``kappa`` favours exploration. Scores are oriented so that the
    argmax is always the preferred candidate.
    """

    direction = Direction(direction)
    mu, sd = _as_arrays(mean, variance)
    return direction.sign * mu + kappa * sd


def uncertainty(variance: Sequence[float]) -> np.ndarray:
    return np.maximum(np.asarray(variance, dtype=float), 0.0)


def score(
    mean: Sequence[float],
    variance: Sequence[float],
    current_best: float,
    direction: Direction | str,
    *,
    kind: Acquisition | str = Acquisition.EXPECTED_IMPROVEMENT,
    trade_off: float = 0.0,
    kappa: float = 0.1,
) -> np.ndarray:
    kind = Acquisition(kind)
    if kind is Acquisition.EXPECTED_IMPROVEMENT:
        return expected_improvement(mean, variance, current_best, direction, trade_off=trade_off)
    if kind is Acquisition.PROBABILITY_OF_IMPROVEMENT:
        return probability_of_improvement(
            mean, variance, current_best, direction, trade_off=trade_off
        )
    if kind is Acquisition.CONFIDENCE_BOUND:
        return confidence_bound(mean, variance, direction, kappa=kappa)
    return uncertainty(variance)


def select(scores: Sequence[float]) -> int:
    """Index of the best score; the first candidate wins ties."""

    values = np.asarray(scores, dtype=float)
    if values.size == 0:
        raise ValueError("cannot select from an empty candidate pool")
    values = np.where(np.isnan(values), -np.inf, values)
    # np.argmax returns the first occurrence of the maximum
    return int(np.argmax(values))


__all__ = [
    "Acquisition",
    "Direction",
    "TradeOff",
    "confidence_bound",
    "expected_improvement",
    "probability_of_improvement",
    "score",
    "select",
    "uncertainty",
]
