from __future__ import annotations

import math

import numpy as np
import pytest

from tidytune.acquisition import (
    Acquisition,
    Direction,
    TradeOff,
    confidence_bound,
    expected_improvement,
    probability_of_improvement,
    score,
    select,
)


def test_expected_improvement_without_uncertainty_is_plain_improvement() -> None:
    ei = expected_improvement([1.5, 0.5], [0.0, 0.0], 1.0, Direction.MAXIMIZE)
    assert ei.tolist() == pytest.approx([0.5, 0.0])

    ei_min = expected_improvement([1.5, 0.5], [0.0, 0.0], 1.0, "minimize")
    assert ei_min.tolist() == pytest.approx([0.0, 0.5])


def test_expected_improvement_at_current_best() -> None:
    ei = expected_improvement([2.0], [4.0], 2.0)
    assert ei[0] == pytest.approx(2.0 / math.sqrt(2.0 * math.pi))


def test_trade_off_lowers_expected_improvement() -> None:
    plain = expected_improvement([1.0], [1.0], 1.0)
    cautious = expected_improvement([1.0], [1.0], 1.0, trade_off=0.5)
    assert cautious[0] < plain[0]


def test_probability_of_improvement() -> None:
    assert probability_of_improvement([3.0], [1.0], 3.0)[0] == pytest.approx(0.5)
    assert probability_of_improvement([4.0, 2.0], [0.0, 0.0], 3.0).tolist() == [1.0, 0.0]


def test_confidence_bound_is_oriented_by_direction() -> None:
    assert confidence_bound([1.0, 1.0], [4.0, 0.0], kappa=0.5).tolist() == pytest.approx([2.0, 1.0])
    assert confidence_bound([1.0], [4.0], "minimize", kappa=0.5)[0] == pytest.approx(0.0)


def test_score_dispatches_on_kind() -> None:
    mean, variance = [1.0, 2.0], [0.5, 0.1]
    assert score(mean, variance, 1.0, "maximize", kind="uncertainty").tolist() == [0.5, 0.1]
    expected = expected_improvement(mean, variance, 1.0)
    assert np.allclose(score(mean, variance, 1.0, "maximize"), expected)
    assert np.allclose(
        score(mean, variance, 1.0, "maximize", kind=Acquisition.CONFIDENCE_BOUND, kappa=2.0),
        confidence_bound(mean, variance, kappa=2.0),
    )
    with pytest.raises(ValueError):
        score(mean, variance, 1.0, "maximize", kind="thompson")


def test_select_prefers_the_first_of_tied_candidates() -> None:
    assert select([0.1, 0.7, 0.7, 0.2]) == 1
    assert select([float("nan"), 0.3, 0.1]) == 1
    with pytest.raises(ValueError):
        select([])


def test_trade_off_schedule() -> None:
    constant = TradeOff(start=0.1)
    assert constant.at(1) == constant.at(50) == pytest.approx(0.1)

    decaying = TradeOff(start=0.1, decay=0.5, limit=0.02)
    assert decaying.at(1) == pytest.approx(0.1)
    assert decaying.at(3) == pytest.approx(0.1 * math.exp(-1.0))
    assert decaying.at(10) == pytest.approx(0.02)


def test_direction_comparisons() -> None:
    assert Direction.MAXIMIZE.better(2.0, 1.0)
    assert not Direction.MAXIMIZE.better(1.0, 1.0)
    assert Direction.MINIMIZE.better(0.5, 1.0)
    assert Direction.MINIMIZE.better(0.5, None)
