from __future__ import annotations

import math
from typing import Any, Mapping

import numpy as np
import pytest

from tidytune.evaluators import (
    ResampledEvaluator,
    branin,
    classifier_surface,
    create_branin_evaluator,
    create_classifier_evaluator,
    summarize_resamples,
)


def test_summarize_resamples() -> None:
    summary = summarize_resamples([1.0, 2.0, 3.0])
    assert summary["mean"] == pytest.approx(2.0)
    assert summary["std_error"] == pytest.approx(1.0 / math.sqrt(3.0))
    assert summary["n_resamples"] == 3
    assert summarize_resamples([0.4])["std_error"] == 0.0
    with pytest.raises(ValueError):
        summarize_resamples([])


def test_resampled_evaluator_scores_every_fold() -> None:
    seen: list[int] = []

    def score(params: Mapping[str, Any], index: int, rng: np.random.Generator) -> float:
        seen.append(index)
        return float(index)

    result = ResampledEvaluator(score, n_folds=5, repeats=2).evaluate({"x": 1.0}, seed=0)

    assert result.ok
    assert sorted(seen) == list(range(10))
    assert result.mean == pytest.approx(4.5)
    assert result.n_resamples == 10


def test_parallel_resamples_match_sequential_ones() -> None:
    def score(params: Mapping[str, Any], index: int, rng: np.random.Generator) -> float:
        return params["x"] + float(rng.normal())

    sequential = ResampledEvaluator(score, n_folds=8).evaluate({"x": 1.0}, seed=5)
    parallel = ResampledEvaluator(score, n_folds=8, n_jobs=4).evaluate({"x": 1.0}, seed=5)

    assert parallel.mean == pytest.approx(sequential.mean)
    assert parallel.std_error == pytest.approx(sequential.std_error)


def test_invalid_resampling_scheme() -> None:
    with pytest.raises(ValueError):
        ResampledEvaluator(lambda params, index, rng: 0.0, n_folds=0)


def test_branin_minimum() -> None:
    assert branin(math.pi, 2.275) == pytest.approx(0.397887, abs=1e-6)

    evaluator = create_branin_evaluator({"noise_std": 0.0, "n_folds": 3})
    result = evaluator.evaluate({"x1": math.pi, "x2": 2.275}, seed=1)
    assert result.mean == pytest.approx(0.397887, abs=1e-6)
    assert result.std_error == pytest.approx(0.0)


def test_classifier_surface_prefers_rbf_near_the_optimum() -> None:
    best = classifier_surface(1e-2, 0.3, "rbf")
    assert best > classifier_surface(1e-2, 0.3, "linear")
    assert best > classifier_surface(1e-4, 0.3, "rbf")

    evaluator = create_classifier_evaluator({"noise_std": 0.01, "n_folds": 5})
    first = evaluator.evaluate({"penalty": 1e-2, "mixture": 0.3, "kernel": "rbf"}, seed=3)
    second = evaluator.evaluate({"penalty": 1e-2, "mixture": 0.3, "kernel": "rbf"}, seed=3)
    assert first.mean == second.mean
    assert first.std_error > 0
