"""Turn per-resample scores into a mean and standard error.

The assumed resampling scheme is V-fold cross-validation repeated ``repeats``
times: each of the ``n_folds * repeats`` resamples yields one score and the
standard error is ``sd / sqrt(n)``. Resamples are independent, so they may run
on a thread pool.
"""
from __future__ import annotations

import concurrent.futures
import math
from typing import Any, Callable, Dict, List, Mapping, Sequence

import numpy as np

from .base import BaseEvaluator

ScoreFunction = Callable[[Mapping[str, Any], int, np.random.Generator], float]


def summarize_resamples(scores: Sequence[float]) -> Dict[str, float | int]:
    """Mean and standard error of a set of resample scores."""

    values = np.asarray(list(scores), dtype=float)
    if values.size == 0:
        raise ValueError("at least one resample score is required")
    mean = float(values.mean())
    if values.size == 1:
        std_error = 0.0
    else:
        std_error = float(values.std(ddof=1) / math.sqrt(values.size))
    return {"mean": mean, "std_error": std_error, "n_resamples": int(values.size)}


class ResampledEvaluator(BaseEvaluator):
    """Evaluate a configuration by scoring it on every resample.

    ``score_fn(params, resample_index, rng)`` returns the metric for one
    resample. Each resample receives its own generator spawned from the
    evaluation seed, so results do not depend on ``n_jobs``.
    """

    def __init__(
        self,
        score_fn: ScoreFunction,
        *,
        n_folds: int = 10,
        repeats: int = 1,
        n_jobs: int = 1,
        trial_timeout_sec: float | None = None,
        max_retries: int = 0,
    ) -> None:
        if n_folds < 1 or repeats < 1:
            raise ValueError("n_folds and repeats must be positive")
        self.score_fn = score_fn
        self.n_folds = int(n_folds)
        self.repeats = int(repeats)
        self.n_jobs = max(1, int(n_jobs))
        self.trial_timeout_sec = trial_timeout_sec
        self.max_retries = max_retries

    @property
    def n_resamples(self) -> int:
        return self.n_folds * self.repeats

    def _evaluate_impl(
        self,
        params: Mapping[str, Any],
        seed: int | None = None,
    ) -> Mapping[str, Any]:
        children = np.random.SeedSequence(seed).spawn(self.n_resamples)
        generators = [np.random.default_rng(child) for child in children]

        scores: List[float]
        if self.n_jobs == 1:
            scores = [
                float(self.score_fn(params, index, rng))
                for index, rng in enumerate(generators)
            ]
        else:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
                futures = [
                    executor.submit(self.score_fn, params, index, rng)
                    for index, rng in enumerate(generators)
                ]
                scores = [float(future.result()) for future in futures]

        summary = summarize_resamples(scores)
        return {**summary, "status": "ok"}


__all__ = ["ResampledEvaluator", "ScoreFunction", "summarize_resamples"]
