"""Evaluator package exports."""

from .base import (
    BaseEvaluator,
    EvaluationResult,
    Evaluator,
    EvaluatorInput,
    GracefulNaNPolicy,
    normalize_result,
)
from .benchmarks import (
    branin,
    classifier_surface,
    create_branin_evaluator,
    create_classifier_evaluator,
)
from .resampling import ResampledEvaluator, summarize_resamples

__all__ = [
    "BaseEvaluator",
    "EvaluationResult",
    "Evaluator",
    "EvaluatorInput",
    "GracefulNaNPolicy",
    "ResampledEvaluator",
    "branin",
    "classifier_surface",
    "create_branin_evaluator",
    "create_classifier_evaluator",
    "normalize_result",
    "summarize_resamples",
]
