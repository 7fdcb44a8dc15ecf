"""Unit tests covering BaseEvaluator infrastructure features."""
from __future__ import annotations

import math
import time
import unittest
from typing import Any, Mapping

import numpy as np

from tidytune.errors import EvaluationFailure
from tidytune.evaluators.base import (
    BaseEvaluator,
    EvaluationResult,
    GracefulNaNPolicy,
    normalize_result,
)


class _BaseTestEvaluator(BaseEvaluator):
    """Minimal evaluator returning a fixed resampled estimate."""

    def _evaluate_impl(
        self,
        params: Mapping[str, Any],
        seed: int | None = None,
    ) -> Mapping[str, Any]:
        return {
            "mean": 0.85,
            "std_error": 0.01,
            "n_resamples": 10,
            "status": "ok",
        }


class BaseEvaluatorExecutionTests(unittest.TestCase):
    def test_successful_evaluation(self) -> None:
        result = _BaseTestEvaluator().evaluate({"penalty": 0.1})
        self.assertIsInstance(result, EvaluationResult)
        self.assertTrue(result.ok)
        self.assertEqual(result.mean, 0.85)
        self.assertEqual(result.n_resamples, 10)
        self.assertIsNotNone(result.elapsed_seconds)

    def test_timeout_returns_structured_payload(self) -> None:
        class SlowEvaluator(_BaseTestEvaluator):
            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                time.sleep(0.2)
                return super()._evaluate_impl(params, seed)

        result = SlowEvaluator().evaluate({"alpha": 1}, trial_timeout_sec=0.01)
        self.assertEqual(result.status, "timeout")
        self.assertTrue(result.timed_out)
        self.assertTrue(math.isnan(result.mean))
        self.assertFalse(result.ok)

    def test_max_retries_allows_recovery(self) -> None:
        class FlakyEvaluator(_BaseTestEvaluator):
            def __init__(self) -> None:
                self._attempts = 0

            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                self._attempts += 1
                if self._attempts == 1:
                    raise RuntimeError("transient")
                return super()._evaluate_impl(params, seed)

        evaluator = FlakyEvaluator()
        result = evaluator.evaluate({"beta": 2}, max_retries=1)
        self.assertEqual(result.status, "ok")
        self.assertEqual(evaluator._attempts, 2)

    def test_exception_after_retries_returns_failure_payload(self) -> None:
        class AlwaysFailEvaluator(_BaseTestEvaluator):
            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                raise RuntimeError("permanent")

        result = AlwaysFailEvaluator().evaluate({"gamma": 3}, max_retries=2)
        self.assertEqual(result.status, "error")
        self.assertEqual(result.reason, "exception:RuntimeError")
        self.assertTrue(math.isnan(result.mean))

    def test_failure_payload_raises_through_normalize(self) -> None:
        class AlwaysFailEvaluator(_BaseTestEvaluator):
            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                raise RuntimeError("permanent")

        with self.assertRaises(EvaluationFailure) as ctx:
            normalize_result(AlwaysFailEvaluator()({"gamma": 3}))
        self.assertEqual(ctx.exception.reason, "exception:RuntimeError")


class BaseEvaluatorNanPolicyTests(unittest.TestCase):
    class NanEvaluator(_BaseTestEvaluator):
        def _evaluate_impl(
            self,
            params: Mapping[str, Any],
            seed: int | None = None,
        ) -> Mapping[str, Any]:
            payload = dict(super()._evaluate_impl(params, seed))
            payload["mean"] = float("nan")
            return payload

    def test_mark_failure_policy(self) -> None:
        result = self.NanEvaluator().evaluate({"x": 1}, graceful_nan_policy=GracefulNaNPolicy.MARK_FAILURE)
        self.assertEqual(result.status, "error")
        self.assertEqual(result.reason, "invalid_metric:mean")

    def test_error_policy_reports_the_exception(self) -> None:
        result = self.NanEvaluator().evaluate({"x": 1}, graceful_nan_policy="error")
        self.assertEqual(result.status, "error")
        self.assertEqual(result.reason, "exception:ValueError")

    def test_unknown_policy_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.NanEvaluator().evaluate({"x": 1}, graceful_nan_policy="ignore")


class NormalizeResultTests(unittest.TestCase):
    def test_plain_numbers_become_results(self) -> None:
        result = normalize_result(0.9)
        self.assertEqual(result.mean, 0.9)
        self.assertEqual(result.std_error, 0.0)
        self.assertEqual(normalize_result(np.float64(0.5)).mean, 0.5)

    def test_mappings_are_validated(self) -> None:
        result = normalize_result({"mean": 0.7, "std_error": 0.02, "fold_scores": [0.69, 0.71]})
        self.assertEqual(result.std_error, 0.02)
        with self.assertRaises(EvaluationFailure) as ctx:
            normalize_result({"mean": 0.7, "std_error": -1.0})
        self.assertEqual(ctx.exception.reason, "invalid_payload")

    def test_failures_carry_a_reason(self) -> None:
        cases = [
            ({"mean": 0.7, "status": "error", "reason": "boom"}, "boom"),
            ({"mean": float("nan")}, "invalid_metric:mean"),
            ({"mean": 0.1, "status": "timeout", "timed_out": True}, "trial_timeout"),
            (True, "invalid_payload"),
            ("0.5", "invalid_payload"),
        ]
        for raw, reason in cases:
            with self.subTest(raw=raw):
                with self.assertRaises(EvaluationFailure) as ctx:
                    normalize_result(raw)
                self.assertEqual(ctx.exception.reason, reason)


class BaseEvaluatorSeedTests(unittest.TestCase):
    def test_seed_propagation_to_numpy(self) -> None:
        class NumpyEvaluator(_BaseTestEvaluator):
            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                payload = dict(super()._evaluate_impl(params, seed))
                payload["mean"] = float(np.random.random())
                return payload

        evaluator = NumpyEvaluator()
        first = evaluator.evaluate({"x": 1}, seed=1234)
        second = evaluator.evaluate({"x": 1}, seed=1234)
        self.assertEqual(first.mean, second.mean)

    def test_numpy_state_restored_after_evaluation(self) -> None:
        class NumpyEvaluator(_BaseTestEvaluator):
            def _evaluate_impl(
                self,
                params: Mapping[str, Any],
                seed: int | None = None,
            ) -> Mapping[str, Any]:
                np.random.random()
                return super()._evaluate_impl(params, seed)

        np.random.seed(2024)
        state_before = np.random.get_state()
        NumpyEvaluator().evaluate({"z": 5}, seed=999)
        state_after = np.random.get_state()
        for before, after in zip(state_before, state_after):
            if hasattr(before, "shape"):
                self.assertTrue(np.array_equal(before, after))
            else:
                self.assertEqual(before, after)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
