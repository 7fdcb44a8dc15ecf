"""Base interfaces and utilities for performance evaluator plugins."""
from __future__ import annotations

import concurrent.futures
import contextlib
import math
import os
import random
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import EvaluationFailure

VALID_STATUSES = ("ok", "error", "timeout")


class GracefulNaNPolicy(str, Enum):
    """Policies for handling NaN/Inf values from evaluator payloads."""

    ERROR = "error"
    MARK_FAILURE = "mark_failure"


class EvaluatorInput(BaseModel):
    """Structured representation of evaluator inputs."""

    params: Dict[str, Any]
    seed: int | None = Field(default=None)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class EvaluationResult(BaseModel):
    """Resampled performance estimate for one configuration."""

    mean: float
    std_error: float = Field(default=0.0, ge=0)
    n_resamples: int | None = Field(default=None, ge=1)
    status: str = "ok"
    timed_out: bool = False
    elapsed_seconds: float | None = Field(default=None, ge=0)
    reason: str | None = None

    model_config = ConfigDict(extra="allow")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        if value not in VALID_STATUSES:
            raise ValueError(f"Unsupported evaluator status: {value!r}")
        return value

    @property
    def ok(self) -> bool:
        return (
            self.status == "ok"
            and not self.timed_out
            and math.isfinite(self.mean)
            and math.isfinite(self.std_error)
        )


Evaluator = Callable[[Dict[str, Any], "int | None"], Any]
"""Any callable ``(params, seed)`` returning a float, mapping or :class:`EvaluationResult`."""


def normalize_result(raw: Any) -> EvaluationResult:
    """Coerce an evaluator return value into a successful :class:`EvaluationResult`.

    Raises :class:`EvaluationFailure` when the payload is malformed, non-finite
    or reports a non-``ok`` status.
    """

    if isinstance(raw, EvaluationResult):
        result = raw
    elif isinstance(raw, bool):
        raise EvaluationFailure("evaluator returned a boolean", reason="invalid_payload")
    elif isinstance(raw, (int, float, np.integer, np.floating)):
        result = EvaluationResult(mean=float(raw))
    elif isinstance(raw, Mapping):
        try:
            result = EvaluationResult.model_validate(dict(raw))
        except ValidationError as exc:
            raise EvaluationFailure(
                f"evaluator payload failed validation: {exc.error_count()} error(s)",
                reason="invalid_payload",
            ) from exc
    else:
        raise EvaluationFailure(
            f"evaluator returned unsupported type {type(raw).__name__}",
            reason="invalid_payload",
        )

    if not result.ok:
        reason = result.reason or ("trial_timeout" if result.timed_out else None)
        if reason is None and not math.isfinite(result.mean):
            reason = "invalid_metric:mean"
        raise EvaluationFailure(
            f"evaluation finished with status {result.status!r}",
            reason=reason or result.status,
        )
    return result


@dataclass(frozen=True)
class _ExecutionConfig:
    """Execution parameters resolved for a single evaluation."""

    timeout: float | None
    max_retries: int
    nan_policy: GracefulNaNPolicy


class BaseEvaluator(ABC):
    """Common interface for performance evaluators.

    Evaluators receive a dictionary of parameter values and return a resampled
    performance estimate: the mean metric across resamples and its standard
    error. Concrete subclasses implement :meth:`_evaluate_impl` and return a
    mapping containing ``mean`` (and usually ``std_error``). The base class adds
    timeouts, retries, seeding and validation, and turns faults into
    structured ``error``/``timeout`` payloads instead of raising.
    """

    #: Default graceful NaN policy if not provided explicitly by subclasses.
    DEFAULT_NAN_POLICY: GracefulNaNPolicy = GracefulNaNPolicy.MARK_FAILURE

    def evaluate(
        self,
        params: Mapping[str, Any],
        seed: int | None = None,
        *,
        trial_timeout_sec: float | None = None,
        max_retries: int | None = None,
        graceful_nan_policy: GracefulNaNPolicy | str | None = None,
    ) -> EvaluationResult:
        """Compute the performance estimate for the provided parameter set.

        Parameters
        ----------
        params:
            Mapping of parameter names to values.
        seed:
            Optional deterministic seed propagated to supported RNG backends.
        trial_timeout_sec:
            Optional wall-clock timeout applied to the evaluation call. Falls
            back to ``self.trial_timeout_sec`` when defined.
        max_retries:
            Number of automatic retries permitted when the evaluator raises.
            Defaults to ``self.max_retries`` or zero.
        graceful_nan_policy:
            Policy used when the mean or standard error is NaN/Inf.
        """

        input_payload = EvaluatorInput.model_validate({"params": dict(params), "seed": seed})
        exec_config = self._resolve_execution_config(
            trial_timeout_sec=trial_timeout_sec,
            max_retries=max_retries,
            graceful_nan_policy=graceful_nan_policy,
        )

        attempts = exec_config.max_retries + 1
        for attempt in range(attempts):
            start = time.perf_counter()
            try:
                raw_payload = self._execute_trial(
                    params=input_payload.params,
                    seed=input_payload.seed,
                    timeout=exec_config.timeout,
                )
                elapsed = time.perf_counter() - start
                return self._finalize_result(
                    raw_payload,
                    elapsed=elapsed,
                    nan_policy=exec_config.nan_policy,
                )
            except TimeoutError:
                elapsed = time.perf_counter() - start
                return self._fallback_payload(
                    elapsed=elapsed,
                    status="timeout",
                    reason="trial_timeout",
                    timed_out=True,
                )
            except Exception as exc:  # noqa: BLE001 - propagate through retry logic
                if attempt < attempts - 1:
                    continue
                elapsed = time.perf_counter() - start
                return self._fallback_payload(
                    elapsed=elapsed,
                    status="error",
                    reason=f"exception:{exc.__class__.__name__}",
                )

        raise RuntimeError("Evaluator execution loop exited unexpectedly.")

    @abstractmethod
    def _evaluate_impl(
        self,
        params: Mapping[str, Any],
        seed: int | None = None,
    ) -> Mapping[str, Any]:
        """Return the raw evaluator payload prior to normalization."""

    def __call__(
        self,
        params: Mapping[str, Any],
        seed: int | None = None,
        *,
        trial_timeout_sec: float | None = None,
        max_retries: int | None = None,
        graceful_nan_policy: GracefulNaNPolicy | str | None = None,
    ) -> EvaluationResult:
        return self.evaluate(
            params,
            seed,
            trial_timeout_sec=trial_timeout_sec,
            max_retries=max_retries,
            graceful_nan_policy=graceful_nan_policy,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _resolve_execution_config(
        self,
        *,
        trial_timeout_sec: float | None,
        max_retries: int | None,
        graceful_nan_policy: GracefulNaNPolicy | str | None,
    ) -> _ExecutionConfig:
        timeout = (
            trial_timeout_sec
            if trial_timeout_sec is not None
            else getattr(self, "trial_timeout_sec", None)
        )
        resolved_max_retries = (
            max_retries if max_retries is not None else getattr(self, "max_retries", 0)
        )
        if resolved_max_retries is None:
            resolved_max_retries = 0
        resolved_max_retries = max(0, int(resolved_max_retries))

        policy_candidate = (
            graceful_nan_policy
            if graceful_nan_policy is not None
            else getattr(self, "graceful_nan_policy", self.DEFAULT_NAN_POLICY)
        )
        policy = self._coerce_nan_policy(policy_candidate)

        if timeout is not None and timeout <= 0:
            timeout = 0.0

        return _ExecutionConfig(timeout=timeout, max_retries=resolved_max_retries, nan_policy=policy)

    def _coerce_nan_policy(
        self, candidate: GracefulNaNPolicy | str | None
    ) -> GracefulNaNPolicy:
        if isinstance(candidate, GracefulNaNPolicy):
            return candidate
        if isinstance(candidate, str):
            try:
                return GracefulNaNPolicy(candidate)
            except ValueError as exc:
                raise ValueError(f"Unknown graceful_nan_policy: {candidate!r}") from exc
        return self.DEFAULT_NAN_POLICY

    def _execute_trial(
        self,
        *,
        params: Mapping[str, Any],
        seed: int | None,
        timeout: float | None,
    ) -> Mapping[str, Any]:
        def _invoke() -> Mapping[str, Any]:
            with self._evaluation_context(seed):
                return self._evaluate_impl(params, seed)

        if timeout is None:
            return _invoke()

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = executor.submit(_invoke)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TimeoutError("Evaluator execution exceeded timeout") from exc
        finally:
            executor.shutdown(wait=False)

    @contextlib.contextmanager
    def _evaluation_context(self, seed: int | None):
        with contextlib.ExitStack() as stack:
            stack.enter_context(self._temporary_isolation())
            if seed is not None:
                stack.enter_context(self._seed_random_generators(seed))
            yield

    @contextlib.contextmanager
    def _temporary_isolation(self):
        with tempfile.TemporaryDirectory(prefix="tidytune_eval_") as tmpdir:
            with contextlib.ExitStack() as stack:
                for var in ("TMPDIR", "TEMP", "TMP"):
                    stack.enter_context(self._env_swap(var, tmpdir))
                stack.enter_context(self._tempfile_override(tmpdir))
                yield tmpdir

    @contextlib.contextmanager
    def _tempfile_override(self, tmpdir: str):
        original = tempfile.tempdir
        tempfile.tempdir = tmpdir
        try:
            yield
        finally:
            tempfile.tempdir = original

    @contextlib.contextmanager
    def _env_swap(self, name: str, value: str):
        original = os.environ.get(name)
        os.environ[name] = value
        try:
            yield
        finally:
            if original is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = original

    @contextlib.contextmanager
    def _seed_random_generators(self, seed: int):
        random_state = random.getstate()
        numpy_state = np.random.get_state()
        random.seed(seed)
        np.random.seed(seed % 2**32)
        try:
            yield
        finally:
            random.setstate(random_state)
            np.random.set_state(numpy_state)

    def _finalize_result(
        self,
        payload: Mapping[str, Any],
        *,
        elapsed: float,
        nan_policy: GracefulNaNPolicy,
    ) -> EvaluationResult:
        """Validate and normalize the raw evaluator payload."""

        normalized: MutableMapping[str, Any] = dict(payload)
        if "mean" not in normalized:
            raise ValueError("Evaluator payload is missing required key 'mean'")

        invalid_metrics: list[str] = []
        for key in ("mean", "std_error"):
            if key not in normalized or normalized[key] is None:
                continue
            try:
                normalized[key] = float(normalized[key])
            except (TypeError, ValueError) as exc:
                raise TypeError(f"Metric {key!r} must be convertible to float") from exc
            if not math.isfinite(normalized[key]):
                invalid_metrics.append(key)

        if invalid_metrics:
            return self._handle_invalid_metrics(
                normalized,
                elapsed=elapsed,
                invalid_metrics=invalid_metrics,
                nan_policy=nan_policy,
            )

        status = normalized.get("status")
        if status is None:
            normalized["status"] = "ok"
        elif not isinstance(status, str):
            raise TypeError("Evaluator status must be a string when provided.")

        normalized["timed_out"] = bool(normalized.get("timed_out", False))
        if normalized.get("elapsed_seconds") is not None:
            normalized["elapsed_seconds"] = float(normalized["elapsed_seconds"])
        else:
            normalized["elapsed_seconds"] = float(elapsed)

        if normalized.get("reason") is not None:
            normalized["reason"] = str(normalized["reason"])

        try:
            return EvaluationResult.model_validate(normalized)
        except ValidationError as exc:
            raise ValueError("Evaluator payload failed validation") from exc

    def _handle_invalid_metrics(
        self,
        normalized: MutableMapping[str, Any],
        *,
        elapsed: float,
        invalid_metrics: Iterable[str],
        nan_policy: GracefulNaNPolicy,
    ) -> EvaluationResult:
        invalid_list = list(invalid_metrics)
        if nan_policy is GracefulNaNPolicy.ERROR:
            raise ValueError(
                "Evaluator payload produced non-finite metrics: " + ", ".join(invalid_list)
            )
        existing_reason = normalized.get("reason")
        return self._fallback_payload(
            elapsed=elapsed,
            status="error",
            reason=(
                str(existing_reason)
                if existing_reason is not None
                else "invalid_metric:" + ",".join(sorted(invalid_list))
            ),
        )

    def _fallback_payload(
        self,
        *,
        elapsed: float,
        status: str,
        reason: str,
        timed_out: bool = False,
    ) -> EvaluationResult:
        return EvaluationResult(
            mean=float("nan"),
            std_error=0.0,
            status=status,
            reason=reason,
            timed_out=bool(timed_out),
            elapsed_seconds=float(elapsed),
        )


__all__ = [
    "BaseEvaluator",
    "EvaluationResult",
    "Evaluator",
    "EvaluatorInput",
    "GracefulNaNPolicy",
    "VALID_STATUSES",
    "normalize_result",
]
