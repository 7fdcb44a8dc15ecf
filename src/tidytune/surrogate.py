"""Gaussian-process surrogate of performance as a function of configuration.

The process uses a squared-exponential kernel over unit-cube features and a
diagonal noise term built from each observation's resampling standard error.
Every refit factorises the dense ``n x n`` covariance matrix, so the cost grows
cubically with the number of observations; the surrogate is meant for searches
of at most a few hundred evaluations.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy import linalg, optimize

from .errors import SurrogateFitFailure
from .space import Configuration, ParameterSpace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GpConfig:
    jitter: float = 1e-8
    max_jitter: float = 1e-2
    length_scale_bounds: Tuple[float, float] = (1e-2, 1e1)
    signal_variance_bounds: Tuple[float, float] = (1e-2, 1e2)
    length_scale_starts: Tuple[float, ...] = (0.1, 0.3, 1.0)


@dataclass(frozen=True)
class SurrogateModel:
    """Fitted Gaussian process; immutable, replaced on every refit."""

    X: np.ndarray
    y_mean: float
    y_scale: float
    length_scale: float
    signal_variance: float
    noise: np.ndarray
    chol: np.ndarray
    alpha: np.ndarray
    jitter: float
    log_marginal_likelihood: float

    @property
    def n_observations(self) -> int:
        return int(self.X.shape[0])


def squared_exponential(
    A: np.ndarray,
    B: np.ndarray,
    *,
    length_scale: float,
    signal_variance: float,
) -> np.ndarray:
    d2 = (
        np.sum(A * A, axis=1)[:, None]
        + np.sum(B * B, axis=1)[None, :]
        - 2.0 * A @ B.T
    )
    np.maximum(d2, 0.0, out=d2)
    return signal_variance * np.exp(-0.5 * d2 / (length_scale**2))


class GaussianProcessSurrogate:
    """Fit and query the Gaussian-process surrogate for one parameter space."""

    def __init__(self, space: ParameterSpace, cfg: GpConfig | None = None) -> None:
        self.space = space
        self.cfg = cfg or GpConfig()

    def fit(
        self,
        configurations: Sequence[Configuration],
        means: Sequence[float],
        std_errors: Sequence[float] | None = None,
    ) -> SurrogateModel:
        if len(configurations) != len(means):
            raise ValueError("configurations and means must have the same length")
        if len(configurations) == 0:
            raise SurrogateFitFailure("need at least one observation to fit the surrogate")

        X = self.space.features(configurations)
        y = np.asarray(means, dtype=float)
        if not np.all(np.isfinite(y)):
            raise SurrogateFitFailure("observed performance values must be finite")
        se = (
            np.zeros_like(y)
            if std_errors is None
            else np.nan_to_num(np.asarray(std_errors, dtype=float), nan=0.0)
        )

        y_mean = float(y.mean())
        y_scale = float(y.std())
        if not math.isfinite(y_scale) or y_scale < 1e-12:
            y_scale = 1.0
        z = (y - y_mean) / y_scale
        noise = (np.abs(se) / y_scale) ** 2

        length_scale, signal_variance = self._optimise_hyperparameters(X, z, noise)
        chol, jitter = self._factorise(X, noise, length_scale, signal_variance)
        alpha = linalg.cho_solve((chol, True), z)
        lml = float(
            -0.5 * z @ alpha
            - np.log(np.diag(chol)).sum()
            - 0.5 * len(z) * math.log(2.0 * math.pi)
        )
        if not (np.all(np.isfinite(alpha)) and math.isfinite(lml)):
            raise SurrogateFitFailure("Gaussian process solve produced non-finite values")

        logger.debug(
            "GP fit on %d observations: length_scale=%.4g signal_variance=%.4g jitter=%.1e",
            len(z),
            length_scale,
            signal_variance,
            jitter,
        )
        return SurrogateModel(
            X=X,
            y_mean=y_mean,
            y_scale=y_scale,
            length_scale=length_scale,
            signal_variance=signal_variance,
            noise=noise,
            chol=chol,
            alpha=alpha,
            jitter=jitter,
            log_marginal_likelihood=lml,
        )

    def predict(
        self,
        model: SurrogateModel,
        candidates: Sequence[Configuration],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Predicted mean and variance of the latent performance for each candidate."""

        if len(candidates) == 0:
            return np.empty(0), np.empty(0)
        Xs = self.space.features(candidates)
        Ks = squared_exponential(
            Xs,
            model.X,
            length_scale=model.length_scale,
            signal_variance=model.signal_variance,
        )
        mean_z = Ks @ model.alpha
        v = linalg.solve_triangular(model.chol, Ks.T, lower=True, check_finite=False)
        var_z = model.signal_variance - np.sum(v * v, axis=0)
        var_z = np.maximum(var_z, 0.0)
        mean = model.y_mean + model.y_scale * mean_z
        variance = var_z * model.y_scale**2
        if not (np.all(np.isfinite(mean)) and np.all(np.isfinite(variance))):
            raise SurrogateFitFailure("Gaussian process prediction is not finite")
        return mean, variance

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _covariance(
        self,
        X: np.ndarray,
        noise: np.ndarray,
        length_scale: float,
        signal_variance: float,
        jitter: float,
    ) -> np.ndarray:
        K = squared_exponential(
            X, X, length_scale=length_scale, signal_variance=signal_variance
        )
        K[np.diag_indices_from(K)] += noise + jitter
        return K

    def _negative_log_likelihood(
        self,
        theta: np.ndarray,
        X: np.ndarray,
        z: np.ndarray,
        noise: np.ndarray,
    ) -> float:
        length_scale, signal_variance = float(np.exp(theta[0])), float(np.exp(theta[1]))
        K = self._covariance(X, noise, length_scale, signal_variance, self.cfg.jitter)
        try:
            chol = np.linalg.cholesky(K)
        except np.linalg.LinAlgError:
            return 1e25
        alpha = linalg.cho_solve((chol, True), z)
        value = 0.5 * z @ alpha + np.log(np.diag(chol)).sum()
        return float(value) if math.isfinite(value) else 1e25

    def _optimise_hyperparameters(
        self,
        X: np.ndarray,
        z: np.ndarray,
        noise: np.ndarray,
    ) -> Tuple[float, float]:
        ls_lo, ls_hi = self.cfg.length_scale_bounds
        sv_lo, sv_hi = self.cfg.signal_variance_bounds
        bounds = [(math.log(ls_lo), math.log(ls_hi)), (math.log(sv_lo), math.log(sv_hi))]

        if len(z) < 2:
            return float(self.cfg.length_scale_starts[-1]), 1.0

        best_theta: np.ndarray | None = None
        best_value = math.inf
        for start in self.cfg.length_scale_starts:
            x0 = np.array([math.log(start), 0.0])
            result = optimize.minimize(
                self._negative_log_likelihood,
                x0,
                args=(X, z, noise),
                method="L-BFGS-B",
                bounds=bounds,
            )
            if math.isfinite(result.fun) and result.fun < best_value:
                best_value = float(result.fun)
                best_theta = np.asarray(result.x, dtype=float)

        if best_theta is None or best_value >= 1e25:
            raise SurrogateFitFailure("marginal likelihood optimisation did not converge")
        return float(np.exp(best_theta[0])), float(np.exp(best_theta[1]))

    def _factorise(
        self,
        X: np.ndarray,
        noise: np.ndarray,
        length_scale: float,
        signal_variance: float,
    ) -> Tuple[np.ndarray, float]:
        jitter = self.cfg.jitter
        while jitter <= self.cfg.max_jitter:
            K = self._covariance(X, noise, length_scale, signal_variance, jitter)
            try:
                return np.linalg.cholesky(K), jitter
            except np.linalg.LinAlgError:
                jitter *= 10.0
        raise SurrogateFitFailure(
            f"covariance matrix is ill-conditioned (jitter > {self.cfg.max_jitter:g})"
        )


def fit(
    space: ParameterSpace,
    configurations: Sequence[Configuration],
    means: Sequence[float],
    std_errors: Sequence[float] | None = None,
    *,
    cfg: GpConfig | None = None,
) -> SurrogateModel:
    return GaussianProcessSurrogate(space, cfg).fit(configurations, means, std_errors)


def predict(
    space: ParameterSpace,
    model: SurrogateModel,
    candidates: Sequence[Configuration],
) -> list[Tuple[float, float]]:
    mean, variance = GaussianProcessSurrogate(space).predict(model, candidates)
    return [(float(m), float(v)) for m, v in zip(mean, variance)]


__all__ = [
    "GaussianProcessSurrogate",
    "GpConfig",
    "SurrogateModel",
    "fit",
    "predict",
    "squared_exponential",
]
