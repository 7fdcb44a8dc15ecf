"""Candidate generation: space-filling designs, grids and annealing neighbourhoods."""
from __future__ import annotations

import itertools
import logging
import math
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import numpy as np
from scipy.stats import qmc

from .errors import ConfigurationError
from .space import Configuration, ParameterSpace

logger = logging.getLogger(__name__)

#: Unit-cube feature distance under which two configurations count as the same point.
DEFAULT_TOLERANCE = 1e-8


def regular_grid(
    space: ParameterSpace,
    levels: int | Mapping[str, int] = 3,
) -> List[Configuration]:
    """Full factorial grid over the space.

    Numeric parameters receive ``levels`` equally spaced values on their
    (possibly log) scale, categorical parameters contribute every level.
    Duplicates created by integer rounding are removed, keeping grid order.
    """

    axes: List[List[Any]] = []
    for spec in space.params:
        if spec.kind == "categorical":
            assert spec.choices is not None
            axes.append(list(spec.choices))
            continue
        n = levels.get(spec.name, 3) if isinstance(levels, Mapping) else int(levels)
        if n < 1:
            raise ValueError(f"grid levels for {spec.name!r} must be positive")
        points = [0.5] if n == 1 else np.linspace(0.0, 1.0, n).tolist()
        values: List[Any] = []
        for u in points:
            value = spec.from_unit(u)
            if value not in values:
                values.append(value)
        axes.append(values)

    grid: List[Configuration] = []
    seen: set[Configuration] = set()
    for combo in itertools.product(*axes):
        config = space.configuration(dict(zip(space.names, combo)))
        if config not in seen:
            seen.add(config)
            grid.append(config)
    return grid


def distinct_mask(
    space: ParameterSpace,
    candidates: Sequence[Configuration],
    observed: Sequence[Configuration],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> np.ndarray:
    """Boolean mask of candidates that are not indistinguishable from ``observed``."""

    if not candidates:
        return np.zeros(0, dtype=bool)
    if not observed:
        return np.ones(len(candidates), dtype=bool)
    cand = space.features(candidates)
    obs = space.features(observed)
    # squared distances, shape (n_candidates, n_observed)
    d2 = ((cand[:, None, :] - obs[None, :, :]) ** 2).sum(axis=2)
    return d2.min(axis=1) > tolerance**2


class CandidateGenerator:
    """Produce new configurations for the search loop.

    All randomness flows through the single ``numpy`` generator supplied by the
    orchestrator, so a fixed seed reproduces the proposal sequence.
    """

    def __init__(
        self,
        space: ParameterSpace,
        rng: np.random.Generator,
        *,
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> None:
        self.space = space
        self.rng = rng
        self.tolerance = float(tolerance)
        self._numeric = np.array(
            [spec.kind != "categorical" for spec in space.params], dtype=bool
        )

    # ------------------------------------------------------------------
    # Space-filling designs
    # ------------------------------------------------------------------
    def _latin_hypercube(self, size: int) -> np.ndarray:
        sampler = qmc.LatinHypercube(d=self.space.dim, rng=self.rng)
        return sampler.random(n=int(size))

    def _decode_valid(self, units: np.ndarray) -> List[Configuration]:
        configs: List[Configuration] = []
        for row in units:
            config = self.space.decode(row)
            try:
                self.space.validate(config)
            except ConfigurationError as exc:
                logger.debug("Discarding invalid candidate: %s", exc)
                continue
            configs.append(config)
        return configs

    def initial_design(self, size: int) -> List[Configuration]:
        """Latin-hypercube design of ``size`` distinct configurations."""

        if size <= 0:
            raise ValueError("initial design size must be positive")
        design: List[Configuration] = []
        attempts = 0
        while len(design) < size and attempts < 5:
            attempts += 1
            for config in self._decode_valid(self._latin_hypercube(size)):
                if config in design:
                    continue
                if distinct_mask(self.space, [config], design, tolerance=self.tolerance)[0]:
                    design.append(config)
                if len(design) >= size:
                    break
        if len(design) < size:
            logger.info(
                "Space admits only %d distinct initial configurations (requested %d)",
                len(design),
                size,
            )
        return design

    def candidate_pool(
        self,
        size: int,
        exclude: Sequence[Configuration] = (),
    ) -> List[Configuration]:
        """Space-filling pool with already-observed points removed."""

        pool = self._decode_valid(self._latin_hypercube(size))
        mask = distinct_mask(self.space, pool, exclude, tolerance=self.tolerance)
        return [config for config, keep in zip(pool, mask) if keep]

    def space_filling(self, exclude: Sequence[Configuration] = ()) -> Configuration:
        """Single space-filling proposal used when the surrogate is unavailable."""

        for _ in range(10):
            pool = self.candidate_pool(max(16, 4 * self.space.dim), exclude)
            if pool:
                return pool[0]
        return self._decode_valid(self._latin_hypercube(1))[0]

    # ------------------------------------------------------------------
    # Simulated annealing neighbourhood
    # ------------------------------------------------------------------
    def neighbour(
        self,
        config: Configuration,
        exclude: Sequence[Configuration] = (),
        *,
        radius: Tuple[float, float] = (0.05, 0.15),
        flip: float = 0.1,
        n_candidates: int = 500,
    ) -> Configuration:
        """Random neighbour of ``config`` within a unit-cube radius.

        Numeric coordinates move along a random direction by a radius drawn
        from ``radius``; categorical levels switch with probability ``flip``.
        When every candidate was already observed the shell is widened, then a
        single integer coordinate is stepped by one unit; only when both fail
        is an observed configuration returned.
        """

        origin = self.space.encode(config)
        inside = self._shell_points(origin, radius, n_candidates)
        if inside.shape[0] == 0:
            inside = self._shell_points(origin, radius, n_candidates)
        if inside.shape[0] == 0:
            logger.debug("No in-bounds neighbours around %s; using midpoint", config)
            return self._midpoint(origin)

        candidates = self._decode_valid(self._flip_levels(inside, flip))
        if not candidates:
            return self._midpoint(origin)
        fallback = candidates[0]

        # Integer rounding can collapse a narrow shell onto observed points;
        # widen until the shell spans the cube diagonal.
        lo, hi = float(min(radius)), float(max(radius))
        reach = max(1.0, math.sqrt(float(self._numeric.sum())))
        scale = 1.0
        for _ in range(8):
            mask = distinct_mask(self.space, candidates, exclude, tolerance=self.tolerance)
            for candidate, keep in zip(candidates, mask):
                if keep:
                    return candidate
            if hi * scale >= reach:
                break
            scale *= 2.0
            wider = self._shell_points(origin, (lo * scale, hi * scale), n_candidates)
            candidates = self._decode_valid(self._flip_levels(wider, max(flip, 0.5)))

        stepped = self._integer_step(config, exclude)
        if stepped is not None:
            return stepped
        logger.debug("Every neighbour of %s was already observed", config)
        return fallback

    def _integer_step(
        self,
        config: Configuration,
        exclude: Sequence[Configuration],
    ) -> Configuration | None:
        """Move a single integer coordinate by one unit onto an unobserved point."""

        options: List[Configuration] = []
        for spec in self.space.params:
            if spec.kind != "int":
                continue
            for step in (-1, 1):
                moved = int(config[spec.name]) + step
                if not (float(spec.low) <= moved <= float(spec.high)):  # type: ignore[arg-type]
                    continue
                values = config.as_dict()
                values[spec.name] = moved
                options.append(self.space.configuration(values))
        if not options:
            return None
        mask = distinct_mask(self.space, options, exclude, tolerance=self.tolerance)
        for idx in self.rng.permutation(len(options)):
            if mask[idx]:
                return options[idx]
        return None

    def _shell_points(
        self,
        origin: np.ndarray,
        radius: Tuple[float, float],
        n: int,
    ) -> np.ndarray:
        points = np.repeat(origin[None, :], n, axis=0)
        n_numeric = int(self._numeric.sum())
        if n_numeric == 0:
            return points
        direction = self.rng.normal(size=(n, n_numeric))
        norms = np.linalg.norm(direction, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        lo, hi = float(min(radius)), float(max(radius))
        r = self.rng.uniform(lo, hi, size=(n, 1))
        points[:, self._numeric] = origin[self._numeric] + direction / norms * r
        numeric = points[:, self._numeric]
        keep = np.all((numeric >= 0.0) & (numeric <= 1.0), axis=1)
        return points[keep]

    def _flip_levels(self, points: np.ndarray, flip: float) -> np.ndarray:
        out = points.copy()
        for j, spec in enumerate(self.space.params):
            if spec.kind != "categorical":
                continue
            assert spec.choices is not None
            n_levels = len(spec.choices)
            if n_levels < 2:
                continue
            draws = self.rng.uniform(size=out.shape[0])
            offsets = self.rng.integers(1, n_levels, size=out.shape[0])
            current = np.minimum((out[:, j] * n_levels).astype(int), n_levels - 1)
            flipped = (current + offsets) % n_levels
            new_level = np.where(draws < flip, flipped, current)
            out[:, j] = (new_level + 0.5) / n_levels
        return out

    def _midpoint(self, origin: np.ndarray) -> Configuration:
        mid = origin.copy()
        mid[self._numeric] = (origin[self._numeric] + 0.5) / 2.0
        return self.space.decode(mid)


def levels_from_mapping(value: Any) -> int | Dict[str, int]:
    """Normalise a YAML ``grid`` entry into levels for :func:`regular_grid`."""

    if isinstance(value, Mapping):
        return {str(name): int(n) for name, n in value.items()}
    return int(value)


__all__ = [
    "CandidateGenerator",
    "DEFAULT_TOLERANCE",
    "distinct_mask",
    "levels_from_mapping",
    "regular_grid",
]
