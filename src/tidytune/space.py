"""Parameter space declarations and immutable configurations."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Sequence, Tuple

import numpy as np
from optuna.distributions import (
    BaseDistribution,
    CategoricalDistribution,
    FloatDistribution,
    IntDistribution,
)

from .errors import ConfigurationError, SpaceDeclarationError

ParamKind = Literal["float", "int", "categorical"]

_KINDS = ("float", "int", "categorical")


@dataclass(frozen=True)
class ParameterSpec:
    """
    One tunable parameter.

    Numeric parameters are bounded by ``low``/``high`` and may be searched on a
    log10 scale. Categorical parameters carry an ordered tuple of ``choices``.

    Every parameter maps onto the unit interval: numeric values are scaled
    after the optional log transform, categorical levels occupy equal-width
    bins.
    """

    name: str
    kind: ParamKind = "float"
    low: float | None = None
    high: float | None = None
    log: bool = False
    choices: Tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise SpaceDeclarationError("parameter names must be non-empty strings")
        if self.kind not in _KINDS:
            raise SpaceDeclarationError(
                f"parameter {self.name!r} has unsupported type {self.kind!r}"
            )
        if self.kind == "categorical":
            if not self.choices:
                raise SpaceDeclarationError(
                    f"categorical parameter {self.name!r} requires non-empty choices"
                )
            if len(set(self.choices)) != len(self.choices):
                raise SpaceDeclarationError(
                    f"categorical parameter {self.name!r} has duplicate choices"
                )
            if self.log:
                raise SpaceDeclarationError(
                    f"categorical parameter {self.name!r} cannot use a log transform"
                )
            return

        if self.low is None or self.high is None:
            raise SpaceDeclarationError(
                f"numeric parameter {self.name!r} requires low and high bounds"
            )
        if not (math.isfinite(float(self.low)) and math.isfinite(float(self.high))):
            raise SpaceDeclarationError(f"parameter {self.name!r} bounds must be finite")
        if float(self.low) >= float(self.high):
            raise SpaceDeclarationError(f"parameter {self.name!r} requires low < high")
        if self.log and float(self.low) <= 0:
            raise SpaceDeclarationError(
                f"log-scaled parameter {self.name!r} requires positive bounds"
            )
        if self.kind == "int" and math.ceil(float(self.low)) > math.floor(float(self.high)):
            raise SpaceDeclarationError(
                f"integer parameter {self.name!r} has no integer between its bounds"
            )

    # ------------------------------------------------------------------
    # Unit-interval mapping
    # ------------------------------------------------------------------
    @property
    def n_features(self) -> int:
        if self.kind == "categorical":
            assert self.choices is not None
            return len(self.choices)
        return 1

    def _transformed_bounds(self) -> Tuple[float, float]:
        lo, hi = float(self.low), float(self.high)  # type: ignore[arg-type]
        if self.log:
            return math.log10(lo), math.log10(hi)
        return lo, hi

    def from_unit(self, u: float) -> Any:
        """Decode a unit-interval coordinate into a parameter value."""

        u = min(1.0, max(0.0, float(u)))
        if self.kind == "categorical":
            assert self.choices is not None
            idx = min(int(u * len(self.choices)), len(self.choices) - 1)
            return self.choices[idx]

        a, b = self._transformed_bounds()
        x = a + u * (b - a)
        value = 10.0**x if self.log else x
        lo, hi = float(self.low), float(self.high)  # type: ignore[arg-type]
        if self.kind == "int":
            return int(min(math.floor(hi), max(math.ceil(lo), round(value))))
        return float(min(hi, max(lo, value)))

    def to_unit(self, value: Any) -> float:
        """Encode a parameter value onto the unit interval."""

        if self.kind == "categorical":
            assert self.choices is not None
            try:
                idx = self.choices.index(value)
            except ValueError:
                raise ConfigurationError(self.name, value, "is not a declared level") from None
            return (idx + 0.5) / len(self.choices)

        a, b = self._transformed_bounds()
        v = float(value)
        if self.log:
            if v <= 0:
                raise ConfigurationError(self.name, value, "must be positive on a log scale")
            v = math.log10(v)
        return (v - a) / (b - a)

    def features(self, value: Any) -> List[float]:
        """Numeric feature columns used for surrogate fitting and distances."""

        if self.kind == "categorical":
            assert self.choices is not None
            row = [0.0] * len(self.choices)
            row[self.choices.index(value)] = 1.0
            return row
        return [self.to_unit(value)]

    def check(self, value: Any) -> None:
        """Raise :class:`ConfigurationError` when ``value`` is outside the declaration."""

        if self.kind == "categorical":
            assert self.choices is not None
            if value not in self.choices:
                raise ConfigurationError(self.name, value, "is not a declared level")
            return
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise ConfigurationError(self.name, value, "must be numeric")
        v = float(value)
        if not math.isfinite(v):
            raise ConfigurationError(self.name, value, "must be finite")
        if self.kind == "int" and not float(v).is_integer():
            raise ConfigurationError(self.name, value, "must be an integer")
        if v < float(self.low) or v > float(self.high):  # type: ignore[arg-type]
            raise ConfigurationError(
                self.name, value, f"is outside [{self.low}, {self.high}]"
            )

    def to_distribution(self) -> BaseDistribution:
        """Equivalent optuna distribution (used by the study bridge)."""

        if self.kind == "categorical":
            assert self.choices is not None
            return CategoricalDistribution(list(self.choices))
        if self.kind == "int":
            return IntDistribution(
                int(math.ceil(float(self.low))),  # type: ignore[arg-type]
                int(math.floor(float(self.high))),  # type: ignore[arg-type]
                log=bool(self.log),
            )
        return FloatDistribution(float(self.low), float(self.high), log=bool(self.log))  # type: ignore[arg-type]

    @classmethod
    def from_mapping(cls, name: str, spec: Mapping[str, Any]) -> "ParameterSpec":
        kind = str(spec.get("type", "float")).lower().strip()
        choices_raw = spec.get("choices")
        choices = tuple(choices_raw) if choices_raw is not None else None
        low = spec.get("low")
        high = spec.get("high")
        return cls(
            name=str(name),
            kind=kind,  # type: ignore[arg-type]
            low=float(low) if low is not None else None,
            high=float(high) if high is not None else None,
            log=bool(spec.get("log", False) or False),
            choices=choices,
        )


@dataclass(frozen=True)
class Configuration:
    """An immutable, ordered assignment of values to parameter names."""

    values: Tuple[Tuple[str, Any], ...]

    def __getitem__(self, name: str) -> Any:
        for key, value in self.values:
            if key == name:
                return value
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.values)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self.values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)

    def __str__(self) -> str:
        return ", ".join(f"{key}={_format_value(value)}" for key, value in self.values)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


@dataclass(frozen=True)
class ParameterSpace:
    """Ordered collection of :class:`ParameterSpec` declarations."""

    params: Tuple[ParameterSpec, ...]

    def __post_init__(self) -> None:
        if not self.params:
            raise SpaceDeclarationError("parameter space must declare at least one parameter")
        names = [p.name for p in self.params]
        if len(set(names)) != len(names):
            raise SpaceDeclarationError(f"duplicate parameter names in space: {names!r}")

    @classmethod
    def from_dict(cls, space: Mapping[str, Mapping[str, Any]]) -> "ParameterSpace":
        """Build a space from the ``search_space`` section of a run configuration."""

        if not isinstance(space, Mapping) or not space:
            raise SpaceDeclarationError("search_space must define at least one parameter")
        specs: List[ParameterSpec] = []
        for name, spec in space.items():
            if not isinstance(spec, Mapping):
                raise SpaceDeclarationError(f"search_space.{name} must be a mapping")
            specs.append(ParameterSpec.from_mapping(name, spec))
        return cls(params=tuple(specs))

    @property
    def dim(self) -> int:
        return len(self.params)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.params)

    @property
    def n_features(self) -> int:
        return sum(p.n_features for p in self.params)

    def __getitem__(self, name: str) -> ParameterSpec:
        for spec in self.params:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def configuration(self, values: Mapping[str, Any]) -> Configuration:
        """Validate ``values`` and return them as an ordered :class:`Configuration`."""

        missing = [p.name for p in self.params if p.name not in values]
        if missing:
            raise KeyError(f"missing parameters: {', '.join(missing)}")
        extra = [name for name in values if name not in self.names]
        if extra:
            raise KeyError(f"unknown parameters: {', '.join(map(str, extra))}")
        config = Configuration(
            values=tuple((p.name, _normalise(p, values[p.name])) for p in self.params)
        )
        self.validate(config)
        return config

    def validate(self, config: Configuration) -> None:
        if config.names != self.names:
            raise ConfigurationError(
                ",".join(config.names), None, f"does not match space parameters {self.names!r}"
            )
        for spec in self.params:
            spec.check(config[spec.name])

    def contains(self, config: Configuration) -> bool:
        try:
            self.validate(config)
        except ConfigurationError:
            return False
        return True

    def encode(self, config: Configuration) -> np.ndarray:
        """Unit-cube coordinates, one per parameter."""

        return np.array([p.to_unit(config[p.name]) for p in self.params], dtype=float)

    def decode(self, unit: Sequence[float]) -> Configuration:
        if len(unit) != self.dim:
            raise ValueError(f"vector length {len(unit)} does not match space dim {self.dim}")
        return Configuration(
            values=tuple((p.name, p.from_unit(u)) for p, u in zip(self.params, unit))
        )

    def features(self, configs: Iterable[Configuration]) -> np.ndarray:
        """Feature matrix (one-hot for categoricals) with one row per configuration."""

        rows = [
            [value for p in self.params for value in p.features(config[p.name])]
            for config in configs
        ]
        if not rows:
            return np.empty((0, self.n_features), dtype=float)
        return np.asarray(rows, dtype=float)

    def distributions(self) -> Dict[str, BaseDistribution]:
        return {p.name: p.to_distribution() for p in self.params}


def _normalise(spec: ParameterSpec, value: Any) -> Any:
    if spec.kind == "int" and isinstance(value, (float, np.floating)) and float(value).is_integer():
        return int(value)
    if spec.kind == "int" and isinstance(value, np.integer):
        return int(value)
    if spec.kind == "float" and isinstance(value, (int, np.integer, np.floating)) and not isinstance(value, bool):
        return float(value)
    return value


__all__ = ["Configuration", "ParameterSpace", "ParameterSpec", "ParamKind"]
