"""Exception hierarchy shared across the search components."""
from __future__ import annotations


class TidyTuneError(Exception):
    """Base class for all errors raised by tidytune."""


class SpaceDeclarationError(TidyTuneError, ValueError):
    """The parameter space declaration is empty or contradictory."""


class ConfigurationError(TidyTuneError, ValueError):
    """A configuration violates the declared bounds or level sets."""

    def __init__(self, name: str, value: object, reason: str) -> None:
        super().__init__(f"parameter {name!r} value {value!r} {reason}")
        self.name = name
        self.value = value
        self.reason = reason


class EvaluationFailure(TidyTuneError):
    """The performance evaluator could not produce a result."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or message


class SurrogateFitFailure(TidyTuneError):
    """The Gaussian process could not be fitted to the observations."""


class InitialDesignError(TidyTuneError):
    """No usable observation was produced by the initial design."""


__all__ = [
    "ConfigurationError",
    "EvaluationFailure",
    "InitialDesignError",
    "SpaceDeclarationError",
    "SurrogateFitFailure",
    "TidyTuneError",
]
