"""Iterative hyperparameter search with Bayesian optimisation and simulated annealing."""

from .acquisition import Acquisition, Direction, TradeOff
from .results import Observation, SearchResult, SearchStatus
from .search import (
    AnnealingSettings,
    BayesSettings,
    IterativeSearch,
    StoppingRules,
    Strategy,
    run_search,
)
from .space import Configuration, ParameterSpace, ParameterSpec

__version__ = "0.1.0"

__all__ = [
    "Acquisition",
    "AnnealingSettings",
    "BayesSettings",
    "Configuration",
    "Direction",
    "IterativeSearch",
    "Observation",
    "ParameterSpace",
    "ParameterSpec",
    "SearchResult",
    "SearchStatus",
    "StoppingRules",
    "Strategy",
    "TradeOff",
    "run_search",
]
