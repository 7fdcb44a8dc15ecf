"""Iterative search orchestrator for Bayesian optimisation and simulated annealing.

The loop owns a single :class:`SearchState` value. Every iteration builds a
new state with :func:`dataclasses.replace`, so observers only ever see
complete states. Proposals, evaluation and bookkeeping run on one thread;
interruption is checked at the top of every iteration, and a
``KeyboardInterrupt`` raised during an evaluation discards that evaluation.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, List, Mapping, Protocol, Sequence, Tuple, Union

import numpy as np
import optuna

from . import acquisition
from .acquisition import Acquisition, Direction, TradeOff
from .annealing import AcceptanceController, Decision
from .design import DEFAULT_TOLERANCE, CandidateGenerator
from .errors import (
    ConfigurationError,
    EvaluationFailure,
    InitialDesignError,
    SurrogateFitFailure,
)
from .evaluators.base import EvaluationResult, normalize_result
from .progress import ProgressRecord, ProgressSink, emit_all
from .results import Observation, SearchResult, SearchStatus
from .space import Configuration, ParameterSpace
from .study_bridge import observations_from_study, study_direction
from .surrogate import GaussianProcessSurrogate, GpConfig

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    BAYES = "bayes"
    ANNEALING = "annealing"


class SupportsIsSet(Protocol):
    def is_set(self) -> bool: ...


InitialDesign = Union[
    int,
    Sequence[Union[Configuration, Mapping[str, Any]]],
    SearchResult,
    optuna.study.Study,
]


@dataclass(frozen=True)
class BayesSettings:
    acquisition: Acquisition = Acquisition.EXPECTED_IMPROVEMENT
    trade_off: TradeOff = field(default_factory=TradeOff)
    kappa: float = 0.1
    pool_size: int = 5000
    # uncertainty sampling every ``uncertain`` non-improving iterations; None disables it
    uncertain: int | None = None
    gp: GpConfig = field(default_factory=GpConfig)


@dataclass(frozen=True)
class AnnealingSettings:
    coefficient: float = 0.02
    restart: int | None = 8
    radius: Tuple[float, float] = (0.05, 0.15)
    flip: float = 0.1
    n_candidates: int = 500


@dataclass(frozen=True)
class StoppingRules:
    n_iter: int = 10
    no_improve: int | None = 10
    max_failures: int | None = 5
    time_limit_minutes: float | None = None

    def __post_init__(self) -> None:
        if self.n_iter < 0:
            raise ValueError("n_iter must be non-negative")
        if self.no_improve is not None and self.no_improve < 1:
            raise ValueError("no_improve must be a positive integer")
        if self.max_failures is not None and self.max_failures < 1:
            raise ValueError("max_failures must be a positive integer")
        if self.time_limit_minutes is not None and self.time_limit_minutes <= 0:
            raise ValueError("time_limit_minutes must be positive")


@dataclass(frozen=True)
class SearchState:
    """Snapshot of the search between iterations."""

    history: Tuple[Observation, ...] = ()
    best: Observation | None = None
    current: Observation | None = None
    no_improve: int = 0
    restarts: int = 0
    consecutive_failures: int = 0
    failures: int = 0
    iteration: int = 0
    status: SearchStatus = SearchStatus.INITIALIZING

    @property
    def configurations(self) -> List[Configuration]:
        return [observation.configuration for observation in self.history]


def record_observation(
    state: SearchState,
    observation: Observation,
    direction: Direction,
) -> Tuple[SearchState, bool]:
    """Append ``observation`` and move ``best`` on strict improvement only."""

    best_mean = state.best.mean if state.best is not None else None
    improved = direction.better(observation.mean, best_mean)
    return (
        replace(
            state,
            history=state.history + (observation,),
            best=observation if improved else state.best,
        ),
        improved,
    )


@dataclass(frozen=True)
class _Proposal:
    configuration: Configuration
    mode: str
    acquisition: float | None = None


class IterativeSearch:
    """Drive one search from its initial design to a stopping state."""

    def __init__(
        self,
        space: ParameterSpace,
        evaluator: Callable[..., Any],
        *,
        strategy: Strategy | str = Strategy.BAYES,
        direction: Direction | str = Direction.MAXIMIZE,
        initial: InitialDesign = 5,
        stopping: StoppingRules | None = None,
        bayes: BayesSettings | None = None,
        annealing: AnnealingSettings | None = None,
        seed: int | None = None,
        sinks: Sequence[ProgressSink] = (),
        tolerance: float = DEFAULT_TOLERANCE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.space = space
        self.evaluator = evaluator
        self.strategy = Strategy(strategy)
        self.direction = Direction(direction)
        self.initial = initial
        self.stopping = stopping or StoppingRules()
        self.bayes = bayes or BayesSettings()
        self.annealing = annealing or AnnealingSettings()
        self.seed = seed
        self.sinks = list(sinks)
        self.clock = clock

        self.rng = np.random.default_rng(seed)
        self.generator = CandidateGenerator(space, self.rng, tolerance=tolerance)
        self.surrogate = GaussianProcessSurrogate(space, self.bayes.gp)
        self.controller = AcceptanceController(
            self.direction,
            self.rng,
            coefficient=self.annealing.coefficient,
            restart=self.annealing.restart,
        )
        self._records: List[ProgressRecord] = []
        self._evaluations = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self, interrupt: SupportsIsSet | None = None) -> SearchResult:
        started = self.clock()
        logger.info(
            "Starting %s search over %d parameter(s) (%s, n_iter=%d)",
            self.strategy.value,
            self.space.dim,
            self.direction.value,
            self.stopping.n_iter,
        )

        state, interrupted = self._initialize(interrupt)
        if interrupted:
            logger.info("Search interrupted during the initial design")
            return self._result(replace(state, status=SearchStatus.STOPPED_INTERRUPTED), "interrupted")
        if state.best is None:
            raise InitialDesignError(
                f"no successful initial evaluation ({state.failures} failure(s))"
            )
        state = replace(
            state,
            status=SearchStatus.ITERATING,
            current=state.best,
            consecutive_failures=0,
        )

        status = SearchStatus.STOPPED_BUDGET
        reason: str | None = "n_iter"
        for iteration in range(1, self.stopping.n_iter + 1):
            if interrupt is not None and interrupt.is_set():
                status, reason = SearchStatus.STOPPED_INTERRUPTED, "interrupted"
                break
            if self._out_of_time(started):
                status, reason = SearchStatus.STOPPED_BUDGET, "time_limit"
                break

            try:
                proposal = self._propose(state, iteration)
                result = self._evaluate(proposal.configuration)
            except KeyboardInterrupt:
                logger.info("Search interrupted during iteration %d", iteration)
                status, reason = SearchStatus.STOPPED_INTERRUPTED, "interrupted"
                break
            except EvaluationFailure as exc:
                state = replace(
                    state,
                    iteration=iteration,
                    consecutive_failures=state.consecutive_failures + 1,
                    failures=state.failures + 1,
                )
                logger.warning("Evaluation failed at iteration %d: %s", iteration, exc)
                self._emit(
                    ProgressRecord(
                        iteration=iteration,
                        configuration=proposal.configuration,
                        decision=Decision.FAILED,
                        best_mean=_mean_of(state.best),
                        mode=proposal.mode,
                        acquisition=proposal.acquisition,
                        reason=exc.reason or str(exc),
                    )
                )
                limit = self.stopping.max_failures
                if limit is not None and state.consecutive_failures >= limit:
                    status, reason = SearchStatus.STOPPED_NO_IMPROVEMENT, "consecutive_failures"
                    break
                continue

            observation = Observation(
                configuration=proposal.configuration,
                mean=result.mean,
                std_error=result.std_error,
                iteration=iteration,
                source=proposal.mode,
            )
            state = self._advance(state, observation, proposal, iteration)

            limit = self.stopping.no_improve
            if limit is not None and state.no_improve >= limit:
                status, reason = SearchStatus.STOPPED_NO_IMPROVEMENT, "no_improve"
                break

        logger.info(
            "Search stopped (%s, %s) after %d iteration(s); best mean %s",
            status.value,
            reason,
            state.iteration,
            _mean_of(state.best),
        )
        return self._result(replace(state, status=status), reason)

    def _result(self, state: SearchState, reason: str | None) -> SearchResult:
        return SearchResult(
            space=self.space,
            direction=self.direction,
            history=state.history,
            best=state.best,
            status=state.status,
            stop_reason=reason,
            iterations_completed=state.iteration,
            restarts=state.restarts,
            failures=state.failures,
            records=tuple(self._records),
            strategy=self.strategy.value,
            seed=self.seed,
        )

    # ------------------------------------------------------------------
    # Initial design
    # ------------------------------------------------------------------
    def _initialize(self, interrupt: SupportsIsSet | None) -> Tuple[SearchState, bool]:
        """Evaluate or ingest the initial design; the flag reports an interruption."""

        state = SearchState()
        initial = self.initial

        if isinstance(initial, SearchResult):
            return self._ingest(state, initial.history, Direction(initial.direction)), False
        if isinstance(initial, optuna.study.Study):
            prior = observations_from_study(initial, self.space)
            return self._ingest(state, prior, study_direction(initial)), False

        if isinstance(initial, (bool, float)):
            raise InitialDesignError("initial design size must be an integer")
        if isinstance(initial, int):
            if initial < 1:
                raise InitialDesignError("initial design size must be positive")
            configs = self.generator.initial_design(initial)
        else:
            configs = self._explicit_design(initial)

        for config in configs:
            if interrupt is not None and interrupt.is_set():
                return state, True
            try:
                state = self._evaluate_initial(state, config)
            except KeyboardInterrupt:
                return state, True
        return state, False

    def _explicit_design(
        self,
        initial: Sequence[Configuration | Mapping[str, Any]],
    ) -> List[Configuration]:
        configs: List[Configuration] = []
        for entry in initial:
            values = entry.as_dict() if isinstance(entry, Configuration) else entry
            try:
                configs.append(self.space.configuration(values))
            except (KeyError, ConfigurationError) as exc:
                raise InitialDesignError(f"invalid initial configuration {dict(values)!r}: {exc}") from exc
        if not configs:
            raise InitialDesignError("initial design is empty")
        return configs

    def _ingest(
        self,
        state: SearchState,
        observations: Sequence[Observation],
        direction: Direction,
    ) -> SearchState:
        if direction is not self.direction:
            raise InitialDesignError(
                f"prior results were optimised for {direction.value}, not {self.direction.value}"
            )
        for prior in observations:
            try:
                config = self.space.configuration(prior.configuration.as_dict())
            except (KeyError, ConfigurationError) as exc:
                raise InitialDesignError(f"prior results do not match the parameter space: {exc}") from exc
            observation = Observation(
                configuration=config,
                mean=prior.mean,
                std_error=prior.std_error,
                iteration=0,
                source="prior",
            )
            state, _ = record_observation(state, observation, self.direction)
            self._emit(self._initial_record(state, observation))
        return state

    def _evaluate_initial(self, state: SearchState, config: Configuration) -> SearchState:
        try:
            result = self._evaluate(config)
        except EvaluationFailure as exc:
            logger.warning("Initial evaluation failed for %s: %s", config, exc)
            self._emit(
                ProgressRecord(
                    iteration=0,
                    configuration=config,
                    decision=Decision.FAILED,
                    best_mean=_mean_of(state.best),
                    reason=exc.reason or str(exc),
                )
            )
            return replace(state, failures=state.failures + 1)
        observation = Observation(
            configuration=config,
            mean=result.mean,
            std_error=result.std_error,
            iteration=0,
            source="initial",
        )
        state, _ = record_observation(state, observation, self.direction)
        self._emit(self._initial_record(state, observation))
        return state

    def _initial_record(self, state: SearchState, observation: Observation) -> ProgressRecord:
        return ProgressRecord(
            iteration=0,
            configuration=observation.configuration,
            decision=Decision.INITIAL,
            mean=observation.mean,
            std_error=observation.std_error,
            best_mean=_mean_of(state.best),
            mode=observation.source,
        )

    # ------------------------------------------------------------------
    # Iterations
    # ------------------------------------------------------------------
    def _propose(self, state: SearchState, iteration: int) -> _Proposal:
        if self.strategy is Strategy.ANNEALING:
            origin = state.current or state.best
            assert origin is not None
            config = self.generator.neighbour(
                origin.configuration,
                state.configurations,
                radius=self.annealing.radius,
                flip=self.annealing.flip,
                n_candidates=self.annealing.n_candidates,
            )
            return _Proposal(config, "annealing")
        return self._propose_bayes(state, iteration)

    def _propose_bayes(self, state: SearchState, iteration: int) -> _Proposal:
        assert state.best is not None
        observed = state.configurations
        pool = self.generator.candidate_pool(self.bayes.pool_size, observed)
        if not pool:
            logger.info("Candidate pool is empty at iteration %d; using a space-filling point", iteration)
            return _Proposal(self.generator.space_filling(observed), "fallback")

        try:
            model = self.surrogate.fit(
                observed,
                [o.mean for o in state.history],
                [o.std_error for o in state.history],
            )
            mean, variance = self.surrogate.predict(model, pool)
        except SurrogateFitFailure as exc:
            logger.warning(
                "Surrogate fit failed at iteration %d (%s); using a space-filling candidate",
                iteration,
                exc,
            )
            return _Proposal(self.generator.space_filling(observed), "fallback")

        uncertain = self.bayes.uncertain
        explore = (
            uncertain is not None
            and uncertain > 0
            and state.no_improve > 0
            and state.no_improve % uncertain == 0
        )
        kind = Acquisition.UNCERTAINTY if explore else self.bayes.acquisition
        scores = acquisition.score(
            mean,
            variance,
            state.best.mean,
            self.direction,
            kind=kind,
            trade_off=self.bayes.trade_off.at(iteration),
            kappa=self.bayes.kappa,
        )
        index = acquisition.select(scores)
        return _Proposal(pool[index], "uncertainty" if explore else "bayes", float(scores[index]))

    def _advance(
        self,
        state: SearchState,
        observation: Observation,
        proposal: _Proposal,
        iteration: int,
    ) -> SearchState:
        previous_best = state.best
        current = state.current or previous_best
        assert previous_best is not None and current is not None

        state, improved = record_observation(state, observation, self.direction)
        no_improve = 0 if improved else state.no_improve + 1

        if self.strategy is Strategy.ANNEALING:
            decision = self.controller.decide(
                observation.mean,
                best=previous_best.mean,
                current=current.mean,
                iteration=iteration,
            )
            next_current = observation if decision.accepted else current
        else:
            decision = Decision.NEW_BEST if improved else Decision.NO_IMPROVEMENT
            next_current = observation

        state = replace(
            state,
            current=next_current,
            no_improve=no_improve,
            consecutive_failures=0,
            iteration=iteration,
        )
        self._emit(
            ProgressRecord(
                iteration=iteration,
                configuration=observation.configuration,
                decision=decision,
                mean=observation.mean,
                std_error=observation.std_error,
                best_mean=_mean_of(state.best),
                mode=proposal.mode,
                acquisition=proposal.acquisition,
            )
        )

        if (
            self.strategy is Strategy.ANNEALING
            and not improved
            and self.controller.should_restart(no_improve)
        ):
            state = replace(state, current=state.best, restarts=state.restarts + 1)
            assert state.best is not None
            logger.debug("Restarting from the best configuration at iteration %d", iteration)
            self._emit(
                ProgressRecord(
                    iteration=iteration,
                    configuration=state.best.configuration,
                    decision=Decision.RESTART,
                    mean=state.best.mean,
                    std_error=state.best.std_error,
                    best_mean=state.best.mean,
                    mode="annealing",
                )
            )
        return state

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _evaluate(self, config: Configuration) -> EvaluationResult:
        self.space.validate(config)
        seed = None if self.seed is None else self.seed + self._evaluations
        self._evaluations += 1
        try:
            raw = self.evaluator(config.as_dict(), seed)
        except EvaluationFailure:
            raise
        except Exception as exc:  # noqa: BLE001 - evaluator faults are per-iteration failures
            raise EvaluationFailure(
                f"{exc.__class__.__name__}: {exc}",
                reason=f"exception:{exc.__class__.__name__}",
            ) from exc
        return normalize_result(raw)

    def _emit(self, record: ProgressRecord) -> None:
        self._records.append(record)
        emit_all(self.sinks, record)

    def _out_of_time(self, started: float) -> bool:
        limit = self.stopping.time_limit_minutes
        if limit is None:
            return False
        return (self.clock() - started) / 60.0 >= float(limit)


def _mean_of(observation: Observation | None) -> float | None:
    return observation.mean if observation is not None else None


def run_search(
    space: ParameterSpace,
    evaluator: Callable[..., Any],
    *,
    interrupt: SupportsIsSet | None = None,
    **options: Any,
) -> SearchResult:
    """Build an :class:`IterativeSearch` from ``options`` and run it."""

    return IterativeSearch(space, evaluator, **options).run(interrupt)


__all__ = [
    "AnnealingSettings",
    "BayesSettings",
    "InitialDesign",
    "IterativeSearch",
    "SearchState",
    "StoppingRules",
    "Strategy",
    "SupportsIsSet",
    "record_observation",
    "run_search",
]
