"""Run configuration schema and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .acquisition import Acquisition, Direction, TradeOff
from .errors import SpaceDeclarationError
from .search import AnnealingSettings, BayesSettings, StoppingRules, Strategy
from .space import ParameterSpace


class MetadataConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""

    @model_validator(mode="after")
    def validate_strings(self) -> "MetadataConfig":
        if not self.name.strip():
            raise ValueError("metadata.name must be a non-empty string")
        return self


class InitialStudyConfig(BaseModel):
    """An optuna study whose completed trials seed the search."""

    model_config = ConfigDict(extra="forbid")

    storage: str
    study_name: str

    @model_validator(mode="after")
    def validate_strings(self) -> "InitialStudyConfig":
        if not self.storage.strip():
            raise ValueError("search.initial_study.storage must be a non-empty string")
        if not self.study_name.strip():
            raise ValueError("search.initial_study.study_name must be a non-empty string")
        return self


class SearchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strategy: str = "bayes"
    direction: str = "maximize"
    metric: str = "mean"
    n_iter: int = 10
    initial: int | List[Dict[str, Any]] | None = 5
    grid: int | Dict[str, int] | None = None
    initial_study: InitialStudyConfig | None = None
    tolerance: float = 1e-8

    @model_validator(mode="after")
    def validate_search(self) -> "SearchConfig":
        self.strategy = self.strategy.lower().strip()
        if self.strategy not in {item.value for item in Strategy}:
            raise ValueError("search.strategy must be 'bayes' or 'annealing'")
        self.direction = self.direction.lower().strip()
        if self.direction not in {item.value for item in Direction}:
            raise ValueError("search.direction must be 'maximize' or 'minimize'")
        if not self.metric.strip():
            raise ValueError("search.metric must be a non-empty string")
        if self.n_iter < 0:
            raise ValueError("search.n_iter must be a non-negative integer")
        if self.tolerance <= 0:
            raise ValueError("search.tolerance must be positive")

        sources = [
            name
            for name, value in (
                ("grid", self.grid),
                ("initial_study", self.initial_study),
            )
            if value is not None
        ]
        if len(sources) > 1:
            raise ValueError("search.grid and search.initial_study are mutually exclusive")
        if isinstance(self.initial, int):
            if self.initial <= 0:
                raise ValueError("search.initial must be a positive integer")
        elif isinstance(self.initial, list):
            if not self.initial:
                raise ValueError("search.initial must list at least one configuration")
            if sources:
                raise ValueError(
                    "search.initial configurations cannot be combined with grid or initial_study"
                )
        elif not sources:
            raise ValueError("search.initial is required unless grid or initial_study is set")
        if isinstance(self.grid, int) and self.grid <= 0:
            raise ValueError("search.grid must be a positive number of levels")
        if isinstance(self.grid, dict) and any(int(n) <= 0 for n in self.grid.values()):
            raise ValueError("search.grid levels must be positive")
        return self


class BayesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    acquisition: str = "expected_improvement"
    trade_off: float = 0.0
    trade_off_decay: float = 0.0
    trade_off_limit: float = 0.0
    kappa: float = 0.1
    pool_size: int = 5000
    uncertain: int | None = None

    @model_validator(mode="after")
    def validate_numbers(self) -> "BayesConfig":
        self.acquisition = self.acquisition.lower().strip()
        if self.acquisition not in {item.value for item in Acquisition}:
            choices = ", ".join(item.value for item in Acquisition)
            raise ValueError(f"bayes.acquisition must be one of: {choices}")
        if self.trade_off_decay < 0:
            raise ValueError("bayes.trade_off_decay must be non-negative")
        if self.kappa < 0:
            raise ValueError("bayes.kappa must be non-negative")
        if self.pool_size <= 0:
            raise ValueError("bayes.pool_size must be a positive integer")
        if self.uncertain is not None and self.uncertain <= 0:
            raise ValueError("bayes.uncertain must be positive when provided")
        return self

    def to_settings(self) -> BayesSettings:
        return BayesSettings(
            acquisition=Acquisition(self.acquisition),
            trade_off=TradeOff(
                start=self.trade_off,
                decay=self.trade_off_decay,
                limit=self.trade_off_limit,
            ),
            kappa=self.kappa,
            pool_size=self.pool_size,
            uncertain=self.uncertain,
        )


class AnnealingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    coefficient: float = 0.02
    restart: int | None = 8
    radius: List[float] = [0.05, 0.15]
    flip: float = 0.1
    n_candidates: int = 500

    @model_validator(mode="after")
    def validate_numbers(self) -> "AnnealingConfig":
        if self.coefficient <= 0:
            raise ValueError("annealing.coefficient must be positive")
        if self.restart is not None and self.restart <= 0:
            raise ValueError("annealing.restart must be positive when provided")
        if len(self.radius) != 2:
            raise ValueError("annealing.radius must contain exactly two values")
        low, high = self.radius
        if not 0 < low <= high <= 1:
            raise ValueError("annealing.radius must satisfy 0 < low <= high <= 1")
        if not 0 <= self.flip <= 1:
            raise ValueError("annealing.flip must be within [0, 1]")
        if self.n_candidates <= 0:
            raise ValueError("annealing.n_candidates must be a positive integer")
        return self

    def to_settings(self) -> AnnealingSettings:
        return AnnealingSettings(
            coefficient=self.coefficient,
            restart=self.restart,
            radius=(float(self.radius[0]), float(self.radius[1])),
            flip=self.flip,
            n_candidates=self.n_candidates,
        )


class StoppingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    no_improve: int | None = 10
    max_failures: int | None = 5
    time_limit_minutes: float | None = None

    @model_validator(mode="after")
    def validate_numbers(self) -> "StoppingConfig":
        if self.no_improve is not None and self.no_improve <= 0:
            raise ValueError("stopping.no_improve must be positive when provided")
        if self.max_failures is not None and self.max_failures <= 0:
            raise ValueError("stopping.max_failures must be positive when provided")
        if self.time_limit_minutes is not None and self.time_limit_minutes <= 0:
            raise ValueError("stopping.time_limit_minutes must be positive when provided")
        return self


class ReportConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    output_dir: str = "reports"
    filename: str | None = None
    top_n: int = 5

    @model_validator(mode="after")
    def validate_fields(self) -> "ReportConfig":
        if not self.output_dir.strip():
            raise ValueError("report.output_dir must be a non-empty string")
        if self.filename is not None and not self.filename.strip():
            raise ValueError("report.filename must be a non-empty string when provided")
        if self.top_n <= 0:
            raise ValueError("report.top_n must be a positive integer")
        return self


class ArtifactsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_root: str | None = None
    log_file: str = "runs/log.csv"
    export_study: str | None = None

    @model_validator(mode="after")
    def validate_paths(self) -> "ArtifactsConfig":
        if self.run_root is not None and not self.run_root.strip():
            raise ValueError("artifacts.run_root must be a non-empty string when provided")
        if not self.log_file.strip():
            raise ValueError("artifacts.log_file must be a non-empty string")
        if self.export_study is not None and not self.export_study.strip():
            raise ValueError("artifacts.export_study must be a non-empty string when provided")
        return self


class EvaluatorConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    module: str
    callable: str

    @model_validator(mode="after")
    def validate_strings(self) -> "EvaluatorConfig":
        if not self.module.strip():
            raise ValueError("evaluator.module must be a non-empty string")
        if not self.callable.strip():
            raise ValueError("evaluator.callable must be a non-empty string")
        return self


class FloatParam(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    low: float
    high: float
    log: bool = False


class IntParam(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    low: int
    high: int
    log: bool = False


class CategoricalParam(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    choices: List[Any]


PARAMETER_MODELS: Dict[str, type[BaseModel]] = {
    "float": FloatParam,
    "int": IntParam,
    "categorical": CategoricalParam,
}


class SearchRunConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metadata: MetadataConfig
    seed: int | None = None
    search: SearchConfig = SearchConfig()
    bayes: BayesConfig = BayesConfig()
    annealing: AnnealingConfig = AnnealingConfig()
    stopping: StoppingConfig = StoppingConfig()
    search_space: Dict[str, Dict[str, Any]]
    evaluator: EvaluatorConfig
    report: ReportConfig = ReportConfig()
    artifacts: ArtifactsConfig | None = None

    @model_validator(mode="after")
    def validate_all(self) -> "SearchRunConfig":
        if not self.search_space:
            raise ValueError("search_space must define at least one parameter")

        normalised_space: Dict[str, Dict[str, Any]] = {}
        for name, spec in self.search_space.items():
            if not isinstance(name, str) or not name.strip():
                raise ValueError("search_space parameter names must be non-empty strings")
            if not isinstance(spec, Mapping):
                raise ValueError(f"search_space.{name} must be a mapping")
            param_type = str(spec.get("type", "")).lower()
            model_cls = PARAMETER_MODELS.get(param_type)
            if model_cls is None:
                raise ValueError(f"search_space.{name}.type '{param_type}' is not supported")
            entry = model_cls.model_validate(dict(spec)).model_dump()
            entry["type"] = param_type
            normalised_space[name] = entry

        try:
            space = ParameterSpace.from_dict(normalised_space)
        except SpaceDeclarationError as exc:
            raise ValueError(f"search_space is invalid: {exc}") from exc
        self.search_space = normalised_space

        if isinstance(self.search.initial, list):
            for index, values in enumerate(self.search.initial):
                try:
                    space.configuration(values)
                except (KeyError, ValueError) as exc:
                    raise ValueError(f"search.initial[{index}] is invalid: {exc}") from exc
        if isinstance(self.search.grid, dict):
            unknown = sorted(set(self.search.grid) - set(space.names))
            if unknown:
                raise ValueError(f"search.grid names unknown parameters: {', '.join(unknown)}")
        return self

    def build_space(self) -> ParameterSpace:
        return ParameterSpace.from_dict(self.search_space)

    def stopping_rules(self) -> StoppingRules:
        return StoppingRules(
            n_iter=self.search.n_iter,
            no_improve=self.stopping.no_improve,
            max_failures=self.stopping.max_failures,
            time_limit_minutes=self.stopping.time_limit_minutes,
        )


def load_config_file(path: Path) -> SearchRunConfig:
    """Read and validate a YAML run configuration; raises ``ValidationError`` or ``ValueError``."""

    with Path(path).open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping (YAML dictionary).")
    return SearchRunConfig.model_validate(data)


__all__ = [
    "AnnealingConfig",
    "ArtifactsConfig",
    "BayesConfig",
    "EvaluatorConfig",
    "InitialStudyConfig",
    "MetadataConfig",
    "ReportConfig",
    "SearchConfig",
    "SearchRunConfig",
    "StoppingConfig",
    "ValidationError",
    "load_config_file",
]
