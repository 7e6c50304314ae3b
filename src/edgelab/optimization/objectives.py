"""
Objectives, constraints and candidate evaluation shared by all optimizers.

A candidate is a parameter set. Keys naming ``BacktestConfig`` fields
override the base config; every other key is handed to the signal factory as
a strategy parameter.
"""

import math
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from edgelab.core.constants import MULTI_OBJECTIVE_DEFAULT_WEIGHTS
from edgelab.core.enums import ObjectiveMetric
from edgelab.core.models.backtest import BacktestConfig, BacktestResult
from edgelab.core.models.candle import Candle
from edgelab.core.models.optimization import Evaluation
from edgelab.core.protocols import SignalFactory
from edgelab.engine.simulator import BacktestEngine


class ConstraintSpec(BaseModel):
    """Hard limits a candidate must satisfy to be ranked."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    min_trades: int | None = Field(default=None, ge=0, description="Minimum closed trades")
    max_drawdown_percent: float | None = Field(
        default=None, gt=0, le=100, description="Maximum drawdown in percent"
    )
    min_win_rate: float | None = Field(default=None, ge=0, le=1, description="Win rate (0-1)")
    min_profit_factor: float | None = Field(default=None, ge=0, description="Profit factor")

    def violations(self, result: BacktestResult) -> tuple[str, ...]:
        """Describe every constraint the result breaks (empty when feasible)."""
        metrics = result.metrics
        problems = []
        if self.min_trades is not None and metrics.total_trades < self.min_trades:
            problems.append(f"total_trades {metrics.total_trades} < {self.min_trades}")
        if (
            self.max_drawdown_percent is not None
            and metrics.max_drawdown_percent > self.max_drawdown_percent
        ):
            problems.append(
                f"max_drawdown_percent {metrics.max_drawdown_percent:.2f} > "
                f"{self.max_drawdown_percent}"
            )
        if self.min_win_rate is not None and metrics.win_rate < self.min_win_rate:
            problems.append(f"win_rate {metrics.win_rate:.2f} < {self.min_win_rate}")
        if self.min_profit_factor is not None and metrics.profit_factor < self.min_profit_factor:
            problems.append(f"profit_factor {metrics.profit_factor:.2f} < {self.min_profit_factor}")
        return tuple(problems)


def normalize_metric(metric: ObjectiveMetric, value: float) -> float:
    """Scale a metric to roughly [0, 1] so weighted objectives are comparable.

    Minimized metrics are flipped so that larger normalized values are better.
    """
    if metric in (ObjectiveMetric.TOTAL_RETURN_PERCENT, ObjectiveMetric.ANNUALIZED_RETURN):
        return value / 100.0
    if metric in (
        ObjectiveMetric.SHARPE_RATIO,
        ObjectiveMetric.SORTINO_RATIO,
        ObjectiveMetric.CALMAR_RATIO,
    ):
        return value / 3.0
    if metric in (ObjectiveMetric.MAX_DRAWDOWN_PERCENT, ObjectiveMetric.ULCER_INDEX):
        return 1.0 - value / 100.0
    if metric == ObjectiveMetric.PROFIT_FACTOR:
        return min(value, 10.0) / 10.0
    if metric == ObjectiveMetric.RECOVERY_FACTOR:
        return min(value, 10.0) / 10.0
    return value


class ObjectiveSpec(BaseModel):
    """What an optimizer maximizes.

    Either a single ``metric`` or a ``weights`` map for a weighted
    multi-objective score. Minimized metrics (drawdown, ulcer index) are
    negated in single mode and flipped when normalized in weighted mode.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    metric: ObjectiveMetric = Field(
        default=ObjectiveMetric.TOTAL_RETURN_PERCENT, description="Single objective"
    )
    weights: dict[ObjectiveMetric, float] | None = Field(
        default=None, description="Metric weights for a multi-objective score"
    )
    constraints: ConstraintSpec = Field(default_factory=ConstraintSpec)

    @field_validator("metric", mode="before")
    @classmethod
    def resolve_metric(cls, v: Any) -> Any:
        """Accept aliases such as "sharpe" or "return"."""
        if isinstance(v, str) and not isinstance(v, ObjectiveMetric):
            return ObjectiveMetric.from_string(v)
        return v

    @field_validator("weights", mode="before")
    @classmethod
    def resolve_weights(cls, v: Any) -> Any:
        """Accept metric aliases as weight keys and reject empty or negative weights."""
        if v is None:
            return v
        resolved = {
            ObjectiveMetric.from_string(k) if isinstance(k, str) else k: float(w)
            for k, w in dict(v).items()
        }
        if not resolved:
            raise ValueError("weights must not be empty")
        if any(w < 0 for w in resolved.values()):
            raise ValueError("weights must be non-negative")
        return resolved

    @classmethod
    def multi_objective(
        cls, weights: Mapping[str, float] | None = None, **kwargs: Any
    ) -> "ObjectiveSpec":
        """Weighted objective, defaulting to return/sharpe/drawdown/win-rate weights."""
        return cls(weights=dict(weights or MULTI_OBJECTIVE_DEFAULT_WEIGHTS), **kwargs)

    @property
    def active_metrics(self) -> tuple[ObjectiveMetric, ...]:
        """Metrics contributing to the score."""
        if self.weights:
            return tuple(m for m, w in self.weights.items() if w > 0)
        return (self.metric,)

    @property
    def is_multi_objective(self) -> bool:
        return len(self.active_metrics) > 1

    def score(self, result: BacktestResult) -> float:
        """Objective value of a result, ignoring constraints. Larger is better."""
        if self.weights:
            total_weight = sum(self.weights.values())
            if total_weight <= 0:
                return 0.0
            weighted = sum(
                w * normalize_metric(m, result.metrics.value(m)) for m, w in self.weights.items()
            )
            return weighted / total_weight
        value = result.metrics.value(self.metric)
        return value if self.metric.maximize else -value


def directional_value(metric: ObjectiveMetric, value: float) -> float:
    """Metric value oriented so that larger is better."""
    return value if metric.maximize else -value


def dominates(a: Mapping[ObjectiveMetric, float], b: Mapping[ObjectiveMetric, float]) -> bool:
    """Check if ``a`` is at least as good as ``b`` everywhere and better somewhere."""
    better_somewhere = False
    for metric in a:
        va, vb = directional_value(metric, a[metric]), directional_value(metric, b[metric])
        if va < vb:
            return False
        if va > vb:
            better_somewhere = True
    return better_somewhere


def pareto_frontier(
    evaluations: Sequence[Evaluation], metrics: Sequence[ObjectiveMetric]
) -> tuple[Evaluation, ...]:
    """Feasible evaluations not dominated on the given metrics."""
    feasible = [e for e in evaluations if e.feasible]
    points = [{m: e.result.metrics.value(m) for m in metrics} for e in feasible]  # type: ignore[union-attr]
    frontier = []
    for i, candidate in enumerate(feasible):
        if not any(dominates(points[j], points[i]) for j in range(len(feasible)) if j != i):
            frontier.append(candidate)
    return tuple(frontier)


def split_parameters(
    base_config: BacktestConfig, parameters: Mapping[str, Any]
) -> tuple[BacktestConfig, dict[str, Any]]:
    """Separate config overrides from strategy parameters.

    Returns:
        (config with overrides applied, remaining strategy parameters)
    """
    config_fields = set(BacktestConfig.field_names())
    overrides = {k: v for k, v in parameters.items() if k in config_fields}
    strategy = {k: v for k, v in parameters.items() if k not in config_fields}
    config = base_config.with_overrides(**overrides) if overrides else base_config
    return config, strategy


def ranking_key(evaluation: Evaluation) -> float:
    """Sort key placing NaN scores last."""
    return evaluation.score if not math.isnan(evaluation.score) else -math.inf


class CandidateEvaluator:
    """Runs one backtest for a parameter set and scores it.

    Instances are plain callables over immutable inputs, so they can be
    handed to a ``BatchExecutor``.
    """

    def __init__(
        self,
        engine: BacktestEngine,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        objective: ObjectiveSpec,
    ):
        self.engine = engine
        self.base_config = base_config
        self.candles = candles
        self.signal_factory = signal_factory
        self.objective = objective

    def __call__(self, parameters: Mapping[str, Any]) -> Evaluation:
        config, strategy_parameters = split_parameters(self.base_config, parameters)
        result = self.engine.run(config, self.candles, self.signal_factory(strategy_parameters))
        violations = self.objective.constraints.violations(result)
        score = -math.inf if violations else self.objective.score(result)
        return Evaluation(
            parameters=dict(parameters),
            score=score,
            result=result,
            objectives={m.value: result.metrics.value(m) for m in self.objective.active_metrics},
            violations=violations,
        )

    @staticmethod
    def failed(parameters: Mapping[str, Any], error: BaseException) -> Evaluation:
        """Evaluation row for a candidate whose run raised."""
        return Evaluation(
            parameters=dict(parameters),
            score=-math.inf,
            error=f"{type(error).__name__}: {error}",
        )
