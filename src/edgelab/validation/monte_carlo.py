"""
Monte Carlo simulation of trade sequences.

Each run reorders (or resamples) the realized trade returns and compounds
them from the initial capital. Runs draw from their own generator spawned
from one ``SeedSequence``, so a seed fixes every run no matter how the runs
are scheduled.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from edgelab.core.constants import (
    DEFAULT_INITIAL_CAPITAL,
    HISTOGRAM_BUCKETS,
    RUIN_THRESHOLD,
    TIMING_NOISE_FRACTION,
)
from edgelab.core.enums import BootstrapMethod
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.backtest import BacktestResult
from edgelab.core.models.trade import Trade
from edgelab.core.utils.decorators import log_run
from edgelab.engine.metrics import histogram_buckets
from edgelab.optimization.executor import BatchExecutor, CancellationToken


class MonteCarloConfig(BaseModel):
    """Monte Carlo settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    num_runs: int = Field(default=1000, ge=0, description="Number of simulated sequences")
    randomize_entries: bool = Field(default=False, description="Jitter returns for entry timing")
    randomize_exits: bool = Field(default=False, description="Jitter returns for exit timing")
    confidence_level: float = Field(default=0.95, gt=0, lt=1, description="Interval coverage")
    bootstrap_method: BootstrapMethod = Field(
        default=BootstrapMethod.SHUFFLE, description="How trade sequences are drawn"
    )
    ruin_threshold: float = Field(
        default=RUIN_THRESHOLD, gt=0, le=1, description="Loss fraction counted as ruin"
    )
    seed: int | None = Field(default=None, description="Seed for reproducible runs")

    @field_validator("bootstrap_method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        """Accept "bootstrap" as shorthand for sampling with replacement."""
        if isinstance(v, str) and v.lower() in ("bootstrap", "resample"):
            return BootstrapMethod.SAMPLE_WITH_REPLACEMENT
        return v


@dataclass(frozen=True)
class MonteCarloRun:
    """One simulated equity path."""

    run_id: int
    final_equity: float
    return_percent: float
    max_drawdown_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "finalEquity": self.final_equity,
            "returnPercent": self.return_percent,
            "maxDrawdownPercent": self.max_drawdown_percent,
        }


@dataclass(frozen=True)
class HistogramBucket:
    lower: float
    upper: float
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"lower": self.lower, "upper": self.upper, "count": self.count}


@dataclass(frozen=True)
class MonteCarloResult:
    """Distribution of outcomes over all runs."""

    num_runs: int
    initial_capital: float
    runs: tuple[MonteCarloRun, ...] = ()
    probability_of_profit: float = 0.0
    probability_of_ruin: float = 0.0
    mean_final_equity: float = 0.0
    median_final_equity: float = 0.0
    std_final_equity: float = 0.0
    confidence_level: float = 0.95
    confidence_interval: tuple[float, float] = (0.0, 0.0)
    worst_case: float = 0.0
    best_case: float = 0.0
    expected_max_drawdown: float = 0.0
    max_drawdown_percentiles: dict[str, float] = field(default_factory=dict)
    value_at_risk: float = 0.0
    conditional_value_at_risk: float = 0.0
    histogram: tuple[HistogramBucket, ...] = ()
    failures: int = 0
    cancelled: bool = False

    @classmethod
    def neutral(
        cls, initial_capital: float, confidence_level: float = 0.95, cancelled: bool = False
    ) -> "MonteCarloResult":
        """Result when nothing can be simulated: every equity figure is the initial capital."""
        return cls(
            num_runs=0,
            initial_capital=initial_capital,
            mean_final_equity=initial_capital,
            median_final_equity=initial_capital,
            confidence_level=confidence_level,
            confidence_interval=(initial_capital, initial_capital),
            worst_case=initial_capital,
            best_case=initial_capital,
            cancelled=cancelled,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "numRuns": self.num_runs,
            "initialCapital": self.initial_capital,
            "probabilityOfProfit": self.probability_of_profit,
            "probabilityOfRuin": self.probability_of_ruin,
            "meanFinalEquity": self.mean_final_equity,
            "medianFinalEquity": self.median_final_equity,
            "stdFinalEquity": self.std_final_equity,
            "confidenceLevel": self.confidence_level,
            "confidenceInterval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "worstCase": self.worst_case,
            "bestCase": self.best_case,
            "expectedMaxDrawdown": self.expected_max_drawdown,
            "maxDrawdownPercentiles": dict(self.max_drawdown_percentiles),
            "valueAtRisk": self.value_at_risk,
            "conditionalValueAtRisk": self.conditional_value_at_risk,
            "histogram": [b.to_dict() for b in self.histogram],
            "failures": self.failures,
            "cancelled": self.cancelled,
        }


def capital_returns(trades: Sequence[Trade], initial_capital: float) -> np.ndarray:
    """Each closed trade's P&L as a fraction of the capital it was taken with."""
    closed = [t for t in trades if t.is_closed]
    returns = np.empty(len(closed), dtype=float)
    capital = initial_capital
    for i, trade in enumerate(closed):
        returns[i] = trade.pnl / capital if capital > 0 else -1.0
        capital += trade.pnl
    return np.maximum(returns, -1.0)


def path_max_drawdown_percent(equity: np.ndarray) -> float:
    """Largest percent drop from a running peak along ``equity``."""
    peaks = np.maximum.accumulate(equity)
    drawdowns = np.where(peaks > 0, (peaks - equity) / peaks * 100, 0.0)
    return float(drawdowns.max()) if drawdowns.size else 0.0


class _SimulatedRun:
    """One Monte Carlo path. Callable over ``(run_id, seed)`` pairs."""

    def __init__(self, returns: np.ndarray, initial_capital: float, config: MonteCarloConfig):
        self.returns = returns
        self.initial_capital = initial_capital
        self.config = config
        self.noise_scale = TIMING_NOISE_FRACTION * float(returns.std()) if returns.size else 0.0

    def __call__(self, item: tuple[int, np.random.SeedSequence]) -> MonteCarloRun:
        run_id, seed = item
        rng = np.random.default_rng(seed)
        n = self.returns.size

        if self.config.bootstrap_method == BootstrapMethod.SAMPLE_WITH_REPLACEMENT:
            sample = rng.choice(self.returns, size=n, replace=True)
        else:
            sample = rng.permutation(self.returns)

        if self.noise_scale > 0:
            if self.config.randomize_entries:
                sample = sample + rng.normal(0.0, self.noise_scale, n)
            if self.config.randomize_exits:
                sample = sample + rng.normal(0.0, self.noise_scale, n)
        sample = np.maximum(sample, -1.0)

        equity = self.initial_capital * np.concatenate(([1.0], np.cumprod(1.0 + sample)))
        final = float(equity[-1])
        return MonteCarloRun(
            run_id=run_id,
            final_equity=final,
            return_percent=(final - self.initial_capital) / self.initial_capital * 100,
            max_drawdown_percent=path_max_drawdown_percent(equity),
        )


class MonteCarloSimulator:
    """
    Estimates the spread of outcomes a strategy's trades could have produced.

    Example:
        simulator = MonteCarloSimulator(MonteCarloConfig(num_runs=500, seed=7))
        outcome = simulator.simulate(result)
        outcome.probability_of_ruin
    """

    def __init__(
        self, config: MonteCarloConfig | None = None, executor: BatchExecutor | None = None
    ):
        self.config = config or MonteCarloConfig()
        self.executor = executor or BatchExecutor()

    @log_run("Monte Carlo simulation")
    def simulate(
        self,
        trades: Sequence[Trade] | BacktestResult,
        initial_capital: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> MonteCarloResult:
        """
        Run the configured number of simulations.

        Args:
            trades: Closed trades, or a BacktestResult whose closed trades are used
            initial_capital: Starting equity (the result's config or the default capital when omitted)
            cancel_token: Stops dispatching runs when cancelled

        Returns:
            MonteCarloResult; neutral when there are no trades or no runs
        """
        if isinstance(trades, BacktestResult):
            capital = (
                initial_capital if initial_capital is not None else trades.config.initial_capital
            )
            trade_list: Sequence[Trade] = trades.closed_trades
        else:
            capital = initial_capital if initial_capital is not None else DEFAULT_INITIAL_CAPITAL
            trade_list = trades
        if capital <= 0:
            raise InvalidConfigError(f"initial_capital must be positive, got {capital}")

        returns = capital_returns(trade_list, capital)
        if returns.size == 0 or self.config.num_runs == 0:
            logger.info("Monte Carlo: nothing to simulate, returning neutral result")
            return MonteCarloResult.neutral(capital, self.config.confidence_level)

        seeds = np.random.SeedSequence(self.config.seed).spawn(self.config.num_runs)
        task = _SimulatedRun(returns, capital, self.config)
        report = self.executor.run(
            task, list(enumerate(seeds)), cancel_token, label="monte carlo"
        )
        runs: list[MonteCarloRun] = report.values
        if not runs:
            return MonteCarloResult.neutral(
                capital, self.config.confidence_level, cancelled=report.cancelled
            )
        return self._aggregate(runs, capital, len(report.failures), report.cancelled)

    def _aggregate(
        self, runs: list[MonteCarloRun], capital: float, failures: int, cancelled: bool
    ) -> MonteCarloResult:
        finals = np.array([r.final_equity for r in runs])
        returns = np.array([r.return_percent for r in runs])
        drawdowns = np.array([r.max_drawdown_percent for r in runs])
        tail = (1 - self.config.confidence_level) * 100

        var_cutoff = float(np.percentile(returns, tail))
        tail_returns = returns[returns <= var_cutoff]

        result = MonteCarloResult(
            num_runs=len(runs),
            initial_capital=capital,
            runs=tuple(runs),
            probability_of_profit=float(np.mean(finals > capital)),
            probability_of_ruin=float(
                np.mean(finals <= capital * (1 - self.config.ruin_threshold))
            ),
            mean_final_equity=float(finals.mean()),
            median_final_equity=float(np.median(finals)),
            std_final_equity=float(finals.std()),
            confidence_level=self.config.confidence_level,
            confidence_interval=(
                float(np.percentile(finals, tail / 2)),
                float(np.percentile(finals, 100 - tail / 2)),
            ),
            worst_case=float(np.percentile(finals, 5)),
            best_case=float(np.percentile(finals, 95)),
            expected_max_drawdown=float(drawdowns.mean()),
            max_drawdown_percentiles={
                "p50": float(np.percentile(drawdowns, 50)),
                "p95": float(np.percentile(drawdowns, 95)),
                "p99": float(np.percentile(drawdowns, 99)),
            },
            value_at_risk=max(0.0, -var_cutoff),
            conditional_value_at_risk=max(0.0, -float(tail_returns.mean())),
            histogram=tuple(
                HistogramBucket(lower, upper, count)
                for lower, upper, count in histogram_buckets(finals, HISTOGRAM_BUCKETS)
            ),
            failures=failures,
            cancelled=cancelled,
        )
        logger.info(
            f"Monte Carlo: {result.num_runs} runs, P(profit)={result.probability_of_profit:.3f}, "
            f"P(ruin)={result.probability_of_ruin:.3f}, E[maxDD]={result.expected_max_drawdown:.2f}%"
        )
        return result
