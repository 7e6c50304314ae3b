"""
Benchmark construction and strategy-versus-benchmark comparison.

Benchmarks are equity curves built from candles (buy and hold) or from a
fixed annual rate (risk free). Comparisons align per-bar returns of the
strategy and the benchmark on timestamp with pandas before computing
relative statistics.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import numpy as np
import pandas as pd
from loguru import logger

from edgelab.core.constants import DAYS_PER_YEAR, SECONDS_PER_DAY
from edgelab.core.exceptions.backtest import InsufficientDataError
from edgelab.core.models.backtest import BacktestResult, EquityPoint
from edgelab.core.models.candle import Candle
from edgelab.core.types import safe_divide
from edgelab.core.utils.validation import validate_positive
from edgelab.engine.metrics import max_drawdown, sharpe_ratio, sortino_ratio

BENCHMARK_RISK_FREE_RATE = 0.02


@dataclass(frozen=True)
class BenchmarkResult:
    name: str
    initial_capital: float
    equity_curve: tuple[EquityPoint, ...]
    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    calmar_ratio: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "totalReturn": self.total_return,
            "totalReturnPercent": self.total_return_percent,
            "annualizedReturn": self.annualized_return,
            "volatility": self.volatility,
            "sharpeRatio": self.sharpe_ratio,
            "sortinoRatio": self.sortino_ratio,
            "maxDrawdown": self.max_drawdown,
            "maxDrawdownPercent": self.max_drawdown_percent,
            "calmarRatio": self.calmar_ratio,
            "equityCurve": [p.to_dict() for p in self.equity_curve],
        }


@dataclass(frozen=True)
class BenchmarkComparison:
    """How a strategy fared against one benchmark."""

    benchmark: str
    excess_return: float
    tracking_error: float
    information_ratio: float
    beta: float
    alpha: float
    correlation: float
    up_capture: float
    down_capture: float
    win_rate_vs_benchmark: float
    aligned_periods: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "benchmark": self.benchmark,
            "excessReturn": self.excess_return,
            "trackingError": self.tracking_error,
            "informationRatio": self.information_ratio,
            "beta": self.beta,
            "alpha": self.alpha,
            "correlation": self.correlation,
            "upCapture": self.up_capture,
            "downCapture": self.down_capture,
            "winRateVsBenchmark": self.win_rate_vs_benchmark,
            "alignedPeriods": self.aligned_periods,
        }


def _from_equity(
    name: str, curve: Sequence[EquityPoint], initial_capital: float, periods: float
) -> BenchmarkResult:
    equity = pd.Series([p.equity for p in curve], dtype=float)
    returns = equity.pct_change().dropna().to_numpy()
    final = float(equity.iloc[-1])
    total_return_percent = (final - initial_capital) / initial_capital * 100
    days = (curve[-1].timestamp - curve[0].timestamp).total_seconds() / SECONDS_PER_DAY
    # Simple annualization, matching MetricsCalculator.
    annualized = total_return_percent * DAYS_PER_YEAR / days if days > 0 else 0.0
    dd_abs, dd_pct = max_drawdown(equity.to_numpy())
    std = float(np.std(returns, ddof=1)) if returns.size > 1 else 0.0
    return BenchmarkResult(
        name=name,
        initial_capital=initial_capital,
        equity_curve=tuple(curve),
        total_return=final - initial_capital,
        total_return_percent=total_return_percent,
        annualized_return=annualized,
        volatility=std * math.sqrt(periods) * 100,
        sharpe_ratio=sharpe_ratio(returns, round(periods)),
        sortino_ratio=sortino_ratio(returns, round(periods)),
        max_drawdown=dd_abs,
        max_drawdown_percent=dd_pct,
        calmar_ratio=safe_divide(annualized, dd_pct),
    )


def buy_and_hold(
    candles: Sequence[Candle],
    initial_capital: float,
    name: str = "Buy & Hold",
    periods_per_year: float = DAYS_PER_YEAR,
) -> BenchmarkResult:
    """Capital invested at the first close and held to the last."""
    validate_positive(initial_capital, "initial_capital")
    if not candles:
        raise InsufficientDataError(1, 0, f"benchmark {name}")
    start_price = candles[0].close
    curve = tuple(
        EquityPoint(timestamp=c.timestamp, equity=initial_capital * c.close / start_price)
        for c in candles
    )
    return _from_equity(name, curve, initial_capital, periods_per_year)


def risk_free(
    start: datetime,
    end: datetime,
    initial_capital: float,
    annual_rate: float = BENCHMARK_RISK_FREE_RATE,
    name: str = "Risk Free",
) -> BenchmarkResult:
    """Capital compounding daily at ``annual_rate``."""
    validate_positive(initial_capital, "initial_capital")
    days = max(int((end - start).total_seconds() // SECONDS_PER_DAY), 1)
    daily = (1 + annual_rate) ** (1 / DAYS_PER_YEAR) - 1
    curve = tuple(
        EquityPoint(timestamp=start + timedelta(days=d), equity=initial_capital * (1 + daily) ** d)
        for d in range(days + 1)
    )
    return _from_equity(name, curve, initial_capital, DAYS_PER_YEAR)


def aligned_returns(
    first: Sequence[EquityPoint], second: Sequence[EquityPoint]
) -> pd.DataFrame:
    """Per-period returns of two equity curves on their shared timestamps."""
    frame = pd.DataFrame(
        {
            "strategy": pd.Series(
                [p.equity for p in first], index=[p.timestamp for p in first], dtype=float
            ),
            "benchmark": pd.Series(
                [p.equity for p in second], index=[p.timestamp for p in second], dtype=float
            ),
        }
    ).dropna()
    return frame.pct_change().dropna()


class BenchmarkComparator:
    """Compares a backtest against benchmarks."""

    def __init__(self, risk_free_rate: float = BENCHMARK_RISK_FREE_RATE):
        self.risk_free_rate = risk_free_rate

    def compare(
        self, result: BacktestResult, benchmarks: Sequence[BenchmarkResult]
    ) -> list[BenchmarkComparison]:
        periods = result.config.timeframe.periods_per_year
        comparisons = [self._compare_one(result, b, periods) for b in benchmarks]
        for c in comparisons:
            logger.debug(
                f"{result.config.symbol} vs {c.benchmark}: excess {c.excess_return:.2f}%, "
                f"beta {c.beta:.2f}, {c.aligned_periods} aligned periods"
            )
        return comparisons

    def _compare_one(
        self, result: BacktestResult, benchmark: BenchmarkResult, periods: float
    ) -> BenchmarkComparison:
        returns = aligned_returns(result.equity_curve, benchmark.equity_curve)
        strategy = returns["strategy"].to_numpy()
        bench = returns["benchmark"].to_numpy()
        n = len(returns)

        strategy_pct = (result.final_equity - result.config.initial_capital)
        strategy_pct = strategy_pct / result.config.initial_capital * 100
        excess = strategy_pct - benchmark.total_return_percent

        tracking_error = 0.0
        beta, correlation = 1.0, 0.0
        if n >= 2:
            tracking_error = float(np.std(strategy - bench, ddof=1) * math.sqrt(periods) * 100)
            bench_var = float(np.var(bench, ddof=1))
            if bench_var > 0:
                beta = float(np.cov(strategy, bench, ddof=1)[0, 1] / bench_var)
            if np.std(strategy) > 0 and np.std(bench) > 0:
                correlation = float(np.corrcoef(strategy, bench)[0, 1])

        rf = self.risk_free_rate * 100
        alpha = result.metrics.annualized_return - (
            rf + beta * (benchmark.annualized_return - rf)
        )

        up, down = bench > 0, bench < 0
        up_capture = safe_divide(strategy[up].sum(), bench[up].sum(), default=1.0) * 100
        down_capture = safe_divide(strategy[down].sum(), bench[down].sum(), default=1.0) * 100

        return BenchmarkComparison(
            benchmark=benchmark.name,
            excess_return=excess,
            tracking_error=tracking_error,
            information_ratio=safe_divide(excess, tracking_error),
            beta=beta,
            alpha=alpha,
            correlation=correlation,
            up_capture=up_capture,
            down_capture=down_capture,
            win_rate_vs_benchmark=float(np.mean(strategy > bench)) if n else 0.0,
            aligned_periods=n,
        )
