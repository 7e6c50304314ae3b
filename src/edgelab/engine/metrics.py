"""
Performance and risk statistics.

Every function here is pure: the same trades and equity curve always give the
same metrics. Degenerate inputs (no trades, zero variance, no drawdown)
produce zeros rather than errors or NaN. The one deliberate exception is the
profit factor, which is +inf when there are wins and no losses.
"""

import math
from collections.abc import Sequence
from datetime import datetime

import numpy as np
import pandas as pd

from edgelab.core.constants import DAYS_PER_YEAR, SECONDS_PER_DAY, TRADING_DAYS_PER_YEAR
from edgelab.core.models.backtest import (
    BacktestConfig,
    DrawdownPoint,
    EquityPoint,
    PerformanceMetrics,
)
from edgelab.core.models.trade import Trade
from edgelab.core.types import HUNDRED, safe_divide


def drawdown_series(equity: Sequence[float]) -> np.ndarray:
    """Percent drawdown from the running peak of the curve itself."""
    values = np.asarray(equity, dtype=float)
    if values.size == 0:
        return values
    peaks = np.maximum.accumulate(values)
    return np.where(peaks > 0, (peaks - values) / peaks * HUNDRED, 0.0)


def drawdown_curve(equity_curve: Sequence[EquityPoint]) -> tuple[DrawdownPoint, ...]:
    """Drawdown point for every equity point. Values are >= 0 and 0 at new peaks."""
    drawdowns = drawdown_series([p.equity for p in equity_curve])
    return tuple(
        DrawdownPoint(timestamp=point.timestamp, drawdown=float(max(dd, 0.0)))
        for point, dd in zip(equity_curve, drawdowns, strict=True)
    )


def max_drawdown(equity: Sequence[float]) -> tuple[float, float]:
    """Largest absolute and largest percent decline from a running peak.

    Returns:
        (max drawdown in currency, max drawdown in percent)
    """
    values = np.asarray(equity, dtype=float)
    if values.size == 0:
        return 0.0, 0.0
    peaks = np.maximum.accumulate(values)
    absolute = float(np.max(peaks - values))
    percent = float(np.max(drawdown_series(values)))
    return max(absolute, 0.0), max(percent, 0.0)


def ulcer_index(drawdowns_percent: Sequence[float]) -> float:
    """Root mean square of percent drawdowns."""
    values = np.asarray(drawdowns_percent, dtype=float)
    if values.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(values**2)))


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss.

    +inf when there are profits and no losses, 0 when there are neither.
    Break-even trades contribute to neither side.
    """
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return math.inf if gross_profit > 0 else 0.0


def sharpe_ratio(returns: Sequence[float], periods: int = TRADING_DAYS_PER_YEAR) -> float:
    """Annualized mean over sample standard deviation of returns (0 on zero variance)."""
    series = pd.Series(returns, dtype=float)
    if len(series) < 2:
        return 0.0
    std = series.std()
    if not std or not math.isfinite(std):
        return 0.0
    return float(series.mean() / std * np.sqrt(periods))


def sortino_ratio(returns: Sequence[float], periods: int = TRADING_DAYS_PER_YEAR) -> float:
    """Annualized mean over the standard deviation of negative returns."""
    series = pd.Series(returns, dtype=float)
    downside = series[series < 0]
    if len(downside) < 2:
        return 0.0
    downside_std = downside.std()
    if not downside_std or not math.isfinite(downside_std):
        return 0.0
    return float(series.mean() / downside_std * np.sqrt(periods))


def tail_ratio(returns: Sequence[float], min_samples: int = 20) -> float:
    """Absolute 95th percentile return over the absolute 5th percentile return."""
    if len(returns) < min_samples:
        return 0.0
    ordered = sorted(returns)
    p5 = abs(ordered[int(len(ordered) * 0.05)])
    p95 = abs(ordered[int(len(ordered) * 0.95)])
    return safe_divide(p95, p5)


def max_consecutive(pnls: Sequence[float], winning: bool) -> int:
    """Longest run of winning (pnl > 0) or losing (pnl <= 0) trades."""
    longest = current = 0
    for pnl in pnls:
        if (pnl > 0) == winning:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def monthly_returns(trades: Sequence[Trade], initial_capital: float) -> dict[str, float]:
    """Realized P&L per exit month as a percent of initial capital, keyed "YYYY-MM"."""
    closed = [t for t in trades if t.is_closed]
    if not closed:
        return {}
    frame = pd.DataFrame(
        {
            "month": [t.exit_time.strftime("%Y-%m") for t in closed],  # type: ignore[union-attr]
            "pnl": [t.pnl for t in closed],
        }
    )
    grouped = frame.groupby("month", sort=True)["pnl"].sum()
    return {month: float(pnl / initial_capital * HUNDRED) for month, pnl in grouped.items()}


class MetricsCalculator:
    """Builds the PerformanceMetrics bundle of a run."""

    def __init__(self, annualization_periods: int = TRADING_DAYS_PER_YEAR):
        self.annualization_periods = annualization_periods

    def calculate(
        self,
        trades: Sequence[Trade],
        equity_curve: Sequence[EquityPoint],
        config: BacktestConfig,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> PerformanceMetrics:
        """Compute summary, trade and risk statistics.

        Only closed trades count. Returns are per-trade percent returns on
        entry notional, annualized with ``annualization_periods``.

        Args:
            trades: Trades of the run (open trades are ignored)
            equity_curve: One point per processed candle
            config: Configuration of the run
            start_time: First candle time (defaults to the first equity point)
            end_time: Last candle time (defaults to the last equity point)

        Returns:
            PerformanceMetrics bundle
        """
        closed = [t for t in trades if t.is_closed]
        initial = config.initial_capital
        pnls = [t.pnl for t in closed]
        returns = [t.pnl_percent for t in closed]

        final = initial + sum(pnls)
        total_return = final - initial
        total_return_percent = total_return / initial * HUNDRED
        period_days = self._period_days(equity_curve, config, start_time, end_time)
        annualized = (
            total_return_percent * DAYS_PER_YEAR / period_days
            if period_days > 0
            else total_return_percent
        )

        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p <= 0]
        total_trades = len(closed)
        win_rate = safe_divide(len(wins), total_trades)
        avg_win = float(np.mean(wins)) if wins else 0.0
        avg_loss = abs(float(np.mean(losses))) if losses else 0.0

        equity_values = [p.equity for p in equity_curve]
        max_dd, max_dd_percent = max_drawdown(equity_values)
        ulcer = ulcer_index(drawdown_series(equity_values))
        pf = profit_factor(pnls)

        return PerformanceMetrics(
            initial_capital=initial,
            final_capital=final,
            total_return=total_return,
            total_return_percent=total_return_percent,
            annualized_return=annualized,
            period_days=period_days,
            total_trades=total_trades,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=win_rate,
            avg_win=avg_win,
            avg_loss=avg_loss,
            largest_win=max(wins) if wins else 0.0,
            largest_loss=min(losses) if losses else 0.0,
            avg_holding_period=(
                float(np.mean([t.holding_period_hours for t in closed])) if closed else 0.0
            ),
            max_drawdown=max_dd,
            max_drawdown_percent=max_dd_percent,
            sharpe_ratio=sharpe_ratio(returns, self.annualization_periods),
            sortino_ratio=sortino_ratio(returns, self.annualization_periods),
            calmar_ratio=safe_divide(annualized, max_dd_percent),
            profit_factor=pf,
            ulcer_index=ulcer,
            pain_ratio=safe_divide(annualized, ulcer),
            recovery_factor=safe_divide(total_return, max_dd),
            tail_ratio=tail_ratio(returns),
            expectancy=safe_divide(total_return, total_trades),
            avg_trade_return=float(np.mean(returns)) if returns else 0.0,
            payoff_ratio=safe_divide(avg_win, max(avg_loss, 0.01)) if closed else 0.0,
            common_sense_ratio=pf * win_rate if win_rate > 0 else 0.0,
            max_consecutive_wins=max_consecutive(pnls, winning=True),
            max_consecutive_losses=max_consecutive(pnls, winning=False),
            total_commission=sum(t.commission for t in closed),
            monthly_returns=monthly_returns(closed, initial),
        )

    @staticmethod
    def _period_days(
        equity_curve: Sequence[EquityPoint],
        config: BacktestConfig,
        start_time: datetime | None,
        end_time: datetime | None,
    ) -> float:
        start = start_time or (equity_curve[0].timestamp if equity_curve else None)
        end = end_time or (equity_curve[-1].timestamp if equity_curve else None)
        if start is not None and end is not None and end > start:
            return (end - start).total_seconds() / SECONDS_PER_DAY
        return max(config.duration_days(), 0.0)


def histogram_buckets(values: Sequence[float], bins: int) -> list[tuple[float, float, int]]:
    """(lower, upper, count) buckets over ``values``.

    Values spread over less than a relative 1e-9 of their magnitude land in a
    single bucket; numpy cannot cut such a range into ``bins`` pieces.
    """
    data = np.asarray(values, dtype=float)
    if data.size == 0:
        return []
    tolerance = 1e-9 * max(1.0, float(np.abs(data).max()))
    if float(np.ptp(data)) <= tolerance:
        return [(float(data.min()), float(data.max()), int(data.size))]
    counts, edges = np.histogram(data, bins=bins)
    return [(float(edges[i]), float(edges[i + 1]), int(counts[i])) for i in range(len(counts))]
