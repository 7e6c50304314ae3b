"""
Chart-ready data derived from a backtest result.

Everything here is a plain-data view of a result: downsampled equity and
drawdown series, a monthly return heatmap, trade scatter points and
histograms of holding periods and trade sizes.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from edgelab.core.constants import HISTOGRAM_BUCKETS
from edgelab.core.models.backtest import BacktestResult
from edgelab.core.models.trade import Trade
from edgelab.engine.metrics import histogram_buckets

DEFAULT_MAX_POINTS = 500


@dataclass(frozen=True)
class SeriesPoint:
    timestamp: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "value": self.value}


@dataclass(frozen=True)
class HeatmapCell:
    year: int
    month: int
    return_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {"year": self.year, "month": self.month, "returnPercent": self.return_percent}


@dataclass(frozen=True)
class ScatterPoint:
    trade_id: str
    holding_hours: float
    pnl_percent: float
    is_winner: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "tradeId": self.trade_id,
            "holdingHours": self.holding_hours,
            "pnlPercent": self.pnl_percent,
            "isWinner": self.is_winner,
        }


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"lower": self.lower, "upper": self.upper, "count": self.count}


@dataclass(frozen=True)
class ChartData:
    equity: tuple[SeriesPoint, ...]
    drawdown: tuple[SeriesPoint, ...]
    monthly_heatmap: tuple[HeatmapCell, ...]
    trade_scatter: tuple[ScatterPoint, ...]
    holding_period_histogram: tuple[HistogramBin, ...]
    trade_size_histogram: tuple[HistogramBin, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "equity": [p.to_dict() for p in self.equity],
            "drawdown": [p.to_dict() for p in self.drawdown],
            "monthlyHeatmap": [c.to_dict() for c in self.monthly_heatmap],
            "tradeScatter": [p.to_dict() for p in self.trade_scatter],
            "holdingPeriodHistogram": [b.to_dict() for b in self.holding_period_histogram],
            "tradeSizeHistogram": [b.to_dict() for b in self.trade_size_histogram],
        }


def downsample_indices(length: int, max_points: int) -> list[int]:
    """Evenly strided indices that always keep the first and last point."""
    if length <= max_points or max_points < 2:
        return list(range(length))
    indices = np.linspace(0, length - 1, num=max_points).round().astype(int)
    return sorted(set(indices.tolist()))


def histogram(values: Sequence[float], bins: int = HISTOGRAM_BUCKETS) -> tuple[HistogramBin, ...]:
    return tuple(
        HistogramBin(lower, upper, count) for lower, upper, count in histogram_buckets(values, bins)
    )


def monthly_heatmap(monthly_returns: dict[str, float]) -> tuple[HeatmapCell, ...]:
    """Cells from "YYYY-MM" keyed monthly returns, in calendar order."""
    cells = []
    for key in sorted(monthly_returns):
        year, month = key.split("-")[:2]
        cells.append(HeatmapCell(int(year), int(month), monthly_returns[key]))
    return tuple(cells)


def trade_scatter(trades: Sequence[Trade]) -> tuple[ScatterPoint, ...]:
    return tuple(
        ScatterPoint(t.id, t.holding_period_hours, t.pnl_percent, t.is_winner)
        for t in trades
        if t.is_closed
    )


def build_chart_data(result: BacktestResult, max_points: int = DEFAULT_MAX_POINTS) -> ChartData:
    """Assemble all chart series of ``result``."""
    keep = downsample_indices(len(result.equity_curve), max_points)
    closed = result.closed_trades
    return ChartData(
        equity=tuple(
            SeriesPoint(
                result.equity_curve[i].timestamp.isoformat(), result.equity_curve[i].equity
            )
            for i in keep
        ),
        drawdown=tuple(
            SeriesPoint(
                result.drawdown_curve[i].timestamp.isoformat(), result.drawdown_curve[i].drawdown
            )
            for i in keep
            if i < len(result.drawdown_curve)
        ),
        monthly_heatmap=monthly_heatmap(result.metrics.monthly_returns),
        trade_scatter=trade_scatter(closed),
        holding_period_histogram=histogram([t.holding_period_hours for t in closed]),
        trade_size_histogram=histogram([t.notional_value() for t in closed]),
    )
