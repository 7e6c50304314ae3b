"""
Backtest configuration and result models.

Field names follow Python conventions; ``to_dict``/``from_dict`` translate
to and from the camelCase names used by callers and exporters.
"""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from edgelab.core.constants import (
    DEFAULT_COMMISSION_PERCENT,
    DEFAULT_INITIAL_CAPITAL,
    DEFAULT_MAX_DRAWDOWN_PERCENT,
    DEFAULT_POSITION_SIZE_PERCENT,
    DEFAULT_SLIPPAGE_PERCENT,
    MAX_LEVERAGE,
    SECONDS_PER_DAY,
)
from edgelab.core.enums import CommissionModel, ObjectiveMetric, SlippageModel, Timeframe
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.trade import Trade
from edgelab.core.utils.validation import (
    validate_non_negative,
    validate_percentage,
    validate_positive,
)

_WIRE_NAMES = {
    "symbol": "symbol",
    "start_date": "startDate",
    "end_date": "endDate",
    "initial_capital": "initialCapital",
    "position_size_percent": "positionSizePercent",
    "max_drawdown_percent": "maxDrawdownPercent",
    "commission_percent": "commissionPercent",
    "slippage_percent": "slippagePercent",
    "leverage": "leverage",
    "timeframe": "timeframe",
    "slippage_model": "slippageModel",
    "commission_model": "commissionModel",
    "fixed_commission": "fixedCommission",
    "stop_loss_percent": "stopLossPercent",
    "take_profit_percent": "takeProfitPercent",
    "allow_short": "allowShort",
}


@dataclass(frozen=True)
class BacktestConfig:
    """Configuration for one simulation. Immutable once a run starts."""

    symbol: str
    start_date: datetime
    end_date: datetime
    initial_capital: float = DEFAULT_INITIAL_CAPITAL
    position_size_percent: float = DEFAULT_POSITION_SIZE_PERCENT
    max_drawdown_percent: float = DEFAULT_MAX_DRAWDOWN_PERCENT
    commission_percent: float = DEFAULT_COMMISSION_PERCENT
    slippage_percent: float = DEFAULT_SLIPPAGE_PERCENT
    leverage: float = 1.0
    timeframe: Timeframe = Timeframe.H1
    slippage_model: SlippageModel = SlippageModel.FIXED
    commission_model: CommissionModel = CommissionModel.PERCENT
    fixed_commission: float = 0.0
    stop_loss_percent: float | None = None
    take_profit_percent: float | None = None
    allow_short: bool = True

    def is_valid_date_range(self) -> bool:
        """Validate that end_date is after start_date."""
        return self.end_date > self.start_date

    def duration_days(self) -> float:
        """Length of the configured period in days."""
        return (self.end_date - self.start_date).total_seconds() / SECONDS_PER_DAY

    def is_valid_leverage(self) -> bool:
        """Validate leverage is within reasonable bounds."""
        return 1.0 <= self.leverage <= MAX_LEVERAGE

    def is_valid_capital(self) -> bool:
        """Validate initial capital is positive."""
        return self.initial_capital > 0

    def validate(self) -> "BacktestConfig":
        """Check every field, raising on the first problem.

        Returns:
            The config itself, for chaining

        Raises:
            InvalidConfigError: If any field is missing or out of range
        """
        if not self.symbol:
            raise InvalidConfigError("symbol is required")
        if self.start_date is None or self.end_date is None:
            raise InvalidConfigError("start_date and end_date are required")
        if not self.is_valid_date_range():
            raise InvalidConfigError(
                f"end_date {self.end_date.isoformat()} must be after "
                f"start_date {self.start_date.isoformat()}"
            )
        validate_positive(self.initial_capital, "initial_capital")
        if not self.is_valid_leverage():
            raise InvalidConfigError(
                f"leverage must be between 1 and {MAX_LEVERAGE}, got {self.leverage}"
            )
        validate_percentage(self.position_size_percent, "position_size_percent")
        validate_percentage(self.max_drawdown_percent, "max_drawdown_percent")
        validate_percentage(self.commission_percent, "commission_percent", allow_zero=True)
        validate_percentage(self.slippage_percent, "slippage_percent", allow_zero=True)
        validate_non_negative(self.fixed_commission, "fixed_commission")
        if self.stop_loss_percent is not None:
            validate_percentage(self.stop_loss_percent, "stop_loss_percent")
        if self.take_profit_percent is not None:
            validate_positive(self.take_profit_percent, "take_profit_percent")
        return self

    def with_overrides(self, **changes: Any) -> "BacktestConfig":
        """Copy of the config with some fields replaced.

        Raises:
            InvalidConfigError: If a key is not a config field
        """
        unknown = set(changes) - set(self.field_names())
        if unknown:
            raise InvalidConfigError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **changes)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        """Names of all config fields."""
        return tuple(f.name for f in dataclasses.fields(cls))

    def to_dict(self) -> dict[str, Any]:
        """Convert config to its external (camelCase) representation."""
        result: dict[str, Any] = {}
        for name, wire_name in _WIRE_NAMES.items():
            value = getattr(self, name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif hasattr(value, "value"):
                value = value.value
            result[wire_name] = value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BacktestConfig":
        """Build a config from camelCase or snake_case keys.

        Raises:
            InvalidConfigError: If required fields are missing or values malformed
        """
        reverse = {wire: name for name, wire in _WIRE_NAMES.items()}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = reverse.get(key, key)
            if name not in _WIRE_NAMES:
                raise InvalidConfigError(f"Unknown config field: {key}")
            kwargs[name] = value

        try:
            for date_field in ("start_date", "end_date"):
                if isinstance(kwargs.get(date_field), str):
                    kwargs[date_field] = datetime.fromisoformat(kwargs[date_field])
            if "timeframe" in kwargs:
                kwargs["timeframe"] = Timeframe.from_string(str(kwargs["timeframe"]))
            if "slippage_model" in kwargs:
                kwargs["slippage_model"] = SlippageModel(kwargs["slippage_model"])
            if "commission_model" in kwargs:
                kwargs["commission_model"] = CommissionModel(kwargs["commission_model"])
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"Invalid backtest config: {e}") from e


@dataclass(frozen=True, slots=True)
class EquityPoint:
    """Account equity after processing one candle."""

    timestamp: datetime
    equity: float

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "equity": self.equity}


@dataclass(frozen=True, slots=True)
class DrawdownPoint:
    """Percent drawdown from the running equity peak. Always >= 0."""

    timestamp: datetime
    drawdown: float

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "drawdown": self.drawdown}


@dataclass(frozen=True)
class PerformanceMetrics:
    """Summary, trade and risk statistics of one run."""

    initial_capital: float = 0.0
    final_capital: float = 0.0
    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return: float = 0.0
    period_days: float = 0.0

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_holding_period: float = 0.0

    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    profit_factor: float = 0.0
    ulcer_index: float = 0.0
    pain_ratio: float = 0.0
    recovery_factor: float = 0.0
    tail_ratio: float = 0.0

    expectancy: float = 0.0
    avg_trade_return: float = 0.0
    payoff_ratio: float = 0.0
    common_sense_ratio: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    total_commission: float = 0.0
    monthly_returns: dict[str, float] = field(default_factory=dict)

    def value(self, metric: ObjectiveMetric) -> float:
        """Read one metric by objective name."""
        return float(getattr(self, metric.value))

    def trade_stats_dict(self) -> dict[str, Any]:
        return {
            "totalTrades": self.total_trades,
            "winningTrades": self.winning_trades,
            "losingTrades": self.losing_trades,
            "winRate": self.win_rate,
            "avgWin": self.avg_win,
            "avgLoss": self.avg_loss,
            "largestWin": self.largest_win,
            "largestLoss": self.largest_loss,
            "avgHoldingPeriod": self.avg_holding_period,
        }

    def risk_metrics_dict(self) -> dict[str, Any]:
        return {
            "maxDrawdown": self.max_drawdown,
            "maxDrawdownPercent": self.max_drawdown_percent,
            "sharpeRatio": self.sharpe_ratio,
            "sortinoRatio": self.sortino_ratio,
            "calmarRatio": self.calmar_ratio,
            "profitFactor": self.profit_factor,
            "ulcerIndex": self.ulcer_index,
            "painRatio": self.pain_ratio,
            "recoveryFactor": self.recovery_factor,
            "tailRatio": self.tail_ratio,
        }

    def extended_dict(self) -> dict[str, Any]:
        return {
            "expectancy": self.expectancy,
            "avgTradeReturn": self.avg_trade_return,
            "payoffRatio": self.payoff_ratio,
            "commonSenseRatio": self.common_sense_ratio,
            "maxConsecutiveWins": self.max_consecutive_wins,
            "maxConsecutiveLosses": self.max_consecutive_losses,
            "totalCommission": self.total_commission,
            "monthlyReturns": dict(self.monthly_returns),
        }


@dataclass(frozen=True)
class BacktestResult:
    """Outcome of one simulation: a pure function of config, candles and signal source."""

    config: BacktestConfig
    trades: tuple[Trade, ...]
    equity_curve: tuple[EquityPoint, ...]
    drawdown_curve: tuple[DrawdownPoint, ...]
    metrics: PerformanceMetrics
    open_trade: Trade | None = None
    candles_processed: int = 0
    rejected_signals: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def closed_trades(self) -> tuple[Trade, ...]:
        """Trades with an exit."""
        return tuple(t for t in self.trades if t.is_closed)

    @property
    def final_equity(self) -> float:
        """Last marked equity, including any open position."""
        return self.equity_curve[-1].equity if self.equity_curve else self.config.initial_capital

    def summary_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.config.symbol,
            "period": {
                "start": (self.start_time or self.config.start_date).isoformat(),
                "end": (self.end_time or self.config.end_date).isoformat(),
                "days": self.metrics.period_days,
            },
            "initialCapital": self.metrics.initial_capital,
            "finalCapital": self.metrics.final_capital,
            "totalReturn": self.metrics.total_return,
            "totalReturnPercent": self.metrics.total_return_percent,
            "annualizedReturn": self.metrics.annualized_return,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert result to its external representation."""
        return {
            "config": self.config.to_dict(),
            "summary": self.summary_dict(),
            "tradeStats": self.metrics.trade_stats_dict(),
            "riskMetrics": self.metrics.risk_metrics_dict(),
            "extendedMetrics": self.metrics.extended_dict(),
            "equityCurve": [point.to_dict() for point in self.equity_curve],
            "drawdownCurve": [point.to_dict() for point in self.drawdown_curve],
            "trades": [trade.to_dict() for trade in self.trades],
            "openTrade": self.open_trade.to_dict() if self.open_trade else None,
            "rejectedSignals": self.rejected_signals,
        }
