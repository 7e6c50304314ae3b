"""
Trade and open position domain models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from edgelab.core.enums import ExitReason, PositionSide
from edgelab.core.exceptions.backtest import ValidationError
from edgelab.core.models.candle import Candle
from edgelab.core.types import calculate_pnl


@dataclass(frozen=True, slots=True)
class Trade:
    """A round trip. Open while ``exit_price`` is None; only closed trades enter statistics."""

    id: str
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    entry_time: datetime
    exit_price: float | None = None
    exit_time: datetime | None = None
    pnl: float = 0.0
    pnl_percent: float = 0.0
    commission: float = 0.0
    slippage: float = 0.0
    exit_reason: ExitReason | None = None
    leverage: float = 1.0

    def __post_init__(self) -> None:
        """Validate trade data after initialization."""
        if self.quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {self.quantity}")
        if self.entry_price < 0:
            raise ValidationError(f"Entry price must be non-negative, got {self.entry_price}")
        if self.commission < 0:
            raise ValidationError(f"Commission must be non-negative, got {self.commission}")
        if (self.exit_price is None) != (self.exit_time is None):
            raise ValidationError("Exit price and exit time must be set together")

    @property
    def is_closed(self) -> bool:
        """Check if the trade has an exit."""
        return self.exit_price is not None

    @property
    def is_winner(self) -> bool:
        """Check if the trade made money. Break-even trades count as losers."""
        return self.pnl > 0

    @property
    def holding_period_hours(self) -> float:
        """Hours between entry and exit (0 for open trades)."""
        if self.exit_time is None:
            return 0.0
        return (self.exit_time - self.entry_time).total_seconds() / 3600.0

    def notional_value(self) -> float:
        """Entry notional of the trade."""
        return self.entry_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        """Convert trade to its external representation."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "quantity": self.quantity,
            "entryTime": self.entry_time.isoformat(),
            "exitTime": self.exit_time.isoformat() if self.exit_time else None,
            "pnl": self.pnl,
            "pnlPercent": self.pnl_percent,
            "commission": self.commission,
            "slippage": self.slippage,
            "holdingPeriodHours": self.holding_period_hours,
            "exitReason": self.exit_reason.value if self.exit_reason else None,
        }


@dataclass(frozen=True, slots=True)
class OpenPosition:
    """The single position a simulation may hold. Replaced, never mutated."""

    trade_id: str
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    entry_time: datetime
    leverage: float
    margin: float
    entry_commission: float = 0.0
    entry_slippage: float = 0.0
    stop_loss_price: float | None = None
    take_profit_price: float | None = None

    def unrealized_pnl(self, price: float) -> float:
        """Gross PnL if the position were marked at ``price``."""
        return calculate_pnl(self.entry_price, price, self.quantity, self.side)

    def notional(self, price: float | None = None) -> float:
        """Notional at ``price`` (entry price by default)."""
        return self.quantity * (self.entry_price if price is None else price)

    def stop_triggered(self, candle: Candle) -> bool:
        """Check if the bar traded through the stop-loss."""
        if self.stop_loss_price is None:
            return False
        if self.side.is_long:
            return candle.low <= self.stop_loss_price
        return candle.high >= self.stop_loss_price

    def target_triggered(self, candle: Candle) -> bool:
        """Check if the bar traded through the take-profit."""
        if self.take_profit_price is None:
            return False
        if self.side.is_long:
            return candle.high >= self.take_profit_price
        return candle.low <= self.take_profit_price

    def to_open_trade(self, mark_price: float) -> Trade:
        """Represent the position as an open (unrealized) trade marked at ``mark_price``."""
        unrealized = self.unrealized_pnl(mark_price) - self.entry_commission
        return Trade(
            id=self.trade_id,
            symbol=self.symbol,
            side=self.side,
            entry_price=self.entry_price,
            quantity=self.quantity,
            entry_time=self.entry_time,
            pnl=unrealized,
            pnl_percent=unrealized / self.notional() * 100.0 if self.notional() else 0.0,
            commission=self.entry_commission,
            slippage=self.entry_slippage,
            leverage=self.leverage,
        )
