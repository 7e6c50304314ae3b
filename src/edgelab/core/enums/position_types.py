"""
Position side and exit reason enumerations.
"""

from enum import StrEnum


class PositionSide(StrEnum):
    """
    Direction of a position.

    Long positions profit when price rises, short positions when it falls.
    """

    LONG = "long"
    SHORT = "short"

    @property
    def is_long(self) -> bool:
        """Check if side is long."""
        return self == self.LONG

    @property
    def is_short(self) -> bool:
        """Check if side is short."""
        return self == self.SHORT

    @property
    def direction(self) -> int:
        """Signed multiplier applied to price moves (+1 long, -1 short)."""
        return 1 if self.is_long else -1

    def opposite(self) -> "PositionSide":
        """Get the opposite side."""
        return self.SHORT if self.is_long else self.LONG  # type: ignore[return-value]


class ExitReason(StrEnum):
    """Why a position was closed."""

    SIGNAL = "signal"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MAX_DRAWDOWN = "max_drawdown"
    EXPIRATION = "expiration"
    END_OF_DATA = "end_of_data"

    @property
    def is_risk_exit(self) -> bool:
        """Check if the exit was forced by a risk rule rather than a signal."""
        return self in [self.STOP_LOSS, self.MAX_DRAWDOWN]
