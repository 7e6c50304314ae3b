"""
Trading signal model.

A signal source answers one question per bar: which side, if any, the
strategy wants to hold. ``side=None`` asks to be flat.
"""

from dataclasses import dataclass

from edgelab.core.enums import PositionSide


@dataclass(frozen=True, slots=True)
class Signal:
    """A request to enter or exit a position on the current bar."""

    side: PositionSide | None
    stop_loss_price: float | None = None
    take_profit_price: float | None = None
    reason: str = ""

    @classmethod
    def long(
        cls,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
        reason: str = "",
    ) -> "Signal":
        """Create a signal to hold a long position."""
        return cls(PositionSide.LONG, stop_loss_price, take_profit_price, reason)

    @classmethod
    def short(
        cls,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
        reason: str = "",
    ) -> "Signal":
        """Create a signal to hold a short position."""
        return cls(PositionSide.SHORT, stop_loss_price, take_profit_price, reason)

    @classmethod
    def exit(cls, reason: str = "") -> "Signal":
        """Create a signal to close any open position."""
        return cls(None, reason=reason)

    @property
    def is_exit(self) -> bool:
        """Check if the signal only asks to be flat."""
        return self.side is None

    def closes(self, side: PositionSide) -> bool:
        """Check if this signal closes a position held on ``side``."""
        return self.side is None or self.side == side.opposite()
