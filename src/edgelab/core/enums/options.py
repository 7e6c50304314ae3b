"""
Options instrument and lifecycle enumerations.
"""

from enum import StrEnum


class LegInstrument(StrEnum):
    """Instrument held by one leg of an options strategy."""

    CALL = "call"
    PUT = "put"
    UNDERLYING = "underlying"

    @property
    def is_option(self) -> bool:
        """Check if the leg is an option contract."""
        return self != self.UNDERLYING


class LegAction(StrEnum):
    """Whether a leg is bought or written."""

    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        """Signed multiplier for the leg value (+1 long, -1 short)."""
        return 1 if self == self.BUY else -1


class LegOutcome(StrEnum):
    """Lifecycle state of an option leg."""

    OPEN = "open"
    CLOSED = "closed"  # Closed before expiry by stop-loss or profit target
    EXPIRED = "expired"  # Out of the money at expiry
    EXERCISED = "exercised"  # Long leg in the money at expiry
    ASSIGNED = "assigned"  # Short leg in the money at expiry


class OptionStrategyType(StrEnum):
    """Predefined multi-leg options strategies."""

    LONG_CALL = "long_call"
    LONG_PUT = "long_put"
    COVERED_CALL = "covered_call"
    PROTECTIVE_PUT = "protective_put"
    BULL_CALL_SPREAD = "bull_call_spread"
    BEAR_PUT_SPREAD = "bear_put_spread"
    IRON_CONDOR = "iron_condor"
    STRADDLE = "straddle"
    STRANGLE = "strangle"
    BUTTERFLY = "butterfly"
