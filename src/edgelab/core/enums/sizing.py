"""
Position sizing method enumerations.
"""

from enum import StrEnum


class SizingMethod(StrEnum):
    """Supported position sizing rules."""

    FIXED_DOLLAR = "fixed_dollar"
    FIXED_PERCENT = "fixed_percent"
    FIXED_FRACTIONAL = "fixed_fractional"
    KELLY = "kelly"
    OPTIMAL_F = "optimal_f"
    VOLATILITY_TARGET = "volatility_target"
    ATR_BASED = "atr_based"
    MAX_DRAWDOWN_BASED = "max_drawdown_based"


class KellyFraction(StrEnum):
    """Fraction of the full Kelly bet to take."""

    FULL = "full"
    HALF = "half"
    QUARTER = "quarter"

    @property
    def multiplier(self) -> float:
        """Scale applied to the full Kelly fraction."""
        return {self.FULL: 1.0, self.HALF: 0.5, self.QUARTER: 0.25}[self]
