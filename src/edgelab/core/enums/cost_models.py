"""
Execution cost model enumerations.
"""

from enum import StrEnum


class SlippageModel(StrEnum):
    """How slippage is derived for a fill."""

    FIXED = "fixed"  # Constant percent of price
    VOLUME_BASED = "volume_based"  # Grows with order size relative to bar volume
    VOLATILITY_BASED = "volatility_based"  # Grows with bar range


class CommissionModel(StrEnum):
    """How commission is charged on a fill."""

    PERCENT = "percent"  # Percent of notional
    FIXED = "fixed"  # Flat amount per fill
    TIERED = "tiered"  # Percent of notional, decreasing with size
