"""
Float helpers for backtesting calculations.

Simulations run on float64 for speed and NumPy/pandas compatibility.
Results are replayable, not accounting-grade: use the rounding helpers
when presenting values and ``safe_divide`` wherever a denominator can be 0.
"""

import math

from edgelab.core.enums import PositionSide

# Financial calculation precision (number of decimal places)
FINANCIAL_DECIMALS = 8
PERCENTAGE_DECIMALS = 4
PRICE_DECIMALS = 2

ZERO = 0.0
ONE = 1.0
HUNDRED = 100.0


def round_price(price: float) -> float:
    """Round price to display precision.

    Args:
        price: Price value to round

    Returns:
        Rounded price as float
    """
    return round(price, PRICE_DECIMALS)


def round_amount(amount: float) -> float:
    """Round a monetary amount or quantity to calculation precision.

    Args:
        amount: Amount value to round

    Returns:
        Rounded amount as float
    """
    return round(amount, FINANCIAL_DECIMALS)


def round_percentage(percentage: float) -> float:
    """Round percentage to appropriate precision.

    Args:
        percentage: Percentage value to round

    Returns:
        Rounded percentage as float
    """
    if math.isinf(percentage):
        return percentage
    return round(percentage, PERCENTAGE_DECIMALS)


def calculate_pnl(
    entry_price: float,
    exit_price: float,
    quantity: float,
    side: PositionSide,
) -> float:
    """Calculate gross PnL of a position before costs.

    Args:
        entry_price: Entry price of position
        exit_price: Exit (or mark) price of position
        quantity: Position quantity (absolute value)
        side: Long or short

    Returns:
        PnL as float
    """
    return round_amount((exit_price - entry_price) * abs(quantity) * side.direction)


def safe_divide(numerator: float, denominator: float, default: float = ZERO) -> float:
    """Divide, returning ``default`` when the denominator is zero or not finite.

    Examples:
        >>> safe_divide(10.0, 4.0)
        2.5
        >>> safe_divide(1.0, 0.0)
        0.0
    """
    if denominator == ZERO or not math.isfinite(denominator):
        return default
    return numerator / denominator
