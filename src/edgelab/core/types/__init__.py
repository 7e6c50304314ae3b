"""
Core type definitions and utilities.
"""

from .financial import (
    FINANCIAL_DECIMALS,
    HUNDRED,
    ONE,
    PERCENTAGE_DECIMALS,
    PRICE_DECIMALS,
    ZERO,
    calculate_pnl,
    round_amount,
    round_percentage,
    round_price,
    safe_divide,
)

__all__ = [
    "round_price",
    "round_amount",
    "round_percentage",
    "calculate_pnl",
    "safe_divide",
    "FINANCIAL_DECIMALS",
    "PERCENTAGE_DECIMALS",
    "PRICE_DECIMALS",
    "ZERO",
    "ONE",
    "HUNDRED",
]
