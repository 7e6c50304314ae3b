"""
Validation utilities for core domain models.

Every helper raises ``InvalidConfigError`` so configuration problems surface
as one fatal, non-retryable error type.
"""

import math

from edgelab.core.exceptions.backtest import InvalidConfigError


def validate_positive(value: float, param_name: str) -> float:
    """Validate that a numeric value is positive.

    Args:
        value: Value to validate
        param_name: Parameter name for error messages

    Returns:
        The validated value

    Raises:
        InvalidConfigError: If value is not positive
    """
    if value is None or not math.isfinite(value) or value <= 0:
        raise InvalidConfigError(f"{param_name} must be positive, got {value}")
    return value


def validate_non_negative(value: float, param_name: str) -> float:
    """Validate that a numeric value is zero or greater.

    Raises:
        InvalidConfigError: If value is negative or not finite
    """
    if value is None or not math.isfinite(value) or value < 0:
        raise InvalidConfigError(f"{param_name} must be non-negative, got {value}")
    return value


def validate_percentage(
    value: float, param_name: str = "percentage", allow_zero: bool = False
) -> float:
    """Validate that a value is a valid percentage (0-100).

    Args:
        value: Value to validate
        param_name: Parameter name for error messages
        allow_zero: Accept 0 as a valid percentage

    Returns:
        The validated percentage

    Raises:
        InvalidConfigError: If value is outside (0, 100], or [0, 100] with allow_zero
    """
    lower_ok = value >= 0 if allow_zero else value > 0
    if value is None or not math.isfinite(value) or not lower_ok or value > 100:
        raise InvalidConfigError(f"{param_name} must be between 0 and 100, got {value}")
    return value
