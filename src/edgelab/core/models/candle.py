"""
Candle domain model.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from edgelab.core.exceptions.backtest import DataError


@dataclass(frozen=True, slots=True)
class Candle:
    """One OHLCV bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        """Validate bar data after initialization."""
        if min(self.open, self.high, self.low, self.close) <= 0:
            raise DataError(f"Prices must be positive at {self.timestamp.isoformat()}")
        if self.high < self.low:
            raise DataError(
                f"High {self.high} is below low {self.low} at {self.timestamp.isoformat()}"
            )
        if self.volume < 0:
            raise DataError(f"Volume must be non-negative, got {self.volume}")

    @property
    def range_percent(self) -> float:
        """High-low range as a percent of the close."""
        return (self.high - self.low) / self.close * 100.0


def validate_candle_series(candles: Sequence[Candle]) -> None:
    """Ensure timestamps are strictly increasing.

    Raises:
        DataError: If any candle is not later than its predecessor
    """
    for previous, current in zip(candles, candles[1:], strict=False):
        if current.timestamp <= previous.timestamp:
            raise DataError(
                f"Candle timestamps must be strictly increasing: "
                f"{current.timestamp.isoformat()} follows {previous.timestamp.isoformat()}"
            )
