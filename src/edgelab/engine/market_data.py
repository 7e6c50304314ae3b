"""
Candle series helpers: DataFrame conversion and deterministic synthesis.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import numpy as np
import pandas as pd

from edgelab.core.enums import Timeframe
from edgelab.core.exceptions.backtest import DataError
from edgelab.core.models.candle import Candle, validate_candle_series

REQUIRED_COLUMNS = ["open", "high", "low", "close"]


def candles_from_dataframe(df: pd.DataFrame) -> list[Candle]:
    """Convert an OHLCV DataFrame into candles.

    The timestamp is taken from a ``timestamp`` column when present, otherwise
    from a DatetimeIndex. A missing ``volume`` column is treated as zero.

    Raises:
        DataError: If required columns are missing or timestamps are not increasing
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise DataError(f"Missing required columns: {missing}")

    if "timestamp" in df.columns:
        timestamps = pd.to_datetime(df["timestamp"])
    elif isinstance(df.index, pd.DatetimeIndex):
        timestamps = df.index.to_series()
    else:
        raise DataError("DataFrame needs a timestamp column or a DatetimeIndex")

    volumes = df["volume"] if "volume" in df.columns else pd.Series(0.0, index=df.index)
    candles = [
        Candle(
            timestamp=ts.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for ts, o, h, lo, c, v in zip(
            timestamps,
            df["open"],
            df["high"],
            df["low"],
            df["close"],
            volumes,
            strict=True,
        )
    ]
    validate_candle_series(candles)
    return candles


def candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    """Convert candles into an OHLCV DataFrame indexed by timestamp."""
    df = pd.DataFrame(
        {
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        },
        index=pd.DatetimeIndex([c.timestamp for c in candles], name="timestamp"),
    )
    return df


def generate_candles(
    count: int,
    seed: int | None = None,
    start: datetime | None = None,
    timeframe: Timeframe = Timeframe.H1,
    start_price: float = 100.0,
    drift: float = 0.0002,
    volatility: float = 0.01,
    rng: np.random.Generator | None = None,
) -> list[Candle]:
    """Synthesize a geometric random walk of candles.

    The same seed always gives the same series.

    Args:
        count: Number of candles
        seed: Seed for the generator (ignored when ``rng`` is given)
        start: Timestamp of the first candle
        timeframe: Spacing between candles
        start_price: Open of the first candle
        drift: Mean log return per bar
        volatility: Standard deviation of log returns per bar
        rng: Generator to draw from

    Returns:
        List of candles with strictly increasing timestamps
    """
    generator = rng if rng is not None else np.random.default_rng(seed)
    start = start or datetime(2024, 1, 1, tzinfo=UTC)
    step = timedelta(seconds=timeframe.seconds)

    log_returns = generator.normal(drift, volatility, size=count)
    closes = start_price * np.exp(np.cumsum(log_returns))
    opens = np.concatenate(([start_price], closes[:-1]))
    wicks = np.abs(generator.normal(0.0, volatility / 2, size=(count, 2)))
    highs = np.maximum(opens, closes) * (1 + wicks[:, 0])
    lows = np.minimum(opens, closes) * (1 - wicks[:, 1])
    volumes = generator.uniform(500.0, 1500.0, size=count)

    frame = pd.DataFrame(
        {"open": opens, "high": highs, "low": lows, "close": closes, "volume": volumes},
        index=pd.DatetimeIndex([start + i * step for i in range(count)], name="timestamp"),
    )
    return candles_from_dataframe(frame)
