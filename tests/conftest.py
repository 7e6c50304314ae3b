"""
Shared fixtures for the edgelab test suite.
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

import pytest

from edgelab.core.enums import Timeframe
from edgelab.core.models.backtest import BacktestConfig, BacktestResult
from edgelab.core.models.candle import Candle
from edgelab.core.models.signal import Signal
from edgelab.engine.market_data import generate_candles
from edgelab.engine.signals import ScriptedSignalSource
from edgelab.engine.simulator import BacktestEngine

START = datetime(2024, 1, 1, tzinfo=UTC)

CandleFactory = Callable[..., list[Candle]]


def build_candles(
    closes: Sequence[float],
    start: datetime = START,
    timeframe: Timeframe = Timeframe.H1,
    spread: float = 0.0,
) -> list[Candle]:
    """Candles opening at the previous close, with an optional symmetric wick."""
    step = timedelta(seconds=timeframe.seconds)
    candles = []
    previous = closes[0]
    for i, close in enumerate(closes):
        high = max(previous, close) * (1 + spread)
        low = min(previous, close) * (1 - spread)
        candles.append(
            Candle(
                timestamp=start + i * step,
                open=previous,
                high=high,
                low=low,
                close=close,
                volume=1000.0,
            )
        )
        previous = close
    return candles


@pytest.fixture
def candle_factory() -> CandleFactory:
    """Builds candles from a list of closes."""
    return build_candles


@pytest.fixture
def base_config() -> BacktestConfig:
    """A valid hourly config with default costs."""
    return BacktestConfig(
        symbol="BTCUSDT",
        start_date=START,
        end_date=datetime(2024, 12, 31, tzinfo=UTC),
        initial_capital=10000.0,
        timeframe=Timeframe.H1,
    )


@pytest.fixture
def frictionless_config(base_config: BacktestConfig) -> BacktestConfig:
    """Full-size positions without commission, slippage or a drawdown stop."""
    return base_config.with_overrides(
        position_size_percent=100.0,
        commission_percent=0.0,
        slippage_percent=0.0,
        max_drawdown_percent=100.0,
    )


@pytest.fixture
def random_walk() -> list[Candle]:
    """400 seeded hourly candles."""
    return generate_candles(400, seed=42)


@pytest.fixture
def winning_result(frictionless_config: BacktestConfig) -> BacktestResult:
    """Two +500 long trades on six hourly candles, ending at 11000."""
    candles = build_candles([100, 100, 105, 105, 110, 110])
    source = ScriptedSignalSource(
        by_index={1: Signal.long(), 2: Signal.exit(), 3: Signal.long(), 4: Signal.exit()}
    )
    return BacktestEngine(min_candles=3).run(frictionless_config, candles, source)
