"""
Tests for the event-driven backtest simulator.
"""

from datetime import timedelta

import pytest

from edgelab.core.enums import ExitReason, PositionSide
from edgelab.core.exceptions.backtest import (
    DataError,
    InsufficientDataError,
    InvalidConfigError,
    StrategyError,
)
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle
from edgelab.core.models.signal import Signal
from edgelab.engine.signals import (
    CrossoverSignalSource,
    DelegatedSignalSource,
    ScriptedSignalSource,
)
from edgelab.engine.simulator import BacktestEngine, CandleWindow, run_backtest


class TestBacktestEngineScenarios:
    """Hand-checked runs on small candle series."""

    @pytest.fixture
    def engine(self) -> BacktestEngine:
        return BacktestEngine(min_candles=3)

    def test_should_compound_two_winning_long_trades(
        self, engine, frictionless_config, candle_factory
    ) -> None:
        """Two +500 trades on 10000 capital end at 11000 with an infinite profit factor."""
        # Arrange
        candles = candle_factory([100, 100, 105, 105, 110, 110])
        source = ScriptedSignalSource(
            by_index={
                1: Signal.long(),
                2: Signal.exit(),
                3: Signal.long(),
                4: Signal.exit(),
            }
        )

        # Act
        result = engine.run(frictionless_config, candles, source)

        # Assert
        metrics = result.metrics
        assert metrics.total_trades == 2
        assert metrics.final_capital == pytest.approx(11000.0)
        assert result.final_equity == pytest.approx(11000.0)
        assert metrics.win_rate == 1.0
        assert metrics.profit_factor == float("inf")
        assert [t.pnl for t in result.trades] == [pytest.approx(500.0), pytest.approx(500.0)]
        assert all(t.exit_reason == ExitReason.SIGNAL for t in result.trades)

    def test_should_record_one_equity_point_per_candle(
        self, engine, base_config, random_walk
    ) -> None:
        """Equity and drawdown curves cover every processed candle."""
        # Arrange
        source = CrossoverSignalSource(fast_period=5, slow_period=20, allow_short=True)

        # Act
        result = engine.run(base_config, random_walk, source)

        # Assert
        assert len(result.equity_curve) == len(random_walk)
        assert len(result.drawdown_curve) == len(random_walk)
        assert result.candles_processed == len(random_walk)
        assert all(point.drawdown >= 0 for point in result.drawdown_curve)
        assert result.equity_curve[0].timestamp == random_walk[0].timestamp

    def test_should_be_deterministic(self, engine, base_config, random_walk) -> None:
        """The same inputs always give the same result."""
        # Arrange
        source = CrossoverSignalSource(fast_period=5, slow_period=20)

        # Act
        first = engine.run(base_config, random_walk, source)
        second = engine.run(base_config, random_walk, source)

        # Assert
        assert first.to_dict() == second.to_dict()

    def test_should_close_on_opposite_signal_without_reversing(
        self, engine, frictionless_config, candle_factory
    ) -> None:
        """An opposite signal exits; it does not open the other side on the same bar."""
        # Arrange
        candles = candle_factory([100, 100, 102, 101, 100])
        source = ScriptedSignalSource(by_index={1: Signal.long(), 2: Signal.short()})

        # Act
        result = engine.run(frictionless_config, candles, source)

        # Assert
        assert len(result.trades) == 1
        assert result.trades[0].side == PositionSide.LONG
        assert result.trades[0].exit_reason == ExitReason.SIGNAL
        assert result.open_trade is None

    def test_should_ignore_short_signals_when_shorting_disabled(
        self, engine, frictionless_config, candle_factory
    ) -> None:
        """Short entries are skipped when allow_short is off."""
        # Arrange
        config = frictionless_config.with_overrides(allow_short=False)
        candles = candle_factory([100, 100, 95, 90])
        source = ScriptedSignalSource(by_index={1: Signal.short(), 3: Signal.exit()})

        # Act
        result = engine.run(config, candles, source)

        # Assert
        assert result.trades == ()
        assert result.final_equity == pytest.approx(config.initial_capital)

    def test_should_report_unclosed_position_outside_statistics(
        self, engine, frictionless_config, candle_factory
    ) -> None:
        """A position still open at the end is reported but not counted."""
        # Arrange
        candles = candle_factory([100, 100, 110, 120])
        source = ScriptedSignalSource(by_index={1: Signal.long()})

        # Act
        result = engine.run(frictionless_config, candles, source)

        # Assert
        assert result.open_trade is not None
        assert not result.open_trade.is_closed
        assert result.metrics.total_trades == 0
        assert result.metrics.total_return == 0.0
        assert result.final_equity == pytest.approx(12000.0)


class TestProtectiveExits:
    """Stop-loss, take-profit and drawdown exits."""

    @pytest.fixture
    def engine(self) -> BacktestEngine:
        return BacktestEngine(min_candles=3)

    @staticmethod
    def _bars(frictionless_config: BacktestConfig, bars: list[tuple]) -> list[Candle]:
        step = timedelta(hours=1)
        return [
            Candle(
                timestamp=frictionless_config.start_date + i * step,
                open=o,
                high=h,
                low=low,
                close=c,
                volume=1000.0,
            )
            for i, (o, h, low, c) in enumerate(bars)
        ]

    def test_should_prefer_stop_loss_when_both_levels_trade(
        self, engine, frictionless_config
    ) -> None:
        """A bar touching both the stop and the target exits at the stop."""
        # Arrange
        candles = self._bars(
            frictionless_config,
            [(100, 100, 100, 100), (100, 100, 100, 100), (100, 115, 90, 100), (100, 100, 100, 100)],
        )
        source = ScriptedSignalSource(
            by_index={1: Signal.long(stop_loss_price=95.0, take_profit_price=110.0)}
        )

        # Act
        result = engine.run(frictionless_config, candles, source)

        # Assert
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_price == pytest.approx(95.0)
        assert trade.pnl == pytest.approx(-500.0)

    def test_should_fill_at_open_when_bar_gaps_through_stop(
        self, engine, frictionless_config
    ) -> None:
        """A gap below a long stop fills at the open, not the stop level."""
        # Arrange
        candles = self._bars(
            frictionless_config,
            [(100, 100, 100, 100), (100, 100, 100, 100), (90, 92, 88, 91), (91, 91, 91, 91)],
        )
        source = ScriptedSignalSource(by_index={1: Signal.long(stop_loss_price=95.0)})

        # Act
        result = engine.run(frictionless_config, candles, source)

        # Assert
        assert result.trades[0].exit_price == pytest.approx(90.0)

    def test_should_take_profit_on_target(self, engine, frictionless_config) -> None:
        """Reaching the target closes the trade at the target level."""
        # Arrange
        config = frictionless_config.with_overrides(take_profit_percent=5.0)
        candles = self._bars(
            config,
            [(100, 100, 100, 100), (100, 100, 100, 100), (100, 106, 99, 104), (104, 104, 104, 104)],
        )
        source = ScriptedSignalSource(by_index={1: Signal.long()})

        # Act
        result = engine.run(config, candles, source)

        # Assert
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.exit_price == pytest.approx(105.0)

    def test_should_force_exit_when_drawdown_limit_reached(
        self, engine, frictionless_config, candle_factory
    ) -> None:
        """Equity falling past max_drawdown_percent closes the position."""
        # Arrange
        config = frictionless_config.with_overrides(max_drawdown_percent=10.0)
        candles = candle_factory([100, 100, 85, 80])
        source = ScriptedSignalSource(by_index={1: Signal.long()})

        # Act
        result = engine.run(config, candles, source)

        # Assert
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.MAX_DRAWDOWN
        assert trade.exit_time == candles[2].timestamp
        assert result.final_equity == pytest.approx(8500.0)


class TestBacktestEngineErrors:
    """Fatal errors raised before or during a run."""

    def test_should_reject_too_few_candles(self, base_config, candle_factory) -> None:
        """Fewer candles than min_candles is an InsufficientDataError."""
        candles = candle_factory([100, 101, 102])

        with pytest.raises(InsufficientDataError):
            BacktestEngine(min_candles=10).run(base_config, candles, ScriptedSignalSource())

    def test_should_reject_non_increasing_timestamps(self, base_config, candle_factory) -> None:
        """Out of order candles are a DataError."""
        candles = candle_factory([100, 101, 102, 103])
        candles[2], candles[3] = candles[3], candles[2]

        with pytest.raises(DataError, match="strictly increasing"):
            BacktestEngine(min_candles=3).run(base_config, candles, ScriptedSignalSource())

    def test_should_reject_invalid_config(self, base_config, candle_factory) -> None:
        """Config validation runs before any candle is processed."""
        config = base_config.with_overrides(leverage=500.0)

        with pytest.raises(InvalidConfigError, match="leverage"):
            run_backtest(config, candle_factory([100] * 30), ScriptedSignalSource())

    def test_should_wrap_signal_source_failures(self, base_config, candle_factory) -> None:
        """Exceptions from a strategy callback surface as StrategyError."""

        def broken(bar, history):
            raise ZeroDivisionError("boom")

        with pytest.raises(StrategyError, match="boom"):
            BacktestEngine(min_candles=3).run(
                base_config, candle_factory([100] * 5), DelegatedSignalSource(broken)
            )


class TestCandleWindow:
    """Tests for the read-only history view."""

    def test_should_expose_only_the_prefix(self, candle_factory) -> None:
        """The window hides candles past its end."""
        candles = candle_factory([100, 101, 102, 103, 104])
        window = CandleWindow(candles, 3)

        assert len(window) == 3
        assert window[-1] is candles[2]
        assert list(window) == candles[:3]
        assert window[1:] == candles[1:3]
        with pytest.raises(IndexError):
            window[3]
