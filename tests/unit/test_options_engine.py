"""
Tests for the options strategy backtest engine.
"""

import pytest

from edgelab.core.enums import ExitReason, LegOutcome, PositionSide, Timeframe
from edgelab.core.exceptions.backtest import InsufficientDataError, InvalidConfigError
from edgelab.core.models.signal import Signal
from edgelab.engine.market_data import generate_candles
from edgelab.engine.signals import DelegatedSignalSource, ScriptedSignalSource
from edgelab.options.engine import OptionsBacktestConfig, OptionsBacktestEngine
from edgelab.options.strategies import predefined_strategy

HOLD_TO_EXPIRY = {"max_loss_percent": 100.0, "profit_target_percent": 1e9}


@pytest.fixture
def daily_config(base_config):
    return base_config.with_overrides(timeframe=Timeframe.D1)


@pytest.fixture
def daily_candles():
    return generate_candles(60, seed=8, timeframe=Timeframe.D1)


def enter_at(index: int) -> ScriptedSignalSource:
    return ScriptedSignalSource(by_index={index: Signal.long()})


class TestOptionsBacktestConfig:
    """Tests for options run settings."""

    def test_should_default_profit_target_to_twice_max_loss(self, daily_config) -> None:
        config = OptionsBacktestConfig(base_config=daily_config, max_loss_percent=30.0)

        assert config.effective_profit_target == 60.0

    @pytest.mark.parametrize(
        "overrides",
        [{"max_positions": 0}, {"contracts": 0}, {"volatility_window": 1}, {"max_loss_percent": 0}],
    )
    def test_should_reject_invalid_settings(self, daily_config, overrides) -> None:
        with pytest.raises(InvalidConfigError):
            OptionsBacktestConfig(base_config=daily_config, **overrides)


class TestOptionsBacktestEngine:
    """Tests for the options replay."""

    def test_should_settle_long_call_at_expiry(self, daily_config, daily_candles) -> None:
        """A held call is exercised or expires on its expiry bar and closes there."""
        # Arrange
        config = OptionsBacktestConfig(base_config=daily_config, **HOLD_TO_EXPIRY)
        strategy = predefined_strategy("long_call", days_to_expiry=10)

        # Act
        result = OptionsBacktestEngine().run(config, daily_candles, strategy, enter_at(20))

        # Assert
        assert len(result.positions) == 1
        assert len(result.backtest.trades) == 1
        trade = result.backtest.trades[0]
        assert trade.entry_time == daily_candles[20].timestamp
        assert trade.exit_time == daily_candles[30].timestamp
        assert trade.exit_reason == ExitReason.EXPIRATION
        assert all(leg.outcome != LegOutcome.OPEN for leg in result.positions[0].legs)
        assert result.exercise_count + result.expiration_count == 1
        assert result.assignment_count == 0
        assert len(result.backtest.equity_curve) == len(daily_candles)
        assert result.theta_decay_total > 0

    def test_should_book_premium_paid_as_cash(self, daily_config, daily_candles) -> None:
        """Equity after entry equals capital less costs plus the marked premium."""
        config = OptionsBacktestConfig(
            base_config=daily_config,
            commission_per_contract=0.0,
            slippage_per_unit=0.0,
            **HOLD_TO_EXPIRY,
        )
        strategy = predefined_strategy("long_call", days_to_expiry=10)

        result = OptionsBacktestEngine().run(config, daily_candles, strategy, enter_at(20))

        assert result.backtest.equity_curve[20].equity == pytest.approx(10000.0)
        final = result.backtest.equity_curve[-1].equity
        assert final == pytest.approx(10000.0 + result.backtest.trades[0].pnl)

    def test_should_record_credit_strategies_as_short(self, daily_config, daily_candles) -> None:
        config = OptionsBacktestConfig(base_config=daily_config, **HOLD_TO_EXPIRY)
        strategy = predefined_strategy("iron_condor", days_to_expiry=10)

        result = OptionsBacktestEngine().run(config, daily_candles, strategy, enter_at(20))

        position = result.positions[0]
        assert position.entry_value < 0
        assert result.backtest.trades[0].side == PositionSide.SHORT
        assert len(position.legs) == 4

    def test_should_close_open_positions_on_last_bar(self, daily_config, daily_candles) -> None:
        config = OptionsBacktestConfig(base_config=daily_config, **HOLD_TO_EXPIRY)
        strategy = predefined_strategy("straddle", days_to_expiry=90)

        result = OptionsBacktestEngine().run(config, daily_candles, strategy, enter_at(30))

        trade = result.backtest.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_DATA
        assert trade.exit_time == daily_candles[-1].timestamp
        assert all(leg.outcome == LegOutcome.CLOSED for leg in result.positions[0].legs)

    def test_should_limit_concurrent_positions(self, daily_config, daily_candles) -> None:
        """A signal on every bar never holds more than max_positions at once."""
        # Arrange
        config = OptionsBacktestConfig(base_config=daily_config, max_positions=2, **HOLD_TO_EXPIRY)
        strategy = predefined_strategy("long_put", days_to_expiry=15)
        always = DelegatedSignalSource(lambda bar, history: Signal.long())

        # Act
        result = OptionsBacktestEngine().run(config, daily_candles, strategy, always)

        # Assert
        entries = sorted(t.entry_time for t in result.backtest.trades)
        assert entries[0] == daily_candles[20].timestamp
        for trade in result.backtest.trades:
            overlapping = [
                t for t in result.backtest.trades
                if t.entry_time <= trade.entry_time < t.exit_time
            ]
            assert len(overlapping) <= 2

    def test_should_require_volatility_window(self, daily_config) -> None:
        config = OptionsBacktestConfig(base_config=daily_config)
        candles = generate_candles(15, seed=1, timeframe=Timeframe.D1)

        with pytest.raises(InsufficientDataError):
            OptionsBacktestEngine().run(
                config, candles, predefined_strategy("long_call"), enter_at(5)
            )

    def test_should_export_options_metrics(self, daily_config, daily_candles) -> None:
        config = OptionsBacktestConfig(base_config=daily_config, **HOLD_TO_EXPIRY)

        result = OptionsBacktestEngine().run(
            config, daily_candles, predefined_strategy("long_call", 10), enter_at(20)
        )

        data = result.to_dict()
        assert data["optionsMetrics"]["strategy"]["name"] == "long_call"
        assert len(data["positions"]) == 1
