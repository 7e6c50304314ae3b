"""
Tests for slippage and commission models.
"""

from datetime import UTC, datetime

import pytest

from edgelab.core.enums import CommissionModel, PositionSide, SlippageModel
from edgelab.core.models.candle import Candle
from edgelab.engine.cost_model import CostModel


@pytest.fixture
def candle() -> Candle:
    return Candle(
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        open=100.0,
        high=102.0,
        low=98.0,
        close=100.0,
        volume=1000.0,
    )


class TestSlippage:
    """Slippage always moves the fill against the trader."""

    def test_should_fill_long_entries_above_reference(self, candle) -> None:
        """Buying to open a long fills higher."""
        model = CostModel(slippage_percent=0.1, commission_percent=0.0)

        fill = model.fill(100.0, 1.0, PositionSide.LONG, True, candle)

        assert fill.price == pytest.approx(100.1)
        assert fill.slippage_cost == pytest.approx(0.1)

    def test_should_fill_long_exits_below_reference(self, candle) -> None:
        """Selling to close a long fills lower."""
        model = CostModel(slippage_percent=0.1, commission_percent=0.0)

        fill = model.fill(100.0, 1.0, PositionSide.LONG, False, candle)

        assert fill.price == pytest.approx(99.9)

    def test_should_fill_short_entries_below_reference(self, candle) -> None:
        """Selling to open a short fills lower."""
        model = CostModel(slippage_percent=0.1, commission_percent=0.0)

        fill = model.fill(100.0, 1.0, PositionSide.SHORT, True, candle)

        assert fill.price < 100.0

    def test_should_grow_volume_slippage_with_participation(self, candle) -> None:
        """Larger orders relative to volume slip more."""
        model = CostModel(
            slippage_percent=0.05,
            commission_percent=0.0,
            slippage_model=SlippageModel.VOLUME_BASED,
        )

        small = model.effective_slippage_percent(candle, 1.0)
        large = model.effective_slippage_percent(candle, 100.0)

        assert 0.05 < small < large

    def test_should_scale_volatility_slippage_with_bar_range(self, candle) -> None:
        """A 4% bar range is twice the reference volatility."""
        model = CostModel(
            slippage_percent=0.05,
            commission_percent=0.0,
            slippage_model=SlippageModel.VOLATILITY_BASED,
        )

        assert model.effective_slippage_percent(candle, 1.0) == pytest.approx(0.1)


class TestCommission:
    """Tests for commission models."""

    def test_should_charge_percent_of_notional(self) -> None:
        model = CostModel(slippage_percent=0.0, commission_percent=0.1)

        assert model.commission(10_000.0) == pytest.approx(10.0)

    def test_should_charge_flat_fee(self) -> None:
        model = CostModel(
            slippage_percent=0.0,
            commission_percent=0.1,
            commission_model=CommissionModel.FIXED,
            fixed_commission=2.5,
        )

        assert model.commission(10_000.0) == 2.5
        assert model.commission(1.0) == 2.5

    def test_should_use_the_highest_reached_tier(self) -> None:
        """Tier rates fall as notional grows."""
        model = CostModel(
            slippage_percent=0.0,
            commission_percent=0.1,
            commission_model=CommissionModel.TIERED,
        )

        assert model.commission(5_000.0) == pytest.approx(5.0)
        assert model.commission(50_000.0) == pytest.approx(40.0)
        assert model.commission(2_000_000.0) == pytest.approx(600.0)

    def test_should_build_from_config(self, base_config) -> None:
        model = CostModel.from_config(base_config)

        assert model.commission_percent == base_config.commission_percent
        assert model.slippage_percent == base_config.slippage_percent
