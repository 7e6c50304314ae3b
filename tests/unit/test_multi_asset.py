"""
Tests for multi-asset portfolio backtests.
"""

import pytest

from edgelab.core.enums import RebalanceFrequency
from edgelab.core.exceptions.backtest import DataError, InvalidConfigError
from edgelab.core.models.portfolio import AssetAllocation, PortfolioConfig
from edgelab.core.models.signal import Signal
from edgelab.engine.market_data import generate_candles
from edgelab.engine.signals import DelegatedSignalSource, ScriptedSignalSource
from edgelab.portfolio.multi_asset import MultiAssetEngine, correlation_matrix


def hold_from(index: int) -> ScriptedSignalSource:
    return ScriptedSignalSource(by_index={index: Signal.long()})


@pytest.fixture
def asset_candles():
    return {
        "BTC": generate_candles(200, seed=1),
        "ETH": generate_candles(200, seed=2, start_price=50.0, volatility=0.02),
    }


@pytest.fixture
def portfolio_config(base_config) -> PortfolioConfig:
    return PortfolioConfig.from_allocations({"BTC": 60.0, "ETH": 40.0}, base_config)


class TestCorrelationMatrix:
    """Tests for pairwise return correlation."""

    def test_should_correlate_identical_series_perfectly(self, asset_candles) -> None:
        btc = asset_candles["BTC"]

        matrix = correlation_matrix({"A": btc, "B": btc})

        assert matrix.get("A", "B") == pytest.approx(1.0)
        assert matrix.average == pytest.approx(1.0)

    def test_should_keep_unit_diagonal(self, asset_candles) -> None:
        matrix = correlation_matrix(asset_candles)

        assert matrix.get("BTC", "BTC") == 1.0
        assert matrix.get("ETH", "ETH") == 1.0
        assert -1.0 <= matrix.get("BTC", "ETH") <= 1.0
        assert matrix.to_dict()["assets"] == ["BTC", "ETH"]

    def test_should_zero_pairs_without_overlap(self, asset_candles) -> None:
        """Series that never share a timestamp correlate at 0."""
        start = asset_candles["BTC"][-1].timestamp.replace(year=2025)
        later = generate_candles(50, seed=3, start=start)

        matrix = correlation_matrix({"BTC": asset_candles["BTC"], "LATE": later})

        assert matrix.get("BTC", "LATE") == 0.0

    def test_should_set_diagonal_for_flat_series(self, candle_factory) -> None:
        """Constant prices have undefined correlation; the diagonal is still 1."""
        flat = candle_factory([100.0] * 10)

        matrix = correlation_matrix({"A": flat, "B": flat})

        assert matrix.matrix == ((1.0, 0.0), (0.0, 1.0))


class TestMultiAssetEngine:
    """Tests for combined portfolio runs."""

    def test_should_combine_assets_into_one_curve(
        self, portfolio_config, asset_candles
    ) -> None:
        """Each asset trades its capital share and the curve starts at the pool."""
        # Arrange
        sources = {"BTC": hold_from(25), "ETH": hold_from(40)}

        # Act
        result = MultiAssetEngine().run(portfolio_config, asset_candles, sources)

        # Assert
        assert len(result.equity_curve) == 200
        assert result.equity_curve[0].equity == pytest.approx(10000.0)
        assert [a.symbol for a in result.asset_results] == ["BTC", "ETH"]
        assert result.asset("BTC").capital == pytest.approx(6000.0)
        assert result.asset("ETH").capital == pytest.approx(4000.0)
        assert result.failures == {}
        assert result.metrics.herfindahl_index == pytest.approx(0.6**2 + 0.4**2)
        assert len(result.drawdown_curve) == len(result.equity_curve)

    def test_should_never_rebalance_when_disabled(self, base_config, asset_candles) -> None:
        config = PortfolioConfig.from_allocations(
            {"BTC": 60.0, "ETH": 40.0},
            base_config,
            rebalance_frequency=RebalanceFrequency.NONE,
        )
        sources = {"BTC": hold_from(25), "ETH": hold_from(25)}

        result = MultiAssetEngine().run(config, asset_candles, sources)

        assert result.rebalance_events == ()
        assert result.metrics.rebalance_count == 0

    def test_should_rebalance_on_schedule(self, base_config, asset_candles) -> None:
        """Daily rebalancing of hourly bars resets drifted weights to target."""
        # Arrange
        config = PortfolioConfig.from_allocations(
            {"BTC": 60.0, "ETH": 40.0},
            base_config,
            rebalance_frequency=RebalanceFrequency.DAILY,
            rebalance_cost_percent=0.1,
        )
        sources = {"BTC": hold_from(25), "ETH": ScriptedSignalSource()}

        # Act
        result = MultiAssetEngine().run(config, asset_candles, sources)

        # Assert
        assert result.rebalance_events
        for event in result.rebalance_events:
            assert event.reason in ("scheduled", "drift")
            assert event.new_weights == {"BTC": 0.6, "ETH": 0.4}
            assert event.cost >= 0.0
        assert result.metrics.rebalance_costs == pytest.approx(
            sum(e.cost for e in result.rebalance_events)
        )

    def test_should_require_candles_for_every_asset(self, portfolio_config, asset_candles) -> None:
        sources = {"BTC": hold_from(25), "ETH": hold_from(25)}

        with pytest.raises(DataError, match="ETH"):
            MultiAssetEngine().run(portfolio_config, {"BTC": asset_candles["BTC"]}, sources)

    def test_should_require_signal_source_for_every_asset(
        self, portfolio_config, asset_candles
    ) -> None:
        with pytest.raises(InvalidConfigError, match="ETH"):
            MultiAssetEngine().run(portfolio_config, asset_candles, {"BTC": hold_from(25)})

    def test_should_hold_failed_asset_as_cash(self, base_config, asset_candles) -> None:
        """An asset whose strategy raises keeps its capital share untouched."""
        # Arrange
        config = PortfolioConfig(
            assets=(
                AssetAllocation("BTC", 60.0, rebalance_threshold_percent=None),
                AssetAllocation("ETH", 40.0, rebalance_threshold_percent=None),
            ),
            base_config=base_config,
            rebalance_frequency=RebalanceFrequency.NONE,
        )

        def broken(bar, history):
            raise RuntimeError("feed down")

        sources = {"BTC": hold_from(25), "ETH": DelegatedSignalSource(broken, name="eth-strategy")}

        # Act
        result = MultiAssetEngine().run(config, asset_candles, sources)

        # Assert
        assert "ETH" in result.failures
        assert result.asset("ETH") is None
        assert all(p.breakdown["ETH"] == pytest.approx(4000.0) for p in result.equity_curve)
        assert result.to_dict()["failures"]["ETH"]
