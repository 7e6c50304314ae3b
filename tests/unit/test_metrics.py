"""
Tests for performance and risk statistics.
"""

import math
from datetime import UTC, datetime, timedelta

import pytest

from edgelab.core.enums import PositionSide
from edgelab.core.models.backtest import EquityPoint
from edgelab.core.models.trade import Trade
from edgelab.engine.metrics import (
    MetricsCalculator,
    drawdown_series,
    histogram_buckets,
    max_consecutive,
    max_drawdown,
    monthly_returns,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    tail_ratio,
)

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def make_trade(pnl: float, exit_time: datetime = T0 + timedelta(hours=5), index: int = 1) -> Trade:
    return Trade(
        id=f"T{index}",
        symbol="BTCUSDT",
        side=PositionSide.LONG,
        entry_price=100.0,
        quantity=10.0,
        entry_time=exit_time - timedelta(hours=5),
        exit_price=100.0 + pnl / 10,
        exit_time=exit_time,
        pnl=pnl,
        pnl_percent=pnl / 10,
    )


class TestProfitFactor:
    """Tests for gross profit over gross loss."""

    def test_should_be_infinite_with_wins_and_no_losses(self) -> None:
        """Only winners give +inf."""
        assert profit_factor([100.0, 50.0]) == math.inf

    def test_should_be_zero_without_trades(self) -> None:
        """No trades give 0, not NaN."""
        assert profit_factor([]) == 0.0

    def test_should_ignore_break_even_trades(self) -> None:
        """Zero P&L counts toward neither side."""
        assert profit_factor([0.0, 0.0]) == 0.0

    def test_should_divide_gross_profit_by_gross_loss(self) -> None:
        """Mixed trades give the plain ratio."""
        assert profit_factor([300.0, -100.0, -50.0]) == pytest.approx(2.0)


class TestDrawdown:
    """Tests for drawdown series and maximum drawdown."""

    def test_should_be_zero_at_running_peak(self) -> None:
        """The first point is its own peak, even below starting capital."""
        series = drawdown_series([9990.0, 9980.0, 9990.0])

        assert series[0] == 0.0
        assert series[1] == pytest.approx(10 / 9990 * 100)
        assert series[2] == 0.0

    def test_should_measure_curve_starting_below_capital(self) -> None:
        absolute, percent = max_drawdown([9990.0, 9980.0, 9990.0])

        assert absolute == pytest.approx(10.0)
        assert percent == pytest.approx(10 / 9990 * 100)

    def test_should_measure_absolute_and_percent_independently(self) -> None:
        """The largest currency drop and the largest percent drop can come from different peaks."""
        # Arrange
        equity = [100.0, 50.0, 1000.0, 800.0]

        # Act
        absolute, percent = max_drawdown(equity)

        # Assert
        assert absolute == pytest.approx(200.0)
        assert percent == pytest.approx(50.0)

    def test_should_return_zero_for_monotonic_equity(self) -> None:
        """Equity that only rises has no drawdown."""
        assert max_drawdown([100.0, 110.0, 120.0]) == (0.0, 0.0)

    def test_should_return_zero_for_empty_equity(self) -> None:
        assert max_drawdown([]) == (0.0, 0.0)


class TestRatios:
    """Tests for return-based ratios."""

    def test_sharpe_should_be_zero_on_zero_variance(self) -> None:
        """Constant returns have no defined Sharpe ratio and report 0."""
        assert sharpe_ratio([1.0, 1.0, 1.0]) == 0.0

    def test_sharpe_should_be_zero_with_one_sample(self) -> None:
        assert sharpe_ratio([1.0]) == 0.0

    def test_sharpe_should_annualize_with_periods(self) -> None:
        """Doubling the period count scales the ratio by sqrt(2)."""
        returns = [1.0, -0.5, 2.0, 0.5]

        assert sharpe_ratio(returns, periods=504) == pytest.approx(
            sharpe_ratio(returns, periods=252) * math.sqrt(2)
        )

    def test_sortino_should_need_two_negative_returns(self) -> None:
        """Fewer than two losing returns give 0."""
        assert sortino_ratio([1.0, 2.0, -1.0]) == 0.0
        assert sortino_ratio([1.0, -2.0, -1.0]) != 0.0

    def test_tail_ratio_should_need_minimum_samples(self) -> None:
        """Short return series give 0."""
        assert tail_ratio([1.0] * 5) == 0.0

    def test_tail_ratio_should_stay_positive_for_losing_series(self) -> None:
        """Both tails are taken in absolute value."""
        returns = [-float(i) for i in range(1, 21)]

        ratio = tail_ratio(returns)

        assert ratio == pytest.approx(1.0 / 19.0)
        assert ratio > 0

    def test_max_consecutive_should_count_break_even_as_loss(self) -> None:
        """Runs are split on winning (pnl > 0) versus not winning."""
        pnls = [10.0, 20.0, 0.0, -5.0, -1.0, 30.0]

        assert max_consecutive(pnls, winning=True) == 2
        assert max_consecutive(pnls, winning=False) == 3


class TestMonthlyReturns:
    """Tests for realized P&L per exit month."""

    def test_should_group_by_exit_month(self) -> None:
        """Trades closing in the same month are summed."""
        trades = [
            make_trade(100.0, datetime(2024, 1, 10, tzinfo=UTC), 1),
            make_trade(-50.0, datetime(2024, 1, 20, tzinfo=UTC), 2),
            make_trade(200.0, datetime(2024, 2, 5, tzinfo=UTC), 3),
        ]

        result = monthly_returns(trades, 10000.0)

        assert result == {"2024-01": pytest.approx(0.5), "2024-02": pytest.approx(2.0)}

    def test_should_be_empty_without_closed_trades(self) -> None:
        assert monthly_returns([], 10000.0) == {}


class TestMetricsCalculator:
    """Tests for the metrics bundle."""

    def test_should_report_zeros_without_trades(self, base_config) -> None:
        """A run with no trades has no NaN anywhere."""
        # Arrange
        curve = [EquityPoint(T0 + timedelta(hours=i), 10000.0) for i in range(10)]

        # Act
        metrics = MetricsCalculator().calculate([], curve, base_config)

        # Assert
        assert metrics.total_trades == 0
        assert metrics.win_rate == 0.0
        assert metrics.profit_factor == 0.0
        assert metrics.sharpe_ratio == 0.0
        assert metrics.final_capital == base_config.initial_capital
        for name, value in metrics.risk_metrics_dict().items():
            assert not math.isnan(value), name

    def test_should_count_only_closed_trades(self, base_config) -> None:
        """Open trades do not enter trade statistics."""
        # Arrange
        open_trade = Trade(
            id="T9",
            symbol="BTCUSDT",
            side=PositionSide.LONG,
            entry_price=100.0,
            quantity=1.0,
            entry_time=T0,
        )
        trades = [make_trade(100.0, index=1), make_trade(-40.0, index=2), open_trade]
        curve = [EquityPoint(T0 + timedelta(hours=i), 10000.0 + i) for i in range(10)]

        # Act
        metrics = MetricsCalculator().calculate(trades, curve, base_config)

        # Assert
        assert metrics.total_trades == 2
        assert metrics.winning_trades == 1
        assert metrics.losing_trades == 1
        assert metrics.win_rate == pytest.approx(0.5)
        assert metrics.total_return == pytest.approx(60.0)
        assert metrics.profit_factor == pytest.approx(2.5)
        assert metrics.expectancy == pytest.approx(30.0)
        assert metrics.largest_loss == pytest.approx(-40.0)


class TestHistogramBuckets:
    """Tests for value bucketing."""

    def test_should_split_spread_values_into_bins(self) -> None:
        buckets = histogram_buckets([1.0, 2.0, 3.0, 4.0], bins=2)

        assert [count for _, _, count in buckets] == [2, 2]
        assert buckets[0][0] == 1.0
        assert buckets[-1][1] == 4.0

    def test_should_use_one_bucket_for_rounding_noise(self) -> None:
        """Values differing only by float rounding cannot be cut into bins."""
        values = [10900.000000000002, 10900.0, 10899.999999999998]

        buckets = histogram_buckets(values, bins=20)

        assert len(buckets) == 1
        assert buckets[0][2] == 3

    def test_should_return_nothing_for_no_values(self) -> None:
        assert histogram_buckets([], bins=10) == []
