"""
Tests for benchmarks and strategy-versus-benchmark comparison.
"""

import math
from datetime import UTC, datetime, timedelta

import pytest

from edgelab.core.exceptions.backtest import InsufficientDataError
from edgelab.infrastructure.results.benchmark import (
    BenchmarkComparator,
    aligned_returns,
    buy_and_hold,
    risk_free,
)

START = datetime(2024, 1, 1, tzinfo=UTC)


class TestBenchmarks:
    """Tests for benchmark construction."""

    def test_should_track_price_in_buy_and_hold(self, candle_factory) -> None:
        """Capital bought at the first close follows the price."""
        candles = candle_factory([100.0, 110.0, 121.0])

        benchmark = buy_and_hold(candles, 1000.0)

        equity = [p.equity for p in benchmark.equity_curve]
        assert equity == pytest.approx([1000.0, 1100.0, 1210.0])
        assert benchmark.total_return_percent == pytest.approx(21.0)
        assert benchmark.max_drawdown == 0.0
        assert benchmark.name == "Buy & Hold"

    def test_should_measure_buy_and_hold_drawdown(self, candle_factory) -> None:
        benchmark = buy_and_hold(candle_factory([100.0, 120.0, 90.0, 130.0]), 1000.0)

        assert benchmark.max_drawdown_percent == pytest.approx(25.0)

    def test_should_annualize_short_hourly_series(self, candle_factory) -> None:
        """A large gain over a few hours annualizes to a finite number."""
        # Arrange
        candles = candle_factory([100.0, 150.0, 300.0])

        # Act
        benchmark = buy_and_hold(candles, 1000.0)

        # Assert
        assert benchmark.total_return_percent == pytest.approx(200.0)
        assert benchmark.annualized_return == pytest.approx(200.0 * 365 * 12)
        assert math.isfinite(benchmark.calmar_ratio)

    def test_should_reject_empty_candles(self) -> None:
        with pytest.raises(InsufficientDataError):
            buy_and_hold([], 1000.0)

    def test_should_compound_risk_free_rate(self) -> None:
        """One year at 2% grows capital by 2%."""
        benchmark = risk_free(START, START + timedelta(days=365), 10000.0)

        assert len(benchmark.equity_curve) == 366
        assert benchmark.total_return_percent == pytest.approx(2.0)
        assert benchmark.annualized_return == pytest.approx(2.0)
        assert benchmark.max_drawdown == 0.0


class TestBenchmarkComparator:
    """Tests for relative statistics."""

    def test_should_align_curves_on_shared_timestamps(
        self, winning_result, candle_factory
    ) -> None:
        benchmark = buy_and_hold(candle_factory([100.0, 100.0, 105.0]), 10000.0)

        returns = aligned_returns(winning_result.equity_curve, benchmark.equity_curve)

        assert len(returns) == 2
        assert list(returns.columns) == ["strategy", "benchmark"]

    def test_should_compare_with_buy_and_hold(self, winning_result, candle_factory) -> None:
        """A strategy that ends +10% on a +10% market has no excess return."""
        # Arrange
        candles = candle_factory([100, 100, 105, 105, 110, 110])
        benchmarks = [
            buy_and_hold(candles, 10000.0),
            risk_free(START, START + timedelta(days=1), 10000.0),
        ]

        # Act
        comparisons = BenchmarkComparator().compare(winning_result, benchmarks)

        # Assert
        hold = comparisons[0]
        assert [c.benchmark for c in comparisons] == ["Buy & Hold", "Risk Free"]
        assert hold.excess_return == pytest.approx(0.0, abs=1e-9)
        assert hold.aligned_periods == len(candles) - 1
        assert -1.0 <= hold.correlation <= 1.0
        assert hold.to_dict()["alignedPeriods"] == 5
