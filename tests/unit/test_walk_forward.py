"""
Tests for fold splitting, significance statistics and walk-forward analysis.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from edgelab.core.enums import FoldMethod, Timeframe
from edgelab.core.exceptions.backtest import InsufficientDataError, InvalidConfigError
from edgelab.core.models.backtest import BacktestResult, PerformanceMetrics
from edgelab.core.models.parameters import ParameterSpace
from edgelab.engine.market_data import generate_candles
from edgelab.engine.signals import CrossoverSignalSource
from edgelab.optimization.grid_search import GridSearchOptimizer
from edgelab.validation.splitters import FoldSplitter, WalkForwardConfig
from edgelab.validation.statistics import correlation, sign_test, significance_test
from edgelab.validation.walk_forward import FoldResult, WalkForwardAnalyzer, aggregate_folds

factory = CrossoverSignalSource.from_parameters
PARAMETERS = {"fast_period": 5, "slow_period": 20}


@pytest.fixture
def daily_candles():
    return generate_candles(400, seed=5, timeframe=Timeframe.D1)


def assert_non_overlapping(folds) -> None:
    for fold in folds:
        assert fold.train_start < fold.train_end <= fold.test_start < fold.test_end
    for previous, current in zip(folds, folds[1:]):
        assert current.test_start >= previous.test_end


class TestFoldSplitter:
    """Tests for every fold method."""

    def test_should_tile_walk_forward_windows(self, random_walk) -> None:
        """Ratio windows give num_folds non-overlapping test windows."""
        # Act
        folds = FoldSplitter(WalkForwardConfig(num_folds=5)).split(random_walk)

        # Assert
        assert len(folds) == 5
        assert_non_overlapping(folds)
        assert [f.fold_id for f in folds] == list(range(5))

    def test_should_expand_train_window_in_k_fold(self, random_walk) -> None:
        """K-fold trains from the first candle on a growing window."""
        config = WalkForwardConfig(method=FoldMethod.K_FOLD, num_folds=3)

        folds = FoldSplitter(config).split(random_walk)

        assert len(folds) == 3
        assert all(f.train_start == 0 for f in folds)
        assert [f.train_size for f in folds] == sorted(f.train_size for f in folds)
        assert folds[-1].test_end == len(random_walk)
        assert_non_overlapping(folds)

    def test_should_slide_rolling_windows_by_days(self, daily_candles) -> None:
        config = WalkForwardConfig(
            method=FoldMethod.ROLLING, train_window_days=90, test_window_days=30
        )

        folds = FoldSplitter(config).split(daily_candles)

        assert len(folds) >= 5
        assert folds[1].train_start > folds[0].train_start
        assert_non_overlapping(folds)

    def test_should_anchor_train_windows_at_first_candle(self, daily_candles) -> None:
        config = WalkForwardConfig(
            method=FoldMethod.ANCHORED, train_window_days=90, test_window_days=30
        )

        folds = FoldSplitter(config).split(daily_candles)

        assert all(f.train_start == 0 for f in folds)
        assert folds[-1].train_size > folds[0].train_size
        assert_non_overlapping(folds)

    @pytest.mark.parametrize("method", list(FoldMethod))
    def test_should_start_tests_after_the_embargo(self, method, daily_candles) -> None:
        """No test candle is closer than embargo_period days to the train window."""
        # Arrange
        config = WalkForwardConfig(
            method=method,
            num_folds=3,
            train_window_days=90,
            test_window_days=30,
            embargo_period=3,
        )

        # Act
        folds = FoldSplitter(config).split(daily_candles)

        # Assert
        for fold in folds:
            assert fold.test_start_time - fold.train_end_time >= timedelta(days=3)
            assert fold.embargo_candles >= 2

    def test_should_reject_series_too_short_for_any_fold(self, candle_factory) -> None:
        candles = candle_factory([100.0] * 30)

        with pytest.raises(InsufficientDataError):
            FoldSplitter(WalkForwardConfig(num_folds=3)).split(candles)

    def test_should_reject_overflowing_ratios(self) -> None:
        with pytest.raises(PydanticValidationError, match="must not exceed 1"):
            WalkForwardConfig(train_ratio=0.8, test_ratio=0.3)

    def test_should_reject_overlapping_steps(self) -> None:
        with pytest.raises(PydanticValidationError, match="overlap"):
            WalkForwardConfig(test_window_days=30, step_days=10)

    def test_should_accept_camel_case_keys(self) -> None:
        config = WalkForwardConfig.model_validate({"numFolds": 4, "embargoPeriod": 1.5})

        assert config.num_folds == 4
        assert config.embargo_period == 1.5


class TestStatistics:
    """Tests for significance helpers."""

    def test_should_flag_consistently_positive_returns(self) -> None:
        result = significance_test([2.0, 3.0, 2.5, 3.5, 2.8, 3.1])

        assert result.significant
        assert result.p_value < 0.05
        assert result.confidence_interval[0] > 0

    def test_should_not_flag_mixed_returns(self) -> None:
        result = significance_test([5.0, -4.0, 3.0, -6.0])

        assert not result.significant

    def test_should_handle_zero_variance(self) -> None:
        result = significance_test([1.0, 1.0, 1.0])

        assert result.p_value == 1.0
        assert result.confidence_interval == (1.0, 1.0)

    def test_should_return_empty_result_without_data(self) -> None:
        result = significance_test([])

        assert result.sample_size == 0
        assert not result.significant

    def test_sign_test_should_ignore_zeros(self) -> None:
        assert sign_test([0.0, 0.0]) == 1.0
        assert sign_test([1.0, 1.0, 1.0, 1.0, 1.0]) == pytest.approx(1 / 32)

    def test_correlation_should_be_zero_when_undefined(self) -> None:
        assert correlation([1.0], [2.0]) == 0.0
        assert correlation([1.0, 1.0], [1.0, 2.0]) == 0.0
        assert correlation([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)


class TestAggregateFolds:
    """Tests for fold summaries."""

    @pytest.fixture
    def folds(self, random_walk):
        return FoldSplitter(WalkForwardConfig(num_folds=3)).split(random_walk)

    @pytest.fixture
    def flat_result(self, base_config) -> BacktestResult:
        return BacktestResult(
            config=base_config,
            trades=(),
            equity_curve=(),
            drawdown_curve=(),
            metrics=PerformanceMetrics(),
        )

    def test_should_score_consistency_by_matching_signs(self, folds, flat_result) -> None:
        # Arrange
        results = [
            FoldResult(
                fold=folds[0], test_result=flat_result, train_objective=10.0, test_objective=8.0
            ),
            FoldResult(
                fold=folds[1], test_result=flat_result, train_objective=10.0, test_objective=-2.0
            ),
            FoldResult(
                fold=folds[2], test_result=flat_result, train_objective=-5.0, test_objective=-1.0
            ),
        ]

        # Act
        report = aggregate_folds("walk_forward", results)

        # Assert
        assert report.consistency_score == pytest.approx(2 / 3)
        assert report.overfit_probability == pytest.approx(1 / 3)

    def test_should_skip_failed_folds(self, folds) -> None:
        """Failed folds are listed but contribute nothing."""
        report = aggregate_folds("walk_forward", [FoldResult(fold=folds[0], error="boom")])

        assert len(report.folds) == 1
        assert report.failures[0].error == "boom"
        assert report.avg_test_objective == 0.0


class TestWalkForwardAnalyzer:
    """End-to-end walk-forward runs."""

    def test_should_run_every_fold_with_fixed_parameters(self, base_config, random_walk) -> None:
        # Arrange
        analyzer = WalkForwardAnalyzer(WalkForwardConfig(num_folds=4))

        # Act
        report = analyzer.analyze(base_config, random_walk, factory, parameters=PARAMETERS)

        # Assert
        assert len(report.folds) == 4
        assert len(report.successful_folds) == 4
        for fold_result in report.folds:
            fold = fold_result.fold
            assert fold_result.parameters == PARAMETERS
            assert fold_result.test_result.config.start_date == fold.test_start_time
            assert fold_result.test_result.candles_processed == fold.test_size
        assert report.significance.sample_size == 4
        assert 0.0 <= report.consistency_score <= 1.0

    def test_should_optimize_on_each_train_window(self, base_config, random_walk) -> None:
        """Parameters chosen on a train window are replayed on its test window."""
        # Arrange
        space = ParameterSpace.from_dict({"fast_period": [3, 5], "slow_period": [15, 20]})
        analyzer = WalkForwardAnalyzer(
            WalkForwardConfig(method=FoldMethod.K_FOLD, num_folds=3)
        )

        # Act
        report = analyzer.analyze(
            base_config, random_walk, factory, optimizer=GridSearchOptimizer(), space=space
        )

        # Assert
        assert len(report.successful_folds) == 3
        for fold_result in report.folds:
            assert fold_result.parameters["fast_period"] in (3, 5)
            assert fold_result.parameters["slow_period"] in (15, 20)
        assert report.to_dict()["method"] == "k_fold"

    def test_should_report_failing_folds_in_place(self, base_config, random_walk) -> None:
        """A fold whose strategy cannot be built fails alone."""
        analyzer = WalkForwardAnalyzer(WalkForwardConfig(num_folds=3))

        report = analyzer.analyze(
            base_config, random_walk, factory, parameters={"fast_period": 30, "slow_period": 20}
        )

        assert len(report.folds) == 3
        assert len(report.failures) == 3
        assert all("InvalidConfigError" in f.error for f in report.failures)

    def test_should_require_space_with_optimizer(self, base_config, random_walk) -> None:
        with pytest.raises(InvalidConfigError, match="parameter space"):
            WalkForwardAnalyzer().analyze(
                base_config, random_walk, factory, optimizer=GridSearchOptimizer()
            )
