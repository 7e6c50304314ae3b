"""
Walk-forward (out-of-sample) analysis.

Each fold picks parameters on its train window, either by running an
optimizer or by taking a fixed parameter set, then replays exactly those
parameters on the unseen test window. Comparing the two windows across folds
shows whether an edge survives outside the data it was fitted on.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from loguru import logger

from edgelab.core.constants import OVERFIT_EFFICIENCY_THRESHOLD, SIGNIFICANCE_ALPHA
from edgelab.core.exceptions.backtest import InvalidConfigError, OptimizationError
from edgelab.core.models.backtest import BacktestConfig, BacktestResult
from edgelab.core.models.candle import Candle
from edgelab.core.models.parameters import ParameterSpace
from edgelab.core.protocols import IOptimizer, SignalFactory
from edgelab.core.types.financial import safe_divide
from edgelab.core.utils.decorators import log_run
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken
from edgelab.optimization.objectives import ObjectiveSpec, split_parameters
from edgelab.validation.splitters import Fold, FoldSplitter, WalkForwardConfig
from edgelab.validation.statistics import SignificanceResult, correlation, significance_test


@dataclass(frozen=True)
class FoldResult:
    """Train and test outcome of one fold."""

    fold: Fold
    parameters: dict[str, Any] = field(default_factory=dict)
    train_result: BacktestResult | None = None
    test_result: BacktestResult | None = None
    train_objective: float = 0.0
    test_objective: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.test_result is not None

    @property
    def efficiency(self) -> float:
        """Test objective relative to train objective (0 when train is 0)."""
        return safe_divide(self.test_objective, self.train_objective)

    @property
    def degradation(self) -> float:
        """Train objective minus test objective."""
        return self.train_objective - self.test_objective

    @property
    def degradation_percent(self) -> float:
        """Degradation as a percent of a positive train objective, else 0."""
        if self.train_objective <= 0:
            return 0.0
        return self.degradation / self.train_objective * 100

    @property
    def test_return_percent(self) -> float:
        return self.test_result.metrics.total_return_percent if self.test_result else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.fold.to_dict(),
            "parameters": dict(self.parameters),
            "trainObjective": self.train_objective,
            "testObjective": self.test_objective,
            "efficiency": self.efficiency,
            "degradation": self.degradation,
            "degradationPercent": self.degradation_percent,
            "testReturnPercent": self.test_return_percent,
            "testTrades": self.test_result.metrics.total_trades if self.test_result else 0,
            "error": self.error,
        }


@dataclass(frozen=True)
class WalkForwardReport:
    """Per-fold results plus aggregates over the successful folds."""

    method: str
    folds: tuple[FoldResult, ...]
    avg_train_objective: float = 0.0
    avg_test_objective: float = 0.0
    avg_efficiency: float = 0.0
    avg_degradation: float = 0.0
    avg_degradation_percent: float = 0.0
    robustness_score: float = 0.0
    overfit_probability: float = 0.0
    consistency_score: float = 0.0
    train_test_correlation: float = 0.0
    significance: SignificanceResult = field(default_factory=SignificanceResult.empty)
    cancelled: bool = False

    @property
    def successful_folds(self) -> list[FoldResult]:
        return [f for f in self.folds if f.succeeded]

    @property
    def failures(self) -> list[FoldResult]:
        return [f for f in self.folds if not f.succeeded]

    @property
    def avg_test_trades(self) -> float:
        folds = self.successful_folds
        if not folds:
            return 0.0
        return sum(f.test_result.metrics.total_trades for f in folds) / len(folds)  # type: ignore[union-attr]

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "foldResults": [f.to_dict() for f in self.folds],
            "aggregatedMetrics": {
                "avgTrainObjective": self.avg_train_objective,
                "avgTestObjective": self.avg_test_objective,
                "avgEfficiency": self.avg_efficiency,
                "avgDegradation": self.avg_degradation,
                "avgDegradationPercent": self.avg_degradation_percent,
                "robustnessScore": self.robustness_score,
                "overfitProbability": self.overfit_probability,
                "consistencyScore": self.consistency_score,
                "trainTestCorrelation": self.train_test_correlation,
            },
            "statisticalTests": self.significance.to_dict(),
            "cancelled": self.cancelled,
        }


def aggregate_folds(
    method: str,
    folds: Sequence[FoldResult],
    alpha: float = SIGNIFICANCE_ALPHA,
    cancelled: bool = False,
) -> WalkForwardReport:
    """Summarize fold results. Failed folds are listed but not aggregated."""
    ok = [f for f in folds if f.succeeded]
    if not ok:
        return WalkForwardReport(method=method, folds=tuple(folds), cancelled=cancelled)

    train = np.array([f.train_objective for f in ok], dtype=float)
    test = np.array([f.test_objective for f in ok], dtype=float)
    count = len(ok)

    test_std = float(test.std(ddof=1)) if count > 1 else 0.0
    mean_test = float(test.mean())
    robustness = min(1.0, mean_test / test_std) if mean_test > 0 and test_std > 0 else 0.0

    overfit = sum(
        1
        for f in ok
        if f.train_objective > 0
        and f.test_objective < f.train_objective * OVERFIT_EFFICIENCY_THRESHOLD
    )
    consistent = sum(1 for f in ok if (f.train_objective > 0) == (f.test_objective > 0))

    return WalkForwardReport(
        method=method,
        folds=tuple(folds),
        avg_train_objective=float(train.mean()),
        avg_test_objective=mean_test,
        avg_efficiency=float(np.mean([f.efficiency for f in ok])),
        avg_degradation=float(np.mean([f.degradation for f in ok])),
        avg_degradation_percent=float(np.mean([f.degradation_percent for f in ok])),
        robustness_score=robustness,
        overfit_probability=overfit / count,
        consistency_score=consistent / count,
        train_test_correlation=correlation(train.tolist(), test.tolist()),
        significance=significance_test([f.test_return_percent for f in ok], alpha),
        cancelled=cancelled,
    )


class _FoldTask:
    """Fits and replays one fold. Callable so it can run on a BatchExecutor."""

    def __init__(
        self,
        engine: BacktestEngine,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        objective: ObjectiveSpec,
        optimizer: IOptimizer | None,
        space: ParameterSpace | None,
        parameters: Mapping[str, Any],
    ):
        self.engine = engine
        self.base_config = base_config
        self.candles = candles
        self.signal_factory = signal_factory
        self.objective = objective
        self.optimizer = optimizer
        self.space = space
        self.parameters = dict(parameters)

    def __call__(self, fold: Fold) -> FoldResult:
        train_candles = list(fold.train_candles(self.candles))
        test_candles = list(fold.test_candles(self.candles))
        train_config = self._window_config(train_candles)
        test_config = self._window_config(test_candles)

        if self.optimizer is not None:
            optimized = self.optimizer.optimize(
                self.space, train_config, train_candles, self.signal_factory, self.objective
            )
            if optimized.best_parameters is None or optimized.best_result is None:
                raise OptimizationError(
                    f"Fold {fold.fold_id}: no candidate succeeded on train window"
                )
            parameters = {**self.parameters, **optimized.best_parameters}
            train_result = optimized.best_result
        else:
            parameters = dict(self.parameters)
            train_result = self._run(train_config, train_candles, parameters)

        test_result = self._run(test_config, test_candles, parameters)
        train_objective = self.objective.score(train_result)
        test_objective = self.objective.score(test_result)
        logger.debug(
            f"Fold {fold.fold_id}: train={train_objective:.4f} test={test_objective:.4f} "
            f"params={parameters}"
        )
        return FoldResult(
            fold=fold,
            parameters=parameters,
            train_result=train_result,
            test_result=test_result,
            train_objective=train_objective,
            test_objective=test_objective,
        )

    def _window_config(self, window: Sequence[Candle]) -> BacktestConfig:
        start, end = window[0].timestamp, window[-1].timestamp
        return self.base_config.with_overrides(start_date=start, end_date=end)

    def _run(
        self, config: BacktestConfig, window: Sequence[Candle], parameters: Mapping[str, Any]
    ) -> BacktestResult:
        config, strategy_parameters = split_parameters(config, parameters)
        return self.engine.run(config, window, self.signal_factory(strategy_parameters))


class WalkForwardAnalyzer:
    """
    Out-of-sample validation over folds.

    Example:
        analyzer = WalkForwardAnalyzer(WalkForwardConfig(method="k_fold", num_folds=4))
        report = analyzer.analyze(
            config, candles, CrossoverSignalSource.from_parameters,
            optimizer=GridSearchOptimizer(), space=space,
        )
        report.significance.significant
    """

    def __init__(
        self,
        config: WalkForwardConfig | None = None,
        engine: BacktestEngine | None = None,
        executor: BatchExecutor | None = None,
        objective: ObjectiveSpec | None = None,
        alpha: float = SIGNIFICANCE_ALPHA,
    ):
        self.config = config or WalkForwardConfig()
        self.engine = engine or BacktestEngine(
            min_candles=min(self.config.min_train_candles, self.config.min_test_candles)
        )
        self.executor = executor or BatchExecutor()
        self.objective = objective or ObjectiveSpec()
        self.alpha = alpha
        self.splitter = FoldSplitter(self.config)

    @log_run("Walk-forward analysis")
    def analyze(
        self,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        optimizer: IOptimizer | None = None,
        space: ParameterSpace | None = None,
        parameters: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> WalkForwardReport:
        """
        Run every fold and aggregate the results.

        Args:
            base_config: Config applied to every window (dates are set per window)
            candles: Full candle series to split
            signal_factory: Builds a signal source from strategy parameters
            optimizer: Optional optimizer run on each train window
            space: Parameter space for ``optimizer``
            parameters: Fixed parameters, or values merged under optimized ones
            cancel_token: Stops dispatching folds when cancelled

        Returns:
            WalkForwardReport; a failing fold is reported in place, never raised

        Raises:
            InvalidConfigError: If an optimizer is given without a space
            InsufficientDataError: If the candles cannot form a single fold
        """
        if optimizer is not None and space is None:
            raise InvalidConfigError("Walk-forward optimization needs a parameter space")
        base_config.validate()

        folds = self.splitter.split(candles)
        task = _FoldTask(
            self.engine,
            base_config,
            candles,
            signal_factory,
            self.objective,
            optimizer,
            space,
            parameters or {},
        )
        report = self.executor.run(task, folds, cancel_token, label="walk-forward folds")

        results: list[FoldResult] = []
        for outcome in report.outcomes:
            if outcome.ok:
                results.append(outcome.value)
            else:
                fold = folds[outcome.index]
                error = f"{type(outcome.error).__name__}: {outcome.error}"
                logger.warning(f"Fold {fold.fold_id} failed: {error}")
                results.append(FoldResult(fold=fold, error=error))

        summary = aggregate_folds(
            str(self.config.method), results, self.alpha, cancelled=report.cancelled
        )
        logger.info(
            f"Walk-forward: {len(summary.successful_folds)}/{len(folds)} folds, "
            f"efficiency={summary.avg_efficiency:.3f}, consistency={summary.consistency_score:.2f}, "
            f"p={summary.significance.p_value:.4f}"
        )
        return summary
