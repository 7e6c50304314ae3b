"""
Robustness testing: does the strategy survive small changes to its setup?

Perturbation tests replay one configuration under slightly worse or shifted
conditions and compare each run with the unperturbed baseline. Walk-forward
checks grade a ``WalkForwardReport`` for consistency, sample size and
overfitting.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from edgelab.core.constants import (
    FRAGILITY_THRESHOLD,
    MAX_DEGRADATION_PERCENT,
    MAX_OVERFIT_PROBABILITY,
    MIN_CONSISTENCY_SCORE,
    MIN_FOLDS_FOR_SIGNIFICANCE,
    MIN_TRADES_PER_FOLD,
    MIN_TRAIN_TEST_CORRELATION,
)
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.backtest import BacktestConfig, BacktestResult
from edgelab.core.models.candle import Candle
from edgelab.core.protocols import SignalFactory
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken
from edgelab.optimization.objectives import split_parameters
from edgelab.validation.walk_forward import WalkForwardReport


@dataclass(frozen=True)
class Perturbation:
    """A named change to the run setup: config overrides and/or a later start."""

    name: str
    overrides: dict[str, Any] = field(default_factory=dict)
    start_offset: int = 0

    def apply(
        self, config: BacktestConfig, candles: Sequence[Candle]
    ) -> tuple[BacktestConfig, Sequence[Candle]]:
        window = candles[self.start_offset :] if self.start_offset else candles
        if not window:
            raise InvalidConfigError(f"{self.name}: start offset leaves no candles")
        changed = config.with_overrides(**self.overrides) if self.overrides else config
        if self.start_offset:
            changed = changed.with_overrides(start_date=window[0].timestamp)
        return changed, window


def default_perturbations(config: BacktestConfig) -> list[Perturbation]:
    """Higher and lower costs, larger and smaller positions, and delayed starts."""
    return [
        Perturbation("slippage_up", {"slippage_percent": config.slippage_percent + 0.1}),
        Perturbation("slippage_down", {"slippage_percent": config.slippage_percent / 2}),
        Perturbation("commission_up", {"commission_percent": config.commission_percent + 0.1}),
        Perturbation("commission_down", {"commission_percent": config.commission_percent / 2}),
        Perturbation(
            "size_up", {"position_size_percent": min(100.0, config.position_size_percent * 1.2)}
        ),
        Perturbation("size_down", {"position_size_percent": config.position_size_percent * 0.8}),
        Perturbation("start_shift_5", start_offset=5),
        Perturbation("start_shift_10", start_offset=10),
    ]


@dataclass(frozen=True)
class PerturbationResult:
    """Outcome of one perturbed run against the baseline."""

    name: str
    return_percent: float = 0.0
    degradation: float = 0.0
    fragile: bool = False
    result: BacktestResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "returnPercent": self.return_percent,
            "degradation": self.degradation,
            "fragile": self.fragile,
            "error": self.error,
        }


@dataclass(frozen=True)
class RobustnessCheck:
    """Pass/fail grade of one robustness aspect with advice."""

    name: str
    passed: bool
    score: float
    details: str
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "testName": self.name,
            "passed": self.passed,
            "score": self.score,
            "details": self.details,
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class RobustnessReport:
    """Baseline plus every perturbation; ``fragile`` if any perturbation was."""

    baseline: BacktestResult
    perturbations: tuple[PerturbationResult, ...]
    fragility_threshold: float
    checks: tuple[RobustnessCheck, ...] = ()
    cancelled: bool = False

    @property
    def baseline_return_percent(self) -> float:
        return self.baseline.metrics.total_return_percent

    @property
    def fragile(self) -> bool:
        return any(p.fragile for p in self.perturbations)

    @property
    def fragile_perturbations(self) -> list[str]:
        return [p.name for p in self.perturbations if p.fragile]

    def to_dict(self) -> dict[str, Any]:
        return {
            "baselineReturnPercent": self.baseline_return_percent,
            "fragile": self.fragile,
            "fragilityThreshold": self.fragility_threshold,
            "perturbations": [p.to_dict() for p in self.perturbations],
            "checks": [c.to_dict() for c in self.checks],
            "cancelled": self.cancelled,
        }


def is_fragile(baseline: float, perturbed: float, threshold: float = FRAGILITY_THRESHOLD) -> bool:
    """A positive baseline that turns non-positive, or a drop beyond ``threshold`` of it."""
    if baseline > 0 and perturbed <= 0:
        return True
    return baseline - perturbed > threshold * abs(baseline)


class _PerturbedRun:
    def __init__(
        self,
        engine: BacktestEngine,
        config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        parameters: Mapping[str, Any],
    ):
        self.engine = engine
        self.config = config
        self.candles = candles
        self.signal_factory = signal_factory
        self.parameters = dict(parameters)

    def __call__(self, perturbation: Perturbation) -> BacktestResult:
        config, window = perturbation.apply(self.config, self.candles)
        return self.engine.run(config, window, self.signal_factory(self.parameters))


class RobustnessTester:
    """
    Replays a strategy under perturbed conditions.

    Args:
        engine: Backtest engine for every run
        executor: Runs the perturbations
        fragility_threshold: Share of the baseline return a perturbation may lose
    """

    def __init__(
        self,
        engine: BacktestEngine | None = None,
        executor: BatchExecutor | None = None,
        fragility_threshold: float = FRAGILITY_THRESHOLD,
    ):
        if fragility_threshold <= 0:
            raise InvalidConfigError(
                f"fragility_threshold must be positive, got {fragility_threshold}"
            )
        self.engine = engine or BacktestEngine()
        self.executor = executor or BatchExecutor()
        self.fragility_threshold = fragility_threshold

    def test(
        self,
        config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        parameters: Mapping[str, Any] | None = None,
        perturbations: Sequence[Perturbation] | None = None,
        walk_forward: WalkForwardReport | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RobustnessReport:
        """
        Run the baseline and every perturbation.

        Args:
            config: Baseline configuration
            candles: Candle series
            signal_factory: Builds a fresh signal source per run
            parameters: Strategy parameters; config field names override ``config``
            perturbations: Defaults to ``default_perturbations(config)``
            walk_forward: Optional report to grade alongside the perturbations
            cancel_token: Stops dispatching perturbations when cancelled

        Returns:
            RobustnessReport. A perturbation that fails to run is reported
            with its error and does not count as fragile.
        """
        config, strategy_parameters = split_parameters(config, parameters or {})
        task = _PerturbedRun(self.engine, config, candles, signal_factory, strategy_parameters)
        baseline = task(Perturbation("baseline"))
        base_return = baseline.metrics.total_return_percent

        scenarios = list(perturbations) if perturbations is not None else default_perturbations(config)
        report = self.executor.run(task, scenarios, cancel_token, label="robustness")

        results = []
        for outcome in report.outcomes:
            name = scenarios[outcome.index].name
            if not outcome.ok:
                logger.warning(f"Perturbation {name} failed: {outcome.error}")
                results.append(
                    PerturbationResult(
                        name=name, error=f"{type(outcome.error).__name__}: {outcome.error}"
                    )
                )
                continue
            perturbed = outcome.value.metrics.total_return_percent
            results.append(
                PerturbationResult(
                    name=name,
                    return_percent=perturbed,
                    degradation=base_return - perturbed,
                    fragile=is_fragile(base_return, perturbed, self.fragility_threshold),
                    result=outcome.value,
                )
            )

        checks = [self.perturbation_check(results)]
        if walk_forward is not None:
            checks.extend(self.walk_forward_checks(walk_forward))

        robustness = RobustnessReport(
            baseline=baseline,
            perturbations=tuple(results),
            fragility_threshold=self.fragility_threshold,
            checks=tuple(checks),
            cancelled=report.cancelled,
        )
        if robustness.fragile:
            logger.warning(
                f"Strategy is fragile under: {', '.join(robustness.fragile_perturbations)}"
            )
        else:
            logger.info(f"Strategy survived {len(results)} perturbations")
        return robustness

    @staticmethod
    def perturbation_check(results: Sequence[PerturbationResult]) -> RobustnessCheck:
        ran = [r for r in results if r.error is None]
        fragile = [r.name for r in ran if r.fragile]
        score = 1 - len(fragile) / len(ran) if ran else 0.0
        return RobustnessCheck(
            name="Perturbation Stability",
            passed=bool(ran) and not fragile,
            score=score,
            details=f"{len(ran) - len(fragile)}/{len(ran)} perturbations within tolerance",
            recommendations=tuple(f"Performance collapses under {name}" for name in fragile),
        )

    def walk_forward_checks(self, report: WalkForwardReport) -> list[RobustnessCheck]:
        """Consistency, sample size and overfit grades of a walk-forward report."""
        return [
            self.consistency_check(report),
            self.sample_size_check(report),
            self.overfit_check(report),
        ]

    @staticmethod
    def consistency_check(report: WalkForwardReport) -> RobustnessCheck:
        consistency = report.consistency_score
        corr = report.train_test_correlation
        recommendations = []
        if consistency < MIN_CONSISTENCY_SCORE:
            recommendations.append("Strategy behaves differently in train and test periods")
        if corr < MIN_TRAIN_TEST_CORRELATION:
            recommendations.append("Low train/test correlation suggests an unstable strategy")
        return RobustnessCheck(
            name="Consistency Test",
            passed=consistency >= MIN_CONSISTENCY_SCORE and corr >= MIN_TRAIN_TEST_CORRELATION,
            score=(consistency + max(0.0, corr)) / 2,
            details=f"Consistency: {consistency * 100:.1f}%, Correlation: {corr:.3f}",
            recommendations=tuple(recommendations),
        )

    @staticmethod
    def sample_size_check(report: WalkForwardReport) -> RobustnessCheck:
        folds = len(report.successful_folds)
        trades = report.avg_test_trades
        recommendations = []
        if folds < MIN_FOLDS_FOR_SIGNIFICANCE:
            recommendations.append(
                f"Only {folds} folds, need at least {MIN_FOLDS_FOR_SIGNIFICANCE} for significance"
            )
        if trades < MIN_TRADES_PER_FOLD:
            recommendations.append(
                f"Average {trades:.0f} trades per fold, need at least {MIN_TRADES_PER_FOLD}"
            )
        score = min(1.0, (folds / MIN_FOLDS_FOR_SIGNIFICANCE) * (trades / MIN_TRADES_PER_FOLD))
        return RobustnessCheck(
            name="Sample Size Adequacy",
            passed=folds >= MIN_FOLDS_FOR_SIGNIFICANCE and trades >= MIN_TRADES_PER_FOLD,
            score=score,
            details=f"{folds} folds, {trades:.0f} avg trades/fold",
            recommendations=tuple(recommendations),
        )

    @staticmethod
    def overfit_check(report: WalkForwardReport) -> RobustnessCheck:
        overfit = report.overfit_probability
        degradation = report.avg_degradation_percent
        recommendations = []
        if overfit >= MAX_OVERFIT_PROBABILITY:
            recommendations.append(
                f"High overfit probability ({overfit * 100:.1f}%), simplify the strategy"
            )
        if degradation >= MAX_DEGRADATION_PERCENT:
            recommendations.append(
                f"High out-of-sample degradation ({degradation:.1f}%)"
            )
        return RobustnessCheck(
            name="Overfit Detection",
            passed=overfit < MAX_OVERFIT_PROBABILITY and degradation < MAX_DEGRADATION_PERCENT,
            score=1 - (overfit + min(1.0, max(0.0, degradation) / 100)) / 2,
            details=f"Overfit prob: {overfit * 100:.1f}%, Degradation: {degradation:.1f}%",
            recommendations=tuple(recommendations),
        )
