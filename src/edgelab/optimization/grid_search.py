"""
Grid search optimizer - exhaustive parameter space search.
"""

from collections.abc import Sequence

from loguru import logger

from edgelab.core.constants import MAX_GRID_COMBINATIONS
from edgelab.core.exceptions.backtest import InvalidConfigError, ParameterSpaceTooLargeError
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle
from edgelab.core.models.optimization import Evaluation, OptimizationResult
from edgelab.core.models.parameters import ParameterSpace
from edgelab.core.protocols import SignalFactory
from edgelab.core.utils.decorators import log_run
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken
from edgelab.optimization.objectives import (
    CandidateEvaluator,
    ObjectiveSpec,
    pareto_frontier,
    ranking_key,
)


class GridSearchOptimizer:
    """
    Grid search optimizer.

    Evaluates every combination of the parameter space and ranks them by the
    objective. Best for small spaces or initial screening; spaces above
    ``max_combinations`` are refused up front.

    Example:
        optimizer = GridSearchOptimizer(executor=BatchExecutor(max_workers=4))
        result = optimizer.optimize(space, config, candles, CrossoverSignalSource.from_parameters)
        result.best_parameters  # {"fast_period": 10, "slow_period": 50}
    """

    def __init__(
        self,
        engine: BacktestEngine | None = None,
        executor: BatchExecutor | None = None,
        max_combinations: int = MAX_GRID_COMBINATIONS,
    ):
        self.engine = engine or BacktestEngine()
        self.executor = executor or BatchExecutor()
        self.max_combinations = max_combinations

    @log_run("Grid search")
    def optimize(
        self,
        space: ParameterSpace,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        objective: ObjectiveSpec | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> OptimizationResult:
        """
        Evaluate every combination and rank the results.

        Args:
            space: Discrete parameter space
            base_config: Config the parameters are applied to
            candles: Candles every candidate is run on
            signal_factory: Builds a signal source from strategy parameters
            objective: Ranking objective (total return by default)
            cancel_token: Stops dispatching candidates when cancelled

        Returns:
            OptimizationResult with one evaluation row per dispatched combination

        Raises:
            InvalidConfigError: If a parameter is continuous or the base config is invalid
            ParameterSpaceTooLargeError: If the grid exceeds ``max_combinations``
        """
        objective = objective or ObjectiveSpec()
        base_config.validate()
        if not space.is_discrete:
            raise InvalidConfigError("Grid search needs a value set or step for every parameter")

        total = space.grid_size()
        if total > self.max_combinations:
            raise ParameterSpaceTooLargeError(total, self.max_combinations)

        combinations = list(space.combinations())
        evaluator = CandidateEvaluator(self.engine, base_config, candles, signal_factory, objective)
        report = self.executor.run(evaluator, combinations, cancel_token, label="grid search")

        evaluations: list[Evaluation] = []
        failures: list[Evaluation] = []
        for outcome in report.outcomes:
            if outcome.ok:
                evaluations.append(outcome.value)
            else:
                failed = CandidateEvaluator.failed(combinations[outcome.index], outcome.error)  # type: ignore[arg-type]
                evaluations.append(failed)
                failures.append(failed)

        ranked = sorted(evaluations, key=ranking_key, reverse=True)
        best = next((e for e in ranked if e.succeeded), None)
        frontier = (
            pareto_frontier(ranked, objective.active_metrics)
            if objective.is_multi_objective
            else ()
        )

        infeasible = sum(1 for e in ranked if e.succeeded and not e.feasible)
        if infeasible:
            logger.warning(f"Grid search: {infeasible} candidates violated constraints")
        if best is not None:
            logger.info(f"Grid search best score {best.score:.4f} with {best.parameters}")

        return OptimizationResult(
            best_parameters=dict(best.parameters) if best else None,
            best_result=best.result if best else None,
            best_score=best.score if best else float("-inf"),
            evaluations=tuple(ranked),
            pareto_frontier=frontier,
            failures=tuple(failures),
            cancelled=report.cancelled,
        )
