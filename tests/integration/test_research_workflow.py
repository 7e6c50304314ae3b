"""
Integration test of a full research workflow: optimize, validate out of
sample, stress the trade sequence and export the outcome.
"""

import json

import pytest

from edgelab.core.models.parameters import ParameterSpace
from edgelab.engine.market_data import generate_candles
from edgelab.engine.signals import CrossoverSignalSource
from edgelab.engine.simulator import BacktestEngine
from edgelab.infrastructure.results.exporters import export_result
from edgelab.infrastructure.results.store import InMemoryResultStore
from edgelab.optimization.executor import BatchExecutor
from edgelab.optimization.grid_search import GridSearchOptimizer
from edgelab.optimization.objectives import ObjectiveSpec, split_parameters
from edgelab.validation.monte_carlo import MonteCarloConfig, MonteCarloSimulator
from edgelab.validation.robustness import RobustnessTester
from edgelab.validation.splitters import WalkForwardConfig
from edgelab.validation.walk_forward import WalkForwardAnalyzer

factory = CrossoverSignalSource.from_parameters


@pytest.fixture
def candles():
    return generate_candles(600, seed=2024, volatility=0.015)


@pytest.fixture
def space() -> ParameterSpace:
    return ParameterSpace.from_dict(
        {"fast_period": [3, 5, 8], "slow_period": [20, 30], "stop_loss_percent": [2.0, 5.0]}
    )


class TestResearchWorkflow:
    """End-to-end research run on synthetic candles."""

    def test_should_run_optimize_validate_and_export(
        self, base_config, candles, space, tmp_path
    ) -> None:
        # Arrange
        executor = BatchExecutor(max_workers=2)
        optimizer = GridSearchOptimizer(executor=executor)
        objective = ObjectiveSpec(metric="sharpe")

        # Act: optimize on the whole series
        optimization = optimizer.optimize(space, base_config, candles, factory, objective)

        # Assert
        assert len(optimization.evaluations) == space.grid_size() == 12
        assert optimization.best_parameters is not None

        # Act: walk-forward with the optimizer re-run on every train window
        analyzer = WalkForwardAnalyzer(
            WalkForwardConfig(num_folds=3), executor=executor, objective=objective
        )
        walk_forward = analyzer.analyze(
            base_config, candles, factory, optimizer=optimizer, space=space
        )

        # Assert
        assert len(walk_forward.folds) == 3
        assert walk_forward.successful_folds
        assert 0.0 <= walk_forward.overfit_probability <= 1.0

        # Act: replay the best parameters and stress them
        config, strategy = split_parameters(base_config, optimization.best_parameters)
        best = BacktestEngine().run(config, candles, factory(strategy))
        monte_carlo = MonteCarloSimulator(MonteCarloConfig(num_runs=200, seed=1)).simulate(best)
        robustness = RobustnessTester(executor=executor).test(
            base_config,
            candles,
            factory,
            parameters=optimization.best_parameters,
            walk_forward=walk_forward,
        )

        # Assert
        assert best.metrics.total_trades == optimization.best_result.metrics.total_trades
        assert monte_carlo.initial_capital == base_config.initial_capital
        assert [c.name for c in robustness.checks] == [
            "Perturbation Stability",
            "Consistency Test",
            "Sample Size Adequacy",
            "Overfit Detection",
        ]

        # Act: store and export
        store = InMemoryResultStore()
        result_id = store.save(best, tags=["best", "crossover"])
        path = export_result(store.get(result_id).result, tmp_path / "best.json")

        # Assert
        exported = json.loads(path.read_text())
        assert exported["config"]["symbol"] == base_config.symbol
        assert len(exported["equityCurve"]) == len(candles)
        assert store.search(["best"])[0].result_id == result_id
