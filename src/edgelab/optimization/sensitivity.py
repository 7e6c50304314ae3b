"""
One-at-a-time parameter sensitivity sweeps.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from loguru import logger

from edgelab.core.constants import DEFAULT_SENSITIVITY_STEPS
from edgelab.core.exceptions.backtest import InvalidConfigError
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle
from edgelab.core.models.parameters import ParameterRange, ParameterSpace
from edgelab.core.protocols import SignalFactory
from edgelab.engine.simulator import BacktestEngine
from edgelab.optimization.executor import BatchExecutor, CancellationToken
from edgelab.optimization.objectives import split_parameters


@dataclass(frozen=True)
class SensitivityPoint:
    """Outcome of one sweep value."""

    value: float
    total_return_percent: float
    sharpe_ratio: float
    max_drawdown_percent: float
    total_trades: int


@dataclass(frozen=True)
class SensitivityResult:
    """Sweep of one parameter with all others held fixed.

    ``sensitivity`` is the least-squares slope of return against the
    parameter value; ``robustness`` is its inverse magnitude (+inf for a flat
    response).
    """

    parameter: str
    points: tuple[SensitivityPoint, ...]
    sensitivity: float
    robustness: float
    failed_values: tuple[float, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "sensitivity": self.sensitivity,
            "robustness": self.robustness,
            "points": [
                {
                    "value": p.value,
                    "totalReturnPercent": p.total_return_percent,
                    "sharpeRatio": p.sharpe_ratio,
                    "maxDrawdownPercent": p.max_drawdown_percent,
                    "totalTrades": p.total_trades,
                }
                for p in self.points
            ],
        }


class _SweepTask:
    def __init__(
        self,
        engine: BacktestEngine,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        base_parameters: Mapping[str, Any],
        name: str,
    ):
        self.engine = engine
        self.base_config = base_config
        self.candles = candles
        self.signal_factory = signal_factory
        self.base_parameters = dict(base_parameters)
        self.name = name

    def __call__(self, value: Any) -> SensitivityPoint:
        parameters = {**self.base_parameters, self.name: value}
        config, strategy = split_parameters(self.base_config, parameters)
        result = self.engine.run(config, self.candles, self.signal_factory(strategy))
        return SensitivityPoint(
            value=value,
            total_return_percent=result.metrics.total_return_percent,
            sharpe_ratio=result.metrics.sharpe_ratio,
            max_drawdown_percent=result.metrics.max_drawdown_percent,
            total_trades=result.metrics.total_trades,
        )


class ParameterSensitivityAnalyzer:
    """Measures how strongly results react to each parameter."""

    def __init__(
        self,
        engine: BacktestEngine | None = None,
        executor: BatchExecutor | None = None,
        num_steps: int = DEFAULT_SENSITIVITY_STEPS,
    ):
        if num_steps < 2:
            raise InvalidConfigError(f"num_steps must be at least 2, got {num_steps}")
        self.engine = engine or BacktestEngine()
        self.executor = executor or BatchExecutor()
        self.num_steps = num_steps

    def sweep_values(self, parameter: ParameterRange) -> list[Any]:
        """Values tried for ``parameter``: its grid when small, else evenly spaced points."""
        if parameter.is_discrete and parameter.cardinality <= self.num_steps:
            return list(parameter.grid_values)
        if not parameter.is_numeric:
            return list(parameter.grid_values)[: self.num_steps]
        points = np.linspace(parameter.lower, parameter.upper, self.num_steps)
        values = [parameter.snap(float(v)) for v in points]
        return list(dict.fromkeys(values))

    def analyze(
        self,
        parameter: ParameterRange,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        base_parameters: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SensitivityResult:
        """Sweep one parameter across its range.

        Args:
            parameter: Parameter to vary
            base_config: Config the sweep values are applied to
            candles: Candles every run uses
            signal_factory: Builds a signal source from strategy parameters
            base_parameters: Fixed values of the other parameters
            cancel_token: Stops dispatching runs when cancelled

        Returns:
            SensitivityResult with one point per successful run
        """
        values = self.sweep_values(parameter)
        task = _SweepTask(
            self.engine, base_config, candles, signal_factory, base_parameters or {}, parameter.name
        )
        report = self.executor.run(
            task, values, cancel_token, label=f"sensitivity {parameter.name}"
        )
        points = tuple(report.values)
        failed = tuple(values[o.index] for o in report.failures)

        sensitivity = 0.0
        numeric = [p for p in points if isinstance(p.value, int | float)]
        if len({p.value for p in numeric}) >= 2:
            x = np.array([p.value for p in numeric], dtype=float)
            y = np.array([p.total_return_percent for p in numeric], dtype=float)
            sensitivity = float(np.polyfit(x, y, 1)[0])
        robustness = math.inf if sensitivity == 0 else 1.0 / abs(sensitivity)

        logger.info(
            f"Sensitivity of {parameter.name}: slope={sensitivity:.4f}, robustness={robustness:.4f}"
        )
        return SensitivityResult(
            parameter=parameter.name,
            points=points,
            sensitivity=sensitivity,
            robustness=robustness,
            failed_values=failed,
        )

    def analyze_all(
        self,
        space: ParameterSpace,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        base_parameters: Mapping[str, Any] | None = None,
    ) -> dict[str, SensitivityResult]:
        """Sweep every parameter of ``space`` in turn.

        Parameters not being swept sit at ``base_parameters`` or, when absent,
        at the middle of their domain.
        """
        anchors = dict(base_parameters or {})
        for parameter in space.ranges:
            if parameter.name not in anchors:
                if parameter.is_numeric:
                    midpoint = (parameter.lower + parameter.upper) / 2
                    anchors[parameter.name] = parameter.snap(midpoint)
                else:
                    anchors[parameter.name] = parameter.grid_values[0]
        return {
            parameter.name: self.analyze(parameter, base_config, candles, signal_factory, anchors)
            for parameter in space.ranges
        }
