"""
Core type definitions and protocols.

Shared callable shapes used across the optimization and validation layers,
kept here so those layers do not import each other.
"""

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol, TypeAlias

from edgelab.core.interfaces.signals import ISignalSource
from edgelab.core.models.backtest import BacktestConfig
from edgelab.core.models.candle import Candle

ParameterSet: TypeAlias = dict[str, Any]
SignalFactory: TypeAlias = Callable[[Mapping[str, Any]], ISignalSource]


class IOptimizer(Protocol):
    """Protocol for anything that can pick parameters on a window of candles.

    Walk-forward analysis accepts any optimizer with this shape, so grid
    search and the genetic algorithm are interchangeable there.
    """

    def optimize(
        self,
        space: Any,
        base_config: BacktestConfig,
        candles: Sequence[Candle],
        signal_factory: SignalFactory,
        objective: Any = None,
        cancel_token: Any = None,
    ) -> Any:
        """Search ``space`` and return an OptimizationResult."""
        ...
