"""
Signal sources.

Concrete implementations of ``ISignalSource``: a scripted source for
deterministic replays and tests, an adapter for externally supplied strategy
callables, and a moving-average crossover whose periods can be optimized.
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

import numpy as np

from edgelab.core.exceptions.backtest import InvalidConfigError, StrategyError
from edgelab.core.interfaces.signals import ISignalSource
from edgelab.core.models.candle import Candle
from edgelab.core.models.signal import Signal


class ScriptedSignalSource(ISignalSource):
    """Emits pre-recorded signals keyed by bar index or bar timestamp.

    Bar indices are positions within the run, so an index script follows the
    run when the candle window shifts; a timestamp script stays pinned to
    calendar time.
    """

    def __init__(
        self,
        by_index: Mapping[int, Signal] | None = None,
        by_timestamp: Mapping[datetime, Signal] | None = None,
    ):
        self._by_index = dict(by_index or {})
        self._by_timestamp = dict(by_timestamp or {})

    def signal_at(self, bar: Candle, history: Sequence[Candle]) -> Signal | None:
        signal = self._by_timestamp.get(bar.timestamp)
        if signal is not None:
            return signal
        return self._by_index.get(len(history) - 1)


class DelegatedSignalSource(ISignalSource):
    """Adapts an external strategy callable to the signal source interface.

    Any exception raised by the callable is re-raised as ``StrategyError``.
    """

    def __init__(
        self,
        callback: Callable[[Candle, Sequence[Candle]], Signal | None],
        name: str = "delegate",
    ):
        self._callback = callback
        self.name = name

    def signal_at(self, bar: Candle, history: Sequence[Candle]) -> Signal | None:
        try:
            return self._callback(bar, history)
        except StrategyError:
            raise
        except Exception as e:
            raise StrategyError(
                f"Signal source {self.name} failed at {bar.timestamp.isoformat()}: {e}"
            ) from e


class CrossoverSignalSource(ISignalSource):
    """Simple moving-average crossover.

    Goes long when the fast average crosses above the slow one. On the
    opposite cross it goes short when ``allow_short`` is set and exits
    otherwise.
    """

    def __init__(
        self,
        fast_period: int = 10,
        slow_period: int = 30,
        allow_short: bool = False,
        stop_loss_percent: float | None = None,
        take_profit_percent: float | None = None,
    ):
        fast_period = int(fast_period)
        slow_period = int(slow_period)
        if fast_period < 1 or slow_period < 1:
            raise InvalidConfigError("Moving average periods must be >= 1")
        if fast_period >= slow_period:
            raise InvalidConfigError(
                f"fast_period ({fast_period}) must be shorter than slow_period ({slow_period})"
            )
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.allow_short = allow_short
        self.stop_loss_percent = stop_loss_percent
        self.take_profit_percent = take_profit_percent

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, Any]) -> "CrossoverSignalSource":
        """Factory usable as an optimizer ``signal_factory``."""
        return cls(
            fast_period=parameters.get("fast_period", 10),
            slow_period=parameters.get("slow_period", 30),
            allow_short=parameters.get("allow_short", False),
            stop_loss_percent=parameters.get("stop_loss_percent"),
            take_profit_percent=parameters.get("take_profit_percent"),
        )

    def signal_at(self, bar: Candle, history: Sequence[Candle]) -> Signal | None:
        if len(history) < self.slow_period + 1:
            return None

        closes = np.fromiter(
            (c.close for c in history[-(self.slow_period + 1) :]), dtype=float
        )
        fast_now = closes[-self.fast_period :].mean()
        slow_now = closes[-self.slow_period :].mean()
        fast_prev = closes[-self.fast_period - 1 : -1].mean()
        slow_prev = closes[:-1].mean()

        if fast_prev <= slow_prev and fast_now > slow_now:
            return Signal.long(*self._levels(bar.close, long=True), reason="golden_cross")
        if fast_prev >= slow_prev and fast_now < slow_now:
            if self.allow_short:
                return Signal.short(*self._levels(bar.close, long=False), reason="death_cross")
            return Signal.exit(reason="death_cross")
        return None

    def _levels(self, price: float, long: bool) -> tuple[float | None, float | None]:
        direction = 1 if long else -1
        stop = (
            price * (1 - direction * self.stop_loss_percent / 100)
            if self.stop_loss_percent
            else None
        )
        target = (
            price * (1 + direction * self.take_profit_percent / 100)
            if self.take_profit_percent
            else None
        )
        return stop, target
