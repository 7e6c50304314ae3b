"""
Signal source interface definition.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from edgelab.core.models.candle import Candle
from edgelab.core.models.signal import Signal


class ISignalSource(ABC):
    """Abstract interface for anything that decides when to enter or exit.

    Implementations must be deterministic for a given bar history so that
    simulations stay replayable.
    """

    @abstractmethod
    def signal_at(self, bar: Candle, history: Sequence[Candle]) -> Signal | None:
        """Return the signal for ``bar``.

        Args:
            bar: The candle being processed
            history: All candles of the run up to and including ``bar``

        Returns:
            A Signal, or None to keep the current state
        """
        pass
