"""
Result store interface definition.
"""

import builtins
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from edgelab.core.models.backtest import BacktestResult


@dataclass(frozen=True)
class StoredResult:
    """A result together with its storage metadata."""

    result_id: str
    result: BacktestResult
    tags: frozenset[str]
    created_at: datetime
    sequence: int


class IResultStore(ABC):
    """Abstract interface for backtest result persistence."""

    @abstractmethod
    def save(
        self, result: BacktestResult, tags: Iterable[str] = (), result_id: str | None = None
    ) -> str:
        """Store a result and return its id. Writes to the same id are serialized."""
        pass

    @abstractmethod
    def get(self, result_id: str) -> StoredResult | None:
        """Fetch a stored result, or None if unknown."""
        pass

    @abstractmethod
    def list(self, limit: int | None = None) -> list[StoredResult]:
        """List stored results, most recent first."""
        pass

    @abstractmethod
    def search(self, tags: Iterable[str], match_all: bool = True) -> builtins.list[StoredResult]:
        """Find results carrying all (or any) of ``tags``, most recent first."""
        pass

    @abstractmethod
    def delete(self, result_id: str) -> bool:
        """Remove a result. Returns False if it did not exist."""
        pass

    @abstractmethod
    def add_tags(self, result_id: str, tags: Iterable[str]) -> StoredResult:
        """Attach additional tags to a stored result."""
        pass
