"""
In-memory result store.

Results are kept in a bounded LRU cache. A store-wide lock guards the index
while per-id locks serialize concurrent writes to the same id. Per-id locks
are weakly held, so ids that nobody is writing cost nothing. Stored entries
are frozen, so readers can never mutate what another caller saved.
"""

import builtins
import itertools
import uuid
import weakref
from collections.abc import Iterable
from datetime import UTC, datetime
from threading import Lock, RLock

from cachetools import LRUCache
from loguru import logger

from edgelab.core.constants import MAX_STORED_RESULTS
from edgelab.core.exceptions.backtest import ResultNotFoundError
from edgelab.core.interfaces.results import IResultStore, StoredResult
from edgelab.core.models.backtest import BacktestResult


class InMemoryResultStore(IResultStore):
    """Thread-safe result store holding up to ``max_results`` entries."""

    def __init__(self, max_results: int = MAX_STORED_RESULTS):
        if max_results <= 0:
            raise ValueError("max_results must be positive")
        self._results: LRUCache[str, StoredResult] = LRUCache(maxsize=max_results)
        self._lock = RLock()
        self._id_locks: weakref.WeakValueDictionary[str, Lock] = weakref.WeakValueDictionary()
        self._sequence = itertools.count(1)

    def _lock_for(self, result_id: str) -> Lock:
        """Per-id write lock, alive only while some caller holds it."""
        with self._lock:
            return self._id_locks.setdefault(result_id, Lock())

    def save(
        self, result: BacktestResult, tags: Iterable[str] = (), result_id: str | None = None
    ) -> str:
        result_id = result_id or uuid.uuid4().hex
        with self._lock_for(result_id):
            entry = StoredResult(
                result_id=result_id,
                result=result,
                tags=frozenset(tags),
                created_at=datetime.now(UTC),
                sequence=next(self._sequence),
            )
            with self._lock:
                replaced = result_id in self._results
                self._results[result_id] = entry
        logger.debug(f"{'Replaced' if replaced else 'Saved'} result {result_id}")
        return result_id

    def get(self, result_id: str) -> StoredResult | None:
        with self._lock:
            return self._results.get(result_id)

    def list(self, limit: int | None = None) -> list[StoredResult]:
        with self._lock:
            entries = sorted(self._results.values(), key=lambda e: e.sequence, reverse=True)
        return entries if limit is None else entries[: max(limit, 0)]

    def search(self, tags: Iterable[str], match_all: bool = True) -> builtins.list[StoredResult]:
        wanted = frozenset(tags)
        if not wanted:
            return self.list()
        if match_all:
            return [e for e in self.list() if wanted <= e.tags]
        return [e for e in self.list() if wanted & e.tags]

    def delete(self, result_id: str) -> bool:
        with self._lock_for(result_id):
            with self._lock:
                removed = self._results.pop(result_id, None) is not None
        if removed:
            logger.debug(f"Deleted result {result_id}")
        return removed

    def add_tags(self, result_id: str, tags: Iterable[str]) -> StoredResult:
        """Attach tags to a stored result.

        Raises:
            ResultNotFoundError: If no result has ``result_id``
        """
        with self._lock_for(result_id):
            with self._lock:
                entry = self._results.get(result_id)
                if entry is None:
                    raise ResultNotFoundError(result_id)
                updated = StoredResult(
                    result_id=entry.result_id,
                    result=entry.result,
                    tags=entry.tags | frozenset(tags),
                    created_at=entry.created_at,
                    sequence=entry.sequence,
                )
                self._results[result_id] = updated
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, result_id: object) -> bool:
        with self._lock:
            return result_id in self._results
