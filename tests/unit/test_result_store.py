"""
Tests for the in-memory result store.
"""

import dataclasses
import gc
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from edgelab.core.exceptions.backtest import ResultNotFoundError
from edgelab.infrastructure.results.store import InMemoryResultStore


class TestInMemoryResultStore:
    """Tests for saving, listing, searching and evicting results."""

    @pytest.fixture
    def store(self) -> InMemoryResultStore:
        return InMemoryResultStore(max_results=10)

    def test_should_save_and_get_result(self, store, winning_result) -> None:
        # Act
        result_id = store.save(winning_result, tags=["btc", "baseline"])

        # Assert
        entry = store.get(result_id)
        assert entry is not None
        assert entry.result is winning_result
        assert entry.tags == frozenset({"btc", "baseline"})
        assert result_id in store
        assert len(store) == 1

    def test_should_return_none_for_unknown_id(self, store) -> None:
        assert store.get("missing") is None

    def test_should_replace_result_saved_under_same_id(self, store, winning_result) -> None:
        store.save(winning_result, result_id="run-1")
        store.save(winning_result, tags=["second"], result_id="run-1")

        assert len(store) == 1
        assert store.get("run-1").tags == frozenset({"second"})

    def test_should_list_most_recent_first(self, store, winning_result) -> None:
        ids = [store.save(winning_result) for _ in range(3)]

        listed = [e.result_id for e in store.list()]

        assert listed == list(reversed(ids))
        assert [e.result_id for e in store.list(limit=2)] == listed[:2]

    def test_should_search_by_tags(self, store, winning_result) -> None:
        """match_all requires every tag; otherwise any tag matches."""
        # Arrange
        both = store.save(winning_result, tags=["btc", "grid"])
        btc = store.save(winning_result, tags=["btc"])
        store.save(winning_result, tags=["eth"])

        # Act
        all_match = store.search(["btc", "grid"])
        any_match = store.search(["grid", "btc"], match_all=False)

        # Assert
        assert [e.result_id for e in all_match] == [both]
        assert {e.result_id for e in any_match} == {both, btc}
        assert len(store.search([])) == 3

    def test_should_delete_results(self, store, winning_result) -> None:
        result_id = store.save(winning_result)

        assert store.delete(result_id)
        assert not store.delete(result_id)
        assert store.get(result_id) is None

    def test_should_merge_added_tags(self, store, winning_result) -> None:
        result_id = store.save(winning_result, tags=["btc"])

        updated = store.add_tags(result_id, ["best"])

        assert updated.tags == frozenset({"btc", "best"})
        assert store.get(result_id).tags == updated.tags

    def test_should_raise_when_tagging_unknown_result(self, store) -> None:
        with pytest.raises(ResultNotFoundError, match="missing"):
            store.add_tags("missing", ["x"])

    def test_should_keep_entries_immutable(self, store, winning_result) -> None:
        entry = store.get(store.save(winning_result))

        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.tags = frozenset({"changed"})

    def test_should_evict_least_recently_used(self, winning_result) -> None:
        """Reading a result protects it from eviction."""
        # Arrange
        store = InMemoryResultStore(max_results=2)
        first = store.save(winning_result)
        second = store.save(winning_result)
        store.get(first)

        # Act
        third = store.save(winning_result)

        # Assert
        assert first in store
        assert second not in store
        assert third in store

    def test_should_handle_concurrent_saves(self, store, winning_result) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda i: store.save(winning_result, tags=[str(i)]), range(10)))

        assert len(set(ids)) == 10
        assert len(store) == 10

    def test_should_reject_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            InMemoryResultStore(max_results=0)

    def test_should_not_keep_locks_for_evicted_results(self, winning_result) -> None:
        """Write locks do not outlive the writes that needed them."""
        # Arrange
        store = InMemoryResultStore(max_results=2)

        # Act
        for _ in range(200):
            store.save(winning_result)
        gc.collect()

        # Assert
        assert len(store) == 2
        assert len(store._id_locks) == 0

    def test_should_serialize_writes_to_the_same_id(self, store, winning_result) -> None:
        """A save waits while another writer holds the id."""
        # Arrange
        store.save(winning_result, result_id="run-1")
        writer = threading.Thread(
            target=store.save, args=(winning_result,), kwargs={"result_id": "run-1"}
        )

        # Act
        with store._lock_for("run-1"):
            writer.start()
            writer.join(timeout=0.2)
            blocked = writer.is_alive()
        writer.join(timeout=5)

        # Assert
        assert blocked
        assert not writer.is_alive()
        assert "run-1" in store
        assert store.delete("run-1")
        assert len(store._id_locks) == 0
