"""
Batch executor for independent runs.

Grid candidates, genetic individuals of one generation, Monte Carlo runs,
walk-forward folds and per-asset portfolio simulations are all independent
tasks over immutable inputs. ``BatchExecutor`` fans them out over a
``concurrent.futures`` pool (or runs them inline), isolates failures per item,
enforces an optional per-run timeout and honours cooperative cancellation.
Outcomes always come back in submission order.
"""

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Any

from loguru import logger

from edgelab.core.exceptions.backtest import RunTimeoutError

POLL_INTERVAL_SECONDS = 0.05


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and running batches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. No new tasks are dispatched afterwards."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one task: a value, or the error that stopped it."""

    index: int
    value: Any = None
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchReport:
    """Outcomes of a batch in submission order."""

    outcomes: tuple[BatchOutcome, ...]
    submitted: int
    total: int
    cancelled: bool = False

    @property
    def successes(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failures(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def values(self) -> list[Any]:
        """Values of successful tasks, in submission order."""
        return [o.value for o in self.outcomes if o.ok]


class BatchExecutor:
    """Runs a function over many items with failure isolation.

    Args:
        max_workers: Pool size; 1 runs tasks one at a time without a shared pool
        use_processes: Use a process pool instead of threads (task and items must pickle)
        timeout_seconds: Per-task time budget; overrunning tasks are abandoned
    """

    def __init__(
        self,
        max_workers: int = 1,
        use_processes: bool = False,
        timeout_seconds: float | None = None,
    ):
        self.max_workers = max(1, max_workers)
        self.use_processes = use_processes
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        fn: Callable[[Any], Any],
        items: Sequence[Any],
        cancel_token: CancellationToken | None = None,
        label: str = "batch",
    ) -> BatchReport:
        """Apply ``fn`` to every item.

        Args:
            fn: Task function, called once per item
            items: Task inputs
            cancel_token: Stops dispatch of further items once cancelled
            label: Name used in log messages

        Returns:
            BatchReport with one outcome per dispatched item
        """
        items = list(items)
        if self.max_workers == 1:
            report = self._run_inline(fn, items, cancel_token, label)
        else:
            report = self._run_pooled(fn, items, cancel_token, label)

        failed = len(report.failures)
        logger.info(
            f"{label}: {len(report.outcomes)}/{report.total} tasks finished, {failed} failed"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def _run_inline(
        self,
        fn: Callable[[Any], Any],
        items: list[Any],
        cancel_token: CancellationToken | None,
        label: str,
    ) -> BatchReport:
        outcomes: list[BatchOutcome] = []
        cancelled = False
        for index, item in enumerate(items):
            if cancel_token is not None and cancel_token.is_cancelled:
                cancelled = True
                break
            try:
                finished, value = self._call(fn, item)
            except Exception as e:
                logger.warning(f"{label}: task {index} failed: {type(e).__name__}: {e}")
                outcomes.append(BatchOutcome(index=index, error=e))
                continue
            if finished:
                outcomes.append(BatchOutcome(index=index, value=value))
            else:
                outcomes.append(self._timeout_outcome(index, label))
        return BatchReport(
            outcomes=tuple(outcomes),
            submitted=len(outcomes),
            total=len(items),
            cancelled=cancelled,
        )

    def _call(self, fn: Callable[[Any], Any], item: Any) -> tuple[bool, Any]:
        """Run one task on the calling thread, or on a helper thread when time-bounded.

        Returns:
            (finished, value); finished is False when the task overran its budget
        """
        if self.timeout_seconds is None:
            return True, fn(item)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="edgelab-inline")
        try:
            future = pool.submit(fn, item)
            done, _ = wait([future], timeout=self.timeout_seconds)
            if not done:
                return False, None
            return True, future.result()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _run_pooled(
        self,
        fn: Callable[[Any], Any],
        items: list[Any],
        cancel_token: CancellationToken | None,
        label: str,
    ) -> BatchReport:
        outcomes: dict[int, BatchOutcome] = {}
        pending: dict[Future[Any], tuple[int, float]] = {}
        next_index = 0
        cancelled = False
        poll = POLL_INTERVAL_SECONDS if self.timeout_seconds is not None else None

        pool = self._create_pool()
        try:
            while pending or (not cancelled and next_index < len(items)):
                while not cancelled and next_index < len(items) and len(pending) < self.max_workers:
                    if cancel_token is not None and cancel_token.is_cancelled:
                        cancelled = True
                        break
                    future = pool.submit(fn, items[next_index])
                    pending[future] = (next_index, time.monotonic())
                    next_index += 1

                if not pending:
                    break

                done, _ = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
                for future in done:
                    index, _ = pending.pop(future)
                    outcomes[index] = self._collect(index, future, label)

                if self.timeout_seconds is not None:
                    now = time.monotonic()
                    for future, (index, started) in list(pending.items()):
                        if now - started > self.timeout_seconds:
                            future.cancel()
                            del pending[future]
                            outcomes[index] = self._timeout_outcome(index, label)

                if cancel_token is not None and cancel_token.is_cancelled:
                    cancelled = True
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return BatchReport(
            outcomes=tuple(outcomes[i] for i in sorted(outcomes)),
            submitted=next_index,
            total=len(items),
            cancelled=cancelled,
        )

    def _create_pool(self) -> Executor:
        if self.use_processes:
            return ProcessPoolExecutor(max_workers=self.max_workers)
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="edgelab")

    @staticmethod
    def _collect(index: int, future: Future[Any], label: str) -> BatchOutcome:
        try:
            return BatchOutcome(index=index, value=future.result())
        except Exception as e:
            logger.warning(f"{label}: task {index} failed: {type(e).__name__}: {e}")
            return BatchOutcome(index=index, error=e)

    def _timeout_outcome(self, index: int, label: str) -> BatchOutcome:
        error = RunTimeoutError(index, self.timeout_seconds or 0.0)
        logger.warning(f"{label}: {error}")
        return BatchOutcome(index=index, error=error, timed_out=True)
