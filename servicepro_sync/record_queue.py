"""
RecordMutationQueue — serialises remote mutations per record.

This is a pure asyncio concurrency primitive with no network dependencies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

_LOGGER = logging.getLogger(__name__)


class RecordMutationQueue:
    """
    Serialises remote mutation calls for each record.

    Mutations for different records run fully in parallel; mutations for the
    same record are queued and executed one-at-a-time in the order they were
    enqueued, so a later call can never be overtaken by an earlier one.
    A record's worker exits once its queue is drained, so idle records hold
    no tasks.
    """

    def __init__(self) -> None:
        # record_id → asyncio.Queue of (coro_factory, Future) pairs
        self._queues: dict[Hashable, asyncio.Queue] = {}
        # record_id → worker Task
        self._workers: dict[Hashable, asyncio.Task] = {}
        # record_id → number of jobs queued or running
        self._pending: dict[Hashable, int] = {}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def enqueue(
        self,
        record_id: Hashable,
        coro_factory: Callable[[], Awaitable[Any]],
    ) -> asyncio.Future:
        """
        Schedule coro_factory() on the queue for record_id.

        Returns immediately with a Future that receives the coroutine's result
        or exception once the job has run.
        """
        self._ensure_record(record_id)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[record_id] += 1
        self._queues[record_id].put_nowait((coro_factory, fut))
        return fut

    def pending_count(self, record_id: Hashable) -> int:
        """Number of jobs queued or running for record_id."""
        return self._pending.get(record_id, 0)

    async def shutdown(self) -> None:
        """Cancel all worker tasks and drain queues."""
        for task in self._workers.values():
            task.cancel()
        results = await asyncio.gather(*self._workers.values(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _LOGGER.debug("RecordMutationQueue worker error during shutdown: %s", result)
        for queue in self._queues.values():
            while not queue.empty():
                _, fut = queue.get_nowait()
                if not fut.done():
                    fut.cancel()
        self._workers.clear()
        self._queues.clear()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_record(self, record_id: Hashable) -> None:
        """Create queue and worker for record_id if they do not exist yet."""
        if record_id not in self._queues:
            self._queues[record_id] = asyncio.Queue()
            self._pending[record_id] = 0
            self._workers[record_id] = asyncio.ensure_future(
                self._worker(record_id)
            )

    def _retire(self, record_id: Hashable) -> None:
        """Forget an idle record; the next enqueue starts a fresh worker."""
        self._queues.pop(record_id, None)
        self._workers.pop(record_id, None)
        self._pending.pop(record_id, None)

    async def _worker(self, record_id: Hashable) -> None:
        """Consume jobs from this record's queue until it runs dry."""
        queue = self._queues[record_id]
        while True:
            coro_factory, fut = await queue.get()
            try:
                result = await coro_factory()
                if not fut.done():
                    fut.set_result(result)
            except asyncio.CancelledError:
                fut.cancel()
                raise
            except Exception as exc:  # noqa: BLE001
                if not fut.done():
                    fut.set_exception(exc)
            finally:
                self._pending[record_id] -= 1
                queue.task_done()
            # No await between this check and the next enqueue's _ensure_record
            if queue.empty():
                self._retire(record_id)
                return
