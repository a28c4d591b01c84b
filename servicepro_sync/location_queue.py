"""
LocationQueue — durable log of check-in / check-out events.

Every event is written to local storage before any delivery is attempted, so
a captured event survives connectivity loss and process restarts. Delivery
always walks the log oldest first under one lock, so events reach the server
in the order they were captured. Failures leave the entry in the log with an
exponential backoff; a later sync pass (manual or the background task)
retries it.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar

from .const import (
    CAS_ATTEMPTS,
    LOCATION_EVENTS,
    LOCATION_QUEUE_KEY,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
    SYNC_INTERVAL,
)
from .exceptions import QueueCorruptError, ServiceProError, StorageContentionError
from .models import LocationFix, QueueEntry, SyncResult, parse_iso, to_iso, utcnow
from .storage import KeyValueStore

_LOGGER = logging.getLogger(__name__)

DeliveryFunction = Callable[[str, str, LocationFix], Awaitable[None]]
_T = TypeVar("_T")


class LocationQueue:
    """
    Append-only location event log on top of a KeyValueStore.

    All entries live under a single key as a JSON array in queue order.
    Writes are read-modify-write cycles committed with compare_and_swap and
    retried when another writer got there first. Writes made from coroutines
    run on the default executor so file syncs never block the event loop.
    """

    def __init__(
        self,
        store: KeyValueStore,
        deliver: DeliveryFunction,
        *,
        key: str = LOCATION_QUEUE_KEY,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_delay: float = RETRY_MAX_DELAY,
    ) -> None:
        self._store = store
        self._deliver = deliver
        self._key = key
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        # Held by every delivery pass; only one pass walks the log at a time
        self._sync_lock = asyncio.Lock()
        self._sync_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def save_location_data(
        self,
        job_id: str,
        event: str,
        location: LocationFix,
        skip_online_sync: bool = False,
    ) -> QueueEntry:
        """
        Persist a location event, then try to deliver the log up to it.

        The entry is committed to storage before delivery starts; a storage
        failure raises before anything is sent. Saving the same event twice
        keeps the first entry. Unless skip_online_sync is set, a delivery
        pass runs immediately, ignoring backoff: older undelivered entries go
        out first, and the first delivery error of that pass is re-raised
        with this entry still queued.
        """
        if event not in LOCATION_EVENTS:
            raise ValueError(f"Unknown location event: {event!r}")

        now = to_iso(utcnow())
        entry = QueueEntry(job_id=job_id, event=event, location=location, timestamp=now, queued_at=now)

        def _append(entries: list[QueueEntry]) -> QueueEntry:
            for existing in entries:
                if existing.entry_id == entry.entry_id:
                    return existing
            entries.append(entry)
            return entry

        try:
            queued = await self._async_update(_append)
        except Exception as exc:
            _LOGGER.error("Failed to queue %s for job %s: %s", event, job_id, exc)
            raise

        if queued is entry:
            _LOGGER.debug("Queued %s for job %s as %s", event, job_id, entry.entry_id)
        else:
            _LOGGER.debug("%s for job %s already queued as %s, skipping", event, job_id, queued.entry_id)

        if not skip_online_sync:
            async with self._sync_lock:
                _, error = await self._deliver_pass(utcnow(), ignore_backoff=True)
            if error is not None:
                raise error
        return queued

    # ------------------------------------------------------------------
    # Sync side
    # ------------------------------------------------------------------

    async def sync_pending(self, now: datetime | None = None) -> SyncResult:
        """
        Deliver undelivered entries in queue order.

        Stops at the first failure, and at the first entry still waiting out
        its backoff, so events reach the server in the order they happened.
        Delivery errors are reported in the result, not raised.
        """
        async with self._sync_lock:
            result, _ = await self._deliver_pass(now or utcnow())
            return result

    def retry_delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt after `attempts` failures."""
        if attempts <= 0:
            return 0.0
        return float(min(self._retry_base_delay * 2 ** (attempts - 1), self._retry_max_delay))

    def start_auto_sync(self, interval: float = SYNC_INTERVAL) -> None:
        """Run sync_pending every `interval` seconds until async_shutdown()."""
        if self._sync_task is not None and not self._sync_task.done():
            return
        self._sync_task = asyncio.ensure_future(self._auto_sync_loop(interval))

    async def async_shutdown(self) -> None:
        """Stop the background sync task."""
        task, self._sync_task = self._sync_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Inspection and cleanup
    # ------------------------------------------------------------------

    def entries(self) -> list[QueueEntry]:
        return self._read()[1]

    def pending_entries(self) -> list[QueueEntry]:
        return [e for e in self.entries() if not e.delivered]

    def get_pending_count_by_job(self, job_id: str) -> int:
        return sum(1 for e in self.pending_entries() if e.job_id == job_id)

    def purge_delivered(self) -> int:
        """Drop delivered entries from the log; returns how many were removed."""
        def _purge(entries: list[QueueEntry]) -> int:
            kept = [e for e in entries if not e.delivered]
            removed = len(entries) - len(kept)
            entries[:] = kept
            return removed

        removed = self._update(_purge)
        if removed:
            _LOGGER.debug("Purged %s delivered location entries", removed)
        return removed

    def clear(self) -> None:
        self._store.delete(self._key)
        _LOGGER.debug("Location queue cleared")

    def queue_stats(self) -> dict[str, Any]:
        entries = self.entries()
        by_event = {event: 0 for event in LOCATION_EVENTS}
        for entry in entries:
            by_event[entry.event] = by_event.get(entry.event, 0) + 1
        queued = sorted(e.queued_at for e in entries)
        return {
            "total_entries": len(entries),
            "pending_entries": sum(1 for e in entries if not e.delivered),
            "entries_by_event": by_event,
            "oldest_entry": queued[0] if queued else None,
            "newest_entry": queued[-1] if queued else None,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _deliver_pass(
        self, now: datetime, ignore_backoff: bool = False
    ) -> tuple[SyncResult, Exception | None]:
        """
        Walk pending entries oldest first; caller must hold _sync_lock.

        Returns the pass result and the exception that stopped it, if any.
        """
        result = SyncResult()
        error: Exception | None = None
        pending = self.pending_entries()
        if not pending:
            _LOGGER.debug("No pending location entries to sync")
            return result, None

        for index, entry in enumerate(pending):
            due = parse_iso(entry.next_attempt_at)
            if not ignore_backoff and due is not None and due > now:
                result.skipped_count += len(pending) - index
                break
            try:
                await self._deliver_entry(entry, now)
            except Exception as exc:  # noqa: BLE001
                error = exc
                result.success = False
                result.failed_count += 1
                result.errors.append(f"Entry {entry.entry_id} ({entry.event}, job {entry.job_id}): {exc}")
                result.skipped_count += len(pending) - index - 1
                break
            result.processed_count += 1

        _LOGGER.debug(
            "Location sync finished: %s delivered, %s failed, %s skipped",
            result.processed_count, result.failed_count, result.skipped_count,
        )
        return result, error

    async def _deliver_entry(self, entry: QueueEntry, now: datetime) -> None:
        """Send one entry and record the outcome in the log."""
        try:
            await self._deliver(entry.job_id, entry.event, entry.location)
        except Exception as exc:
            _LOGGER.warning(
                "Failed to deliver %s for job %s, keeping it queued: %s",
                entry.event, entry.job_id, exc,
            )
            try:
                await self._async_update(self._failure_recorder(entry.entry_id, exc, now))
            except (OSError, ServiceProError) as store_exc:
                _LOGGER.error("Could not record delivery failure for %s: %s", entry.entry_id, store_exc)
            raise

        try:
            await self._async_update(self._delivery_marker(entry.entry_id))
        except (OSError, ServiceProError) as store_exc:
            # The next pass re-sends it under the same id, which the backend ignores
            _LOGGER.error("Delivered %s but could not mark it in the log: %s", entry.entry_id, store_exc)

    @staticmethod
    def _delivery_marker(entry_id: str) -> Callable[[list[QueueEntry]], None]:
        delivered_at = to_iso(utcnow())

        def _mark(entries: list[QueueEntry]) -> None:
            for entry in entries:
                if entry.entry_id == entry_id:
                    entry.delivered_at = delivered_at
                    entry.next_attempt_at = None
                    entry.last_error = None

        return _mark

    def _failure_recorder(
        self, entry_id: str, exc: Exception, now: datetime
    ) -> Callable[[list[QueueEntry]], None]:
        def _record(entries: list[QueueEntry]) -> None:
            for entry in entries:
                if entry.entry_id == entry_id:
                    entry.attempts += 1
                    entry.last_error = str(exc) or type(exc).__name__
                    delay = self.retry_delay(entry.attempts)
                    entry.next_attempt_at = to_iso(now + timedelta(seconds=delay))

        return _record

    def _read(self) -> tuple[str | None, list[QueueEntry]]:
        raw = self._store.read(self._key)
        if not raw:
            return raw, []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError(f"expected a JSON array, got {type(items).__name__}")
            return raw, [QueueEntry.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError) as exc:
            raise QueueCorruptError(f"Location queue under {self._key!r} is unreadable: {exc}") from exc

    def _update(self, mutate: Callable[[list[QueueEntry]], _T]) -> _T:
        """Read the log, apply mutate in place and commit with compare-and-swap."""
        for _ in range(CAS_ATTEMPTS):
            raw, entries = self._read()
            result = mutate(entries)
            encoded = json.dumps([e.to_dict() for e in entries])
            if self._store.compare_and_swap(self._key, raw, encoded):
                return result
            _LOGGER.debug("Location queue changed underneath us, retrying write")
        raise StorageContentionError(
            f"Could not update location queue {self._key!r} after {CAS_ATTEMPTS} attempts"
        )

    async def _async_update(self, mutate: Callable[[list[QueueEntry]], _T]) -> _T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._update, mutate)

    async def _auto_sync_loop(self, interval: float) -> None:
        while True:
            try:
                await self.sync_pending()
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Background location sync failed: %s", exc)
            await asyncio.sleep(interval)
