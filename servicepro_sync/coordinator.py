"""
OptimisticCoordinator — speculative record updates with remote reconciliation.

Responsibilities:
- Own the visible record collection and the list of in-flight updates.
- Apply an update locally the moment it is requested, then confirm it with
  the injected remote update function.
- Delegate per-record call serialization to RecordMutationQueue (record_queue.py).
- Fold confirmed deltas into the confirmed state on success; rebuild the
  record from confirmed state plus the remaining deltas on failure.
- Push CoordinatorData snapshots to listeners on every change.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Iterable

from .const import RECORD_ID_FIELD
from .coordinator_data import CoordinatorData, PendingUpdate
from .coordinator_utils import merge_fields, rebuild_record
from .record_queue import RecordMutationQueue

__all__ = ["CoordinatorData", "OptimisticCoordinator", "PendingUpdate", "UpdateFunction"]

_LOGGER = logging.getLogger(__name__)

UpdateFunction = Callable[[Any, dict[str, Any]], Awaitable[None]]
Listener = Callable[[CoordinatorData], None]


class OptimisticCoordinator:
    """
    Coordinator for optimistic updates of one record collection.

    The visible records always equal the confirmed records with every pending
    delta applied on top, oldest first. Remote calls for the same record are
    serialized, so deltas resolve in the order they were applied.
    """

    def __init__(
        self,
        records: Iterable[dict[str, Any]],
        update_function: UpdateFunction,
        *,
        id_field: str = RECORD_ID_FIELD,
    ) -> None:
        self._update_function = update_function
        self._id_field = id_field
        self._queue = RecordMutationQueue()
        self._listeners: list[Listener] = []
        self._next_token = 0

        initial = tuple(dict(r) for r in records)
        # Server-confirmed records, index-aligned with data.records
        self._confirmed: tuple[dict[str, Any], ...] = initial
        self.data = CoordinatorData(records=tuple(dict(r) for r in initial))

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def records(self) -> list[dict[str, Any]]:
        """Copies of the visible records."""
        return [dict(r) for r in self.data.records]

    @property
    def has_pending_updates(self) -> bool:
        return self.data.has_pending_updates

    def get_record(self, record_id: Any) -> dict[str, Any] | None:
        for record in self.data.records:
            if record.get(self._id_field) == record_id:
                return dict(record)
        return None

    def async_add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove_listener() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove_listener

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def apply_optimistic_update(self, record_id: Any, fields: dict[str, Any]) -> asyncio.Future:
        """
        Merge fields over the record immediately and schedule the remote update.

        The returned Future resolves after the remote call and the local
        reconciliation have both finished, and carries the remote error if
        the call failed. An unknown record_id is a no-op: nothing changes, the
        remote function is not called and the Future is already resolved.
        """
        fields = dict(fields)
        matches = [
            index for index, record in enumerate(self.data.records)
            if record.get(self._id_field) == record_id
        ]
        if not matches:
            _LOGGER.debug("Optimistic update skipped: no record with %s=%s", self._id_field, record_id)
            fut: asyncio.Future = asyncio.get_running_loop().create_future()
            fut.set_result(None)
            return fut

        update = PendingUpdate(
            token=self._next_token,
            record_id=record_id,
            optimistic_data=fields,
        )
        self._next_token += 1

        records = tuple(
            merge_fields(record, fields) if index in matches else record
            for index, record in enumerate(self.data.records)
        )
        self._set_data(
            dataclasses.replace(self.data, records=records, pending=self.data.pending + (update,))
        )
        return self._queue.enqueue(record_id, lambda: self._confirm(update))

    async def async_apply_optimistic_update(self, record_id: Any, fields: dict[str, Any]) -> None:
        """Apply an optimistic update and wait for it to be confirmed or rolled back."""
        await self.apply_optimistic_update(record_id, fields)

    def refresh_data(self, records: Iterable[dict[str, Any]]) -> None:
        """
        Replace the whole collection with an authoritative snapshot.

        All pending updates are dropped; their remote calls may still finish,
        but their completions no longer touch the collection.
        """
        snapshot = tuple(dict(r) for r in records)
        if self.data.pending:
            _LOGGER.debug("Refresh discards %s pending update(s)", len(self.data.pending))
        self._confirmed = snapshot
        self._set_data(CoordinatorData(records=tuple(dict(r) for r in snapshot)))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _confirm(self, update: PendingUpdate) -> None:
        """Run the remote update for one pending delta and reconcile the result."""
        try:
            await self._update_function(update.record_id, dict(update.optimistic_data))
        except Exception as exc:
            _LOGGER.warning(
                "Remote update of record %s failed, rolling back %s: %s",
                update.record_id, sorted(update.optimistic_data), exc,
            )
            self._settle(update, confirmed=False)
            raise
        self._settle(update, confirmed=True)

    def _settle(self, update: PendingUpdate, confirmed: bool) -> None:
        """Remove the pending delta and rebuild the affected records."""
        if not any(p.token == update.token for p in self.data.pending):
            _LOGGER.debug("Ignoring stale completion for record %s (token %s)", update.record_id, update.token)
            return

        remaining = tuple(p for p in self.data.pending if p.token != update.token)
        remaining_for_record = [p for p in remaining if p.record_id == update.record_id]

        confirmed_records = list(self._confirmed)
        records = list(self.data.records)
        for index, base in enumerate(confirmed_records):
            if base.get(self._id_field) != update.record_id:
                continue
            if confirmed:
                base = merge_fields(base, update.optimistic_data)
                confirmed_records[index] = base
            records[index] = rebuild_record(base, remaining_for_record)

        self._confirmed = tuple(confirmed_records)
        self._set_data(
            dataclasses.replace(self.data, records=tuple(records), pending=remaining)
        )

    def _set_data(self, data: CoordinatorData) -> None:
        self.data = data
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Error in coordinator listener %s", listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Cancel queued remote updates and stop the per-record workers."""
        await self._queue.shutdown()
