"""
CoordinatorData — immutable snapshot of the optimistic record collection.

This is a pure data module with no asyncio or network dependencies.
"""
from __future__ import annotations

import dataclasses
from typing import Any


@dataclasses.dataclass(frozen=True)
class PendingUpdate:
    """One in-flight optimistic mutation."""

    # Monotonic per-coordinator token; completions are matched on this, not on record_id
    token: int
    record_id: Any
    optimistic_data: dict[str, Any]


@dataclasses.dataclass(frozen=True)
class CoordinatorData:
    """
    Typed, copy-on-write snapshot of the visible records and in-flight updates.

    Always replace via dataclasses.replace() — never mutate in place.
    """

    # Visible records, confirmed state with pending deltas applied in call order
    records: tuple[dict[str, Any], ...] = ()

    # In-flight optimistic updates, oldest first
    pending: tuple[PendingUpdate, ...] = ()

    @property
    def has_pending_updates(self) -> bool:
        return bool(self.pending)

    def pending_for(self, record_id: Any) -> tuple[PendingUpdate, ...]:
        return tuple(p for p in self.pending if p.record_id == record_id)
