"""
Low-level record helpers for the optimistic coordinator.

Responsibilities:
- Produce copies of records with fields merged in.
- Rebuild a visible record from confirmed state plus pending deltas.

No asyncio or network imports — these functions are pure data primitives.
"""
from __future__ import annotations

from typing import Any, Iterable

from .coordinator_data import PendingUpdate


def merge_fields(record: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of record with fields merged over it; the original is untouched."""
    merged = dict(record)
    merged.update(fields)
    return merged


def rebuild_record(
    confirmed: dict[str, Any], pending: Iterable[PendingUpdate]
) -> dict[str, Any]:
    """
    Apply each pending delta, oldest first, on top of the confirmed record.

    With no pending deltas left this is exactly the confirmed record, so a
    failed update is rolled back to the values it overwrote rather than having
    its fields deleted.
    """
    record = dict(confirmed)
    for update in pending:
        record.update(update.optimistic_data)
    return record
