"""
Domain models for the ServicePro sync core.

This module contains pure data classes for location fixes, queue entries and
sync results. They have no dependencies on HTTP, storage or asyncio.
"""
from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime, timezone
from typing import Any

from .const import (
    DEFAULT_ACCURACY,
    DEFAULT_MAXIMUM_AGE,
    DEFAULT_TIMEOUT,
    LOCATION_ENTRY_TYPE,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_ENTRY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "servicepro:location-entry")


@dataclasses.dataclass(frozen=True)
class LocationFix:
    """One timestamped sample from a positioning source. Never mutated."""

    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime = dataclasses.field(default_factory=utcnow)
    altitude: float | None = None
    speed: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": to_iso(self.timestamp),
        }
        if self.altitude is not None:
            data["altitude"] = self.altitude
        if self.speed is not None:
            data["speed"] = self.speed
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocationFix:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=float(data["accuracy"]),
            timestamp=parse_iso(data.get("timestamp")) or utcnow(),
            altitude=data.get("altitude"),
            speed=data.get("speed"),
        )


@dataclasses.dataclass(frozen=True)
class LocationRequirements:
    """Accuracy and timing constraints passed to a positioning source."""

    accuracy: float = DEFAULT_ACCURACY
    timeout: float = DEFAULT_TIMEOUT
    enable_high_accuracy: bool = True
    maximum_age: float = DEFAULT_MAXIMUM_AGE


@dataclasses.dataclass(frozen=True)
class LocationValidation:
    """Result of comparing a technician fix against a job site."""

    is_valid: bool
    distance: int
    max_distance: float

    @property
    def within_range(self) -> bool:
        return self.is_valid


def location_entry_id(job_id: str, event: str, location: LocationFix) -> str:
    """
    Deterministic id of one captured check event.

    The same job, event and fix always map to the same UUID, which is used
    both to de-duplicate the local log and as the primary key of the
    timesheet row, so re-sending an event never creates a second row.
    """
    key = f"{job_id}:{event}:{to_iso(location.timestamp)}:{location.latitude}:{location.longitude}"
    return str(uuid.uuid5(_ENTRY_NAMESPACE, key))


@dataclasses.dataclass
class QueueEntry:
    """
    One location event persisted in the durable queue.

    `timestamp` is the time of the event itself, `queued_at` the time it was
    written to storage. Delivery bookkeeping (`attempts`, `next_attempt_at`,
    `last_error`, `delivered_at`) is updated in place by the queue.
    """

    job_id: str
    event: str
    location: LocationFix
    timestamp: str
    queued_at: str
    type: str = LOCATION_ENTRY_TYPE
    entry_id: str | None = None
    attempts: int = 0
    next_attempt_at: str | None = None
    last_error: str | None = None
    delivered_at: str | None = None

    def __post_init__(self) -> None:
        if not self.entry_id:
            self.entry_id = location_entry_id(self.job_id, self.event, self.location)

    @property
    def delivered(self) -> bool:
        return self.delivered_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "type": self.type,
            "jobId": self.job_id,
            "event": self.event,
            "location": self.location.to_dict(),
            "timestamp": self.timestamp,
            "queuedAt": self.queued_at,
            "attempts": self.attempts,
            "nextAttemptAt": self.next_attempt_at,
            "lastError": self.last_error,
            "deliveredAt": self.delivered_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueEntry:
        # Entries written before ids existed get the derived id in __post_init__
        return cls(
            entry_id=data.get("entry_id"),
            type=data.get("type", LOCATION_ENTRY_TYPE),
            job_id=data["jobId"],
            event=data["event"],
            location=LocationFix.from_dict(data["location"]),
            timestamp=data["timestamp"],
            queued_at=data.get("queuedAt") or data["timestamp"],
            attempts=int(data.get("attempts", 0)),
            next_attempt_at=data.get("nextAttemptAt"),
            last_error=data.get("lastError"),
            delivered_at=data.get("deliveredAt"),
        )


@dataclasses.dataclass
class SyncResult:
    """Outcome of one pass over the durable queue."""

    success: bool = True
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = dataclasses.field(default_factory=list)
