"""
Shared helpers and factory functions for servicepro_sync tests.
Import from this module in each test file to avoid duplication.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

from servicepro_sync.api.auth import SessionContext
from servicepro_sync.coordinator import OptimisticCoordinator
from servicepro_sync.location_queue import LocationQueue
from servicepro_sync.models import LocationFix
from servicepro_sync.storage import MemoryStore


JOB_SITE = {"lat": 24.7136, "lng": 46.6753}  # Riyadh


def make_record(record_id: str = "1", **kwargs) -> dict:
    defaults = dict(id=record_id, status="pending", priority="normal")
    defaults.update(kwargs)
    return defaults


def make_fix(lat: float = JOB_SITE["lat"], lng: float = JOB_SITE["lng"], **kwargs) -> LocationFix:
    defaults = dict(
        latitude=lat,
        longitude=lng,
        accuracy=8.0,
        timestamp=datetime(2025, 8, 26, 9, 30, tzinfo=timezone.utc),
    )
    defaults.update(kwargs)
    return LocationFix(**defaults)


def make_coordinator(records=None, update_function=None) -> OptimisticCoordinator:
    if records is None:
        records = [make_record("1")]
    if update_function is None:
        update_function = AsyncMock(return_value=None)
    return OptimisticCoordinator(records, update_function)


def make_queue(store=None, deliver=None, **kwargs) -> LocationQueue:
    if store is None:
        store = MemoryStore()
    if deliver is None:
        deliver = AsyncMock(return_value=None)
    return LocationQueue(store, deliver, **kwargs)


def make_session(**kwargs) -> SessionContext:
    defaults = dict(access_token="token-abc", user_id="tech-1")
    defaults.update(kwargs)
    return SessionContext(**defaults)


def make_config(**kwargs) -> dict:
    defaults = dict(
        supabase_url="https://project.supabase.co",
        api_key="anon-key",
        storage_dir="/tmp/servicepro-test",
        max_distance=500,
        sync_interval=60,
    )
    defaults.update(kwargs)
    return defaults


class FakePositionSource:
    """In-memory positioning source; raise `error` or return `fix`."""

    def __init__(self, fix: LocationFix | None = None, error: Exception | None = None,
                 permission: str | None = None) -> None:
        self.fix = fix or make_fix()
        self.error = error
        self.permission = permission
        self.requests = []
        self.watchers = {}
        self._next_handle = 1

    async def get_current_fix(self, requirements):
        self.requests.append(requirements)
        if self.error is not None:
            raise self.error
        return self.fix

    def watch(self, callback, requirements):
        handle = self._next_handle
        self._next_handle += 1
        self.watchers[handle] = callback
        return handle

    def clear_watch(self, handle):
        self.watchers.pop(handle, None)

    def emit(self, fix: LocationFix) -> None:
        for callback in list(self.watchers.values()):
            callback(fix)


class PermissionPositionSource(FakePositionSource):
    """FakePositionSource that also exposes a permission query."""

    async def query_permission(self):
        if isinstance(self.permission, Exception):
            raise self.permission
        return self.permission
