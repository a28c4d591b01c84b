"""
Tests for ServiceProSync wiring: check-in / check-out flow, location
validation, record coordinators and the setup / unload lifecycle.
"""

from __future__ import annotations

import tempfile
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from servicepro_sync import ServiceProSync, async_setup
from servicepro_sync.exceptions import (
    ConfigError,
    LocationOutOfRange,
    LocationPermissionDenied,
    LocationUnavailable,
)
from servicepro_sync.location import PositionError
from servicepro_sync.models import utcnow
from servicepro_sync.storage import JsonFileStore, MemoryStore

from .test_common import JOB_SITE, FakePositionSource, make_config, make_fix, make_record, make_session


def _make_sync(deliver=None, position_source=None, **config):
    return ServiceProSync(
        make_config(**config),
        make_session(),
        store=MemoryStore(),
        deliver=deliver or AsyncMock(return_value=None),
        position_source=position_source,
    )


class TestCheckInOut(unittest.IsolatedAsyncioTestCase):

    async def test_check_in_with_explicit_fix(self):
        deliver = AsyncMock()
        sync = _make_sync(deliver)
        fix = make_fix()

        entry = await sync.check_in("job-1", location=fix, job_site=JOB_SITE)

        self.assertEqual(entry.event, "check_in")
        deliver.assert_awaited_once_with("job-1", "check_in", fix)
        await sync.async_unload()

    async def test_check_out_uses_position_source(self):
        deliver = AsyncMock()
        source = FakePositionSource(fix=make_fix(accuracy=5))
        sync = _make_sync(deliver, position_source=source)

        entry = await sync.check_out("job-1")

        self.assertEqual(entry.event, "check_out")
        self.assertEqual(entry.location.accuracy, 5)
        self.assertEqual(len(source.requests), 1)
        await sync.async_unload()

    async def test_out_of_range_rejected_and_not_queued(self):
        deliver = AsyncMock()
        sync = _make_sync(deliver)
        far_away = make_fix(lat=21.4858, lng=39.1925)

        with self.assertRaises(LocationOutOfRange) as ctx:
            await sync.check_in("job-1", location=far_away, job_site=JOB_SITE)

        self.assertGreater(ctx.exception.distance, 500)
        self.assertEqual(ctx.exception.max_distance, 500)
        self.assertEqual(sync.queue.entries(), [])
        deliver.assert_not_awaited()
        await sync.async_unload()

    async def test_configured_max_distance_applies(self):
        sync = _make_sync(max_distance=2000)
        nearby = make_fix(lat=JOB_SITE["lat"] + 0.01)  # about 1.1 km north

        await sync.check_in("job-1", location=nearby, job_site=JOB_SITE)
        self.assertEqual(len(sync.queue.entries()), 1)
        await sync.async_unload()

    async def test_without_source_or_fix(self):
        sync = _make_sync()
        with self.assertRaises(LocationUnavailable):
            await sync.check_in("job-1")
        await sync.async_unload()

    async def test_location_errors_propagate(self):
        source = FakePositionSource(error=PositionError(PositionError.PERMISSION_DENIED))
        sync = _make_sync(position_source=source)
        with self.assertRaises(LocationPermissionDenied):
            await sync.check_in("job-1")
        self.assertEqual(sync.queue.entries(), [])
        await sync.async_unload()

    async def test_offline_check_in_is_kept_and_synced_later(self):
        deliver = AsyncMock(side_effect=ConnectionError("offline"))
        sync = _make_sync(deliver)

        with self.assertRaises(ConnectionError):
            await sync.check_in("job-1", location=make_fix())
        self.assertEqual(sync.queue.get_pending_count_by_job("job-1"), 1)

        # still backing off
        result = await sync.sync()
        self.assertEqual(result.skipped_count, 1)
        deliver.assert_awaited_once()

        deliver.side_effect = None
        result = await sync.queue.sync_pending(now=utcnow() + timedelta(minutes=5))
        self.assertEqual(result.processed_count, 1)
        self.assertEqual(sync.queue.get_pending_count_by_job("job-1"), 0)
        await sync.async_unload()

    async def test_skip_online_sync(self):
        deliver = AsyncMock()
        sync = _make_sync(deliver)
        await sync.check_in("job-1", location=make_fix(), skip_online_sync=True)
        deliver.assert_not_awaited()
        self.assertEqual(sync.queue.get_pending_count_by_job("job-1"), 1)
        await sync.async_unload()


class TestCoordinators(unittest.IsolatedAsyncioTestCase):

    async def test_coordinator_patches_table_rows(self):
        sync = _make_sync()
        make_request = AsyncMock(return_value=[{"id": "1", "status": "done"}])

        coordinator = sync.create_coordinator("jobs", [make_record("1")])
        with patch("servicepro_sync.api.records.make_request", make_request):
            await coordinator.async_apply_optimistic_update("1", {"status": "done"})

        self.assertEqual(coordinator.get_record("1")["status"], "done")
        args = make_request.await_args
        self.assertEqual(args.args[0], "PATCH")
        self.assertEqual(args.args[1], "https://project.supabase.co/rest/v1/jobs")
        self.assertEqual(args.args[2]["Authorization"], "Bearer token-abc")
        await sync.async_unload()

    async def test_unload_shuts_coordinators_down(self):
        sync = _make_sync()
        coordinator = sync.create_coordinator("jobs", [make_record("1")])
        coordinator.async_shutdown = AsyncMock()
        await sync.async_unload()
        coordinator.async_shutdown.assert_awaited_once()


class TestLifecycle(unittest.IsolatedAsyncioTestCase):

    async def test_async_setup_starts_background_sync(self):
        sync = await async_setup(make_config(), make_session(), store=MemoryStore(), deliver=AsyncMock())
        task = sync.queue._sync_task
        self.assertIsNotNone(task)
        self.assertFalse(task.done())

        await sync.async_unload()
        self.assertTrue(task.done())
        self.assertIsNone(sync.queue._sync_task)

    async def test_default_store_uses_storage_dir(self):
        with tempfile.TemporaryDirectory() as tmp:
            sync = ServiceProSync(make_config(storage_dir=tmp), make_session(), deliver=AsyncMock())
            self.assertIsInstance(sync.store, JsonFileStore)
            self.assertEqual(sync.store.directory, tmp)
            await sync.async_unload()

    def test_invalid_config_rejected(self):
        with self.assertRaises(ConfigError):
            ServiceProSync({"api_key": "anon-key"}, make_session())
