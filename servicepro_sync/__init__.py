"""
ServicePro sync core: optimistic record updates and a durable GPS check-in queue.

async_setup() wires the validated configuration, the signed-in session and
the local store into a ServiceProSync instance; async_unload() tears it down.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .api.auth import SessionContext, get_standard_headers
from .api.records import make_update_function
from .api.timesheets import make_delivery_function
from .config import load_config
from .const import EVENT_CHECK_IN, EVENT_CHECK_OUT, VERSION
from .coordinator import OptimisticCoordinator
from .exceptions import LocationOutOfRange, LocationUnavailable
from .location import PositionSource, get_current_location, validate_work_location
from .location_queue import DeliveryFunction, LocationQueue
from .models import LocationFix, QueueEntry, SyncResult
from .storage import JsonFileStore, KeyValueStore

__all__ = ["ServiceProSync", "SessionContext", "async_setup", "VERSION"]

_LOGGER = logging.getLogger(__name__)


class ServiceProSync:
    """
    Owns the location queue and the optimistic coordinators of one session.

    The session is passed in explicitly at construction and dropped by
    async_unload(); nothing here keeps sign-in state globally.
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        session: SessionContext,
        *,
        store: KeyValueStore | None = None,
        deliver: DeliveryFunction | None = None,
        position_source: PositionSource | None = None,
    ) -> None:
        self.config = load_config(config)
        self.session = session
        self.position_source = position_source
        self._base_url = self.config["supabase_url"]
        self._headers = get_standard_headers(self.config["api_key"], session)
        self._coordinators: list[OptimisticCoordinator] = []

        self.store = store if store is not None else JsonFileStore(self.config["storage_dir"])
        self.queue = LocationQueue(
            self.store,
            deliver or make_delivery_function(self._base_url, self._headers, session),
        )

    # ------------------------------------------------------------------
    # Optimistic record collections
    # ------------------------------------------------------------------

    def create_coordinator(self, table: str, records: Iterable[dict[str, Any]]) -> OptimisticCoordinator:
        """Build a coordinator whose remote updates PATCH rows of `table`."""
        coordinator = OptimisticCoordinator(
            records, make_update_function(self._base_url, table, self._headers)
        )
        self._coordinators.append(coordinator)
        return coordinator

    # ------------------------------------------------------------------
    # Check-in / check-out
    # ------------------------------------------------------------------

    async def check_in(self, job_id: str, location: LocationFix | None = None, job_site: Any = None,
                       skip_online_sync: bool = False) -> QueueEntry:
        return await self._record_event(job_id, EVENT_CHECK_IN, location, job_site, skip_online_sync)

    async def check_out(self, job_id: str, location: LocationFix | None = None, job_site: Any = None,
                        skip_online_sync: bool = False) -> QueueEntry:
        return await self._record_event(job_id, EVENT_CHECK_OUT, location, job_site, skip_online_sync)

    async def _record_event(self, job_id, event, location, job_site, skip_online_sync) -> QueueEntry:
        """Obtain a fix if none was given, check it against the job site and queue it."""
        if location is None:
            location = await get_current_location(self.position_source)
            if location is None:
                raise LocationUnavailable()

        if job_site is not None:
            validation = validate_work_location(job_site, location, self.config["max_distance"])
            if not validation.is_valid:
                _LOGGER.info(
                    "Rejected %s for job %s: %sm from site (limit %sm)",
                    event, job_id, validation.distance, validation.max_distance,
                )
                raise LocationOutOfRange(validation.distance, validation.max_distance)

        return await self.queue.save_location_data(job_id, event, location, skip_online_sync)

    async def sync(self) -> SyncResult:
        """Flush queued location events now."""
        return await self.queue.sync_pending()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_unload(self) -> None:
        """Stop background sync and all coordinator workers."""
        await self.queue.async_shutdown()
        for coordinator in self._coordinators:
            await coordinator.async_shutdown()
        self._coordinators.clear()
        _LOGGER.debug("ServicePro sync unloaded for user %s", self.session.user_id)


async def async_setup(
    config: Mapping[str, Any],
    session: SessionContext,
    **kwargs,
) -> ServiceProSync:
    """Create a ServiceProSync for a signed-in session and start background sync."""
    sync = ServiceProSync(config, session, **kwargs)
    sync.queue.start_auto_sync(sync.config["sync_interval"])
    _LOGGER.debug("ServicePro sync %s set up for user %s", VERSION, session.user_id)
    return sync
