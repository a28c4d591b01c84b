"""
Location helpers for GPS-based check-in and check-out.

Responsible for:
- Great-circle distance between two coordinates (Haversine)
- Validating a technician fix against a job site
- Rating fix quality from its accuracy
- Requesting and watching fixes from a pluggable positioning source,
  translating its failures into user-facing LocationError subclasses
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Callable, Protocol

from .const import (
    DEFAULT_MAX_DISTANCE,
    EARTH_RADIUS_M,
    LOCATION_QUALITY_POOR,
    LOCATION_QUALITY_TIERS,
)
from .exceptions import (
    LocationError,
    LocationPermissionDenied,
    LocationTimeout,
    LocationUnavailable,
)
from .models import LocationFix, LocationRequirements, LocationValidation

_LOGGER = logging.getLogger(__name__)


class PositionError(Exception):
    """Raised by a PositionSource when a fix cannot be produced."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = "") -> None:
        self.code = code
        super().__init__(message or f"Position error {code}")


class PositionSource(Protocol):
    """Anything able to produce location fixes (GPS daemon, device bridge, ...)."""

    async def get_current_fix(self, requirements: LocationRequirements) -> LocationFix:
        ...

    def watch(
        self,
        callback: Callable[[LocationFix], None],
        requirements: LocationRequirements,
    ) -> Any:
        ...

    def clear_watch(self, handle: Any) -> None:
        ...


_POSITION_ERRORS: dict[int, type[LocationError]] = {
    PositionError.PERMISSION_DENIED: LocationPermissionDenied,
    PositionError.POSITION_UNAVAILABLE: LocationUnavailable,
    PositionError.TIMEOUT: LocationTimeout,
}


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def _coordinates(point: Any) -> tuple[float, float]:
    """Accept {'lat', 'lng'} mappings as well as LocationFix-like objects."""
    if isinstance(point, dict):
        if "lat" in point:
            return float(point["lat"]), float(point["lng"])
        return float(point["latitude"]), float(point["longitude"])
    return float(point.latitude), float(point.longitude)


def calculate_distance(point1: Any, point2: Any) -> float:
    """Distance in metres between two points using the Haversine formula."""
    lat1, lng1 = _coordinates(point1)
    lat2, lng2 = _coordinates(point2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def validate_work_location(
    job_location: Any,
    technician_location: Any,
    max_distance: float = DEFAULT_MAX_DISTANCE,
) -> LocationValidation:
    """
    Check whether the technician is close enough to the job site.

    The distance is reported in whole metres and the comparison is made on
    that reported value, so a limit of 500 accepts anything that rounds to 500.
    """
    distance = round(calculate_distance(job_location, technician_location))
    return LocationValidation(
        is_valid=distance <= max_distance,
        distance=distance,
        max_distance=max_distance,
    )


def format_distance(distance: float) -> str:
    """'420m' below one kilometre, '1.5km' above."""
    if distance < 1000:
        return f"{round(distance)}m"
    return f"{distance / 1000:.1f}km"


def get_location_quality(accuracy: float) -> str:
    """Map fix accuracy in metres to excellent / good / fair / poor."""
    for limit, quality in LOCATION_QUALITY_TIERS:
        if accuracy <= limit:
            return quality
    return LOCATION_QUALITY_POOR


def is_accurate_enough(fix: LocationFix, requirements: LocationRequirements | None = None) -> bool:
    requirements = requirements or LocationRequirements()
    return fix.accuracy <= requirements.accuracy


# ---------------------------------------------------------------------------
# Positioning source access
# ---------------------------------------------------------------------------

async def get_current_location(
    source: PositionSource | None,
    requirements: LocationRequirements | None = None,
) -> LocationFix | None:
    """
    Request one fix from source.

    Returns None when no positioning source is available. Once a fix has
    been requested, failures raise a LocationError subclass whose message can
    be shown to the technician as-is.
    """
    if source is None:
        _LOGGER.warning("No positioning source available")
        return None

    requirements = requirements or LocationRequirements()
    try:
        fix = await asyncio.wait_for(
            source.get_current_fix(requirements), timeout=requirements.timeout
        )
    except asyncio.TimeoutError as exc:
        _LOGGER.warning("Location request timed out after %ss", requirements.timeout)
        raise LocationTimeout() from exc
    except PositionError as exc:
        _LOGGER.error("Failed to get current location: %s", exc)
        error_cls = _POSITION_ERRORS.get(exc.code, LocationError)
        raise error_cls() from exc
    except Exception as exc:
        _LOGGER.error("Failed to get current location: %s", exc)
        raise LocationError() from exc

    _LOGGER.debug(
        "Location acquired: (%.5f, %.5f) ±%sm", fix.latitude, fix.longitude, fix.accuracy
    )
    return fix


async def request_permission(source: PositionSource | None) -> bool:
    """
    Ask the source whether location access is granted.

    Sources without a permission surface are assumed granted. A 'prompt'
    state is resolved by requesting a fix, which triggers the system prompt.
    """
    if source is None:
        return False

    query = getattr(source, "query_permission", None)
    if query is None:
        return True

    try:
        state = await query()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Permission query failed, assuming denied: %s", exc)
        return False

    if state == "granted":
        return True
    if state == "denied":
        return False

    try:
        await get_current_location(source)
    except LocationError:
        return False
    return True


def watch_location(
    source: PositionSource | None,
    callback: Callable[[LocationFix], None],
    requirements: LocationRequirements | None = None,
) -> Any:
    """Subscribe callback to fix updates; returns a watch handle or None."""
    if source is None:
        _LOGGER.warning("No positioning source available for watching")
        return None
    return source.watch(callback, requirements or LocationRequirements())


def clear_location_watch(source: PositionSource | None, handle: Any) -> None:
    if source is None or handle is None:
        return
    source.clear_watch(handle)
