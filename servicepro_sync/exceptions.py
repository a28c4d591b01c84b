"""Exception hierarchy shared by the ServicePro sync core."""
from __future__ import annotations


class ServiceProError(Exception):
    """Base class for every error raised by servicepro_sync."""


class ConfigError(ServiceProError):
    """Raised when the supplied configuration does not validate."""


class LocationError(ServiceProError):
    """A location fix could not be obtained. The message is user-facing."""

    default_message = "Unable to retrieve location. Please check your GPS settings."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class LocationPermissionDenied(LocationError):
    default_message = "Location access denied. Please enable location permissions."


class LocationUnavailable(LocationError):
    default_message = "Location information is unavailable. Please check GPS settings."


class LocationTimeout(LocationError):
    default_message = "Location request timed out. Please try again."


class LocationOutOfRange(LocationError):
    """The technician is too far from the job site to check in or out."""

    def __init__(self, distance: int, max_distance: float) -> None:
        self.distance = distance
        self.max_distance = max_distance
        super().__init__(
            f"You are {distance}m from the job site (limit {max_distance:g}m)."
        )


class QueueCorruptError(ServiceProError):
    """The durable queue log could not be decoded."""


class StorageContentionError(ServiceProError):
    """A compare-and-swap write kept losing against concurrent writers."""
