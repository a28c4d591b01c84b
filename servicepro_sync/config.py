"""Configuration schema for the ServicePro sync core."""
from __future__ import annotations

import logging
import os
from typing import Any, Mapping

import voluptuous as vol

from .const import (
    DEFAULT_MAX_DISTANCE,
    DEFAULT_STORAGE_DIR,
    SYNC_INTERVAL,
)
from .exceptions import ConfigError

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "SERVICEPRO_"

non_empty_string = vol.All(str, vol.Length(min=1))
positive_number = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("supabase_url"): vol.All(non_empty_string, vol.Url()),
        vol.Required("api_key"): non_empty_string,
        vol.Optional("storage_dir", default=DEFAULT_STORAGE_DIR): non_empty_string,
        vol.Optional("max_distance", default=DEFAULT_MAX_DISTANCE): positive_number,
        vol.Optional("sync_interval", default=SYNC_INTERVAL): vol.All(vol.Coerce(float), vol.Range(min=5)),
    },
    extra=vol.REMOVE_EXTRA,
)


def load_config(data: Mapping[str, Any]) -> dict[str, Any]:
    """Validate raw settings and fill in defaults."""
    try:
        return CONFIG_SCHEMA(dict(data))
    except vol.Invalid as exc:
        _LOGGER.error("Invalid ServicePro configuration: %s", exc)
        raise ConfigError(str(exc)) from exc


def config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Build a validated configuration from SERVICEPRO_* variables.

    SERVICEPRO_SUPABASE_URL maps to supabase_url, SERVICEPRO_MAX_DISTANCE to
    max_distance, and so on. Unset variables fall back to schema defaults.
    """
    environ = os.environ if environ is None else environ
    data = {
        str(key.schema): environ[ENV_PREFIX + str(key.schema).upper()]
        for key in CONFIG_SCHEMA.schema
        if ENV_PREFIX + str(key.schema).upper() in environ
    }
    return load_config(data)
