"""
Session context and request headers for the ServicePro REST backend.

Sign-in itself happens outside this package; callers hand over the resulting
access token and user id as an explicit SessionContext instead of relying on
process-wide state.
"""
from __future__ import annotations

import dataclasses
import logging

_LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SessionContext:
    """Credentials of the signed-in technician."""

    access_token: str
    user_id: str

    def __repr__(self) -> str:
        return f"SessionContext(user_id={self.user_id!r}, access_token=<redacted>)"


def get_standard_headers(api_key: str, session: SessionContext | None = None) -> dict:
    """
    Build the HTTP headers used by all REST calls.

    Without a session the anon API key doubles as the bearer token, which is
    what the backend expects for unauthenticated requests.

    :param api_key: Project API key sent in the ``apikey`` header.
    :param session: Signed-in session, if any.
    :return: Dictionary of HTTP headers.
    """
    token = session.access_token if session is not None else api_key
    if session is None:
        _LOGGER.debug("Building headers without a session")
    return {
        "accept": "application/json",
        "apikey": api_key,
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Prefer": "return=representation",
    }
