"""
Check-in / check-out delivery to the ServicePro REST backend.

Responsible for:
- Finding or creating the job visit a timesheet entry belongs to
- Inserting the timesheet entry with its coordinates
- Producing the delivery callable consumed by LocationQueue
"""
from __future__ import annotations

import logging

from servicepro_sync.const import EVENT_CHECK_IN, TABLE_JOB_VISITS, TABLE_TIMESHEETS
from servicepro_sync.models import LocationFix, location_entry_id, to_iso, utcnow
from servicepro_sync.api.auth import SessionContext
from servicepro_sync.api.records import table_url
from servicepro_sync.api.requests import make_request

_LOGGER = logging.getLogger(__name__)


async def get_or_create_visit(
    base_url: str,
    headers: dict,
    session: SessionContext,
    job_id: str,
    event: str,
    timestamp: str,
) -> str:
    """
    Return the id of the job's visit row, creating one if the job has none yet.

    Corresponding CURL commands:
    curl '<base_url>/rest/v1/job_visits?job_id=eq.<job_id>&select=id&limit=1'
    curl -X 'POST' '<base_url>/rest/v1/job_visits' \
      -d '{"job_id": "<job_id>", "technician_id": "<user_id>", "started_at": "<ts>"}'
    """
    url = table_url(base_url, TABLE_JOB_VISITS)
    params = {"job_id": f"eq.{job_id}", "select": "id", "limit": "1"}
    visits = await make_request("GET", url, headers, params=params)
    if visits:
        return visits[0]["id"]

    payload = {
        "job_id": job_id,
        "technician_id": session.user_id,
        "started_at": timestamp if event == EVENT_CHECK_IN else None,
        "created_at": to_iso(utcnow()),
    }
    created = await make_request("POST", url, headers, payload=payload)
    if not created:
        raise ValueError(f"Backend returned no row when creating a visit for job {job_id}")
    _LOGGER.debug("Created visit %s for job %s", created[0]["id"], job_id)
    return created[0]["id"]


async def deliver_check_event(
    base_url: str,
    headers: dict,
    session: SessionContext,
    job_id: str,
    event: str,
    location: LocationFix,
) -> dict | None:
    """
    Record one check-in or check-out as a timesheet entry.

    The row id is derived from the event itself and the insert ignores an
    existing row with that id, so delivering the same event again (after a
    timeout, or a lost delivery mark) never creates a second timesheet row.

    Returns the inserted timesheet row, or None when it already existed.
    Errors propagate unchanged so the caller can keep the event queued.

    Corresponding CURL command:
    curl -X 'POST' '<base_url>/rest/v1/timesheets?on_conflict=id' \
      -H 'Prefer: resolution=ignore-duplicates,return=representation' \
      -d '{"id": "<event uuid>", "job_visit_id": "<visit>", "event": "check_in", ...}'
    """
    timestamp = to_iso(location.timestamp)
    visit_id = await get_or_create_visit(base_url, headers, session, job_id, event, timestamp)

    payload = {
        "id": location_entry_id(job_id, event, location),
        "job_visit_id": visit_id,
        "event": event,
        "ts": timestamp,
        "lat": location.latitude,
        "lng": location.longitude,
        "created_by": session.user_id,
    }
    upsert_headers = dict(headers, Prefer="resolution=ignore-duplicates,return=representation")
    rows = await make_request(
        "POST", table_url(base_url, TABLE_TIMESHEETS), upsert_headers,
        payload=payload, params={"on_conflict": "id"}, idempotent=True,
    )
    _LOGGER.debug("Timesheet %s recorded for job %s (visit %s)", event, job_id, visit_id)
    return rows[0] if rows else None


def make_delivery_function(base_url: str, headers: dict, session: SessionContext):
    """Bind deliver_check_event to one backend and session for LocationQueue."""
    async def _deliver(job_id: str, event: str, location: LocationFix) -> None:
        await deliver_check_event(base_url, headers, session, job_id, event, location)

    return _deliver
