"""
Generic row updates against the ServicePro REST backend.

Responsible for:
- PATCHing a single row by id
- Producing the remote update callable consumed by OptimisticCoordinator
"""
import logging

from servicepro_sync.const import REST_PATH
from servicepro_sync.api.requests import make_request, ApiResponseError

_LOGGER = logging.getLogger(__name__)


def table_url(base_url: str, table: str) -> str:
    return base_url.rstrip("/") + REST_PATH + table


async def update_record(base_url: str, table: str, record_id, fields: dict, headers: dict) -> dict:
    """
    Update the row `record_id` of `table` with `fields` and return the stored row.

    An update that matches no row (unknown id, or hidden by row-level
    security) is reported as an ApiResponseError so the caller rolls back.

    Corresponding CURL command:
    curl -X 'PATCH' \
      '<base_url>/rest/v1/<table>?id=eq.<record_id>' \
      -H 'Prefer: return=representation' \
      -d '{"status": "done"}'
    """
    url = table_url(base_url, table)
    params = {"id": f"eq.{record_id}"}
    rows = await make_request("PATCH", url, headers, payload=fields, params=params)

    if not rows:
        _LOGGER.warning("Update of %s/%s matched no rows", table, record_id)
        raise ApiResponseError(
            {"code": "PGRST116", "message": f"No {table} row with id {record_id}"}, 404
        )

    _LOGGER.debug("Updated %s/%s: %s", table, record_id, sorted(fields))
    return rows[0]


def make_update_function(base_url: str, table: str, headers: dict):
    """Bind update_record to one table, matching the coordinator's (id, fields) signature."""
    async def _update(record_id, fields: dict) -> None:
        await update_record(base_url, table, record_id, fields, headers)

    return _update
