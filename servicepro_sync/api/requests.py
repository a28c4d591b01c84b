"""
Low-level HTTP request library for the ServicePro REST backend.
This module handles all HTTP requests with automatic retry logic and proper error handling.
"""
import asyncio
import logging
import aiohttp

from servicepro_sync.const import REQUEST_ATTEMPTS, REQUEST_TIMEOUT


_LOGGER = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
# Methods that may be re-sent after a timeout without creating duplicates
IDEMPOTENT_METHODS = ("GET", "PUT", "PATCH", "DELETE")
SUCCESS_STATUSES = (200, 201)
NO_CONTENT_STATUSES = (202, 204)


class ApiResponseError(Exception):
    """Exception raised when the backend returns an error response."""
    def __init__(self, error_json: dict, status: int = 0):
        self.error_json = error_json
        self.status = status
        super().__init__(f"API Error ({status}): {error_json}")

    @property
    def code(self):
        """PostgREST error code (e.g. PGRST116), when the backend sent one."""
        if isinstance(self.error_json, dict):
            return self.error_json.get("code")
        return None


async def check_availability(base_url: str, timeout: int = 15) -> bool:
    """
    Check if the backend is reachable by sending a HEAD request.

    Args:
        base_url: Root URL of the backend
        timeout: Timeout in seconds for the HEAD request

    Returns:
        True if the backend answered below HTTP 500, False otherwise
    """
    try:
        timeout_config = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=timeout_config) as session:
            async with session.head(base_url) as response:
                if response.status >= 500:
                    _LOGGER.warning("Backend is not reachable (status %s)", response.status)
                    return False
                return True

    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while checking backend availability")
        return False
    except aiohttp.ClientError as e:
        _LOGGER.warning("Error while checking backend availability: %s", e)
        return False


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload=None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS,
    idempotent: bool | None = None,
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET, POST, PUT, PATCH, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PUT/PATCH requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of retry attempts
        idempotent: Whether a timed-out request may be re-sent. Defaults to True
            for every method except POST; a POST is only retried when the caller
            makes it idempotent, e.g. an upsert keyed on a client-generated id

    Returns:
        Parsed JSON response, or None for responses without a body

    Raises:
        asyncio.TimeoutError: If all retry attempts timeout
        ApiResponseError: If the backend returns a JSON error body
        ValueError: If response has unexpected content type or method is unsupported
    """
    method = method.upper()
    if method not in SUPPORTED_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method}")
    if idempotent is None:
        idempotent = method in IDEMPOTENT_METHODS
    if not idempotent:
        max_attempts = 1

    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                _LOGGER.debug("Timeout on %s %s (attempt %s), retrying", method, url, attempt + 1)
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise

    return None


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response, or None for empty successful responses

    Raises:
        ValueError: If response has unexpected content type
        ApiResponseError: For JSON error responses
    """
    content_type = response.headers.get('Content-Type', '')

    if response.status in NO_CONTENT_STATUSES:
        return None

    # Handle successful response
    if response.status in SUCCESS_STATUSES:
        if 'application/json' in content_type:
            return await response.json()
        text = await response.text()
        if not text:
            return None
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    # Handle error responses
    if 'application/json' in content_type:
        try:
            error_json = await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s)",
                url, e, response.status
            )
            raise
        raise ApiResponseError(error_json, response.status)

    # Non-JSON error response (e.g., HTML error page from a proxy)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise ValueError(
        f"HTTP {response.status} with {content_type} "
        f"(expected application/json) from {url}"
    )
