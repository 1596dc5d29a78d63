"""
Low-level telemetry fetching over the pull transport.

Responsible for:
- Requesting the latest telemetry record from the backend data endpoint
- Unwrapping and validating the {success, data, error} response envelope
"""
import logging

import aiohttp

from aerovision.const import DEFAULT_REQUEST_ATTEMPTS, DEFAULT_TIMEOUT
from aerovision.errors import ApiResponseError, ValidationError
from aerovision.requests import get_json
from aerovision.schema import validate_api_response

_LOGGER = logging.getLogger(__name__)

HEADERS = {"accept": "application/json"}


async def fetch_telemetry(
    session: aiohttp.ClientSession,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_attempts: int = DEFAULT_REQUEST_ATTEMPTS,
) -> dict:
    """
    Fetch one raw telemetry record.

    Returns the unwrapped data record.  Raises TransportError on network
    failure, ApiResponseError when the backend reports success=false, and
    ValidationError when the envelope or record is malformed.

    Corresponding CURL command:
    curl -X 'GET' '<pull_url>' -H 'accept: application/json'
    """
    raw_json = await get_json(
        session, url, headers=HEADERS, timeout=timeout, max_attempts=max_attempts
    )

    result = validate_api_response(raw_json)
    if not result:
        if result.field == "success" and isinstance(raw_json, dict) and raw_json.get("success") is False:
            _LOGGER.warning("Backend reported an error: %s", raw_json.get("error"))
            raise ApiResponseError(raw_json)
        _LOGGER.warning("Unexpected response format from %s: %s (%s)", url, result.reason, result.field)
        raise ValidationError(result.reason, result.field)

    return raw_json["data"]
