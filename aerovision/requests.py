"""
Low-level HTTP request library for the pull transport.
This module handles HTTP requests with retry-on-timeout and maps every failure onto TransportError.
"""
import asyncio
import logging

import aiohttp

from .const import DEFAULT_REQUEST_ATTEMPTS, DEFAULT_TIMEOUT
from .errors import ApiResponseError, TransportError


_LOGGER = logging.getLogger(__name__)

TRANSPORT = "pull"


async def check_availability(session: aiohttp.ClientSession, url: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """
    Check if the backend is reachable by sending a HEAD request.

    Args:
        session: Shared aiohttp session
        url: URL to probe
        timeout: Timeout in seconds for the HEAD request

    Returns:
        True if the backend answered with a status below 500, False otherwise
    """
    try:
        async with session.head(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            if response.status >= 500:
                _LOGGER.warning("Backend is not reachable (status %s)", response.status)
                return False
            return True

    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while checking backend availability at %s", url)
        return False
    except aiohttp.ClientError as e:
        _LOGGER.warning("Error while checking backend availability: %s", e)
        return False


async def get_json(
    session: aiohttp.ClientSession,
    url: str,
    headers: dict = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_attempts: int = DEFAULT_REQUEST_ATTEMPTS,
):
    """
    GET a JSON document with automatic retry on timeout.

    Args:
        session: Shared aiohttp session
        url: Target URL for the request
        headers: HTTP headers dictionary (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of attempts

    Returns:
        Parsed JSON response

    Raises:
        TransportError: On timeout after all attempts, network errors and non-JSON responses
        ApiResponseError: If the server answered with a JSON error body
    """
    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with session.get(url, headers=headers, timeout=timeout_config) as response:
                return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError) as e:
            if attempt < max_attempts - 1:
                continue
            _LOGGER.warning("Timeout on GET %s after %s attempts", url, max_attempts)
            raise TransportError(f"Timeout on GET {url} after {max_attempts} attempts", TRANSPORT) from e

        except aiohttp.ClientError as e:
            # Network errors are not retried
            raise TransportError(f"GET {url} failed: {e}", TRANSPORT) from e

    raise TransportError(f"No attempts made for GET {url}", TRANSPORT)


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response

    Raises:
        TransportError: If response has unexpected content type or status
        ApiResponseError: For JSON error responses
    """
    content_type = response.headers.get('Content-Type', '')

    # Handle successful response
    if response.status == 200:
        if 'application/json' in content_type:
            try:
                return await response.json()
            except ValueError as e:
                raise TransportError(f"Invalid JSON from {url}: {e}", TRANSPORT) from e
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        text = await response.text()
        raise TransportError(f"Expected JSON but got {content_type}: {text[:200]}", TRANSPORT)

    # Handle error responses
    if 'application/json' in content_type:
        try:
            error_json = await response.json()
        except ValueError as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s, content-type: %s)",
                url, e, response.status, content_type
            )
            raise TransportError(f"HTTP {response.status} from {url}", TRANSPORT) from e
        if isinstance(error_json, dict) and error_json.get("error"):
            raise ApiResponseError(error_json)
        raise TransportError(f"HTTP {response.status} from {url}", TRANSPORT)

    # Non-JSON error response (e.g., HTML error page)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise TransportError(
        f"HTTP {response.status} with {content_type} "
        f"(expected application/json) from {url}",
        TRANSPORT,
    )
