"""
Low-level push transport helpers (websocket).

Responsible for:
- Opening the websocket within a bounded time
- Decoding inbound text frames
- Building and sending heartbeat messages
"""
import asyncio
import json
import logging
from typing import Any

import aiohttp

from aerovision.const import DEFAULT_TIMEOUT, MESSAGE_PING
from aerovision.errors import TransportError, ValidationError
from aerovision.models import iso_now

_LOGGER = logging.getLogger(__name__)

TRANSPORT = "push"


async def open_stream(
    session: aiohttp.ClientSession,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> aiohttp.ClientWebSocketResponse:
    """
    Open the push websocket.

    A connection that does not open within timeout seconds is abandoned.
    Raises TransportError on any failure.
    """
    try:
        return await asyncio.wait_for(session.ws_connect(url), timeout)
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise TransportError(f"Timed out opening {url} after {timeout}s", TRANSPORT) from e
    except aiohttp.ClientError as e:
        raise TransportError(f"Failed to open {url}: {e}", TRANSPORT) from e


def decode_frame(text: str) -> Any:
    """Parse one text frame as JSON; raises ValidationError when it is not JSON."""
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"frame is not valid JSON: {e}") from e


def ping_message() -> dict:
    return {"type": MESSAGE_PING, "timestamp": iso_now()}


async def send_ping(ws: aiohttp.ClientWebSocketResponse) -> None:
    """Send a heartbeat message; raises TransportError when the send fails."""
    if ws.closed:
        raise TransportError("Cannot send heartbeat on a closed connection", TRANSPORT)
    try:
        await ws.send_json(ping_message())
    except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
        raise TransportError(f"Heartbeat send failed: {e}", TRANSPORT) from e
