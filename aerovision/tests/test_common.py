"""
Shared helpers and factory functions for AeroVision tests.
Import from this module in each test file to avoid duplication.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from aerovision.connector import TelemetryConnector
from aerovision.diagnostics import DiagnosticLog
from aerovision.state_manager import StateManager


def make_track(track_id: int = 1, **kwargs) -> dict:
    defaults = dict(
        id=track_id,
        zone="BUFFER",
        threat_score=45,
        threat_level="MEDIUM",
        detection_time=12.5,
        behavior={
            "loitering": {"active": True, "duration": 8.0},
            "speed_anomaly": False,
            "trajectory_confidence": 0.82,
            "trajectory_stability": "moderate",
        },
        prediction={
            "near": {"zone": "BUFFER", "confidence": 0.9, "description": "Approaching fence line"},
            "medium": {"zone": "RESTRICTED", "confidence": 0.6},
            "far": {"zone": "RESTRICTED", "confidence": 0.4},
            "will_enter_restricted": True,
            "overall_confidence": 0.65,
        },
        explanation=[
            {"factor": "Zone proximity", "points": 25},
            {"factor": "Loitering", "points": 20},
        ],
    )
    defaults.update(kwargs)
    return defaults


def make_alert(alert_id: str | None = "a-1", level: str = "WARNING", **kwargs) -> dict:
    defaults = dict(time="12:00:00", message=f"{level.title()} alert", level=level)
    if alert_id is not None:
        defaults["id"] = alert_id
    defaults.update(kwargs)
    return defaults


def make_system(**kwargs) -> dict:
    defaults = dict(
        power_mode="ACTIVE",
        power_w=12.5,
        battery_minutes=240,
        fps=29.7,
        camera_status="CONNECTED",
        processing_status="Tracking",
        timestamp="12:00:00",
    )
    defaults.update(kwargs)
    return defaults


def make_record(tracks: list | None = None, alerts: list | None = None, **kwargs) -> dict:
    defaults = dict(
        system=make_system(),
        tracks=[make_track(1)] if tracks is None else tracks,
        alerts=[] if alerts is None else alerts,
        timestamp="2026-01-01T12:00:00+00:00",
    )
    defaults.update(kwargs)
    return defaults


def make_envelope(kind: str, data=None, timestamp: str = "2026-01-01T12:00:00+00:00") -> dict:
    envelope = {"type": kind, "timestamp": timestamp}
    if data is not None:
        envelope["data"] = data
    return envelope


def make_state_manager(**option_kwargs) -> StateManager:
    options = dict(batch_update_delay=0.01, memory_cleanup_interval=60.0)
    options.update(option_kwargs)
    return StateManager(options)


def make_connector(
    state_manager: StateManager | None = None,
    diagnostics: DiagnosticLog | None = None,
    **option_kwargs,
) -> TelemetryConnector:
    """
    Return a connector with fast timings and a mocked session.

    Tests patch open_stream / fetch_telemetry in aerovision.connector, so the
    session itself is never used for I/O.
    """
    options = dict(
        reconnect_delay=0.001,
        max_reconnect_attempts=2,
        timeout=0.5,
        heartbeat_interval=0.05,
        update_frequency=50.0,
        enable_logging=True,
    )
    options.update(option_kwargs)
    session = MagicMock(spec=aiohttp.ClientSession)
    session.closed = False
    return TelemetryConnector(
        state_manager or make_state_manager(), options, session=session, diagnostics=diagnostics
    )


class FakeWebSocket:
    """
    Minimal stand-in for aiohttp.ClientWebSocketResponse.

    Frames pushed with feed()/feed_json() are yielded by async iteration;
    close() (or finish()) ends the iteration.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code = None
        self.sent: list = []
        self.send_json = AsyncMock(side_effect=self._record_send)

    async def _record_send(self, data) -> None:
        self.sent.append(data)

    def feed(self, text: str) -> None:
        message = MagicMock()
        message.type = aiohttp.WSMsgType.TEXT
        message.data = text
        self._queue.put_nowait(message)

    def feed_json(self, data) -> None:
        self.feed(json.dumps(data))

    def finish(self, code: int = 1006) -> None:
        """Simulate the server dropping the connection."""
        self.close_code = code
        self._queue.put_nowait(None)

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self.close_code = self.close_code or 1000
            self._queue.put_nowait(None)
        return True

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._queue.get()
        if message is None:
            self.closed = True
            raise StopAsyncIteration
        return message
