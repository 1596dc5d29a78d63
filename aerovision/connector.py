"""
TelemetryConnector — keeps the detection backend connected to the StateManager.

Responsibilities:
- Own the aiohttp ClientSession used by both transports.
- Prefer the push transport (websocket) and fall back to the pull transport
  (HTTP polling) on failure:
    push failure → interim pull polling + backoff reconnect via ReconnectPolicy
    policy exhausted → pull only, until the next explicit connect()
- Decode push envelopes (system_update / track_update / alert / heartbeat)
  and queue canonical changes into the StateManager.
- Reference-count subscribers: connect on 0→1, disconnect on 1→0.
- Record every failure as state (last error, error count, diagnostics);
  nothing raises across connect() or subscribe().
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Mapping
from typing import Any, Callable, Coroutine

import aiohttp

from .api.poll import fetch_telemetry
from .api.stream import decode_frame, open_stream, send_ping
from .config import ConnectorOptions, connector_options
from .const import (
    MESSAGE_ALERT,
    MESSAGE_HEARTBEAT,
    MESSAGE_SYSTEM_UPDATE,
    MESSAGE_TRACK_UPDATE,
    SOURCE_PULL,
    SOURCE_PUSH,
    SOURCE_SYNTHETIC,
    STATUS_CONNECTED,
    STATUS_CONNECTING,
    STATUS_DISCONNECTED,
)
from .connector_utils import ReconnectPolicy, apply_alert, apply_track, unwrap_message
from .diagnostics import DiagnosticLog
from .errors import AeroVisionError, TransportError, ValidationError
from .requests import check_availability
from .snapshot import Snapshot, to_plain
from .state_manager import StateManager
from .transformer import TelemetryTransformer

_LOGGER = logging.getLogger(__name__)

COMPONENT = "connector"


class TelemetryConnector:
    """
    Connector between the detection backend and a StateManager.

    All methods must be called from the event loop the connector runs on.
    """

    def __init__(
        self,
        state_manager: StateManager,
        options: Mapping | ConnectorOptions | None = None,
        session: aiohttp.ClientSession | None = None,
        diagnostics: DiagnosticLog | None = None,
        transformer: TelemetryTransformer | None = None,
    ) -> None:
        self._options = connector_options(options)
        self.state_manager = state_manager
        self._diagnostics = diagnostics
        self._transformer = transformer or TelemetryTransformer(
            enable_logging=self._options.enable_logging,
            update_frequency=self._options.update_frequency,
        )

        # Session is created lazily so it binds to the running loop
        self._session = session
        self._owns_session = session is None

        self._status = STATUS_DISCONNECTED
        self._data_source = SOURCE_SYNTHETIC
        self._last_error: str | None = None
        self._error_count = 0
        self._last_heartbeat: float | None = None
        self._subscriber_count = 0

        self._policy = ReconnectPolicy(
            self._options.reconnect_delay, self._options.max_reconnect_attempts
        )
        # True between connect() and disconnect(); failures only trigger
        # fallback and reconnects while set
        self._active = False
        self._connecting = False
        self._push_disabled = False

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._lifecycle_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

        self._alert_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def options(self) -> ConnectorOptions:
        return self._options

    @property
    def connection_status(self) -> str:
        return self._status

    @property
    def data_source(self) -> str:
        return self._data_source

    @property
    def subscriber_count(self) -> int:
        return self._subscriber_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def last_heartbeat(self) -> float | None:
        """Wall-clock time of the last heartbeat envelope received."""
        return self._last_heartbeat

    @property
    def push_disabled(self) -> bool:
        return self._push_disabled

    def is_healthy(self) -> bool:
        return self._status == STATUS_CONNECTED and self._last_error is None

    def get_last_error(self) -> str | None:
        return self._last_error

    def _debug(self, message: str, *args) -> None:
        if self._options.enable_logging:
            _LOGGER.debug(message, *args)

    # ------------------------------------------------------------------
    # Task / session helpers
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel(self, name: str) -> None:
        """Cancel the task stored in attribute name unless it is the caller."""
        task = getattr(self, name)
        setattr(self, name, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _schedule_lifecycle(self, factory: Callable[[], Coroutine]) -> None:
        """Run connect/disconnect in the background, strictly one after another."""
        previous = self._lifecycle_task

        async def _run() -> None:
            if previous is not None:
                await asyncio.gather(previous, return_exceptions=True)
            await factory()

        self._lifecycle_task = self._spawn(_run())

    # ------------------------------------------------------------------
    # Status / error bookkeeping
    # ------------------------------------------------------------------

    def _set_status(self, status: str, data_source: str | None = None) -> None:
        data_source = data_source or self._data_source
        if status == self._status and data_source == self._data_source:
            return
        self._debug("Connection status %s/%s -> %s/%s", self._status, self._data_source, status, data_source)
        self._status = status
        self._data_source = data_source
        self.state_manager.update_state(
            {"metadata": {"connection_status": status, "data_source": data_source}}
        )

    def _record_error(self, exc: BaseException, level: str = "error") -> None:
        self._last_error = str(exc)
        self._error_count += 1
        transport = getattr(exc, "transport", None)
        if isinstance(exc, ValidationError):
            _LOGGER.warning("Discarding invalid telemetry: %s", exc)
        else:
            _LOGGER.warning("%s transport failure: %s", transport or "unknown", exc)
        if self._diagnostics is not None:
            self._diagnostics.record(
                level,
                COMPONENT,
                str(exc),
                {"transport": transport, "error_type": type(exc).__name__},
            )
        self.state_manager.update_state({"metadata": {"error_count": self._error_count}})

    def _mark_ingested(self) -> None:
        self._last_error = None

    # ------------------------------------------------------------------
    # Public lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        (Re)connect to the backend.

        Re-enables the push transport and resets the backoff policy.  A
        no-op while another connection attempt is in flight.
        """
        if self._connecting:
            self._debug("Connection attempt already in progress")
            return

        self._connecting = True
        try:
            await self._stop_transports()
            self._active = True
            self._push_disabled = False
            self._policy.reset()
            self._last_error = None
            self._set_status(STATUS_CONNECTING)

            if self._options.prefer_push:
                await self._connect_push()
            else:
                self._start_polling()
        finally:
            self._connecting = False

    async def disconnect(self) -> None:
        """Stop every transport and background task.  Idempotent."""
        self._active = False
        await self._stop_transports()
        self._policy.reset()
        self._set_status(STATUS_DISCONNECTED)

    async def _stop_transports(self) -> None:
        self._cancel("_reconnect_task")
        self._cancel("_poll_task")
        ws = self._teardown_push()
        if ws is not None and not ws.closed:
            await ws.close()

    def subscribe(self, callback: Callable[[Snapshot], Any]) -> Callable[[], None]:
        """
        Deliver every snapshot to callback, starting with the current one.

        The first subscriber starts the connection and the last unsubscribe
        stops it.  The returned unsubscribe function is idempotent.
        """
        unsubscribe_state = self.state_manager.subscribe(callback)
        self._subscriber_count += 1
        if self._subscriber_count == 1:
            self._schedule_lifecycle(self.connect)

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            unsubscribe_state()
            self._subscriber_count -= 1
            if self._subscriber_count == 0:
                self._schedule_lifecycle(self.disconnect)

        return unsubscribe

    async def refresh(self) -> Snapshot | None:
        """
        Fetch one record over the pull transport, outside the subscription flow.

        The snapshot is queued into the state manager and returned.  Returns
        None on any failure.
        """
        try:
            raw = await fetch_telemetry(
                self._get_session(),
                self._options.pull_url,
                timeout=self._options.timeout,
                max_attempts=self._options.request_attempts,
            )
        except AeroVisionError as exc:
            self._record_error(exc)
            return None
        return self._ingest_record(raw, SOURCE_PULL)

    def configure(self, options: Mapping | ConnectorOptions) -> ConnectorOptions:
        """
        Hot-update options.  Raises ConfigurationError and keeps the current
        options when any value is invalid.

        URL and transport preference changes apply on the next connection;
        polling frequency, retry limits, timeouts and logging apply right away.
        """
        new_options = connector_options(options, base=self._options)
        self._options = new_options
        self._transformer.enable_logging = new_options.enable_logging
        self._transformer.update_frequency = new_options.update_frequency
        self._policy.base_delay = new_options.reconnect_delay
        self._policy.max_attempts = new_options.max_reconnect_attempts
        self._debug("Connector options updated: %s", new_options)
        return new_options

    async def check_availability(self) -> bool:
        """Probe the pull endpoint without ingesting anything."""
        return await check_availability(
            self._get_session(), self._options.pull_url, self._options.timeout
        )

    async def async_shutdown(self) -> None:
        """Disconnect and release every resource owned by this connector."""
        await self.disconnect()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._lifecycle_task = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Push transport
    # ------------------------------------------------------------------

    async def _connect_push(self) -> bool:
        try:
            ws = await open_stream(self._get_session(), self._options.push_url, self._options.timeout)
        except TransportError as exc:
            self._handle_push_failure(exc)
            return False

        if not self._active:
            # disconnect() ran while the handshake was in flight
            await ws.close()
            return False

        self._ws = ws
        self._policy.reset()
        self._cancel("_poll_task")
        self._set_status(STATUS_CONNECTED, SOURCE_PUSH)
        self._reader_task = self._spawn(self._read_loop(ws))
        self._heartbeat_task = self._spawn(self._heartbeat_loop(ws))
        _LOGGER.info("Connected to push transport at %s", self._options.push_url)
        return True

    def _teardown_push(self) -> aiohttp.ClientWebSocketResponse | None:
        ws, self._ws = self._ws, None
        self._cancel("_reader_task")
        self._cancel("_heartbeat_task")
        return ws

    def _handle_push_failure(self, exc: TransportError) -> None:
        self._record_error(exc)
        ws = self._teardown_push()
        if ws is not None and not ws.closed:
            self._spawn(ws.close())
        if not self._active:
            return

        delay = self._policy.next_delay()
        if self._data_source != SOURCE_PULL:
            # push is gone; stay "connecting" until the first pull fetch lands
            self._set_status(STATUS_CONNECTING, SOURCE_PULL)
        self._start_polling()
        if delay is None:
            self._push_disabled = True
            _LOGGER.warning(
                "Push transport failed after %d reconnect attempts, staying on pull transport",
                self._policy.max_attempts,
            )
            return

        self._debug("Reconnecting push transport in %.3fs (attempt %d)", delay, self._policy.attempt)
        self._cancel("_reconnect_task")
        self._reconnect_task = self._spawn(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Clear before reconnecting; a failure schedules the next attempt
        self._reconnect_task = None
        if not self._active or self._push_disabled or self._ws is not None or self._connecting:
            return
        await self._connect_push()

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_frame(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise TransportError(f"Push transport error: {ws.exception()}", SOURCE_PUSH)
            raise TransportError(f"Push transport closed (code {ws.close_code})", SOURCE_PUSH)
        except TransportError as exc:
            if ws is self._ws:
                self._handle_push_failure(exc)

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self._options.heartbeat_interval)
            try:
                await send_ping(ws)
            except TransportError as exc:
                if ws is self._ws:
                    self._handle_push_failure(exc)
                return

    def _handle_frame(self, text: str) -> None:
        try:
            kind, payload = unwrap_message(decode_frame(text))
        except ValidationError as exc:
            self._record_error(exc, level="warning")
            return
        self._dispatch(kind, payload)

    def _dispatch(self, kind: str, payload: Any) -> None:
        if kind == MESSAGE_SYSTEM_UPDATE:
            self._ingest_record(payload, SOURCE_PUSH)

        elif kind == MESSAGE_TRACK_UPDATE:
            converted = self._transformer.transform_track_update(payload)
            if converted is None:
                self._record_error(ValidationError("track update without numeric id", "data.id"), level="warning")
                return
            snapshot = apply_track(self.state_manager.get_projected_state(), *converted)
            self._queue_sections(snapshot, "intruders", "threat_intelligence", "alerts")
            self._mark_ingested()

        elif kind == MESSAGE_ALERT:
            if not isinstance(payload, Mapping):
                self._record_error(ValidationError("alert payload must be a mapping", "data"), level="warning")
                return
            alert = dict(payload)
            if not alert.get("id"):
                alert["id"] = f"push-alert-{next(self._alert_ids)}"
            item = self._transformer.transform_alert_update(alert)
            snapshot = apply_alert(
                self.state_manager.get_projected_state(),
                item,
                self.state_manager.options.max_alert_history,
            )
            self._queue_sections(snapshot, "alerts")
            self._mark_ingested()

        elif kind == MESSAGE_HEARTBEAT:
            self._last_heartbeat = time.time()
            self._debug("Heartbeat received")
            self._mark_ingested()

    def _queue_sections(self, snapshot: Snapshot, *sections: str) -> None:
        self.state_manager.update_state(
            {section: to_plain(getattr(snapshot, section)) for section in sections}
        )

    def _ingest_record(self, raw: Any, data_source: str) -> Snapshot | None:
        result = self._transformer.validate(raw)
        if not result:
            self._record_error(ValidationError(result.reason or "invalid", result.field), level="warning")
            return None
        snapshot = self._transformer.transform(
            raw,
            connection_status=self._status,
            data_source=data_source,
            error_count=self._error_count,
        )
        self.state_manager.update_state(snapshot)
        self._mark_ingested()
        return snapshot

    # ------------------------------------------------------------------
    # Pull transport
    # ------------------------------------------------------------------

    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._debug("Starting pull transport at %.2f Hz", self._options.update_frequency)
        self._poll_task = self._spawn(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await self._poll_once()
            await asyncio.sleep(self._options.poll_interval)

    async def _poll_once(self) -> Snapshot | None:
        try:
            raw = await fetch_telemetry(
                self._get_session(),
                self._options.pull_url,
                timeout=self._options.timeout,
                max_attempts=self._options.request_attempts,
            )
        except AeroVisionError as exc:
            self._record_error(exc)
            return None

        if self._active and self._ws is None:
            self._set_status(STATUS_CONNECTED, SOURCE_PULL)
        return self._ingest_record(raw, SOURCE_PULL)
