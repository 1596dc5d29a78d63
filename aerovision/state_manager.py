"""
StateManager — single owner of the canonical snapshot.

Responsibilities:
- Accept partial updates from any producer and deep-merge them into a
  pending buffer.
- Debounce: one flush timer, reset on every update, coalesces bursts into a
  single snapshot (optionally bounded by max_batch_wait).
- Flush: merge, prune orphaned threat intelligence, stamp, archive the
  previous snapshot, and fan the new one out to every subscriber.
- Periodic cleanup keeps every internal collection bounded.

All timers run on the asyncio event loop; there is no locking.
"""
from __future__ import annotations

import asyncio
import collections
import copy
import dataclasses
import json
import logging
import time
from collections.abc import Mapping
from typing import Any, Callable

from .config import StateManagerOptions, state_manager_options
from .diagnostics import DiagnosticLog
from .errors import SubscriberError
from .models import iso_now
from .snapshot import (
    Snapshot,
    deep_merge,
    default_snapshot,
    prune_threat_intelligence,
    snapshot_from_dict,
    snapshot_to_dict,
)
from .subscribers import SubscriberList
from .transformer import rederive_alerts

_LOGGER = logging.getLogger(__name__)

COMPONENT = "state_manager"


class StateManager:
    """
    Batches partial telemetry updates into consistent snapshots.

    Subscribers receive a deep copy of every flushed snapshot; one copy is
    shared by all subscribers of the same flush.
    """

    def __init__(
        self,
        options: Mapping | StateManagerOptions | None = None,
        diagnostics: DiagnosticLog | None = None,
    ) -> None:
        self._options = state_manager_options(options)
        self._diagnostics = diagnostics

        self._state: Snapshot = default_snapshot()
        self._pending: dict = {}
        self._pending_count = 0
        # monotonic time of the oldest update in the pending buffer
        self._pending_since: float | None = None

        self._history: collections.deque[Snapshot] = collections.deque(
            maxlen=self._options.max_history_size
        )
        # (monotonic time, top-level keys) per accepted update
        self._updates: collections.deque[tuple[float, tuple]] = collections.deque(
            maxlen=self._options.max_update_queue_size
        )
        self._latencies: collections.deque[float] = collections.deque(
            maxlen=self._options.max_update_queue_size
        )
        self._flush_count = 0

        self._subscribers = SubscriberList(on_error=self._on_subscriber_error)

        self._flush_handle: asyncio.TimerHandle | None = None
        self._cleanup_handle: asyncio.TimerHandle | None = None
        self._ensure_cleanup_timer()

    @property
    def options(self) -> StateManagerOptions:
        return self._options

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def _debug(self, message: str, *args) -> None:
        if self._options.enable_logging:
            _LOGGER.debug(message, *args)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_state(self) -> Snapshot:
        """Return a deep copy of the current snapshot."""
        return copy.deepcopy(self._state)

    def get_state_history(self, count: int | None = None) -> list[Snapshot]:
        """Return deep copies of the last count snapshots, oldest first."""
        history = list(self._history)
        if count is not None:
            history = history[-count:] if count > 0 else []
        return copy.deepcopy(history)

    def get_projected_state(self) -> Snapshot:
        """
        Return the snapshot the next flush would produce.

        Used by producers that apply incremental changes, so they build on
        updates that are still pending.
        """
        if not self._pending:
            return self.get_current_state()
        return snapshot_from_dict(deep_merge(snapshot_to_dict(self._state), self._pending))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_state(self, partial: Mapping | Snapshot | None) -> None:
        """
        Queue a partial update for the next flush.

        partial is shaped like snapshot_to_dict() output; nested mappings
        merge recursively and lists replace.  Anything that is not a mapping
        (or Snapshot) is logged and dropped.
        """
        if isinstance(partial, Snapshot):
            partial = snapshot_to_dict(partial)
        if not isinstance(partial, Mapping):
            _LOGGER.warning("Ignoring state update of type %s", type(partial).__name__)
            return
        if not partial:
            return

        now = time.monotonic()
        self._pending = deep_merge(self._pending, partial)
        self._pending_count += 1
        if self._pending_since is None:
            self._pending_since = now
        self._updates.append((now, tuple(partial)))
        self._schedule_flush(now)

    def update_system_status(self, status: Mapping) -> None:
        self.update_state({"system_status": status})

    def update_intruders(self, intruders: list) -> None:
        self.update_state({"intruders": list(intruders)})

    def update_threat_intelligence(self, track_id: str, data: Mapping) -> None:
        self.update_state({"threat_intelligence": {track_id: data}})

    def update_alerts(self, alerts: Mapping) -> None:
        self.update_state({"alerts": alerts})

    def update_video_status(self, status: Mapping) -> None:
        self.update_state({"video_status": status})

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def _schedule_flush(self, now: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop to debounce on: apply right away.
            self._flush()
            return

        self._ensure_cleanup_timer()
        if self._flush_handle is not None:
            self._flush_handle.cancel()

        delay = self._options.batch_update_delay
        if self._options.max_batch_wait is not None and self._pending_since is not None:
            remaining = self._options.max_batch_wait - (now - self._pending_since)
            delay = max(0.0, min(delay, remaining))
        self._flush_handle = loop.call_later(delay, self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        if not self._pending:
            return

        pending, self._pending = self._pending, {}
        merged_count, self._pending_count = self._pending_count, 0
        started, self._pending_since = self._pending_since, None

        try:
            merged = deep_merge(snapshot_to_dict(self._state), pending)
            prune_threat_intelligence(merged)
            metadata = merged.get("metadata")
            if not isinstance(metadata, dict):
                metadata = merged["metadata"] = {}
            metadata["last_updated"] = iso_now()
            new_state = snapshot_from_dict(merged)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Failed to apply %d pending state updates: %s", merged_count, exc)
            if self._diagnostics is not None:
                self._diagnostics.error(COMPONENT, f"Flush failed: {exc}", updates=merged_count)
            return

        self._history.append(self._state)
        self._state = new_state
        self._flush_count += 1
        if started is not None:
            self._latencies.append(time.monotonic() - started)

        self._debug("Flushed %d updates into snapshot #%d", merged_count, self._flush_count)
        self._subscribers.notify(copy.deepcopy(new_state))

    async def flush(self) -> None:
        """Apply pending updates immediately instead of waiting for the timer."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
        self._flush()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[Snapshot], Any]) -> Callable[[], None]:
        """
        Register callback for every flushed snapshot.

        The callback is called right away with the current state.  Returns an
        idempotent unsubscribe function.
        """
        remove = self._subscribers.add(callback)
        self._ensure_cleanup_timer()
        try:
            callback(self.get_current_state())
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Subscriber callback %r raised on initial state", callback)
            self._on_subscriber_error(SubscriberError(callback, exc))
        return remove

    def _on_subscriber_error(self, error: SubscriberError) -> None:
        if self._diagnostics is not None:
            self._diagnostics.error(COMPONENT, str(error))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _ensure_cleanup_timer(self) -> None:
        if self._cleanup_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cleanup_handle = loop.call_later(
            self._options.memory_cleanup_interval, self._cleanup_tick
        )

    def _cleanup_tick(self) -> None:
        self._cleanup_handle = None
        try:
            self.perform_cleanup()
        finally:
            self._ensure_cleanup_timer()

    def perform_cleanup(self) -> None:
        """
        Trim every internal collection to its configured bound.

        Drops update records older than update_window, orphaned threat
        intelligence, and all but the newest max_alert_history alerts.
        Subscribers are not notified.
        """
        cutoff = time.monotonic() - self._options.update_window
        while self._updates and self._updates[0][0] < cutoff:
            self._updates.popleft()

        state = snapshot_to_dict(self._state)
        removed = prune_threat_intelligence(state)
        alerts = state["alerts"]["recent_alerts"]
        trimmed = len(alerts) - self._options.max_alert_history
        if trimmed > 0:
            # recent_alerts is ordered newest first
            state["alerts"]["recent_alerts"] = alerts[:self._options.max_alert_history]
        if removed or trimmed > 0:
            snapshot = snapshot_from_dict(state)
            if trimmed > 0:
                snapshot = dataclasses.replace(
                    snapshot, alerts=rederive_alerts(snapshot.alerts, snapshot.intruders)
                )
            self._state = snapshot

        while len(self._history) > self._options.max_history_size:
            self._history.popleft()
        self._debug(
            "Cleanup: %d orphaned intel entries, %d alerts trimmed, %d updates tracked",
            len(removed), max(trimmed, 0), len(self._updates),
        )

    def get_performance_metrics(self) -> dict:
        """Return counters describing the manager's load and memory use."""
        now = time.monotonic()
        window = self._options.update_window
        recent_updates = sum(1 for at, _ in self._updates if now - at <= window)
        retained = [snapshot_to_dict(self._state)] + [snapshot_to_dict(s) for s in self._history]
        latencies = list(self._latencies)
        return {
            "subscriber_count": len(self._subscribers),
            "history_size": len(self._history),
            "pending_updates": self._pending_count,
            "update_queue_size": len(self._updates),
            "updates_per_second": recent_updates / window,
            "memory_usage": len(json.dumps(retained, default=str)),
            "average_latency": sum(latencies) / len(latencies) if latencies else 0.0,
            "flush_count": self._flush_count,
        }

    def reset(self) -> None:
        """Drop all state and history and notify subscribers of the default snapshot."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._state = default_snapshot()
        self._pending = {}
        self._pending_count = 0
        self._pending_since = None
        self._history.clear()
        self._updates.clear()
        self._latencies.clear()
        _LOGGER.debug("State manager reset")
        self._subscribers.notify(copy.deepcopy(self._state))

    def cleanup(self) -> None:
        """Cancel all timers and release every internal collection."""
        for handle in (self._flush_handle, self._cleanup_handle):
            if handle is not None:
                handle.cancel()
        self._flush_handle = None
        self._cleanup_handle = None
        self._pending = {}
        self._pending_count = 0
        self._pending_since = None
        self._history.clear()
        self._updates.clear()
        self._latencies.clear()
        self._subscribers.clear()
        _LOGGER.debug("State manager cleaned up")
