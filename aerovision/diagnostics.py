"""
DiagnosticLog — bounded in-memory record of recoverable failures.

Transport, validation and subscriber failures are recorded here by the
connector and the state manager, so hosts can inspect what went wrong
without scraping log output.
"""
from __future__ import annotations

import collections
import dataclasses
import itertools
import logging
import time
from typing import Any, Callable

from .const import DEFAULT_MAX_DIAGNOSTIC_ENTRIES
from .models import iso_now
from .subscribers import SubscriberList

_LOGGER = logging.getLogger(__name__)

LEVEL_ERROR = "error"
LEVEL_WARNING = "warning"
LEVEL_INFO = "info"
LEVELS = (LEVEL_ERROR, LEVEL_WARNING, LEVEL_INFO)

RECENT_ENTRIES = 10
RATE_WINDOW = 60.0  # seconds


@dataclasses.dataclass(frozen=True)
class DiagnosticEntry:
    id: str
    timestamp: str
    level: str
    component: str
    message: str
    context: dict = dataclasses.field(default_factory=dict)
    created: float = dataclasses.field(default_factory=time.time, repr=False)


class DiagnosticLog:
    """Ring buffer of DiagnosticEntry objects with listener fan-out."""

    def __init__(self, max_entries: int = DEFAULT_MAX_DIAGNOSTIC_ENTRIES) -> None:
        self._entries: collections.deque[DiagnosticEntry] = collections.deque(maxlen=max_entries)
        self._listeners = SubscriberList()
        self._ids = itertools.count(1)

    def record(
        self,
        level: str,
        component: str,
        message: str,
        context: dict | None = None,
    ) -> str:
        """Append an entry, notify listeners and return the entry id."""
        if level not in LEVELS:
            level = LEVEL_ERROR
        entry = DiagnosticEntry(
            id=f"diag-{next(self._ids)}",
            timestamp=iso_now(),
            level=level,
            component=component,
            message=message,
            context=dict(context or {}),
        )
        self._entries.append(entry)
        self._listeners.notify(entry)
        return entry.id

    def error(self, component: str, message: str, **context: Any) -> str:
        return self.record(LEVEL_ERROR, component, message, context)

    def warning(self, component: str, message: str, **context: Any) -> str:
        return self.record(LEVEL_WARNING, component, message, context)

    def info(self, component: str, message: str, **context: Any) -> str:
        return self.record(LEVEL_INFO, component, message, context)

    def subscribe(self, listener: Callable[[DiagnosticEntry], Any]) -> Callable[[], None]:
        return self._listeners.add(listener)

    @property
    def entries(self) -> list[DiagnosticEntry]:
        return list(self._entries)

    def stats(self) -> dict:
        """
        Summarize the retained entries.

        Returns totals by level and component, the most recent entries
        (newest first) and the error rate per minute over the last minute.
        """
        by_level = collections.Counter(entry.level for entry in self._entries)
        by_component = collections.Counter(entry.component for entry in self._entries)
        cutoff = time.time() - RATE_WINDOW
        recent_errors = sum(
            1 for entry in self._entries
            if entry.level == LEVEL_ERROR and entry.created >= cutoff
        )
        return {
            "total": len(self._entries),
            "by_level": {level: by_level.get(level, 0) for level in LEVELS},
            "by_component": dict(by_component),
            "recent": list(reversed(self._entries))[:RECENT_ENTRIES],
            "error_rate": recent_errors * 60.0 / RATE_WINDOW,
        }

    def clear(self) -> None:
        self._entries.clear()
        _LOGGER.debug("Diagnostic log cleared")

    def __len__(self) -> int:
        return len(self._entries)
