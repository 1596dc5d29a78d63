"""
Observer list with per-callback exception isolation.

Used by the state manager (snapshot fan-out) and the diagnostic log
(entry listeners).  A raising callback is logged and reported, and never
stops delivery to the callbacks after it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from .errors import SubscriberError

_LOGGER = logging.getLogger(__name__)


class SubscriberList:
    """Ordered set of callbacks notified with one value at a time."""

    def __init__(self, on_error: Callable[[SubscriberError], None] | None = None) -> None:
        self._callbacks: list[Callable[[Any], Any]] = []
        self._on_error = on_error

    def add(self, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Register callback and return an idempotent remove function."""
        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove

    def notify(self, value: Any) -> int:
        """
        Call every registered callback with value.

        Iterates over a copy, so callbacks may unsubscribe while being
        notified.  Returns the number of callbacks that raised.
        """
        failures = 0
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception as exc:  # noqa: BLE001
                failures += 1
                _LOGGER.exception("Subscriber callback %r raised", callback)
                if self._on_error is not None:
                    self._on_error(SubscriberError(callback, exc))
        return failures

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

    def __contains__(self, callback) -> bool:
        return callback in self._callbacks
