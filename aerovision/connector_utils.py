"""
Low-level utility functions for the telemetry connector.

Responsibilities:
- ReconnectPolicy: the exponential backoff state machine for the push transport.
- Unwrap push messages into (type, payload) pairs.
- Produce immutable copies of a Snapshot with one track or alert applied.

No transport imports: these are pure data primitives.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

from .const import MESSAGE_SYSTEM_UPDATE
from .errors import ValidationError
from .models import AlertItem, Intruder, ThreatIntelligence
from .schema import validate_envelope, validate_telemetry
from .snapshot import Snapshot
from .transformer import rederive_alerts

_LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass
class ReconnectPolicy:
    """
    Exponential backoff: delay = base_delay * 2 ** attempt.

    next_delay() hands out one delay per retry until max_attempts retries
    have been used, then returns None (exhausted) until reset().
    """

    base_delay: float
    max_attempts: int
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> float | None:
        if self.exhausted:
            return None
        delay = self.base_delay * (2 ** self.attempt)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


def unwrap_message(message: Any) -> tuple[str, Any]:
    """
    Split a decoded push message into (type, payload).

    Enveloped messages must pass the envelope schema.  A bare telemetry
    record is accepted as a system update.  Raises ValidationError otherwise.
    """
    if isinstance(message, Mapping) and "type" in message:
        validate_envelope(message).raise_for_error()
        return message["type"], message.get("data")
    if validate_telemetry(message):
        return MESSAGE_SYSTEM_UPDATE, message
    raise ValidationError("unrecognized message", "type")


def apply_track(snapshot: Snapshot, intruder: Intruder, intel: ThreatIntelligence) -> Snapshot:
    """
    Return a copy of snapshot with intruder replaced (matched by track id) or
    appended, its threat intelligence set, and the alert level recomputed.
    """
    intruders = list(snapshot.intruders)
    for index, existing in enumerate(intruders):
        if existing.track_id == intruder.track_id:
            intruders[index] = intruder
            break
    else:
        intruders.append(intruder)

    threat_intelligence = dict(snapshot.threat_intelligence)
    threat_intelligence[intruder.track_id] = intel
    return dataclasses.replace(
        snapshot,
        intruders=intruders,
        threat_intelligence=threat_intelligence,
        alerts=rederive_alerts(snapshot.alerts, intruders),
    )


def apply_alert(snapshot: Snapshot, alert: AlertItem, max_alerts: int) -> Snapshot:
    """
    Return a copy of snapshot with alert prepended to recent_alerts (newest
    first, at most max_alerts, replacing an older alert with the same id) and
    the alert level recomputed.
    """
    recent = [alert] + [item for item in snapshot.alerts.recent_alerts if item.id != alert.id]
    alerts = dataclasses.replace(snapshot.alerts, recent_alerts=recent[:max_alerts])
    return dataclasses.replace(
        snapshot,
        alerts=rederive_alerts(alerts, snapshot.intruders),
    )
