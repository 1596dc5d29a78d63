"""
Snapshot — immutable canonical state shared with every consumer.

This is a pure data module with no transport or timer dependencies.  It also
holds the dict-level helpers the state manager uses to merge partial updates:
partial updates are plain nested dicts shaped like snapshot_to_dict() output.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

from .const import MAX_PERCENTAGE, MAX_THREAT_SCORE
from .models import (
    AlertItem,
    AlertsData,
    BehavioralAnalysis,
    Intruder,
    PredictionAnalysis,
    SnapshotMetadata,
    SystemStatus,
    ThreatBreakdownItem,
    ThreatIntelligence,
    VideoStatus,
)

_LOGGER = logging.getLogger(__name__)

SECTIONS = (
    "system_status",
    "intruders",
    "threat_intelligence",
    "alerts",
    "video_status",
    "metadata",
)


@dataclasses.dataclass(frozen=True)
class Snapshot:
    """
    Typed, copy-on-write snapshot of all AeroVision telemetry.

    Always replace via dataclasses.replace(); never mutate in place.
    """

    system_status: SystemStatus = dataclasses.field(default_factory=SystemStatus)

    # Ordered list of tracked entities
    intruders: list[Intruder] = dataclasses.field(default_factory=list)

    # track_id → detailed analysis; keys always match an entry in intruders
    threat_intelligence: dict[str, ThreatIntelligence] = dataclasses.field(default_factory=dict)

    alerts: AlertsData = dataclasses.field(default_factory=AlertsData)

    video_status: VideoStatus = dataclasses.field(default_factory=VideoStatus)

    metadata: SnapshotMetadata = dataclasses.field(default_factory=SnapshotMetadata)

    def track_ids(self) -> list[str]:
        return [intruder.track_id for intruder in self.intruders]


def default_snapshot() -> Snapshot:
    """Return the offline default snapshot with fresh timestamps."""
    return Snapshot()


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    """Convert a snapshot (or any section dataclass) into plain nested dicts."""
    return dataclasses.asdict(snapshot)


# ---------------------------------------------------------------------------
# Tolerant rebuild
# ---------------------------------------------------------------------------

def _build(cls, data: Any):
    """
    Build a section dataclass from a mapping.

    Missing or None values fall back to the field default and unknown keys
    are ignored.  Returns None when a field without default is missing.
    """
    if isinstance(data, cls):
        return data
    if not isinstance(data, Mapping):
        data = {}
    kwargs = {}
    for field in dataclasses.fields(cls):
        value = data.get(field.name)
        if value is not None:
            kwargs[field.name] = value
    try:
        return cls(**kwargs)
    except TypeError:
        return None


def _clamp(value: Any, upper: float) -> Any:
    try:
        return max(0, min(upper, value))
    except TypeError:
        return 0


def _build_intruder(data: Any) -> Intruder | None:
    intruder = _build(Intruder, data)
    if intruder is None:
        return None
    try:
        score = int(round(_clamp(intruder.threat_score, MAX_THREAT_SCORE)))
    except (TypeError, ValueError):
        score = 0
    return dataclasses.replace(intruder, threat_score=score)


def _build_threat_intelligence(data: Any) -> ThreatIntelligence:
    if isinstance(data, ThreatIntelligence):
        return data
    if not isinstance(data, Mapping):
        data = {}
    breakdown = [
        item for item in (
            _build(ThreatBreakdownItem, entry) for entry in _as_list(data.get("threat_breakdown"))
        )
        if item is not None
    ]
    behavioral = _build(BehavioralAnalysis, data.get("behavioral"))
    behavioral = dataclasses.replace(
        behavioral,
        trajectory_confidence=_clamp(behavioral.trajectory_confidence, MAX_PERCENTAGE),
    )
    return ThreatIntelligence(
        threat_breakdown=breakdown,
        behavioral=behavioral,
        prediction=_build(PredictionAnalysis, data.get("prediction")),
    )


def _build_alerts(data: Any) -> AlertsData:
    if isinstance(data, AlertsData):
        return data
    if not isinstance(data, Mapping):
        data = {}
    base = _build(AlertsData, {k: v for k, v in data.items() if k != "recent_alerts"})
    recent = [
        item for item in (_build(AlertItem, entry) for entry in _as_list(data.get("recent_alerts")))
        if item is not None
    ]
    return dataclasses.replace(base, recent_alerts=recent)


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


def snapshot_from_dict(data: Any) -> Snapshot:
    """
    Rebuild a Snapshot from a (possibly partial or damaged) nested dict.

    Collections are always present afterwards, and bounded fields are
    clamped, whatever the input looked like.
    """
    if isinstance(data, Snapshot):
        return data
    if not isinstance(data, Mapping):
        return default_snapshot()

    intruders = [
        intruder for intruder in (_build_intruder(entry) for entry in _as_list(data.get("intruders")))
        if intruder is not None
    ]

    raw_intel = data.get("threat_intelligence")
    threat_intelligence = {
        str(track_id): _build_threat_intelligence(intel)
        for track_id, intel in (raw_intel.items() if isinstance(raw_intel, Mapping) else ())
    }

    return Snapshot(
        system_status=_build(SystemStatus, data.get("system_status")),
        intruders=intruders,
        threat_intelligence=threat_intelligence,
        alerts=_build_alerts(data.get("alerts")),
        video_status=_build(VideoStatus, data.get("video_status")),
        metadata=_build(SnapshotMetadata, data.get("metadata")),
    )


# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------

def to_plain(value: Any) -> Any:
    """Convert dataclass instances (at any depth of a mapping) into dicts."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def deep_merge(target: Any, source: Any) -> Any:
    """
    Merge source into a copy of target.

    Mappings merge recursively; lists and every other value replace the
    target value wholesale.  A None source leaves target unchanged.  Neither
    argument is mutated.
    """
    if source is None:
        return target
    source = to_plain(source)
    if not isinstance(source, Mapping):
        return source

    result = dict(target) if isinstance(target, Mapping) else {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = deep_merge(result.get(key) or {}, value)
        else:
            result[key] = value
    return result


def prune_threat_intelligence(state: dict) -> list[str]:
    """
    Drop threat intelligence entries whose track is no longer in intruders.

    Operates in place on a snapshot dict and returns the removed keys.
    """
    intel = state.get("threat_intelligence")
    if not isinstance(intel, dict):
        state["threat_intelligence"] = {}
        return []
    live = {
        entry.get("track_id")
        for entry in _as_list(state.get("intruders"))
        if isinstance(entry, Mapping)
    }
    orphaned = [track_id for track_id in intel if track_id not in live]
    for track_id in orphaned:
        del intel[track_id]
    if orphaned:
        _LOGGER.debug("Pruned %d orphaned threat intelligence entries", len(orphaned))
    return orphaned
