"""
TelemetryTransformer — turns raw detection-backend records into Snapshots.

Responsibilities:
- Gate records with the schema checks in schema.py.
- Sanitize every field (default + clamp) so malformed nested items can never
  reach the canonical model.
- Map upstream vocabularies onto the closed canonical enums.
- Derive the overall alert level and recommendation.

Nothing in this module raises on bad input; the worst case is a default
snapshot (or section) plus a log line.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any, Callable

from .const import (
    ALERT_TYPE_MAP,
    CAMERA_CONNECTED,
    CAMERA_LOST,
    CONFIDENCE_THRESHOLDS,
    DEFAULT_UPDATE_FREQUENCY,
    EMPTY_RESOLUTION,
    HIGH_THREAT_LEVELS,
    MAX_PERCENTAGE,
    MAX_THREAT_SCORE,
    MAX_TRANSFORMED_ALERTS,
    NO_PREDICTION,
    POWER_MODES,
    SOURCE_PUSH,
    STATUS_CONNECTED,
    THREAT_LEVELS,
    TRAJECTORY_STABILITIES,
    UNKNOWN_PROCESSING_STATUS,
    VIDEO_SOURCE_MAP,
    ZONES,
)
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
    display_time,
    iso_now,
)
from .schema import ValidationResult, validate_telemetry
from .snapshot import Snapshot, default_snapshot

_LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure mapping helpers
# ---------------------------------------------------------------------------

def sanitize_number(value: Any, default: float | None = 0) -> float | None:
    """
    Coerce value to a finite number.

    Booleans count as 0/1 and numeric strings are parsed; NaN, infinities and
    anything else non-numeric yield default.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        num = value
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if isinstance(num, float) and not math.isfinite(num):
        return default
    return num


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _enum(value: Any, allowed: tuple, default: str) -> str:
    if isinstance(value, str) and value.strip().upper() in allowed:
        return value.strip().upper()
    return default


def _text(value: Any, default: str | None) -> str | None:
    if isinstance(value, str) and value:
        return value
    return default


def _mapping(value: Any) -> Mapping:
    return value if isinstance(value, Mapping) else {}


def format_track_id(track_id: Any) -> str:
    """Format a numeric upstream id as TRK-### (at least three digits)."""
    return f"TRK-{int(track_id):03d}"


def map_camera_status(value: Any) -> str:
    if value is True:
        return CAMERA_CONNECTED
    if isinstance(value, str) and value.strip().upper() == "CONNECTED":
        return CAMERA_CONNECTED
    return CAMERA_LOST


def map_trajectory_stability(value: Any) -> str:
    if isinstance(value, str):
        candidate = value.strip().capitalize()
        if candidate in TRAJECTORY_STABILITIES:
            return candidate
    return "Stable"


def map_confidence_level(value: Any) -> str:
    confidence = sanitize_number(value, 0)
    for lower_bound, label in CONFIDENCE_THRESHOLDS:
        if confidence >= lower_bound:
            return label
    return "Low"


def map_alert_type(level: Any) -> str:
    if isinstance(level, str):
        return ALERT_TYPE_MAP.get(level.strip().upper(), "info")
    return "info"


def map_video_source(source: Any) -> str:
    if isinstance(source, str):
        return VIDEO_SOURCE_MAP.get(source.strip().lower(), "placeholder")
    return "placeholder"


def derive_alert_level(alert_types: Iterable[str], threat_levels: Iterable[str]) -> str:
    """
    Derive the overall alert level from canonical alert types and track
    threat levels.  Ordered rules, first match wins.
    """
    alert_types = list(alert_types)
    threat_levels = list(threat_levels)
    critical_alerts = alert_types.count("critical")
    warning_alerts = alert_types.count("warning")
    high_threat_tracks = sum(1 for level in threat_levels if level in HIGH_THREAT_LEVELS)

    if critical_alerts > 0 or high_threat_tracks > 2:
        return "CRITICAL"
    if high_threat_tracks > 0 or warning_alerts > 2:
        return "HIGH"
    if threat_levels or warning_alerts > 0:
        return "ELEVATED"
    return "NORMAL"


def generate_recommendation(alert_level: str, track_count: int) -> str:
    plural = "s" if track_count != 1 else ""
    if alert_level == "CRITICAL":
        return "Immediate action required - Critical threats detected"
    if alert_level == "HIGH":
        return "High alert - Monitor situation closely"
    if alert_level == "ELEVATED":
        return f"Elevated alert - {track_count} active track{plural} detected"
    if track_count > 0:
        return f"Normal operations - {track_count} track{plural} being monitored"
    return "Normal operations - No active threats"


def rederive_alerts(alerts: AlertsData, intruders: Iterable[Intruder]) -> AlertsData:
    """Recompute level and recommendation of canonical alerts after an incremental change."""
    intruders = list(intruders)
    level = derive_alert_level(
        (item.type for item in alerts.recent_alerts),
        (intruder.threat_level for intruder in intruders),
    )
    return dataclasses.replace(
        alerts,
        alert_level=level,
        recommendation=generate_recommendation(level, len(intruders)),
    )


# ---------------------------------------------------------------------------
# TelemetryTransformer
# ---------------------------------------------------------------------------

class TelemetryTransformer:
    """Validates, sanitizes and converts raw telemetry into canonical snapshots."""

    def __init__(
        self,
        enable_logging: bool = True,
        update_frequency: float = DEFAULT_UPDATE_FREQUENCY,
    ) -> None:
        self.enable_logging = enable_logging
        self.update_frequency = update_frequency

    def _debug(self, message: str, *args) -> None:
        if self.enable_logging:
            _LOGGER.debug(message, *args)

    # ------------------------------------------------------------------
    # Validation / sanitization
    # ------------------------------------------------------------------

    def validate(self, raw: Any) -> ValidationResult:
        """Check the record shape without coercing anything."""
        result = validate_telemetry(raw)
        if not result:
            self._debug("Telemetry validation failed at %s: %s", result.field or "<record>", result.reason)
        return result

    def sanitize(self, raw: Any) -> dict:
        """
        Return a cleaned copy of raw in the upstream layout.

        Works on any input, valid or not: numeric fields are coerced, enums
        fall back to defaults, and non-mapping list entries are dropped.
        """
        raw = _mapping(raw)
        system = _mapping(raw.get("system"))

        camera_status = system.get("camera_status")
        if not isinstance(camera_status, (str, bool)):
            camera_status = "DISCONNECTED"

        tracks = []
        seen_ids = set()
        for entry in raw.get("tracks") if isinstance(raw.get("tracks"), list) else []:
            if not isinstance(entry, Mapping):
                continue
            track = self._sanitize_track(entry)
            if track is None:
                self._debug("Dropping track without numeric id: %s", entry.get("id"))
                continue
            if track["id"] in seen_ids:
                self._debug("Dropping duplicate track id %s", track["id"])
                continue
            seen_ids.add(track["id"])
            tracks.append(track)

        alerts = [
            self._sanitize_alert(entry)
            for entry in (raw.get("alerts") if isinstance(raw.get("alerts"), list) else [])
            if isinstance(entry, Mapping)
        ]

        video = raw.get("video")
        return {
            "system": {
                "power_mode": _enum(system.get("power_mode"), POWER_MODES, "IDLE"),
                "power_w": sanitize_number(system.get("power_w"), 0),
                "battery_minutes": sanitize_number(system.get("battery_minutes"), 0),
                "fps": sanitize_number(system.get("fps"), 0),
                "camera_status": camera_status,
                "processing_status": _text(system.get("processing_status"), UNKNOWN_PROCESSING_STATUS),
                "timestamp": _text(system.get("timestamp"), None) or display_time(),
            },
            "tracks": tracks,
            "alerts": alerts,
            "video": self._sanitize_video(video) if isinstance(video, Mapping) else None,
            "timestamp": _text(raw.get("timestamp"), None) or iso_now(),
        }

    def _sanitize_track(self, track: Mapping) -> dict | None:
        track_id = sanitize_number(track.get("id"), None)
        if track_id is None:
            return None

        behavior = _mapping(track.get("behavior"))
        loitering = behavior.get("loitering")
        if isinstance(loitering, Mapping):
            loitering_active = bool(loitering.get("active"))
            loitering_duration = sanitize_number(loitering.get("duration"), None)
        else:
            loitering_active = bool(loitering)
            loitering_duration = None

        prediction = _mapping(track.get("prediction"))

        def horizon(key: str) -> dict:
            item = _mapping(prediction.get(key))
            return {
                "zone": _text(item.get("zone"), "Unknown"),
                "confidence": sanitize_number(item.get("confidence"), 0),
                "description": _text(item.get("description"), None),
            }

        explanation = track.get("explanation")
        return {
            "id": int(track_id),
            "zone": _enum(track.get("zone"), ZONES, "PUBLIC"),
            "threat_score": sanitize_number(track.get("threat_score"), 0),
            "threat_level": _enum(track.get("threat_level"), THREAT_LEVELS, "LOW"),
            "detection_time": sanitize_number(track.get("detection_time"), 0),
            "behavior": {
                "loitering": {"active": loitering_active, "duration": loitering_duration},
                "speed_anomaly": bool(behavior.get("speed_anomaly")),
                "trajectory_confidence": sanitize_number(behavior.get("trajectory_confidence"), 0),
                "trajectory_stability": _text(behavior.get("trajectory_stability"), None),
            },
            "prediction": {
                "near": horizon("near"),
                "medium": horizon("medium"),
                "far": horizon("far"),
                "will_enter_restricted": bool(prediction.get("will_enter_restricted")),
                "overall_confidence": sanitize_number(prediction.get("overall_confidence"), 0),
            },
            "explanation": [
                {
                    "factor": _text(item.get("factor"), "Unknown"),
                    "points": sanitize_number(item.get("points"), 0),
                }
                for item in (explanation if isinstance(explanation, list) else [])
                if isinstance(item, Mapping)
            ],
        }

    @staticmethod
    def _sanitize_alert(alert: Mapping) -> dict:
        alert_id = alert.get("id")
        if isinstance(alert_id, bool) or not isinstance(alert_id, (str, int, float)) or alert_id == "":
            alert_id = None
        return {
            "id": str(alert_id) if alert_id is not None else None,
            "time": _text(alert.get("time"), None),
            "message": _text(alert.get("message"), None),
            "level": _text(alert.get("level"), "INFO"),
            "track_id": sanitize_number(alert.get("track_id"), None),
        }

    @staticmethod
    def _sanitize_video(video: Mapping) -> dict:
        resolution = video.get("resolution")
        if isinstance(resolution, Mapping):
            resolution = {
                "width": int(sanitize_number(resolution.get("width"), 0)),
                "height": int(sanitize_number(resolution.get("height"), 0)),
            }
        else:
            resolution = None
        return {
            "is_live": bool(video.get("is_live")),
            "resolution": resolution,
            "latency_ms": sanitize_number(video.get("latency_ms"), 0),
            "source": _text(video.get("source"), None),
            "stream_url": _text(video.get("stream_url"), None),
            "frame_rate": sanitize_number(video.get("frame_rate"), None),
            "bitrate_kbps": sanitize_number(video.get("bitrate_kbps"), None),
        }

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def transform(
        self,
        raw: Any,
        connection_status: str = STATUS_CONNECTED,
        data_source: str = SOURCE_PUSH,
        error_count: int = 0,
    ) -> Snapshot:
        """
        Convert one raw record into a complete Snapshot.

        Invalid records yield the default snapshot.  Never raises.
        """
        result = self.validate(raw)
        if not result:
            _LOGGER.warning(
                "Invalid telemetry record (%s: %s), using default snapshot",
                result.field or "<record>", result.reason,
            )
            return default_snapshot()

        try:
            clean = self.sanitize(raw)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Failed to sanitize telemetry record: %s", exc)
            return default_snapshot()

        tracks = clean["tracks"]
        snapshot = Snapshot(
            system_status=self._section("system status", self.transform_system_status, SystemStatus, clean["system"]),
            intruders=self._section("tracks", self.transform_tracks, list, tracks),
            threat_intelligence=self._section("threat intelligence", self.transform_threat_data, dict, tracks),
            alerts=self._section("alerts", self.transform_alerts, AlertsData, clean["alerts"], tracks),
            video_status=self._section("video status", self.transform_video_status, VideoStatus, clean["video"]),
            metadata=SnapshotMetadata(
                last_updated=iso_now(),
                connection_status=connection_status,
                data_source=data_source,
                update_frequency=self.update_frequency,
                error_count=error_count,
            ),
        )
        self._debug(
            "Transformed telemetry: %d tracks, %d alerts, level %s",
            len(snapshot.intruders), len(snapshot.alerts.recent_alerts), snapshot.alerts.alert_level,
        )
        return snapshot

    def _section(self, name: str, func: Callable, default_factory: Callable, *args):
        try:
            return func(*args)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Error transforming %s, using default: %s", name, exc)
            return default_factory()

    # ------------------------------------------------------------------
    # Section transforms (expect sanitized input)
    # ------------------------------------------------------------------

    def transform_system_status(self, system: Mapping) -> SystemStatus:
        system = _mapping(system)
        return SystemStatus(
            power_mode=_enum(system.get("power_mode"), POWER_MODES, "IDLE"),
            power_consumption=max(0, sanitize_number(system.get("power_w"), 0)),
            battery_remaining=max(0, sanitize_number(system.get("battery_minutes"), 0)),
            fps=max(0, sanitize_number(system.get("fps"), 0)),
            processing_status=_text(system.get("processing_status"), UNKNOWN_PROCESSING_STATUS),
            camera_status=map_camera_status(system.get("camera_status")),
            timestamp=_text(system.get("timestamp"), None) or display_time(),
        )

    def transform_track(self, track: Mapping) -> Intruder:
        return Intruder(
            track_id=format_track_id(track["id"]),
            zone=_enum(track.get("zone"), ZONES, "PUBLIC"),
            threat_score=int(round(clamp(sanitize_number(track.get("threat_score"), 0), 0, MAX_THREAT_SCORE))),
            threat_level=_enum(track.get("threat_level"), THREAT_LEVELS, "LOW"),
            time_since_detection=max(0, sanitize_number(track.get("detection_time"), 0)),
        )

    def transform_tracks(self, tracks: list) -> list[Intruder]:
        if not isinstance(tracks, list):
            self._debug("Invalid tracks data - not a list")
            return []
        return [self.transform_track(track) for track in tracks]

    def transform_threat_intelligence(self, track: Mapping) -> ThreatIntelligence:
        behavior = _mapping(track.get("behavior"))
        prediction = _mapping(track.get("prediction"))
        loitering = _mapping(behavior.get("loitering"))

        def horizon_text(key: str) -> str:
            item = _mapping(prediction.get(key))
            return _text(item.get("description"), None) or f"Zone: {_text(item.get('zone'), 'Unknown')}"

        if prediction:
            prediction_analysis = PredictionAnalysis(
                near_term=horizon_text("near"),
                medium_term=horizon_text("medium"),
                far_term=horizon_text("far"),
                confidence=map_confidence_level(prediction.get("overall_confidence")),
                will_enter_restricted=bool(prediction.get("will_enter_restricted")),
            )
        else:
            prediction_analysis = PredictionAnalysis(near_term=NO_PREDICTION, medium_term=NO_PREDICTION, far_term=NO_PREDICTION)

        confidence = sanitize_number(behavior.get("trajectory_confidence"), 0) * 100
        return ThreatIntelligence(
            threat_breakdown=[
                ThreatBreakdownItem(
                    factor=_text(item.get("factor"), "Unknown"),
                    score=sanitize_number(item.get("points"), 0),
                )
                for item in (track.get("explanation") or [])
                if isinstance(item, Mapping)
            ],
            behavioral=BehavioralAnalysis(
                loitering=bool(loitering.get("active")),
                loitering_duration=sanitize_number(loitering.get("duration"), None),
                speed_anomaly=bool(behavior.get("speed_anomaly")),
                trajectory_stability=map_trajectory_stability(behavior.get("trajectory_stability")),
                trajectory_confidence=clamp(confidence, 0, MAX_PERCENTAGE),
            ),
            prediction=prediction_analysis,
        )

    def transform_threat_data(self, tracks: list) -> dict[str, ThreatIntelligence]:
        if not isinstance(tracks, list):
            return {}
        return {
            format_track_id(track["id"]): self.transform_threat_intelligence(track)
            for track in tracks
        }

    def transform_alert(self, alert: Mapping, index: int = 0) -> AlertItem:
        return AlertItem(
            id=alert.get("id") or f"alert-{index}",
            timestamp=alert.get("time") or iso_now(),
            message=alert.get("message") or "Unknown alert",
            type=map_alert_type(alert.get("level")),
        )

    def transform_alerts(self, alerts: list, tracks: list | None = None) -> AlertsData:
        alerts = alerts if isinstance(alerts, list) else []
        tracks = tracks if isinstance(tracks, list) else []
        level = derive_alert_level(
            (map_alert_type(alert.get("level")) for alert in alerts),
            (_enum(track.get("threat_level"), THREAT_LEVELS, "LOW") for track in tracks),
        )
        return AlertsData(
            alert_level=level,
            recommendation=generate_recommendation(level, len(tracks)),
            recent_alerts=[
                self.transform_alert(alert, index)
                for index, alert in enumerate(alerts[:MAX_TRANSFORMED_ALERTS])
            ],
        )

    # ------------------------------------------------------------------
    # Incremental updates (push transport)
    # ------------------------------------------------------------------

    def transform_track_update(self, track: Any) -> tuple[Intruder, ThreatIntelligence] | None:
        """Convert one raw track; None when it has no usable numeric id."""
        if not isinstance(track, Mapping):
            return None
        clean = self._sanitize_track(track)
        if clean is None:
            self._debug("Ignoring track update without numeric id: %s", track.get("id"))
            return None
        return self.transform_track(clean), self.transform_threat_intelligence(clean)

    def transform_alert_update(self, alert: Any, index: int = 0) -> AlertItem | None:
        if not isinstance(alert, Mapping):
            return None
        return self.transform_alert(self._sanitize_alert(alert), index)

    def transform_video_status(self, video: Mapping | None) -> VideoStatus:
        if not video:
            return VideoStatus()
        resolution = video.get("resolution")
        if isinstance(resolution, Mapping):
            resolution_text = f"{resolution.get('width', 0)}x{resolution.get('height', 0)}"
        else:
            resolution_text = EMPTY_RESOLUTION
        return VideoStatus(
            is_live=bool(video.get("is_live")),
            resolution=resolution_text,
            latency=max(0, sanitize_number(video.get("latency_ms"), 0)),
            source=map_video_source(video.get("source")),
            stream_url=_text(video.get("stream_url"), None),
            frame_rate=sanitize_number(video.get("frame_rate"), None),
            bitrate=sanitize_number(video.get("bitrate_kbps"), None),
        )
