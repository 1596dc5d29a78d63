"""
Canonical domain models for the AeroVision telemetry core.

Pure data classes with no transport or logging dependencies.  All of them are
frozen: replace via dataclasses.replace(), never mutate in place.
"""
from __future__ import annotations

import dataclasses
import time
from datetime import datetime, timezone

from .const import (
    CAMERA_LOST,
    EMPTY_RESOLUTION,
    NO_PREDICTION,
    OFFLINE_PROCESSING_STATUS,
    OFFLINE_RECOMMENDATION,
    SOURCE_SYNTHETIC,
    STATUS_DISCONNECTED,
)


def display_time() -> str:
    """Wall-clock time formatted for status displays (24h, HH:MM:SS)."""
    return time.strftime("%H:%M:%S")


def iso_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclasses.dataclass(frozen=True)
class SystemStatus:
    """Power and processing status of the detection platform."""

    power_mode: str = "IDLE"
    power_consumption: float = 0.0   # watts
    battery_remaining: float = 0.0   # minutes
    fps: float = 0.0
    processing_status: str = OFFLINE_PROCESSING_STATUS
    camera_status: str = CAMERA_LOST
    timestamp: str = dataclasses.field(default_factory=display_time)


@dataclasses.dataclass(frozen=True)
class Intruder:
    """One tracked entity with its threat assessment."""

    track_id: str
    zone: str = "PUBLIC"
    threat_score: int = 0            # 0-100
    threat_level: str = "LOW"
    time_since_detection: float = 0.0  # seconds


@dataclasses.dataclass(frozen=True)
class ThreatBreakdownItem:
    factor: str
    score: float


@dataclasses.dataclass(frozen=True)
class BehavioralAnalysis:
    loitering: bool = False
    loitering_duration: float | None = None
    speed_anomaly: bool = False
    trajectory_stability: str = "Stable"
    trajectory_confidence: float = 0.0  # percentage 0-100


@dataclasses.dataclass(frozen=True)
class PredictionAnalysis:
    near_term: str = NO_PREDICTION     # ~3 s
    medium_term: str = NO_PREDICTION   # ~6 s
    far_term: str = NO_PREDICTION      # ~10 s
    confidence: str = "Low"
    will_enter_restricted: bool = False


@dataclasses.dataclass(frozen=True)
class ThreatIntelligence:
    """Behavioral and predictive analysis attached to one track."""

    threat_breakdown: list[ThreatBreakdownItem] = dataclasses.field(default_factory=list)
    behavioral: BehavioralAnalysis = dataclasses.field(default_factory=BehavioralAnalysis)
    prediction: PredictionAnalysis = dataclasses.field(default_factory=PredictionAnalysis)


@dataclasses.dataclass(frozen=True)
class AlertItem:
    id: str
    timestamp: str
    message: str
    type: str = "info"


@dataclasses.dataclass(frozen=True)
class AlertsData:
    alert_level: str = "NORMAL"
    recommendation: str = OFFLINE_RECOMMENDATION
    recent_alerts: list[AlertItem] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class VideoStatus:
    is_live: bool = False
    resolution: str = EMPTY_RESOLUTION
    latency: float = 0.0             # milliseconds
    source: str = "placeholder"
    stream_url: str | None = None
    frame_rate: float | None = None
    bitrate: float | None = None     # kbps


@dataclasses.dataclass(frozen=True)
class SnapshotMetadata:
    last_updated: str = dataclasses.field(default_factory=iso_now)
    connection_status: str = STATUS_DISCONNECTED
    data_source: str = SOURCE_SYNTHETIC
    update_frequency: float | None = 0.0   # Hz
    error_count: int | None = 0
