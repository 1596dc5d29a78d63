"""
Tests for TelemetryTransformer: field mapping, clamping, sanitization of
malformed input, alert-level derivation and recommendation text.
"""

from __future__ import annotations

import math
import unittest

from aerovision.models import AlertItem, AlertsData, Intruder
from aerovision.snapshot import Snapshot, default_snapshot
from aerovision.transformer import (
    TelemetryTransformer,
    derive_alert_level,
    format_track_id,
    generate_recommendation,
    map_alert_type,
    map_camera_status,
    map_confidence_level,
    map_trajectory_stability,
    map_video_source,
    rederive_alerts,
    sanitize_number,
)

from .test_common import make_alert, make_record, make_track


def _assert_snapshot_well_formed(test: unittest.TestCase, snapshot: Snapshot) -> None:
    test.assertIsInstance(snapshot.intruders, list)
    test.assertIsInstance(snapshot.threat_intelligence, dict)
    test.assertIsInstance(snapshot.alerts.recent_alerts, list)
    test.assertLessEqual(set(snapshot.threat_intelligence), set(snapshot.track_ids()))
    for intruder in snapshot.intruders:
        test.assertGreaterEqual(intruder.threat_score, 0)
        test.assertLessEqual(intruder.threat_score, 100)
    for intel in snapshot.threat_intelligence.values():
        test.assertGreaterEqual(intel.behavioral.trajectory_confidence, 0)
        test.assertLessEqual(intel.behavioral.trajectory_confidence, 100)


class TestMappingHelpers(unittest.TestCase):

    def test_sanitize_number(self):
        self.assertEqual(sanitize_number(5), 5)
        self.assertEqual(sanitize_number("2.5"), 2.5)
        self.assertEqual(sanitize_number(True), 1)
        self.assertEqual(sanitize_number(None), 0)
        self.assertEqual(sanitize_number("abc"), 0)
        self.assertEqual(sanitize_number(math.nan), 0)
        self.assertEqual(sanitize_number(math.inf), 0)
        self.assertIsNone(sanitize_number({}, None))

    def test_format_track_id(self):
        self.assertEqual(format_track_id(7), "TRK-007")
        self.assertEqual(format_track_id(42), "TRK-042")
        self.assertEqual(format_track_id(1234), "TRK-1234")

    def test_camera_status(self):
        self.assertEqual(map_camera_status("CONNECTED"), "Connected")
        self.assertEqual(map_camera_status("connected"), "Connected")
        self.assertEqual(map_camera_status(True), "Connected")
        self.assertEqual(map_camera_status("DISCONNECTED"), "Lost")
        self.assertEqual(map_camera_status(None), "Lost")

    def test_trajectory_stability(self):
        self.assertEqual(map_trajectory_stability("erratic"), "Erratic")
        self.assertEqual(map_trajectory_stability("Moderate"), "Moderate")
        self.assertEqual(map_trajectory_stability("wobbly"), "Stable")
        self.assertEqual(map_trajectory_stability(None), "Stable")

    def test_confidence_level_thresholds(self):
        self.assertEqual(map_confidence_level(0.8), "High")
        self.assertEqual(map_confidence_level(0.79), "Medium")
        self.assertEqual(map_confidence_level(0.5), "Medium")
        self.assertEqual(map_confidence_level(0.49), "Low")
        self.assertEqual(map_confidence_level(None), "Low")

    def test_alert_type(self):
        self.assertEqual(map_alert_type("CRITICAL"), "critical")
        self.assertEqual(map_alert_type("warning"), "warning")
        self.assertEqual(map_alert_type("NOTICE"), "info")
        self.assertEqual(map_alert_type(None), "info")

    def test_video_source(self):
        self.assertEqual(map_video_source("webcam"), "webcam")
        self.assertEqual(map_video_source("rtsp"), "drone")
        self.assertEqual(map_video_source("MJPEG"), "drone")
        self.assertEqual(map_video_source("satellite"), "placeholder")


class TestAlertLevel(unittest.TestCase):

    def test_normal_when_nothing_is_happening(self):
        self.assertEqual(derive_alert_level([], []), "NORMAL")

    def test_any_critical_alert_is_critical(self):
        self.assertEqual(derive_alert_level(["critical"], []), "CRITICAL")

    def test_more_than_two_high_tracks_is_critical(self):
        self.assertEqual(derive_alert_level([], ["HIGH", "CRITICAL", "HIGH"]), "CRITICAL")

    def test_single_high_track_is_high(self):
        self.assertEqual(derive_alert_level([], ["HIGH"]), "HIGH")

    def test_more_than_two_warnings_is_high(self):
        self.assertEqual(derive_alert_level(["warning"] * 3, []), "HIGH")

    def test_any_track_is_elevated(self):
        self.assertEqual(derive_alert_level([], ["LOW"]), "ELEVATED")

    def test_single_warning_is_elevated(self):
        self.assertEqual(derive_alert_level(["warning", "info"], []), "ELEVATED")

    def test_recommendations(self):
        self.assertEqual(
            generate_recommendation("CRITICAL", 4),
            "Immediate action required - Critical threats detected",
        )
        self.assertEqual(generate_recommendation("HIGH", 1), "High alert - Monitor situation closely")
        self.assertEqual(generate_recommendation("ELEVATED", 1), "Elevated alert - 1 active track detected")
        self.assertEqual(generate_recommendation("ELEVATED", 2), "Elevated alert - 2 active tracks detected")
        self.assertEqual(generate_recommendation("NORMAL", 0), "Normal operations - No active threats")

    def test_rederive_alerts_follows_inputs(self):
        alerts = AlertsData(
            alert_level="NORMAL",
            recent_alerts=[AlertItem(id="a", timestamp="t", message="m", type="critical")],
        )
        result = rederive_alerts(alerts, [Intruder(track_id="TRK-001")])
        self.assertEqual(result.alert_level, "CRITICAL")
        self.assertEqual(result.recent_alerts, alerts.recent_alerts)


class TestTransform(unittest.TestCase):

    def setUp(self):
        self.transformer = TelemetryTransformer()

    def test_full_record(self):
        snapshot = self.transformer.transform(make_record(alerts=[make_alert()]))

        self.assertEqual(snapshot.system_status.power_mode, "ACTIVE")
        self.assertEqual(snapshot.system_status.camera_status, "Connected")
        self.assertEqual(snapshot.system_status.processing_status, "Tracking")

        intruder = snapshot.intruders[0]
        self.assertEqual(intruder.track_id, "TRK-001")
        self.assertEqual(intruder.zone, "BUFFER")
        self.assertEqual(intruder.threat_score, 45)
        self.assertEqual(intruder.threat_level, "MEDIUM")
        self.assertEqual(intruder.time_since_detection, 12.5)

        intel = snapshot.threat_intelligence["TRK-001"]
        self.assertTrue(intel.behavioral.loitering)
        self.assertEqual(intel.behavioral.loitering_duration, 8.0)
        self.assertEqual(intel.behavioral.trajectory_stability, "Moderate")
        self.assertAlmostEqual(intel.behavioral.trajectory_confidence, 82.0)
        self.assertEqual(intel.prediction.near_term, "Approaching fence line")
        self.assertEqual(intel.prediction.medium_term, "Zone: RESTRICTED")
        self.assertEqual(intel.prediction.confidence, "Medium")
        self.assertTrue(intel.prediction.will_enter_restricted)
        self.assertEqual([item.factor for item in intel.threat_breakdown], ["Zone proximity", "Loitering"])

        self.assertEqual(snapshot.alerts.alert_level, "ELEVATED")
        self.assertEqual(snapshot.alerts.recent_alerts[0].type, "warning")
        self.assertEqual(snapshot.metadata.connection_status, "connected")
        self.assertEqual(snapshot.metadata.data_source, "push")
        _assert_snapshot_well_formed(self, snapshot)

    def test_threat_score_is_clamped(self):
        low = self.transformer.transform(make_record(tracks=[make_track(1, threat_score=-50)]))
        high = self.transformer.transform(make_record(tracks=[make_track(1, threat_score=150)]))
        self.assertEqual(low.intruders[0].threat_score, 0)
        self.assertEqual(high.intruders[0].threat_score, 100)

    def test_trajectory_confidence_is_clamped(self):
        track = make_track(1, behavior={"trajectory_confidence": 3.5})
        snapshot = self.transformer.transform(make_record(tracks=[track]))
        self.assertEqual(snapshot.threat_intelligence["TRK-001"].behavioral.trajectory_confidence, 100)

    def test_invalid_inputs_yield_default_snapshot(self):
        for value in (None, {}, [], "str", 123):
            with self.subTest(value=value):
                snapshot = self.transformer.transform(value)
                self.assertEqual(snapshot.intruders, [])
                self.assertEqual(snapshot.metadata.connection_status, "disconnected")
                self.assertEqual(snapshot.system_status.processing_status, "Offline")
                _assert_snapshot_well_formed(self, snapshot)

    def test_sanitize_accepts_anything(self):
        for value in (None, {}, [], "str", 123, {"tracks": "x", "alerts": None, "system": 5}):
            with self.subTest(value=value):
                clean = self.transformer.sanitize(value)
                self.assertEqual(clean["tracks"], [])
                self.assertEqual(clean["alerts"], [])
                self.assertIn("timestamp", clean)

    def test_transform_of_sanitized_input_stays_in_bounds(self):
        mistyped_track = make_track(
            7,
            threat_score="999",
            threat_level=3,
            detection_time="soon",
            behavior="erratic",
            prediction=["near", "far"],
            explanation={"factor": "Zone proximity"},
        )
        mistyped_behavior = make_track(
            8,
            threat_score=-12.5,
            behavior={"loitering": "yes", "trajectory_confidence": "7", "trajectory_stability": 1},
            prediction={"near": "BUFFER", "overall_confidence": None},
        )
        values = (
            None,
            {},
            [],
            "str",
            123,
            {"system": [], "tracks": {"id": 1}, "alerts": "none", "timestamp": 5},
            make_record(
                tracks=[mistyped_track, mistyped_behavior, None],
                alerts=[make_alert(None, level="BOGUS", message=42, time=None), "junk"],
                system={"fps": "fast", "camera_status": ["CONNECTED"]},
                video={"resolution": "hd", "latency_ms": "slow", "source": None},
            ),
        )
        for value in values:
            with self.subTest(value=value):
                snapshot = self.transformer.transform(self.transformer.sanitize(value))
                _assert_snapshot_well_formed(self, snapshot)

        snapshot = self.transformer.transform(self.transformer.sanitize(values[-1]))
        self.assertEqual(snapshot.track_ids(), ["TRK-007", "TRK-008"])
        self.assertEqual(snapshot.intruders[0].threat_score, 100)
        self.assertEqual(snapshot.intruders[1].threat_score, 0)
        self.assertEqual(snapshot.threat_intelligence["TRK-008"].behavioral.trajectory_confidence, 100)

    def test_malformed_tracks_are_dropped(self):
        tracks = [None, "junk", make_track("abc"), make_track(2), make_track(2, zone="CRITICAL")]
        snapshot = self.transformer.transform(make_record(tracks=tracks))
        self.assertEqual(snapshot.track_ids(), ["TRK-002"])
        # first occurrence of a duplicate id wins
        self.assertEqual(snapshot.intruders[0].zone, "BUFFER")

    def test_non_finite_numbers_become_zero(self):
        track = make_track(5, threat_score=math.nan, detection_time=math.inf)
        snapshot = self.transformer.transform(make_record(tracks=[track]))
        self.assertEqual(snapshot.intruders[0].threat_score, 0)
        self.assertEqual(snapshot.intruders[0].time_since_detection, 0)

    def test_unknown_enums_fall_back(self):
        track = make_track(1, zone="MOON", threat_level="APOCALYPTIC")
        record = make_record(tracks=[track], system={"power_mode": "turbo"})
        snapshot = self.transformer.transform(record)
        self.assertEqual(snapshot.intruders[0].zone, "PUBLIC")
        self.assertEqual(snapshot.intruders[0].threat_level, "LOW")
        self.assertEqual(snapshot.system_status.power_mode, "IDLE")
        self.assertEqual(snapshot.system_status.camera_status, "Lost")

    def test_track_without_prediction_or_behavior(self):
        track = {"id": 9, "zone": "PUBLIC"}
        snapshot = self.transformer.transform(make_record(tracks=[track]))
        intel = snapshot.threat_intelligence["TRK-009"]
        self.assertEqual(intel.prediction.near_term, "Zone: Unknown")
        self.assertEqual(intel.prediction.confidence, "Low")
        self.assertEqual(intel.behavioral.trajectory_stability, "Stable")
        self.assertEqual(intel.threat_breakdown, [])

    def test_alerts_are_limited_and_get_default_ids(self):
        alerts = [make_alert(None, level="INFO") for _ in range(15)]
        snapshot = self.transformer.transform(make_record(tracks=[], alerts=alerts))
        self.assertEqual(len(snapshot.alerts.recent_alerts), 10)
        self.assertEqual(snapshot.alerts.recent_alerts[3].id, "alert-3")

    def test_critical_alert_sets_critical_level(self):
        snapshot = self.transformer.transform(make_record(alerts=[make_alert("c", level="CRITICAL")]))
        self.assertEqual(snapshot.alerts.alert_level, "CRITICAL")
        self.assertEqual(
            snapshot.alerts.recommendation,
            "Immediate action required - Critical threats detected",
        )

    def test_no_tracks_no_alerts_is_normal(self):
        snapshot = self.transformer.transform(make_record(tracks=[]))
        self.assertEqual(snapshot.alerts.alert_level, "NORMAL")
        self.assertEqual(snapshot.alerts.recommendation, "Normal operations - No active threats")

    def test_video_status(self):
        video = {
            "is_live": True,
            "resolution": {"width": 1280, "height": 720},
            "latency_ms": 85,
            "source": "rtsp",
            "stream_url": "rtsp://camera/1",
            "frame_rate": 25,
            "bitrate_kbps": 2400,
        }
        snapshot = self.transformer.transform(make_record(video=video))
        self.assertTrue(snapshot.video_status.is_live)
        self.assertEqual(snapshot.video_status.resolution, "1280x720")
        self.assertEqual(snapshot.video_status.source, "drone")
        self.assertEqual(snapshot.video_status.bitrate, 2400)

    def test_missing_video_is_placeholder(self):
        snapshot = self.transformer.transform(make_record())
        self.assertEqual(snapshot.video_status.source, "placeholder")
        self.assertEqual(snapshot.video_status.resolution, "0x0")

    def test_metadata_tags(self):
        transformer = TelemetryTransformer(update_frequency=10.0)
        snapshot = transformer.transform(make_record(), connection_status="connecting", data_source="pull", error_count=3)
        self.assertEqual(snapshot.metadata.connection_status, "connecting")
        self.assertEqual(snapshot.metadata.data_source, "pull")
        self.assertEqual(snapshot.metadata.update_frequency, 10.0)
        self.assertEqual(snapshot.metadata.error_count, 3)

    def test_failing_section_falls_back_to_its_default(self):
        transformer = TelemetryTransformer()
        transformer.transform_video_status = lambda video: 1 / 0
        snapshot = transformer.transform(make_record(video={"is_live": True}))
        self.assertEqual(snapshot.video_status, default_snapshot().video_status)
        self.assertEqual(snapshot.track_ids(), ["TRK-001"])


class TestIncrementalTransforms(unittest.TestCase):

    def setUp(self):
        self.transformer = TelemetryTransformer()

    def test_track_update(self):
        intruder, intel = self.transformer.transform_track_update(make_track(12, threat_level="HIGH"))
        self.assertEqual(intruder.track_id, "TRK-012")
        self.assertEqual(intruder.threat_level, "HIGH")
        self.assertTrue(intel.behavioral.loitering)

    def test_track_update_without_id(self):
        self.assertIsNone(self.transformer.transform_track_update({"zone": "BUFFER"}))
        self.assertIsNone(self.transformer.transform_track_update("junk"))

    def test_alert_update(self):
        item = self.transformer.transform_alert_update(make_alert("x-1", level="CRITICAL"))
        self.assertEqual(item.id, "x-1")
        self.assertEqual(item.type, "critical")
        self.assertIsNone(self.transformer.transform_alert_update(None))
