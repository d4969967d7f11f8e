"""
tests/test_models.py
─────────────────────
Tests for Pydantic v2 data models and configuration objects.
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from config.alerts import AlertSeverity, max_severity, severity_rank
from config.molt import MoltTiming, MoltTimingError
from src.data.models import (
    Alert,
    EventOutcome,
    MoltEvent,
    MoltRiskSnapshot,
    MoltState,
    MoltUpdate,
    Thresholds,
    WaterReading,
)


class TestWaterReading:
    def test_all_sensors_optional(self, now):
        r = WaterReading(tank_id="tank_001", timestamp=now)
        assert r.ph is None
        assert r.turbidity_ntu is None

    def test_ph_bounds(self, now):
        with pytest.raises(ValidationError):
            WaterReading(tank_id="tank_001", timestamp=now, ph=15.0)

    def test_negative_ammonia_rejected(self, now):
        with pytest.raises(ValidationError):
            WaterReading(tank_id="tank_001", timestamp=now, ammonia_mg_l=-0.1)

    def test_immutable(self, safe_reading):
        with pytest.raises(ValidationError):
            safe_reading.ph = 7.0

    def test_model_dump(self, safe_reading):
        data = safe_reading.model_dump()
        assert data["tank_id"] == "tank_001"
        assert "dissolved_oxygen_mg_l" in data


class TestThresholds:
    def test_defaults(self, default_thresholds):
        assert default_thresholds.ph_min == 7.5
        assert default_thresholds.ph_max == 8.5
        assert default_thresholds.do_min == 5.0
        assert default_thresholds.ammonia_max == 0.1
        assert default_thresholds.temp_min == 26.0

    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError):
            Thresholds(salinity_min=30.0, salinity_max=20.0)

    def test_equal_bounds_allowed(self):
        t = Thresholds(temp_min=28.0, temp_max=28.0)
        assert t.temp_min == t.temp_max


class TestAlertSeverity:
    def test_ordering(self):
        assert severity_rank(AlertSeverity.INFO) < severity_rank(AlertSeverity.WARNING)
        assert severity_rank(AlertSeverity.WARNING) < severity_rank(AlertSeverity.CRITICAL)

    def test_max_severity(self):
        assert max_severity(AlertSeverity.WARNING, AlertSeverity.CRITICAL) == AlertSeverity.CRITICAL
        assert max_severity() == AlertSeverity.INFO

    def test_alert_accepts_string_severity(self, now):
        alert = Alert(id="a1", tank_id="tank_001", parameter="pH", severity="warning",
                      message="pH low", timestamp=now)
        assert alert.severity == AlertSeverity.WARNING
        assert alert.value is None


class TestMoltEvent:
    def test_confidence_out_of_range(self, now):
        with pytest.raises(ValidationError):
            MoltEvent(id="e1", tank_id="tank_001", state=MoltState.ECDYSIS, confidence=1.5, started_at=now)

    def test_end_before_start(self, now):
        with pytest.raises(ValidationError):
            MoltEvent(id="e1", tank_id="tank_001", state=MoltState.ECDYSIS, confidence=0.9,
                      started_at=now, ended_at=now - timedelta(minutes=1))

    def test_naive_times_rejected(self, now):
        with pytest.raises(ValidationError):
            MoltEvent(id="e1", tank_id="tank_001", state=MoltState.ECDYSIS, confidence=0.9,
                      started_at=now.replace(tzinfo=None))

    def test_observed_at_prefers_end(self, make_event, now):
        ended = now + timedelta(hours=2)
        assert make_event("e1", ended_at=ended).observed_at == ended
        assert make_event("e2").observed_at == now

    def test_state_from_string(self, now):
        event = MoltEvent.model_validate(
            {"id": "e1", "tank_id": "tank_001", "state": "postmolt_risk", "confidence": 0.8,
             "started_at": now.isoformat()}
        )
        assert event.state == MoltState.POSTMOLT_RISK
        assert event.evidence_uris == []


class TestSnapshotAndUpdate:
    def test_effective_risk_takes_worst(self):
        snap = MoltRiskSnapshot(tank_id="t", state=MoltState.POSTMOLT_SAFE, risk=AlertSeverity.WARNING,
                                water_risk=AlertSeverity.CRITICAL)
        assert snap.effective_risk == AlertSeverity.CRITICAL

    def test_cleared_only_on_return_to_none(self):
        snap = MoltRiskSnapshot(tank_id="t")
        update = MoltUpdate(outcome=EventOutcome.TICK, snapshot=snap, previous_state=MoltState.POSTMOLT_SAFE)
        assert update.transitioned
        assert update.cleared
        same = MoltUpdate(outcome=EventOutcome.TICK, snapshot=snap, previous_state=MoltState.NONE)
        assert not same.cleared


class TestMoltTiming:
    def test_total_window(self, timing):
        assert timing.total_window == timedelta(hours=72)

    def test_inverted_confidence_rejected(self):
        with pytest.raises(MoltTimingError):
            MoltTiming(
                high_risk_window=timedelta(hours=6),
                remaining_window=timedelta(hours=66),
                max_ecdysis_duration=timedelta(hours=8),
                min_detection_confidence=0.95,
                high_confidence_threshold=0.9,
                check_interval=timedelta(minutes=30),
                critical_check_interval=timedelta(minutes=15),
            )

    def test_zero_risk_window_rejected(self):
        with pytest.raises(MoltTimingError):
            MoltTiming(
                high_risk_window=timedelta(0),
                remaining_window=timedelta(hours=66),
                max_ecdysis_duration=timedelta(hours=8),
                min_detection_confidence=0.7,
                high_confidence_threshold=0.9,
                check_interval=timedelta(minutes=30),
                critical_check_interval=timedelta(minutes=15),
            )
