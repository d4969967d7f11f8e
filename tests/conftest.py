"""
tests/conftest.py
─────────────────
Shared pytest fixtures for the Crab Tank Monitor test suite.
"""
import os
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

# Fixed configuration for reproducible tests
os.environ.setdefault("SIMULATION_SEED", "42")
os.environ.setdefault("NOTIFY_COOLDOWN_S", "5.0")


class RecordingNotifier:
    """Notifier double that records every call and can be told to fail."""

    def __init__(self):
        self.shown = []
        self.cleared = []
        self.cleared_tanks = []
        self.fail_ids = set()

    def show(self, alert):
        from src.alerts.notifier import NotifierError
        if alert.id in self.fail_ids:
            raise NotifierError("notification permission denied")
        self.shown.append(alert)

    def clear(self, parameter, tank_id):
        self.cleared.append((parameter, tank_id))

    def clear_all(self, tank_id):
        self.cleared_tanks.append(tank_id)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def default_thresholds():
    from src.data.models import Thresholds
    return Thresholds()


@pytest.fixture
def safe_reading(now):
    """Every parameter comfortably inside the default mud crab limits."""
    from src.data.models import WaterReading
    return WaterReading(
        tank_id="tank_001",
        timestamp=now,
        ph=8.0,
        dissolved_oxygen_mg_l=6.5,
        salinity_ppt=20.0,
        ammonia_mg_l=0.02,
        temperature_c=28.0,
        water_level_cm=30.0,
        tds_ppm=900.0,
        turbidity_ntu=8.0,
    )


@pytest.fixture
def timing():
    from config.molt import MoltTiming
    return MoltTiming(
        high_risk_window=timedelta(hours=6),
        remaining_window=timedelta(hours=66),
        max_ecdysis_duration=timedelta(hours=8),
        min_detection_confidence=0.7,
        high_confidence_threshold=0.9,
        check_interval=timedelta(minutes=30),
        critical_check_interval=timedelta(minutes=15),
    )


@pytest.fixture
def engine(timing):
    from src.molt.engine import MoltRiskEngine
    return MoltRiskEngine("tank_001", timing)


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(recording_notifier, now):
    from src.alerts.dispatcher import AlertDispatcher
    return AlertDispatcher(
        recording_notifier,
        cooldown=timedelta(seconds=5),
        scope="global",
        capacity=100,
        clock=lambda: now,
    )


@pytest.fixture
def make_alert(now):
    """Factory for alerts with explicit id / severity / parameter."""
    from config.alerts import AlertSeverity
    from src.data.models import Alert

    def _make(alert_id, severity=AlertSeverity.WARNING, parameter="pH", tank_id="tank_001", at=None):
        return Alert(
            id=alert_id,
            tank_id=tank_id,
            parameter=parameter,
            severity=severity,
            message=f"{parameter} test alert",
            timestamp=at or now,
        )

    return _make


@pytest.fixture
def make_event(now):
    """Factory for molt events."""
    from src.data.models import MoltEvent, MoltState

    def _make(event_id, state=MoltState.ECDYSIS, confidence=0.95, started_at=None, ended_at=None,
              tank_id="tank_001"):
        return MoltEvent(
            id=event_id,
            tank_id=tank_id,
            crab_id="crab_01",
            state=state,
            confidence=confidence,
            started_at=started_at or now,
            ended_at=ended_at,
        )

    return _make
