"""
config/molt.py
──────────────
Molt care windows, detection confidence policy and check cadence.

Post-molt timeline, anchored at the end of ecdysis:
  0 h  ── high-risk window ──▶  6 h  ── remaining window ──▶  72 h
        POSTMOLT_RISK                  POSTMOLT_SAFE               NONE
"""
from dataclasses import dataclass
from datetime import timedelta

from config.settings import settings


class MoltTimingError(ValueError):
    """Raised when molt timing or confidence constants are inconsistent."""


@dataclass(frozen=True)
class MoltTiming:
    high_risk_window: timedelta
    remaining_window: timedelta
    max_ecdysis_duration: timedelta
    min_detection_confidence: float
    high_confidence_threshold: float
    check_interval: timedelta
    critical_check_interval: timedelta

    def __post_init__(self) -> None:
        if self.high_risk_window <= timedelta(0) or self.remaining_window < timedelta(0):
            raise MoltTimingError("post-molt windows must be positive")
        if self.max_ecdysis_duration <= timedelta(0):
            raise MoltTimingError("max ecdysis duration must be positive")
        if not 0.0 <= self.min_detection_confidence <= self.high_confidence_threshold <= 1.0:
            raise MoltTimingError(
                "confidence thresholds must satisfy 0 <= min <= high <= 1 "
                f"(got min={self.min_detection_confidence}, high={self.high_confidence_threshold})"
            )
        if self.check_interval <= timedelta(0) or self.critical_check_interval <= timedelta(0):
            raise MoltTimingError("check intervals must be positive")

    @property
    def total_window(self) -> timedelta:
        return self.high_risk_window + self.remaining_window


def timing_from_settings() -> MoltTiming:
    return MoltTiming(
        high_risk_window=timedelta(hours=settings.POSTMOLT_RISK_WINDOW_H),
        remaining_window=timedelta(hours=settings.POSTMOLT_REMAINING_WINDOW_H),
        max_ecdysis_duration=timedelta(hours=settings.MAX_ECDYSIS_H),
        min_detection_confidence=settings.MIN_DETECTION_CONFIDENCE,
        high_confidence_threshold=settings.HIGH_CONFIDENCE_THRESHOLD,
        check_interval=timedelta(minutes=settings.MOLT_CHECK_INTERVAL_MIN),
        critical_check_interval=timedelta(minutes=settings.CRITICAL_CHECK_INTERVAL_MIN),
    )


DEFAULT_TIMING = timing_from_settings()
