"""
src/data/models.py
──────────────────
Pydantic v2 data models for water readings, thresholds, alerts and the molt
lifecycle, plus the tagged result types returned by the engine and dispatcher.
"""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from config.alerts import AlertSeverity, max_severity
from config.water import DEFAULT_LIMITS, PARAMETERS, RuleKind


class WaterReading(BaseModel):
    """One timestamped snapshot of a tank. Any sensor may be absent (None)."""
    model_config = ConfigDict(frozen=True)

    tank_id: str
    timestamp: datetime
    ph: float | None = Field(default=None, ge=0.0, le=14.0)
    dissolved_oxygen_mg_l: float | None = Field(default=None, ge=0.0)
    salinity_ppt: float | None = Field(default=None, ge=0.0)
    ammonia_mg_l: float | None = Field(default=None, ge=0.0)
    temperature_c: float | None = None
    water_level_cm: float | None = Field(default=None, ge=0.0)
    tds_ppm: float | None = Field(default=None, ge=0.0)
    turbidity_ntu: float | None = Field(default=None, ge=0.0)


class Thresholds(BaseModel):
    """Per-tank limits. Every ranged parameter must satisfy min <= max."""
    model_config = ConfigDict(frozen=True)

    ph_min: float = DEFAULT_LIMITS["ph_min"]
    ph_max: float = DEFAULT_LIMITS["ph_max"]
    do_min: float = DEFAULT_LIMITS["do_min"]
    salinity_min: float = DEFAULT_LIMITS["salinity_min"]
    salinity_max: float = DEFAULT_LIMITS["salinity_max"]
    ammonia_max: float = DEFAULT_LIMITS["ammonia_max"]
    temp_min: float = DEFAULT_LIMITS["temp_min"]
    temp_max: float = DEFAULT_LIMITS["temp_max"]
    level_min: float = DEFAULT_LIMITS["level_min"]
    level_max: float = DEFAULT_LIMITS["level_max"]
    tds_min: float = DEFAULT_LIMITS["tds_min"]
    tds_max: float = DEFAULT_LIMITS["tds_max"]
    turbidity_max: float = DEFAULT_LIMITS["turbidity_max"]

    @model_validator(mode="after")
    def _check_ranges(self) -> "Thresholds":
        for param in PARAMETERS:
            if param.rule != RuleKind.RANGE:
                continue
            lo = getattr(self, param.min_field)
            hi = getattr(self, param.max_field)
            if lo > hi:
                raise ValueError(f"{param.name}: min ({lo}) is greater than max ({hi})")
        return self


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tank_id: str
    parameter: str
    severity: AlertSeverity
    message: str
    timestamp: datetime
    value: float | None = None
    threshold: float | None = None


# ── Molt lifecycle ────────────────────────────────────────────────────────────

class MoltState(str, Enum):
    NONE = "none"
    PREMOLT = "premolt"
    ECDYSIS = "ecdysis"
    POSTMOLT_RISK = "postmolt_risk"
    POSTMOLT_SAFE = "postmolt_safe"


class MoltEvent(BaseModel):
    """A molt observation emitted by a detection source. Times must be timezone-aware."""
    model_config = ConfigDict(frozen=True)

    id: str
    tank_id: str
    crab_id: str | None = None
    state: MoltState
    confidence: float = Field(ge=0.0, le=1.0)
    started_at: AwareDatetime
    ended_at: AwareDatetime | None = None
    evidence_uris: list[str] = Field(default_factory=list)
    notes: str | None = None

    @model_validator(mode="after")
    def _check_times(self) -> "MoltEvent":
        if self.ended_at is not None and self.ended_at < self.started_at:
            raise ValueError("ended_at is before started_at")
        return self

    @property
    def observed_at(self) -> datetime:
        return self.ended_at or self.started_at


class MoltRiskSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    tank_id: str
    state: MoltState = MoltState.NONE
    risk: AlertSeverity = AlertSeverity.INFO
    remaining_window: timedelta | None = None
    last_transition: datetime | None = None
    ecdysis_started_at: datetime | None = None
    ecdysis_ended_at: datetime | None = None
    ecdysis_overdue: bool = False
    low_confidence: bool = False
    water_risk: AlertSeverity = AlertSeverity.INFO
    current_event_id: str | None = None

    @property
    def effective_risk(self) -> AlertSeverity:
        return max_severity(self.risk, self.water_risk)


class EventOutcome(str, Enum):
    APPLIED = "applied"
    APPLIED_LOW_CONFIDENCE = "applied_low_confidence"
    PENDING_REVIEW = "pending_review"
    DUPLICATE = "duplicate"
    STALE = "stale"
    REJECTED = "rejected"
    TICK = "tick"


class MoltUpdate(BaseModel):
    """Result of feeding one event or tick into the molt engine."""
    model_config = ConfigDict(frozen=True)

    outcome: EventOutcome
    snapshot: MoltRiskSnapshot
    previous_state: MoltState
    alerts: list[Alert] = Field(default_factory=list)
    reason: str | None = None

    @property
    def transitioned(self) -> bool:
        return self.snapshot.state != self.previous_state

    @property
    def cleared(self) -> bool:
        """True when this update ended a molt cycle (back to NONE)."""
        return self.transitioned and self.snapshot.state == MoltState.NONE


class DispatchResult(BaseModel):
    notified: list[Alert] = Field(default_factory=list)
    deferred: list[Alert] = Field(default_factory=list)
    skipped: list[Alert] = Field(default_factory=list)
    failed: list[Alert] = Field(default_factory=list)
