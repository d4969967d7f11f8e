"""
src/molt/engine.py
──────────────────
Per-tank molt lifecycle state machine.

    NONE → PREMOLT → ECDYSIS → POSTMOLT_RISK → POSTMOLT_SAFE → NONE

Two inputs drive it:
  - apply_event(event, now) : a detection from the observation source
  - tick(now)               : periodic re-evaluation of the post-molt windows

Post-molt states are derived from the time elapsed since the end of the most
recent ecdysis (the anchor):

    elapsed < high-risk window          → POSTMOLT_RISK
    elapsed < high-risk + remaining     → POSTMOLT_SAFE
    otherwise                           → NONE (anchor cleared)

Detection confidence policy:
    confidence <  min threshold   → kept for manual review, state untouched
    confidence <  high threshold  → applied, alert annotated as lower confidence
    confidence >= high threshold  → applied

The engine is not thread-safe. One TankMonitor worker owns each instance and
feeds it events and ticks one at a time.
"""
from __future__ import annotations

import logging
from collections import OrderedDict, deque
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from config.alerts import MOLT_PARAMETER, AlertSeverity, max_severity, severity_rank
from config.molt import DEFAULT_TIMING, MoltTiming
from config.settings import settings
from src.analytics.thresholds import alert_id
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
from src.molt.guidance import emergency_guidance, short_guidance, state_display_name

logger = logging.getLogger(__name__)

STATE_RISK: dict[MoltState, AlertSeverity] = {
    MoltState.NONE: AlertSeverity.INFO,
    MoltState.PREMOLT: AlertSeverity.WARNING,
    MoltState.ECDYSIS: AlertSeverity.CRITICAL,
    MoltState.POSTMOLT_RISK: AlertSeverity.CRITICAL,
    MoltState.POSTMOLT_SAFE: AlertSeverity.WARNING,
}

CRITICAL_PHASES = frozenset({MoltState.ECDYSIS, MoltState.POSTMOLT_RISK})
POSTMOLT_PHASES = frozenset({MoltState.POSTMOLT_RISK, MoltState.POSTMOLT_SAFE})


def risk_for_state(state: MoltState) -> AlertSeverity:
    return STATE_RISK[state]


def _utc(now: datetime | None) -> datetime:
    """Current time when `now` is None; naive times are taken as UTC."""
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def water_risk_for(
    state: MoltState,
    reading: WaterReading | None,
    thresholds: Thresholds | None,
) -> AlertSeverity:
    """
    Water-quality contribution to molt risk.

    Low oxygen or high ammonia is CRITICAL while the crab is soft (ecdysis or
    early post-molt) and WARNING otherwise. pH drift matters during post-molt
    shell hardening; temperature drift during the critical phases.
    """
    if reading is None or thresholds is None:
        return AlertSeverity.INFO

    levels: list[AlertSeverity] = []
    low_oxygen = reading.dissolved_oxygen_mg_l is not None and reading.dissolved_oxygen_mg_l < thresholds.do_min
    high_ammonia = reading.ammonia_mg_l is not None and reading.ammonia_mg_l > thresholds.ammonia_max
    if low_oxygen or high_ammonia:
        levels.append(AlertSeverity.CRITICAL if state in CRITICAL_PHASES else AlertSeverity.WARNING)

    if state in POSTMOLT_PHASES and reading.ph is not None:
        if not thresholds.ph_min <= reading.ph <= thresholds.ph_max:
            levels.append(AlertSeverity.WARNING)

    if state in CRITICAL_PHASES and reading.temperature_c is not None:
        if not thresholds.temp_min <= reading.temperature_c <= thresholds.temp_max:
            levels.append(AlertSeverity.WARNING)

    return max_severity(*levels)


class MoltRiskEngine:
    def __init__(
        self,
        tank_id: str,
        timing: MoltTiming = DEFAULT_TIMING,
        seen_capacity: int = settings.MOLT_SEEN_CAPACITY,
        review_capacity: int = 100,
    ) -> None:
        self.tank_id = tank_id
        self.timing = timing
        self._seen_capacity = seen_capacity
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._pending: deque[MoltEvent] = deque(maxlen=review_capacity)

        self._state = MoltState.NONE
        self._anchor: datetime | None = None           # end of the latest ecdysis
        self._ecdysis_started_at: datetime | None = None
        self._last_event_at: datetime | None = None
        self._last_transition: datetime | None = None
        self._evaluated_at: datetime | None = None
        self._event_id: str | None = None
        self._low_confidence = False
        self._overdue = False
        self._reading: WaterReading | None = None
        self._thresholds: Thresholds | None = None

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> MoltState:
        return self._state

    @property
    def pending_review(self) -> list[MoltEvent]:
        """Low-confidence detections awaiting manual review, oldest first."""
        return list(self._pending)

    @property
    def snapshot(self) -> MoltRiskSnapshot:
        return self._snapshot(self._evaluated_at)

    def next_check_interval(self) -> timedelta:
        if self._state in CRITICAL_PHASES:
            return self.timing.critical_check_interval
        return self.timing.check_interval

    def remaining_window(self, now: datetime | None) -> timedelta | None:
        """Time left in the current post-molt window, clamped at zero."""
        if self._state == MoltState.NONE or self._anchor is None or now is None:
            return None
        now = _utc(now)
        if self._state == MoltState.POSTMOLT_RISK:
            boundary = self.timing.high_risk_window
        elif self._state == MoltState.POSTMOLT_SAFE:
            boundary = self.timing.total_window
        else:
            return None
        return max(boundary - self._elapsed(now), timedelta(0))

    # ── Inputs ────────────────────────────────────────────────────────────────

    def apply_event(
        self,
        event: MoltEvent | Mapping[str, Any],
        now: datetime | None = None,
    ) -> MoltUpdate:
        now = _utc(now)
        previous = self._state

        if not isinstance(event, MoltEvent):
            try:
                event = MoltEvent.model_validate(event)
            except ValidationError as exc:
                return self._reject(previous, f"invalid payload: {exc.error_count()} error(s)")

        problem = self._malformed(event)
        if problem:
            return self._reject(previous, problem, event.id)

        if event.id in self._seen:
            logger.info("Tank %s: duplicate molt event %s ignored", self.tank_id, event.id)
            return self._result(EventOutcome.DUPLICATE, previous, reason="already applied")

        if self._last_event_at is not None and event.observed_at < self._last_event_at:
            self._remember(event.id)
            logger.info(
                "Tank %s: stale molt event %s (%s) older than %s",
                self.tank_id, event.id, event.observed_at.isoformat(), self._last_event_at.isoformat(),
            )
            return self._result(EventOutcome.STALE, previous, reason="older than last applied event")

        if event.confidence < self.timing.min_detection_confidence:
            return self._hold_for_review(event, previous)

        low_confidence = event.confidence < self.timing.high_confidence_threshold
        outcome = EventOutcome.APPLIED_LOW_CONFIDENCE if low_confidence else EventOutcome.APPLIED

        # Bookkeeping is committed only once the transition has gone through
        new_state, since = self._observe(event, now)
        alerts = self._move_to(new_state, since, event, low_confidence)
        self._pending = deque((e for e in self._pending if e.id != event.id), maxlen=self._pending.maxlen)
        self._remember(event.id)
        self._last_event_at = event.observed_at
        self._event_id = event.id
        self._low_confidence = low_confidence
        alerts += self._check_overdue(now)
        self._evaluated_at = now

        logger.info(
            "Tank %s: molt event %s (%s, confidence %.2f) applied → %s",
            self.tank_id, event.id, event.state.value, event.confidence, self._state.value,
        )
        return self._result(outcome, previous, alerts)

    def tick(self, now: datetime | None = None) -> MoltUpdate:
        now = _utc(now)
        previous = self._state
        alerts: list[Alert] = []
        if self._anchor is not None:
            new_state, since = self._derive(now)
            alerts += self._move_to(new_state, since)
        alerts += self._check_overdue(now)
        self._evaluated_at = now
        return self._result(EventOutcome.TICK, previous, alerts)

    def update_water(self, reading: WaterReading, thresholds: Thresholds) -> AlertSeverity:
        """Record the latest reading and limits; returns the resulting water risk."""
        self._reading = reading
        self._thresholds = thresholds
        return water_risk_for(self._state, reading, thresholds)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _malformed(self, event: MoltEvent) -> str | None:
        # Events built with model_construct skip validation, so check again here
        if event.tank_id != self.tank_id:
            return f"event for tank {event.tank_id}"
        if not 0.0 <= event.confidence <= 1.0:
            return f"confidence {event.confidence} outside [0, 1]"
        if event.started_at.tzinfo is None or (event.ended_at is not None and event.ended_at.tzinfo is None):
            return "timestamps must be timezone-aware"
        if event.ended_at is not None and event.ended_at < event.started_at:
            return "ended_at is before started_at"
        return None

    def _reject(self, previous: MoltState, reason: str, event_id: str | None = None) -> MoltUpdate:
        logger.warning("Tank %s: rejected molt event %s: %s", self.tank_id, event_id or "<unparsed>", reason)
        return self._result(EventOutcome.REJECTED, previous, reason=reason)

    def _hold_for_review(self, event: MoltEvent, previous: MoltState) -> MoltUpdate:
        if any(e.id == event.id for e in self._pending):
            return self._result(EventOutcome.DUPLICATE, previous, reason="already pending review")
        self._pending.append(event)
        logger.info(
            "Tank %s: molt event %s below detection confidence (%.2f < %.2f), held for review",
            self.tank_id, event.id, event.confidence, self.timing.min_detection_confidence,
        )
        return self._result(EventOutcome.PENDING_REVIEW, previous, reason="confidence below minimum")

    def _remember(self, event_id: str) -> None:
        self._seen[event_id] = None
        while len(self._seen) > self._seen_capacity:
            self._seen.popitem(last=False)

    def _elapsed(self, now: datetime) -> timedelta:
        return max(now - self._anchor, timedelta(0))

    def _derive(self, now: datetime) -> tuple[MoltState, datetime]:
        """Post-molt state for `now`, with the time that state began."""
        elapsed = self._elapsed(now)
        if elapsed < self.timing.high_risk_window:
            return MoltState.POSTMOLT_RISK, self._anchor
        if elapsed < self.timing.total_window:
            return MoltState.POSTMOLT_SAFE, self._anchor + self.timing.high_risk_window
        return MoltState.NONE, self._anchor + self.timing.total_window

    def _observe(self, event: MoltEvent, now: datetime) -> tuple[MoltState, datetime]:
        if event.state == MoltState.ECDYSIS:
            self._ecdysis_started_at = event.started_at
            self._overdue = False
            if event.ended_at is None:
                self._anchor = None
                return MoltState.ECDYSIS, event.started_at
            self._anchor = event.ended_at
            return self._derive(now)

        if event.state == MoltState.POSTMOLT_RISK:
            if self._anchor is None:
                self._anchor = event.started_at
            return self._derive(now)

        if event.state == MoltState.POSTMOLT_SAFE:
            if self._anchor is None:
                self._anchor = event.started_at - self.timing.high_risk_window
            return self._derive(now)

        # PREMOLT starts a new cycle, NONE ends the current one
        self._anchor = None
        self._ecdysis_started_at = None
        self._overdue = False
        return event.state, event.started_at

    def _move_to(
        self,
        new_state: MoltState,
        since: datetime,
        event: MoltEvent | None = None,
        low_confidence: bool = False,
    ) -> list[Alert]:
        if new_state == MoltState.NONE:
            self._anchor = None
            self._ecdysis_started_at = None
            self._overdue = False
        if new_state == self._state:
            return []

        old = self._state
        self._state = new_state
        self._last_transition = since
        logger.info("Tank %s: molt state %s → %s", self.tank_id, old.value, new_state.value)

        risk = risk_for_state(new_state)
        if severity_rank(risk) < severity_rank(AlertSeverity.WARNING):
            return []
        message = f"{state_display_name(new_state)}: {short_guidance(new_state, risk)}"
        if event is not None and low_confidence:
            message += f" (lower confidence detection: {event.confidence:.0%})"
        source = event.id if event is not None else "timer"
        return [self._molt_alert(risk, message, since, f"{source}:{new_state.value}:{since.isoformat()}")]

    def _check_overdue(self, now: datetime) -> list[Alert]:
        if self._state != MoltState.ECDYSIS or self._anchor is not None or self._overdue:
            return []
        if self._ecdysis_started_at is None:
            return []
        running = now - self._ecdysis_started_at
        if running <= self.timing.max_ecdysis_duration:
            return []

        self._overdue = True
        hours = running.total_seconds() / 3600
        logger.warning(
            "Tank %s: ecdysis running %.1fh without completion (max %.1fh)",
            self.tank_id, hours, self.timing.max_ecdysis_duration.total_seconds() / 3600,
        )
        message = (
            f"Ecdysis running for {hours:.1f}h without completion: "
            f"{emergency_guidance(MoltState.ECDYSIS)}"
        )
        stamp = f"{self._event_id}:overdue:{self._ecdysis_started_at.isoformat()}"
        return [self._molt_alert(AlertSeverity.CRITICAL, message, now, stamp)]

    def _molt_alert(self, severity: AlertSeverity, message: str, at: datetime, stamp: str) -> Alert:
        return Alert(
            id=alert_id(self.tank_id, MOLT_PARAMETER, severity.value, stamp),
            tank_id=self.tank_id,
            parameter=MOLT_PARAMETER,
            severity=severity,
            message=message,
            timestamp=at,
        )

    def _snapshot(self, now: datetime | None) -> MoltRiskSnapshot:
        return MoltRiskSnapshot(
            tank_id=self.tank_id,
            state=self._state,
            risk=risk_for_state(self._state),
            remaining_window=self.remaining_window(now),
            last_transition=self._last_transition,
            ecdysis_started_at=self._ecdysis_started_at,
            ecdysis_ended_at=self._anchor,
            ecdysis_overdue=self._overdue,
            low_confidence=self._low_confidence,
            water_risk=water_risk_for(self._state, self._reading, self._thresholds),
            current_event_id=self._event_id,
        )

    def _result(
        self,
        outcome: EventOutcome,
        previous: MoltState,
        alerts: list[Alert] | None = None,
        reason: str | None = None,
    ) -> MoltUpdate:
        return MoltUpdate(
            outcome=outcome,
            snapshot=self.snapshot,
            previous_state=previous,
            alerts=alerts or [],
            reason=reason,
        )
