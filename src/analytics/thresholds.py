"""
src/analytics/thresholds.py
────────────────────────────
Threshold evaluator for water readings.

Provides:
  - evaluate_all()        : every violated rule, in fixed parameter order
  - evaluate()            : the single most severe violation (earliest on ties)
  - validate_thresholds() : configuration-time check of min <= max

Evaluation is pure: absent sensors and in-range values produce no alert, and
the same inputs always produce the same alerts (ids included).
"""
from __future__ import annotations

import uuid
from collections.abc import Mapping

from pydantic import ValidationError

from config.alerts import severity_rank
from config.water import PARAMETERS, RuleKind, WaterParameter
from src.data.models import Alert, Thresholds, WaterReading

_ALERT_NAMESPACE = uuid.UUID("6f0c5d1e-2b7a-4c1e-9a53-0d6e8f4b2a71")


class ThresholdsError(ValueError):
    """Raised when a thresholds configuration is invalid (e.g. min > max)."""


def alert_id(tank_id: str, parameter: str, severity: str, stamp: str) -> str:
    """Deterministic alert id for one occurrence."""
    return str(uuid.uuid5(_ALERT_NAMESPACE, f"{tank_id}:{parameter}:{severity}:{stamp}"))


def _fmt(value: float, param: WaterParameter) -> str:
    text = f"{value:.{param.decimals}f}"
    if not param.unit:
        return text
    sep = "" if param.unit.startswith("°") else " "
    return f"{text}{sep}{param.unit}"


def _check(reading: WaterReading, thresholds: Thresholds, param: WaterParameter) -> Alert | None:
    value = getattr(reading, param.field)
    if value is None:
        return None

    if param.rule in (RuleKind.RANGE, RuleKind.MIN):
        limit = getattr(thresholds, param.min_field)
        if value < limit:
            message = f"{param.name} ({_fmt(value, param)}) is below minimum threshold ({_fmt(limit, param)})"
            return _make_alert(reading, param, value, limit, message)

    if param.rule in (RuleKind.RANGE, RuleKind.MAX):
        limit = getattr(thresholds, param.max_field)
        if value > limit:
            message = f"{param.name} ({_fmt(value, param)}) exceeds maximum threshold ({_fmt(limit, param)})"
            return _make_alert(reading, param, value, limit, message)

    return None


def _make_alert(
    reading: WaterReading,
    param: WaterParameter,
    value: float,
    limit: float,
    message: str,
) -> Alert:
    return Alert(
        id=alert_id(reading.tank_id, param.name, param.severity.value, reading.timestamp.isoformat()),
        tank_id=reading.tank_id,
        parameter=param.name,
        severity=param.severity,
        message=message,
        timestamp=reading.timestamp,
        value=value,
        threshold=limit,
    )


# ── Public API ────────────────────────────────────────────────────────────────

def evaluate_all(reading: WaterReading, thresholds: Thresholds) -> list[Alert]:
    """Return one alert per violated parameter, in the fixed parameter order."""
    alerts: list[Alert] = []
    for param in PARAMETERS:
        alert = _check(reading, thresholds, param)
        if alert is not None:
            alerts.append(alert)
    return alerts


def evaluate(reading: WaterReading, thresholds: Thresholds) -> Alert | None:
    """
    Return the most severe violation, or None.

    Ties keep the earliest parameter in evaluation order (max() returns the
    first maximal element).
    """
    alerts = evaluate_all(reading, thresholds)
    if not alerts:
        return None
    return max(alerts, key=lambda a: severity_rank(a.severity))


def validate_thresholds(thresholds: Thresholds | Mapping[str, float]) -> Thresholds:
    """
    Validate a thresholds configuration.

    Accepts a Thresholds instance (re-validated, in case it was built with
    model_construct) or a mapping of limit fields. Raises ThresholdsError.
    """
    data = thresholds.model_dump() if isinstance(thresholds, Thresholds) else dict(thresholds)
    try:
        return Thresholds.model_validate(data)
    except ValidationError as exc:
        raise ThresholdsError(str(exc)) from exc
