"""
config/water.py
───────────────
Water-quality parameter registry and default tank limits.

Evaluation order is the declaration order of PARAMETERS. Each parameter has a
fixed violation severity (no magnitude-based escalation):

  pH                 below min or above max  → WARNING
  Dissolved Oxygen   below min               → CRITICAL
  Salinity           below min or above max  → WARNING
  Ammonia            above max               → CRITICAL
  Temperature        below min or above max  → WARNING
  Water Level        below min or above max  → WARNING
  TDS                below min or above max  → WARNING
  Turbidity          above max               → WARNING

Default limits follow mud crab aquaculture guidance.
"""
from dataclasses import dataclass
from enum import Enum

from config.alerts import AlertSeverity


class RuleKind(str, Enum):
    RANGE = "range"   # below min or above max
    MIN = "min"       # below min only
    MAX = "max"       # above max only


@dataclass(frozen=True)
class WaterParameter:
    """One monitored parameter: reading field, threshold fields, display info."""
    name: str                 # display / alert parameter name
    field: str                # attribute on WaterReading
    unit: str
    rule: RuleKind
    severity: AlertSeverity
    min_field: str | None = None   # attribute on Thresholds
    max_field: str | None = None
    decimals: int = 2


PARAMETERS: tuple[WaterParameter, ...] = (
    WaterParameter("pH", "ph", "", RuleKind.RANGE, AlertSeverity.WARNING, "ph_min", "ph_max"),
    WaterParameter("Dissolved Oxygen", "dissolved_oxygen_mg_l", "mg/L", RuleKind.MIN,
                   AlertSeverity.CRITICAL, min_field="do_min"),
    WaterParameter("Salinity", "salinity_ppt", "ppt", RuleKind.RANGE, AlertSeverity.WARNING,
                   "salinity_min", "salinity_max"),
    WaterParameter("Ammonia", "ammonia_mg_l", "mg/L", RuleKind.MAX, AlertSeverity.CRITICAL,
                   max_field="ammonia_max"),
    WaterParameter("Temperature", "temperature_c", "°C", RuleKind.RANGE, AlertSeverity.WARNING,
                   "temp_min", "temp_max", decimals=1),
    WaterParameter("Water Level", "water_level_cm", "cm", RuleKind.RANGE, AlertSeverity.WARNING,
                   "level_min", "level_max", decimals=1),
    WaterParameter("TDS", "tds_ppm", "ppm", RuleKind.RANGE, AlertSeverity.WARNING,
                   "tds_min", "tds_max", decimals=0),
    WaterParameter("Turbidity", "turbidity_ntu", "NTU", RuleKind.MAX, AlertSeverity.WARNING,
                   max_field="turbidity_max", decimals=1),
)

PARAMETER_BY_NAME: dict[str, WaterParameter] = {p.name: p for p in PARAMETERS}

# ── Mud crab defaults ─────────────────────────────────────────────────────────
DEFAULT_LIMITS: dict[str, float] = {
    "ph_min": 7.5,
    "ph_max": 8.5,
    "do_min": 5.0,
    "salinity_min": 15.0,
    "salinity_max": 25.0,
    "ammonia_max": 0.1,
    "temp_min": 26.0,
    "temp_max": 30.0,
    "level_min": 25.0,
    "level_max": 35.0,
    "tds_min": 300.0,
    "tds_max": 1_500.0,
    "turbidity_max": 25.0,
}
