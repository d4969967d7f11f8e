"""
config/alerts.py
────────────────
Alert severity levels, ordering, and display configuration.
"""

from enum import Enum


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


SEVERITY_LABELS_EN: dict[str, str] = {
    AlertSeverity.INFO: "Info",
    AlertSeverity.WARNING: "Warning",
    AlertSeverity.CRITICAL: "Critical",
}

# Severity ordering for sorting (higher = more severe)
SEVERITY_ORDER: dict[str, int] = {
    AlertSeverity.CRITICAL: 3,
    AlertSeverity.WARNING: 2,
    AlertSeverity.INFO: 1,
}


def severity_rank(severity: AlertSeverity) -> int:
    return SEVERITY_ORDER[severity]


def max_severity(*severities: AlertSeverity) -> AlertSeverity:
    """Most severe of the given levels (INFO when called with nothing)."""
    return max(severities, key=severity_rank, default=AlertSeverity.INFO)


# Parameter name used for molt-lifecycle alerts (notification slot per tank)
MOLT_PARAMETER = "Molt"

# Cooldown scopes accepted by the dispatcher
COOLDOWN_SCOPES = ("global", "tank", "parameter")
