"""
src/alerts/notifier.py
──────────────────────
Operator notification channel.

The dispatcher talks to any object with show / clear / clear_all. Concrete
notifiers raise NotifierError (or anything else) when the channel refuses a
notification; the dispatcher logs it and moves on.
"""
from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from config.alerts import SEVERITY_LABELS_EN, AlertSeverity
from src.data.models import Alert

logger = logging.getLogger(__name__)


class NotifierError(RuntimeError):
    """Notification channel unavailable or permission denied."""


@runtime_checkable
class Notifier(Protocol):
    def show(self, alert: Alert) -> None: ...

    def clear(self, parameter: str, tank_id: str) -> None: ...

    def clear_all(self, tank_id: str) -> None: ...


class LoggingNotifier:
    """
    Notifier that writes each notification to the log and keeps the visible
    slots (one per tank and parameter) in memory.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.active: dict[tuple[str, str], Alert] = {}

    def show(self, alert: Alert) -> None:
        if not self.enabled:
            raise NotifierError("notifications disabled")
        self.active[(alert.tank_id, alert.parameter)] = alert
        label = SEVERITY_LABELS_EN[alert.severity]
        level = logging.WARNING if alert.severity == AlertSeverity.CRITICAL else logging.INFO
        logger.log(level, "[%s] %s: %s (Tank: %s)", label, alert.parameter, alert.message, alert.tank_id)

    def clear(self, parameter: str, tank_id: str) -> None:
        if self.active.pop((tank_id, parameter), None) is not None:
            logger.info("Cleared %s notification for tank %s", parameter, tank_id)

    def clear_all(self, tank_id: str) -> None:
        for key in [k for k in self.active if k[0] == tank_id]:
            del self.active[key]
        logger.info("Cleared all notifications for tank %s", tank_id)
