"""
src/alerts/dispatcher.py
────────────────────────
Deduplicating, rate-limited alert dispatcher.

submit() handles one batch, most severe first:
  - id already notified             → skipped
  - CRITICAL                        → notified immediately, never throttled
  - other severities                → notified only when the last notification of
                                      any severity in the cooldown scope is older
                                      than the cooldown; otherwise deferred and
                                      retried with the next batch

Cooldown scope: "global" (one timer), "tank" (per tank) or "parameter"
(per tank and parameter).

The notified-set is bounded; the oldest ids are evicted first. A failing
notifier is logged per alert and never retried here: the alert is not marked
as notified, so the next evaluation that still reports it tries again.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from config.alerts import COOLDOWN_SCOPES, AlertSeverity, severity_rank
from config.settings import settings
from src.alerts.notifier import Notifier
from src.data.models import Alert, DispatchResult

logger = logging.getLogger(__name__)

AlertListener = Callable[[Alert], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AlertDispatcher:
    def __init__(
        self,
        notifier: Notifier,
        cooldown: timedelta = timedelta(seconds=settings.NOTIFY_COOLDOWN_S),
        scope: str = settings.COOLDOWN_SCOPE,
        capacity: int = settings.NOTIFIED_CAPACITY,
        deferred_capacity: int = settings.DEFERRED_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if scope not in COOLDOWN_SCOPES:
            raise ValueError(f"unknown cooldown scope {scope!r}, expected one of {COOLDOWN_SCOPES}")
        if capacity < 1:
            raise ValueError("notified-set capacity must be at least 1")
        self.notifier = notifier
        self.cooldown = cooldown
        self.scope = scope
        self.capacity = capacity
        self.deferred_capacity = deferred_capacity
        self._clock = clock

        self._lock = threading.RLock()
        self._notified: OrderedDict[str, tuple[str, str]] = OrderedDict()  # id → (tank, parameter)
        self._deferred: OrderedDict[tuple[str, str], Alert] = OrderedDict()
        self._last_sent: dict[object, datetime] = {}
        self._listeners: list[AlertListener] = []

        self._stats = {"notified": 0, "deferred": 0, "skipped": 0, "failed": 0, "evicted": 0}

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                **self._stats,
                "tracked_ids": len(self._notified),
                "pending_deferred": len(self._deferred),
                "scope": self.scope,
                "cooldown_s": self.cooldown.total_seconds(),
            }

    def was_notified(self, alert_id: str) -> bool:
        with self._lock:
            return alert_id in self._notified

    @property
    def deferred(self) -> list[Alert]:
        with self._lock:
            return list(self._deferred.values())

    def add_listener(self, listener: AlertListener) -> None:
        """Register a callback that receives every alert actually notified."""
        with self._lock:
            self._listeners.append(listener)

    # ── Dispatch ──────────────────────────────────────────────────────────────

    def submit(self, alerts: Iterable[Alert], now: datetime | None = None) -> DispatchResult:
        with self._lock:
            now = now or self._clock()
            result = DispatchResult()

            # Deferred alerts rejoin the batch; a newer alert for the same slot replaces them
            pending: OrderedDict[tuple[str, str], Alert] = OrderedDict(self._deferred)
            self._deferred.clear()
            fresh: list[Alert] = []
            for alert in alerts:
                key = (alert.tank_id, alert.parameter)
                if key in pending:
                    del pending[key]
                fresh.append(alert)

            batch = sorted([*pending.values(), *fresh], key=lambda a: -severity_rank(a.severity))
            for alert in batch:
                self._dispatch_one(alert, now, result)
            return result

    def _dispatch_one(self, alert: Alert, now: datetime, result: DispatchResult) -> None:
        if alert.id in self._notified:
            self._stats["skipped"] += 1
            result.skipped.append(alert)
            return

        critical = alert.severity == AlertSeverity.CRITICAL
        scope_key = self._scope_key(alert)
        if not critical:
            last = self._last_sent.get(scope_key)
            if last is not None and now - last <= self.cooldown:
                self._defer(alert)
                result.deferred.append(alert)
                return

        try:
            self.notifier.show(alert)
        except Exception:
            logger.exception(
                "Notifier failed for alert %s (%s, tank %s)", alert.id, alert.parameter, alert.tank_id
            )
            self._stats["failed"] += 1
            result.failed.append(alert)
            return

        self._last_sent[scope_key] = now
        self._remember(alert)
        self._stats["notified"] += 1
        result.notified.append(alert)
        self._publish(alert)

    def _scope_key(self, alert: Alert) -> object:
        if self.scope == "tank":
            return alert.tank_id
        if self.scope == "parameter":
            return (alert.tank_id, alert.parameter)
        return None

    def _defer(self, alert: Alert) -> None:
        key = (alert.tank_id, alert.parameter)
        self._deferred.pop(key, None)
        self._deferred[key] = alert
        while len(self._deferred) > self.deferred_capacity:
            _, dropped = self._deferred.popitem(last=False)
            logger.debug("Deferred queue full, dropped alert %s (%s)", dropped.id, dropped.parameter)
        self._stats["deferred"] += 1
        logger.debug("Deferred %s alert %s for tank %s", alert.severity.value, alert.parameter, alert.tank_id)

    def _remember(self, alert: Alert) -> None:
        self._notified[alert.id] = (alert.tank_id, alert.parameter)
        while len(self._notified) > self.capacity:
            self._notified.popitem(last=False)
            self._stats["evicted"] += 1

    def _publish(self, alert: Alert) -> None:
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                logger.exception("Alert listener %r failed", listener)

    # ── Clearing ──────────────────────────────────────────────────────────────

    def resolve(self, parameter: str, tank_id: str) -> int:
        """
        Clear the notification slot for a parameter that is no longer violated.

        Removes the matching ids from the notified-set (so a recurrence is
        notified again) and drops any deferred alert for that slot. Returns
        the number of ids removed.
        """
        with self._lock:
            try:
                self.notifier.clear(parameter, tank_id)
            except Exception:
                logger.exception("Notifier failed to clear %s for tank %s", parameter, tank_id)

            stale = [i for i, slot in self._notified.items() if slot == (tank_id, parameter)]
            for alert_id in stale:
                del self._notified[alert_id]
            self._deferred.pop((tank_id, parameter), None)
            if stale:
                logger.info("Resolved %s for tank %s (%d id(s) released)", parameter, tank_id, len(stale))
            return len(stale)

    def clear_tank(self, tank_id: str) -> None:
        """Clear every notification for a tank and forget its dedup state."""
        with self._lock:
            try:
                self.notifier.clear_all(tank_id)
            except Exception:
                logger.exception("Notifier failed to clear tank %s", tank_id)

            for alert_id in [i for i, slot in self._notified.items() if slot[0] == tank_id]:
                del self._notified[alert_id]
            for key in [k for k in self._deferred if k[0] == tank_id]:
                del self._deferred[key]
            for key in [k for k in self._last_sent if k == tank_id or (isinstance(k, tuple) and k[0] == tank_id)]:
                del self._last_sent[key]

    def reset(self) -> None:
        """Forget all dedup, deferral and cooldown state."""
        with self._lock:
            self._notified.clear()
            self._deferred.clear()
            self._last_sent.clear()
            logger.info("Alert dispatcher state reset")
