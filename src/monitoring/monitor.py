"""
src/monitoring/monitor.py
─────────────────────────
Per-tank monitoring worker and the multi-tank service around it.

TankMonitor merges three inputs into one ordered inbox:

    telemetry readings ──┐
    molt events ─────────┼──▶ inbox ──▶ worker ──▶ evaluator / engine ──▶ dispatcher
    check-interval tick ─┘

The worker handles one input at a time, so nothing mutates the engine or the
episode table concurrently. Readings are coalesced: while one is waiting in
the inbox, newer readings only overwrite the latest-reading slot.

Handlers are plain synchronous methods (handle_reading / handle_event /
handle_tick) so they can be driven directly in tests.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from config.alerts import MOLT_PARAMETER, AlertSeverity
from config.molt import DEFAULT_TIMING, MoltTiming
from config.settings import settings
from config.water import PARAMETER_BY_NAME
from src.alerts.dispatcher import AlertDispatcher
from src.analytics.thresholds import evaluate_all
from src.data.models import (
    Alert,
    DispatchResult,
    MoltEvent,
    MoltRiskSnapshot,
    MoltUpdate,
    Thresholds,
    WaterReading,
)
from src.molt.engine import MoltRiskEngine
from src.monitoring.latest import LatestValue
from src.monitoring.sources import MoltObservationSource, TelemetrySource, ThresholdsStore

logger = logging.getLogger(__name__)

_READING = "reading"
_EVENT = "event"
_TICK = "tick"
_THRESHOLDS = "thresholds"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TankMonitor:
    def __init__(
        self,
        tank_id: str,
        telemetry: TelemetrySource,
        molt_source: MoltObservationSource,
        thresholds_store: ThresholdsStore,
        dispatcher: AlertDispatcher,
        timing: MoltTiming = DEFAULT_TIMING,
        reconnect_delay_s: float = settings.RECONNECT_DELAY_S,
        tick_interval_s: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.tank_id = tank_id
        self.telemetry = telemetry
        self.molt_source = molt_source
        self.thresholds_store = thresholds_store
        self.dispatcher = dispatcher
        self.engine = MoltRiskEngine(tank_id, timing)
        self.reconnect_delay_s = reconnect_delay_s
        self.tick_interval_s = tick_interval_s   # overrides the engine cadence (demo runs)
        self._clock = clock

        self.latest_reading: LatestValue[WaterReading] = LatestValue()
        self.latest_snapshot: LatestValue[MoltRiskSnapshot] = LatestValue(self.engine.snapshot)

        self._thresholds: Thresholds = thresholds_store.get(tank_id)
        self._episodes: dict[str, Alert] = {}          # parameter → first alert of the open episode
        self._evaluated: WaterReading | None = None
        self._severity: dict[str, AlertSeverity] = {}
        self._inbox: asyncio.Queue[tuple[str, Any]] | None = None
        self._reading_queued = False
        self._tasks: list[asyncio.Task] = []

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    @property
    def snapshot(self) -> MoltRiskSnapshot:
        return self.latest_snapshot.get()

    def parameter_severity(self) -> dict[str, AlertSeverity]:
        """Current severity per parameter (INFO when not violated)."""
        current = {name: AlertSeverity.INFO for name in PARAMETER_BY_NAME}
        current.update(self._severity)
        current[MOLT_PARAMETER] = self.engine.snapshot.risk
        return current

    # ── Synchronous handlers ──────────────────────────────────────────────────

    def handle_reading(self, reading: WaterReading, now: datetime | None = None) -> DispatchResult:
        now = now or self._clock()
        self._evaluated = reading
        alerts = self._stabilize(reading, evaluate_all(reading, self._thresholds))
        water_risk = self.engine.update_water(reading, self._thresholds)
        if water_risk != self.snapshot.water_risk:
            self._publish_snapshot()
        return self.dispatcher.submit(alerts, now)

    def handle_event(self, event: MoltEvent | Mapping[str, Any], now: datetime | None = None) -> MoltUpdate:
        now = now or self._clock()
        update = self.engine.apply_event(event, now)
        self._after_molt_update(update, now)
        return update

    def handle_tick(self, now: datetime | None = None) -> MoltUpdate:
        now = now or self._clock()
        update = self.engine.tick(now)
        self._after_molt_update(update, now)
        return update

    def handle_thresholds(self, thresholds: Thresholds, now: datetime | None = None) -> DispatchResult | None:
        """Swap in new limits and re-evaluate the latest reading against them."""
        self._thresholds = thresholds
        reading = self._evaluated
        if reading is None:
            return None
        return self.handle_reading(reading, now)

    def _stabilize(self, reading: WaterReading, alerts: list[Alert]) -> list[Alert]:
        """
        Keep one alert id per violation episode.

        A violation that continues at the same severity reuses the first alert
        of its episode, so it is notified once. A parameter that is back in
        range is resolved. A missing sensor value leaves its episode open.
        """
        stable: list[Alert] = []
        violated = set()
        for alert in alerts:
            violated.add(alert.parameter)
            current = self._episodes.get(alert.parameter)
            if current is not None and current.severity == alert.severity:
                alert = current
            else:
                self._episodes[alert.parameter] = alert
            self._severity[alert.parameter] = alert.severity
            stable.append(alert)

        for parameter in list(self._episodes):
            if parameter in violated:
                continue
            if getattr(reading, PARAMETER_BY_NAME[parameter].field) is None:
                continue
            del self._episodes[parameter]
            self._severity[parameter] = AlertSeverity.INFO
            self.dispatcher.resolve(parameter, self.tank_id)
        return stable

    def _after_molt_update(self, update: MoltUpdate, now: datetime) -> None:
        if update.cleared:
            self.dispatcher.resolve(MOLT_PARAMETER, self.tank_id)
        # An empty batch still lets deferred alerts go out once the cooldown passes
        self.dispatcher.submit(update.alerts, now)
        self._publish_snapshot()

    def _publish_snapshot(self) -> None:
        self.latest_snapshot.set(self.engine.snapshot)

    # ── Async plumbing ────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self._inbox = asyncio.Queue()
        self._reading_queued = False
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"{self.tank_id}:worker"),
            asyncio.create_task(
                self._pump("telemetry", self.telemetry.readings, self._on_reading),
                name=f"{self.tank_id}:telemetry",
            ),
            asyncio.create_task(
                self._pump("molt", self.molt_source.events, self._on_event),
                name=f"{self.tank_id}:molt",
            ),
            asyncio.create_task(
                self._pump("thresholds", self.thresholds_store.observe, self._on_thresholds),
                name=f"{self.tank_id}:thresholds",
            ),
            asyncio.create_task(self._ticker(), name=f"{self.tank_id}:ticker"),
        ]
        logger.info("Monitoring started for tank %s", self.tank_id)

    async def stop(self) -> None:
        """Unsubscribe from the sources, cancel the timer, then stop the worker."""
        if not self._tasks:
            return
        worker, *feeds = self._tasks
        for task in feeds:
            task.cancel()
        await asyncio.gather(*feeds, return_exceptions=True)
        # Handlers never await, so cancelling the worker cannot interrupt one midway
        worker.cancel()
        await asyncio.gather(worker, return_exceptions=True)
        self._tasks = []
        logger.info("Monitoring stopped for tank %s", self.tank_id)

    async def drain(self) -> None:
        """Wait until every queued input has been handled."""
        if self._inbox is not None:
            await self._inbox.join()

    def _on_reading(self, reading: WaterReading) -> None:
        self.latest_reading.set(reading)
        if not self._reading_queued:
            self._reading_queued = True
            self._inbox.put_nowait((_READING, None))

    def _on_event(self, event: MoltEvent | Mapping[str, Any]) -> None:
        self._inbox.put_nowait((_EVENT, event))

    def _on_thresholds(self, thresholds: Thresholds) -> None:
        self._inbox.put_nowait((_THRESHOLDS, thresholds))

    async def _worker(self) -> None:
        while True:
            kind, payload = await self._inbox.get()
            try:
                if kind == _READING:
                    self._reading_queued = False
                    self.handle_reading(self.latest_reading.get())
                elif kind == _EVENT:
                    self.handle_event(payload)
                elif kind == _TICK:
                    self.handle_tick()
                elif kind == _THRESHOLDS:
                    self.handle_thresholds(payload)
            except Exception:
                logger.exception("Tank %s: failed to handle %s input", self.tank_id, kind)
            finally:
                self._inbox.task_done()

    async def _pump(
        self,
        name: str,
        subscribe: Callable[[str], AsyncIterator[Any]],
        deliver: Callable[[Any], None],
    ) -> None:
        while True:
            try:
                async with aclosing(subscribe(self.tank_id)) as stream:
                    async for item in stream:
                        deliver(item)
                logger.warning(
                    "Tank %s: %s stream ended, re-subscribing in %.1fs",
                    self.tank_id, name, self.reconnect_delay_s,
                )
            except Exception:
                logger.exception(
                    "Tank %s: %s stream failed, re-subscribing in %.1fs",
                    self.tank_id, name, self.reconnect_delay_s,
                )
            await asyncio.sleep(self.reconnect_delay_s)

    def _tick_delay(self) -> float:
        if self.tick_interval_s is not None:
            return self.tick_interval_s
        return self.engine.next_check_interval().total_seconds()

    async def _ticker(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            last_tick = loop.time()
            version = self.latest_snapshot.version
            # A state change moves the next tick to the new cadence, measured from the last tick
            while True:
                remaining = last_tick + self._tick_delay() - loop.time()
                if remaining <= 0:
                    break
                try:
                    version, _ = await asyncio.wait_for(self.latest_snapshot.wait_next(version), remaining)
                except TimeoutError:
                    break
            self._inbox.put_nowait((_TICK, None))


class MonitoringService:
    """Starts, stops and queries one TankMonitor per tank."""

    def __init__(
        self,
        telemetry: TelemetrySource,
        molt_source: MoltObservationSource,
        thresholds_store: ThresholdsStore,
        dispatcher: AlertDispatcher,
        timing: MoltTiming = DEFAULT_TIMING,
        **monitor_options: Any,
    ) -> None:
        self.telemetry = telemetry
        self.molt_source = molt_source
        self.thresholds_store = thresholds_store
        self.dispatcher = dispatcher
        self.timing = timing
        self.monitor_options = monitor_options
        self._monitors: dict[str, TankMonitor] = {}

    @property
    def tank_ids(self) -> list[str]:
        return list(self._monitors)

    def monitor(self, tank_id: str) -> TankMonitor:
        return self._monitors[tank_id]

    async def start(self, tank_id: str) -> TankMonitor:
        monitor = self._monitors.get(tank_id)
        if monitor is None:
            monitor = TankMonitor(
                tank_id,
                self.telemetry,
                self.molt_source,
                self.thresholds_store,
                self.dispatcher,
                timing=self.timing,
                **self.monitor_options,
            )
            self._monitors[tank_id] = monitor
        await monitor.start()
        return monitor

    async def stop(self, tank_id: str) -> None:
        monitor = self._monitors.pop(tank_id, None)
        if monitor is not None:
            await monitor.stop()

    async def stop_all(self) -> None:
        await asyncio.gather(*(self.stop(t) for t in list(self._monitors)))

    def snapshot(self, tank_id: str) -> MoltRiskSnapshot:
        return self._monitors[tank_id].snapshot

    def parameter_severity(self, tank_id: str) -> dict[str, AlertSeverity]:
        return self._monitors[tank_id].parameter_severity()
