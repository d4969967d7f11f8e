"""
app.py
──────
Crab Tank Monitor: simulated monitoring run.

Startup sequence:
  1. Configure logging
  2. Wire thresholds store, notifier, dispatcher and simulated sources
  3. Start one monitor per tank in TANK_IDS and run for DEMO_DURATION_S
  4. Stop all monitors and print a run summary (pandas)
"""
import asyncio
import logging

from config.settings import settings
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.notifier import LoggingNotifier
from src.data.models import Alert
from src.data.simulator import ScriptedMoltSource, SimulatedTelemetrySource, demo_molt_script, summarize
from src.molt.guidance import care_actions, compose_guidance, state_display_name
from src.monitoring.monitor import MonitoringService
from src.monitoring.sources import InMemoryThresholdsStore

# ── 1. Logging ────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("app")


async def run(duration_s: float = settings.DEMO_DURATION_S) -> None:
    # ── 2. Wiring ─────────────────────────────────────────────────────────────
    thresholds = InMemoryThresholdsStore()
    notifier = LoggingNotifier()
    dispatcher = AlertDispatcher(notifier)
    feed: list[Alert] = []
    dispatcher.add_listener(feed.append)

    telemetry = SimulatedTelemetrySource()
    molt_source = ScriptedMoltSource({tank: demo_molt_script(tank) for tank in settings.TANK_IDS})
    service = MonitoringService(
        telemetry,
        molt_source,
        thresholds,
        dispatcher,
        tick_interval_s=2.0,
    )

    # ── 3. Run ────────────────────────────────────────────────────────────────
    for tank_id in settings.TANK_IDS:
        await service.start(tank_id)
    logger.info("Monitoring %d tank(s) for %.0fs", len(settings.TANK_IDS), duration_s)
    await asyncio.sleep(duration_s)

    # ── 4. Summary ────────────────────────────────────────────────────────────
    for tank_id in settings.TANK_IDS:
        snap = service.snapshot(tank_id)
        print(f"\n{tank_id}: {state_display_name(snap.state)} (risk {snap.effective_risk.value})")
        print(f"  {compose_guidance(snap.state, snap.effective_risk, snap.remaining_window)}")
        for action in care_actions(snap.state):
            print(f"    - {action}")
        flagged = {p: s.value for p, s in service.parameter_severity(tank_id).items() if s.value != "info"}
        print(f"  parameters: {flagged or 'all within limits'}")
        pending = service.monitor(tank_id).engine.pending_review
        if pending:
            print(f"  pending review: {[e.id for e in pending]}")
    await service.stop_all()

    print(f"\nNotified alerts: {len(feed)}  dispatcher: {dispatcher.stats}")
    if telemetry.history:
        print(summarize(telemetry.history).to_string())


if __name__ == "__main__":
    asyncio.run(run())
