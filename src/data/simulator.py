"""
src/data/simulator.py
─────────────────────
Synthetic water-quality telemetry and molt observations for mud crab tanks.

Generates:
  - Reproducible readings around tank baselines (numpy Generator, SIMULATION_SEED)
  - Excursion episodes that push one parameter out of range for a while
  - Occasional missing sensor values (dropout)
  - A scripted molt cycle: PREMOLT → ECDYSIS (open) → ECDYSIS (ended)

Async sources (SimulatedTelemetrySource, ScriptedMoltSource) wrap the
generators for the tank monitor.
"""
from __future__ import annotations

import asyncio
import uuid
import zlib
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import numpy as np
import pandas as pd

from config.settings import settings
from config.water import PARAMETERS
from src.data.models import MoltEvent, MoltState, WaterReading

# ── Baseline operating points ─────────────────────────────────────────────────

BASELINES: dict[str, float] = {
    "ph": 8.0,
    "dissolved_oxygen_mg_l": 6.5,
    "salinity_ppt": 20.0,
    "ammonia_mg_l": 0.03,
    "temperature_c": 28.0,
    "water_level_cm": 30.0,
    "tds_ppm": 900.0,
    "turbidity_ntu": 8.0,
}

# Noise scales for normal operation (σ)
NOISE: dict[str, float] = {
    "ph": 0.08,
    "dissolved_oxygen_mg_l": 0.25,
    "salinity_ppt": 0.6,
    "ammonia_mg_l": 0.01,
    "temperature_c": 0.3,
    "water_level_cm": 0.5,
    "tds_ppm": 40.0,
    "turbidity_ntu": 1.5,
}

# Offset applied at the peak of an excursion, per parameter
EXCURSION_OFFSETS: dict[str, float] = {
    "ph": -1.2,
    "dissolved_oxygen_mg_l": -3.0,
    "salinity_ppt": 8.0,
    "ammonia_mg_l": 0.4,
    "temperature_c": 4.0,
    "water_level_cm": -8.0,
    "tds_ppm": 900.0,
    "turbidity_ntu": 30.0,
}

DECIMALS: dict[str, int] = {p.field: max(p.decimals, 2) for p in PARAMETERS}


@dataclass
class Excursion:
    field: str
    start_step: int
    duration_steps: int
    offset: float


def tank_rng(tank_id: str, seed: int = settings.SIMULATION_SEED) -> np.random.Generator:
    """Independent, reproducible stream per tank."""
    return np.random.default_rng([seed, zlib.crc32(tank_id.encode())])


def plan_excursions(total_steps: int, rng: np.random.Generator, max_events: int = 2) -> list[Excursion]:
    """Randomly plan 0–max_events excursions within the run."""
    if total_steps < 4:
        return []
    fields = list(BASELINES)
    events: list[Excursion] = []
    for _ in range(int(rng.integers(0, max_events + 1))):
        field = str(rng.choice(fields))
        start = int(rng.integers(total_steps // 4, total_steps * 3 // 4))
        duration = min(int(rng.integers(2, max(3, total_steps // 4))), total_steps - start)
        events.append(Excursion(field, start, duration, EXCURSION_OFFSETS[field]))
    events.sort(key=lambda e: e.start_step)
    return events


def _excursion_offset(step: int, excursions: Iterable[Excursion]) -> dict[str, float]:
    offsets: dict[str, float] = {}
    for ex in excursions:
        if ex.start_step <= step < ex.start_step + ex.duration_steps:
            # ramp up over the first half, hold for the rest
            progress = (step - ex.start_step + 1) / max(1, ex.duration_steps // 2)
            offsets[ex.field] = offsets.get(ex.field, 0.0) + ex.offset * min(1.0, progress)
    return offsets


def generate_reading(
    tank_id: str,
    ts: datetime,
    rng: np.random.Generator,
    offsets: Mapping[str, float] | None = None,
    dropout: float = 0.0,
) -> WaterReading:
    offsets = offsets or {}
    values: dict[str, float | None] = {}
    for field, base in BASELINES.items():
        if dropout and rng.random() < dropout:
            values[field] = None
            continue
        value = base + offsets.get(field, 0.0) + rng.normal(0, NOISE[field])
        upper = 14.0 if field == "ph" else None
        values[field] = round(float(np.clip(value, 0.0, upper)), DECIMALS[field])
    return WaterReading(tank_id=tank_id, timestamp=ts, **values)


# ── Public API ────────────────────────────────────────────────────────────────

def generate_readings(
    tank_id: str,
    steps: int,
    start: datetime | None = None,
    step: timedelta = timedelta(minutes=1),
    seed: int = settings.SIMULATION_SEED,
    excursions: bool = True,
    dropout: float = 0.02,
) -> list[WaterReading]:
    """Generate `steps` consecutive readings for one tank."""
    rng = tank_rng(tank_id, seed)
    start = start or datetime.now(tz=UTC).replace(second=0, microsecond=0)
    planned = plan_excursions(steps, rng) if excursions else []
    return [
        generate_reading(tank_id, start + i * step, rng, _excursion_offset(i, planned), dropout)
        for i in range(steps)
    ]


def molt_cycle(
    tank_id: str,
    start: datetime,
    crab_id: str = "crab_01",
    premolt_lead: timedelta = timedelta(hours=12),
    ecdysis_duration: timedelta = timedelta(hours=2),
    confidence: float = 0.95,
) -> list[MoltEvent]:
    """
    Scripted detections for one molt: PREMOLT at `start`, ECDYSIS opening
    `premolt_lead` later, and the same ECDYSIS closing after `ecdysis_duration`.
    """
    ecdysis_start = start + premolt_lead

    def _event(state: MoltState, started: datetime, ended: datetime | None, note: str) -> MoltEvent:
        return MoltEvent(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"{tank_id}/{crab_id}/{state.value}/{started.isoformat()}/{ended}")),
            tank_id=tank_id,
            crab_id=crab_id,
            state=state,
            confidence=confidence,
            started_at=started,
            ended_at=ended,
            evidence_uris=[f"sim://{tank_id}/{crab_id}/{state.value}.jpg"],
            notes=note,
        )

    return [
        _event(MoltState.PREMOLT, start, None, "Carapace darkening, reduced feeding"),
        _event(MoltState.ECDYSIS, ecdysis_start, None, "Shell split observed"),
        _event(MoltState.ECDYSIS, ecdysis_start, ecdysis_start + ecdysis_duration, "Exuvia shed"),
    ]


def to_dataframe(readings: list[WaterReading]) -> pd.DataFrame:
    """Convert a list of WaterReadings to a pandas DataFrame."""
    return pd.DataFrame([r.model_dump() for r in readings])


def summarize(readings: list[WaterReading]) -> pd.DataFrame:
    """Per-tank mean / min / max of every parameter (missing values ignored)."""
    df = to_dataframe(readings)
    if df.empty:
        return df
    fields = [p.field for p in PARAMETERS]
    return df.groupby("tank_id")[fields].agg(["mean", "min", "max"]).round(2)


# ── Async sources ─────────────────────────────────────────────────────────────

class SimulatedTelemetrySource:
    """Emits one reading per tank every `step_s` seconds, stamped with wall time."""

    def __init__(
        self,
        step_s: float = settings.SIMULATION_STEP_S,
        seed: int = settings.SIMULATION_SEED,
        excursion_steps: int = 60,
        dropout: float = 0.02,
    ) -> None:
        self.step_s = step_s
        self.seed = seed
        self.excursion_steps = excursion_steps
        self.dropout = dropout
        self.history: list[WaterReading] = []

    async def readings(self, tank_id: str) -> AsyncIterator[WaterReading]:
        rng = tank_rng(tank_id, self.seed)
        planned = plan_excursions(self.excursion_steps, rng)
        step = 0
        while True:
            offsets = _excursion_offset(step % self.excursion_steps, planned)
            reading = generate_reading(tank_id, datetime.now(tz=UTC), rng, offsets, self.dropout)
            self.history.append(reading)
            yield reading
            step += 1
            await asyncio.sleep(self.step_s)


class ScriptedMoltSource:
    """
    Replays (delay_s, event) pairs per tank, then stays silent.

    Events may be MoltEvent instances or raw dicts (validated by the engine).
    """

    def __init__(self, scripts: Mapping[str, list[tuple[float, MoltEvent | dict]]] | None = None) -> None:
        self.scripts = dict(scripts or {})

    async def events(self, tank_id: str) -> AsyncIterator[MoltEvent | dict]:
        for delay, event in self.scripts.get(tank_id, []):
            await asyncio.sleep(delay)
            yield event
        await asyncio.Event().wait()


def demo_molt_script(tank_id: str, now: datetime | None = None) -> list[tuple[float, MoltEvent | dict]]:
    """
    A short demo script: the crab finished ecdysis almost six hours ago, so the
    next few ticks carry the tank from POSTMOLT_RISK into POSTMOLT_SAFE. A
    low-confidence detection and a malformed payload exercise the review and
    rejection paths.
    """
    now = now or datetime.now(tz=UTC)
    ended = now - timedelta(hours=6) + timedelta(seconds=8)
    cycle = molt_cycle(tank_id, ended - timedelta(hours=14), ecdysis_duration=timedelta(hours=2))
    doubtful = cycle[0].model_copy(update={"id": f"{tank_id}-doubtful", "confidence": 0.4, "started_at": now})
    malformed = {
        "id": f"{tank_id}-bad",
        "tank_id": tank_id,
        "state": "ecdysis",
        "confidence": 1.7,
        "started_at": now.isoformat(),
    }
    return [(0.5, cycle[0]), (0.5, cycle[1]), (0.5, cycle[2]), (0.5, cycle[2]), (1.0, doubtful), (1.0, malformed)]
