"""
src/monitoring/sources.py
─────────────────────────
Collaborator interfaces consumed by the tank monitor, plus the in-memory
thresholds store.

  - TelemetrySource        : readings(tank_id)  → async stream of WaterReading
  - MoltObservationSource  : events(tank_id)    → async stream of MoltEvent (or raw dicts)
  - ThresholdsStore        : get(tank_id), observe(tank_id)

Streams are infinite from the monitor's point of view. When one ends or
raises, the monitor logs it and subscribes again after a delay.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from src.analytics.thresholds import validate_thresholds
from src.data.models import MoltEvent, Thresholds, WaterReading

logger = logging.getLogger(__name__)


class TelemetrySource(Protocol):
    def readings(self, tank_id: str) -> AsyncIterator[WaterReading]: ...


class MoltObservationSource(Protocol):
    def events(self, tank_id: str) -> AsyncIterator[MoltEvent | Mapping[str, Any]]: ...


class ThresholdsStore(Protocol):
    def get(self, tank_id: str) -> Thresholds: ...

    def observe(self, tank_id: str) -> AsyncIterator[Thresholds]: ...


class InMemoryThresholdsStore:
    """Per-tank thresholds; tanks without an entry use the defaults."""

    def __init__(self, initial: Mapping[str, Thresholds] | None = None) -> None:
        self._by_tank: dict[str, Thresholds] = {
            tank_id: validate_thresholds(t) for tank_id, t in (initial or {}).items()
        }
        self._watchers: dict[str, list[asyncio.Queue[Thresholds]]] = {}

    def get(self, tank_id: str) -> Thresholds:
        return self._by_tank.get(tank_id) or Thresholds()

    def set(self, tank_id: str, thresholds: Thresholds | Mapping[str, float]) -> Thresholds:
        """Validate and store; raises ThresholdsError before anything changes."""
        validated = validate_thresholds(thresholds)
        self._by_tank[tank_id] = validated
        for queue in self._watchers.get(tank_id, []):
            queue.put_nowait(validated)
        logger.info("Thresholds updated for tank %s", tank_id)
        return validated

    def update(self, tank_id: str, **limits: float) -> Thresholds:
        """Change some limits, keeping the rest."""
        return self.set(tank_id, {**self.get(tank_id).model_dump(), **limits})

    async def observe(self, tank_id: str) -> AsyncIterator[Thresholds]:
        queue: asyncio.Queue[Thresholds] = asyncio.Queue()
        self._watchers.setdefault(tank_id, []).append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[tank_id].remove(queue)
