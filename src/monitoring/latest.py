"""
src/monitoring/latest.py
────────────────────────
Single-slot, overwrite-on-write value holder for asyncio code.

A slow reader never sees a backlog: set() replaces whatever was there and
wait_next() returns only the most recent value.
"""
from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class LatestValue(Generic[T]):
    def __init__(self, initial: T | None = None) -> None:
        self._value: T | None = initial
        self._version = 0
        self._changed = asyncio.Event()

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> T | None:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._version += 1
        self._changed.set()

    async def wait_next(self, after_version: int) -> tuple[int, T]:
        """Wait for a value newer than `after_version`; returns (version, value)."""
        while self._version <= after_version:
            self._changed.clear()
            await self._changed.wait()
        return self._version, self._value
