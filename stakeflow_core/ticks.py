"""
Tick sources.

The engine never fetches time itself; it is handed a callable that
returns the current tick.  Two sources ship with the package:

  - ``ManualTicks``    — advanced explicitly (tests, simulations)
  - ``WallClockTicks`` — whole ``tick_seconds`` intervals since ``origin``
"""

from __future__ import annotations

import time
from typing import Callable, Optional

TickSource = Callable[[], int]


class ManualTicks:
    """A tick counter that only moves when told to."""

    def __init__(self, start: int = 0):
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            raise ValueError("Ticks only move forward")
        self.current += ticks
        return self.current

    def set(self, tick: int) -> int:
        if tick < self.current:
            raise ValueError(f"Tick {tick} is behind current tick {self.current}")
        self.current = tick
        return self.current


class WallClockTicks:
    """Derive ticks from the system clock."""

    def __init__(
        self,
        tick_seconds: float = 1.0,
        origin: float = 0.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.tick_seconds = tick_seconds
        self.origin = origin
        self._clock = clock or time.time

    def __call__(self) -> int:
        elapsed = max(0.0, self._clock() - self.origin)
        return int(elapsed // self.tick_seconds)
