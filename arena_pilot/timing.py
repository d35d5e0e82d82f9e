"""
Centralized timing utilities for consistent, accurate time across the system.

- Uses monotonic time for durations, cooldowns and poll deadlines (not affected by system clock changes)
- Exposes process uptime and UTC timestamp helpers for logging
- `Clock` is the injectable time source; tests pass a synthetic clock instead of sleeping
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

_PROCESS_START_MONOTONIC = time.monotonic()
_PROCESS_START_WALL = time.time()

Clock = Callable[[], float]


def uptime_seconds() -> float:
    """Seconds since process start based on monotonic clock."""
    return time.monotonic() - _PROCESS_START_MONOTONIC


def now_utc_iso(ms: bool = True) -> str:
    """ISO-8601 UTC timestamp string suitable for logs (e.g., 2025-08-25T12:34:56.789Z)."""
    dt = datetime.now(timezone.utc)
    if ms:
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return dt.isoformat().replace("+00:00", "Z")


def process_start_utc_iso() -> str:
    """UTC ISO for process start time (approx; uses wall clock at import)."""
    return datetime.fromtimestamp(_PROCESS_START_WALL, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ManualClock:
    """A settable clock for deterministic cooldown and deadline checks."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now
