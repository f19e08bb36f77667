"""
CONTRACT: inline
ROLE: Monotonic timestamps and an injectable clock for timing logic.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - n/a

PERF / TIMING:
  - monotonic now_ns() for all bus messages
  - switching logic reads time only through a Clock (milliseconds)

FAILURE MODES:
  - n/a

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_switch_engine.py drives the engine with ManualClock

CONTRACT DETAILS:
# Clock and timestamps

- t_ns on bus messages is monotonic.
- Hold, cooldown and delay timers never call time.* directly; they receive
  now_ms from a Clock so tests and replays can simulate elapsed time.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

Clock = Callable[[], float]


def now_ns() -> int:
    return time.monotonic_ns()


def now_ms() -> float:
    """Monotonic milliseconds; the default Clock."""
    return time.monotonic_ns() / 1_000_000.0


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._t_ms = float(start_ms)

    def __call__(self) -> float:
        with self._lock:
            return self._t_ms

    def advance(self, delta_ms: float) -> float:
        if delta_ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._t_ms += float(delta_ms)
            return self._t_ms

    def set(self, t_ms: float) -> None:
        with self._lock:
            if t_ms < self._t_ms:
                raise ValueError("ManualClock cannot move backwards")
            self._t_ms = float(t_ms)
