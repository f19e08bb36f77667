"""
CONTRACT: inline
ROLE: Video switcher control abstraction consumed by the switching engine.

INPUTS:
  - n/a
OUTPUTS:
  - Topic: switcher.levels  Type: LevelEvent

CONFIG KEYS:
  - n/a (backends read their own keys)

PERF / TIMING:
  - commands may block for a network round trip; only the dispatcher calls them
  - publish_level() is safe to call from library callback threads

FAILURE MODES:
  - command rejected / timed out -> return False or raise SwitcherError

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_replay_switcher.py

CONTRACT DETAILS:
# LevelEvent

- {t_ns, input_id, encoding: "fairlight", left, right}: Int16 dB*100 per channel
- {t_ns, input_id, encoding: "peak", raw}: polled-state peak (see audio.levels)

# Commands

- set_program_input(id): hard cut on program.
- set_preview_input(id) + auto_transition(): mixed transition.
- set_transition_rate(frames): auto transition duration, set once at startup.
- Commands set absolute state, so repeating one is harmless.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from autoswitch.core.clock import now_ns


class SwitcherError(RuntimeError):
    """A switcher command failed or the switcher is unreachable."""


class VideoSwitcherControl(ABC):
    """Program/preview control plus an inbound level feed."""

    name = "base"

    def __init__(self, bus: Optional[Any] = None, logger: Optional[Any] = None) -> None:
        self._bus = bus
        self._logger = logger

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def connect(self, timeout_s: float = 5.0) -> bool:
        ...

    @abstractmethod
    def disconnect(self) -> None:
        ...

    @abstractmethod
    def set_program_input(self, input_id: int) -> bool:
        ...

    @abstractmethod
    def set_preview_input(self, input_id: int) -> bool:
        ...

    @abstractmethod
    def auto_transition(self) -> bool:
        ...

    def set_transition_rate(self, frames: int) -> bool:  # noqa: ARG002
        """Duration of auto transitions, in frames. Backends without one accept and ignore it."""
        return True

    def peak_levels(self) -> Dict[int, Any]:
        """Current level per input: a polled-state scalar or a (left, right) Int16 dB*100 pair."""
        return {}

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name}

    def publish_level(self, input_id: int, left: Any, right: Any) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            "switcher.levels",
            {"t_ns": now_ns(), "input_id": int(input_id), "encoding": "fairlight", "left": left, "right": right},
        )

    def publish_peak(self, input_id: int, raw: Any) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            "switcher.levels",
            {"t_ns": now_ns(), "input_id": int(input_id), "encoding": "peak", "raw": raw},
        )

    def _log(self, level: str, event: str, payload: Dict[str, Any]) -> None:
        if self._logger is None:
            return
        self._logger.emit(level, f"switcher.{self.name}", event, payload)
