"""
CONTRACT: inline
ROLE: Turn the tracker's view into at most one switch candidate per evaluation.

INPUTS:
  - LevelTracker view, current camera, now_ms, last switch time
OUTPUTS:
  - SwitchCandidate | None

CONFIG KEYS:
  - switching.wide_camera_id: wide/establishing shot input (must be in cameras)
  - switching.silence_to_wide_ms: silence needed before cutting to wide
  - audio.cooldown_ms: spacing between cuts between single-speaker cameras
  - audio.cooldown_wide_ms: spacing for cuts to wide and wide -> single
  - cameras: display names for evidence

PERF / TIMING:
  - pure per call; no state between calls

FAILURE MODES:
  - wide camera missing/unknown -> silence and multi rules are skipped

LOG EVENTS:
  - n/a (the engine logs confirmed switches)

TESTS:
  - tests/test_decider.py

CONTRACT DETAILS:
# Rules (first match wins)

1. silence -> wide: no active input, wide configured, not on wide, activity
   seen at least once, silence >= silence_to_wide_ms.
2. multi -> wide: 2+ active inputs, wide configured, not on wide.
3. single -> that input: exactly one active input and the best single
   candidate differs from the current camera.

Cooldown gate: cooldown_wide_ms when the target is wide or when leaving wide
for a single speaker, cooldown_ms otherwise. No gate before the first switch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from autoswitch.core.config import camera_mapping, wide_camera_id


class SwitchReason(str, Enum):
    SILENCE = "silence"
    MULTI = "multi"
    SINGLE = "single"

    @property
    def is_wide(self) -> bool:
        return self in (SwitchReason.SILENCE, SwitchReason.MULTI)


@dataclass(frozen=True)
class SwitchCandidate:
    target_id: int
    reason: SwitchReason
    silence_ms: Optional[float] = None
    input_names: Tuple[str, ...] = field(default_factory=tuple)
    average: Optional[float] = None

    def evidence(self) -> Dict[str, Any]:
        """Reason-specific metadata for logs and traces."""
        if self.reason is SwitchReason.SILENCE:
            return {"silence_ms": round(float(self.silence_ms or 0.0), 1)}
        if self.reason is SwitchReason.MULTI:
            return {"speaking": list(self.input_names)}
        return {"average": round(float(self.average or 0.0), 4)}

    def describe(self) -> str:
        if self.reason is SwitchReason.SILENCE:
            return f"silence {float(self.silence_ms or 0.0) / 1000.0:.1f}s"
        if self.reason is SwitchReason.MULTI:
            return "2+ speaking: " + ", ".join(self.input_names)
        return f"1 speaking ({float(self.average or 0.0) * 100.0:.1f}%)"


class SwitchDecider:
    """Silence / multi / single rule set with a cooldown gate."""

    def __init__(self, config: Dict[str, Any]) -> None:
        audio = config.get("audio", {})
        switching = config.get("switching", {})
        self._cameras = camera_mapping(config)
        self._wide_id = wide_camera_id(config)
        self._silence_to_wide_ms = float(switching.get("silence_to_wide_ms", 2000))
        self._cooldown_ms = float(audio.get("cooldown_ms", 2000))
        self._cooldown_wide_ms = float(audio.get("cooldown_wide_ms", 400))

    @property
    def wide_id(self) -> Optional[int]:
        return self._wide_id

    @property
    def silence_to_wide_ms(self) -> float:
        return self._silence_to_wide_ms

    def decide(
        self,
        tracker: Any,
        current_camera_id: Optional[int],
        now_ms: float,
        last_switch_ms: Optional[float],
    ) -> Optional[SwitchCandidate]:
        candidate = self._candidate(tracker, current_camera_id, now_ms)
        if candidate is None:
            return None
        if last_switch_ms is not None and (now_ms - last_switch_ms) < self.cooldown_for(candidate, current_camera_id):
            return None
        return candidate

    def cooldown_for(self, candidate: SwitchCandidate, current_camera_id: Optional[int]) -> float:
        leaving_wide = (
            self._wide_id is not None
            and current_camera_id == self._wide_id
            and candidate.reason is SwitchReason.SINGLE
        )
        if candidate.reason.is_wide or leaving_wide:
            return self._cooldown_wide_ms
        return self._cooldown_ms

    def _candidate(self, tracker: Any, current_camera_id: Optional[int], now_ms: float) -> Optional[SwitchCandidate]:
        active = tracker.active_inputs(now_ms)
        on_wide = self._wide_id is not None and current_camera_id == self._wide_id

        if not active and self._wide_id is not None and not on_wide:
            silence_ms = tracker.silence_duration_ms(now_ms)
            if silence_ms is not None and silence_ms >= self._silence_to_wide_ms:
                return SwitchCandidate(target_id=self._wide_id, reason=SwitchReason.SILENCE, silence_ms=silence_ms)

        if len(active) >= 2 and self._wide_id is not None and not on_wide:
            names = tuple(self._name(a.input_id) for a in active)
            return SwitchCandidate(target_id=self._wide_id, reason=SwitchReason.MULTI, input_names=names)

        if len(active) == 1:
            best = tracker.best_single_candidate(now_ms, current_camera_id)
            if best is not None and best.input_id != current_camera_id:
                return SwitchCandidate(target_id=best.input_id, reason=SwitchReason.SINGLE, average=best.average)

        return None

    def _name(self, input_id: int) -> str:
        entry = self._cameras.get(input_id)
        return str(entry.get("name")) if entry else f"Input {input_id}"
