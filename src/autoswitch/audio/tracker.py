"""
CONTRACT: inline
ROLE: Per-input sliding windows of normalized levels; answers who is speaking.

INPUTS:
  - store(input_id, normalized, db, now_ms) from the switch engine thread
OUTPUTS:
  - active_inputs / best_single_candidate / silence_duration_ms queries

CONFIG KEYS:
  - audio.volume_threshold: window average that counts as speech (0..1)
  - audio.hold_time_ms: minimum age of the oldest retained sample before an input can be active
  - audio.min_volume_difference: margin a new speaker needs over the current camera
  - detection.samples_for_average: window cap per input
  - cameras: only configured inputs can be active

PERF / TIMING:
  - O(window) per query; called on every tick and level event

FAILURE MODES:
  - NaN level -> raise LevelPayloadError (caller drops the sample)

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_tracker.py

CONTRACT DETAILS:
# Activity

- An input is active iff mean(normalized over its window) > volume_threshold
  and now - t(oldest sample in window) >= hold_time_ms.
- Any sample above the threshold, from any input, refreshes the last-activity
  time used for silence detection. Until that happens the silence duration is
  undefined and silence switching must not fire.
- Mutated only from the engine thread.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Tuple

import numpy as np

from autoswitch.audio.levels import LevelPayloadError
from autoswitch.core.config import camera_mapping


@dataclass(frozen=True)
class Sample:
    normalized: float
    db: float
    t_ms: float


@dataclass(frozen=True)
class ActiveInput:
    input_id: int
    average: float


class LevelTracker:
    """Bounded level history per switcher input."""

    def __init__(self, config: Dict[str, Any]) -> None:
        audio = config.get("audio", {})
        self._threshold = float(audio.get("volume_threshold", 0.11))
        self._hold_ms = float(audio.get("hold_time_ms", 300))
        self._min_difference = float(audio.get("min_volume_difference", 0.02))
        self._max_samples = max(1, int(config.get("detection", {}).get("samples_for_average", 30)))
        self._cameras = frozenset(camera_mapping(config))
        self._windows: Dict[int, Deque[Sample]] = {}
        self._last_activity_ms: Optional[float] = None

    @property
    def volume_threshold(self) -> float:
        return self._threshold

    @property
    def last_activity_ms(self) -> Optional[float]:
        """Last time any input crossed the threshold; None until that happens."""
        return self._last_activity_ms

    def store(self, input_id: int, normalized: float, db: float, now_ms: float) -> Sample:
        level = float(normalized)
        if math.isnan(level):
            raise LevelPayloadError(f"input {input_id}: normalized level is NaN")
        sample = Sample(normalized=max(0.0, min(1.0, level)), db=float(db), t_ms=float(now_ms))
        if sample.normalized > self._threshold:
            self._last_activity_ms = sample.t_ms
        window = self._windows.get(input_id)
        if window is None:
            window = deque(maxlen=self._max_samples)
            self._windows[input_id] = window
        window.append(sample)
        return sample

    def mark_activity(self, now_ms: float) -> None:
        """Start the silence timer as if activity had just been seen."""
        self._last_activity_ms = float(now_ms)

    def input_ids(self) -> List[int]:
        return sorted(self._windows)

    def window(self, input_id: int) -> Tuple[Sample, ...]:
        return tuple(self._windows.get(input_id, ()))

    def latest(self, input_id: int) -> Optional[Sample]:
        window = self._windows.get(input_id)
        return window[-1] if window else None

    def average(self, input_id: Optional[int]) -> float:
        """Mean normalized level of an input's window (0.0 when empty or unknown)."""
        if input_id is None:
            return 0.0
        window = self._windows.get(input_id)
        if not window:
            return 0.0
        return float(np.mean([s.normalized for s in window]))

    def is_active(self, input_id: int, now_ms: float) -> bool:
        window = self._windows.get(input_id)
        if not window or input_id not in self._cameras:
            return False
        if self.average(input_id) <= self._threshold:
            return False
        return (now_ms - window[0].t_ms) >= self._hold_ms

    def active_inputs(self, now_ms: float) -> List[ActiveInput]:
        return [
            ActiveInput(input_id=input_id, average=self.average(input_id))
            for input_id in sorted(self._windows)
            if self.is_active(input_id, now_ms)
        ]

    def best_single_candidate(self, now_ms: float, current_camera_id: Optional[int]) -> Optional[ActiveInput]:
        """Loudest active input that beats the current camera by min_volume_difference."""
        current_avg = self.average(current_camera_id)
        best: Optional[ActiveInput] = None
        for active in self.active_inputs(now_ms):
            if current_camera_id is not None and (active.average - current_avg) < self._min_difference:
                continue
            # Strict comparison keeps the lowest input id on ties.
            if best is None or active.average > best.average:
                best = active
        return best

    def silence_duration_ms(self, now_ms: float) -> Optional[float]:
        if self._last_activity_ms is None:
            return None
        return float(now_ms) - self._last_activity_ms
