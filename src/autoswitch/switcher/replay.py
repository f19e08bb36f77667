"""autoswitch.switcher.replay

CONTRACT: inline
ROLE: Scripted switcher that plays a YAML level scene (bench runs, demos, tests).

INPUTS:
  - scene file: {name, duration_ms, noise_db, seed, inputs: {id: [{from_ms, to_ms, db}]}}
OUTPUTS:
  - Topic: switcher.levels  Type: LevelEvent (when replay.emit_events)
  - program/preview history in memory

CONFIG KEYS:
  - switcher.replay.scene: scene path
  - switcher.replay.loop: restart the scene when it ends
  - switcher.replay.emit_events: publish Fairlight-style level events
  - switcher.replay.event_interval_ms: event cadence

PERF / TIMING:
  - scene time follows the injected clock; event pacing uses wall time

FAILURE MODES:
  - missing/invalid scene -> raise ValueError -> runner logs replay_failed
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import yaml

from autoswitch.audio.levels import NO_SIGNAL
from autoswitch.core.clock import Clock, now_ms
from autoswitch.switcher.base import VideoSwitcherControl


@dataclass(frozen=True)
class Segment:
    from_ms: float
    to_ms: float
    db: float


@dataclass
class Scene:
    name: str
    duration_ms: float
    inputs: Dict[int, List[Segment]]
    noise_db: float = 0.0
    seed: int = 0
    expected: List[Dict[str, Any]] = field(default_factory=list)

    def level_db(self, input_id: int, t_ms: float) -> float:
        for seg in self.inputs.get(input_id, []):
            if seg.from_ms <= t_ms < seg.to_ms:
                return seg.db
        return float("-inf")


def load_scene(path: str) -> Scene:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return parse_scene(data, source=path)


def parse_scene(data: Dict[str, Any], source: str = "<scene>") -> Scene:
    if not isinstance(data, dict):
        raise ValueError(f"{source}: scene must be a mapping")
    raw_inputs = data.get("inputs")
    if not isinstance(raw_inputs, dict) or not raw_inputs:
        raise ValueError(f"{source}: scene needs an 'inputs' mapping")
    inputs: Dict[int, List[Segment]] = {}
    end_ms = 0.0
    for key, segments in raw_inputs.items():
        try:
            input_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{source}: input key {key!r} is not a number") from exc
        parsed: List[Segment] = []
        for seg in segments or []:
            try:
                item = Segment(float(seg["from_ms"]), float(seg["to_ms"]), float(seg["db"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"{source}: bad segment for input {input_id}: {seg!r}") from exc
            if item.to_ms <= item.from_ms:
                raise ValueError(f"{source}: segment for input {input_id} ends before it starts")
            parsed.append(item)
            end_ms = max(end_ms, item.to_ms)
        inputs[input_id] = sorted(parsed, key=lambda s: s.from_ms)
    return Scene(
        name=str(data.get("name", source)),
        duration_ms=float(data.get("duration_ms", end_ms)),
        inputs=inputs,
        noise_db=float(data.get("noise_db", 0.0)),
        seed=int(data.get("seed", 0)),
        expected=list(data.get("expected", []) or []),
    )


class ReplaySwitcher(VideoSwitcherControl):
    """In-memory switcher driven by a Scene."""

    name = "replay"

    def __init__(
        self,
        scene: Scene,
        clock: Clock = now_ms,
        bus: Optional[Any] = None,
        logger: Optional[Any] = None,
        emit_events: bool = False,
        event_interval_ms: float = 50.0,
        loop: bool = False,
    ) -> None:
        super().__init__(bus, logger)
        self._scene = scene
        self._clock = clock
        self._emit_events = emit_events
        self._event_interval_s = max(0.005, float(event_interval_ms) / 1000.0)
        self._loop = loop
        self._rng = np.random.default_rng(scene.seed)
        self._rng_lock = threading.Lock()
        self._lock = threading.Lock()
        self._connected = False
        self._started_at_ms = 0.0
        self._program: Optional[int] = None
        self._preview: Optional[int] = None
        self._history: List[Tuple[float, int]] = []
        self._feeder_stop = threading.Event()
        self._feeder: Optional[threading.Thread] = None

    @property
    def scene(self) -> Scene:
        return self._scene

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def program_input(self) -> Optional[int]:
        return self._program

    @property
    def preview_input(self) -> Optional[int]:
        return self._preview

    @property
    def history(self) -> List[Tuple[float, int]]:
        """(scene_ms, input_id) for every program change."""
        with self._lock:
            return list(self._history)

    def scene_time_ms(self) -> float:
        elapsed = self._clock() - self._started_at_ms
        if self._loop and self._scene.duration_ms > 0:
            return elapsed % self._scene.duration_ms
        return elapsed

    def finished(self) -> bool:
        return not self._loop and self.scene_time_ms() >= self._scene.duration_ms

    def connect(self, timeout_s: float = 5.0) -> bool:  # noqa: ARG002
        self._started_at_ms = self._clock()
        self._connected = True
        self._log("info", "connected", {"scene": self._scene.name, "duration_ms": self._scene.duration_ms})
        if self._emit_events and self._bus is not None:
            self._feeder_stop.clear()
            self._feeder = threading.Thread(target=self._feed_events, name="replay-levels", daemon=True)
            self._feeder.start()
        return True

    def disconnect(self) -> None:
        self._connected = False
        self._feeder_stop.set()
        if self._feeder is not None:
            self._feeder.join(timeout=1.0)
            self._feeder = None

    def set_program_input(self, input_id: int) -> bool:
        if not self._connected:
            return False
        with self._lock:
            self._program = int(input_id)
            self._history.append((self.scene_time_ms(), int(input_id)))
        return True

    def set_preview_input(self, input_id: int) -> bool:
        if not self._connected:
            return False
        self._preview = int(input_id)
        return True

    def auto_transition(self) -> bool:
        if not self._connected or self._preview is None:
            return False
        return self.set_program_input(self._preview)

    def peak_levels(self) -> Dict[int, Any]:
        if not self._connected:
            return {}
        t_ms = self.scene_time_ms()
        levels: Dict[int, Any] = {}
        for input_id in self._scene.inputs:
            db = self._noisy_db(input_id, t_ms)
            # 0 reads as "no signal" in polled encoding, so clip just below full scale.
            levels[input_id] = min(db, -0.01) if math.isfinite(db) else 0
        return levels

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "model": "replay",
            "scene": self._scene.name,
            "inputs": sorted(self._scene.inputs),
        }

    def _noisy_db(self, input_id: int, t_ms: float) -> float:
        db = self._scene.level_db(input_id, t_ms)
        if math.isfinite(db) and self._scene.noise_db > 0:
            with self._rng_lock:
                db += float(self._rng.normal(0.0, self._scene.noise_db))
        return db

    def _feed_events(self) -> None:
        while self._connected and not self._feeder_stop.wait(self._event_interval_s):
            t_ms = self.scene_time_ms()
            for input_id in self._scene.inputs:
                db = self._noisy_db(input_id, t_ms)
                left = int(round(db * 100)) if math.isfinite(db) else NO_SIGNAL
                self.publish_level(input_id, max(NO_SIGNAL, left), NO_SIGNAL)
