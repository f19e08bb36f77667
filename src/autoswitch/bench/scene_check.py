"""
CONTRACT: inline
ROLE: Deterministic replay of a level scene through the switch engine.

INPUTS:
  - Scene (autoswitch.switcher.replay) and a merged config
OUTPUTS:
  - SceneReport: confirmed switches and their match against scene.expected

CONFIG KEYS:
  - detection.update_interval_ms: default step between evaluations

PERF / TIMING:
  - runs on a ManualClock; no sleeping, no threads

FAILURE MODES:
  - expected switch missing or extra switch -> report.ok is False

LOG EVENTS:
  - n/a (the engine logs through the passed logger)

TESTS:
  - tests/test_scene_check.py

CONTRACT DETAILS:
# Expected entries

- {at_ms, input_id, tolerance_ms=150, reason=optional}
- Each expected entry must match exactly one confirmed switch, in order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from autoswitch.core.clock import ManualClock
from autoswitch.core.config import get_path
from autoswitch.switcher.replay import ReplaySwitcher, Scene
from autoswitch.switching.engine import SwitchEngine
from autoswitch.switching.scheduler import ConfirmedSwitch


@dataclass
class SceneReport:
    scene: str
    switches: List[ConfirmedSwitch] = field(default_factory=list)
    mismatches: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def timeline(self) -> List[Dict[str, Any]]:
        return [
            {"t_ms": s.t_ms, "input_id": s.target_id, "reason": s.candidate.reason.value, "from": s.previous_camera_id}
            for s in self.switches
        ]


def run_scene(
    scene: Scene,
    config: Dict[str, Any],
    step_ms: Optional[float] = None,
    logger: Optional[Any] = None,
) -> SceneReport:
    step = float(step_ms if step_ms is not None else get_path(config, "detection.update_interval_ms", 100))
    clock = ManualClock(0.0)
    switcher = ReplaySwitcher(scene, clock=clock)
    engine = SwitchEngine(config, logger=logger, clock=clock)
    switcher.connect()
    engine.start(clock())
    report = SceneReport(scene=scene.name)
    while clock() <= scene.duration_ms:
        confirmed = engine.poll(switcher, clock())
        if confirmed is not None:
            switcher.set_program_input(confirmed.target_id)
            report.switches.append(confirmed)
        clock.advance(step)
    switcher.disconnect()
    report.mismatches = compare_expected(scene.expected, report.switches)
    return report


def compare_expected(expected: List[Dict[str, Any]], switches: List[ConfirmedSwitch]) -> List[str]:
    mismatches: List[str] = []
    for idx, want in enumerate(expected):
        if idx >= len(switches):
            mismatches.append(f"missing switch #{idx + 1}: input {want.get('input_id')} at ~{want.get('at_ms')} ms")
            continue
        got = switches[idx]
        tolerance = float(want.get("tolerance_ms", 150))
        if int(want.get("input_id", -1)) != got.target_id:
            mismatches.append(f"switch #{idx + 1}: expected input {want.get('input_id')}, got {got.target_id}")
        if "at_ms" in want and abs(float(want["at_ms"]) - got.t_ms) > tolerance:
            mismatches.append(f"switch #{idx + 1}: expected at {want['at_ms']} ms (+/-{tolerance:g}), got {got.t_ms:g} ms")
        if "reason" in want and str(want["reason"]) != got.candidate.reason.value:
            mismatches.append(f"switch #{idx + 1}: expected reason {want['reason']}, got {got.candidate.reason.value}")
    for extra in switches[len(expected):]:
        mismatches.append(f"unexpected switch to input {extra.target_id} at {extra.t_ms:g} ms ({extra.candidate.reason.value})")
    return mismatches
