"""
CONTRACT: inline
ROLE: Switch confirmation state machine (wide-hold + confirmation delay).

INPUTS:
  - SwitchCandidate | None from SwitchDecider, once per evaluation
OUTPUTS:
  - ConfirmedSwitch | None (state updated optimistically on confirmation)

CONFIG KEYS:
  - audio.switch_delay_ms: persistence required before a single-speaker cut
  - audio.switch_delay_wide_ms: persistence required before a cut to wide
  - switching.wide_hold_before_single_ms: extra hold when leaving wide for one speaker

PERF / TIMING:
  - per evaluation; deterministic given now_ms

FAILURE MODES:
  - n/a (device failures never roll back SwitchState)

LOG EVENTS:
  - n/a (status exposed through last_status for the engine's verbose logs)

TESTS:
  - tests/test_scheduler.py

CONTRACT DETAILS:
# States

- IDLE: no pending switch, no wide hold.
- PENDING: a candidate target waits for its confirmation delay. Any change of
  target restarts the delay from zero.
- WIDE_HOLD (orthogonal): on the wide camera with a single-speaker candidate;
  the hold clock survives speaker-identity flicker and no-candidate ticks, and
  is cleared when 2+ inputs are active, when the silence condition holds,
  when the candidate is a wide reason, or once we leave the wide camera.

# Transitions per evaluation

1. no candidate -> drop pending; drop wide hold unless sitting on wide.
2. candidate targets the current camera -> drop pending and wide hold.
3. wide hold gate (on wide, reason single, hold > 0) -> wait until elapsed.
4. delay confirmation (wide delay for silence/multi, single delay otherwise).
5. execute -> current camera and last switch time updated immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from autoswitch.switching.decider import SwitchCandidate, SwitchDecider, SwitchReason


@dataclass
class PendingSwitch:
    target_id: int
    candidate: SwitchCandidate
    scheduled_at_ms: float


@dataclass
class WideHold:
    started_at_ms: float
    target_id: int


@dataclass
class SwitchState:
    """Everything the switching logic remembers between evaluations."""

    current_camera_id: Optional[int] = None
    last_switch_ms: Optional[float] = None
    pending: Optional[PendingSwitch] = None
    wide_hold: Optional[WideHold] = None


@dataclass(frozen=True)
class ConfirmedSwitch:
    target_id: int
    candidate: SwitchCandidate
    delay_ms: float
    t_ms: float
    previous_camera_id: Optional[int] = None


@dataclass(frozen=True)
class SchedulerStatus:
    """What the last evaluation did; read by the engine for verbose logging."""

    status: str
    target_id: Optional[int] = None
    elapsed_ms: float = 0.0
    required_ms: float = 0.0


class SwitchScheduler:
    """Debounces decider candidates into confirmed switches."""

    def __init__(self, config: Dict[str, Any], decider: Optional[SwitchDecider] = None) -> None:
        audio = config.get("audio", {})
        switching = config.get("switching", {})
        self._decider = decider or SwitchDecider(config)
        self._switch_delay_ms = float(audio.get("switch_delay_ms", 800))
        self._switch_delay_wide_ms = float(audio.get("switch_delay_wide_ms", 300))
        self._wide_hold_ms = float(switching.get("wide_hold_before_single_ms", 0))
        self.last_status = SchedulerStatus("idle")

    @property
    def decider(self) -> SwitchDecider:
        return self._decider

    def delay_for(self, candidate: SwitchCandidate) -> float:
        return self._switch_delay_wide_ms if candidate.reason.is_wide else self._switch_delay_ms

    def evaluate(self, tracker: Any, state: SwitchState, now_ms: float) -> Optional[ConfirmedSwitch]:
        wide_id = self._decider.wide_id
        on_wide = wide_id is not None and state.current_camera_id == wide_id
        candidate = self._decider.decide(tracker, state.current_camera_id, now_ms, state.last_switch_ms)

        if candidate is None:
            state.pending = None
            if not on_wide or self._wide_hold_broken(tracker, now_ms):
                state.wide_hold = None
            self.last_status = SchedulerStatus("holding" if state.wide_hold else "idle")
            return None

        if candidate.target_id == state.current_camera_id:
            state.pending = None
            state.wide_hold = None
            self.last_status = SchedulerStatus("idle")
            return None

        if on_wide and candidate.reason is SwitchReason.SINGLE and self._wide_hold_ms > 0:
            if state.wide_hold is None:
                state.wide_hold = WideHold(started_at_ms=now_ms, target_id=candidate.target_id)
            else:
                # The clock keeps running when only the speaker's identity changes.
                state.wide_hold.target_id = candidate.target_id
            held_ms = now_ms - state.wide_hold.started_at_ms
            if held_ms < self._wide_hold_ms:
                state.pending = None
                self.last_status = SchedulerStatus("holding", candidate.target_id, held_ms, self._wide_hold_ms)
                return None
        else:
            state.wide_hold = None

        delay_ms = self.delay_for(candidate)
        if delay_ms <= 0:
            return self._execute(state, candidate, 0.0, now_ms)

        pending = state.pending
        if pending is None or pending.target_id != candidate.target_id:
            state.pending = PendingSwitch(target_id=candidate.target_id, candidate=candidate, scheduled_at_ms=now_ms)
            self.last_status = SchedulerStatus("pending", candidate.target_id, 0.0, delay_ms)
            return None

        pending.candidate = candidate
        elapsed_ms = now_ms - pending.scheduled_at_ms
        if elapsed_ms < delay_ms:
            self.last_status = SchedulerStatus("pending", candidate.target_id, elapsed_ms, delay_ms)
            return None
        return self._execute(state, candidate, delay_ms, now_ms)

    def _wide_hold_broken(self, tracker: Any, now_ms: float) -> bool:
        active = tracker.active_inputs(now_ms)
        if len(active) >= 2:
            return True
        if active:
            return False
        silence_ms = tracker.silence_duration_ms(now_ms)
        return silence_ms is not None and silence_ms >= self._decider.silence_to_wide_ms

    def _execute(self, state: SwitchState, candidate: SwitchCandidate, delay_ms: float, now_ms: float) -> ConfirmedSwitch:
        confirmed = ConfirmedSwitch(
            target_id=candidate.target_id,
            candidate=candidate,
            delay_ms=delay_ms,
            t_ms=now_ms,
            previous_camera_id=state.current_camera_id,
        )
        state.current_camera_id = candidate.target_id
        state.last_switch_ms = now_ms
        state.pending = None
        state.wide_hold = None
        self.last_status = SchedulerStatus("switched", candidate.target_id, delay_ms, delay_ms)
        return confirmed
