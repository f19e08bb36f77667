import unittest

from autoswitch.audio.tracker import ActiveInput
from autoswitch.switching.decider import SwitchReason
from autoswitch.switching.scheduler import SwitchScheduler, SwitchState


class _ScriptedTracker:
    """Tracker whose answers the test sets between evaluations."""

    def __init__(self) -> None:
        self.active = []
        self.silence_ms = None

    def speaking(self, *input_ids) -> "_ScriptedTracker":  # noqa: ANN002
        self.active = [ActiveInput(i, 0.5) for i in input_ids]
        return self

    def active_inputs(self, now_ms):  # noqa: ANN001
        return list(self.active)

    def silence_duration_ms(self, now_ms):  # noqa: ANN001
        return self.silence_ms

    def best_single_candidate(self, now_ms, current_camera_id):  # noqa: ANN001
        return self.active[0] if len(self.active) == 1 else None


def _config(wide_hold_ms=0):
    return {
        "cameras": {1: {"name": "Host"}, 2: {"name": "Guest"}, 3: {"name": "Wide"}, 4: {"name": "Guest 2"}},
        "switching": {
            "wide_camera_id": 3,
            "silence_to_wide_ms": 2000,
            "wide_hold_before_single_ms": wide_hold_ms,
        },
        "audio": {
            "cooldown_ms": 2000,
            "cooldown_wide_ms": 400,
            "switch_delay_ms": 800,
            "switch_delay_wide_ms": 300,
        },
    }


class SwitchSchedulerTests(unittest.TestCase):
    def test_single_switch_after_delay(self) -> None:
        scheduler = SwitchScheduler(_config())
        tracker = _ScriptedTracker().speaking(2)
        state = SwitchState(current_camera_id=1)
        self.assertIsNone(scheduler.evaluate(tracker, state, 0))
        self.assertEqual(state.pending.target_id, 2)
        self.assertIsNone(scheduler.evaluate(tracker, state, 799))
        confirmed = scheduler.evaluate(tracker, state, 800)
        self.assertEqual(confirmed.target_id, 2)
        self.assertEqual(confirmed.previous_camera_id, 1)
        self.assertEqual(confirmed.delay_ms, 800)
        self.assertEqual(state.current_camera_id, 2)
        self.assertEqual(state.last_switch_ms, 800)
        self.assertIsNone(state.pending)

    def test_target_change_restarts_delay(self) -> None:
        scheduler = SwitchScheduler(_config())
        tracker = _ScriptedTracker().speaking(2)
        state = SwitchState(current_camera_id=1)
        scheduler.evaluate(tracker, state, 0)
        tracker.speaking(4)
        self.assertIsNone(scheduler.evaluate(tracker, state, 500))
        self.assertIsNone(scheduler.evaluate(tracker, state, 1200))
        confirmed = scheduler.evaluate(tracker, state, 1300)
        self.assertEqual(confirmed.target_id, 4)

    def test_lost_candidate_cancels_pending(self) -> None:
        scheduler = SwitchScheduler(_config())
        tracker = _ScriptedTracker().speaking(2)
        state = SwitchState(current_camera_id=1)
        scheduler.evaluate(tracker, state, 0)
        tracker.speaking()
        scheduler.evaluate(tracker, state, 400)
        self.assertIsNone(state.pending)
        tracker.speaking(2)
        scheduler.evaluate(tracker, state, 500)
        self.assertIsNone(scheduler.evaluate(tracker, state, 1200))
        self.assertEqual(scheduler.evaluate(tracker, state, 1300).target_id, 2)

    def test_wide_destinations_use_wide_delay(self) -> None:
        scheduler = SwitchScheduler(_config())
        tracker = _ScriptedTracker().speaking(1, 2)
        state = SwitchState(current_camera_id=1)
        self.assertIsNone(scheduler.evaluate(tracker, state, 0))
        self.assertIsNone(scheduler.evaluate(tracker, state, 299))
        confirmed = scheduler.evaluate(tracker, state, 300)
        self.assertEqual(confirmed.target_id, 3)
        self.assertIs(confirmed.candidate.reason, SwitchReason.MULTI)
        self.assertEqual(confirmed.delay_ms, 300)

    def test_cooldown_spaces_switches(self) -> None:
        scheduler = SwitchScheduler(_config())
        tracker = _ScriptedTracker().speaking(2)
        state = SwitchState(current_camera_id=1)
        scheduler.evaluate(tracker, state, 0)
        scheduler.evaluate(tracker, state, 800)
        tracker.speaking(1)
        for t in range(900, 2800, 100):
            self.assertIsNone(scheduler.evaluate(tracker, state, t))
            self.assertIsNone(state.pending)
        self.assertIsNone(scheduler.evaluate(tracker, state, 2800))
        self.assertEqual(state.pending.scheduled_at_ms, 2800)
        confirmed = scheduler.evaluate(tracker, state, 3600)
        self.assertEqual(confirmed.target_id, 1)
        self.assertGreaterEqual(confirmed.t_ms - 800, 2000)

    def test_wide_hold_survives_flicker(self) -> None:
        scheduler = SwitchScheduler(_config(wide_hold_ms=4000))
        tracker = _ScriptedTracker().speaking(1)
        tracker.silence_ms = 0
        state = SwitchState(current_camera_id=3)
        self.assertIsNone(scheduler.evaluate(tracker, state, 0))
        self.assertEqual(state.wide_hold.started_at_ms, 0)
        tracker.speaking(2)
        self.assertIsNone(scheduler.evaluate(tracker, state, 1000))
        tracker.speaking()
        tracker.silence_ms = 500
        self.assertIsNone(scheduler.evaluate(tracker, state, 2000))
        self.assertEqual(state.wide_hold.started_at_ms, 0)
        tracker.speaking(1)
        tracker.silence_ms = 0
        self.assertIsNone(scheduler.evaluate(tracker, state, 3999))
        self.assertEqual(scheduler.last_status.status, "holding")
        self.assertIsNone(state.pending)
        # Hold done; the confirmation delay runs next.
        self.assertIsNone(scheduler.evaluate(tracker, state, 4000))
        self.assertEqual(state.pending.scheduled_at_ms, 4000)
        confirmed = scheduler.evaluate(tracker, state, 4800)
        self.assertEqual(confirmed.target_id, 1)
        self.assertIsNone(state.wide_hold)

    def test_wide_hold_cleared_by_multiple_speakers(self) -> None:
        scheduler = SwitchScheduler(_config(wide_hold_ms=4000))
        tracker = _ScriptedTracker().speaking(1)
        state = SwitchState(current_camera_id=3)
        scheduler.evaluate(tracker, state, 0)
        tracker.speaking(1, 2)
        scheduler.evaluate(tracker, state, 1000)
        self.assertIsNone(state.wide_hold)
        tracker.speaking(1)
        scheduler.evaluate(tracker, state, 1500)
        self.assertEqual(state.wide_hold.started_at_ms, 1500)

    def test_wide_hold_cleared_by_silence(self) -> None:
        scheduler = SwitchScheduler(_config(wide_hold_ms=4000))
        tracker = _ScriptedTracker().speaking(1)
        tracker.silence_ms = 0
        state = SwitchState(current_camera_id=3)
        scheduler.evaluate(tracker, state, 0)
        tracker.speaking()
        tracker.silence_ms = 2500
        scheduler.evaluate(tracker, state, 1000)
        self.assertIsNone(state.wide_hold)

    def test_no_hold_away_from_wide(self) -> None:
        scheduler = SwitchScheduler(_config(wide_hold_ms=4000))
        tracker = _ScriptedTracker().speaking(2)
        state = SwitchState(current_camera_id=1)
        scheduler.evaluate(tracker, state, 0)
        self.assertIsNone(state.wide_hold)
        self.assertEqual(scheduler.evaluate(tracker, state, 800).target_id, 2)


if __name__ == "__main__":
    unittest.main()
