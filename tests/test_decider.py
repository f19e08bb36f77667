import unittest

from autoswitch.audio.tracker import ActiveInput
from autoswitch.switching.decider import SwitchCandidate, SwitchDecider, SwitchReason


class _FakeTracker:
    """Tracker view with fixed answers."""

    def __init__(self, active=(), silence_ms=None, best=None) -> None:
        self._active = [ActiveInput(i, avg) for i, avg in active]
        self._silence_ms = silence_ms
        self._best = best

    def active_inputs(self, now_ms):  # noqa: ANN001
        return list(self._active)

    def silence_duration_ms(self, now_ms):  # noqa: ANN001
        return self._silence_ms

    def best_single_candidate(self, now_ms, current_camera_id):  # noqa: ANN001
        if self._best is not None:
            return self._best
        return self._active[0] if self._active else None


def _config(wide=3):
    return {
        "cameras": {1: {"name": "Host"}, 2: {"name": "Guest"}, 3: {"name": "Wide"}},
        "switching": {"wide_camera_id": wide, "silence_to_wide_ms": 2000},
        "audio": {"cooldown_ms": 2000, "cooldown_wide_ms": 400},
    }


class SwitchDeciderTests(unittest.TestCase):
    def test_silence_to_wide(self) -> None:
        decider = SwitchDecider(_config())
        candidate = decider.decide(_FakeTracker(silence_ms=2500), 1, 10_000, None)
        self.assertEqual(candidate.target_id, 3)
        self.assertIs(candidate.reason, SwitchReason.SILENCE)
        self.assertEqual(candidate.evidence(), {"silence_ms": 2500.0})

    def test_silence_needs_activity_and_duration(self) -> None:
        decider = SwitchDecider(_config())
        self.assertIsNone(decider.decide(_FakeTracker(silence_ms=None), 1, 10_000, None))
        self.assertIsNone(decider.decide(_FakeTracker(silence_ms=1999), 1, 10_000, None))
        self.assertIsNone(decider.decide(_FakeTracker(silence_ms=5000), 3, 10_000, None))

    def test_multi_to_wide_lists_names(self) -> None:
        decider = SwitchDecider(_config())
        candidate = decider.decide(_FakeTracker(active=[(1, 0.4), (2, 0.5)]), 1, 10_000, None)
        self.assertEqual(candidate.target_id, 3)
        self.assertIs(candidate.reason, SwitchReason.MULTI)
        self.assertEqual(candidate.evidence(), {"speaking": ["Host", "Guest"]})
        self.assertIsNone(decider.decide(_FakeTracker(active=[(1, 0.4), (2, 0.5)]), 3, 10_000, None))

    def test_single_speaker(self) -> None:
        decider = SwitchDecider(_config())
        candidate = decider.decide(_FakeTracker(active=[(2, 0.45)]), 1, 10_000, None)
        self.assertEqual(candidate.target_id, 2)
        self.assertIs(candidate.reason, SwitchReason.SINGLE)
        self.assertIsNone(decider.decide(_FakeTracker(active=[(2, 0.45)]), 2, 10_000, None))

    def test_single_rule_needs_exactly_one_active(self) -> None:
        # Without a wide camera, two speakers produce no candidate even if one is loudest.
        decider = SwitchDecider(_config(wide=None))
        tracker = _FakeTracker(active=[(1, 0.2), (2, 0.6)], best=ActiveInput(2, 0.6))
        self.assertIsNone(decider.decide(tracker, 1, 10_000, None))

    def test_unknown_wide_camera_disables_wide_rules(self) -> None:
        decider = SwitchDecider(_config(wide=7))
        self.assertIsNone(decider.wide_id)
        self.assertIsNone(decider.decide(_FakeTracker(silence_ms=9000), 1, 10_000, None))
        self.assertIsNone(decider.decide(_FakeTracker(active=[(1, 0.4), (2, 0.5)]), 1, 10_000, None))

    def test_cooldown_variants(self) -> None:
        decider = SwitchDecider(_config())
        single = _FakeTracker(active=[(2, 0.45)])
        # single -> single uses cooldown_ms
        self.assertIsNone(decider.decide(single, 1, 11_999, 10_000))
        self.assertIsNotNone(decider.decide(single, 1, 12_000, 10_000))
        # wide -> single uses cooldown_wide_ms
        self.assertIsNone(decider.decide(single, 3, 10_399, 10_000))
        self.assertIsNotNone(decider.decide(single, 3, 10_400, 10_000))
        # anything -> wide uses cooldown_wide_ms
        multi = _FakeTracker(active=[(1, 0.4), (2, 0.5)])
        self.assertIsNone(decider.decide(multi, 1, 10_399, 10_000))
        self.assertIsNotNone(decider.decide(multi, 1, 10_400, 10_000))

    def test_describe(self) -> None:
        self.assertEqual(SwitchCandidate(3, SwitchReason.SILENCE, silence_ms=2500).describe(), "silence 2.5s")
        self.assertEqual(
            SwitchCandidate(3, SwitchReason.MULTI, input_names=("Host", "Guest")).describe(),
            "2+ speaking: Host, Guest",
        )
        self.assertTrue(SwitchReason.MULTI.is_wide)
        self.assertFalse(SwitchReason.SINGLE.is_wide)


if __name__ == "__main__":
    unittest.main()
