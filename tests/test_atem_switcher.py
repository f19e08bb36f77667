import time
import unittest
from types import SimpleNamespace
from unittest.mock import PropertyMock, patch

from autoswitch.core.bus import Bus, drain_all
from autoswitch.switcher import atem
from autoswitch.switcher.base import SwitcherError
from autoswitch.switching.engine import SwitchEngine


class _DummyLogger:
    def __init__(self) -> None:
        self.events = []

    def emit(self, level, module, event, payload):  # noqa: ANN001
        self.events.append((level, module, event, payload))

    def named(self, event):  # noqa: ANN001
        return [e for e in self.events if e[2] == event]


def _source(left, right):  # noqa: ANN001
    # Same shape as PyATEMMax audioMixer.levels.sources[n]: linear meters plus held peaks.
    return SimpleNamespace(left=left, right=right, peak=SimpleNamespace(left=left, right=right))


class _FakeATEMMax:
    """The subset of PyATEMMax.ATEMMax the backend talks to."""

    def __init__(self) -> None:
        self.atem = SimpleNamespace(events=SimpleNamespace(connect="connect", disconnect="disconnect", receive="receive"))
        self.connected = False
        self.handlers = {}
        self.calls = []
        self.atemModel = "ATEM Television Studio HD"
        self.audioMixer = SimpleNamespace(
            input={1: SimpleNamespace(volume=0.0, balance=0.0)},
            levels=SimpleNamespace(sources={1: _source(32768, 16384), 2: _source(0, 0)}),
        )

    def registerEvent(self, event, handler):  # noqa: ANN001, N802
        self.handlers[event] = handler

    def connect(self, address):  # noqa: ANN001
        self.calls.append(("connect", address))

    def waitForConnection(self, infinite=True, timeout=None):  # noqa: ANN001, N802
        self.connected = True
        return True

    def setAudioMixerSendLevels(self, enabled):  # noqa: ANN001, N802
        self.calls.append(("levels", enabled))

    def setProgramInputVideoSource(self, me, source):  # noqa: ANN001, N802
        self.calls.append(("program", me, source))

    def setPreviewInputVideoSource(self, me, source):  # noqa: ANN001, N802
        self.calls.append(("preview", me, source))

    def setTransitionMixRate(self, me, frames):  # noqa: ANN001, N802
        self.calls.append(("mix_rate", me, frames))

    def execAutoME(self, me):  # noqa: ANN001, N802
        if me == 9:
            raise RuntimeError("no such M/E")
        self.calls.append(("auto", me))

    def disconnect(self):
        self.connected = False


def _config(me=0):  # noqa: ANN001
    return {
        "switcher": {"mix_effect": me},
        "cameras": {1: {"name": "Host"}, 2: {"name": "Guest"}, 3: {"name": "Wide"}},
        "audio": {"min_db": -40.0, "max_db": 0.0, "curve": 0.7},
        "switching": {"wide_camera_id": 3},
    }


class AtemSwitcherTests(unittest.TestCase):
    def _switcher(self, me=0, bus=None, logger=None):  # noqa: ANN001
        fake = _FakeATEMMax()
        module = SimpleNamespace(ATEMMax=lambda: fake)
        with patch.object(atem, "PyATEMMax", module):
            switcher = atem.AtemSwitcher("192.168.1.240", _config(me), bus=bus, logger=logger or _DummyLogger())
        return switcher, fake

    def test_missing_library(self) -> None:
        logger = _DummyLogger()
        with patch.object(atem, "PyATEMMax", None):
            with self.assertRaises(SwitcherError):
                atem.AtemSwitcher("192.168.1.240", _config(), logger=logger)
        self.assertEqual(logger.events[0][2], "backend_missing")

    def test_connect_and_commands(self) -> None:
        switcher, fake = self._switcher()
        with self.assertRaises(SwitcherError):
            switcher.set_program_input(1)
        self.assertTrue(switcher.connect(1.0))
        self.assertIn(("levels", True), fake.calls)
        self.assertEqual(set(fake.handlers), {"connect", "disconnect", "receive"})
        self.assertTrue(switcher.set_program_input(2))
        switcher.set_preview_input(3)
        switcher.auto_transition()
        switcher.set_transition_rate(25)
        self.assertEqual(
            fake.calls[-4:],
            [("program", 0, 2), ("preview", 0, 3), ("auto", 0), ("mix_rate", 0, 25)],
        )
        self.assertEqual(switcher.describe()["model"], "ATEM Television Studio HD")

    def test_library_errors_become_switcher_errors(self) -> None:
        switcher, _ = self._switcher(me=9)
        switcher.connect(1.0)
        with self.assertRaises(SwitcherError):
            switcher.auto_transition()

    def test_disconnect_event(self) -> None:
        logger = _DummyLogger()
        switcher, fake = self._switcher(logger=logger)
        switcher.connect(1.0)
        fake.handlers["disconnect"]({})
        self.assertFalse(switcher.is_connected)
        self.assertTrue(logger.named("disconnected"))
        self.assertEqual(switcher.peak_levels(), {})

    def test_meter_updates_reach_the_engine_decoded(self) -> None:
        bus = Bus(max_queue_depth=8)
        q = bus.subscribe("switcher.levels")
        logger = _DummyLogger()
        switcher, _ = self._switcher(bus=bus, logger=logger)
        switcher.connect(1.0)

        switcher._on_receive({"cmd": "PrgI"})
        self.assertEqual(list(drain_all(q)), [])
        switcher._on_receive({"cmd": "AMLv"})
        msgs = list(drain_all(q))
        self.assertEqual([m["input_id"] for m in msgs], [1, 2])
        self.assertEqual((msgs[0]["encoding"], msgs[0]["left"], msgs[0]["right"]), ("fairlight", -602, -1204))
        # input 3 has no meter in the switcher state
        self.assertTrue(logger.named("levels_unavailable"))

        engine = SwitchEngine(_config(), logger=_DummyLogger(), clock=lambda: 0.0)
        for msg in msgs:
            engine.ingest_level_event(msg, 0.0)
        host = engine.tracker.latest(1)
        self.assertAlmostEqual(host.db, -6.02)
        self.assertAlmostEqual(host.normalized, 0.611, places=2)
        self.assertEqual(engine.tracker.latest(2).db, float("-inf"))
        self.assertEqual(engine.tracker.latest(2).normalized, 0.0)

    def test_peak_levels_after_meter_updates(self) -> None:
        switcher, fake = self._switcher()
        switcher.connect(1.0)
        self.assertEqual(switcher.peak_levels(), {})
        switcher._on_receive({"cmd": "AMLv"})
        fake.audioMixer.levels.sources[1] = _source(65535, 0)
        self.assertEqual(switcher.peak_levels(), {1: (0, -32768), 2: (-32768, -32768)})

    def test_missing_meter_updates_are_reported(self) -> None:
        logger = _DummyLogger()
        switcher, _ = self._switcher(logger=logger)
        switcher.connect(1.0)
        switcher._connected_at = time.monotonic() - atem.LEVELS_GRACE_S - 1.0
        self.assertEqual(switcher.peak_levels(), {})
        switcher.peak_levels()
        self.assertEqual(len(logger.named("levels_unavailable")), 1)

    def test_fairlight_meters_are_reported_once(self) -> None:
        bus = Bus(max_queue_depth=8)
        q = bus.subscribe("switcher.levels")
        logger = _DummyLogger()
        switcher, _ = self._switcher(bus=bus, logger=logger)
        switcher.connect(1.0)
        switcher._on_receive({"cmd": "FMLv"})
        switcher._on_receive({"cmd": "FMLv"})
        self.assertEqual(len(logger.named("fairlight_levels_unsupported")), 1)
        self.assertEqual(list(drain_all(q)), [])


@unittest.skipUnless(atem.PyATEMMax is not None, "PyATEMMax not installed")
class AtemLibraryStateTests(unittest.TestCase):
    def test_reads_levels_from_library_state(self) -> None:
        bus = Bus(max_queue_depth=8)
        q = bus.subscribe("switcher.levels")
        config = _config()
        config["cameras"] = {1: {"name": "Host"}}
        switcher = atem.AtemSwitcher("10.0.0.1", config, bus=bus, logger=_DummyLogger())
        source = switcher._atem.audioMixer.levels.sources[1]
        source.left = 32768
        source.right = 16384
        with patch.object(atem.AtemSwitcher, "is_connected", new_callable=PropertyMock, return_value=True):
            switcher._on_receive({"cmd": "AMLv"})
            self.assertEqual(switcher.peak_levels(), {1: (-602, -1204)})
        msgs = list(drain_all(q))
        self.assertEqual([(m["input_id"], m["left"], m["right"]) for m in msgs], [(1, -602, -1204)])


if __name__ == "__main__":
    unittest.main()
