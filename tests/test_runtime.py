import io
import json
import os
import tempfile
import threading
import time
import unittest
from pathlib import Path

import yaml

from autoswitch.core.artifacts import apply_retention, create_run_dir, ensure_run_dir, write_run_metadata
from autoswitch.core.bus import Bus, drain_all, drain_latest
from autoswitch.core.config import load_config
from autoswitch.core.health import _TopicState, build_snapshot
from autoswitch.core.log_sink import start_log_sink
from autoswitch.core.logging import LogEmitter, format_text


class BusTests(unittest.TestCase):
    def test_drop_oldest_and_counts(self) -> None:
        drops = []
        bus = Bus(max_queue_depth=2, on_drop=lambda topic, depth: drops.append((topic, depth)))
        q = bus.subscribe("switch.commands")
        for idx in range(4):
            bus.publish("switch.commands", idx)
        self.assertEqual(list(drain_all(q)), [2, 3])
        self.assertEqual(bus.get_drop_counts(), {"switch.commands": 2})
        self.assertEqual(drops, [("switch.commands", 2), ("switch.commands", 2)])

    def test_levels_topic_depth_from_config(self) -> None:
        bus = Bus.from_config({"bus": {"max_queue_depth": 4, "levels_queue_depth": 32}})
        self.assertEqual(bus.subscribe("switcher.levels").maxsize, 32)
        self.assertEqual(bus.subscribe("switch.commands").maxsize, 4)

    def test_drain_latest(self) -> None:
        bus = Bus(max_queue_depth=8)
        q = bus.subscribe("runtime.health")
        self.assertIsNone(drain_latest(q))
        bus.publish("runtime.health", {"seq": 1})
        bus.publish("runtime.health", {"seq": 2})
        self.assertEqual(drain_latest(q), {"seq": 2})
        self.assertTrue(q.empty())


class LogEmitterTests(unittest.TestCase):
    def test_bus_gets_everything_console_is_filtered(self) -> None:
        bus = Bus(max_queue_depth=8)
        q = bus.subscribe("log.events")
        stream = io.StringIO()
        logger = LogEmitter(bus, min_level="info", run_id="r1", stream=stream)
        logger.emit("debug", "switching.engine", "level", {"input_id": 1})
        logger.emit("info", "switching.engine", "switch", {"camera": "Wide Shot", "input_id": 3})
        records = list(drain_all(q))
        self.assertEqual([r["level"] for r in records], ["debug", "info"])
        self.assertEqual(records[1]["run_id"], "r1")
        self.assertEqual(records[1]["context"]["details"]["input_id"], 3)
        lines = stream.getvalue().strip().splitlines()
        self.assertEqual(len(lines), 1)
        self.assertIn("switching.engine: switch", lines[0])
        self.assertIn('camera="Wide Shot"', lines[0])

    def test_verbose_config_lowers_console_level(self) -> None:
        config = {"logging": {"level": "warning", "verbose": True, "console_format": "json"}}
        stream = io.StringIO()
        logger = LogEmitter.from_config(None, config, stream=stream)
        self.assertTrue(logger.is_enabled("debug"))
        logger.emit("debug", "test", "hello", {})
        self.assertEqual(json.loads(stream.getvalue())["context"]["event"], "hello")

    def test_format_text(self) -> None:
        record = {
            "wall_s": time.time(),
            "level": "warning",
            "context": {"module": "core.health", "event": "x", "details": {"age": 1.5, "ids": [1, 2]}},
        }
        line = format_text(record)
        self.assertIn("WARNING", line)
        self.assertIn("age=1.5", line)
        self.assertIn("ids=1,2", line)


class ArtifactsTests(unittest.TestCase):
    def test_retention_keeps_last_n(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            base = Path(td)
            for idx in range(12):
                p = base / f"run{idx:02d}"
                p.mkdir(parents=True)
                ts = time.time() - (12 - idx) * 10
                os.utime(p, (ts, ts))
            apply_retention(base, max_runs=10, keep_dir=base / "run00")
            remaining = sorted(p.name for p in base.iterdir() if p.is_dir())
            self.assertIn("run00", remaining)
            self.assertIn("run11", remaining)
            self.assertLessEqual(len(remaining), 11)

    def test_run_dir_and_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = load_config(None, environ={})
            config["runtime"]["artifacts"]["dir"] = td
            config["runtime"]["run_id"] = "bench"
            run_dir = ensure_run_dir(config)
            self.assertEqual(run_dir.name, "bench")
            self.assertTrue((run_dir / "logs").is_dir())
            self.assertTrue((run_dir / "crash").is_dir())
            self.assertEqual(create_run_dir(td, run_id="bench").name, "bench_02")

            write_run_metadata(run_dir, config, {"backend": "replay", "model": "replay"})
            meta = json.loads((run_dir / "run_meta.json").read_text(encoding="utf-8"))
            self.assertEqual(meta["switcher"]["info"]["backend"], "replay")
            self.assertEqual(meta["wide_camera_id"], 3)
            self.assertIn("autoswitch", meta["versions"])
            effective = yaml.safe_load((run_dir / "config_effective.yaml").read_text(encoding="utf-8"))
            self.assertEqual(effective["runtime"]["run_id"], "bench")
            self.assertEqual((Path(td) / "LATEST").read_text(encoding="utf-8"), "bench")


class LogSinkTests(unittest.TestCase):
    def test_log_sink_writes_jsonl(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            run_dir = create_run_dir(td, run_id="test", max_runs=10)
            config = {
                "runtime": {"artifacts": {"dir_run": str(run_dir)}},
                "logging": {"file": {"enabled": True, "flush_interval_ms": 10, "rotate_mb": 0}},
            }
            bus = Bus(max_queue_depth=8)
            logger = LogEmitter(bus, min_level="error", run_id="test", stream=io.StringIO())
            stop = threading.Event()
            thread = start_log_sink(bus, config, logger, stop)
            self.assertIsNotNone(thread)
            logger.emit("info", "test", "hello", {"a": 1})
            bus.publish("switch.decisions", {"seq": 1, "input_id": 3, "reason": "silence"})
            time.sleep(0.05)
            stop.set()
            thread.join(timeout=1.0)
            events = (run_dir / "logs" / "events.jsonl").read_text(encoding="utf-8").strip().splitlines()
            self.assertEqual(json.loads(events[-1])["context"]["event"], "hello")
            switches = (run_dir / "logs" / "switches.jsonl").read_text(encoding="utf-8").strip().splitlines()
            self.assertEqual(json.loads(switches[0])["input_id"], 3)

    def test_disabled_sink(self) -> None:
        config = {"logging": {"file": {"enabled": False}}}
        self.assertIsNone(start_log_sink(Bus(), config, LogEmitter(None), threading.Event()))


class HealthSnapshotTests(unittest.TestCase):
    def test_ok_when_levels_fresh_and_connected(self) -> None:
        levels = _TopicState()
        levels.on_msg({"t_ns": 1}, wall_s=100.0)
        snapshot = build_snapshot(levels, _TopicState(), True, {"input_id": 2, "camera": "Guest"}, 1, 1000.0, now_s=100.5)
        self.assertEqual(snapshot["status"], "ok")
        self.assertAlmostEqual(snapshot["topics"]["switcher.levels"]["age_ms"], 500.0)
        self.assertEqual(snapshot["current_camera"]["camera"], "Guest")

    def test_degraded_reasons(self) -> None:
        levels = _TopicState()
        levels.on_msg({"t_ns": 1}, wall_s=100.0)
        snapshot = build_snapshot(levels, _TopicState(), False, {}, 2, 1000.0, now_s=102.0)
        self.assertEqual(snapshot["status"], "degraded")
        self.assertEqual(len(snapshot["reasons"]), 2)
        never = build_snapshot(_TopicState(), _TopicState(), True, {}, 3, 1000.0, now_s=1.0)
        self.assertEqual(never["reasons"][0]["age_ms"], None)


if __name__ == "__main__":
    unittest.main()
