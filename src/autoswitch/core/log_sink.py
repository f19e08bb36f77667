"""autoswitch.core.log_sink

CONTRACT: inline
ROLE: Persist LogEvents and confirmed switch decisions to disk as JSONL.

INPUTS:
  - Topic: log.events  Type: LogEvent
  - Topic: switch.decisions  Type: SwitchDecision
OUTPUTS:
  - artifacts/<run_id>/logs/events.jsonl
  - artifacts/<run_id>/logs/switches.jsonl

CONFIG KEYS:
  - logging.file.enabled: enable file logging
  - logging.file.flush_interval_ms: flush interval
  - logging.file.rotate_mb: optional rotation size for events.jsonl
  - runtime.artifacts.dir_run: run directory path

FAILURE MODES:
  - write failure -> log log_write_failed -> sink thread exits
"""

from __future__ import annotations

import json
import queue
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from autoswitch.core.bus import drain_all


def start_log_sink(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
) -> Optional[threading.Thread]:
    file_cfg = config.get("logging", {}).get("file", {})
    if not isinstance(file_cfg, dict):
        file_cfg = {}
    if not bool(file_cfg.get("enabled", False)):
        return None

    flush_interval_ms = float(file_cfg.get("flush_interval_ms", 200.0))
    rotate_bytes = int(float(file_cfg.get("rotate_mb", 0.0)) * 1024 * 1024)
    run_dir = config.get("runtime", {}).get("artifacts", {}).get("dir_run")
    if not run_dir:
        return None

    logs_dir = Path(str(run_dir)) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    events_path = logs_dir / "events.jsonl"
    switches_path = logs_dir / "switches.jsonl"
    q_events = bus.subscribe("log.events", maxsize=1024)
    q_switches = bus.subscribe("switch.decisions", maxsize=64)

    def _run() -> None:
        events_fh: TextIO = open(events_path, "a", encoding="utf-8")
        switches_fh: TextIO = open(switches_path, "a", encoding="utf-8")
        next_flush = time.time() + (flush_interval_ms / 1000.0)
        file_index = 0
        try:
            while not stop_event.is_set():
                try:
                    event = q_events.get(timeout=0.1)
                except queue.Empty:
                    event = None
                if event is not None:
                    events_fh.write(json.dumps(event, sort_keys=True, default=str) + "\n")
                for decision in drain_all(q_switches):
                    switches_fh.write(json.dumps(decision, sort_keys=True, default=str) + "\n")
                now = time.time()
                if now < next_flush:
                    continue
                events_fh.flush()
                switches_fh.flush()
                next_flush = now + (flush_interval_ms / 1000.0)
                if rotate_bytes > 0 and events_fh.tell() >= rotate_bytes:
                    events_fh.close()
                    file_index += 1
                    events_path.rename(logs_dir / f"events.{file_index:03d}.jsonl")
                    events_fh = open(events_path, "a", encoding="utf-8")
            # Flush whatever arrived before shutdown.
            for event in drain_all(q_events):
                events_fh.write(json.dumps(event, sort_keys=True, default=str) + "\n")
            for decision in drain_all(q_switches):
                switches_fh.write(json.dumps(decision, sort_keys=True, default=str) + "\n")
        except OSError as exc:
            logger.emit("warning", "core.log_sink", "log_write_failed", {"path": str(events_path), "error": str(exc)})
        finally:
            for fh in (events_fh, switches_fh):
                try:
                    fh.flush()
                    fh.close()
                except (OSError, ValueError):
                    pass

    thread = threading.Thread(target=_run, name="log-sink", daemon=True)
    thread.start()
    return thread
