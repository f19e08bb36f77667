"""autoswitch.switching.dispatch

CONTRACT: inline
ROLE: Send confirmed switches to the video switcher, fire-and-forget.

INPUTS:
  - Topic: switch.commands  Type: SwitchCommand
OUTPUTS:
  - switcher program/preview commands

CONFIG KEYS:
  - switcher.transition.type: cut | auto
  - switcher.transition.duration_frames: auto transition duration, applied once at start

PERF / TIMING:
  - one command at a time on its own thread; the engine never waits for it

FAILURE MODES:
  - switcher offline -> log switcher_offline, command dropped
  - exception or False return -> log switch_failed, no retry, no rollback

LOG EVENTS:
  - module=switching.dispatch, event=switch_failed, payload keys=input_id, camera, error
  - module=switching.dispatch, event=switcher_offline, payload keys=input_id, camera
  - module=switching.dispatch, event=switch_sent, payload keys=input_id, transition, latency_ms (debug)
  - module=switching.dispatch, event=transition_rate_set, payload keys=frames
  - module=switching.dispatch, event=transition_rate_failed, payload keys=frames, error

TESTS:
  - tests/test_dispatch.py
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Dict

from autoswitch.core.clock import now_ns
from autoswitch.core.config import get_path
from autoswitch.switcher.base import SwitcherError

MODULE = "switching.dispatch"


def send_switch(switcher: Any, command: Dict[str, Any], transition: str, logger: Any) -> bool:
    """Apply one SwitchCommand; returns True when the switcher accepted it."""
    input_id = int(command["input_id"])
    camera = command.get("camera", f"Input {input_id}")
    if not switcher.is_connected:
        logger.emit("error", MODULE, "switcher_offline", {"input_id": input_id, "camera": camera})
        return False
    started_ns = now_ns()
    try:
        if transition == "cut":
            ok = bool(switcher.set_program_input(input_id))
        else:
            ok = bool(switcher.set_preview_input(input_id)) and bool(switcher.auto_transition())
    except SwitcherError as exc:
        logger.emit("error", MODULE, "switch_failed", {"input_id": input_id, "camera": camera, "error": str(exc)})
        return False
    if not ok:
        logger.emit("error", MODULE, "switch_failed", {"input_id": input_id, "camera": camera, "error": "rejected"})
        return False
    done_ns = now_ns()
    logger.emit(
        "debug",
        MODULE,
        "switch_sent",
        {
            "input_id": input_id,
            "transition": transition,
            "latency_ms": round((done_ns - started_ns) / 1e6, 2),
            "queued_ms": round((started_ns - int(command.get("t_ns", started_ns))) / 1e6, 2),
        },
    )
    return True


def apply_transition_rate(switcher: Any, frames: int, logger: Any) -> bool:
    """Set the auto transition duration; a failure is logged and the default rate stays."""
    try:
        ok = bool(switcher.set_transition_rate(frames))
    except SwitcherError as exc:
        logger.emit("warning", MODULE, "transition_rate_failed", {"frames": frames, "error": str(exc)})
        return False
    if not ok:
        logger.emit("warning", MODULE, "transition_rate_failed", {"frames": frames, "error": "rejected"})
        return False
    logger.emit("info", MODULE, "transition_rate_set", {"frames": frames})
    return True


def start_command_dispatcher(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    switcher: Any,
) -> threading.Thread:
    q = bus.subscribe("switch.commands")
    transition = str(get_path(config, "switcher.transition.type", "cut") or "cut").lower()
    frames = int(get_path(config, "switcher.transition.duration_frames", 30))

    def _run() -> None:
        if transition != "cut":
            apply_transition_rate(switcher, frames, logger)
        while not stop_event.is_set():
            try:
                command = q.get(timeout=0.1)
            except queue.Empty:
                continue
            send_switch(switcher, command, transition, logger)

    thread = threading.Thread(target=_run, name="switch-dispatch", daemon=True)
    thread.start()
    return thread
