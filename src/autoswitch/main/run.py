"""
CONTRACT: inline
ROLE: Orchestration entrypoint: resolve the switcher, start the runtime threads, wait.

INPUTS:
  - CLI flags, YAML config, environment overrides
OUTPUTS:
  - Topic: log.events  Type: LogEvent
  - artifacts/<run_id>/ (run_meta.json, config_effective.yaml, logs/, crash/)

CONFIG KEYS:
  - switcher.backend / switcher.address / switcher.connect_timeout_ms
  - switcher.replay.scene / switcher.replay.loop
  - runtime.fail_fast: exit non-zero after a thread crash

PERF / TIMING:
  - start modules in defined order; stop by setting the shared stop event

FAILURE MODES:
  - invalid config -> print errors -> exit 1
  - no switcher address / backend error / connect failure -> log startup_failed -> exit 1
  - thread crash -> crash/crash.json -> stop -> exit 1 when fail_fast

LOG EVENTS:
  - module=main.run, event=started, payload keys=backend, run_id, cameras
  - module=main.run, event=wide_camera_missing, payload keys=wide_camera_id, cameras
  - module=main.run, event=startup_failed, payload keys=reason, error
  - module=main.run, event=thread_crash, payload keys=thread, type, message
  - module=main.run, event=shutdown, payload keys=reason
"""

from __future__ import annotations

import argparse
import json
import queue
import sys
import threading
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from autoswitch.core.artifacts import ensure_run_dir, write_run_metadata
from autoswitch.core.bus import Bus
from autoswitch.core.clock import now_ns
from autoswitch.core.config import camera_mapping, get_path, load_config, set_path, validate_config, wide_camera_id
from autoswitch.core.health import start_health_monitor
from autoswitch.core.log_sink import start_log_sink
from autoswitch.core.logging import LogEmitter
from autoswitch.switcher.base import SwitcherError
from autoswitch.switcher.discovery import resolve_address
from autoswitch.switcher.factory import create_switcher
from autoswitch.switching.dispatch import start_command_dispatcher
from autoswitch.switching.engine import start_switch_engine


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audio-driven camera switching for ATEM switchers")
    parser.add_argument("--config", default=None, help="Path to YAML config (defaults apply when omitted)")
    parser.add_argument("--backend", choices=["atem", "replay"], default=None, help="Switcher backend")
    parser.add_argument("--address", default=None, help="Switcher IPv4 address (skips discovery)")
    parser.add_argument("--scene", default=None, help="Scene file for the replay backend")
    parser.add_argument("--verbose", action="store_true", help="Per-level logs and periodic summaries")
    parser.add_argument("--run-seconds", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C)")
    return parser


def apply_cli_overrides(config: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.backend:
        set_path(config, "switcher.backend", args.backend)
    if args.address:
        set_path(config, "switcher.address", args.address)
    if args.scene:
        set_path(config, "switcher.replay.scene", args.scene)
        if not args.backend:
            set_path(config, "switcher.backend", "replay")
    if args.verbose:
        set_path(config, "logging.verbose", True)


def _install_crash_handlers(
    bus: Bus,
    run_dir: Path,
    config: Dict[str, Any],
    logger: LogEmitter,
    stop_event: threading.Event,
) -> tuple[threading.Event, Dict[str, Any]]:
    fail_fast = bool(config.get("runtime", {}).get("fail_fast", True))
    crash_event = threading.Event()
    crash_info: Dict[str, Any] = {}
    state_cache: Dict[str, Any] = {}
    cache_lock = threading.Lock()

    queues = {topic: bus.subscribe(topic) for topic in ("runtime.health", "switch.decisions")}

    def _cache_worker() -> None:
        while not stop_event.is_set():
            for topic, q in queues.items():
                try:
                    while True:
                        msg = q.get_nowait()
                        with cache_lock:
                            state_cache[topic] = msg
                except queue.Empty:
                    continue
            time.sleep(0.02)

    threading.Thread(target=_cache_worker, name="crash-state-cache", daemon=True).start()

    def _write_crash_report(exc_type: type[BaseException], exc: BaseException, tb, thread_name: str) -> None:
        crash_dir = run_dir / "crash"
        crash_dir.mkdir(parents=True, exist_ok=True)
        with cache_lock:
            cached = dict(state_cache)
        payload = {
            "t_ns": now_ns(),
            "thread": thread_name,
            "exception": {
                "type": getattr(exc_type, "__name__", str(exc_type)),
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            },
            "runtime": {
                "run_id": config.get("runtime", {}).get("run_id"),
                "fail_fast": fail_fast,
            },
            "last_state": cached,
        }
        try:
            with open(crash_dir / "crash.json", "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, default=str)
        except OSError as write_exc:
            print(f"Failed to write crash report: {write_exc}", file=sys.stderr)

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        crash_info.clear()
        crash_info.update(
            {
                "thread": getattr(args.thread, "name", "<unknown>"),
                "type": getattr(args.exc_type, "__name__", str(args.exc_type)),
                "message": str(args.exc_value),
            }
        )
        _write_crash_report(args.exc_type, args.exc_value, args.exc_traceback, crash_info["thread"])
        logger.emit("error", "main.run", "thread_crash", dict(crash_info))
        crash_event.set()
        stop_event.set()

    threading.excepthook = _thread_excepthook

    def _sys_excepthook(exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        _write_crash_report(exc_type, exc, tb, "main")
        logger.emit(
            "error",
            "main.run",
            "crash",
            {"thread": "main", "type": getattr(exc_type, "__name__", str(exc_type)), "message": str(exc)},
        )
        crash_event.set()
        stop_event.set()
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _sys_excepthook
    return crash_event, crash_info


def _stop(stop_event: threading.Event, threads: List[threading.Thread], switcher: Optional[Any] = None) -> None:
    stop_event.set()
    if switcher is not None:
        switcher.disconnect()
    for thread in threads:
        thread.join(timeout=1.0)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_arg_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        apply_cli_overrides(config, args)
        if bool(get_path(config, "runtime.enable_validation", True)):
            errors = validate_config(config)
            if errors:
                raise ValueError("Config validation failed:\n" + "\n".join(f"- {e}" for e in errors))
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1)

    run_dir = ensure_run_dir(config)
    bus = Bus.from_config(config)
    logger = LogEmitter.from_config(bus, config)
    stop_event = threading.Event()

    drop_throttle: Dict[str, float] = {}

    def _on_drop(topic: str, depth: int) -> None:
        now_s = time.time()
        last = drop_throttle.get(topic, 0.0)
        if now_s - last < 0.25:
            return
        drop_throttle[topic] = now_s
        if topic == "log.events":
            print(json.dumps({"t_ns": now_ns(), "level": "warning", "module": "core.bus", "event": "queue_full", "topic": topic, "depth": depth}), file=sys.stderr)
            return
        logger.emit("warning", "core.bus", "queue_full", {"topic": topic, "depth": depth})

    bus.set_drop_handler(_on_drop)
    crash_event, crash_info = _install_crash_handlers(bus, run_dir, config, logger, stop_event)

    threads: List[threading.Thread] = []
    log_thread = start_log_sink(bus, config, logger, stop_event)
    if log_thread is not None:
        threads.append(log_thread)

    cameras = sorted(camera_mapping(config))
    if wide_camera_id(config) is None:
        logger.emit(
            "warning",
            "main.run",
            "wide_camera_missing",
            {"wide_camera_id": get_path(config, "switching.wide_camera_id"), "cameras": cameras},
        )

    backend = str(get_path(config, "switcher.backend", "atem")).lower()
    if backend == "atem":
        address = resolve_address(config, logger)
        if not address:
            logger.emit("error", "main.run", "startup_failed", {"reason": "no_switcher_address", "error": ""})
            _stop(stop_event, threads)
            raise SystemExit(1)
        set_path(config, "switcher.address", address)

    try:
        switcher = create_switcher(config, bus=bus, logger=logger)
    except (OSError, ValueError, SwitcherError) as exc:
        logger.emit("error", "main.run", "startup_failed", {"reason": "backend", "error": str(exc)})
        _stop(stop_event, threads)
        raise SystemExit(1)

    timeout_s = float(get_path(config, "switcher.connect_timeout_ms", 5000)) / 1000.0
    if not switcher.connect(timeout_s):
        logger.emit("error", "main.run", "startup_failed", {"reason": "connect_failed", "error": str(switcher.describe())})
        _stop(stop_event, threads, switcher)
        raise SystemExit(1)
    write_run_metadata(run_dir, config, switcher.describe())

    health_thread = start_health_monitor(bus, config, logger, stop_event, switcher)
    if health_thread is not None:
        threads.append(health_thread)
    threads.append(start_switch_engine(bus, config, logger, stop_event, switcher))
    threads.append(start_command_dispatcher(bus, config, logger, stop_event, switcher))

    logger.emit(
        "info",
        "main.run",
        "started",
        {"backend": switcher.name, "run_id": config.get("runtime", {}).get("run_id"), "cameras": cameras},
    )
    deadline = time.time() + args.run_seconds if args.run_seconds > 0 else None
    finished = getattr(switcher, "finished", None)
    reason = "stopped"
    try:
        while not stop_event.is_set() and not crash_event.is_set():
            if deadline is not None and time.time() >= deadline:
                reason = "run_seconds"
                break
            if callable(finished) and finished():
                reason = "scene_finished"
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        reason = "interrupted"
    if crash_event.is_set():
        reason = "crashed"

    logger.emit("info", "main.run", "shutdown", {"reason": reason})
    _stop(stop_event, threads, switcher)

    if crash_event.is_set() and bool(config.get("runtime", {}).get("fail_fast", True)):
        print(f"crashed: {crash_info}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
