"""
CONTRACT: inline
ROLE: Structured logging to the bus (JSONL sink) + console.

INPUTS:
  - n/a
OUTPUTS:
  - Topic: log.events  Type: LogEvent

CONFIG KEYS:
  - logging.level: minimum console level (debug|info|warning|error)
  - logging.console_format: text | json
  - logging.verbose: lowers the console level to debug

PERF / TIMING:
  - emit() never blocks; the bus drops oldest on overflow

FAILURE MODES:
  - console write failure -> ignored (the bus copy still reaches the sink)

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_runtime.py

CONTRACT DETAILS:
# Logging contract

- Structured LogEvent with module, severity, and context.
- Every event goes to the bus regardless of level; the console is filtered.
- One `switch` event per confirmed camera change is the operator-facing line.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Dict, Optional, TextIO

from autoswitch.core.clock import now_ns


LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


class LogEmitter:
    """Emit structured LogEvents to the bus and stdout."""

    def __init__(
        self,
        bus: Optional[Any],
        min_level: str = "info",
        run_id: str = "",
        console_format: str = "text",
        stream: Optional[TextIO] = None,
    ) -> None:
        self._bus = bus
        self._min_level = LEVELS.get(str(min_level).lower(), 20)
        self._run_id = run_id
        self._format = console_format if console_format in {"text", "json"} else "text"
        self._stream = stream

    @classmethod
    def from_config(cls, bus: Optional[Any], config: Dict[str, Any], stream: Optional[TextIO] = None) -> "LogEmitter":
        log_cfg = config.get("logging", {})
        if not isinstance(log_cfg, dict):
            log_cfg = {}
        level = str(log_cfg.get("level", "info"))
        if bool(log_cfg.get("verbose", False)):
            level = "debug"
        return cls(
            bus,
            min_level=level,
            run_id=str(config.get("runtime", {}).get("run_id", "") or ""),
            console_format=str(log_cfg.get("console_format", "text")),
            stream=stream,
        )

    def is_enabled(self, level: str) -> bool:
        return LEVELS.get(level, 0) >= self._min_level

    def emit(self, level: str, module: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        record = {
            "t_ns": now_ns(),
            "wall_s": time.time(),
            "run_id": self._run_id,
            "level": level,
            "message": event,
            "context": {
                "module": module,
                "event": event,
                "details": payload or {},
            },
        }
        if self._bus is not None:
            self._bus.publish("log.events", record)
        if not self.is_enabled(level):
            return
        stream = self._stream or sys.stdout
        try:
            if self._format == "json":
                stream.write(json.dumps(record, sort_keys=True, default=str) + "\n")
            else:
                stream.write(format_text(record) + "\n")
            stream.flush()
        except (OSError, ValueError):
            pass


def format_text(record: Dict[str, Any]) -> str:
    """Render a LogEvent as one console line."""
    stamp = time.strftime("%H:%M:%S", time.localtime(float(record.get("wall_s", time.time()))))
    ctx = record.get("context", {})
    details = ctx.get("details", {}) or {}
    parts = [f"{key}={_fmt_value(value)}" for key, value in details.items()]
    head = f"[{stamp}] {str(record.get('level', '')).upper():<7} {ctx.get('module', '')}: {ctx.get('event', '')}"
    return head + (" " + " ".join(parts) if parts else "")


def _fmt_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".") if value == value else "nan"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    text = str(value)
    return f'"{text}"' if " " in text else text
