"""autoswitch.core.health

CONTRACT: inline
ROLE: Heartbeat aggregation and health summary.

INPUTS:
  - Topic: switcher.levels  Type: LevelEvent
  - Topic: switch.decisions  Type: SwitchDecision
  - switcher.is_connected
OUTPUTS:
  - Topic: runtime.health  Type: dict

CONFIG KEYS:
  - health.enabled: enable health monitor
  - health.thresholds_ms.levels: level feed age that counts as stale

PERF / TIMING:
  - emits health snapshot at ~2 Hz

FAILURE MODES:
  - stale level feed or disconnected switcher -> status=degraded

LOG EVENTS:
  - module=core.health, event=switcher_disconnected, payload keys=backend
  - module=core.health, event=switcher_reconnected, payload keys=backend, down_s
  - module=core.health, event=module_unhealthy, payload keys=reasons (debug)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from autoswitch.core.bus import drain_all
from autoswitch.core.clock import now_ns


@dataclass
class _TopicState:
    last_t_ns: int = 0
    last_wall_s: float = 0.0
    count: int = 0
    rate_hz: float = 0.0
    _last_rate_wall_s: float = 0.0
    _last_rate_count: int = 0

    def on_msg(self, msg: Dict[str, Any], wall_s: Optional[float] = None) -> None:
        self.last_t_ns = int(msg.get("t_ns", self.last_t_ns or now_ns()))
        self.last_wall_s = time.time() if wall_s is None else wall_s
        self.count += 1
        if not self._last_rate_wall_s:
            self._last_rate_wall_s = self.last_wall_s
            self._last_rate_count = self.count
            return
        dt = self.last_wall_s - self._last_rate_wall_s
        if dt >= 1.0:
            self.rate_hz = (self.count - self._last_rate_count) / max(dt, 1e-6)
            self._last_rate_wall_s = self.last_wall_s
            self._last_rate_count = self.count


def start_health_monitor(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    switcher: Any,
) -> Optional[threading.Thread]:
    health_cfg = config.get("health", {})
    if not isinstance(health_cfg, dict):
        health_cfg = {}
    if not bool(health_cfg.get("enabled", True)):
        return None
    thresholds = health_cfg.get("thresholds_ms", {})
    if not isinstance(thresholds, dict):
        thresholds = {}
    th_levels = float(thresholds.get("levels", 1000))

    q_levels = bus.subscribe("switcher.levels")
    q_decisions = bus.subscribe("switch.decisions")
    levels = _TopicState()
    decisions = _TopicState()
    current: Dict[str, Any] = {"input_id": None, "camera": None}
    seq = 0

    def _run() -> None:
        nonlocal seq
        next_emit = time.time()
        connected = bool(switcher.is_connected)
        down_since: Optional[float] = None if connected else time.time()
        while not stop_event.is_set():
            for msg in drain_all(q_levels):
                levels.on_msg(msg)
            for msg in drain_all(q_decisions):
                decisions.on_msg(msg)
                current["input_id"] = msg.get("input_id")
                current["camera"] = msg.get("camera")

            now = time.time()
            if now < next_emit:
                time.sleep(0.02)
                continue
            next_emit = now + 0.5

            is_connected = bool(switcher.is_connected)
            if connected and not is_connected:
                down_since = now
                logger.emit("warning", "core.health", "switcher_disconnected", {"backend": switcher.name})
            elif not connected and is_connected:
                down_s = round(now - down_since, 1) if down_since is not None else None
                down_since = None
                logger.emit("info", "core.health", "switcher_reconnected", {"backend": switcher.name, "down_s": down_s})
            connected = is_connected

            seq += 1
            snapshot = build_snapshot(levels, decisions, connected, current, seq, th_levels, now)
            snapshot["bus"] = {"drop_counts": bus.get_drop_counts()}
            bus.publish("runtime.health", snapshot)
            if snapshot.get("status") == "degraded":
                logger.emit("debug", "core.health", "module_unhealthy", {"reasons": snapshot.get("reasons", [])})

    thread = threading.Thread(target=_run, name="health", daemon=True)
    thread.start()
    return thread


def build_snapshot(
    levels: _TopicState,
    decisions: _TopicState,
    connected: bool,
    current: Dict[str, Any],
    seq: int,
    th_levels_ms: float,
    now_s: Optional[float] = None,
) -> Dict[str, Any]:
    now_s = time.time() if now_s is None else now_s

    def age_ms(st: _TopicState) -> Optional[float]:
        if not st.last_wall_s:
            return None
        return (now_s - st.last_wall_s) * 1000.0

    reasons: List[Dict[str, Any]] = []
    a_levels = age_ms(levels)
    if a_levels is None or a_levels > th_levels_ms:
        reasons.append({"topic": "switcher.levels", "age_ms": a_levels, "threshold_ms": th_levels_ms})
    if not connected:
        reasons.append({"switcher": "disconnected"})

    return {
        "t_ns": now_ns(),
        "seq": seq,
        "status": "ok" if not reasons else "degraded",
        "reasons": reasons,
        "switcher": {"connected": bool(connected)},
        "current_camera": dict(current),
        "topics": {
            "switcher.levels": {"age_ms": a_levels, "rate_hz": float(levels.rate_hz), "count": int(levels.count)},
            "switch.decisions": {"age_ms": age_ms(decisions), "count": int(decisions.count)},
        },
    }
