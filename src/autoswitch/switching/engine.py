"""autoswitch.switching.engine

CONTRACT: inline
ROLE: Single evaluation thread driving LevelTracker -> SwitchDecider -> SwitchScheduler.

INPUTS:
  - Topic: switcher.levels  Type: LevelEvent
  - switcher.peak_levels() polled on every tick
OUTPUTS:
  - Topic: switch.commands  Type: SwitchCommand
  - Topic: switch.decisions  Type: SwitchDecision

CONFIG KEYS:
  - detection.update_interval_ms: polling tick
  - audio.min_db / audio.max_db / audio.curve: level codec parameters
  - switching.arm_silence_on_start: start the silence timer when monitoring starts
  - logging.verbose: per-event level logs, periodic summaries, pending progress
  - logging.summary_interval_ms: level_summary cadence in verbose mode

PERF / TIMING:
  - events are evaluated as they arrive; ticks every update_interval_ms
  - a due tick runs before queued events, so a level backlog cannot stall polling
  - all tracker and switch state is touched only on this thread

FAILURE MODES:
  - malformed level event -> sample dropped (level_dropped in verbose mode)
  - switcher disconnected -> samples stored, no evaluation

LOG EVENTS:
  - module=switching.engine, event=switch, payload keys=camera, input_id, reason, evidence
  - module=switching.engine, event=level, payload keys=input_id, db, normalized, average (verbose)
  - module=switching.engine, event=level_summary, payload keys=inputs, current (verbose)
  - module=switching.engine, event=switch_pending, payload keys=status, target, elapsed_ms, required_ms (verbose)
  - module=switching.engine, event=level_dropped, payload keys=input_id, error (verbose)
  - module=switching.engine, event=monitoring_started, payload keys=cameras, wide_camera_id, wide_camera,
    volume_threshold, min_volume_difference, hold_time_ms, cooldown_ms, cooldown_wide_ms,
    switch_delay_ms, switch_delay_wide_ms, silence_to_wide_ms, wide_hold_before_single_ms, min_db, max_db

TESTS:
  - tests/test_switch_engine.py

CONTRACT DETAILS:
# SwitchCommand

- {t_ns, seq, input_id, camera, reason, evidence}

# SwitchDecision

- {t_ns, t_ms, seq, input_id, previous_input_id, camera, reason, delay_ms, evidence}
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Dict, Optional, Tuple

from autoswitch.audio.levels import LevelPayloadError, normalize_peak_level, parse_fairlight_levels
from autoswitch.audio.tracker import LevelTracker, Sample
from autoswitch.core.clock import Clock, now_ms as default_clock, now_ns
from autoswitch.core.config import camera_mapping, camera_name, get_path
from autoswitch.switching.decider import SwitchDecider
from autoswitch.switching.scheduler import ConfirmedSwitch, SwitchScheduler, SwitchState

MODULE = "switching.engine"


class SwitchEngine:
    """Owns the switching state; every evaluation goes through evaluate()."""

    def __init__(
        self,
        config: Dict[str, Any],
        logger: Optional[Any] = None,
        clock: Clock = default_clock,
        bus: Optional[Any] = None,
    ) -> None:
        audio = config.get("audio", {})
        self._config = config
        self._logger = logger
        self._clock = clock
        self._bus = bus
        self._min_db = float(audio.get("min_db", -40.0))
        self._max_db = float(audio.get("max_db", 0.0))
        self._curve = float(audio.get("curve", 0.7))
        self._cameras = camera_mapping(config)
        self._verbose = bool(get_path(config, "logging.verbose", False))
        self._summary_interval_ms = float(get_path(config, "logging.summary_interval_ms", 1000))
        self._arm_silence = bool(get_path(config, "switching.arm_silence_on_start", False))
        self.tracker = LevelTracker(config)
        self.decider = SwitchDecider(config)
        self.scheduler = SwitchScheduler(config, self.decider)
        self.state = SwitchState()
        self._seq = 0
        self._last_summary_ms: Optional[float] = None
        self._last_pending_log: Optional[tuple] = None
        self._connected = True

    @property
    def current_camera_id(self) -> Optional[int]:
        return self.state.current_camera_id

    def start(self, now_ms: Optional[float] = None) -> None:
        t_ms = self._clock() if now_ms is None else float(now_ms)
        if self._arm_silence:
            self.tracker.mark_activity(t_ms)
        self._last_summary_ms = t_ms
        self._log("info", "monitoring_started", self._tuning())

    def set_connected(self, connected: bool) -> None:
        self._connected = bool(connected)

    def evaluate(self, now_ms: Optional[float] = None, sample: Optional[tuple] = None) -> Optional[ConfirmedSwitch]:
        """Store an optional (input_id, normalized, db) sample, then run the scheduler once."""
        t_ms = self._clock() if now_ms is None else float(now_ms)
        if sample is not None:
            input_id, normalized, db = sample
            self._store(int(input_id), normalized, db, t_ms)
        if not self._connected:
            return None
        confirmed = self.scheduler.evaluate(self.tracker, self.state, t_ms)
        if confirmed is not None:
            self._publish(confirmed)
        elif self._verbose:
            self._log_pending()
        if self._verbose:
            self._maybe_summary(t_ms)
        return confirmed

    def ingest_level_event(self, msg: Dict[str, Any], now_ms: Optional[float] = None) -> Optional[ConfirmedSwitch]:
        t_ms = self._clock() if now_ms is None else float(now_ms)
        try:
            input_id = int(msg["input_id"])
            if input_id <= 0:
                raise LevelPayloadError(f"input id must be positive: {input_id}")
            encoding = str(msg.get("encoding", "fairlight"))
            if encoding == "peak":
                db, normalized = normalize_peak_level(msg.get("raw"))
            else:
                db, normalized = parse_fairlight_levels(
                    msg.get("left"), msg.get("right"), self._min_db, self._max_db, self._curve
                )
        except (KeyError, TypeError, ValueError) as exc:
            if self._verbose:
                input_id = msg.get("input_id") if isinstance(msg, dict) else None
                self._log("debug", "level_dropped", {"input_id": input_id, "error": str(exc)})
            return None
        return self.evaluate(t_ms, (input_id, normalized, db))

    def poll(self, switcher: Any, now_ms: Optional[float] = None) -> Optional[ConfirmedSwitch]:
        """Store one polled sample per configured input, then evaluate once."""
        t_ms = self._clock() if now_ms is None else float(now_ms)
        self._connected = bool(switcher.is_connected)
        if self._connected:
            levels = switcher.peak_levels()
            for input_id in self._cameras:
                if input_id not in levels:
                    continue
                db, normalized = self._decode_polled(levels[input_id])
                self._store(input_id, normalized, db, t_ms)
        return self.evaluate(t_ms)

    def _decode_polled(self, raw: Any) -> Tuple[float, float]:
        if isinstance(raw, (tuple, list)) and len(raw) == 2:
            return parse_fairlight_levels(raw[0], raw[1], self._min_db, self._max_db, self._curve)
        return normalize_peak_level(raw)

    def _tuning(self) -> Dict[str, Any]:
        """Effective thresholds and timings, logged once so the active tuning is on record."""
        cfg = self._config
        wide_id = self.decider.wide_id
        return {
            "cameras": sorted(self._cameras),
            "wide_camera_id": wide_id,
            "wide_camera": camera_name(cfg, wide_id) if wide_id is not None else None,
            "volume_threshold": float(get_path(cfg, "audio.volume_threshold", 0.11)),
            "min_volume_difference": float(get_path(cfg, "audio.min_volume_difference", 0.02)),
            "hold_time_ms": float(get_path(cfg, "audio.hold_time_ms", 300)),
            "cooldown_ms": float(get_path(cfg, "audio.cooldown_ms", 2000)),
            "cooldown_wide_ms": float(get_path(cfg, "audio.cooldown_wide_ms", 400)),
            "switch_delay_ms": float(get_path(cfg, "audio.switch_delay_ms", 800)),
            "switch_delay_wide_ms": float(get_path(cfg, "audio.switch_delay_wide_ms", 300)),
            "silence_to_wide_ms": float(get_path(cfg, "switching.silence_to_wide_ms", 2000)),
            "wide_hold_before_single_ms": float(get_path(cfg, "switching.wide_hold_before_single_ms", 0)),
            "min_db": self._min_db,
            "max_db": self._max_db,
        }

    def _store(self, input_id: int, normalized: float, db: float, t_ms: float) -> Optional[Sample]:
        try:
            sample = self.tracker.store(input_id, normalized, db, t_ms)
        except LevelPayloadError as exc:
            if self._verbose:
                self._log("debug", "level_dropped", {"input_id": input_id, "error": str(exc)})
            return None
        if self._verbose:
            self._log(
                "debug",
                "level",
                {
                    "input_id": input_id,
                    "db": round(sample.db, 1) if sample.db != float("-inf") else None,
                    "normalized": round(sample.normalized, 4),
                    "average": round(self.tracker.average(input_id), 4),
                },
            )
        return sample

    def _publish(self, confirmed: ConfirmedSwitch) -> None:
        self._seq += 1
        candidate = confirmed.candidate
        camera = camera_name(self._config, confirmed.target_id)
        evidence = candidate.evidence()
        self._log(
            "info",
            "switch",
            {
                "camera": camera,
                "input_id": confirmed.target_id,
                "reason": candidate.reason.value,
                "detail": candidate.describe(),
                "evidence": evidence,
            },
        )
        self._last_pending_log = None
        if self._bus is None:
            return
        t_ns = now_ns()
        self._bus.publish(
            "switch.commands",
            {
                "t_ns": t_ns,
                "seq": self._seq,
                "input_id": confirmed.target_id,
                "camera": camera,
                "reason": candidate.reason.value,
                "evidence": evidence,
            },
        )
        self._bus.publish(
            "switch.decisions",
            {
                "t_ns": t_ns,
                "t_ms": confirmed.t_ms,
                "seq": self._seq,
                "input_id": confirmed.target_id,
                "previous_input_id": confirmed.previous_camera_id,
                "camera": camera,
                "reason": candidate.reason.value,
                "delay_ms": confirmed.delay_ms,
                "evidence": evidence,
            },
        )

    def _log_pending(self) -> None:
        status = self.scheduler.last_status
        if status.status not in {"pending", "holding"}:
            self._last_pending_log = None
            return
        # Log when the target changes and then about once per quarter of the wait.
        step = int(status.elapsed_ms // max(1.0, status.required_ms / 4.0))
        key = (status.status, status.target_id, step)
        if key == self._last_pending_log:
            return
        self._last_pending_log = key
        self._log(
            "debug",
            "switch_pending",
            {
                "status": status.status,
                "target": camera_name(self._config, status.target_id),
                "elapsed_ms": round(status.elapsed_ms, 1),
                "required_ms": status.required_ms,
            },
        )

    def _maybe_summary(self, t_ms: float) -> None:
        if self._last_summary_ms is not None and (t_ms - self._last_summary_ms) < self._summary_interval_ms:
            return
        self._last_summary_ms = t_ms
        active = {a.input_id for a in self.tracker.active_inputs(t_ms)}
        inputs = {}
        for input_id in sorted(self._cameras):
            latest = self.tracker.latest(input_id)
            inputs[str(input_id)] = {
                "average_pct": round(self.tracker.average(input_id) * 100.0, 1),
                "db": round(latest.db, 1) if latest is not None and latest.db != float("-inf") else None,
                "active": input_id in active,
                "current": input_id == self.state.current_camera_id,
            }
        silence_ms = self.tracker.silence_duration_ms(t_ms)
        self._log(
            "debug",
            "level_summary",
            {
                "inputs": inputs,
                "current": camera_name(self._config, self.state.current_camera_id)
                if self.state.current_camera_id is not None
                else None,
                "silence_ms": round(silence_ms, 1) if silence_ms is not None else None,
            },
        )

    def _log(self, level: str, event: str, payload: Dict[str, Any]) -> None:
        if self._logger is None:
            return
        self._logger.emit(level, MODULE, event, payload)


def engine_step(
    engine: SwitchEngine,
    q: queue.Queue[Any],
    switcher: Any,
    clock: Clock,
    next_tick: float,
    interval_ms: float,
) -> float:
    """Poll if the tick is due, else handle at most one level event. Returns the next tick time."""
    now = clock()
    if now >= next_tick:
        engine.poll(switcher, now)
        next_tick += interval_ms
        if next_tick <= now:
            # Fell behind; skip missed ticks instead of bursting.
            next_tick = now + interval_ms
        return next_tick
    try:
        msg = q.get(timeout=(next_tick - now) / 1000.0)
    except queue.Empty:
        return next_tick
    engine.set_connected(bool(switcher.is_connected))
    engine.ingest_level_event(msg, clock())
    return next_tick


def start_switch_engine(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    switcher: Any,
    clock: Clock = default_clock,
) -> threading.Thread:
    q = bus.subscribe("switcher.levels")
    engine = SwitchEngine(config, logger=logger, clock=clock, bus=bus)
    interval_ms = max(1.0, float(get_path(config, "detection.update_interval_ms", 100)))

    def _run() -> None:
        engine.start(clock())
        next_tick = clock() + interval_ms
        while not stop_event.is_set():
            next_tick = engine_step(engine, q, switcher, clock, next_tick, interval_ms)

    thread = threading.Thread(target=_run, name="switch-engine", daemon=True)
    thread.start()
    return thread
