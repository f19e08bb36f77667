"""
CONTRACT: inline
ROLE: Load YAML config, apply env overrides, validate, and expose typed accessors.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - config_path: path to YAML file (optional; defaults alone are a valid config)
  - runtime.enable_validation: enable validation (bool)

PERF / TIMING:
  - load once at startup; no hot reload

FAILURE MODES:
  - invalid value -> raise ValueError listing every problem
  - bad env override -> raise ValueError naming the variable

LOG EVENTS:
  - n/a (callers log validation_failed)

TESTS:
  - tests/test_config.py

CONTRACT DETAILS:
# Config contract

- Precedence: defaults < YAML file < environment variables < CLI flags.
- Camera ids are switcher input numbers; YAML keys may be ints or strings.
- A missing wide camera is not an error: wide rules are skipped.
"""

from __future__ import annotations

import copy
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml


BACKENDS = {"atem", "replay"}
TRANSITION_TYPES = {"cut", "auto"}

# (env var, dotted path, parser)
ENV_OVERRIDES: List[Tuple[str, str, Callable[[str], Any]]] = [
    ("SWITCHER_BACKEND", "switcher.backend", str),
    ("ATEM_IP", "switcher.address", str),
    ("TRANSITION_TYPE", "switcher.transition.type", str),
    ("TRANSITION_DURATION", "switcher.transition.duration_frames", int),
    ("REPLAY_SCENE", "switcher.replay.scene", str),
    ("WIDE_CAMERA_ID", "switching.wide_camera_id", int),
    ("SILENCE_TO_WIDE_MS", "switching.silence_to_wide_ms", int),
    ("WIDE_HOLD_BEFORE_SINGLE_MS", "switching.wide_hold_before_single_ms", int),
    ("AUDIO_MIN_DB", "audio.min_db", float),
    ("AUDIO_MAX_DB", "audio.max_db", float),
    ("VOLUME_THRESHOLD", "audio.volume_threshold", float),
    ("HOLD_TIME", "audio.hold_time_ms", int),
    ("COOLDOWN_TIME", "audio.cooldown_ms", int),
    ("COOLDOWN_WIDE_MS", "audio.cooldown_wide_ms", int),
    ("MIN_VOLUME_DIFFERENCE", "audio.min_volume_difference", float),
    ("SWITCH_DELAY_MS", "audio.switch_delay_ms", int),
    ("SWITCH_DELAY_WIDE_MS", "audio.switch_delay_wide_ms", int),
]


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load YAML config, apply defaults and environment overrides."""
    data: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
    merged = _merge_dicts(_default_config(), data)
    if "cameras" in data:
        # A user camera list replaces the default one instead of merging with it.
        merged["cameras"] = copy.deepcopy(data["cameras"])
    apply_env_overrides(merged, os.environ if environ is None else environ)
    if bool(get_path(merged, "runtime.enable_validation", False)):
        errors = validate_config(merged)
        if errors:
            joined = "\n".join(f"- {e}" for e in errors)
            raise ValueError(f"Config validation failed for {path or '<defaults>'}:\n{joined}")
    return merged


def get_path(config: Dict[str, Any], dotted_path: str, default: Any = None) -> Any:
    """Get a nested config value by dotted path."""
    node: Any = config
    for key in dotted_path.split("."):
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def set_path(config: Dict[str, Any], dotted_path: str, value: Any) -> None:
    """Set a nested config value by dotted path, creating parents."""
    keys = dotted_path.split(".")
    node = config
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value


def apply_env_overrides(config: Dict[str, Any], environ: Mapping[str, str]) -> None:
    for env_name, dotted, parse in ENV_OVERRIDES:
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = parse(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from exc
        set_path(config, dotted, value)
    if str(environ.get("DEBUG", "")).strip().lower() == "true":
        set_path(config, "logging.verbose", True)


def camera_mapping(config: Dict[str, Any]) -> Dict[int, Dict[str, Any]]:
    """Return cameras keyed by integer input id; entries that don't parse are skipped."""
    raw = config.get("cameras", {})
    cameras: Dict[int, Dict[str, Any]] = {}
    if isinstance(raw, dict):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = [(entry.get("id"), entry) for entry in raw if isinstance(entry, dict)]
    else:
        items = []
    for key, value in items:
        try:
            input_id = int(key)
        except (TypeError, ValueError):
            continue
        entry = dict(value) if isinstance(value, dict) else {}
        entry.setdefault("name", f"Camera {input_id}")
        cameras[input_id] = entry
    return cameras


def camera_name(config: Dict[str, Any], input_id: Optional[int]) -> str:
    if input_id is None:
        return "none"
    entry = camera_mapping(config).get(int(input_id))
    return str(entry["name"]) if entry else f"Input {input_id}"


def wide_camera_id(config: Dict[str, Any]) -> Optional[int]:
    """Configured wide camera, or None when unset or not in the camera mapping."""
    raw = get_path(config, "switching.wide_camera_id")
    if raw is None:
        return None
    try:
        wide_id = int(raw)
    except (TypeError, ValueError):
        return None
    return wide_id if wide_id in camera_mapping(config) else None


def _default_config() -> Dict[str, Any]:
    return {
        "runtime": {
            "run_id": "",
            "fail_fast": True,
            "enable_validation": True,
            "artifacts": {
                "dir": "artifacts",
                "retention": {
                    "max_runs": 10,
                },
            },
        },
        "switcher": {
            "backend": "atem",
            "address": None,
            "connect_timeout_ms": 5000,
            "mix_effect": 0,
            "discovery": {
                "timeout_ms": 5000,
                "port": 20595,
                "interactive": True,
            },
            "transition": {
                "type": "cut",
                "duration_frames": 30,
            },
            "replay": {
                "scene": "",
                "loop": False,
                "emit_events": True,
                "event_interval_ms": 50,
            },
        },
        "cameras": {
            1: {"name": "Camera 1"},
            2: {"name": "Camera 2"},
            3: {"name": "Camera 3"},
            4: {"name": "Camera 4"},
        },
        "switching": {
            "wide_camera_id": 3,
            "silence_to_wide_ms": 2000,
            "wide_hold_before_single_ms": 0,
            "arm_silence_on_start": False,
        },
        "audio": {
            "min_db": -40.0,
            "max_db": 0.0,
            "curve": 0.7,
            "volume_threshold": 0.11,
            "hold_time_ms": 300,
            "cooldown_ms": 2000,
            # Shorter cooldown when cutting to the wide shot (2+ speakers or silence).
            "cooldown_wide_ms": 400,
            "min_volume_difference": 0.02,
            "switch_delay_ms": 800,
            "switch_delay_wide_ms": 300,
        },
        "detection": {
            "update_interval_ms": 100,
            "samples_for_average": 30,
        },
        "health": {
            "enabled": True,
            "thresholds_ms": {
                "levels": 1000,
            },
        },
        "bus": {
            "max_queue_depth": 8,
            "levels_queue_depth": 256,
        },
        "logging": {
            "level": "info",
            "console_format": "text",
            "verbose": False,
            "summary_interval_ms": 1000,
            "file": {
                "enabled": True,
                "flush_interval_ms": 200,
                "rotate_mb": 50,
            },
        },
    }


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Return a list of validation errors for the merged config."""
    errors: List[str] = []

    audio_cfg = config.get("audio", {})
    if not isinstance(audio_cfg, dict):
        errors.append("audio must be a mapping")
        audio_cfg = {}
    min_db = _as_float(audio_cfg.get("min_db"), "audio.min_db", errors)
    max_db = _as_float(audio_cfg.get("max_db"), "audio.max_db", errors)
    if min_db is not None and max_db is not None and min_db >= max_db:
        errors.append(f"audio.min_db ({min_db}) must be below audio.max_db ({max_db})")
    curve = _as_float(audio_cfg.get("curve", 0.7), "audio.curve", errors)
    if curve is not None and curve <= 0:
        errors.append("audio.curve must be > 0")
    for key in ("volume_threshold", "min_volume_difference"):
        value = _as_float(audio_cfg.get(key), f"audio.{key}", errors)
        if value is not None and not 0.0 <= value <= 1.0:
            errors.append(f"audio.{key} must be within 0..1")
    for key in ("hold_time_ms", "cooldown_ms", "cooldown_wide_ms", "switch_delay_ms", "switch_delay_wide_ms"):
        value = _as_float(audio_cfg.get(key), f"audio.{key}", errors)
        if value is not None and value < 0:
            errors.append(f"audio.{key} must be >= 0")

    switching_cfg = config.get("switching", {})
    if not isinstance(switching_cfg, dict):
        errors.append("switching must be a mapping")
        switching_cfg = {}
    for key in ("silence_to_wide_ms", "wide_hold_before_single_ms"):
        value = _as_float(switching_cfg.get(key, 0), f"switching.{key}", errors)
        if value is not None and value < 0:
            errors.append(f"switching.{key} must be >= 0")

    detection_cfg = config.get("detection", {})
    if not isinstance(detection_cfg, dict):
        detection_cfg = {}
    interval = _as_float(detection_cfg.get("update_interval_ms"), "detection.update_interval_ms", errors)
    if interval is not None and interval <= 0:
        errors.append("detection.update_interval_ms must be > 0")
    window = _as_float(detection_cfg.get("samples_for_average"), "detection.samples_for_average", errors)
    if window is not None and (window < 1 or int(window) != window):
        errors.append("detection.samples_for_average must be a positive integer")

    raw_cameras = config.get("cameras")
    if not isinstance(raw_cameras, (dict, list)) or not raw_cameras:
        errors.append("cameras must map at least one input id to a camera")
    else:
        keys = raw_cameras.keys() if isinstance(raw_cameras, dict) else [c.get("id") for c in raw_cameras if isinstance(c, dict)]
        for key in keys:
            try:
                int(key)
            except (TypeError, ValueError):
                errors.append(f"cameras key {key!r} is not an input number")

    switcher_cfg = config.get("switcher", {})
    if not isinstance(switcher_cfg, dict):
        switcher_cfg = {}
    backend = str(switcher_cfg.get("backend", "atem")).lower()
    if backend not in BACKENDS:
        errors.append(f"switcher.backend must be one of {sorted(BACKENDS)}, got {backend!r}")
    transition = get_path(config, "switcher.transition.type", "cut")
    if str(transition).lower() not in TRANSITION_TYPES:
        errors.append(f"switcher.transition.type must be one of {sorted(TRANSITION_TYPES)}, got {transition!r}")
    if backend == "replay" and not str(get_path(config, "switcher.replay.scene", "") or ""):
        errors.append("switcher.backend is replay but switcher.replay.scene is empty")

    return errors


def _as_float(value: Any, name: str, errors: List[str]) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be a number, got {value!r}")
        return None
