"""
CONTRACT: inline
ROLE: Level codec: switcher level encodings <-> (decibels, normalized 0..1).

INPUTS:
  - Fairlight source levels (Int16, dB * 100, per channel)
  - polled peak levels from switcher state (mixed encodings)
  - classic audio mixer meters (16-bit linear)
OUTPUTS:
  - (db, normalized) tuples

CONFIG KEYS:
  - audio.min_db: level mapped to 0
  - audio.max_db: level mapped to 1
  - audio.curve: perceptual compression exponent (0.7 suits lavalier mics)

PERF / TIMING:
  - stateless, per sample

FAILURE MODES:
  - malformed payload -> raise LevelPayloadError

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_levels.py
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Any, Tuple

# Fairlight reports this Int16 floor when an input has no signal at all.
NO_SIGNAL = -32768
# Classic audio mixer meters are 16-bit linear.
LINEAR_FULL_SCALE = 65535.0


class LevelPayloadError(ValueError):
    """A level payload could not be decoded."""


def db_to_normalized(db: float, min_db: float, max_db: float, curve: float = 0.7) -> float:
    """Convert a dB level to 0..1 using linear amplitude between min_db and max_db."""
    if not math.isfinite(db) or db <= min_db:
        return 0.0
    if db >= max_db:
        return 1.0
    linear = 10.0 ** (db / 20.0)
    min_linear = 10.0 ** (min_db / 20.0)
    max_linear = 10.0 ** (max_db / 20.0)
    norm = (linear - min_linear) / (max_linear - min_linear)
    return max(0.0, min(1.0, norm)) ** curve


def parse_fairlight_levels(
    left: Any,
    right: Any,
    min_db: float,
    max_db: float,
    curve: float = 0.7,
) -> Tuple[float, float]:
    """Decode a Fairlight source level pair; the louder channel wins."""
    left_raw = _as_level(left, "left")
    right_raw = _as_level(right, "right")
    peak = max(left_raw, right_raw)
    if peak <= NO_SIGNAL:
        return float("-inf"), 0.0
    db = peak / 100.0
    return db, db_to_normalized(db, min_db, max_db, curve)


def linear_to_fairlight(raw: Any, full_scale: float = LINEAR_FULL_SCALE) -> int:
    """Convert a linear meter value (0..full_scale) to the Int16 dB*100 Fairlight encoding."""
    if raw is None or isinstance(raw, bool) or not isinstance(raw, Real):
        raise LevelPayloadError(f"linear level is not numeric: {raw!r}")
    value = float(raw)
    if math.isnan(value):
        raise LevelPayloadError("linear level is NaN")
    if value <= 0.0:
        return NO_SIGNAL
    db = 20.0 * math.log10(min(value, full_scale) / full_scale)
    return max(NO_SIGNAL, int(round(db * 100.0)))


def normalize_peak_level(raw: Any) -> Tuple[float, float]:
    """Decode a peak level read from polled switcher state.

    The encoding depends on the switcher model and firmware:
      - negative: dBFS, scaled linearly from -60 dB (or -100 dB when quieter than -60)
      - 0 < raw <= 1: already normalized
      - 1 < raw <= 100: percent
      - raw > 100: 16-bit linear peak
    Zero, missing and non-numeric values are silence.
    """
    if raw is None or isinstance(raw, bool) or not isinstance(raw, Real):
        return float("-inf"), 0.0
    value = float(raw)
    if not math.isfinite(value) or value == 0.0:
        return float("-inf"), 0.0
    if value < 0:
        floor = -100.0 if value < -60.0 else -60.0
        return value, max(0.0, min(1.0, (value - floor) / -floor))
    if value <= 1.0:
        return 20.0 * math.log10(value), value
    if value <= 100.0:
        normalized = value / 100.0
        return 20.0 * math.log10(normalized), normalized
    normalized = min(1.0, value / 65535.0)
    return -60.0 + normalized * 60.0, normalized


def _as_level(value: Any, channel: str) -> float:
    if value is None:
        return float(NO_SIGNAL)
    if isinstance(value, bool) or not isinstance(value, Real):
        raise LevelPayloadError(f"{channel} level is not numeric: {value!r}")
    level = float(value)
    if math.isnan(level):
        raise LevelPayloadError(f"{channel} level is NaN")
    return level
