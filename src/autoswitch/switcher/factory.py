"""
CONTRACT: inline
ROLE: Build the configured VideoSwitcherControl backend.

CONFIG KEYS:
  - switcher.backend: atem | replay
  - switcher.address: required for atem (resolved by discovery when empty)
  - switcher.replay.*: see autoswitch.switcher.replay

FAILURE MODES:
  - unknown backend -> raise ValueError
  - atem without address -> raise ValueError
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from autoswitch.core.clock import Clock, now_ms
from autoswitch.core.config import get_path
from autoswitch.switcher.base import VideoSwitcherControl


def create_switcher(
    config: Dict[str, Any],
    bus: Optional[Any] = None,
    logger: Optional[Any] = None,
    clock: Clock = now_ms,
) -> VideoSwitcherControl:
    backend = str(get_path(config, "switcher.backend", "atem") or "atem").lower()
    if backend == "replay":
        from autoswitch.switcher.replay import ReplaySwitcher, load_scene

        scene_path = str(get_path(config, "switcher.replay.scene", "") or "")
        if not scene_path:
            raise ValueError("switcher.replay.scene is required for the replay backend")
        return ReplaySwitcher(
            load_scene(scene_path),
            clock=clock,
            bus=bus,
            logger=logger,
            emit_events=bool(get_path(config, "switcher.replay.emit_events", True)),
            event_interval_ms=float(get_path(config, "switcher.replay.event_interval_ms", 50)),
            loop=bool(get_path(config, "switcher.replay.loop", False)),
        )
    if backend == "atem":
        from autoswitch.switcher.atem import AtemSwitcher

        address = get_path(config, "switcher.address")
        if not address:
            raise ValueError("switcher.address is required for the atem backend")
        return AtemSwitcher(str(address), config, bus=bus, logger=logger)
    raise ValueError(f"Unknown switcher backend: {backend}")
