"""autoswitch.switcher.atem

CONTRACT: inline
ROLE: Blackmagic ATEM backend (PyATEMMax) for program/preview control and audio levels.

INPUTS:
  - ATEM network protocol via PyATEMMax (UDP 9910)
  - audioMixer.levels.sources[input_id].left/.right: 16-bit linear meters (AMLv)
OUTPUTS:
  - Topic: switcher.levels  Type: LevelEvent (encoding=fairlight), one per input on every AMLv

CONFIG KEYS:
  - switcher.address: switcher IPv4 address
  - switcher.mix_effect: M/E bus index (0 on ATEM Mini models)
  - switcher.connect_timeout_ms: initial connect wait
  - cameras: inputs whose levels are forwarded

PERF / TIMING:
  - level callbacks run on the library's receive thread and only publish to the bus
  - commands are sent from the dispatcher thread

FAILURE MODES:
  - PyATEMMax missing -> log backend_missing -> raise SwitcherError
  - command error -> raise SwitcherError (dispatcher logs switch_failed)
  - disconnect -> log disconnected; the library keeps reconnecting
  - no AMLv within LEVELS_GRACE_S of connecting -> log levels_unavailable once
  - FMLv seen -> log fairlight_levels_unsupported once

LOG EVENTS:
  - module=switcher.atem, event=backend_missing, payload keys=backend
  - module=switcher.atem, event=connected, payload keys=address, model
  - module=switcher.atem, event=disconnected, payload keys=address
  - module=switcher.atem, event=levels_unavailable, payload keys=error
  - module=switcher.atem, event=fairlight_levels_unsupported, payload keys=model

CONTRACT DETAILS:
# Level sources

- PyATEMMax decodes the classic audio mixer meters (AMLv) only. Models with a
  Fairlight mixer (ATEM Mini Pro and later) report levels as FMLv, which the
  library does not decode; on those models the engine gets no level samples
  and the health monitor reports the level feed as stale.
- Meters are converted to the Fairlight Int16 dB*100 encoding so both paths
  share the configured audio.min_db / audio.max_db range.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Tuple

from autoswitch.audio.levels import LevelPayloadError, linear_to_fairlight
from autoswitch.core.config import camera_mapping, get_path
from autoswitch.switcher.base import SwitcherError, VideoSwitcherControl

try:
    import PyATEMMax
except ImportError:  # pragma: no cover
    PyATEMMax = None

CLASSIC_LEVELS = "AMLv"
FAIRLIGHT_LEVELS = "FMLv"
LEVELS_GRACE_S = 5.0


class AtemSwitcher(VideoSwitcherControl):
    """PyATEMMax-backed switcher."""

    name = "atem"

    def __init__(self, address: str, config: Dict[str, Any], bus: Optional[Any] = None, logger: Optional[Any] = None) -> None:
        super().__init__(bus, logger)
        if PyATEMMax is None:
            self._log("error", "backend_missing", {"backend": "PyATEMMax"})
            raise SwitcherError("PyATEMMax is not installed")
        self._address = str(address)
        self._me = int(get_path(config, "switcher.mix_effect", 0) or 0)
        self._input_ids = sorted(camera_mapping(config))
        self._atem = PyATEMMax.ATEMMax()
        self._connected = False
        self._connected_at: Optional[float] = None
        self._levels_seen = False
        self._levels_warned = False
        self._fairlight_warned = False

    @property
    def is_connected(self) -> bool:
        return self._connected and bool(getattr(self._atem, "connected", False))

    def connect(self, timeout_s: float = 5.0) -> bool:
        events = self._atem.atem.events
        self._atem.registerEvent(events.connect, self._on_connect)
        self._atem.registerEvent(events.disconnect, self._on_disconnect)
        self._atem.registerEvent(events.receive, self._on_receive)
        self._atem.connect(self._address)
        ok = bool(self._atem.waitForConnection(infinite=False, timeout=timeout_s))
        self._connected = ok
        if not ok:
            self._log("error", "connect_timeout", {"address": self._address, "timeout_s": timeout_s})
            return False
        self._connected_at = time.monotonic()
        try:
            self._atem.setAudioMixerSendLevels(True)
        except Exception as exc:  # noqa: BLE001
            self._warn_levels(f"enabling level updates failed: {exc}")
        self._log("info", "connected", {"address": self._address, "model": self.describe().get("model")})
        return True

    def disconnect(self) -> None:
        self._connected = False
        try:
            self._atem.disconnect()
        except Exception as exc:  # noqa: BLE001
            self._log("warning", "disconnect_failed", {"address": self._address, "error": str(exc)})

    def set_program_input(self, input_id: int) -> bool:
        self._command("setProgramInputVideoSource", self._me, int(input_id))
        return True

    def set_preview_input(self, input_id: int) -> bool:
        self._command("setPreviewInputVideoSource", self._me, int(input_id))
        return True

    def auto_transition(self) -> bool:
        self._command("execAutoME", self._me)
        return True

    def set_transition_rate(self, frames: int) -> bool:
        self._command("setTransitionMixRate", self._me, int(frames))
        return True

    def peak_levels(self) -> Dict[int, Any]:
        """Latest meters per input as (left, right) Int16 dB*100 pairs."""
        if not self.is_connected:
            return {}
        if not self._levels_seen:
            if self._connected_at is not None and time.monotonic() - self._connected_at >= LEVELS_GRACE_S:
                self._warn_levels(f"no {CLASSIC_LEVELS} level updates within {LEVELS_GRACE_S:g}s")
            return {}
        levels: Dict[int, Any] = {}
        for input_id in self._input_ids:
            pair = self._levels_from_state(input_id)
            if pair is not None:
                levels[input_id] = pair
        return levels

    def describe(self) -> Dict[str, Any]:
        info = getattr(self._atem, "atemModel", None)
        return {
            "backend": self.name,
            "address": self._address,
            "model": str(info) if info else "ATEM",
            "mix_effect": self._me,
            "inputs": list(self._input_ids),
        }

    def _command(self, method: str, *args: Any) -> None:
        if not self.is_connected:
            raise SwitcherError(f"not connected to {self._address}")
        try:
            getattr(self._atem, method)(*args)
        except Exception as exc:  # noqa: BLE001
            raise SwitcherError(f"{method}{args} failed: {exc}") from exc

    def _on_connect(self, params: Dict[Any, Any]) -> None:  # noqa: ARG002
        self._connected = True

    def _on_disconnect(self, params: Dict[Any, Any]) -> None:  # noqa: ARG002
        self._connected = False
        self._log("warning", "disconnected", {"address": self._address})

    def _on_receive(self, params: Dict[Any, Any]) -> None:
        cmd = str(params.get("cmd", ""))
        if cmd == FAIRLIGHT_LEVELS:
            if not self._fairlight_warned:
                self._fairlight_warned = True
                self._log("warning", "fairlight_levels_unsupported", {"model": self.describe().get("model")})
            return
        if cmd != CLASSIC_LEVELS:
            return
        self._levels_seen = True
        for input_id in self._input_ids:
            pair = self._levels_from_state(input_id)
            if pair is not None:
                self.publish_level(input_id, pair[0], pair[1])

    def _levels_from_state(self, input_id: int) -> Optional[Tuple[int, int]]:
        try:
            source = self._atem.audioMixer.levels.sources[input_id]
            return linear_to_fairlight(source.left), linear_to_fairlight(source.right)
        except (AttributeError, KeyError, IndexError, TypeError, LevelPayloadError) as exc:
            self._warn_levels(f"input {input_id}: {exc}")
            return None

    def _warn_levels(self, error: str) -> None:
        if self._levels_warned:
            return
        self._levels_warned = True
        self._log("warning", "levels_unavailable", {"error": error})
