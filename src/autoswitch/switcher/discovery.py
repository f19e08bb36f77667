"""autoswitch.switcher.discovery

CONTRACT: inline
ROLE: Locate ATEM switchers on the local network and resolve the one to use.

INPUTS:
  - UDP broadcast replies on the discovery port
OUTPUTS:
  - SwitcherInfo list / resolved IPv4 address

CONFIG KEYS:
  - switcher.address: explicit address (skips discovery)
  - switcher.discovery.timeout_ms: how long to collect replies
  - switcher.discovery.port: discovery port (20595)
  - switcher.discovery.interactive: prompt when zero or several switchers answer

PERF / TIMING:
  - runs once at startup, blocks for timeout_ms

FAILURE MODES:
  - socket errors -> log discovery_error, keep collecting
  - unparseable reply -> device kept with address only
  - nothing found and no manual entry -> None (runner aborts startup)

LOG EVENTS:
  - module=switcher.discovery, event=discovery_started, payload keys=targets, timeout_ms
  - module=switcher.discovery, event=switcher_found, payload keys=address, name, model
  - module=switcher.discovery, event=discovery_error, payload keys=target, error
  - module=switcher.discovery, event=switcher_selected, payload keys=address, source
  - module=switcher.discovery, event=switcher_not_found, payload keys=timeout_ms
"""

from __future__ import annotations

import ipaddress
import socket
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from autoswitch.core.config import get_path

DISCOVERY_PORT = 20595
DISCOVERY_PACKET = bytes(
    [
        0x10, 0x14, 0x53, 0xAB,
        0x00, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x01, 0x00,
    ]
)
COMMON_BROADCASTS = (
    "192.168.1.255",
    "192.168.0.255",
    "192.168.2.255",
    "10.0.0.255",
    "10.0.1.255",
    "172.16.0.255",
    "172.17.0.255",
)


@dataclass(frozen=True)
class SwitcherInfo:
    address: str
    name: str
    model: str
    port: int


def parse_discovery_reply(data: bytes, address: str, port: int) -> SwitcherInfo:
    """Name lives at bytes 0x40..0x50 and model at 0x50..0x58 when present."""
    name = _cstring(data[0x40:0x50]) if len(data) > 0x40 else ""
    model = _cstring(data[0x50:0x58]) if len(data) > 0x50 else ""
    return SwitcherInfo(address=address, name=name or f"ATEM {address}", model=model or "ATEM", port=port)


def broadcast_targets() -> List[str]:
    """/24 broadcast address of every local IPv4 interface, then the common ranges."""
    targets: List[str] = []
    for local in _local_ipv4_addresses():
        net = ipaddress.ip_network(f"{local}/24", strict=False)
        target = str(net.broadcast_address)
        if target not in targets:
            targets.append(target)
    for target in COMMON_BROADCASTS:
        if target not in targets:
            targets.append(target)
    return targets


def discover_switchers(
    timeout_ms: float = 5000.0,
    port: int = DISCOVERY_PORT,
    targets: Optional[Sequence[str]] = None,
    logger: Optional[Any] = None,
    sock_factory: Callable[..., Any] = socket.socket,
) -> List[SwitcherInfo]:
    targets = list(targets) if targets is not None else broadcast_targets()
    _log(logger, "info", "discovery_started", {"targets": len(targets), "timeout_ms": timeout_ms})
    found: Dict[str, SwitcherInfo] = {}
    sock = sock_factory(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(("", 0))
        for target in targets:
            try:
                sock.sendto(DISCOVERY_PACKET, (target, port))
            except OSError as exc:
                _log(logger, "debug", "discovery_error", {"target": target, "error": str(exc)})
        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock.settimeout(min(0.2, remaining))
            try:
                data, (address, reply_port) = sock.recvfrom(2048)
            except socket.timeout:
                continue
            except OSError as exc:
                _log(logger, "debug", "discovery_error", {"target": "recv", "error": str(exc)})
                continue
            if address in found:
                continue
            info = parse_discovery_reply(bytes(data), address, int(reply_port))
            found[address] = info
            _log(logger, "info", "switcher_found", {"address": info.address, "name": info.name, "model": info.model})
    finally:
        sock.close()
    return list(found.values())


def resolve_address(
    config: Dict[str, Any],
    logger: Optional[Any] = None,
    input_fn: Callable[[str], str] = input,
    discover: Callable[..., List[SwitcherInfo]] = discover_switchers,
) -> Optional[str]:
    """Return the switcher address to connect to, or None if none can be resolved.

    Priority:
      1) switcher.address
      2) the only switcher that answered discovery
      3) interactive choice among several, or manual entry when none answered
    """
    configured = get_path(config, "switcher.address")
    if configured:
        _log(logger, "info", "switcher_selected", {"address": str(configured), "source": "config"})
        return str(configured)

    timeout_ms = float(get_path(config, "switcher.discovery.timeout_ms", 5000))
    port = int(get_path(config, "switcher.discovery.port", DISCOVERY_PORT))
    interactive = bool(get_path(config, "switcher.discovery.interactive", True))
    devices = discover(timeout_ms=timeout_ms, port=port, logger=logger)

    if len(devices) == 1:
        _log(logger, "info", "switcher_selected", {"address": devices[0].address, "source": "discovery"})
        return devices[0].address

    if not devices:
        _log(logger, "error", "switcher_not_found", {"timeout_ms": timeout_ms})
        if not interactive:
            return None
        answer = _ask(input_fn, "Switcher IP address (Enter to cancel): ")
        if answer and is_ipv4(answer):
            _log(logger, "info", "switcher_selected", {"address": answer, "source": "manual"})
            return answer
        if answer:
            _log(logger, "error", "invalid_address", {"address": answer})
        return None

    if not interactive:
        _log(
            logger,
            "error",
            "switcher_ambiguous",
            {"switchers": [asdict(d) for d in devices]},
        )
        return None
    lines = [f"  {idx}. {d.name} ({d.model}) {d.address}" for idx, d in enumerate(devices, start=1)]
    answer = _ask(input_fn, "\n".join(lines) + f"\nSelect a switcher (1-{len(devices)}): ")
    try:
        choice = int(answer) - 1
    except (TypeError, ValueError):
        choice = -1
    if 0 <= choice < len(devices):
        _log(logger, "info", "switcher_selected", {"address": devices[choice].address, "source": "prompt"})
        return devices[choice].address
    _log(logger, "error", "invalid_selection", {"answer": answer})
    return None


def is_ipv4(text: str) -> bool:
    try:
        ipaddress.IPv4Address(text)
    except ValueError:
        return False
    return True


def _ask(input_fn: Callable[[str], str], prompt: str) -> str:
    try:
        return str(input_fn(prompt)).strip()
    except EOFError:
        return ""


def _cstring(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="ignore").strip()


def _local_ipv4_addresses() -> List[str]:
    addresses: List[str] = []
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            addr = str(info[4][0])
            if not addr.startswith("127.") and addr not in addresses:
                addresses.append(addr)
    except OSError:
        pass
    # The source address of a default route, without sending anything.
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(("10.255.255.255", 1))
        addr = str(probe.getsockname()[0])
        if not addr.startswith("127.") and addr not in addresses:
            addresses.append(addr)
    except OSError:
        pass
    finally:
        probe.close()
    return addresses


def _log(logger: Any, level: str, event: str, payload: Dict[str, Any]) -> None:
    if logger is None:
        return
    logger.emit(level, "switcher.discovery", event, payload)
