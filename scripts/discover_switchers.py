#!/usr/bin/env python3
"""List ATEM switchers that answer UDP discovery on the local network.

It broadcasts the discovery packet to every local /24 network plus a few
common ranges, then prints name, model and address of each reply.

Run:
  python3 scripts/discover_switchers.py --timeout-ms 3000
"""

from __future__ import annotations

import argparse

from autoswitch.switcher.discovery import DISCOVERY_PORT, broadcast_targets, discover_switchers


def main() -> None:
    parser = argparse.ArgumentParser(description="Discover ATEM switchers")
    parser.add_argument("--timeout-ms", type=float, default=5000.0)
    parser.add_argument("--port", type=int, default=DISCOVERY_PORT)
    parser.add_argument("--target", action="append", default=None, help="Broadcast address (repeatable)")
    args = parser.parse_args()

    targets = args.target or broadcast_targets()
    print("=== Broadcast targets ===")
    for target in targets:
        print(target)

    print(f"\n=== Replies ({args.timeout_ms / 1000:.1f}s) ===")
    found = discover_switchers(timeout_ms=args.timeout_ms, port=args.port, targets=targets)
    if not found:
        print("(none) - check the network, or set ATEM_IP / switcher.address")
        return
    for info in found:
        print(f"{info.address}  {info.name}  model={info.model}")


if __name__ == "__main__":
    main()
