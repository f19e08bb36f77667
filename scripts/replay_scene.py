#!/usr/bin/env python3
"""Replay a level scene through the switch engine and check its expected cuts.

No switcher and no threads are needed: the scene runs on a manual clock, so
the result is the same on every machine.

Run:
  python3 scripts/replay_scene.py configs/scenes/panel.yaml --config configs/default.yaml
"""

from __future__ import annotations

import argparse
import sys

from autoswitch.bench.scene_check import run_scene
from autoswitch.core.config import camera_name, load_config
from autoswitch.core.logging import LogEmitter
from autoswitch.switcher.replay import load_scene


def main() -> None:
    parser = argparse.ArgumentParser(description="Deterministic scene replay")
    parser.add_argument("scene", help="Scene YAML")
    parser.add_argument("--config", default=None)
    parser.add_argument("--step-ms", type=float, default=None)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    config = load_config(args.config)
    if args.verbose:
        config.setdefault("logging", {})["verbose"] = True
    logger = LogEmitter.from_config(None, config)
    scene = load_scene(args.scene)
    report = run_scene(scene, config, step_ms=args.step_ms, logger=logger)

    print(f"=== {report.scene} ===")
    for entry in report.timeline():
        print(f"{entry['t_ms']:>8.0f} ms  -> {camera_name(config, entry['input_id'])} ({entry['reason']})")
    if not scene.expected:
        return
    if report.ok:
        print("OK: matches expected switches")
        return
    for line in report.mismatches:
        print(f"MISMATCH: {line}")
    sys.exit(1)


if __name__ == "__main__":
    main()
