"""autoswitch.core.artifacts

CONTRACT: inline
ROLE: Create per-run artifact directories and write run metadata.

OUTPUTS:
  - artifacts/<run_id>/logs, artifacts/<run_id>/crash
  - run_meta.json
  - config_effective.yaml
  - artifacts/LATEST

CONFIG KEYS:
  - runtime.run_id: optional explicit run id
  - runtime.artifacts.dir: base artifacts directory
  - runtime.artifacts.retention.max_runs: keep last N runs
"""

from __future__ import annotations

import json
import platform
import shutil
import sys
import time
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from autoswitch.core.clock import now_ns
from autoswitch.core.config import camera_mapping, get_path, wide_camera_id


def create_run_dir(base_dir: str, run_id: Optional[str] = None, max_runs: int = 10) -> Path:
    """Create and return the run artifact directory."""

    base_path = Path(base_dir)
    base_path.mkdir(parents=True, exist_ok=True)
    run_id_final = (run_id or "").strip() or _default_run_id()
    run_path = base_path / run_id_final
    if run_path.exists():
        suffix = 2
        while (base_path / f"{run_id_final}_{suffix:02d}").exists():
            suffix += 1
        run_path = base_path / f"{run_id_final}_{suffix:02d}"

    (run_path / "logs").mkdir(parents=True, exist_ok=True)
    (run_path / "crash").mkdir(parents=True, exist_ok=True)

    apply_retention(base_path, max_runs=max_runs, keep_dir=run_path)
    return run_path


def apply_retention(base_dir: Path, max_runs: int, keep_dir: Optional[Path] = None) -> None:
    if max_runs <= 0:
        return
    keep_resolved = keep_dir.resolve() if keep_dir is not None else None
    run_dirs = [p for p in base_dir.iterdir() if p.is_dir()]
    run_dirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    for old in run_dirs[max_runs:]:
        if keep_resolved is not None and old.resolve() == keep_resolved:
            continue
        shutil.rmtree(old, ignore_errors=True)


def write_run_metadata(run_dir: Path, config: Dict[str, Any], switcher_info: Optional[Dict[str, Any]] = None) -> None:
    """Write run_meta.json and config_effective.yaml."""

    meta = {
        "t_start_ns": now_ns(),
        "started_at": time.strftime("%Y-%m-%dT%H:%M:%S"),
        "platform": {
            "python": sys.version,
            "machine": platform.machine(),
            "system": platform.system(),
            "release": platform.release(),
        },
        "versions": _versions(),
        "switcher": {
            "backend": get_path(config, "switcher.backend"),
            "address": get_path(config, "switcher.address"),
            "info": switcher_info or {},
        },
        "cameras": {str(k): v for k, v in camera_mapping(config).items()},
        "wide_camera_id": wide_camera_id(config),
        "config": config,
    }
    with open(run_dir / "run_meta.json", "w", encoding="utf-8") as handle:
        json.dump(meta, handle, indent=2, default=str)

    with open(run_dir / "config_effective.yaml", "w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False)

    latest_path = run_dir.parent / "LATEST"
    try:
        latest_path.write_text(str(run_dir.name), encoding="utf-8")
    except OSError:
        pass


def ensure_run_dir(config: Dict[str, Any]) -> Path:
    """Create the run directory named by config and record it under runtime.artifacts.dir_run."""
    runtime = config.setdefault("runtime", {})
    artifacts_cfg = runtime.setdefault("artifacts", {})
    base_dir = str(artifacts_cfg.get("dir", "artifacts"))
    retention = artifacts_cfg.get("retention", {})
    if not isinstance(retention, dict):
        retention = {}
    max_runs = int(retention.get("max_runs", 10))
    run_dir = create_run_dir(base_dir, run_id=str(runtime.get("run_id", "") or ""), max_runs=max_runs)
    runtime["run_id"] = run_dir.name
    artifacts_cfg["dir_run"] = str(run_dir)
    return run_dir


def _default_run_id() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


def _versions() -> Dict[str, Optional[str]]:
    versions: Dict[str, Optional[str]] = {}
    from autoswitch.version import __version__

    versions["autoswitch"] = str(__version__)
    try:
        import numpy

        versions["numpy"] = str(numpy.__version__)
    except ImportError:
        versions["numpy"] = None
    versions["pyyaml"] = str(getattr(yaml, "__version__", None))
    try:
        versions["pyatemmax"] = version("PyATEMMax")
    except PackageNotFoundError:
        versions["pyatemmax"] = None
    return versions
