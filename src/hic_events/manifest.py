"""Run manifest emission.

Each batch writes a `run_manifest_<entrypoint>_<run_id>.json` capturing the CLI
args, interpreter, library versions and the git commit, so a store can be
traced back to the exact run that produced it.
"""

from __future__ import annotations

import json
import os
import platform
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import h5py
import numpy as np


def _safe_git_commit() -> Optional[str]:
    """Best-effort git commit hash (None if not in a git repo)."""
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode("utf-8").strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def env_snapshot() -> Dict[str, Any]:
    keys = ["OMP_NUM_THREADS", "PATH", "HDF5_USE_FILE_LOCKING"]
    return {
        "platform": platform.platform(),
        "python": platform.python_version(),
        **{k: os.environ.get(k) for k in keys},
    }


def library_versions() -> Dict[str, str]:
    return {
        "numpy": np.__version__,
        "h5py": h5py.__version__,
        "hdf5": h5py.version.hdf5_version,
    }


def write_manifest(
    *,
    out_dir: Path,
    run_id: str,
    entrypoint: str,
    args: Dict[str, Any],
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = out_dir / f"run_manifest_{entrypoint}_{run_id}.json"

    payload: Dict[str, Any] = {
        "run_id": run_id,
        "entrypoint": entrypoint,
        "args": args,
        "env": env_snapshot(),
        "git_commit": _safe_git_commit(),
        "python": {
            "version": platform.python_version(),
            "executable": sys.executable,
        },
        "libraries": library_versions(),
    }
    if extra:
        payload["extra"] = extra

    # Atomic write
    tmp = manifest_path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(manifest_path)
    return manifest_path
