"""Configuration loading.

Two sources:
- pipeline settings (YAML): stage executables, scratch directories, argument
  templates and well-known file names. Built-in defaults are overlaid by the
  file, so a partial YAML is fine.
- stage extra arguments (flat ``key = value`` text): ``ic_stage_args`` and
  ``hydro_stage_args``. Unknown keys are ignored.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .records import DEFAULT_HEADER_LINES, DEFAULT_HEADER_MARKER

DEFAULTS: Dict[str, Any] = {
    "stages": {
        "initial": {
            "executable": "trento",
            "workdir": "initial",
            "args": "Pb Pb {nevents} --output {output}",
        },
        "hydro": {
            "executable": "osu-hydro",
            "workdir": "hydro",
            "args": "",
        },
        "sampler": {
            "executable": "frzout-sample",
            "workdir": "sampler",
            "args": "oversamples={oversamples}",
        },
        "afterburner": {
            "executable": "afterburner",
            "workdir": "afterburner",
            "args": "",
        },
    },
    "files": {
        "hydro_input": "ic.dat",
        "hypersurface": "surface.dat",
        "sampler_surface": "surface.dat",
        "sampler_output": "particles_in.dat",
        "afterburner_input": "particles_in.dat",
        "afterburner_output": "particles_out.dat",
    },
    "records": {
        "header_marker": DEFAULT_HEADER_MARKER,
        "header_lines": DEFAULT_HEADER_LINES,
    },
}

STAGE_ARG_KEYS = ("ic_stage_args", "hydro_stage_args")


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping/dict. Got: {type(data)}")
    return data


def cfg_get(cfg: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Fetch a nested key like 'stages.hydro.workdir' with a default."""
    cur: Any = cfg
    for part in key_path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(dict(base))
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), Mapping):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_pipeline_config(path: Optional[Path] = None) -> Dict[str, Any]:
    if path is None:
        return copy.deepcopy(DEFAULTS)
    return deep_merge(DEFAULTS, load_yaml(path))


@dataclass(frozen=True)
class StageArgs:
    """Extra arguments appended verbatim to stages 1 and 2."""

    ic_stage_args: str = ""
    hydro_stage_args: str = ""


def parse_stage_args(text: str) -> StageArgs:
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key in STAGE_ARG_KEYS:
            values[key] = value.strip()
    return StageArgs(**values)


def load_stage_args(path: Optional[Path]) -> StageArgs:
    if path is None:
        return StageArgs()
    if not path.exists():
        raise FileNotFoundError(f"Stage config not found: {path}")
    return parse_stage_args(path.read_text(encoding="utf-8"))


def join_args(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())
