"""HDF5 result store using h5py.

One store file holds every event of a run:

    /{event}/initial                          2-D grid + attrs
    /{event}/particles/{i}/{ID,charge,...}    present only for events that
                                              reached the afterburner

Invariants kept here:
- `particles` holds exactly `n_oversamples` groups named 0..N-1, each with all
  record columns of equal length.
- `particles` only ever appears fully written (built under a temporary name,
  then moved into place).
- A failed event is removed whole.

The store is owned by a single sequential writer; there is no locking.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import h5py
import numpy as np

from .errors import PreconditionViolation, StoreCorruption
from .records import COLUMN_NAMES, COLUMNS, Oversample

INITIAL = "initial"
PARTICLES = "particles"
STATUS_ATTR = "status"
N_OVERSAMPLES_ATTR = "n_oversamples"
_PARTIAL = ".particles_partial"

INITIAL_ATTRS = ("impact_parameter", "npart", "mult", "eccentricities")

# Raw initial-condition attribute names as written by the IC generator.
_RAW_ATTR_ALIASES = {"b": "impact_parameter"}
_RAW_ECC_PREFIX = "e"

_LOG = logging.getLogger("hic_events.store")


def normalize_initial_attrs(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map generator attribute names (b, npart, mult, e2..eN) to the stored set."""
    out: Dict[str, Any] = {}
    harmonics: List[Tuple[int, float]] = []
    for key, value in raw.items():
        key = str(key)
        if key in INITIAL_ATTRS:
            out[key] = value
        elif key in _RAW_ATTR_ALIASES:
            out[_RAW_ATTR_ALIASES[key]] = value
        elif key.startswith(_RAW_ECC_PREFIX) and key[1:].isdigit():
            harmonics.append((int(key[1:]), float(value)))
    if "eccentricities" not in out and harmonics:
        out["eccentricities"] = np.asarray([v for _, v in sorted(harmonics)], dtype=np.float64)
    return out


def _write_column(group: h5py.Group, name: str, data: np.ndarray) -> None:
    if data.size:
        group.create_dataset(
            name,
            data=data,
            compression="gzip",
            compression_opts=4,
            shuffle=True,
            fletcher32=True,
        )
    else:
        group.create_dataset(name, data=data)


class ResultStore:
    """Schema manager over one h5py.File."""

    def __init__(self, path: Path, mode: str = "a", logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path)
        self.logger = logger or _LOG
        self._f = h5py.File(self.path, mode)

    # -- lifecycle ------------------------------------------------------

    def __enter__(self) -> "ResultStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._f.id.valid:
            self._f.close()

    def flush(self) -> None:
        self._f.flush()

    @property
    def h5(self) -> h5py.File:
        return self._f

    # -- event enumeration ----------------------------------------------

    def __contains__(self, name: str) -> bool:
        return name in self._f

    def events(self) -> List[str]:
        return [k for k, v in self._f.items() if isinstance(v, h5py.Group)]

    def pending_events(self) -> List[str]:
        """Events that have initial conditions and no completion marker."""
        out = []
        for name in self.events():
            grp = self._f[name]
            if isinstance(grp.get(INITIAL), h5py.Dataset) and STATUS_ATTR not in grp.attrs:
                out.append(name)
        return out

    def status(self, name: str) -> Optional[str]:
        value = self._event_group(name).attrs.get(STATUS_ATTR)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def mark_complete(self, name: str, state: str) -> None:
        self._event_group(name).attrs[STATUS_ATTR] = str(state)

    # -- structure ------------------------------------------------------

    def _event_group(self, name: str) -> h5py.Group:
        obj = self._f.get(name)
        if not isinstance(obj, h5py.Group):
            raise StoreCorruption(f"event '{name}' is not a group in {self.path}")
        return obj

    def create_event_subtree(self, name: str) -> h5py.Group:
        if name in self._f:
            raise StoreCorruption(f"event '{name}' already exists in {self.path}")
        return self._f.create_group(name)

    def attach_initial(self, name: str, grid: np.ndarray, attrs: Mapping[str, Any]) -> None:
        grp = self._event_group(name)
        if INITIAL in grp:
            raise StoreCorruption(f"event '{name}' already has '{INITIAL}'")
        grid = np.asarray(grid, dtype=np.float64)
        if grid.ndim != 2:
            raise ValueError(f"initial grid must be 2-D, got shape {grid.shape}")
        ds = grp.create_dataset(INITIAL, data=grid)
        for k, v in normalize_initial_attrs(attrs).items():
            ds.attrs[k] = v

    def read_initial(self, name: str) -> Tuple[np.ndarray, Dict[str, Any]]:
        grp = self._event_group(name)
        ds = grp.get(INITIAL)
        if not isinstance(ds, h5py.Dataset):
            raise PreconditionViolation(f"event '{name}' has no '{INITIAL}' dataset")
        return ds[()], {k: v for k, v in ds.attrs.items()}

    def delete_event(self, name: str) -> bool:
        if name not in self._f:
            return False
        del self._f[name]
        self.logger.debug("Deleted event subtree /%s", name)
        return True

    def rename_group(self, old: str, new: str) -> None:
        if old not in self._f:
            raise KeyError(f"'{old}' not found in {self.path}")
        if new in self._f:
            raise StoreCorruption(f"cannot rename '{old}': '{new}' already exists")
        self._f.move(old, new)

    def move(self, source: str, dest: str) -> None:
        """Move any object to a new path, creating missing parent groups."""
        parent = dest.rsplit("/", 1)[0] if "/" in dest.strip("/") else ""
        if parent:
            self._f.require_group(parent)
        if dest in self._f:
            raise StoreCorruption(f"cannot move '{source}': '{dest}' already exists")
        self._f.move(source, dest)

    def relocate_raw_initial(self) -> List[str]:
        """Turn root-level raw IC datasets into /{name}/initial subgroups."""
        moved: List[str] = []
        for name in list(self._f.keys()):
            obj = self._f[name]
            if not isinstance(obj, h5py.Dataset):
                continue
            tmp = f"{name}.raw"
            self.rename_group(name, tmp)
            self.create_event_subtree(name)
            self.move(tmp, f"{name}/{INITIAL}")

            ds = self._f[f"{name}/{INITIAL}"]
            raw = {k: v for k, v in ds.attrs.items()}
            for k in list(ds.attrs.keys()):
                del ds.attrs[k]
            for k, v in normalize_initial_attrs(raw).items():
                ds.attrs[k] = v
            moved.append(name)

        self.logger.info("Relocated %d raw initial-condition entries", len(moved))
        return moved

    # -- particles ------------------------------------------------------

    def write_particles(self, name: str, oversamples: Sequence[Oversample]) -> None:
        """Write all oversamples at once; nothing is visible until complete."""
        grp = self._event_group(name)
        if not isinstance(grp.get(INITIAL), h5py.Dataset):
            raise StoreCorruption(f"event '{name}' has no '{INITIAL}'; refusing to write particles")
        if PARTICLES in grp:
            raise StoreCorruption(f"event '{name}' already has '{PARTICLES}'")
        if _PARTIAL in grp:
            del grp[_PARTIAL]

        partial = grp.create_group(_PARTIAL)
        try:
            partial.attrs[N_OVERSAMPLES_ATTR] = len(oversamples)
            for i, ov in enumerate(oversamples):
                if ov.index != i:
                    raise ValueError(f"oversample index {ov.index} out of order (expected {i})")
                sub = partial.create_group(str(i))
                for col_name, dtype in COLUMNS:
                    _write_column(sub, col_name, np.asarray(ov.columns[col_name], dtype=dtype))
        except BaseException:
            del grp[_PARTIAL]
            raise
        grp.move(_PARTIAL, PARTICLES)
        self.validate_event(name)

    def read_particles(self, name: str) -> List[Oversample]:
        grp = self._event_group(name)
        if PARTICLES not in grp:
            return []
        particles = grp[PARTICLES]
        n = int(particles.attrs[N_OVERSAMPLES_ATTR])
        return [
            Oversample(index=i, columns={c: particles[f"{i}/{c}"][()] for c in COLUMN_NAMES})
            for i in range(n)
        ]

    # -- invariants -----------------------------------------------------

    def validate_event(self, name: str) -> None:
        grp = self._event_group(name)
        if not isinstance(grp.get(INITIAL), h5py.Dataset):
            raise StoreCorruption(f"event '{name}' has no '{INITIAL}' dataset")
        if _PARTIAL in grp:
            raise StoreCorruption(f"event '{name}' has a partially written particle group")
        if PARTICLES not in grp:
            return

        particles = grp[PARTICLES]
        if N_OVERSAMPLES_ATTR not in particles.attrs:
            raise StoreCorruption(f"event '{name}': '{PARTICLES}' lacks '{N_OVERSAMPLES_ATTR}'")
        n = int(particles.attrs[N_OVERSAMPLES_ATTR])
        expected = {str(i) for i in range(n)}
        found = set(particles.keys())
        if found != expected:
            raise StoreCorruption(
                f"event '{name}': oversample groups {sorted(found)} do not match 0..{n - 1}"
            )
        for key in expected:
            sub = particles[key]
            missing = [c for c in COLUMN_NAMES if c not in sub]
            if missing:
                raise StoreCorruption(f"event '{name}' oversample {key}: missing columns {missing}")
            lengths = {sub[c].shape for c in COLUMN_NAMES}
            if len(lengths) != 1 or len(next(iter(lengths))) != 1:
                raise StoreCorruption(f"event '{name}' oversample {key}: column shapes {sorted(lengths)}")

    def validate(self) -> None:
        for name in self.events():
            self.validate_event(name)
