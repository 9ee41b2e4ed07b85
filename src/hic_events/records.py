"""Particle record parsing.

The afterburner writes one flat text stream: a header block (lines starting
with a fixed marker) followed by whitespace-delimited rows, with the header
block repeated between oversamples. Every maximal run of data rows is one
oversample, indexed in stream order from 0.

Oversamples that emitted no particles leave no rows, so trailing ones may be
missing from the stream entirely; `reconcile` pads them back in.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from .errors import RecordFormatError

DEFAULT_HEADER_MARKER = "#"
DEFAULT_HEADER_LINES = 3

# Fixed column order in every data row.
COLUMNS: Tuple[Tuple[str, type], ...] = (
    ("ID", np.int32),
    ("charge", np.int32),
    ("mass", np.float64),
    ("pT", np.float64),
    ("phi", np.float64),
    ("eta", np.float64),
)
COLUMN_NAMES = tuple(name for name, _ in COLUMNS)


@dataclass(frozen=True, eq=False)
class Oversample:
    """Equal-length typed columns for one sampling trial."""

    index: int
    columns: Dict[str, np.ndarray]

    def __len__(self) -> int:
        return int(self.columns[COLUMN_NAMES[0]].shape[0])


def empty_columns() -> Dict[str, np.ndarray]:
    return {name: np.zeros(0, dtype=dtype) for name, dtype in COLUMNS}


def is_header(line: str, marker: str = DEFAULT_HEADER_MARKER) -> bool:
    return line.startswith(marker)


def split_blocks(lines: Iterable[str], marker: str = DEFAULT_HEADER_MARKER) -> Iterator[List[str]]:
    """Yield each maximal run of data lines. Blank lines are skipped."""
    block: List[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if is_header(line, marker):
            if block:
                yield block
                block = []
            continue
        if not line.strip():
            continue
        block.append(line)
    if block:
        yield block


def parse_block(rows: Sequence[str], index: int = 0) -> Oversample:
    """Transpose rows into the fixed typed columns."""
    if not rows:
        return Oversample(index=index, columns=empty_columns())

    split = [r.split() for r in rows]
    for lineno, fields in enumerate(split):
        if len(fields) != len(COLUMNS):
            raise RecordFormatError(
                f"oversample {index}, row {lineno}: expected {len(COLUMNS)} columns, got {len(fields)}"
            )

    table = np.asarray(split, dtype=str)
    columns: Dict[str, np.ndarray] = {}
    for j, (name, dtype) in enumerate(COLUMNS):
        try:
            columns[name] = table[:, j].astype(dtype)
        except (ValueError, OverflowError) as exc:
            raise RecordFormatError(f"oversample {index}, column '{name}': {exc}") from exc
    return Oversample(index=index, columns=columns)


def parse_records(lines: Iterable[str], marker: str = DEFAULT_HEADER_MARKER) -> List[Oversample]:
    return [parse_block(block, index=i) for i, block in enumerate(split_blocks(lines, marker))]


def reconcile(oversamples: Sequence[Oversample], n: int) -> List[Oversample]:
    """Pad trailing missing oversamples with empty groups up to `n`.

    More than `n` blocks means the stream disagrees with the requested
    oversample count; that is rejected rather than truncated.
    """
    if n < 0:
        raise ValueError(f"oversample count must be >= 0, got {n}")
    if len(oversamples) > n:
        raise RecordFormatError(f"stream has {len(oversamples)} oversamples, expected at most {n}")
    out = list(oversamples)
    for i in range(len(out), n):
        out.append(Oversample(index=i, columns=empty_columns()))
    return out


def read_records(path: Path, n: int, marker: str = DEFAULT_HEADER_MARKER) -> List[Oversample]:
    try:
        with Path(path).open("r", encoding="utf-8") as fh:
            parsed = parse_records(fh, marker)
    except UnicodeDecodeError as exc:
        raise RecordFormatError(f"{path}: not valid UTF-8 text: {exc}") from exc
    return reconcile(parsed, n)


def has_data_after_header(path: Path, n_header_lines: int = DEFAULT_HEADER_LINES) -> bool:
    """True iff anything follows the fixed header of a record file."""
    try:
        with Path(path).open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh):
                if lineno < n_header_lines:
                    continue
                if line.strip():
                    return True
    except UnicodeDecodeError as exc:
        raise RecordFormatError(f"{path}: not valid UTF-8 text: {exc}") from exc
    return False
