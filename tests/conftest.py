"""Shared fixtures: in-process fake stages and small HDF5 stores."""

from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
import pytest

from hic_events.config import DEFAULTS
from hic_events.errors import StageFailure
from hic_events.orchestrator import ScratchLayout
from hic_events.store import ResultStore

HEADER = ["# OSC1999A", "# final_id_p_x", "# hic_events test stream"]


def format_stream(blocks: Sequence[Sequence[Tuple]], header: Sequence[str] = HEADER) -> str:
    """Header block before each oversample's rows, as the afterburner writes them."""
    lines: List[str] = list(header)
    for i, rows in enumerate(blocks):
        if i > 0:
            lines.extend(header)
        for row in rows:
            lines.append(" ".join(str(x) for x in row))
    return "\n".join(lines) + "\n"


def particle_row(pid: int = 211, charge: int = 1) -> Tuple:
    return (pid, charge, 0.13957, 0.5, 1.2, -0.3)


class FakeRunner:
    """Stands in for StageRunner; each stage is a callable(args, workdir).

    A callable may return an int exit code; non-zero raises StageFailure just
    like a real subprocess would.
    """

    def __init__(self, behaviors: Dict[str, Callable[[str, Path], object]]) -> None:
        self.behaviors = behaviors
        self.calls: List[Tuple[str, str, Path]] = []

    def run(self, stage_id: str, argument_string: str, working_directory: Path) -> None:
        working_directory = Path(working_directory)
        working_directory.mkdir(parents=True, exist_ok=True)
        self.calls.append((stage_id, argument_string, working_directory))
        rc = self.behaviors[stage_id](argument_string, working_directory)
        if isinstance(rc, int) and rc != 0:
            raise StageFailure(stage_id, f"{stage_id} {argument_string}", rc)

    def stages_called(self) -> List[str]:
        return [c[0] for c in self.calls]


def hydro_writes(surface: str = "surface.dat", content: str = "0.1 0.2 0.3\n"):
    def _run(args: str, wd: Path) -> int:
        (wd / surface).write_text(content)
        return 0

    return _run


def sampler_writes(body_lines: int = 4, out: str = "particles_in.dat"):
    def _run(args: str, wd: Path) -> int:
        lines = HEADER + [f"{i} 0.1 0.2 0.3" for i in range(body_lines)]
        (wd / out).write_text("\n".join(lines) + "\n")
        return 0

    return _run


def afterburner_writes(blocks: Sequence[Sequence[Tuple]], out: str = "particles_out.dat"):
    def _run(args: str, wd: Path) -> int:
        (wd / out).write_text(format_stream(blocks))
        return 0

    return _run


def afterburner_writes_bytes(payload: bytes, out: str = "particles_out.dat"):
    def _run(args: str, wd: Path) -> int:
        (wd / out).write_bytes(payload)
        return 0

    return _run


def fails_with(rc: int):
    def _run(args: str, wd: Path) -> int:
        return rc

    return _run


def sequence(*behaviors):
    """Use the i-th behavior on the i-th call."""
    pending = list(behaviors)

    def _run(args: str, wd: Path):
        return pending.pop(0)(args, wd)

    return _run


def add_event(store: ResultStore, name: str, mult: float = 2e4, shape=(8, 8)) -> None:
    store.create_event_subtree(name)
    grid = np.arange(shape[0] * shape[1], dtype=np.float64).reshape(shape)
    store.attach_initial(
        name,
        grid,
        {"impact_parameter": 3.2, "npart": 350.0, "mult": mult, "eccentricities": [0.1, 0.2, 0.05, 0.02]},
    )


@pytest.fixture
def layout(tmp_path: Path) -> ScratchLayout:
    return ScratchLayout.from_config(DEFAULTS, tmp_path / "scratch")


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "events.h5"
