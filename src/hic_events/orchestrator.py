"""Per-event pipeline orchestration.

Every event walks an explicit state machine:

    START -> IC_READY -> HYDRO_DONE -> ENDED_NO_SURFACE
                                    -> SAMPLED -> ENDED_NO_PARTICLES
                                               -> AFTERBURNED -> PARSED -> COMMITTED

and any non-terminal state may go to FAILED. What ends up in the store:

- ENDED_NO_SURFACE, ENDED_NO_PARTICLES: `initial` only.
- COMMITTED: `initial` + `particles` with N oversample groups.
- FAILED: nothing (the event subtree is deleted).

EventFailure never escapes `run_event`; StoreCorruption always does.

Scratch directories are fixed per stage and reused across events, so events
must run strictly one after another.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import StageArgs, cfg_get, join_args
from .errors import CommitFailure, EventFailure, PreconditionViolation, StageFailure, StoreCorruption
from .oversample import estimate
from .records import has_data_after_header, read_records
from .stages import STAGE_IDS, StageRunner
from .store import ResultStore


class EventState(str, Enum):
    START = "START"
    IC_READY = "IC_READY"
    HYDRO_DONE = "HYDRO_DONE"
    ENDED_NO_SURFACE = "ENDED_NO_SURFACE"
    SAMPLED = "SAMPLED"
    ENDED_NO_PARTICLES = "ENDED_NO_PARTICLES"
    AFTERBURNED = "AFTERBURNED"
    PARSED = "PARSED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


S = EventState

TRANSITIONS: Dict[EventState, Tuple[EventState, ...]] = {
    S.START: (S.IC_READY, S.FAILED),
    S.IC_READY: (S.HYDRO_DONE, S.FAILED),
    S.HYDRO_DONE: (S.ENDED_NO_SURFACE, S.SAMPLED, S.FAILED),
    S.SAMPLED: (S.ENDED_NO_PARTICLES, S.AFTERBURNED, S.FAILED),
    S.AFTERBURNED: (S.PARSED, S.FAILED),
    S.PARSED: (S.COMMITTED, S.FAILED),
    S.ENDED_NO_SURFACE: (),
    S.ENDED_NO_PARTICLES: (),
    S.COMMITTED: (),
    S.FAILED: (),
}

SUCCESS_STATES = frozenset({S.ENDED_NO_SURFACE, S.ENDED_NO_PARTICLES, S.COMMITTED})


@dataclass(frozen=True)
class ScratchLayout:
    """Fixed per-stage working directories and the file names stages exchange."""

    workdirs: Dict[str, Path]
    args: Dict[str, str]
    hydro_input: str = "ic.dat"
    hypersurface: str = "surface.dat"
    sampler_surface: str = "surface.dat"
    sampler_output: str = "particles_in.dat"
    afterburner_input: str = "particles_in.dat"
    afterburner_output: str = "particles_out.dat"
    header_marker: str = "#"
    header_lines: int = 3

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], scratch_root: Path) -> "ScratchLayout":
        workdirs: Dict[str, Path] = {}
        args: Dict[str, str] = {}
        for stage in STAGE_IDS:
            wd = Path(str(cfg_get(cfg, f"stages.{stage}.workdir", stage)))
            workdirs[stage] = wd if wd.is_absolute() else Path(scratch_root) / wd
            args[stage] = str(cfg_get(cfg, f"stages.{stage}.args", "") or "")
        files = cfg_get(cfg, "files", {}) or {}
        return cls(
            workdirs=workdirs,
            args=args,
            header_marker=str(cfg_get(cfg, "records.header_marker", "#")),
            header_lines=int(cfg_get(cfg, "records.header_lines", 3)),
            **{k: str(v) for k, v in files.items() if k in _FILE_KEYS},
        )

    def path(self, stage: str, filename: str) -> Path:
        return self.workdirs[stage] / filename


_FILE_KEYS = (
    "hydro_input",
    "hypersurface",
    "sampler_surface",
    "sampler_output",
    "afterburner_input",
    "afterburner_output",
)


@dataclass(frozen=True)
class EventResult:
    event: str
    state: EventState
    path: Tuple[EventState, ...]
    n_oversamples: Optional[int] = None
    n_particles: int = 0
    failure_kind: Optional[str] = None
    command: Optional[str] = None
    exit_code: Optional[int] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state in SUCCESS_STATES


@dataclass
class BatchReport:
    results: List[EventResult] = field(default_factory=list)

    @property
    def n_total(self) -> int:
        return len(self.results)

    @property
    def n_succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def n_failed(self) -> int:
        return self.n_total - self.n_succeeded

    @property
    def ok(self) -> bool:
        return self.n_succeeded > 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> str:
        return f"{self.n_succeeded}/{self.n_total} events succeeded"

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "event": r.event,
                "ok": r.ok,
                "state": r.state.value,
                "n_oversamples": r.n_oversamples,
                "n_particles": r.n_particles,
                "failure_kind": r.failure_kind,
                "command": r.command,
                "exit_code": r.exit_code,
                "message": r.message,
            }
            for r in self.results
        ]
        columns = [
            "event",
            "ok",
            "state",
            "n_oversamples",
            "n_particles",
            "failure_kind",
            "command",
            "exit_code",
            "message",
        ]
        return pd.DataFrame(rows, columns=columns)


class _Tracker:
    """Current state plus the path taken; rejects undeclared transitions."""

    def __init__(self) -> None:
        self.state = S.START
        self.path: List[EventState] = [S.START]

    def to(self, new: EventState) -> None:
        if new not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new.value}")
        self.state = new
        self.path.append(new)


def _relocate(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    if src.resolve() == dst.resolve():
        return
    shutil.move(str(src), str(dst))


class EventPipeline:
    """Drive the hydro -> sampler -> afterburner chain for events in a store."""

    def __init__(
        self,
        *,
        store: ResultStore,
        runner: StageRunner,
        layout: ScratchLayout,
        stage_args: Optional[StageArgs] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.layout = layout
        self.stage_args = stage_args or StageArgs()
        self.logger = logger or logging.getLogger("hic_events.orchestrator")

    # -- per-event ------------------------------------------------------

    def run_event(self, name: str) -> EventResult:
        tracker = _Tracker()
        info: Dict[str, Any] = {}
        try:
            self._advance(name, tracker, info)
        except EventFailure as exc:
            return self._fail(name, tracker, info, exc)

        self.store.mark_complete(name, tracker.state.value)
        self.store.flush()
        self.logger.info(
            "Event %s: %s (oversamples=%s particles=%d)",
            name,
            tracker.state.value,
            info.get("n_oversamples"),
            info.get("n_particles", 0),
        )
        return EventResult(
            event=name,
            state=tracker.state,
            path=tuple(tracker.path),
            n_oversamples=info.get("n_oversamples"),
            n_particles=int(info.get("n_particles", 0)),
        )

    def _advance(self, name: str, t: _Tracker, info: Dict[str, Any]) -> None:
        lay = self.layout

        # START -> IC_READY
        grid, attrs = self.store.read_initial(name)
        grid = np.asarray(grid)
        if grid.ndim != 2:
            raise PreconditionViolation(f"initial grid for '{name}' is not 2-D: shape {grid.shape}")
        hydro_input = lay.path("hydro", lay.hydro_input)
        hydro_input.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(hydro_input, grid)
        t.to(S.IC_READY)

        # IC_READY -> HYDRO_DONE
        self.runner.run(
            "hydro",
            join_args(lay.args["hydro"], self.stage_args.hydro_stage_args),
            lay.workdirs["hydro"],
        )
        t.to(S.HYDRO_DONE)

        # HYDRO_DONE -> ENDED_NO_SURFACE | SAMPLED
        surface = lay.path("hydro", lay.hypersurface)
        if not surface.exists():
            raise PreconditionViolation(f"hydro exited cleanly but produced no {surface}")
        if surface.stat().st_size == 0:
            t.to(S.ENDED_NO_SURFACE)
            return

        n = estimate(attrs.get("mult"))
        info["n_oversamples"] = n
        _relocate(surface, lay.path("sampler", lay.sampler_surface))
        self.runner.run("sampler", lay.args["sampler"].format(oversamples=n), lay.workdirs["sampler"])
        t.to(S.SAMPLED)

        # SAMPLED -> ENDED_NO_PARTICLES | AFTERBURNED
        sampled = lay.path("sampler", lay.sampler_output)
        if not sampled.exists():
            raise PreconditionViolation(f"sampler exited cleanly but produced no {sampled}")
        if not has_data_after_header(sampled, lay.header_lines):
            t.to(S.ENDED_NO_PARTICLES)
            return

        _relocate(sampled, lay.path("afterburner", lay.afterburner_input))
        self.runner.run("afterburner", lay.args["afterburner"], lay.workdirs["afterburner"])
        t.to(S.AFTERBURNED)

        # AFTERBURNED -> PARSED
        out = lay.path("afterburner", lay.afterburner_output)
        if not out.exists():
            raise PreconditionViolation(f"afterburner exited cleanly but produced no {out}")
        oversamples = read_records(out, n, lay.header_marker)
        info["n_particles"] = sum(len(ov) for ov in oversamples)
        t.to(S.PARSED)

        # PARSED -> COMMITTED
        try:
            self.store.write_particles(name, oversamples)
        except StoreCorruption:
            raise
        except (OSError, ValueError) as exc:
            raise CommitFailure(f"writing particles for '{name}' failed: {exc}") from exc
        t.to(S.COMMITTED)

    def _fail(self, name: str, t: _Tracker, info: Dict[str, Any], exc: EventFailure) -> EventResult:
        failed_in = t.state
        t.to(S.FAILED)
        command = getattr(exc, "command", None)
        exit_code = getattr(exc, "exit_code", None)
        if isinstance(exc, StageFailure):
            self.logger.error(
                "Event %s FAILED in %s: stage=%s exit=%d cmd=%s",
                name,
                failed_in.value,
                exc.stage,
                exc.exit_code,
                exc.command,
            )
        else:
            self.logger.error("Event %s FAILED in %s: %s: %s", name, failed_in.value, exc.kind, exc)

        self.store.delete_event(name)
        self.store.flush()
        return EventResult(
            event=name,
            state=S.FAILED,
            path=tuple(t.path),
            n_oversamples=info.get("n_oversamples"),
            failure_kind=exc.kind,
            command=command,
            exit_code=exit_code,
            message=str(exc),
        )

    # -- batch ----------------------------------------------------------

    def iter_events(self, events: Optional[Iterable[str]] = None) -> Iterator[EventResult]:
        names = list(events) if events is not None else self.store.pending_events()
        self.logger.info("Processing %d event(s)", len(names))
        for name in names:
            yield self.run_event(name)

    def run_batch(self, events: Optional[Iterable[str]] = None) -> BatchReport:
        report = BatchReport()
        for result in self.iter_events(events):
            report.results.append(result)
        self.logger.info(report.summary())
        return report


def generate_initial_conditions(
    *,
    runner: StageRunner,
    layout: ScratchLayout,
    store_path: Path,
    nevents: int,
    stage_args: Optional[StageArgs] = None,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Run the IC generator once for the batch and move its output into per-event groups.

    The generator writes raw datasets straight into the store file; the store
    must not be open while it runs. A StageFailure here is fatal for the batch.
    """
    log = logger or logging.getLogger("hic_events.orchestrator")
    stage_args = stage_args or StageArgs()
    store_path = Path(store_path).resolve()
    store_path.parent.mkdir(parents=True, exist_ok=True)

    template = layout.args["initial"].format(nevents=int(nevents), output=str(store_path))
    runner.run("initial", join_args(template, stage_args.ic_stage_args), layout.workdirs["initial"])

    with ResultStore(store_path, mode="a", logger=log) as store:
        events = store.relocate_raw_initial()
    log.info("Generated initial conditions for %d event(s) into %s", len(events), store_path)
    return events
