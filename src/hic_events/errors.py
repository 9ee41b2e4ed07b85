"""Error taxonomy.

- EventFailure and its subclasses are recoverable at event granularity: the
  orchestrator deletes the event subtree and moves on to the next event.
- StoreCorruption is fatal and is never caught inside the pipeline.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class EventFailure(PipelineError):
    """Anything that invalidates a single event but not the batch."""

    kind = "event_failure"


class StageFailure(EventFailure):
    """An external stage exited with a non-zero status."""

    kind = "stage_failure"

    def __init__(self, stage: str, command: str, exit_code: int, workdir: Optional[str] = None) -> None:
        self.stage = stage
        self.command = command
        self.exit_code = int(exit_code)
        self.workdir = workdir
        super().__init__(f"Stage '{stage}' failed (exit={self.exit_code}): {command}")


class PreconditionViolation(EventFailure):
    """Upstream data or a stage's file contract is not what the pipeline expects."""

    kind = "precondition_violation"


class RecordFormatError(PreconditionViolation):
    """Particle record stream could not be parsed into the fixed schema."""

    kind = "record_format_error"


class StoreCorruption(PipelineError):
    """The result store is structurally invalid. Aborts the batch."""


class CommitFailure(EventFailure):
    """Writing an event's particles was interrupted; the event is discarded."""

    kind = "commit_failure"
