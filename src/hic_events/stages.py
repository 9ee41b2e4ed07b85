"""External stage invocation.

Each physics stage is an opaque binary that talks to the pipeline only through
files in its working directory and its exit status. The runner never retries;
the orchestrator decides what a failure means for the event.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import StageFailure

STAGE_IDS = ("initial", "hydro", "sampler", "afterburner")

# Shell convention for "command not found".
EXIT_NOT_FOUND = 127

_LOG = logging.getLogger("hic_events.stages")


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_command(executable: str, argument_string: str = "") -> List[str]:
    """Split an executable string and a shell-style argument string into argv."""
    argv = shlex.split(str(executable))
    if not argv:
        raise ValueError("empty executable")
    return argv + shlex.split(str(argument_string or ""))


@dataclass
class StageRunner:
    """Run stages as blocking subprocesses.

    `executables` maps a stage id to the command that starts it (may include
    fixed leading arguments, e.g. ``"python -m frzout"``).
    """

    executables: Mapping[str, str]
    logger: Optional[logging.Logger] = None
    log_name: str = "{stage}.log"

    def _log(self) -> logging.Logger:
        return self.logger or _LOG

    def command_for(self, stage_id: str, argument_string: str = "") -> List[str]:
        if stage_id not in self.executables:
            raise KeyError(f"No executable configured for stage '{stage_id}'")
        return build_command(self.executables[stage_id], argument_string)

    def run(self, stage_id: str, argument_string: str, working_directory: Path) -> None:
        """Run one stage to completion; raise StageFailure on non-zero exit."""
        cmd = self.command_for(stage_id, argument_string)
        cmd_str = shlex.join(cmd)
        workdir = Path(working_directory)
        workdir.mkdir(parents=True, exist_ok=True)

        self._log().info("[%s] cwd=%s CMD: %s", stage_id, workdir, cmd_str)

        log_path = workdir / self.log_name.format(stage=stage_id)
        with log_path.open("a", encoding="utf-8") as lf:
            lf.write(f"[{_iso_now()}] CMD: {cmd_str}\n")
            lf.flush()
            try:
                proc = subprocess.run(
                    cmd,
                    cwd=str(workdir),
                    stdout=lf,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=False,
                )
                rc = int(proc.returncode)
            except FileNotFoundError:
                lf.write(f"[{_iso_now()}] executable not found: {cmd[0]}\n")
                rc = EXIT_NOT_FOUND

        if rc != 0:
            raise StageFailure(stage_id, cmd_str, rc, workdir=str(workdir))
        self._log().debug("[%s] finished rc=0", stage_id)
