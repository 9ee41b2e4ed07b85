"""Logging setup for batch runs.

One logger per batch entrypoint. The console shows per-event progress, failure
lines and the final summary; the run log file additionally keeps every stage
command line (DEBUG) so a store can be reproduced from its log.

Components log through children of the batch logger (`run_events.stages`,
`run_events.store`), which share its handlers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def configure_logging(
    *,
    log_dir: Path,
    run_id: str,
    name: str = "hic_events",
    console_level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{name}_{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Reconfiguring in the same process (tests, repeated batches) replaces handlers.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(_level(console_level))
    console.setFormatter(fmt)
    logger.addHandler(console)

    run_log = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    run_log.setLevel(logging.DEBUG)
    run_log.setFormatter(fmt)
    logger.addHandler(run_log)

    logger.debug("Logging configured. run_id=%s log_path=%s", run_id, log_path)
    return logger


def child_logger(parent: logging.Logger, component: str) -> logging.Logger:
    """Component logger sharing the batch logger's handlers."""
    return parent.getChild(component)
