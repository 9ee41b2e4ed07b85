"""Batch driver: run every pending event in a result store.

Outputs:
- The store itself, updated in place (failed events removed).
- Logs + run manifest under `--log_dir`.
- Optional per-event CSV report.

Exit status is non-zero only when no event succeeded.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional

from .config import load_pipeline_config, load_stage_args
from .errors import StageFailure
from .logging_utils import child_logger, configure_logging
from .manifest import write_manifest
from .orchestrator import EventPipeline, ScratchLayout, generate_initial_conditions
from .stages import STAGE_IDS, StageRunner
from .store import ResultStore

ENTRYPOINT = "run_events"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    ap.add_argument("--store", type=Path, required=True, help="HDF5 result store")
    ap.add_argument("--config", type=Path, default=None, help="Pipeline YAML (stage executables, scratch dirs, files)")
    ap.add_argument(
        "--stage_config",
        type=Path,
        default=None,
        help="Flat key = value file with ic_stage_args / hydro_stage_args",
    )
    ap.add_argument("--scratch_root", type=Path, default=Path("scratch"))
    ap.add_argument(
        "--nevents",
        type=int,
        default=0,
        help="Generate this many initial conditions first. 0 = store is already populated.",
    )
    ap.add_argument("--log_dir", type=Path, default=None, help="Default: <store dir>/logs")
    ap.add_argument("--run_id", type=str, default=None)
    ap.add_argument("--report_csv", type=Path, default=None)
    ap.add_argument("--log_level", type=str, default="INFO", help="Console log level (the run log file is always DEBUG)")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    run_id = args.run_id or time.strftime("%Y%m%d_%H%M%S")

    log_dir = args.log_dir or (args.store.parent / "logs")
    logger = configure_logging(log_dir=log_dir, run_id=run_id, name=ENTRYPOINT, console_level=args.log_level)

    manifest_path = write_manifest(
        out_dir=log_dir,
        run_id=run_id,
        entrypoint=ENTRYPOINT,
        args={k: str(v) for k, v in vars(args).items()},
    )
    logger.info("Wrote manifest: %s", manifest_path)

    cfg = load_pipeline_config(args.config)
    stage_args = load_stage_args(args.stage_config)
    layout = ScratchLayout.from_config(cfg, args.scratch_root)
    runner = StageRunner(
        executables={s: str(cfg["stages"][s]["executable"]) for s in STAGE_IDS},
        logger=child_logger(logger, "stages"),
    )

    if args.nevents > 0:
        try:
            generate_initial_conditions(
                runner=runner,
                layout=layout,
                store_path=args.store,
                nevents=args.nevents,
                stage_args=stage_args,
                logger=logger,
            )
        except StageFailure as exc:
            logger.error("Initial-condition stage failed (exit=%d): %s", exc.exit_code, exc.command)
            print("0/0 events succeeded")
            return 1

    if not args.store.exists():
        logger.error("Result store not found: %s", args.store)
        return 1

    with ResultStore(args.store, mode="a", logger=child_logger(logger, "store")) as store:
        pipeline = EventPipeline(
            store=store,
            runner=runner,
            layout=layout,
            stage_args=stage_args,
            logger=logger,
        )
        report = pipeline.run_batch()

    if args.report_csv is not None:
        args.report_csv.parent.mkdir(parents=True, exist_ok=True)
        report.to_frame().to_csv(args.report_csv, index=False)
        logger.info("Wrote report: %s", args.report_csv)

    print(report.summary())
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
