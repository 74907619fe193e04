from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

import yaml

from .build_config import BuildConfig, load_build_config
from .logging_utils import attach_log_file, configure_logging
from .pipeline import PipelineDriver, PipelineResult, PipelineState

logger = logging.getLogger(__name__)


DEFAULT_BUILD_CONFIG = "build_config.yaml"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_CONFIG = 2


def run_build(
    cfg: BuildConfig,
    *,
    log_path: Optional[str] = None,
    keep_sources: bool = False,
    dry_run: bool = False,
) -> PipelineResult:
    log_file = Path(log_path) if log_path else cfg.log_path

    def open_log_once_checked(prev: PipelineState, new: PipelineState) -> None:
        # The precondition check must not touch the disk; the log starts here.
        if new is PipelineState.CLEANING_ROOT:
            attach_log_file(log_file)

    logger.info(
        "Building %d components into %s (jobs=%d)",
        len(cfg.components),
        cfg.sysroot_dir,
        cfg.jobs,
    )

    driver = PipelineDriver(
        cfg,
        dry_run=dry_run,
        keep_sources=keep_sources,
        on_transition=open_log_once_checked,
    )
    return driver.run()


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="seedlinux-build", description="Build the Seed Linux ISO from source")
    p.add_argument("--config", default=DEFAULT_BUILD_CONFIG)
    p.add_argument("--log", default=None, help="Build log path (default: <build_dir>/seedlinux-build.log)")
    p.add_argument("--jobs", type=int, default=None, help="Job count passed to make/ninja (default: CPU count)")
    p.add_argument("--timeout", type=float, default=None, help="Abort any external tool running longer (seconds)")
    p.add_argument("--keep-sources", action="store_true", help="Reuse extracted sources from the previous run")
    p.add_argument("--dry-run", action="store_true")

    args = p.parse_args(argv)

    configure_logging()

    try:
        cfg = load_build_config(args.config).with_build_options(jobs=args.jobs, command_timeout=args.timeout)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logger.error("Invalid build configuration %s: %s", args.config, e)
        return EXIT_BAD_CONFIG

    result = run_build(
        cfg,
        log_path=args.log,
        keep_sources=bool(args.keep_sources),
        dry_run=bool(args.dry_run),
    )

    if not result.ok:
        if result.error is not None:
            logger.error("FAILED %s", result.error.diagnostic())
        return EXIT_FAILED

    if args.dry_run:
        logger.info(
            "Dry run finished: %d components planned, no ISO written (would be %s)",
            len(result.built),
            cfg.iso_path,
        )
        return EXIT_OK

    if result.iso_path is None or not result.iso_path.is_file():
        logger.error("FAILED [packaging] ISO missing after a completed run: %s", result.iso_path)
        return EXIT_FAILED

    logger.info("ISO image is available at: %s", result.iso_path)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
