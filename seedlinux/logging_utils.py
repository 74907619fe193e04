from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"
FALLBACK_LOG_NAME = "seedlinux-build.log"

# Records held before the log file exists; generous, a run logs a handful of
# lines before its precondition check completes.
BUFFER_CAPACITY = 10000


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)


def configure_logging(level: int = logging.INFO, also_console: bool = True) -> None:
    """Start logging to the console and hold records for the build log.

    No file is created here. attach_log_file() writes the held records once the
    run is allowed to touch the disk; a run that never gets that far leaves no
    log file behind.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_seedlinux_configured", False):
        return

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(_formatter())
        root.addHandler(console)

    # No target yet, so nothing is flushed anywhere until attach_log_file().
    pending = logging.handlers.MemoryHandler(BUFFER_CAPACITY, flushLevel=logging.CRITICAL + 1)
    root.addHandler(pending)

    setattr(root, "_seedlinux_configured", True)
    setattr(root, "_seedlinux_pending", pending)


def attach_log_file(log_path: Path) -> str:
    """Open the build log, replay the held records into it and keep writing.

    Falls back to the current working directory if log_path cannot be created.
    Returns the path actually used; later calls return the same path.
    """

    root = logging.getLogger()
    current: Optional[str] = getattr(root, "_seedlinux_log_path", None)
    if current:
        return current

    chosen = str(log_path)
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(chosen)
    except OSError:
        chosen = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = logging.FileHandler(chosen)
    file_handler.setFormatter(_formatter())

    pending = getattr(root, "_seedlinux_pending", None)
    if pending is not None:
        pending.setTarget(file_handler)
        pending.flush()
        root.removeHandler(pending)
        pending.close()
        setattr(root, "_seedlinux_pending", None)

    root.addHandler(file_handler)
    setattr(root, "_seedlinux_log_path", chosen)

    logging.getLogger(__name__).info("Build log: requested=%s actual=%s", log_path, chosen)
    return chosen
