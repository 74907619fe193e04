from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def copy_tree(src: str, dst: str, *, dry_run: bool = False) -> None:
    """Mirror src into dst, keeping symlinks as symlinks (like `cp -a`)."""

    s = Path(src)
    d = Path(dst)
    if not s.exists():
        raise FileNotFoundError(src)

    if dry_run:
        logger.info("Would copy tree %s -> %s", str(s), str(d))
        return

    shutil.copytree(s, d, symlinks=True, dirs_exist_ok=True)


def remove_tree(path: str, *, dry_run: bool = False) -> None:
    p = Path(path)
    if not (p.exists() or p.is_symlink()):
        return
    if dry_run:
        logger.info("Would remove %s", str(p))
        return
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    else:
        p.unlink()
