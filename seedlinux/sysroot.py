from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class StagingRoot:
    """The target filesystem tree every component installs into."""

    def __init__(self, path: Path, skeleton: Iterable[str], sticky_dirs: Iterable[str] = ("tmp",)) -> None:
        self.root = Path(path)
        self.skeleton = tuple(skeleton)
        self.sticky_dirs = tuple(sticky_dirs)

    def __str__(self) -> str:
        return str(self.root)

    def reset(self, *, dry_run: bool = False) -> None:
        """Destroy the tree and recreate exactly the skeleton."""

        if dry_run:
            logger.info("Would recreate sysroot %s", self.root)
            return

        if self.root.exists() or self.root.is_symlink():
            logger.info("Removing sysroot %s", self.root)
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True)
        for rel in self.skeleton:
            self.path(rel).mkdir(parents=True, exist_ok=True)
        for rel in self.sticky_dirs:
            p = self.path(rel)
            p.mkdir(parents=True, exist_ok=True)
            os.chmod(p, 0o1777)
        logger.info("Sysroot skeleton created: %s", self.root)

    def path(self, rel: str) -> Path:
        """Resolve a sysroot-relative path ("/etc/x" and "etc/x" are the same)."""

        parts = PurePosixPath(rel.lstrip("/")).parts
        if ".." in parts:
            raise ValueError(f"Path escapes sysroot: {rel}")
        return self.root.joinpath(*parts)

    def exists(self, rel: str) -> bool:
        p = self.path(rel)
        return p.exists() or p.is_symlink()

    def write_file(self, rel: str, contents: str, *, mode: Optional[int] = None, dry_run: bool = False) -> Path:
        p = self.path(rel)
        if dry_run:
            logger.info("Would write %s", p)
            return p
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(contents, encoding="utf-8")
        if mode is not None:
            os.chmod(p, mode)
        return p

    def symlink(self, rel: str, target: str, *, dry_run: bool = False) -> Path:
        """Create (or replace) a symlink at rel pointing to target, as `ln -sf`."""

        p = self.path(rel)
        if dry_run:
            logger.info("Would link %s -> %s", p, target)
            return p
        p.parent.mkdir(parents=True, exist_ok=True)
        if p.is_symlink() or p.is_file():
            p.unlink()
        os.symlink(target, p)
        logger.info("Linked %s -> %s", p, target)
        return p
