"""Source cache (downloaded archives, kept across runs) and source stage
(per-run extraction area).

Cache entries are complete-or-absent: downloads land in ``<archive>.part`` and
are renamed into place only after the transfer tool exits zero.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .components import Component
from .errors import ExtractError, FetchError
from .lib.command import CommandError, run_cmd
from .lib.tree import remove_tree

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
EXTRACTED_MARKER = ".seedlinux-extracted"

# Compound extension -> tar decompression flag.
TAR_FORMATS = (
    (".tar.gz", "z"),
    (".tgz", "z"),
    (".tar.xz", "J"),
    (".tar.bz2", "j"),
)


@dataclass(frozen=True)
class CacheEntry:
    filename: str
    path: Path


@dataclass(frozen=True)
class ExtractedSource:
    component: Component
    path: Path


def tar_flag(archive: str) -> Optional[str]:
    name = archive.lower()
    for ext, flag in TAR_FORMATS:
        if name.endswith(ext):
            return flag
    return None


class SourceCache:
    def __init__(self, cache_dir: Path, *, timeout: Optional[float] = None, dry_run: bool = False) -> None:
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.dry_run = dry_run

    def entry_path(self, component: Component) -> Path:
        if not component.archive:
            raise ValueError(f"{component} has no source archive")
        return self.cache_dir / component.archive

    def fetch(self, component: Component) -> CacheEntry:
        dest = self.entry_path(component)
        entry = CacheEntry(filename=dest.name, path=dest)
        if dest.is_file():
            logger.info("Using cached %s", dest.name)
            return entry

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + PARTIAL_SUFFIX)
        if partial.exists():
            # Leftover from an interrupted transfer.
            partial.unlink()

        logger.info("Downloading %s", dest.name)
        try:
            run_cmd(
                ["wget", "-q", "-O", str(partial), str(component.url)],
                timeout=self.timeout,
                dry_run=self.dry_run,
            )
        except CommandError as e:
            if partial.exists():
                partial.unlink()
            raise FetchError(component.name, str(component.url), str(e)) from e

        if self.dry_run:
            return entry
        if not partial.is_file():
            raise FetchError(component.name, str(component.url), f"no data written to {partial}")
        os.replace(partial, dest)
        return entry

    def fetch_all(self, components: Iterable[Component]) -> List[CacheEntry]:
        return [self.fetch(c) for c in components if c.has_sources]

    def stage_archives(self, entries: Iterable[CacheEntry], dest_dir: Path) -> List[Path]:
        """Copy cached archives into dest_dir; the cache keeps its own copy."""

        out = []
        dest_dir = Path(dest_dir)
        if not self.dry_run:
            dest_dir.mkdir(parents=True, exist_ok=True)
        for entry in entries:
            dst = dest_dir / entry.filename
            out.append(dst)
            if self.dry_run:
                logger.info("Would copy %s -> %s", entry.path, dst)
                continue
            if _is_current(dst, entry.path):
                continue
            shutil.copy2(entry.path, dst)
        return out


def _is_current(dst: Path, src: Path) -> bool:
    """Like `cp -u`: the staged copy is kept unless the cached archive is newer or differs in size."""

    if not dst.is_file():
        return False
    d, s = dst.stat(), src.stat()
    return d.st_size == s.st_size and d.st_mtime_ns >= s.st_mtime_ns


class SourceStage:
    def __init__(self, stage_dir: Path, *, timeout: Optional[float] = None, dry_run: bool = False) -> None:
        self.stage_dir = Path(stage_dir)
        self.timeout = timeout
        self.dry_run = dry_run

    def reset(self) -> None:
        remove_tree(str(self.stage_dir), dry_run=self.dry_run)
        if not self.dry_run:
            self.stage_dir.mkdir(parents=True, exist_ok=True)

    def source_path(self, component: Component) -> Path:
        if not component.source_dir:
            raise ValueError(f"{component} has no source directory")
        return self.stage_dir / component.source_dir

    def is_extracted(self, component: Component) -> bool:
        return (self.source_path(component) / EXTRACTED_MARKER).is_file()

    def extract(self, component: Component) -> ExtractedSource:
        src = self.source_path(component)
        extracted = ExtractedSource(component=component, path=src)
        if self.is_extracted(component):
            logger.info("Already extracted %s", src.name)
            return extracted

        archive = self.stage_dir / str(component.archive)
        flag = tar_flag(archive.name)
        if flag is None:
            raise ExtractError(archive.name, "unrecognized archive format")
        if not self.dry_run and not archive.is_file():
            raise ExtractError(archive.name, "archive not staged")

        if src.exists():
            # A directory without the marker is an interrupted extraction.
            logger.warning("Discarding partial extraction %s", src)
            remove_tree(str(src), dry_run=self.dry_run)

        try:
            run_cmd(
                ["tar", f"-x{flag}f", str(archive), "-C", str(self.stage_dir)],
                timeout=self.timeout,
                dry_run=self.dry_run,
            )
        except CommandError as e:
            raise ExtractError(archive.name, str(e)) from e

        if self.dry_run:
            return extracted
        if not src.is_dir():
            raise ExtractError(archive.name, f"expected directory {src.name} was not produced")
        (src / EXTRACTED_MARKER).write_text(f"{component}\n", encoding="utf-8")
        return extracted

    def extract_all(self, components: Iterable[Component]) -> List[ExtractedSource]:
        return [self.extract(c) for c in components if c.has_sources]
