from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional

from .build_config import BootEntry
from .errors import PackagingError
from .lib.command import CommandError, run_cmd
from .lib.tree import copy_tree, remove_tree
from .sysroot import StagingRoot

logger = logging.getLogger(__name__)

GRUB_CFG = "boot/grub/grub.cfg"


def render_grub_cfg(entry: BootEntry) -> str:
    return (
        f"set timeout={entry.timeout}\n"
        f"set default={entry.default}\n\n"
        f'menuentry "{entry.title}" {{\n'
        f"    linux {entry.kernel} {entry.cmdline} initrd={entry.initramfs}\n"
        f"    initrd {entry.initramfs}\n"
        "}\n"
    )


def write_checksums(iso_path: Path) -> Path:
    sums_path = iso_path.parent / "SHA256SUMS"
    h = hashlib.sha256()
    with iso_path.open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    sums_path.write_text(f"{h.hexdigest()}  {iso_path.name}\n", encoding="utf-8")
    return sums_path


def package_iso(
    sysroot: StagingRoot,
    entry: BootEntry,
    *,
    iso_dir: Path,
    iso_path: Path,
    timeout: Optional[float] = None,
    dry_run: bool = False,
) -> Path:
    """Mirror the sysroot, add a GRUB config and master a bootable ISO.

    On failure the mirror in iso_dir is left in place for inspection.
    """

    iso_dir = Path(iso_dir)
    iso_path = Path(iso_path)

    if dry_run:
        logger.info("Would mirror %s -> %s and write %s", sysroot.root, iso_dir, iso_dir / GRUB_CFG)
        run_cmd(["grub-mkrescue", "-o", str(iso_path), str(iso_dir)], dry_run=True)
        return iso_path

    try:
        remove_tree(str(iso_dir))
        copy_tree(str(sysroot.root), str(iso_dir))
    except OSError as e:
        raise PackagingError(f"mirroring {sysroot.root} -> {iso_dir}: {e}") from e

    grub_cfg = iso_dir / GRUB_CFG
    grub_cfg.parent.mkdir(parents=True, exist_ok=True)
    grub_cfg.write_text(render_grub_cfg(entry), encoding="utf-8")
    iso_path.parent.mkdir(parents=True, exist_ok=True)
    if iso_path.exists():
        iso_path.unlink()

    try:
        run_cmd(["grub-mkrescue", "-o", str(iso_path), str(iso_dir)], timeout=timeout)
    except CommandError as e:
        raise PackagingError(str(e), tool=e.tool) from e

    if not iso_path.is_file():
        raise PackagingError(f"grub-mkrescue did not produce {iso_path}", tool="grub-mkrescue")

    write_checksums(iso_path)
    logger.info("ISO image written: %s", iso_path)
    return iso_path
