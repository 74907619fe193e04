from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .build_config import InitramfsSpec
from .errors import ComponentBuildError, StagingIntegrityError
from .lib.command import CommandError, run_cmd
from .sysroot import StagingRoot

logger = logging.getLogger(__name__)

STAGE = "generating_initramfs"


def render_mkinitcpio_conf(spec: InitramfsSpec) -> str:
    return (
        f"MODULES=({' '.join(spec.modules)})\n"
        f"BINARIES=({' '.join(spec.binaries)})\n"
        f"FILES=({' '.join(spec.files)})\n"
        f"HOOKS=({' '.join(spec.hooks)})\n"
    )


def generate_initramfs(
    sysroot: StagingRoot,
    spec: InitramfsSpec,
    *,
    timeout: Optional[float] = None,
    dry_run: bool = False,
) -> Path:
    """Write mkinitcpio.conf into the sysroot and build the initramfs image.

    The kernel modules for spec.kernel_version must already be installed.
    """

    conf = sysroot.write_file(spec.config, render_mkinitcpio_conf(spec), dry_run=dry_run)

    modules_rel = f"lib/modules/{spec.kernel_version}"
    if not dry_run and not sysroot.path(modules_rel).is_dir():
        raise StagingIntegrityError("/" + modules_rel, stage=STAGE)

    image = sysroot.path(spec.image)
    try:
        run_cmd(
            [
                "mkinitcpio",
                "-k",
                spec.kernel_version,
                "-g",
                str(image),
                "-r",
                str(sysroot.root),
                "-c",
                str(conf),
            ],
            env={"KERNEL_MODULES_DIR": str(sysroot.path(modules_rel))},
            timeout=timeout,
            dry_run=dry_run,
        )
    except CommandError as e:
        raise ComponentBuildError("initramfs", str(e), stage=STAGE, tool=e.tool) from e

    if not dry_run and not image.is_file():
        raise StagingIntegrityError("/" + spec.image.lstrip("/"), stage=STAGE)

    logger.info("Initramfs written: %s", image)
    return image
