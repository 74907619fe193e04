from __future__ import annotations

import logging
from typing import Iterable

from .errors import StagingIntegrityError
from .sysroot import StagingRoot

logger = logging.getLogger(__name__)


def validate_critical_paths(sysroot: StagingRoot, paths: Iterable[str]) -> None:
    """Fail on the first critical path missing from the sysroot.

    Pure existence check (file, directory or symlink); nothing is repaired.
    """

    checked = 0
    for rel in paths:
        if not sysroot.exists(rel):
            logger.error("Critical path missing: %s", rel)
            raise StagingIntegrityError(rel)
        checked += 1

    logger.info("Critical paths present (%d checked)", checked)
