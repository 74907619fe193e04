from __future__ import annotations

import logging
from typing import List

from .build_config import BuildConfig
from .errors import PreconditionError
from .lib.command import run_cmd, which

logger = logging.getLogger(__name__)


def missing_tools(tools: List[str]) -> List[str]:
    return [t for t in tools if not which(t)]


def missing_libraries(libraries: List[str], query: List[str]) -> List[str]:
    # A missing package manager is reported through the tool list; treat it as
    # "nothing installed" here so every library still shows up in the report.
    if not libraries:
        return []
    if not which(query[0]):
        return list(libraries)
    return [lib for lib in libraries if run_cmd([*query, lib], check=False).returncode != 0]


def missing_python_modules(modules: List[str], python: str = "python3") -> List[str]:
    if not modules:
        return []
    if not which(python):
        return [python]
    out = []
    for m in modules:
        if run_cmd([python, "-c", f"import {m}"], check=False).returncode != 0:
            out.append(f"python-{m}")
    return out


def check_preconditions(cfg: BuildConfig) -> None:
    """Verify host tools, libraries and inputs before anything is touched.

    Collects every absence and raises one PreconditionError listing them all.
    """

    missing: List[str] = []
    missing += missing_tools(cfg.required_tools)
    missing += missing_libraries(cfg.required_libraries, cfg.library_query)
    missing += missing_python_modules(cfg.required_python_modules)

    if any(getattr(c.recipe, "config_file", False) for c in cfg.components):
        if not cfg.kernel_config.is_file():
            missing.append(f"kernel config {cfg.kernel_config}")

    if missing:
        raise PreconditionError(missing)

    logger.info(
        "Preconditions satisfied (%d tools, %d libraries, %d python modules)",
        len(cfg.required_tools),
        len(cfg.required_libraries),
        len(cfg.required_python_modules),
    )
