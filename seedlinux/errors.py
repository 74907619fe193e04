"""Typed failures of a pipeline run.

Every stage raises a subclass of :class:`BuildError`; the driver turns it into a
failed :class:`~seedlinux.pipeline.PipelineResult` and the CLI formats it.
"""

from __future__ import annotations

from typing import Sequence


class BuildError(RuntimeError):
    """Terminal failure of a run, tagged with the stage it happened in."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(message)

    def diagnostic(self) -> str:
        return f"[{self.stage}] {self.message}"


class PreconditionError(BuildError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "checking_preconditions",
            "Missing required tools/packages: " + ", ".join(self.missing),
        )


class FetchError(BuildError):
    def __init__(self, component: str, url: str, reason: str) -> None:
        self.component = component
        self.url = url
        super().__init__("fetching_sources", f"Download of {component} from {url} failed: {reason}")


class ExtractError(BuildError):
    def __init__(self, archive: str, reason: str) -> None:
        self.archive = archive
        super().__init__("extracting_sources", f"Cannot extract {archive}: {reason}")


class ComponentBuildError(BuildError):
    def __init__(self, component: str, reason: str, *, stage: str = "building", tool: str = "") -> None:
        self.component = component
        self.tool = tool
        detail = f" ({tool})" if tool else ""
        super().__init__(stage, f"Build of {component} failed{detail}: {reason}")


class StagingIntegrityError(BuildError):
    def __init__(self, missing_path: str, *, stage: str = "validating") -> None:
        self.missing_path = missing_path
        super().__init__(stage, f"Critical path missing from sysroot: {missing_path}")


class PackagingError(BuildError):
    def __init__(self, reason: str, *, tool: str = "") -> None:
        self.tool = tool
        super().__init__("packaging", f"ISO packaging failed: {reason}")
