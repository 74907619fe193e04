"""Pipeline driver: an explicit state machine over the build stages.

CHECKING_PRECONDITIONS -> CLEANING_ROOT -> FETCHING_SOURCES ->
EXTRACTING_SOURCES -> BUILDING -> VALIDATING -> GENERATING_INITRAMFS ->
PACKAGING -> DONE, with FAILED reachable from every non-terminal state.

Transitions are strictly sequential. Stage failures are returned in the
PipelineResult rather than raised; the CLI is the only place that turns them
into a process exit status.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .build_config import BuildConfig
from .builders import BuildCtx, build_component
from .errors import BuildError, PackagingError
from .initramfs import generate_initramfs
from .packaging import package_iso
from .preconditions import check_preconditions
from .run_record import save_run_record
from .sources import SourceCache, SourceStage
from .sysroot import StagingRoot
from .validate import validate_critical_paths

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    CHECKING_PRECONDITIONS = "checking_preconditions"
    CLEANING_ROOT = "cleaning_root"
    FETCHING_SOURCES = "fetching_sources"
    EXTRACTING_SOURCES = "extracting_sources"
    BUILDING = "building"
    VALIDATING = "validating"
    GENERATING_INITRAMFS = "generating_initramfs"
    PACKAGING = "packaging"
    DONE = "done"
    FAILED = "failed"


NEXT_STATE: Dict[PipelineState, PipelineState] = {
    PipelineState.CHECKING_PRECONDITIONS: PipelineState.CLEANING_ROOT,
    PipelineState.CLEANING_ROOT: PipelineState.FETCHING_SOURCES,
    PipelineState.FETCHING_SOURCES: PipelineState.EXTRACTING_SOURCES,
    PipelineState.EXTRACTING_SOURCES: PipelineState.BUILDING,
    PipelineState.BUILDING: PipelineState.VALIDATING,
    PipelineState.VALIDATING: PipelineState.GENERATING_INITRAMFS,
    PipelineState.GENERATING_INITRAMFS: PipelineState.PACKAGING,
    PipelineState.PACKAGING: PipelineState.DONE,
}

TERMINAL_STATES = (PipelineState.DONE, PipelineState.FAILED)

TransitionHook = Callable[[PipelineState, PipelineState], None]


@dataclass
class PipelineResult:
    state: PipelineState
    visited: List[PipelineState] = field(default_factory=list)
    built: List[str] = field(default_factory=list)
    iso_path: Optional[Path] = None
    error: Optional[BuildError] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    def to_record(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "visited": [s.value for s in self.visited],
            "built": list(self.built),
            "iso_path": str(self.iso_path) if self.iso_path else None,
            "error": (
                {"stage": self.error.stage, "message": self.error.message} if self.error else None
            ),
        }


class PipelineDriver:
    """Sequences one build run and owns its success/failure state."""

    def __init__(
        self,
        cfg: BuildConfig,
        *,
        dry_run: bool = False,
        keep_sources: bool = False,
        on_transition: Optional[TransitionHook] = None,
    ) -> None:
        self.cfg = cfg
        self.dry_run = dry_run
        self.keep_sources = keep_sources
        self.on_transition = on_transition

        timeout = cfg.command_timeout
        self.sysroot = StagingRoot(cfg.sysroot_dir, cfg.skeleton, cfg.sticky_dirs)
        self.cache = SourceCache(cfg.cache_dir, timeout=timeout, dry_run=dry_run)
        self.stage = SourceStage(cfg.sources_dir, timeout=timeout, dry_run=dry_run)

        self.state = PipelineState.CHECKING_PRECONDITIONS
        self._result = PipelineResult(state=self.state)

        self._handlers: Dict[PipelineState, Callable[[], None]] = {
            PipelineState.CHECKING_PRECONDITIONS: self._check_preconditions,
            PipelineState.CLEANING_ROOT: self._clean_root,
            PipelineState.FETCHING_SOURCES: self._fetch_sources,
            PipelineState.EXTRACTING_SOURCES: self._extract_sources,
            PipelineState.BUILDING: self._build_components,
            PipelineState.VALIDATING: self._validate,
            PipelineState.GENERATING_INITRAMFS: self._generate_initramfs,
            PipelineState.PACKAGING: self._package,
        }

    def _enter(self, state: PipelineState) -> None:
        prev = self.state
        self.state = state
        self._result.state = state
        self._result.visited.append(state)
        logger.info("=== %s ===", state.value)
        if self.on_transition is not None:
            self.on_transition(prev, state)

    def run(self) -> PipelineResult:
        started = time.monotonic()
        self.state = PipelineState.CHECKING_PRECONDITIONS
        self._result = PipelineResult(state=self.state, visited=[self.state])
        logger.info("=== %s ===", self.state.value)

        try:
            while self.state not in TERMINAL_STATES:
                try:
                    self._handlers[self.state]()
                    self._enter(NEXT_STATE[self.state])
                except BuildError as e:
                    self._fail(e)
                except OSError as e:
                    self._fail(BuildError(self.state.value, f"{type(e).__name__}: {e}"))
                except Exception as e:
                    logger.exception("Unexpected error in %s", self.state.value)
                    self._fail(BuildError(self.state.value, f"{type(e).__name__}: {e}"))
        finally:
            # A run that stopped at the precondition check must leave no trace on disk.
            if PipelineState.CLEANING_ROOT in self._result.visited and not self.dry_run:
                save_run_record(str(self.cfg.state_path), self._result.to_record())

        if self._result.ok:
            logger.info("Build completed in %.1fs: %s", time.monotonic() - started, self._result.iso_path)
        return self._result

    def _fail(self, error: BuildError) -> None:
        self._result.error = error
        logger.error("Build failed: %s", error.diagnostic())
        self._enter(PipelineState.FAILED)

    def _check_preconditions(self) -> None:
        check_preconditions(self.cfg)

    def _clean_root(self) -> None:
        self.sysroot.reset(dry_run=self.dry_run)
        if self.keep_sources:
            logger.info("Keeping extracted sources in %s", self.stage.stage_dir)
        else:
            self.stage.reset()
        if not self.dry_run:
            self.cfg.cache_dir.mkdir(parents=True, exist_ok=True)
            self.stage.stage_dir.mkdir(parents=True, exist_ok=True)

    def _fetch_sources(self) -> None:
        entries = self.cache.fetch_all(self.cfg.components)
        self.cache.stage_archives(entries, self.stage.stage_dir)

    def _extract_sources(self) -> None:
        self.stage.extract_all(self.cfg.components)

    def _build_components(self) -> None:
        ctx = BuildCtx(cfg=self.cfg, sysroot=self.sysroot, stage=self.stage, dry_run=self.dry_run)
        components = self.cfg.components
        for i, component in enumerate(components, start=1):
            logger.info("--- component %d/%d: %s ---", i, len(components), component)
            build_component(component, ctx)
            self._result.built.append(str(component))

    def _validate(self) -> None:
        if self.dry_run:
            logger.info("Skipping critical path check (dry run)")
            return
        validate_critical_paths(self.sysroot, self.cfg.critical_paths)

    def _generate_initramfs(self) -> None:
        spec = self.cfg.initramfs
        if spec is None:
            logger.info("No initramfs configured")
            return
        generate_initramfs(self.sysroot, spec, timeout=self.cfg.command_timeout, dry_run=self.dry_run)

    def _package(self) -> None:
        iso = package_iso(
            self.sysroot,
            self.cfg.boot_entry,
            iso_dir=self.cfg.iso_dir,
            iso_path=self.cfg.iso_path,
            timeout=self.cfg.command_timeout,
            dry_run=self.dry_run,
        )
        if not self.dry_run and not iso.is_file():
            raise PackagingError(f"ISO missing after packaging: {iso}")
        self._result.iso_path = iso
