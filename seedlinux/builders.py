from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence

from .build_config import BuildConfig
from .components import AutotoolsRecipe, Component, CopyRecipe, MakefileRecipe, MesonRecipe
from .errors import ComponentBuildError
from .lib.command import CmdResult, CommandError, run_cmd
from .lib.tree import copy_tree, remove_tree
from .sources import SourceStage
from .sysroot import StagingRoot

logger = logging.getLogger(__name__)

LOG_MARKERS = re.compile(r"error|warning", re.IGNORECASE)
MAX_FILTERED_LINES = 200


@dataclass(frozen=True)
class BuildCtx:
    cfg: BuildConfig
    sysroot: StagingRoot
    stage: SourceStage
    dry_run: bool = False

    @property
    def jobs_flag(self) -> str:
        return f"-j{self.cfg.jobs}"


def _run(
    component: Component,
    ctx: BuildCtx,
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
) -> CmdResult:
    try:
        return run_cmd(
            argv,
            cwd=str(cwd),
            env=env,
            check=check,
            timeout=ctx.cfg.command_timeout,
            dry_run=ctx.dry_run,
        )
    except CommandError as e:
        raise ComponentBuildError(str(component), str(e), tool=e.tool) from e


def _fresh_dir(path: Path, ctx: BuildCtx) -> None:
    remove_tree(str(path), dry_run=ctx.dry_run)
    if not ctx.dry_run:
        path.mkdir(parents=True)


def _copy_into_sysroot(component: Component, ctx: BuildCtx, src_root: Path, pairs) -> None:
    for src_rel, dst_rel in pairs:
        src = src_root / src_rel
        dst = ctx.sysroot.path(dst_rel)
        if ctx.dry_run:
            logger.info("Would copy %s -> %s", src, dst)
            continue
        if not src.exists():
            raise ComponentBuildError(str(component), f"file to install not found: {src}")
        if src.is_dir():
            copy_tree(str(src), str(dst))
            continue
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)


def _apply_symlinks(ctx: BuildCtx, links) -> None:
    for rel, target in links:
        ctx.sysroot.symlink(rel, target, dry_run=ctx.dry_run)


def filter_build_log(text: str) -> list[str]:
    """Lines that mention errors or warnings. Diagnostic only."""

    return [line for line in text.splitlines() if LOG_MARKERS.search(line)]


def build_autotools(component: Component, recipe: AutotoolsRecipe, ctx: BuildCtx) -> None:
    src = ctx.stage.source_path(component)
    if recipe.out_of_tree:
        workdir = src / "build"
        _fresh_dir(workdir, ctx)
        configure = "../configure"
    else:
        workdir = src
        configure = "./configure"

    _run(component, ctx, [configure, "--prefix=/usr", *recipe.configure_flags], cwd=workdir)
    _run(component, ctx, ["make", ctx.jobs_flag], cwd=workdir)
    _run(component, ctx, ["make", f"{recipe.install_var}={ctx.sysroot.root}", "install"], cwd=workdir)


def build_meson(component: Component, recipe: MesonRecipe, ctx: BuildCtx) -> None:
    src = ctx.stage.source_path(component)
    # meson refuses to set up over a previous build dir from reused sources.
    remove_tree(str(src / recipe.build_dir), dry_run=ctx.dry_run)

    _run(
        component,
        ctx,
        [
            "meson",
            "setup",
            recipe.build_dir,
            "--prefix=/usr",
            "--sysconfdir=/etc",
            "--localstatedir=/var",
            *recipe.options,
        ],
        cwd=src,
    )
    _run(component, ctx, ["ninja", "-C", recipe.build_dir, ctx.jobs_flag], cwd=src)
    _run(
        component,
        ctx,
        ["ninja", "-C", recipe.build_dir, "install"],
        cwd=src,
        env={"DESTDIR": str(ctx.sysroot.root)},
    )


def _apply_substitutions(component: Component, recipe: MakefileRecipe, src: Path, ctx: BuildCtx) -> None:
    for sub in recipe.substitutions:
        p = src / sub.path
        if ctx.dry_run:
            logger.info("Would patch %s: %r -> %r", p, sub.old, sub.new)
            continue
        if not p.is_file():
            raise ComponentBuildError(str(component), f"file to patch not found: {p}")
        text = p.read_text(encoding="utf-8")
        if sub.old in text:
            p.write_text(text.replace(sub.old, sub.new), encoding="utf-8")
        elif sub.new not in text:
            raise ComponentBuildError(str(component), f"patch pattern {sub.old!r} not found in {p}")


def build_makefile(component: Component, recipe: MakefileRecipe, ctx: BuildCtx) -> None:
    src = ctx.stage.source_path(component)
    sysroot = str(ctx.sysroot.root)

    _apply_substitutions(component, recipe, src, ctx)

    if recipe.config_file:
        logger.info("Using kernel config %s", ctx.cfg.kernel_config)
        if not ctx.dry_run:
            shutil.copy2(ctx.cfg.kernel_config, src / ".config")

    argv = ["make", *recipe.make_flags, ctx.jobs_flag, *recipe.build_targets]
    if recipe.filter_log:
        r = _run(component, ctx, argv, cwd=src, check=False)
        lines = filter_build_log(r.stdout + "\n" + r.stderr)
        for line in lines[:MAX_FILTERED_LINES]:
            logger.warning("[%s] %s", component.name, line)
        if len(lines) > MAX_FILTERED_LINES:
            logger.warning("[%s] ... %d more matching lines", component.name, len(lines) - MAX_FILTERED_LINES)
        if r.returncode != 0:
            raise ComponentBuildError(str(component), f"make exited with status {r.returncode}", tool="make")
    else:
        _run(component, ctx, argv, cwd=src)

    install_vars = [f"{k}={v.format(sysroot=sysroot)}" for k, v in recipe.install_vars]
    if recipe.install_targets:
        _run(component, ctx, ["make", *install_vars, *recipe.install_targets], cwd=src)

    _copy_into_sysroot(component, ctx, src, recipe.copy_files)


def build_copy(component: Component, recipe: CopyRecipe, ctx: BuildCtx) -> None:
    # Without sources of its own, a copy recipe rearranges files already in the sysroot.
    src_root = ctx.stage.source_path(component) if component.has_sources else ctx.sysroot.root
    _copy_into_sysroot(component, ctx, src_root, recipe.copy_files)

    modes = dict(recipe.modes)
    for rel, contents in recipe.files:
        ctx.sysroot.write_file(rel, contents, mode=modes.pop(rel, None), dry_run=ctx.dry_run)
    for rel, mode in modes.items():
        if ctx.dry_run:
            continue
        p = ctx.sysroot.path(rel)
        if not p.exists():
            raise ComponentBuildError(str(component), f"cannot set mode on missing {p}")
        p.chmod(mode)


BUILDERS: Dict[str, Callable[..., None]] = {
    "autotools": build_autotools,
    "meson": build_meson,
    "makefile": build_makefile,
    "copy": build_copy,
}


def build_component(component: Component, ctx: BuildCtx) -> None:
    """Install one component into the sysroot; raises ComponentBuildError on failure."""

    builder = BUILDERS.get(component.recipe.kind)
    if builder is None:
        raise ComponentBuildError(str(component), f"no builder for recipe kind {component.recipe.kind!r}")

    logger.info("Building %s (%s)", component, component.recipe.kind)
    builder(component, component.recipe, ctx)
    _apply_symlinks(ctx, component.recipe.symlinks)
    logger.info("Installed %s", component)
