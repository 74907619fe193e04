from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml

from seedlinux import preconditions
from seedlinux.build_config import BuildConfig
from seedlinux.lib import command

REPO_ROOT = Path(__file__).resolve().parents[1]

LUA_MAKEFILE = "INSTALL_TOP= /usr/local\nINSTALL_MAN= $(INSTALL_TOP)/man/man1\n"

# Files each fake build drops into its install root, keyed by source directory.
INSTALL_OUTPUTS: Dict[str, List[str]] = {
    "linux-6.6.72": ["lib/modules/6.6.72/modules.dep"],
    "systemd-257.2": ["usr/lib/systemd/systemd", "usr/lib/systemd/boot/efi/systemd-bootx64.efi"],
    "mkinitcpio-v39.2": ["usr/bin/mkinitcpio"],
    "binutils-2.41": ["usr/bin/ld"],
    "glibc-2.39": ["usr/lib/libc.so.6"],
    "coreutils-9.4": ["usr/bin/ls"],
    "bash-5.2.21": ["usr/bin/bash"],
    "lua-5.4.7": ["bin/lua"],
}

# Files a fake (non-install) make leaves in the source tree.
BUILD_OUTPUTS: Dict[str, List[str]] = {
    "linux-6.6.72": ["arch/x86_64/boot/bzImage"],
}

INSTALL_VARS = ("DESTDIR=", "INSTALL_MOD_PATH=", "INSTALL_TOP=")


class FakeTools:
    """Stands in for subprocess.run and emulates the external build tools."""

    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.archive_dirs: Dict[str, str] = {}
        self.missing_libraries: set = set()
        self.fail: Optional[Callable[[List[str], Optional[str]], bool]] = None
        self.make_output = ""
        self.isos_made = 0

    def __call__(
        self,
        argv,
        input=None,
        text=True,
        encoding=None,
        errors=None,
        stdout=None,
        stderr=None,
        cwd=None,
        env=None,
        timeout=None,
    ):
        argv = list(argv)
        self.calls.append({"argv": argv, "cwd": cwd, "env": dict(env or {})})
        if self.fail is not None and self.fail(argv, cwd):
            return subprocess.CompletedProcess(argv, 2, "", f"{argv[0]}: simulated failure\n")

        if Path(argv[0]).name == "pacman" and argv[-1] in self.missing_libraries:
            return subprocess.CompletedProcess(argv, 1, "", f"error: package '{argv[-1]}' was not found\n")

        handler = getattr(self, "_" + Path(argv[0]).name.replace("-", "_").replace(".", "_"), None)
        out = handler(argv, cwd, env or {}) if handler else ""
        return subprocess.CompletedProcess(argv, 0, out or "", "")

    # Bookkeeping helpers

    def tool_calls(self, tool: str) -> List[List[str]]:
        return [c["argv"] for c in self.calls if Path(c["argv"][0]).name == tool]

    @property
    def downloads(self) -> int:
        return len(self.tool_calls("wget"))

    @property
    def extractions(self) -> int:
        return len(self.tool_calls("tar"))

    def register(self, cfg: BuildConfig) -> None:
        for c in cfg.components:
            if c.has_sources:
                self.archive_dirs[str(c.archive)] = str(c.source_dir)

    # Tools

    def _wget(self, argv, cwd, env):
        out = Path(argv[argv.index("-O") + 1])
        out.write_bytes(b"archive " + argv[-1].encode())

    def _tar(self, argv, cwd, env):
        archive = Path(argv[2])
        dest = Path(argv[argv.index("-C") + 1])
        src = dest / self.archive_dirs.get(archive.name, archive.name.split(".tar")[0])
        src.mkdir(parents=True, exist_ok=True)
        (src / "configure").write_text("#!/bin/sh\n", encoding="utf-8")
        (src / "Makefile").write_text(LUA_MAKEFILE, encoding="utf-8")

    def _source_name(self, cwd: Optional[str]) -> str:
        p = Path(cwd or ".")
        return p.parent.name if p.name == "build" else p.name

    def _install(self, root: str, cwd: Optional[str]) -> None:
        for rel in INSTALL_OUTPUTS.get(self._source_name(cwd), []):
            f = Path(root) / rel
            f.parent.mkdir(parents=True, exist_ok=True)
            f.write_text("installed\n", encoding="utf-8")

    def _make(self, argv, cwd, env):
        roots = [a.split("=", 1)[1] for a in argv if a.startswith(INSTALL_VARS)]
        if roots:
            self._install(roots[0], cwd)
            return ""
        for rel in BUILD_OUTPUTS.get(self._source_name(cwd), []):
            f = Path(cwd) / rel
            f.parent.mkdir(parents=True, exist_ok=True)
            f.write_text("built\n", encoding="utf-8")
        return self.make_output

    def _configure(self, argv, cwd, env):
        return ""

    def _meson(self, argv, cwd, env):
        (Path(cwd) / argv[2]).mkdir(parents=True, exist_ok=True)

    def _ninja(self, argv, cwd, env):
        if "install" in argv:
            self._install(env["DESTDIR"], cwd)

    def _mkinitcpio(self, argv, cwd, env):
        image = Path(argv[argv.index("-g") + 1])
        image.parent.mkdir(parents=True, exist_ok=True)
        image.write_bytes(b"initramfs")

    def _grub_mkrescue(self, argv, cwd, env):
        self.isos_made += 1
        iso = Path(argv[argv.index("-o") + 1])
        iso.write_bytes(b"ISO run %d" % self.isos_made)

    def _pacman(self, argv, cwd, env):
        return None

    def _python3(self, argv, cwd, env):
        return None


@pytest.fixture
def fake_tools(monkeypatch):
    tools = FakeTools()
    monkeypatch.setattr(command.subprocess, "run", tools)
    monkeypatch.setattr(preconditions, "which", lambda tool: True)
    return tools


def shipped_raw() -> dict:
    return yaml.safe_load((REPO_ROOT / "build_config.yaml").read_text(encoding="utf-8"))


@pytest.fixture
def build_cfg(tmp_path, fake_tools) -> BuildConfig:
    """The shipped component list, with every path under tmp_path."""

    (tmp_path / ".config").write_text("CONFIG_EXT4_FS=y\n", encoding="utf-8")
    cfg = BuildConfig(raw=shipped_raw(), base_dir=str(tmp_path)).with_build_options(jobs=2)
    fake_tools.register(cfg)
    return cfg
