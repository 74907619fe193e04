from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .components import Component, components_from_list

DEFAULT_SKELETON = (
    "bin",
    "sbin",
    "lib",
    "lib64",
    "usr",
    "etc",
    "var",
    "boot",
    "proc",
    "sys",
    "dev",
    "run",
    "tmp",
    "etc/sv",
    "etc/runit",
)

DEFAULT_REQUIRED_TOOLS = (
    "wget",
    "tar",
    "gcc",
    "make",
    "bc",
    "meson",
    "ninja",
    "grub-mkrescue",
    "xorriso",
    "mtools",
)


@dataclass(frozen=True)
class InitramfsSpec:
    kernel_version: str
    image: str = "boot/initramfs.img"
    config: str = "etc/mkinitcpio.conf"
    modules: Tuple[str, ...] = ("ext4",)
    binaries: Tuple[str, ...] = ()
    files: Tuple[str, ...] = ()
    hooks: Tuple[str, ...] = ("base", "udev", "autodetect", "modconf", "block", "filesystems", "keyboard")


@dataclass(frozen=True)
class BootEntry:
    title: str = "Seed Linux"
    kernel: str = "/boot/vmlinuz"
    initramfs: str = "/boot/initramfs.img"
    cmdline: str = "init=/sbin/init root=/dev/ram0 rw"
    timeout: int = 5
    default: int = 0


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any]
    base_dir: str = "."

    def _path(self, section: str, key: str, default: str) -> Path:
        value = ((self.raw.get(section) or {}).get(key)) or default
        p = Path(str(value))
        return p if p.is_absolute() else Path(self.base_dir) / p

    @property
    def project_dir(self) -> Path:
        return Path(self.base_dir)

    @property
    def cache_dir(self) -> Path:
        return self._path("paths", "cache_dir", "sources-cache")

    @property
    def build_dir(self) -> Path:
        return self._path("paths", "build_dir", "build")

    @property
    def sources_dir(self) -> Path:
        return self.build_dir / "sources"

    @property
    def sysroot_dir(self) -> Path:
        return self.build_dir / "sysroot"

    @property
    def iso_dir(self) -> Path:
        return self.build_dir / "iso"

    @property
    def output_dir(self) -> Path:
        return self._path("paths", "output_dir", "output")

    @property
    def iso_path(self) -> Path:
        name = str(((self.raw.get("outputs") or {}).get("iso_name")) or "seedlinux.iso")
        return self.output_dir / name

    @property
    def state_path(self) -> Path:
        return self.build_dir / "build_state.json"

    @property
    def log_path(self) -> Path:
        if (self.raw.get("paths") or {}).get("log_file"):
            return self._path("paths", "log_file", "")
        return self.build_dir / "seedlinux-build.log"

    @property
    def kernel_config(self) -> Path:
        return self._path("paths", "kernel_config", ".config")

    @property
    def jobs(self) -> int:
        jobs = (self.raw.get("build") or {}).get("jobs")
        return int(jobs) if jobs else (os.cpu_count() or 1)

    @property
    def command_timeout(self) -> Optional[float]:
        t = (self.raw.get("build") or {}).get("command_timeout")
        return float(t) if t else None

    @property
    def required_tools(self) -> List[str]:
        pre = self.raw.get("preconditions") or {}
        return list(pre.get("tools") or DEFAULT_REQUIRED_TOOLS)

    @property
    def required_libraries(self) -> List[str]:
        return list((self.raw.get("preconditions") or {}).get("libraries") or [])

    @property
    def required_python_modules(self) -> List[str]:
        return list((self.raw.get("preconditions") or {}).get("python_modules") or [])

    @property
    def library_query(self) -> List[str]:
        return list((self.raw.get("preconditions") or {}).get("library_query") or ["pacman", "-Q"])

    @property
    def skeleton(self) -> Tuple[str, ...]:
        return tuple((self.raw.get("sysroot") or {}).get("skeleton") or DEFAULT_SKELETON)

    @property
    def sticky_dirs(self) -> Tuple[str, ...]:
        return tuple((self.raw.get("sysroot") or {}).get("sticky_dirs") or ("tmp",))

    @property
    def components(self) -> Tuple[Component, ...]:
        return components_from_list(self.raw.get("components"))

    @property
    def critical_paths(self) -> Tuple[str, ...]:
        return tuple(str(p) for p in (self.raw.get("critical_paths") or []))

    @property
    def initramfs(self) -> Optional[InitramfsSpec]:
        data = self.raw.get("initramfs")
        if not data:
            return None
        kernel_version = data.get("kernel_version") or self._component_version("linux")
        if not kernel_version:
            raise ValueError("initramfs.kernel_version missing and no 'linux' component declared")
        defaults = InitramfsSpec(kernel_version=str(kernel_version))
        return InitramfsSpec(
            kernel_version=str(kernel_version),
            image=str(data.get("image") or defaults.image),
            config=str(data.get("config") or defaults.config),
            modules=tuple(data.get("modules", defaults.modules)),
            binaries=tuple(data.get("binaries", defaults.binaries)),
            files=tuple(data.get("files", defaults.files)),
            hooks=tuple(data.get("hooks", defaults.hooks)),
        )

    @property
    def boot_entry(self) -> BootEntry:
        data = self.raw.get("boot") or {}
        defaults = BootEntry()
        return BootEntry(
            title=str(data.get("title") or defaults.title),
            kernel=str(data.get("kernel") or defaults.kernel),
            initramfs=str(data.get("initramfs") or defaults.initramfs),
            cmdline=str(data.get("cmdline") or defaults.cmdline),
            timeout=int(data.get("timeout", defaults.timeout)),
            default=int(data.get("default", defaults.default)),
        )

    def with_build_options(self, **values: Any) -> "BuildConfig":
        """Return a copy with keys of the `build` section overridden (None values are ignored)."""
        raw = dict(self.raw)
        build = dict(raw.get("build") or {})
        build.update({k: v for k, v in values.items() if v is not None})
        raw["build"] = build
        return BuildConfig(raw=raw, base_dir=self.base_dir)

    def _component_version(self, name: str) -> Optional[str]:
        for c in self.components:
            if c.name == name:
                return c.version
        return None


def load_build_config(path: str) -> BuildConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("build_config.yaml must contain a mapping/object")

    cfg = BuildConfig(raw=raw, base_dir=str(p.resolve().parent))
    # Parse eagerly so bad component declarations fail before any stage runs.
    _ = (cfg.components, cfg.initramfs)
    return cfg
