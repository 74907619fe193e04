from pathlib import Path

import pytest

from seedlinux.build_config import BuildConfig, load_build_config
from seedlinux.components import (
    AutotoolsRecipe,
    CopyRecipe,
    MakefileRecipe,
    MesonRecipe,
    component_from_mapping,
    components_from_list,
)

from conftest import REPO_ROOT


def test_shipped_config_parses():
    cfg = load_build_config(str(REPO_ROOT / "build_config.yaml"))

    names = [c.name for c in cfg.components]
    assert names == [
        "linux",
        "systemd",
        "systemd-boot",
        "mkinitcpio",
        "binutils",
        "glibc",
        "coreutils",
        "bash",
        "lua",
        "boot-scripts",
    ]
    assert cfg.iso_path == REPO_ROOT / "output" / "seedlinux.iso"
    assert cfg.cache_dir == REPO_ROOT / "sources-cache"
    assert cfg.sysroot_dir == REPO_ROOT / "build" / "sysroot"
    assert cfg.initramfs is not None
    assert cfg.initramfs.kernel_version == "6.6.72"
    assert "/bin/sh" in cfg.critical_paths


def test_versions_expand_into_url_archive_and_source_dir():
    cfg = load_build_config(str(REPO_ROOT / "build_config.yaml"))
    by_name = {c.name: c for c in cfg.components}

    linux = by_name["linux"]
    assert linux.url == "https://cdn.kernel.org/pub/linux/kernel/v6.x/linux-6.6.72.tar.xz"
    assert linux.archive == "linux-6.6.72.tar.xz"
    assert linux.source_dir == "linux-6.6.72"

    systemd = by_name["systemd"]
    assert systemd.url.endswith("/v257.2.tar.gz")
    assert systemd.archive == "systemd-257.2.tar.gz"

    assert by_name["mkinitcpio"].source_dir == "mkinitcpio-v39.2"
    assert not by_name["boot-scripts"].has_sources


def test_recipe_kinds_dispatch_to_variants():
    cfg = load_build_config(str(REPO_ROOT / "build_config.yaml"))
    kinds = {c.name: c.recipe for c in cfg.components}

    assert isinstance(kinds["linux"], MakefileRecipe)
    assert kinds["linux"].config_file and kinds["linux"].filter_log
    assert dict(kinds["linux"].install_vars) == {"INSTALL_MOD_PATH": "{sysroot}"}
    assert isinstance(kinds["systemd"], MesonRecipe)
    assert isinstance(kinds["glibc"], AutotoolsRecipe) and kinds["glibc"].out_of_tree
    assert isinstance(kinds["boot-scripts"], CopyRecipe)
    assert dict(kinds["boot-scripts"].modes)["etc/runit/1"] == 0o755


def test_unknown_recipe_kind_rejected():
    with pytest.raises(ValueError, match="Unknown recipe kind"):
        component_from_mapping({"name": "x", "version": "1", "recipe": {"kind": "cmake"}})


def test_duplicate_component_rejected():
    item = {"name": "x", "version": "1", "url": "https://example.org/x-1.tar.gz", "recipe": {"kind": "autotools"}}
    with pytest.raises(ValueError, match="Duplicate"):
        components_from_list([item, dict(item)])


def test_quoted_modes_are_octal():
    c = component_from_mapping(
        {"name": "x", "version": "1", "recipe": {"kind": "copy", "modes": {"etc/x": "0700"}}}
    )
    assert dict(c.recipe.modes) == {"etc/x": 0o700}


def test_load_rejects_non_yaml(tmp_path):
    p = tmp_path / "build_config.json"
    p.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_build_config(str(p))


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_build_config(str(tmp_path / "nope.yaml"))


def test_relative_paths_resolve_against_config_dir(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("paths:\n  output_dir: out\noutputs:\n  iso_name: test.iso\n", encoding="utf-8")
    cfg = load_build_config(str(p))
    assert cfg.iso_path == tmp_path.resolve() / "out" / "test.iso"
    assert cfg.components == ()
    assert cfg.initramfs is None


def test_build_options_override():
    cfg = BuildConfig(raw={"build": {"jobs": 3}}, base_dir="/x")
    assert cfg.jobs == 3
    assert cfg.command_timeout is None

    cfg2 = cfg.with_build_options(jobs=None, command_timeout=60)
    assert cfg2.jobs == 3
    assert cfg2.command_timeout == 60.0
    assert cfg.command_timeout is None
    assert Path(cfg2.base_dir) == Path("/x")
