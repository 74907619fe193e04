import pytest

from seedlinux.build_config import BootEntry, InitramfsSpec
from seedlinux.errors import ComponentBuildError, PackagingError, StagingIntegrityError
from seedlinux.initramfs import generate_initramfs, render_mkinitcpio_conf
from seedlinux.packaging import package_iso, render_grub_cfg
from seedlinux.sysroot import StagingRoot
from seedlinux.validate import validate_critical_paths


@pytest.fixture
def sysroot(tmp_path):
    root = StagingRoot(tmp_path / "sysroot", ("bin", "boot", "etc", "lib", "usr", "tmp"))
    root.reset()
    return root


def test_validator_passes_when_all_present(sysroot):
    sysroot.write_file("boot/vmlinuz", "k")
    sysroot.symlink("bin/sh", "/usr/bin/bash")

    validate_critical_paths(sysroot, ["/boot/vmlinuz", "/bin/sh", "/etc"])


def test_validator_reports_exactly_the_missing_path(sysroot):
    sysroot.write_file("boot/vmlinuz", "k")

    with pytest.raises(StagingIntegrityError) as ei:
        validate_critical_paths(sysroot, ["/boot/vmlinuz", "/usr/bin/bash", "/sbin/init"])

    assert ei.value.missing_path == "/usr/bin/bash"
    assert ei.value.stage == "validating"
    assert "/usr/bin/bash" in ei.value.diagnostic()


def test_render_mkinitcpio_conf():
    spec = InitramfsSpec(kernel_version="6.6.72", hooks=("base", "udev"))
    assert render_mkinitcpio_conf(spec) == "MODULES=(ext4)\nBINARIES=()\nFILES=()\nHOOKS=(base udev)\n"


def test_initramfs_requires_kernel_modules(sysroot, fake_tools):
    with pytest.raises(StagingIntegrityError) as ei:
        generate_initramfs(sysroot, InitramfsSpec(kernel_version="6.6.72"))

    assert ei.value.missing_path == "/lib/modules/6.6.72"
    assert ei.value.stage == "generating_initramfs"
    assert fake_tools.tool_calls("mkinitcpio") == []


def test_initramfs_generated(sysroot, fake_tools):
    (sysroot.path("lib/modules/6.6.72")).mkdir(parents=True)

    image = generate_initramfs(sysroot, InitramfsSpec(kernel_version="6.6.72"))

    assert image == sysroot.path("boot/initramfs.img")
    assert image.is_file()
    (argv,) = fake_tools.tool_calls("mkinitcpio")
    assert argv[1:3] == ["-k", "6.6.72"]
    assert argv[argv.index("-r") + 1] == str(sysroot.root)
    assert sysroot.path("etc/mkinitcpio.conf").is_file()


def test_initramfs_tool_failure(sysroot, fake_tools):
    (sysroot.path("lib/modules/6.6.72")).mkdir(parents=True)
    fake_tools.fail = lambda argv, cwd: argv[0] == "mkinitcpio"

    with pytest.raises(ComponentBuildError) as ei:
        generate_initramfs(sysroot, InitramfsSpec(kernel_version="6.6.72"))
    assert ei.value.stage == "generating_initramfs"


def test_render_grub_cfg():
    cfg = render_grub_cfg(BootEntry())
    assert 'menuentry "Seed Linux" {' in cfg
    assert "    linux /boot/vmlinuz init=/sbin/init root=/dev/ram0 rw initrd=/boot/initramfs.img\n" in cfg
    assert "    initrd /boot/initramfs.img\n" in cfg
    assert cfg.startswith("set timeout=5\nset default=0\n")


def test_package_mirrors_sysroot_and_masters_iso(tmp_path, sysroot, fake_tools):
    sysroot.write_file("boot/vmlinuz", "k")
    sysroot.symlink("bin/sh", "/usr/bin/bash")
    iso_dir = tmp_path / "iso"
    (iso_dir / "stale").mkdir(parents=True)

    iso = package_iso(sysroot, BootEntry(), iso_dir=iso_dir, iso_path=tmp_path / "out" / "seed.iso")

    assert iso.is_file()
    assert (iso_dir / "boot" / "vmlinuz").read_text(encoding="utf-8") == "k"
    assert (iso_dir / "bin" / "sh").is_symlink()
    assert not (iso_dir / "stale").exists()
    assert "menuentry" in (iso_dir / "boot" / "grub" / "grub.cfg").read_text(encoding="utf-8")
    assert not sysroot.path("boot/grub/grub.cfg").exists()
    sums = (tmp_path / "out" / "SHA256SUMS").read_text(encoding="utf-8")
    assert sums.endswith("  seed.iso\n")
    assert fake_tools.tool_calls("grub-mkrescue") == [["grub-mkrescue", "-o", str(iso), str(iso_dir)]]


def test_package_failure_keeps_mirror(tmp_path, sysroot, fake_tools):
    sysroot.write_file("boot/vmlinuz", "k")
    fake_tools.fail = lambda argv, cwd: argv[0] == "grub-mkrescue"

    with pytest.raises(PackagingError) as ei:
        package_iso(sysroot, BootEntry(), iso_dir=tmp_path / "iso", iso_path=tmp_path / "out" / "seed.iso")

    assert ei.value.tool == "grub-mkrescue"
    assert (tmp_path / "iso" / "boot" / "vmlinuz").exists()
    assert not (tmp_path / "out" / "seed.iso").exists()
