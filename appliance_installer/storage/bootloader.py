"""GRUB installation onto a mounted boot volume.

The boot volume carries a UEFI GRUB image and, for BIOS-compatible disks, a
legacy GRUB in the MBR gap. Both load a tiny grub.cfg that loopback-mounts
/system.img and hands control to the grub.cfg inside the image:

    insmod echo
    insmod linux
    insmod cpuid
    set BOOT_PARTITION=$root
    loopback loop /system.img
    set root=loop
    set prefix=($root)/boot/grub
    normal

Boot variables are written to /system.cfg for the chain-loaded config to
source.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping, Optional

from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.commands import CommandRunner
from appliance_installer.storage.exceptions import BootloaderError, CommandFailedError


log = LoggerFactory.for_disk()

SYSTEM_IMAGE_NAME = "system.img"
SYSTEM_CONFIG_NAME = "system.cfg"
EFI_IMAGE_PATH = Path("efi/boot/bootx64.efi")
GRUB_DIR = Path("boot/grub")

EFI_MODULES = (
    "xfs", "btrfs", "fat", "part_gpt", "part_msdos", "normal", "linux", "echo",
    "all_video", "test", "multiboot", "multiboot2", "search", "sleep", "iso9660",
    "gzio", "lvm", "chain", "configfile", "cpuid", "minicmd", "gfxterm_background",
    "png", "font", "terminal", "squash4", "serial", "loopback", "videoinfo",
    "videotest", "blocklist", "probe", "efi_gop", "efi_uga",
)

BIOS_MODULES = (
    "xfs", "btrfs", "fat", "part_msdos", "normal", "linux", "linux16", "echo",
    "all_video", "test", "multiboot", "multiboot2", "search", "sleep", "gzio",
    "lvm", "chain", "configfile", "cpuid", "minicmd", "font", "terminal",
    "serial", "squash4", "loopback", "videoinfo", "videotest", "blocklist",
    "probe", "gfxterm_background", "png", "keystatus",
)

GRUB_CFG = (
    "insmod echo\n"
    "insmod linux\n"
    "insmod cpuid\n"
    "set BOOT_PARTITION=$root\n"
    f"loopback loop /{SYSTEM_IMAGE_NAME}\n"
    "set root=loop\n"
    "set prefix=($root)/boot/grub\n"
    "normal\n"
)


def build_uefi_image(mount_path: Path, runner: CommandRunner) -> Path:
    """Build bootx64.efi at the removable-media fallback path."""
    output = mount_path / EFI_IMAGE_PATH
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise BootloaderError(f"Unable to create {output.parent}: {error}") from error
    runner.run(
        [
            "grub-mkimage",
            "-p", "/boot/grub",
            "-o", str(output),
            "-O", "x86_64-efi",
            *EFI_MODULES,
        ]
    )
    return output


def install_bios_loader(mount_path: Path, disk_path: str, runner: CommandRunner) -> None:
    runner.run(
        [
            "grub-install",
            "--target=i386-pc",
            "--recheck",
            f"--boot-directory={mount_path / 'boot'}",
            f"--modules={' '.join(BIOS_MODULES)}",
            disk_path,
        ]
    )


def write_boot_config(mount_path: Path) -> Path:
    grub_dir = mount_path / GRUB_DIR
    grub_cfg = grub_dir / "grub.cfg"
    try:
        grub_dir.mkdir(parents=True, exist_ok=True)
        grub_cfg.write_text(GRUB_CFG, encoding="utf-8")
    except OSError as error:
        raise BootloaderError(f"Unable to write {grub_cfg}: {error}") from error
    return grub_cfg


def render_boot_variables(boot_vars: Mapping[str, str]) -> str:
    return "".join(f"set {key}={value}\n" for key, value in boot_vars.items())


def write_boot_variables(mount_path: Path, boot_vars: Mapping[str, str]) -> Optional[Path]:
    """Write boot_vars in insertion order; nothing is written when empty."""
    if not boot_vars:
        return None
    system_cfg = mount_path / SYSTEM_CONFIG_NAME
    try:
        system_cfg.write_text(render_boot_variables(boot_vars), encoding="utf-8")
    except OSError as error:
        raise BootloaderError(f"Unable to write {system_cfg}: {error}") from error
    return system_cfg


def install_boot_content(
    mount_path: Path,
    disk_path: str,
    bios_compatible: bool,
    boot_vars: Mapping[str, str],
    runner: CommandRunner,
    on_step: Optional[Callable[[str], None]] = None,
) -> None:
    """Install UEFI (and optionally BIOS) GRUB plus the chain-load config.

    on_step, when given, is called with "uefi", "bios", "bootloaders" and
    "config" as each step completes.

    Raises:
        BootloaderError: If any GRUB tool fails or a config file cannot be written
    """
    try:
        build_uefi_image(mount_path, runner)
        log.info("UEFI bootloader installed")
        if on_step:
            on_step("uefi")
        if bios_compatible:
            install_bios_loader(mount_path, disk_path, runner)
            log.info(f"BIOS bootloader installed on {disk_path}")
            if on_step:
                on_step("bios")
    except CommandFailedError as error:
        raise BootloaderError(str(error)) from error
    if on_step:
        on_step("bootloaders")

    write_boot_config(mount_path)
    write_boot_variables(mount_path, boot_vars)
    if on_step:
        on_step("config")
