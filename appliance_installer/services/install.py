"""Appliance install pipeline.

Turns a bare disk into a bootable appliance:

    inventory -> plan -> parted -> resolve boot -> mkfs.vfat
      -> mount { grub EFI [+ BIOS] -> grub.cfg/system.cfg -> system.img }
      -> resolve data -> mkfs.btrfs

Every stage blocks until its external tool exits and nothing is retried.
Any failure moves the installer to InstallState.FAILED and the original
exception propagates to the caller unchanged. A partially written partition
table is left as is; rolling it back is not safe.

Progress checkpoints:
    0.01 enumerate, 0.03 table written, 0.05 boot formatted, 0.07 mounted,
    0.09 bootloaders installed, 0.10 config written, 0.10-0.90 image copy,
    0.90 unmounted, 1.00 done.

Example:
    >>> from appliance_installer.services.install import install
    >>> result = install("/dev/sdb", "/run/initramfs/boot/system.img",
    ...                  on_message=print)
    >>> result.data_area
    <DataAreaStatus.PROVISIONED: 'provisioned'>
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional, Union

from appliance_installer.config import settings
from appliance_installer.domain.models import (
    DataAreaStatus,
    Disk,
    InstallResult,
    InstallState,
    PartitionPlan,
)
from appliance_installer.logging import operation_context
from appliance_installer.services.progress import (
    MessageCallback,
    ProgressCallback,
    ProgressChannel,
)
from appliance_installer.storage import bootloader
from appliance_installer.storage.commands import CommandRunner, resolve_runner
from appliance_installer.storage.devices import find_usable_disk
from appliance_installer.storage.exceptions import PartitionNotFoundError
from appliance_installer.storage.format import (
    data_label,
    format_boot_partition,
    format_data_partition,
)
from appliance_installer.storage.image import copy_system_image, validate_system_image
from appliance_installer.storage.mount import VFAT_MOUNT_OPTIONS, temp_mount
from appliance_installer.storage.partition import (
    get_partition_uuid,
    resolve_partition,
    write_partition_table,
)
from appliance_installer.storage.planner import plan_install_media, plan_partitions


PathLike = Union[str, os.PathLike]

INSTALLER_BOOT_VARS = {"systemd_unit": "installer.target"}
# Quoted on install media; GRUB strips the quotes when sourcing system.cfg
INSTALL_MEDIA_BOOT_VARS = {"systemd_unit": '"installer.target"'}


def boot_variables(text_mode: bool = False, installer: bool = False) -> dict[str, str]:
    """Boot variables for the chain-loaded system image."""
    boot_vars: dict[str, str] = {}
    if text_mode:
        boot_vars["default"] = "text"
    if installer:
        boot_vars.update(INSTALLER_BOOT_VARS)
    return boot_vars


def provision_data_partition(
    disk_path: PathLike,
    boot_partition: PathLike,
    plan: PartitionPlan,
    runner: CommandRunner,
    channel: Optional[ProgressChannel] = None,
    *,
    sys_root: PathLike = "/sys",
    dev_root: PathLike = "/dev",
) -> DataAreaStatus:
    """Format partition 2 as btrfs labelled after the boot partition UUID.

    The appliance boots without a data area, so a missing partition or an
    unreadable boot UUID only skips this step with a warning.

    Raises:
        FormatError: If mkfs.btrfs fails
    """
    channel = channel or ProgressChannel()
    if not plan.has_secondary:
        return DataAreaStatus.NOT_APPLICABLE

    channel.message("Constructing data area")
    data_partition = resolve_partition(
        disk_path, PartitionPlan.DATA_INDEX, sys_root=sys_root, dev_root=dev_root
    )
    if data_partition is None:
        channel.warning(
            "Unable to determine partition for data area. Data area won't be created"
        )
        return DataAreaStatus.SKIPPED

    boot_uuid = get_partition_uuid(boot_partition, runner)
    if boot_uuid is None:
        channel.warning(
            "Unable to get UUID of boot partition. Data area won't be created"
        )
        return DataAreaStatus.SKIPPED

    channel.message("Formatting partition for data area with BTRFS...")
    format_data_partition(str(data_partition), data_label(boot_uuid), runner)
    channel.message("Done")
    return DataAreaStatus.PROVISIONED


class Installer:
    """Single-disk, single-thread install pipeline.

    Callbacks run synchronously on the calling thread; a slow callback stalls
    the pipeline. Concurrent installs against the same disk are the caller's
    problem to prevent.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_message: Optional[MessageCallback] = None,
        *,
        temp_root: Optional[PathLike] = None,
        chunk_size: Optional[int] = None,
        sys_root: PathLike = "/sys",
        dev_root: PathLike = "/dev",
    ):
        self.runner = resolve_runner(runner)
        self.channel = ProgressChannel(on_progress, on_message)
        self.temp_root = temp_root if temp_root is not None else settings.get_setting(
            "mount_temp_root"
        )
        self.chunk_size = chunk_size or settings.get_int(
            "copy_chunk_size", settings.DEFAULT_COPY_CHUNK_SIZE
        )
        self.sys_root = sys_root
        self.dev_root = dev_root
        self.state = InstallState.IDLE

    def _advance(self, state: InstallState, fraction: Optional[float] = None) -> None:
        self.state = state
        if fraction is not None:
            self.channel.progress(fraction)

    def _resolve_boot_partition(self, disk: Disk) -> Path:
        boot_partition = resolve_partition(
            disk.path,
            PartitionPlan.BOOT_INDEX,
            sys_root=self.sys_root,
            dev_root=self.dev_root,
        )
        if boot_partition is None:
            self.channel.message("Error: Unable to determine boot partition")
            raise PartitionNotFoundError(disk.path, PartitionPlan.BOOT_INDEX)
        self._advance(InstallState.BOOT_PARTITION_RESOLVED)
        return boot_partition

    def install(
        self,
        disk_path: PathLike,
        system_image: PathLike,
        min_size: Optional[int] = None,
        boot_vars: Optional[Mapping[str, str]] = None,
    ) -> InstallResult:
        """Install system_image onto disk_path.

        Raises:
            StorageError: Any fatal failure, with the state left at FAILED
        """
        if min_size is None:
            min_size = settings.get_int("min_disk_size", settings.DEFAULT_MIN_DISK_SIZE)
        self.state = InstallState.IDLE
        self.channel.reset()
        with operation_context("install", disk=str(disk_path), image=str(system_image)):
            try:
                return self._install(disk_path, system_image, min_size, dict(boot_vars or {}))
            except Exception:
                self.state = InstallState.FAILED
                raise

    def _install(
        self,
        disk_path: PathLike,
        system_image: PathLike,
        min_size: int,
        boot_vars: dict[str, str],
    ) -> InstallResult:
        self.channel.progress(0.01)
        disk = find_usable_disk(str(disk_path), min_size, self.runner)
        validate_system_image(system_image)
        self._advance(InstallState.ENUMERATED)

        plan = plan_partitions(disk.size_bytes, disk.logical_sector_size)
        self._advance(InstallState.TABLE_PLANNED)
        if not plan.has_secondary:
            self.channel.warning("Data area won't be created due to too small disk")

        self.channel.message("Creating partitions...")
        write_partition_table(disk.path, plan, self.runner)
        self.channel.message("Creating partitions done.")
        self._advance(InstallState.TABLE_WRITTEN, 0.03)

        boot_partition = self._resolve_boot_partition(disk)

        self.channel.message("Formatting boot partition with FAT32")
        format_boot_partition(str(boot_partition), self.runner)
        self._advance(InstallState.BOOT_FORMATTED, 0.05)

        self.channel.message("Mounting boot partition...")
        with temp_mount(
            str(boot_partition),
            "vfat",
            VFAT_MOUNT_OPTIONS,
            runner=self.runner,
            temp_root=self.temp_root,
        ) as mount_path:
            self.channel.message("Done")
            self._advance(InstallState.BOOT_MOUNTED, 0.07)
            self._populate_boot_volume(mount_path, disk, plan, boot_vars, system_image)
            self.channel.message("Unmounting boot partition...")
        self.channel.message("Done")
        self._advance(InstallState.BOOT_UNMOUNTED, 0.90)

        data_area = provision_data_partition(
            disk.path,
            boot_partition,
            plan,
            self.runner,
            self.channel,
            sys_root=self.sys_root,
            dev_root=self.dev_root,
        )
        if data_area is DataAreaStatus.PROVISIONED:
            self._advance(InstallState.DATA_PARTITIONED)
        elif data_area is DataAreaStatus.SKIPPED:
            self._advance(InstallState.DATA_SKIPPED)

        self._advance(InstallState.COMPLETE, 1.0)
        return InstallResult(
            disk=disk, boot_partition=boot_partition, plan=plan, data_area=data_area
        )

    def _populate_boot_volume(
        self,
        mount_path: Path,
        disk: Disk,
        plan: PartitionPlan,
        boot_vars: Mapping[str, str],
        system_image: PathLike,
    ) -> None:
        def on_step(step: str) -> None:
            if step == "uefi":
                self._advance(InstallState.UEFI_INSTALLED)
                if plan.bios_compatible:
                    self.channel.message("Installing BIOS bootloader")
                else:
                    self.channel.message(
                        "This system will be UEFI-only as this disk cannot be treated by BIOS"
                    )
            elif step == "bios":
                self._advance(InstallState.BIOS_INSTALLED)
            elif step == "bootloaders":
                self.channel.progress(0.09)
                self.channel.message("Creating boot configuration file")
            elif step == "config":
                self._advance(InstallState.CONFIG_WRITTEN, 0.10)

        self.channel.message("Installing UEFI bootloader")
        bootloader.install_boot_content(
            mount_path,
            disk.path,
            plan.bios_compatible,
            boot_vars,
            self.runner,
            on_step=on_step,
        )

        self.channel.message("Copying system file")
        copy_system_image(
            system_image,
            mount_path / bootloader.SYSTEM_IMAGE_NAME,
            self.channel.span(0.10, 0.90),
            chunk_size=self.chunk_size,
        )
        self._advance(InstallState.IMAGE_COPIED)

    def create_install_media(
        self,
        disk_path: PathLike,
        system_image: PathLike,
        min_size: Optional[int] = None,
        label: Optional[str] = None,
    ) -> Path:
        """Write a single-partition installer medium that boots into installer.target.

        Returns the boot partition path.

        Raises:
            StorageError: Any fatal failure, with the state left at FAILED
        """
        if min_size is None:
            min_size = settings.get_int(
                "install_media_min_size", settings.DEFAULT_INSTALL_MEDIA_MIN_SIZE
            )
        label = label or settings.get_setting("install_media_label")
        self.state = InstallState.IDLE
        self.channel.reset()
        with operation_context("install-media", disk=str(disk_path), image=str(system_image)):
            try:
                return self._create_install_media(disk_path, system_image, min_size, label)
            except Exception:
                self.state = InstallState.FAILED
                raise

    def _create_install_media(
        self,
        disk_path: PathLike,
        system_image: PathLike,
        min_size: int,
        label: Optional[str],
    ) -> Path:
        self.channel.progress(0.01)
        disk = find_usable_disk(str(disk_path), min_size, self.runner)
        plan = plan_install_media(disk.size_bytes, disk.logical_sector_size)
        validate_system_image(system_image)
        self._advance(InstallState.TABLE_PLANNED)

        self.channel.message("Creating partitions...")
        write_partition_table(disk.path, plan, self.runner)
        self._advance(InstallState.TABLE_WRITTEN, 0.03)

        boot_partition = self._resolve_boot_partition(disk)
        self.channel.message("Formatting boot partition with FAT32")
        format_boot_partition(str(boot_partition), self.runner, label=label)
        self._advance(InstallState.BOOT_FORMATTED, 0.05)

        with temp_mount(
            str(boot_partition),
            "vfat",
            VFAT_MOUNT_OPTIONS,
            runner=self.runner,
            temp_root=self.temp_root,
        ) as mount_path:
            self._advance(InstallState.BOOT_MOUNTED, 0.07)
            self.channel.message("Copying system file")
            copy_system_image(
                system_image,
                mount_path / bootloader.SYSTEM_IMAGE_NAME,
                self.channel.span(0.07, 0.90),
                chunk_size=self.chunk_size,
            )
            self._advance(InstallState.IMAGE_COPIED)
            self.channel.message("Installing bootloader")
            bootloader.install_boot_content(
                mount_path,
                disk.path,
                plan.bios_compatible,
                INSTALL_MEDIA_BOOT_VARS,
                self.runner,
            )
            self._advance(InstallState.CONFIG_WRITTEN, 0.95)
        self._advance(InstallState.BOOT_UNMOUNTED)
        self._advance(InstallState.COMPLETE, 1.0)
        return boot_partition


def install(
    disk_path: PathLike,
    system_image: PathLike,
    min_size: Optional[int] = None,
    boot_vars: Optional[Mapping[str, str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_message: Optional[MessageCallback] = None,
    *,
    runner: Optional[CommandRunner] = None,
) -> InstallResult:
    """Install system_image onto disk_path; see Installer.install."""
    installer = Installer(runner, on_progress, on_message)
    return installer.install(disk_path, system_image, min_size, boot_vars)


def create_install_media(
    disk_path: PathLike,
    system_image: PathLike,
    on_progress: Optional[ProgressCallback] = None,
    on_message: Optional[MessageCallback] = None,
    *,
    runner: Optional[CommandRunner] = None,
) -> Path:
    installer = Installer(runner, on_progress, on_message)
    return installer.create_install_media(disk_path, system_image)
