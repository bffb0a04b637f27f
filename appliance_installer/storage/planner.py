"""Partition layout planning.

Pure decision functions, no I/O. Given the size and logical sector size of
a disk they decide the partition table type and partition boundaries.
"""

from __future__ import annotations

from appliance_installer.domain.models import (
    GiB,
    MiB,
    TiB,
    PartitionPlan,
    PartitionRange,
    TableKind,
)
from appliance_installer.storage.exceptions import InvalidPlanError


BIOS_MAX_DISK_SIZE = 2 * TiB
BIOS_SECTOR_SIZE = 512
SECONDARY_MIN_DISK_SIZE = 9_000_000_000
BOOT_PARTITION_START = 1 * MiB
BOOT_PARTITION_END = 8 * GiB


def _validate(size: int, logical_sector_size: int) -> None:
    if size <= 0:
        raise InvalidPlanError(size, logical_sector_size, "size must be positive")
    if logical_sector_size <= 0:
        raise InvalidPlanError(
            size, logical_sector_size, "logical sector size must be positive"
        )
    if size <= BOOT_PARTITION_START:
        raise InvalidPlanError(
            size, logical_sector_size, "disk cannot hold a boot partition"
        )


def plan_partitions(size: int, logical_sector_size: int) -> PartitionPlan:
    """Decide the layout for an appliance disk.

    Disks of 2 TiB or less with 512-byte logical sectors get an MBR table and
    stay bootable from BIOS; everything else gets GPT and boots UEFI only.
    Disks of 9 GB or more get an 8 GiB boot partition followed by a data
    partition filling the rest.

    Raises:
        InvalidPlanError: If size or logical_sector_size is not positive
    """
    _validate(size, logical_sector_size)
    bios_compatible = size <= BIOS_MAX_DISK_SIZE and logical_sector_size == BIOS_SECTOR_SIZE
    table_kind = TableKind.MSDOS if bios_compatible else TableKind.GPT

    if size >= SECONDARY_MIN_DISK_SIZE:
        boot = PartitionRange(BOOT_PARTITION_START, BOOT_PARTITION_END)
        data = PartitionRange(BOOT_PARTITION_END, size)
    else:
        boot = PartitionRange(BOOT_PARTITION_START, size)
        data = None

    return PartitionPlan(
        disk_size=size,
        table_kind=table_kind,
        bios_compatible=bios_compatible,
        boot=boot,
        data=data,
    )


def plan_install_media(size: int, logical_sector_size: int) -> PartitionPlan:
    """Single boot partition spanning the disk, for installer media.

    FAT32 caps the usable size, so disks above 2 TiB are refused. BIOS
    compatibility depends on the sector size alone.
    """
    _validate(size, logical_sector_size)
    if size > BIOS_MAX_DISK_SIZE:
        raise InvalidPlanError(size, logical_sector_size, "Disk is too large for FAT32.")
    bios_compatible = logical_sector_size == BIOS_SECTOR_SIZE
    return PartitionPlan(
        disk_size=size,
        table_kind=TableKind.MSDOS if bios_compatible else TableKind.GPT,
        bios_compatible=bios_compatible,
        boot=PartitionRange(BOOT_PARTITION_START, size),
    )
