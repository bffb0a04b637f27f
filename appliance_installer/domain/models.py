"""Domain model for appliance installation.

Type-safe objects for the disks, partition plans and install outcomes that
flow through the provisioning pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


MiB = 1024**2
GiB = 1024**3
TiB = 1024**4

BootVariables = Dict[str, str]


# ==============================================================================
# Disk Domain
# ==============================================================================


@dataclass(frozen=True)
class Disk:
    """A whole-disk block device reported by lsblk."""

    name: str  # e.g., "sda", "nvme0n1"
    size_bytes: int
    logical_sector_size: Optional[int]
    model: Optional[str] = None
    transport: Optional[str] = None  # e.g., "usb", "sata"; None for virtio
    read_only: bool = False

    @property
    def path(self) -> str:
        """Device node path (e.g., /dev/sda)."""
        return f"/dev/{self.name}"

    @classmethod
    def from_lsblk_dict(cls, device: dict[str, Any]) -> Disk:
        """Convert an lsblk record to a Disk.

        Raises:
            KeyError: If the name is missing
            ValueError: If the size cannot be converted to int
        """
        model = device.get("model")
        if model:
            model = model.strip()
        log_sec = device.get("log-sec")
        return cls(
            name=device["name"],
            size_bytes=int(device.get("size") or 0),
            logical_sector_size=log_sec if isinstance(log_sec, int) else None,
            model=model or None,
            transport=device.get("tran") or None,
            read_only=_as_bool(device.get("ro")),
        )


def _as_bool(value: Any) -> bool:
    # lsblk reports booleans in JSON mode, older versions use "0"/"1"
    if isinstance(value, str):
        return value.strip() in ("1", "true")
    return bool(value)


# ==============================================================================
# Partition Plan Domain
# ==============================================================================


class TableKind(Enum):
    MSDOS = "msdos"
    GPT = "gpt"


@dataclass(frozen=True)
class PartitionRange:
    """Byte range of a partition, half-open [start, end)."""

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PartitionPlan:
    """Layout decided for one install attempt.

    The boot partition is always index 1. The data partition, when present,
    is index 2 and runs from the end of the boot partition to the end of the
    disk.
    """

    disk_size: int
    table_kind: TableKind
    bios_compatible: bool
    boot: PartitionRange
    data: Optional[PartitionRange] = None

    BOOT_INDEX = 1
    DATA_INDEX = 2

    @property
    def has_secondary(self) -> bool:
        return self.data is not None

    @property
    def boot_flags(self) -> tuple[str, ...]:
        if self.bios_compatible:
            return ("boot", "esp")
        return ("boot",)


# ==============================================================================
# Mount / Install Domain
# ==============================================================================


@dataclass(frozen=True)
class MountHandle:
    """A temporary mount owned by the scoped mount manager."""

    device: str
    path: Path
    fs_type: str
    options: tuple[str, ...] = ()


class DataAreaStatus(Enum):
    PROVISIONED = "provisioned"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not_applicable"


class InstallState(Enum):
    IDLE = "idle"
    ENUMERATED = "enumerated"
    TABLE_PLANNED = "table_planned"
    TABLE_WRITTEN = "table_written"
    BOOT_PARTITION_RESOLVED = "boot_partition_resolved"
    BOOT_FORMATTED = "boot_formatted"
    BOOT_MOUNTED = "boot_mounted"
    UEFI_INSTALLED = "uefi_installed"
    BIOS_INSTALLED = "bios_installed"
    CONFIG_WRITTEN = "config_written"
    IMAGE_COPIED = "image_copied"
    BOOT_UNMOUNTED = "boot_unmounted"
    DATA_PARTITIONED = "data_partitioned"
    DATA_SKIPPED = "data_skipped"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InstallState.COMPLETE, InstallState.FAILED)


@dataclass(frozen=True)
class InstallResult:
    """Outcome of a successful install."""

    disk: Disk
    boot_partition: Path
    plan: PartitionPlan
    data_area: DataAreaStatus
