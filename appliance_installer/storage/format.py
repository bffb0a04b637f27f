"""Filesystem creation for boot and data partitions.

Boot partitions are FAT32 so UEFI firmware can read them. Data partitions
are btrfs, labelled "data-<boot UUID>" so the appliance finds its data area
even if partitions are renumbered.
"""

from __future__ import annotations

from typing import Optional

from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.commands import CommandRunner
from appliance_installer.storage.exceptions import CommandFailedError, FormatError


log = LoggerFactory.for_disk()

DATA_LABEL_PREFIX = "data-"
# mkfs.vfat volume labels are at most 11 characters
VFAT_LABEL_MAX = 11


def data_label(boot_uuid: str) -> str:
    return f"{DATA_LABEL_PREFIX}{boot_uuid}"


def format_boot_partition(
    partition_path: str, runner: CommandRunner, label: Optional[str] = None
) -> None:
    """Create a FAT32 filesystem on partition_path.

    Raises:
        FormatError: If the label is invalid or mkfs.vfat fails
    """
    command = ["mkfs.vfat", "-F", "32"]
    if label:
        if len(label) > VFAT_LABEL_MAX:
            raise FormatError(
                f"FAT label {label!r} longer than {VFAT_LABEL_MAX} characters",
                device=partition_path,
            )
        command.extend(["-n", label])
    command.append(partition_path)
    log.info(f"Formatting {partition_path} as FAT32")
    try:
        runner.run(command)
    except CommandFailedError as error:
        raise FormatError(str(error), device=partition_path) from error


def format_data_partition(partition_path: str, label: str, runner: CommandRunner) -> None:
    """Create a btrfs filesystem on partition_path, overwriting anything there.

    Raises:
        FormatError: If mkfs.btrfs fails
    """
    log.info(f"Formatting {partition_path} as btrfs with label {label}")
    try:
        runner.run(["mkfs.btrfs", "-q", "-L", label, "-f", partition_path])
    except CommandFailedError as error:
        raise FormatError(str(error), device=partition_path) from error
