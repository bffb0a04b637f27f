"""Partition table writing and partition resolution.

Partition device names differ between device classes (sda1, vda1,
nvme0n1p1, mmcblk0p1), so partitions are located through the kernel's sysfs
topology instead of by guessing a name pattern:

    /sys/dev/block/<maj>:<min>/<child>/partition   partition number
    /sys/dev/block/<maj>:<min>/<child>/dev         "<maj>:<min>" of the child
    /dev/block/<maj>:<min>                         symlink to the device node
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Optional, Union

from appliance_installer.domain.models import MiB, PartitionPlan
from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.commands import CommandRunner
from appliance_installer.storage.exceptions import (
    CommandFailedError,
    NotABlockDeviceError,
)


log = LoggerFactory.for_disk()

PathLike = Union[str, os.PathLike]

BOOT_FS_HINT = "fat32"
DATA_FS_HINT = "btrfs"


def _parted_position(offset: int, disk_size: int) -> str:
    if offset >= disk_size:
        return "100%"
    if offset % MiB == 0:
        return f"{offset // MiB}MiB"
    return f"{offset}B"


def parted_script(plan: PartitionPlan) -> list[str]:
    """Render the plan as parted --script tokens."""
    script = ["mklabel", plan.table_kind.value]
    script += [
        "mkpart",
        "primary",
        BOOT_FS_HINT,
        _parted_position(plan.boot.start, plan.disk_size),
        _parted_position(plan.boot.end, plan.disk_size),
    ]
    if plan.data is not None:
        script += [
            "mkpart",
            "primary",
            DATA_FS_HINT,
            _parted_position(plan.data.start, plan.disk_size),
            _parted_position(plan.data.end, plan.disk_size),
        ]
    for flag in plan.boot_flags:
        script += ["set", str(PartitionPlan.BOOT_INDEX), flag, "on"]
    return script


def write_partition_table(
    disk_path: str, plan: PartitionPlan, runner: CommandRunner
) -> None:
    """Write the planned table in one parted call, then wait for udev.

    Not retried on failure: a second attempt on a half-applied table could
    stack further partitions on top of it.

    Raises:
        CommandFailedError: If parted or udevadm fails
    """
    command = ["parted", "--script", disk_path, *parted_script(plan)]
    log.info(
        f"Writing {plan.table_kind.value} partition table to {disk_path} "
        f"({'2 partitions' if plan.has_secondary else '1 partition'})"
    )
    runner.run(command)
    runner.run(["udevadm", "settle"])


def _device_number(path: PathLike) -> tuple[int, int]:
    try:
        st = os.stat(path)
    except FileNotFoundError as error:
        raise NotABlockDeviceError(str(path)) from error
    if not stat.S_ISBLK(st.st_mode):
        raise NotABlockDeviceError(str(path))
    return os.major(st.st_rdev), os.minor(st.st_rdev)


def _read_first_token(path: Path) -> str:
    return path.read_text(encoding="utf-8").strip()


def resolve_partition(
    disk_path: PathLike,
    index: int,
    *,
    sys_root: PathLike = "/sys",
    dev_root: PathLike = "/dev",
) -> Optional[Path]:
    """Return the device node of partition `index` (1-based) on disk_path.

    Returns None when the kernel reports no such partition; callers decide
    whether that is fatal.

    Raises:
        NotABlockDeviceError: If disk_path is not a block device
    """
    major, minor = _device_number(disk_path)
    disk_dir = Path(sys_root) / "dev" / "block" / f"{major}:{minor}"
    block_dir = Path(dev_root) / "block"

    for partition_file in sorted(disk_dir.glob("*/partition")):
        try:
            partno = int(_read_first_token(partition_file))
        except (OSError, ValueError):
            continue
        if partno != index:
            continue
        try:
            devno = _read_first_token(partition_file.with_name("dev"))
            target = Path(os.readlink(block_dir / devno))
        except OSError as error:
            log.debug(f"Partition {index} of {disk_path} has no device node: {error}")
            return None
        if not target.is_absolute():
            target = Path(os.path.realpath(block_dir / target))
        log.debug(f"Partition {index} of {disk_path} is {target} ({devno})")
        return target

    log.debug(f"Partition {index} of {disk_path} not found under {disk_dir}")
    return None


def get_partition_uuid(partition: PathLike, runner: CommandRunner) -> Optional[str]:
    """Filesystem UUID of partition as reported by blkid, or None."""
    try:
        uuid = runner.output(
            ["blkid", "-c", "/dev/null", "-s", "UUID", "-o", "value", str(partition)]
        )
    except CommandFailedError as error:
        log.warning(f"Unable to read UUID of {partition}: {error}")
        return None
    uuid = uuid.strip()
    return uuid or None
