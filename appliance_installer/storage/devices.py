"""Block device inventory using lsblk.

Enumerates whole disks that can be handed to the installer. A disk is usable
when it is writable, large enough, reports a logical sector size, and every
descendant is an unmounted partition. Anything else on the disk (a filesystem
placed on the whole device, LVM, dm-crypt, a mounted partition) disqualifies
it.

The inventory is recomputed on every call. There is no cache: a stale answer
would let the installer overwrite a disk that was mounted a second ago.

Example:
    >>> from appliance_installer.storage.devices import list_usable_disks
    >>> disks = list_usable_disks(8 * 1024**3)
    >>> sorted(disks)
    ['/dev/sdb', '/dev/vda']
"""

from __future__ import annotations

import json
import os
from typing import Iterable, Optional

from appliance_installer.domain.models import Disk
from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.commands import CommandRunner, resolve_runner
from appliance_installer.storage.exceptions import (
    CommandFailedError,
    DiskNotUsableError,
    InventoryError,
)


log = LoggerFactory.for_disk()

LSBLK_COLUMNS = "NAME,MODEL,TYPE,RO,MOUNTPOINT,SIZE,TRAN,LOG-SEC,MAJ:MIN"


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def get_block_devices(runner: Optional[CommandRunner] = None) -> list[dict]:
    """Return the top-level lsblk records.

    Raises:
        InventoryError: If lsblk is unavailable, fails or prints malformed JSON
    """
    runner = resolve_runner(runner)
    command = ["lsblk", "-b", "-n", "-J", "-o", LSBLK_COLUMNS]
    try:
        stdout = runner.output(command)
    except CommandFailedError as error:
        raise InventoryError(f"lsblk failed: {error}") from error
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as error:
        raise InventoryError(f"lsblk returned malformed JSON: {error}") from error
    if not isinstance(data, dict) or not isinstance(data.get("blockdevices"), list):
        raise InventoryError("lsblk output has no blockdevices list")
    return data["blockdevices"]


def get_children(device: dict) -> list[dict]:
    return device.get("children", []) or []


def _mountpoints(device: dict) -> list[str]:
    # util-linux >= 2.37 may report "mountpoints" as a list
    mountpoints = [mp for mp in device.get("mountpoints") or [] if mp]
    if device.get("mountpoint"):
        mountpoints.append(device["mountpoint"])
    return mountpoints


def is_all_descendants_free(device: dict) -> bool:
    """True when every descendant is an unmounted partition."""
    for child in get_children(device):
        if _mountpoints(child) or child.get("type") != "part":
            return False
        if not is_all_descendants_free(child):
            return False
    return True


def rejection_reason(device: dict, min_size: int) -> Optional[str]:
    """Explain why an lsblk record is not usable, or None if it is."""
    if device.get("type") != "disk":
        return f"type is {device.get('type')}"
    disk = Disk.from_lsblk_dict(device)
    if disk.read_only:
        return "read-only"
    if disk.size_bytes < min_size:
        return f"smaller than {human_size(min_size)}"
    if disk.logical_sector_size is None:
        return "logical sector size unknown"
    if _mountpoints(device):
        return "mounted"
    if not is_all_descendants_free(device):
        return "in use"
    return None


def filter_usable_disks(block_devices: Iterable[dict], min_size: int) -> dict[str, Disk]:
    """Keep the usable disks, keyed by device path.

    Raises:
        InventoryError: If a disk record lacks a name or has a non-numeric size
    """
    disks: dict[str, Disk] = {}
    for device in block_devices:
        try:
            reason = rejection_reason(device, min_size)
            if reason:
                log.trace(f"Skipping {device.get('name')}: {reason}")
                continue
            disk = Disk.from_lsblk_dict(device)
        except (AttributeError, KeyError, TypeError, ValueError) as error:
            raise InventoryError(
                f"lsblk returned a malformed device record: {device!r}"
            ) from error
        disks[disk.path] = disk
    return disks


def list_usable_disks(
    min_size: int, runner: Optional[CommandRunner] = None
) -> dict[str, Disk]:
    """Map device path to Disk for every disk the installer may take over."""
    disks = filter_usable_disks(get_block_devices(runner), min_size)
    if disks:
        log.debug(f"Usable disks: {', '.join(sorted(disks))}")
    else:
        log.debug("No usable disks found")
    return disks


def find_usable_disk(
    disk_path: str, min_size: int, runner: Optional[CommandRunner] = None
) -> Disk:
    """Look up disk_path (symlinks resolved) among the usable disks.

    Raises:
        DiskNotUsableError: If the disk is absent, busy, read-only or too small
    """
    canonical = os.path.realpath(disk_path)
    block_devices = get_block_devices(runner)
    disks = filter_usable_disks(block_devices, min_size)
    disk = disks.get(canonical)
    if disk is not None:
        return disk
    for device in block_devices:
        if f"/dev/{device.get('name')}" == canonical:
            raise DiskNotUsableError(canonical, rejection_reason(device, min_size) or "")
    raise DiskNotUsableError(canonical, "no such disk")


def format_disk_table(disks: dict[str, Disk]) -> list[str]:
    """Render disks as aligned NAME/MODEL/SIZE/TRAN/LOG-SEC rows."""
    rows = [
        ("NAME", "MODEL", "SIZE", "TRAN", "LOG-SEC"),
        ("-" * 10, "-" * 25, "-" * 6, "-" * 6, "-" * 7),
    ]
    for path in sorted(disks):
        disk = disks[path]
        rows.append(
            (
                path,
                disk.model or "-",
                human_size(disk.size_bytes),
                disk.transport or "-",
                str(disk.logical_sector_size),
            )
        )
    widths = [max(len(row[i]) for row in rows) for i in range(5)]
    right_aligned = {2, 4}
    lines = []
    for row in rows:
        cells = [
            cell.rjust(widths[i]) if i in right_aligned else cell.ljust(widths[i])
            for i, cell in enumerate(row)
        ]
        lines.append(" ".join(cells).rstrip())
    return lines
