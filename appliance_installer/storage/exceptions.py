"""Custom exceptions for storage and install operations.

Exception Hierarchy:
    StorageError (base)
        ├── DeviceError
        │   ├── DiskNotUsableError
        │   ├── NotABlockDeviceError
        │   └── PartitionNotFoundError
        ├── InventoryError
        ├── PlanError
        │   └── InvalidPlanError
        ├── CommandFailedError
        ├── MountError
        │   ├── MountFailedError
        │   └── UnmountFailedError
        ├── FormatError
        ├── BootloaderError
        └── SystemImageError

Usage:
    from appliance_installer.storage.exceptions import DiskNotUsableError

    if disk_path not in usable:
        raise DiskNotUsableError(disk_path)
"""

from __future__ import annotations

from typing import Optional, Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class DiskNotUsableError(DeviceError):
    """Disk is missing, busy, read-only or too small."""

    def __init__(self, device_name: str, reason: str = ""):
        self.device_name = device_name
        self.reason = reason
        msg = f"{device_name} is not a usable disk"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotABlockDeviceError(DeviceError):
    """Path does not refer to a block device."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not a block device: {path}")


class PartitionNotFoundError(DeviceError):
    """Partition could not be resolved from kernel topology."""

    def __init__(self, device_name: str, index: int):
        self.device_name = device_name
        self.index = index
        super().__init__(f"Unable to determine partition {index} of {device_name}")


class InventoryError(StorageError):
    """Block device listing failed or returned malformed data."""


class PlanError(StorageError):
    """Base exception for partition planning."""


class InvalidPlanError(PlanError):
    """Partition plan inputs are invalid."""

    def __init__(self, size: int, logical_sector_size: int, reason: str):
        self.size = size
        self.logical_sector_size = logical_sector_size
        self.reason = reason
        super().__init__(
            f"Cannot plan partitions for size={size} "
            f"logical_sector_size={logical_sector_size}: {reason}"
        )


class CommandFailedError(StorageError):
    """External command exited with non-zero status or could not be started."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Command failed ({' '.join(self.command)})"
        if returncode is not None:
            msg += f" with exit status {returncode}"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Mount did not report a clean success."""

    def __init__(self, device_name: str, mountpoint: str, reason: str = ""):
        self.device_name = device_name
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to mount {device_name} at {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """Failed to unmount a temporary mount or remove its directory."""

    def __init__(self, mountpoint: str, reason: str = ""):
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to clean up temporary mount {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class FormatError(StorageError):
    """Filesystem creation failed."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class BootloaderError(StorageError):
    """Bootloader image build, install or configuration failed."""


class SystemImageError(StorageError):
    """System image is missing, empty or unreadable."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"System image {path}: {reason}")
