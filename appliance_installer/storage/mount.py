"""Scoped temporary mounts.

A partition is mounted on a freshly created directory for the duration of
one operation. Unmount and directory removal run on every exit path: normal
return, an exception from the operation, or a failed mount.

Example:
    >>> with temp_mount("/dev/sdb1", "vfat", ("relatime",), runner=runner) as mnt:
    ...     (mnt / "hello.txt").write_text("hi")
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, TypeVar

from appliance_installer.domain.models import MountHandle
from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.commands import CommandRunner, resolve_runner
from appliance_installer.storage.exceptions import (
    CommandFailedError,
    MountFailedError,
    UnmountFailedError,
)


log = LoggerFactory.for_disk()

T = TypeVar("T")

VFAT_MOUNT_OPTIONS = ("relatime", "fmask=177", "dmask=077")


def mount_command(handle: MountHandle) -> list[str]:
    command = ["mount", "-t", handle.fs_type]
    if handle.options:
        command += ["-o", ",".join(handle.options)]
    command += [handle.device, str(handle.path)]
    return command


def _release(handle: MountHandle, runner: CommandRunner, *, mounted: bool) -> Optional[str]:
    """Unmount and remove the directory. Returns a failure description."""
    problems = []
    if mounted:
        try:
            runner.run(["umount", str(handle.path)])
        except CommandFailedError as error:
            problems.append(str(error))
    try:
        os.rmdir(handle.path)
    except FileNotFoundError:
        pass
    except OSError as error:
        problems.append(f"rmdir {handle.path}: {error}")
    if problems:
        return "; ".join(problems)
    return None


@contextlib.contextmanager
def temp_mount(
    device: str,
    fs_type: str,
    options: Sequence[str] = (),
    *,
    runner: Optional[CommandRunner] = None,
    temp_root: Optional[os.PathLike] = None,
) -> Iterator[Path]:
    """Mount device on a unique temporary directory and yield its path.

    Cleanup errors are logged. They are raised as UnmountFailedError only when
    the body completed normally, so they never replace the original error.

    Raises:
        MountFailedError: If mount exits with anything but success
        UnmountFailedError: If cleanup fails after a successful body
    """
    runner = resolve_runner(runner)
    path = Path(tempfile.mkdtemp(prefix="mount-", dir=temp_root))
    handle = MountHandle(device=str(device), path=path, fs_type=fs_type, options=tuple(options))

    try:
        runner.run(mount_command(handle))
    except CommandFailedError as error:
        _release(handle, runner, mounted=False)
        raise MountFailedError(handle.device, str(path), error.stderr or str(error)) from error
    log.debug(f"Mounted {handle.device} at {path} ({fs_type})")

    try:
        yield path
    except BaseException:
        problem = _release(handle, runner, mounted=True)
        if problem:
            log.error(f"Cleanup of {path} failed while handling an error: {problem}")
        raise
    problem = _release(handle, runner, mounted=True)
    if problem:
        log.error(f"Cleanup of {path} failed: {problem}")
        raise UnmountFailedError(str(path), problem)
    log.debug(f"Unmounted {handle.device} from {path}")


def with_temp_mount(
    device: str,
    fs_type: str,
    options: Sequence[str],
    operation: Callable[[Path], T],
    *,
    runner: Optional[CommandRunner] = None,
    temp_root: Optional[os.PathLike] = None,
) -> T:
    """Run operation(mount_path) with device mounted; return its result."""
    with temp_mount(device, fs_type, options, runner=runner, temp_root=temp_root) as path:
        return operation(path)
