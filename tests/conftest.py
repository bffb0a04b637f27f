"""
Pytest configuration and shared fixtures for appliance-installer tests.

No test spawns a real process: every external tool goes through
FakeCommandRunner, and kernel topology comes from a synthetic sysfs tree.
"""

import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pytest

from appliance_installer.config import settings
from appliance_installer.storage.exceptions import CommandFailedError


GB = 1000**3
GiB = 1024**3


# ==============================================================================
# Command Runner Fake
# ==============================================================================


class FakeCommandRunner:
    """Records commands instead of running them.

    mount/umount are simulated: each device owns a directory under
    volume_root whose contents are moved into the mountpoint on mount and
    back out on umount, so files written while mounted survive the unmount
    and the temporary directory ends up empty.
    """

    def __init__(
        self,
        outputs: Optional[Dict[str, Union[str, Callable[[List[str]], str]]]] = None,
        failures: Iterable[str] = (),
        volume_root: Optional[Path] = None,
    ):
        self.calls: List[List[str]] = []
        self.outputs = dict(outputs or {})
        self.failures = set(failures)
        self.volume_root = volume_root
        self.mounted: Dict[str, str] = {}

    def run(self, command, *, check=True, log_output=True):
        command = [str(arg) for arg in command]
        self.calls.append(command)
        program = command[0]
        if program in self.failures:
            if check:
                raise CommandFailedError(command, 1, f"{program} failed")
            return subprocess.CompletedProcess(command, 1, "", f"{program} failed")
        if program == "mount":
            self._mount(command[-2], command[-1])
        elif program == "umount":
            self._umount(command[-1])
        output = self.outputs.get(program, "")
        if callable(output):
            output = output(command)
        return subprocess.CompletedProcess(command, 0, output, "")

    def output(self, command):
        return self.run(command, log_output=False).stdout

    def volume(self, device: str) -> Path:
        assert self.volume_root is not None
        path = self.volume_root / Path(device).name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _mount(self, device: str, mountpoint: str) -> None:
        self.mounted[mountpoint] = device
        if self.volume_root is not None:
            for entry in self.volume(device).iterdir():
                shutil.move(str(entry), os.path.join(mountpoint, entry.name))

    def _umount(self, mountpoint: str) -> None:
        device = self.mounted.pop(mountpoint)
        if self.volume_root is not None:
            for entry in Path(mountpoint).iterdir():
                shutil.move(str(entry), str(self.volume(device) / entry.name))

    def called(self, program: str) -> List[List[str]]:
        return [call for call in self.calls if call[0] == program]

    @property
    def programs(self) -> List[str]:
        return [call[0] for call in self.calls]


# ==============================================================================
# lsblk Fixtures
# ==============================================================================


def make_lsblk_disk(
    name: str = "sdb",
    size: int = 10 * GB,
    log_sec: Any = 512,
    *,
    model: Optional[str] = "Flash Disk",
    tran: Optional[str] = "usb",
    ro: bool = False,
    maj_min: str = "8:16",
    children: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """A disk record as printed by `lsblk -b -n -J`."""
    device = {
        "name": name,
        "model": model,
        "type": "disk",
        "ro": ro,
        "mountpoint": None,
        "size": size,
        "tran": tran,
        "log-sec": log_sec,
        "maj:min": maj_min,
    }
    if children is not None:
        device["children"] = children
    return device


def make_lsblk_part(
    name: str, *, mountpoint: Optional[str] = None, type_: str = "part", children=None
) -> Dict[str, Any]:
    part = {
        "name": name,
        "model": None,
        "type": type_,
        "ro": False,
        "mountpoint": mountpoint,
        "size": 1 * GiB,
        "tran": None,
        "log-sec": 512,
        "maj:min": "8:17",
    }
    if children is not None:
        part["children"] = children
    return part


def lsblk_json(*devices: Dict[str, Any]) -> str:
    return json.dumps({"blockdevices": list(devices)})


@pytest.fixture
def system_disk() -> Dict[str, Any]:
    """The disk the host runs from; never usable."""
    return make_lsblk_disk(
        "sda",
        size=500 * GB,
        model="Samsung SSD",
        tran="sata",
        maj_min="8:0",
        children=[
            make_lsblk_part("sda1", mountpoint="/boot/efi"),
            make_lsblk_part("sda2", mountpoint="/"),
        ],
    )


@pytest.fixture
def blank_disk() -> Dict[str, Any]:
    return make_lsblk_disk("sdb", size=10 * GB)


@pytest.fixture
def make_runner() -> Callable[..., FakeCommandRunner]:
    """Factory for FakeCommandRunner; accepts outputs, failures and volume_root."""
    return FakeCommandRunner


@pytest.fixture
def lsblk_runner() -> Callable[..., FakeCommandRunner]:
    """FakeCommandRunner whose lsblk prints the given device records.

    Usage:
        runner = lsblk_runner(make_disk("sdb"), failures={"parted"})
    """

    def build(*devices, outputs=None, **kwargs):
        runner_outputs = {"lsblk": lsblk_json(*devices)}
        runner_outputs.update(outputs or {})
        return FakeCommandRunner(outputs=runner_outputs, **kwargs)

    return build


@pytest.fixture
def make_disk() -> Callable[..., Dict[str, Any]]:
    return make_lsblk_disk


@pytest.fixture
def make_part() -> Callable[..., Dict[str, Any]]:
    return make_lsblk_part


# ==============================================================================
# sysfs Topology Fixtures
# ==============================================================================


@pytest.fixture
def make_topology(tmp_path) -> Callable[..., tuple]:
    """Build /sys/dev/block and /dev/block trees under tmp_path.

    Usage:
        sys_root, dev_root = make_topology("8:16", [("sdb1", 1, "8:17")])
    """

    def build(disk_devno: str, partitions, *, absolute_links: bool = False):
        sys_root = tmp_path / "sys"
        dev_root = tmp_path / "dev"
        disk_dir = sys_root / "dev" / "block" / disk_devno
        disk_dir.mkdir(parents=True, exist_ok=True)
        (disk_dir / "dev").write_text(f"{disk_devno}\n")
        block_dir = dev_root / "block"
        block_dir.mkdir(parents=True, exist_ok=True)
        for name, partno, devno in partitions:
            part_dir = disk_dir / name
            part_dir.mkdir()
            (part_dir / "partition").write_text(f"{partno}\n")
            (part_dir / "dev").write_text(f"{devno}\n")
            node = dev_root / name
            node.parent.mkdir(parents=True, exist_ok=True)
            node.touch()
            target = str(node) if absolute_links else f"../{name}"
            os.symlink(target, block_dir / devno)
        # Non-partition entries live next to partitions in real sysfs
        (disk_dir / "queue").mkdir(exist_ok=True)
        return sys_root, dev_root

    return build


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def temp_settings_file(tmp_path, monkeypatch) -> Path:
    settings_dir = tmp_path / ".config" / "appliance-installer"
    settings_dir.mkdir(parents=True, exist_ok=True)
    settings_file = settings_dir / "settings.json"
    monkeypatch.setattr(settings, "SETTINGS_PATH", settings_file)
    return settings_file


@pytest.fixture(autouse=True)
def default_settings():
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def system_image(tmp_path) -> Path:
    image = tmp_path / "system.img"
    image.write_bytes(os.urandom(3 * 4096 + 100))
    return image
