"""Settings storage for installer configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "APPLIANCE_INSTALLER_SETTINGS_PATH",
        Path.home() / ".config" / "appliance-installer" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_MIN_DISK_SIZE = 8 * 1024**3
DEFAULT_INSTALL_MEDIA_MIN_SIZE = 3 * 1024**3
DEFAULT_SYSTEM_IMAGE = "/run/initramfs/boot/system.img"
DEFAULT_COPY_CHUNK_SIZE = 1024 * 1024

DEFAULT_SETTINGS: dict[str, Any] = {
    "min_disk_size": DEFAULT_MIN_DISK_SIZE,
    "install_media_min_size": DEFAULT_INSTALL_MEDIA_MIN_SIZE,
    "system_image": DEFAULT_SYSTEM_IMAGE,
    "install_media_label": "INSTALLER",
    "mount_temp_root": None,
    "copy_chunk_size": DEFAULT_COPY_CHUNK_SIZE,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


load_settings()
