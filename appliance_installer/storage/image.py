"""System image copy onto the mounted boot volume.

Each chunk is flushed and fdatasync'ed before the next one is read, so power
loss on removable media leaves at most one incomplete chunk.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Optional, Union

from appliance_installer.config.settings import DEFAULT_COPY_CHUNK_SIZE
from appliance_installer.logging import LoggerFactory, ThrottledLogger
from appliance_installer.storage.devices import human_size
from appliance_installer.storage.exceptions import SystemImageError


log = LoggerFactory.for_disk()


def validate_system_image(source: Union[str, os.PathLike]) -> int:
    """Return the image size.

    Raises:
        SystemImageError: If the file is missing, not a regular file or empty
    """
    path = Path(source)
    try:
        st = path.stat()
    except OSError as error:
        raise SystemImageError(str(path), f"unable to stat ({error.strerror})") from error
    if not path.is_file():
        raise SystemImageError(str(path), "not a regular file")
    if st.st_size == 0:
        raise SystemImageError(str(path), "file is empty")
    return st.st_size


def copy_system_image(
    source: Union[str, os.PathLike],
    dest: Union[str, os.PathLike],
    on_progress: Optional[Callable[[float], None]] = None,
    *,
    chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
) -> int:
    """Copy source to dest chunk by chunk and return the bytes copied.

    on_progress receives bytes_copied / total after every chunk.

    Raises:
        SystemImageError: If source is missing or empty, or cannot be opened
        OSError: If writing to dest fails
    """
    total = validate_system_image(source)
    progress_log = ThrottledLogger(log.bind(tags=["disk", "progress"]))
    copied = 0

    try:
        src = open(source, "rb")
    except OSError as error:
        raise SystemImageError(str(source), f"unable to open ({error.strerror})") from error

    with src, open(dest, "wb") as dst:
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            dst.write(chunk)
            dst.flush()
            os.fdatasync(dst.fileno())
            copied += len(chunk)
            if on_progress:
                on_progress(min(copied / total, 1.0))
            progress_log.debug(
                "copy",
                f"Copied {human_size(copied)} of {human_size(total)}",
            )
            if len(chunk) < chunk_size:
                break

    log.info(f"Copied system image {source} ({human_size(copied)}) to {dest}")
    return copied
