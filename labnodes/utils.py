"""Shared file and mapping helpers."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def create_directory(path: str | Path, mode: int = 0o777) -> Path:
    """Create a directory (and parents) and force its permission bits.

    ``mkdir`` honours the process umask, so the mode is applied explicitly
    afterwards. Containers often run as a different uid than the host user.
    """
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    os.chmod(directory, mode)
    return directory


def copy_file(src: str | Path, dst: str | Path, mode: int = 0o644) -> None:
    """Copy a regular file and set the destination permissions."""
    src_path = Path(src)
    if not src_path.is_file():
        raise FileNotFoundError(f"{src_path} is not a regular file")
    shutil.copyfile(src_path, dst)
    os.chmod(dst, mode)


def file_exists(path: str | Path) -> bool:
    return Path(path).is_file()


def merge_string_maps(*maps: dict[str, str] | None) -> dict[str, str]:
    """Merge mappings left to right; later mappings win on key conflicts."""
    merged: dict[str, str] = {}
    for m in maps:
        if m:
            merged.update(m)
    return merged
