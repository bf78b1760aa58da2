"""
Path normalization helpers shared by the scanner, store, and placement engine.
"""

from __future__ import annotations

import os
import re
from typing import Iterable, Optional

from models import StorageLocation

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def path_key(path: str) -> str:
    """Normalize a path for case-insensitive comparison."""
    if not path:
        return ""
    return os.path.normpath(path).replace("\\", "/").rstrip("/").lower()


def same_path(first: str, second: str) -> bool:
    return path_key(first) == path_key(second)


def is_within(path: str, root: str) -> bool:
    """Return True when path equals root or sits below it."""
    path_value = path_key(path)
    root_value = path_key(root)
    return path_value == root_value or path_value.startswith(root_value + "/")


def relative_to(path: str, root: str) -> str:
    return os.path.relpath(os.path.normpath(path), os.path.normpath(root))


def locate(locations: Iterable[StorageLocation], full_path: str) -> Optional[tuple[StorageLocation, str]]:
    """Find the storage location owning a path, preferring the deepest root."""
    best: Optional[StorageLocation] = None
    for location in locations:
        if not is_within(full_path, location.root_path):
            continue
        if best is None or len(path_key(location.root_path)) > len(path_key(best.root_path)):
            best = location
    if best is None:
        return None
    return best, relative_to(full_path, best.root_path)


def sanitize_folder_name(name: str) -> str:
    """Strip characters that are invalid in folder names on common filesystems."""
    cleaned = _INVALID_NAME_CHARS.sub("", name or "").strip().rstrip(".")
    return cleaned
