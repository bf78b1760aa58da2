"""
Filesystem abstraction over local disks and locally mounted cloud folders.
"""

from .base import FileSystem, FsObject, FsResult, FsStatus, failure_for
from .local import LocalFileSystem, classify_error
from .paths import is_within, locate, path_key, relative_to, same_path, sanitize_folder_name
from .registry import FileSystemRegistry

__all__ = [
    "FileSystem",
    "FileSystemRegistry",
    "FsObject",
    "FsResult",
    "FsStatus",
    "LocalFileSystem",
    "classify_error",
    "failure_for",
    "is_within",
    "locate",
    "path_key",
    "relative_to",
    "same_path",
    "sanitize_folder_name",
]
