"""
Local-disk filesystem backend, also used for cloud sync folders mounted locally.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from typing import Callable, Iterator, Optional

from utils.cloud_placeholders import is_cloud_placeholder

from .base import FsObject, FsResult, FsStatus
from .paths import same_path

_BUSY_ERRNOS = {errno.EBUSY, errno.ETXTBSY, errno.EAGAIN, errno.EACCES}
# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_BUSY_WINERRORS = {32, 33}


def classify_error(exc: OSError) -> FsStatus:
    """Map an OSError onto a filesystem status."""
    if isinstance(exc, FileNotFoundError):
        return FsStatus.NOT_FOUND
    if isinstance(exc, FileExistsError):
        return FsStatus.EXISTS
    if isinstance(exc, PermissionError):
        return FsStatus.BUSY
    if getattr(exc, "winerror", None) in _BUSY_WINERRORS:
        return FsStatus.BUSY
    if exc.errno in _BUSY_ERRNOS:
        return FsStatus.BUSY
    return FsStatus.ERROR


def _failure(exc: OSError) -> FsResult:
    return FsResult.failure(classify_error(exc), str(exc))


class LocalFileSystem:
    """Filesystem backend over the local OS file APIs."""

    def __init__(
        self,
        cloud_id: Optional[str] = None,
        follow_symlinks: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cloud_id = cloud_id
        self.follow_symlinks = follow_symlinks
        self.logger = logger or logging.getLogger("media_importer")

    def resolve(self, path: str) -> FsResult:
        try:
            stat = os.stat(path)
        except OSError as exc:
            return _failure(exc)
        is_dir = os.path.isdir(path)
        return FsResult.success(FsObject(path=path, is_dir=is_dir, size=0 if is_dir else stat.st_size))

    def is_directory(self, path: str) -> bool:
        return os.path.isdir(path)

    def walk_files(self, root: str, prune: Optional[Callable[[str], bool]] = None) -> Iterator[str]:
        """Yield file paths under a root; ``prune`` drops directories from the walk."""

        def on_error(error: OSError) -> None:
            self.logger.warning("Cannot read directory %s: %s", error.filename, error)

        for dirpath, dirnames, filenames in os.walk(
            root, topdown=True, onerror=on_error, followlinks=self.follow_symlinks
        ):
            if prune is not None:
                dirnames[:] = [name for name in dirnames if not prune(os.path.join(dirpath, name))]
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = os.path.join(dirpath, filename)
                if not self.follow_symlinks and os.path.islink(file_path):
                    continue
                yield file_path

    def list_directory(self, path: str) -> FsResult:
        try:
            with os.scandir(path) as entries:
                objects = []
                for entry in entries:
                    is_dir = entry.is_dir(follow_symlinks=self.follow_symlinks)
                    size = 0 if is_dir else entry.stat(follow_symlinks=self.follow_symlinks).st_size
                    objects.append(FsObject(path=entry.path, is_dir=is_dir, size=size))
        except OSError as exc:
            return _failure(exc)
        return FsResult.success(sorted(objects, key=lambda item: item.path))

    def open_read(self, path: str) -> FsResult:
        try:
            return FsResult.success(open(path, "rb"))
        except OSError as exc:
            return _failure(exc)

    def read_head(self, path: str, size: int) -> FsResult:
        try:
            with open(path, "rb") as handle:
                return FsResult.success(handle.read(size))
        except OSError as exc:
            return _failure(exc)

    def rename(self, path: str, new_name: str) -> FsResult:
        """Rename a file within its directory and return the new full path."""
        destination = os.path.join(os.path.dirname(path), new_name)
        if not os.path.exists(path):
            return FsResult.failure(FsStatus.NOT_FOUND, f"Source not found: {path}")
        case_only = same_path(path, destination)
        if os.path.exists(destination) and not case_only:
            return FsResult(FsStatus.EXISTS, destination, f"Destination exists: {destination}")
        try:
            os.rename(path, destination)
        except OSError as exc:
            return _failure(exc)
        return FsResult.success(destination)

    def move(self, source: str, destination: str) -> FsResult:
        """Move a file to a full destination path, across devices if needed."""
        if not os.path.exists(source):
            return FsResult.failure(FsStatus.NOT_FOUND, f"Source not found: {source}")
        if os.path.exists(destination):
            return FsResult(FsStatus.EXISTS, destination, f"Destination exists: {destination}")
        try:
            shutil.move(source, destination)
        except OSError as exc:
            return _failure(exc)
        return FsResult.success(destination)

    def delete(self, path: str) -> FsResult:
        try:
            if os.path.isdir(path):
                os.rmdir(path)
            else:
                os.remove(path)
        except OSError as exc:
            return _failure(exc)
        return FsResult.success()

    def create_directory(self, path: str) -> FsResult:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as exc:
            return _failure(exc)
        return FsResult.success(path)

    def quota(self, path: str) -> FsResult:
        """Return free bytes available on the device holding ``path``."""
        try:
            usage = shutil.disk_usage(path)
        except OSError as exc:
            return _failure(exc)
        return FsResult.success(int(usage.free))

    def same_device(self, first: str, second: str) -> bool:
        try:
            return os.stat(first).st_dev == os.stat(second).st_dev
        except OSError:
            return False

    def is_placeholder(self, path: str) -> bool:
        return is_cloud_placeholder(path)
