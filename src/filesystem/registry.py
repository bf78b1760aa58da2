"""
Registry mapping storage locations onto filesystem backends.
"""

from __future__ import annotations

import logging
from typing import Optional

from models import StorageLocation

from .base import FileSystem
from .local import LocalFileSystem


class FileSystemRegistry:
    """Look up the backend for a location by its cloud id."""

    def __init__(self, default: Optional[FileSystem] = None, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("media_importer")
        self.default: FileSystem = default or LocalFileSystem(logger=self.logger)
        self._backends: dict[str, FileSystem] = {}

    def register(self, cloud_id: str, filesystem: FileSystem) -> None:
        self._backends[cloud_id] = filesystem

    def backend(self, cloud_id: Optional[str]) -> FileSystem:
        if cloud_id is None:
            return self.default
        filesystem = self._backends.get(cloud_id)
        if filesystem is None:
            filesystem = LocalFileSystem(cloud_id=cloud_id, logger=self.logger)
            self._backends[cloud_id] = filesystem
        return filesystem

    def for_location(self, location: StorageLocation) -> Optional[FileSystem]:
        """Return the backend for a location, or None when its root is offline."""
        filesystem = self.backend(location.cloud_id)
        if not filesystem.is_directory(location.root_path):
            self.logger.debug("Storage location offline: %s (%s)", location.name, location.root_path)
            return None
        return filesystem
