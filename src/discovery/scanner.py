"""
Folder scanning: walk storage locations and queue work for what is found.
"""

from __future__ import annotations

import fnmatch
import os
import sqlite3
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from discovery.classify import VideoClassifier
from filesystem import FileSystem, path_key, relative_to
from models import JobKind, PlacementRecord, StorageLocation
from operations.cleanup import OrphanCleaner
from orchestrator.context import PipelineContext

DEFAULT_TRASH_MARKERS = ("$RECYCLE.BIN",)


@dataclass(frozen=True)
class ScanResult:
    """Counts reported by a scan.

    ``files_found`` counts every file considered after exclusions;
    ``videos_found`` counts new video files queued for hashing.
    """

    files_found: int = 0
    videos_found: int = 0

    def __add__(self, other: "ScanResult") -> "ScanResult":
        return ScanResult(
            files_found=self.files_found + other.files_found,
            videos_found=self.videos_found + other.videos_found,
        )


class FolderScanner:
    """Scan storage locations and emit HashFile and MoveFile jobs."""

    def __init__(self, context: PipelineContext, cleaner: OrphanCleaner) -> None:
        self.context = context
        self.config = context.config
        self.store = context.store
        self.queue = context.queue
        self.logger = context.logger
        self.cleaner = cleaner
        self.skip_hidden = bool(self.config.get("scan", "skip_hidden", default=True))
        self.excluded_patterns = list(self.config.get("scan", "exclude_patterns", default=[]) or [])
        markers = list(DEFAULT_TRASH_MARKERS) + list(self.config.get("scan", "trash_markers", default=[]) or [])
        self.trash_markers = {marker.lower() for marker in markers}
        self.classifier = VideoClassifier(
            video_extensions=self.config.get("scan", "video_extensions", default=None),
            sniff_unknown=bool(self.config.get("scan", "sniff_unknown_extensions", default=True)),
        )

    def scan_location(self, location_id: int, cancel_event: Optional[threading.Event] = None) -> ScanResult:
        """Scan one location; known files in a drop source are queued for placement."""
        location = self.store.get_location(location_id)
        if location is None:
            self.logger.warning("Cannot scan unknown storage location %s", location_id)
            return ScanResult()
        return self._scan([location], trigger_moves=True, cancel_event=cancel_event)

    def scan_all_drop_sources(self, cancel_event: Optional[threading.Event] = None) -> ScanResult:
        locations = [location for location in self.store.list_locations() if location.is_drop_source]
        return self._scan(locations, trigger_moves=True, cancel_event=cancel_event)

    def scan_new_files(self, cancel_event: Optional[threading.Event] = None) -> ScanResult:
        """Queue only never-seen files across all locations."""
        locations = self.store.list_locations()
        location_ids = {location.location_id for location in locations}
        for placement in self.store.list_placements():
            if placement.location_id not in location_ids:
                self.logger.info(
                    "Removing placement %s with missing storage location %s",
                    placement.placement_id,
                    placement.location_id,
                )
                try:
                    self.cleaner.remove_placement(placement.placement_id)
                except sqlite3.Error:
                    self.logger.exception("Could not remove placement %s", placement.placement_id)
        return self._scan(locations, trigger_moves=False, cancel_event=cancel_event)

    def _scan(
        self,
        locations: Iterable[StorageLocation],
        trigger_moves: bool,
        cancel_event: Optional[threading.Event],
    ) -> ScanResult:
        result = ScanResult()
        ignored = self.store.ignored_paths()
        for location in locations:
            if cancel_event is not None and cancel_event.is_set():
                break
            filesystem = self.context.filesystems.for_location(location)
            if filesystem is None:
                self.logger.info("Skipping offline storage location %s (%s)", location.name, location.root_path)
                continue
            result = result + self._scan_one(location, filesystem, ignored, trigger_moves, cancel_event)
        return result

    def _scan_one(
        self,
        location: StorageLocation,
        filesystem: FileSystem,
        ignored: set[str],
        trigger_moves: bool,
        cancel_event: Optional[threading.Event],
    ) -> ScanResult:
        known: dict[str, PlacementRecord] = {}
        for placement in self.store.list_placements_for_location(location.location_id):
            known[path_key(os.path.join(location.root_path, placement.relative_path))] = placement

        files_found = 0
        videos_found = 0
        moves = 0

        def prune(directory: str) -> bool:
            return self._is_skipped(location, directory)

        def read_head(path: str, size: int) -> Optional[bytes]:
            head = filesystem.read_head(path, size)
            return head.value if head.ok else None

        for full_path in filesystem.walk_files(location.root_path, prune=prune):
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info("Scan of %s cancelled", location.name)
                break
            if self._is_skipped(location, full_path):
                continue
            key = path_key(full_path)
            if key in ignored:
                continue
            files_found += 1
            placement = known.get(key)
            try:
                if placement is not None:
                    if trigger_moves and location.is_drop_source:
                        if self.queue.enqueue(JobKind.MOVE_FILE, {"placement_id": placement.placement_id}):
                            moves += 1
                    continue
                if not self.classifier.is_video(full_path, read_head):
                    continue
                self.queue.enqueue(JobKind.HASH_FILE, {"path": full_path})
            except sqlite3.Error:
                self.logger.exception("Could not queue work for %s", full_path)
                continue
            videos_found += 1

        self.logger.info(
            "Scanned %s: %s files, %s new videos, %s placement checks queued",
            location.name,
            files_found,
            videos_found,
            moves,
        )
        return ScanResult(files_found=files_found, videos_found=videos_found)

    def _is_skipped(self, location: StorageLocation, path: str) -> bool:
        relative = relative_to(path, location.root_path)
        parts = [part for part in relative.replace("\\", "/").split("/") if part and part != "."]
        lowered = relative.lower()
        if any(marker in lowered for marker in self.trash_markers):
            return True
        if self.skip_hidden and any(part.startswith(".") for part in parts):
            return True
        name = os.path.basename(path)
        for pattern in self.excluded_patterns:
            if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(path, pattern):
                return True
        return False
