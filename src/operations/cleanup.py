"""
Orphan cleanup and operator-initiated deletes.

Placements are always removed before their content record; a content record
is removed only together with its last placement.
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass, field, replace
from typing import Optional

from filesystem import FsStatus
from models import ContentRecord, JobKind
from orchestrator.context import PipelineContext

CLEANUP_OPERATION = "cleanup"


@dataclass(frozen=True)
class CleanupResult:
    """What ``remove_placement`` deleted."""

    placement_id: int
    removed_placement: bool = False
    removed_content: bool = False
    content_hash: Optional[str] = None
    affected_series: tuple[int, ...] = field(default_factory=tuple)


class OrphanCleaner:
    """Remove placement records and cascade to orphaned content records."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.store = context.store
        self.queue = context.queue
        self.logger = context.logger

    def remove_placement(self, placement_id: int) -> CleanupResult:
        """Delete a placement; delete its content record too if it was the last one."""
        removed: Optional[ContentRecord] = None
        series: set[int] = set()
        with self.store.transaction():
            placement = self.store.get_placement(placement_id)
            if placement is None:
                return CleanupResult(placement_id=placement_id)
            self.store.delete_placement(placement_id)
            content = self.store.get_content(placement.content_id)
            if content is not None and self.store.count_placements(content.content_id) == 0:
                if content.hash:
                    series = self.store.series_for_hash(content.hash)
                self.store.delete_content(content.content_id)
                removed = content

        if removed is None:
            self.logger.debug("Removed placement %s", placement_id)
            return CleanupResult(placement_id=placement_id, removed_placement=True)

        self.logger.info(
            "Removed placement %s and orphaned content %s (%s)",
            placement_id,
            removed.content_id,
            removed.hash or "no hash",
        )
        if removed.hash:
            self.queue.enqueue(
                JobKind.DELETE_EXTERNAL_REFERENCE,
                {"hash": removed.hash, "size": removed.file_size},
            )
        for series_id in sorted(series):
            self.queue.enqueue(JobKind.UPDATE_SERIES_STATS, {"series_id": series_id})
        return CleanupResult(
            placement_id=placement_id,
            removed_placement=True,
            removed_content=True,
            content_hash=removed.hash or None,
            affected_series=tuple(sorted(series)),
        )

    def delete_placement_and_file(self, placement_id: int) -> str:
        """Delete the physical file of a placement and its records.

        Returns an empty string on success or a readable error.
        """
        placement = self.store.get_placement(placement_id)
        if placement is None:
            return f"Could not find placement record {placement_id}"
        location = self.store.get_location(placement.location_id)
        if location is None:
            self.remove_placement(placement_id)
            return ""
        filesystem = self.context.filesystems.for_location(location)
        if filesystem is None:
            return f"Storage location is offline: {location.name}"
        full_path = os.path.join(location.root_path, placement.relative_path)
        result = filesystem.delete(full_path)
        if not result.ok and result.status != FsStatus.NOT_FOUND:
            self.context.db_manager.record_file_operation(
                CLEANUP_OPERATION, "delete", full_path, None, "failed", error_message=result.error
            )
            return f"Could not delete file {full_path}: {result.error}"
        self.context.db_manager.record_file_operation(CLEANUP_OPERATION, "delete", full_path, None, "completed")
        self.context.movement_logger.info("Deleted %s", full_path)
        try:
            self.remove_placement(placement_id)
        except sqlite3.Error as exc:
            self.logger.exception("Failed to remove placement %s after deleting file", placement_id)
            return f"File deleted but record removal failed: {exc}"
        return ""

    def delete_storage_location(self, location_id: int) -> str:
        """Remove a storage location with all of its placements (files stay on disk)."""
        location = self.store.get_location(location_id)
        if location is None:
            return f"Could not find storage location {location_id}"
        placements = self.store.list_placements_for_location(location_id)
        series: set[int] = set()
        try:
            for placement in placements:
                content = self.store.get_content(placement.content_id)
                if content is not None and content.hash:
                    series.update(self.store.series_for_hash(content.hash))
                self.remove_placement(placement.placement_id)
            self.store.delete_location(location_id)
        except sqlite3.Error as exc:
            self.logger.exception("Failed to delete storage location %s", location.name)
            return f"Could not delete storage location {location.name}: {exc}"
        for series_id in sorted(series):
            self.queue.enqueue(JobKind.UPDATE_SERIES_STATS, {"series_id": series_id})
        self.logger.info(
            "Deleted storage location %s (%s placements removed)", location.name, len(placements)
        )
        return ""

    def set_ignored(self, content_id: int, ignored: bool) -> str:
        """Flag a content record so scans skip its paths."""
        content = self.store.get_content(content_id)
        if content is None:
            return f"Could not find content record {content_id}"
        if content.is_ignored == ignored:
            return ""
        self.store.update_content(replace(content, is_ignored=ignored))
        self.logger.info("Content %s ignore flag set to %s", content_id, ignored)
        return ""
