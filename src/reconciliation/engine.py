"""
Reconciliation sweep: bring the catalog back in line with the filesystem.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config import ensure_directories
from filesystem import FileSystem, FsStatus, path_key
from models import ContentRecord, JobKind
from operations.cleanup import OrphanCleaner
from orchestrator.context import PipelineContext


@dataclass
class ReconcileReport:
    """Counters for each reconciliation step."""

    missing_placements_removed: int = 0
    unlocated_placements_removed: int = 0
    offline_locations_skipped: int = 0
    empty_hash_records_removed: int = 0
    duplicate_hash_groups_merged: int = 0
    duplicate_records_removed: int = 0
    duplicate_placements_removed: int = 0
    orphaned_xrefs_removed: int = 0
    series_stats_queued: int = 0
    process_jobs_queued: int = 0
    report_path: Optional[str] = None

    @property
    def mutations(self) -> int:
        """Number of record changes made; queued jobs are not mutations."""
        return (
            self.missing_placements_removed
            + self.unlocated_placements_removed
            + self.empty_hash_records_removed
            + self.duplicate_records_removed
            + self.duplicate_placements_removed
            + self.orphaned_xrefs_removed
        )


class ReconciliationEngine:
    """Remove stale records, merge duplicates, and queue follow-up work."""

    def __init__(self, context: PipelineContext, cleaner: OrphanCleaner) -> None:
        self.context = context
        self.config = context.config
        self.store = context.store
        self.queue = context.queue
        self.logger = context.logger
        self.cleaner = cleaner
        self.write_report = bool(self.config.get("reconcile", "write_report", default=True))

    def reconcile(self, cancel_event: Optional[threading.Event] = None) -> ReconcileReport:
        """Run every reconciliation step and return the counters."""
        operation_id = self.context.db_manager.start_operation("reconcile")
        report = ReconcileReport()
        touched: set[int] = set()
        try:
            self._remove_missing_placements(report, touched, cancel_event)
            self._remove_empty_hash_records(report)
            self._merge_duplicate_hashes(report, touched)
            self._remove_duplicate_placements(report, touched)
            self._queue_series_stats(report, touched)
            self._queue_unlinked_content(report)
        except Exception:
            self.context.db_manager.complete_operation(operation_id, status="failed")
            raise

        if self.write_report:
            report.report_path = str(self._write_report(operation_id, report))
        self.context.db_manager.complete_operation(operation_id, details=report.report_path)
        self.logger.info(
            "Reconcile finished: %s record changes (%s missing, %s empty hash, %s merged, %s duplicate placements)",
            report.mutations,
            report.missing_placements_removed,
            report.empty_hash_records_removed,
            report.duplicate_records_removed,
            report.duplicate_placements_removed,
        )
        return report

    def _remove_missing_placements(
        self,
        report: ReconcileReport,
        touched: set[int],
        cancel_event: Optional[threading.Event],
    ) -> None:
        locations = {location.location_id: location for location in self.store.list_locations()}
        backends: dict[int, Optional[FileSystem]] = {}
        offline: set[int] = set()
        for placement in self.store.list_placements():
            if cancel_event is not None and cancel_event.is_set():
                return
            location = locations.get(placement.location_id)
            if location is None:
                if self._remove(placement.placement_id, touched):
                    report.unlocated_placements_removed += 1
                continue
            if location.location_id not in backends:
                backends[location.location_id] = self.context.filesystems.for_location(location)
            filesystem = backends[location.location_id]
            if filesystem is None:
                offline.add(location.location_id)
                continue
            resolved = filesystem.resolve(os.path.join(location.root_path, placement.relative_path))
            if resolved.status != FsStatus.NOT_FOUND:
                continue
            self.logger.info("Removing missing placement %s (%s)", placement.placement_id, placement.relative_path)
            if self._remove(placement.placement_id, touched):
                report.missing_placements_removed += 1
        report.offline_locations_skipped = len(offline)
        for location_id in sorted(offline):
            self.logger.info("Skipped offline storage location %s", locations[location_id].name)

    def _remove_empty_hash_records(self, report: ReconcileReport) -> None:
        for content in self.store.list_content():
            if content.hash:
                continue
            try:
                with self.store.transaction():
                    for placement in self.store.list_placements_for_content(content.content_id):
                        self.store.delete_placement(placement.placement_id)
                    self.store.delete_content(content.content_id)
            except sqlite3.Error:
                self.logger.exception("Could not remove content record %s with empty hash", content.content_id)
                continue
            report.empty_hash_records_removed += 1

    def _merge_duplicate_hashes(self, report: ReconcileReport, touched: set[int]) -> None:
        groups: dict[str, list[ContentRecord]] = {}
        for content in self.store.list_content():
            if content.hash:
                groups.setdefault(content.hash, []).append(content)
        for content_hash, records in sorted(groups.items()):
            if len(records) < 2:
                continue
            try:
                survivor_id, placements_removed = self._merge_group(records)
            except sqlite3.Error:
                self.logger.exception("Could not merge duplicate records for %s", content_hash)
                continue
            touched.update(self.store.series_for_hash(content_hash))
            report.duplicate_hash_groups_merged += 1
            report.duplicate_records_removed += len(records) - 1
            report.duplicate_placements_removed += placements_removed
            self.logger.info(
                "Merged %s duplicate records for %s into %s",
                len(records) - 1,
                content_hash,
                survivor_id,
            )

    def _merge_group(self, records: list[ContentRecord]) -> tuple[int, int]:
        """Fold every record of one hash into the survivor; return its id and placements dropped."""
        placements_removed = 0
        with self.store.transaction():
            survivor = min(
                records,
                key=lambda item: (-self.store.count_placements(item.content_id), item.content_id),
            )
            merged = survivor
            survivor_keys = {
                (placement.location_id, path_key(placement.relative_path))
                for placement in self.store.list_placements_for_content(survivor.content_id)
            }
            for loser in records:
                if loser.content_id == survivor.content_id:
                    continue
                for placement in self.store.list_placements_for_content(loser.content_id):
                    key = (placement.location_id, path_key(placement.relative_path))
                    if key in survivor_keys:
                        self.store.delete_placement(placement.placement_id)
                        placements_removed += 1
                        continue
                    self.store.update_placement(replace(placement, content_id=survivor.content_id))
                    survivor_keys.add(key)
                merged = replace(
                    merged,
                    md5=merged.md5 or loser.md5,
                    sha1=merged.sha1 or loser.sha1,
                    crc32=merged.crc32 or loser.crc32,
                    duration_ms=merged.duration_ms or loser.duration_ms,
                    is_ignored=merged.is_ignored or loser.is_ignored,
                )
                self.store.delete_content(loser.content_id)
            if merged != survivor:
                self.store.update_content(merged)
            for placement in self.store.list_placements_for_content(survivor.content_id):
                canonical = os.path.normpath(placement.relative_path)
                if canonical != placement.relative_path:
                    self.store.update_placement(replace(placement, relative_path=canonical))
        return survivor.content_id, placements_removed

    def _remove_duplicate_placements(self, report: ReconcileReport, touched: set[int]) -> None:
        seen: dict[tuple[int, str], int] = {}
        for placement in self.store.list_placements():
            key = (placement.location_id, path_key(placement.relative_path))
            if key not in seen:
                seen[key] = placement.placement_id
                continue
            self.logger.info(
                "Removing duplicate placement %s of %s", placement.placement_id, seen[key]
            )
            if self._remove(placement.placement_id, touched):
                report.duplicate_placements_removed += 1

    def _queue_series_stats(self, report: ReconcileReport, touched: set[int]) -> None:
        for series_id in sorted(touched):
            if self._enqueue(JobKind.UPDATE_SERIES_STATS, {"series_id": series_id}):
                report.series_stats_queued += 1

    def _queue_unlinked_content(self, report: ReconcileReport) -> None:
        xrefs_by_hash: dict[str, list] = {}
        for xref in self.store.list_xrefs():
            xrefs_by_hash.setdefault(xref.content_hash, []).append(xref)
        known_hashes = {content.hash for content in self.store.list_content() if content.hash}

        for content_hash in sorted(set(xrefs_by_hash) - known_hashes):
            report.orphaned_xrefs_removed += self.store.delete_xrefs(content_hash)

        episode_exists: dict[int, bool] = {}
        series_exists: dict[int, bool] = {}
        for content in self.store.list_content():
            if not content.hash or content.is_ignored:
                continue
            xrefs = xrefs_by_hash.get(content.hash, [])
            broken = not xrefs
            for xref in xrefs:
                if xref.episode_id not in episode_exists:
                    episode_exists[xref.episode_id] = self.store.get_episode(xref.episode_id) is not None
                if xref.series_id not in series_exists:
                    series_exists[xref.series_id] = self.store.get_series(xref.series_id) is not None
                if not episode_exists[xref.episode_id] or not series_exists[xref.series_id]:
                    broken = True
            if broken and self._enqueue(JobKind.PROCESS_FILE, {"content_id": content.content_id}):
                report.process_jobs_queued += 1

    def _enqueue(self, kind: JobKind, payload: dict) -> bool:
        try:
            return self.queue.enqueue(kind, payload) is not None
        except sqlite3.Error:
            self.logger.exception("Could not queue %s %s", kind.value, payload)
            return False

    def _remove(self, placement_id: int, touched: set[int]) -> bool:
        try:
            result = self.cleaner.remove_placement(placement_id)
        except sqlite3.Error:
            self.logger.exception("Could not remove placement %s", placement_id)
            return False
        touched.update(result.affected_series)
        return result.removed_placement

    def _write_report(self, operation_id: str, report: ReconcileReport) -> Path:
        report_dir = self.config.resolve_path("paths", "reports", default="data/reports")
        ensure_directories([report_dir])
        now = datetime.now(timezone.utc)
        payload = {"generated_at": now.isoformat(), "operation_id": operation_id}
        payload.update({key: value for key, value in asdict(report).items() if key != "report_path"})
        payload["mutations"] = report.mutations
        report_path = report_dir / f"reconcile_report_{now.strftime('%Y%m%d_%H%M%S_%f')}.json"
        report_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return report_path
