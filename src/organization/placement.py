"""
Placement engine: rename a file by policy, then relocate it out of drop sources.

Phase A renames in place; phase B runs only when the rename succeeded or had
nothing to do, and only for files sitting in a drop source. Each phase is
retried after 750, 3000 and 5000 ms while the filesystem reports a transient
failure.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from filesystem import (
    FileSystem,
    FsStatus,
    failure_for,
    relative_to,
    same_path,
    sanitize_folder_name,
)
from models import (
    ContentRecord,
    EpisodeAssociation,
    FailureKind,
    OperationResult,
    Outcome,
    PlacementRecord,
    StorageLocation,
)
from operations.cleanup import OrphanCleaner
from orchestrator.context import PipelineContext
from organization.policies import PlacementContext
from organization.subtitles import companion_destination, find_companions

RETRY_DELAYS_MS = (750, 3000, 5000)
PLACEMENT_OPERATION = "placement"

Wait = Callable[[float], bool]


def _sleep(seconds: float) -> bool:
    time.sleep(seconds)
    return True


@dataclass(frozen=True)
class PlacementResult:
    """Outcome of both phases for one placement."""

    placement_id: int
    rename: OperationResult
    move: Optional[OperationResult] = None
    final_path: Optional[str] = None

    @property
    def outcome(self) -> OperationResult:
        """Single result for the job: the move when it ran, otherwise the rename."""
        if self.move is None:
            return self.rename
        return self.move


@dataclass(frozen=True)
class _FailedAttempt:
    action: str
    source_path: str
    destination_path: Optional[str]
    error: str
    size: Optional[int] = None


@dataclass(frozen=True)
class _Target:
    placement: PlacementRecord
    content: ContentRecord
    location: StorageLocation
    filesystem: FileSystem
    full_path: str


class PlacementEngine:
    """Apply naming and destination policies to a single placement."""

    def __init__(self, context: PipelineContext, cleaner: OrphanCleaner) -> None:
        self.context = context
        self.store = context.store
        self.policies = context.policies
        self.logger = context.logger
        self.movement_logger = context.movement_logger
        self.cleaner = cleaner
        config = context.config
        self.rename_enabled = bool(config.get("placement", "rename_enabled", default=True))
        self.move_enabled = bool(config.get("placement", "move_enabled", default=True))
        self.move_subtitles = bool(config.get("placement", "move_subtitles", default=True))
        self.dry_run = bool(config.get("placement", "dry_run", default=False))
        delays = config.get("placement", "retry_delays_ms", default=None) or RETRY_DELAYS_MS
        self.retry_delays = tuple(float(value) / 1000.0 for value in delays)

    def evaluate_and_apply(self, placement_id: int, wait: Optional[Wait] = None) -> PlacementResult:
        """Rename, then move when required; ``wait`` returns False to abort retries."""
        wait = wait or _sleep
        rename = self._with_retries("Rename", placement_id, self._rename, wait)
        if rename.outcome not in (Outcome.SUCCESS, Outcome.POLICY_DECLINED):
            return PlacementResult(placement_id, rename, None, self._current_path(placement_id))
        move = self._with_retries("Move", placement_id, self._move, wait)
        return PlacementResult(placement_id, rename, move, self._current_path(placement_id))

    def _with_retries(
        self,
        label: str,
        placement_id: int,
        action: Callable[[int, list[_FailedAttempt]], OperationResult],
        wait: Wait,
    ) -> OperationResult:
        """Run ``action`` until it stops asking for a retry; audit only the final failure."""
        failures: list[_FailedAttempt] = []
        result = action(placement_id, failures)
        for delay in self.retry_delays:
            if result.outcome != Outcome.RETRYABLE:
                break
            self.logger.info(
                "%s of placement %s failed (%s); retrying in %.2fs",
                label,
                placement_id,
                result.detail,
                delay,
            )
            if not wait(delay):
                return result
            failures.clear()
            result = action(placement_id, failures)
        if result.outcome == Outcome.RETRYABLE:
            self.logger.warning("%s of placement %s gave up: %s", label, placement_id, result.detail)
            for failure in failures:
                self._record_failure(failure)
        return result

    def _record_failure(self, failure: _FailedAttempt) -> None:
        self.movement_logger.error(
            "%s failed: %s -> %s (%s)",
            failure.action,
            failure.source_path,
            failure.destination_path,
            failure.error,
        )
        self.context.db_manager.record_file_operation(
            PLACEMENT_OPERATION,
            action=failure.action,
            source_path=failure.source_path,
            destination_path=failure.destination_path,
            status="failed",
            size=failure.size,
            error_message=failure.error,
        )

    # Phase A

    def _rename(self, placement_id: int, failures: list[_FailedAttempt]) -> OperationResult:
        if not self.rename_enabled:
            return OperationResult.declined("Renaming disabled")
        target = self._load(placement_id)
        if isinstance(target, OperationResult):
            return target
        missing = self._check_source(target)
        if missing is not None:
            return missing

        context = self._placement_context(target)
        new_name = self.policies.get_filename(context)
        if context.cancelled:
            return OperationResult.declined(f"Placement cancelled by policy: {target.full_path}")
        if not new_name:
            return OperationResult.declined(f"No new name for {target.full_path}")
        old_name = os.path.basename(target.full_path)
        if new_name.lower() == old_name.lower():
            return OperationResult.success(f"Already named {old_name}")
        if self.dry_run:
            self.movement_logger.info("[dry-run] Rename %s -> %s", target.full_path, new_name)
            return OperationResult.success(f"Dry run rename to {new_name}")

        renamed = target.filesystem.rename(target.full_path, new_name)
        if renamed.status == FsStatus.EXISTS:
            self.logger.info("Rename skipped, destination exists: %s", renamed.value)
            return OperationResult(
                Outcome.SUCCESS, f"Destination exists: {renamed.value}", FailureKind.DESTINATION_CONFLICT
            )
        if renamed.status == FsStatus.NOT_FOUND:
            self.cleaner.remove_placement(placement_id)
            return OperationResult.structural(renamed.error, FailureKind.SOURCE_NOT_FOUND)
        if not renamed.ok:
            self.movement_logger.info("Rename attempt failed: %s -> %s (%s)", target.full_path, new_name, renamed.error)
            failures.append(_FailedAttempt("rename", target.full_path, new_name, renamed.error))
            return OperationResult.retryable(renamed.error, failure_for(renamed.status))

        new_path = renamed.value
        self._repoint(target.placement, target.location, new_path)
        self.movement_logger.info("Renamed %s -> %s", target.full_path, new_path)
        self.context.db_manager.record_file_operation(
            PLACEMENT_OPERATION,
            action="rename",
            source_path=target.full_path,
            destination_path=new_path,
            status="completed",
            size=target.content.file_size,
        )
        if self.move_subtitles:
            self._carry_subtitles(target.filesystem, target.full_path, new_path)
        return OperationResult.success(new_path)

    # Phase B

    def _move(self, placement_id: int, failures: list[_FailedAttempt]) -> OperationResult:
        if not self.move_enabled:
            return OperationResult.declined("Moving disabled")
        target = self._load(placement_id)
        if isinstance(target, OperationResult):
            return target
        if not target.location.is_drop_source:
            return OperationResult.declined(f"Not in a drop source: {target.full_path}")
        missing = self._check_source(target)
        if missing is not None:
            return missing

        context = self._placement_context(target)
        destination = self._policy_destination(target, context)
        if context.cancelled:
            return OperationResult.declined(f"Placement cancelled by policy: {target.full_path}")
        if destination is None:
            destination = self._default_destination(target, context)
        if isinstance(destination, OperationResult):
            return destination
        dest_location, dest_dir = destination

        new_path = os.path.join(dest_dir, os.path.basename(target.full_path))
        if same_path(new_path, target.full_path):
            self.logger.info("File already at its destination: %s", target.full_path)
            return OperationResult.success(f"Already in place: {target.full_path}")

        existing = target.filesystem.resolve(new_path)
        if existing.ok:
            return self._delete_duplicate_source(target, new_path, failures)
        if existing.status != FsStatus.NOT_FOUND:
            return OperationResult.retryable(existing.error, failure_for(existing.status))

        if self.dry_run:
            self.movement_logger.info("[dry-run] Move %s -> %s", target.full_path, new_path)
            return OperationResult.success(f"Dry run move to {new_path}")

        created = target.filesystem.create_directory(dest_dir)
        if not created.ok:
            return OperationResult.retryable(created.error, failure_for(created.status))
        moved = target.filesystem.move(target.full_path, new_path)
        if moved.status == FsStatus.NOT_FOUND:
            self.cleaner.remove_placement(placement_id)
            return OperationResult.structural(moved.error, FailureKind.SOURCE_NOT_FOUND)
        if not moved.ok:
            self.movement_logger.info("Move attempt failed: %s -> %s (%s)", target.full_path, new_path, moved.error)
            failures.append(
                _FailedAttempt("move", target.full_path, new_path, moved.error, target.content.file_size)
            )
            return OperationResult.retryable(moved.error, failure_for(moved.status))

        self._repoint(target.placement, dest_location, new_path)
        self.movement_logger.info("Moved %s -> %s", target.full_path, new_path)
        self.context.db_manager.record_file_operation(
            PLACEMENT_OPERATION,
            action="move",
            source_path=target.full_path,
            destination_path=new_path,
            status="completed",
            size=target.content.file_size,
        )
        if self.move_subtitles:
            self._carry_subtitles(target.filesystem, target.full_path, new_path)
        self._prune(target)
        return OperationResult.success(new_path)

    def _delete_duplicate_source(
        self, target: _Target, existing_path: str, failures: list[_FailedAttempt]
    ) -> OperationResult:
        """The destination already holds this file name: drop the source copy instead."""
        if self.dry_run:
            self.movement_logger.info("[dry-run] Delete %s (exists at %s)", target.full_path, existing_path)
            return OperationResult(Outcome.SUCCESS, "Dry run duplicate delete", FailureKind.DESTINATION_CONFLICT)
        deleted = target.filesystem.delete(target.full_path)
        if deleted.status == FsStatus.NOT_FOUND:
            self.cleaner.remove_placement(target.placement.placement_id)
            return OperationResult.structural(deleted.error, FailureKind.SOURCE_NOT_FOUND)
        if not deleted.ok:
            self.movement_logger.info("Duplicate delete attempt failed: %s (%s)", target.full_path, deleted.error)
            failures.append(_FailedAttempt("delete_duplicate", target.full_path, existing_path, deleted.error))
            return OperationResult.retryable(deleted.error, failure_for(deleted.status))

        self.movement_logger.info("Deleted %s; destination already exists at %s", target.full_path, existing_path)
        self.context.db_manager.record_file_operation(
            PLACEMENT_OPERATION,
            action="delete_duplicate",
            source_path=target.full_path,
            destination_path=existing_path,
            status="completed",
            size=target.content.file_size,
        )
        self.cleaner.remove_placement(target.placement.placement_id)
        self._prune(target)
        return OperationResult(
            Outcome.SUCCESS,
            f"Destination exists, source removed: {existing_path}",
            FailureKind.DESTINATION_CONFLICT,
        )

    def _policy_destination(
        self, target: _Target, context: PlacementContext
    ) -> Union[None, OperationResult, tuple[StorageLocation, str]]:
        answer = self.policies.get_destination(context)
        if answer is None:
            return None
        location, relative_dir = answer
        if location.cloud_id != target.location.cloud_id:
            return OperationResult.fatal(
                f"Destination {location.name} is on a different cloud provider than {target.location.name}"
            )
        if self.context.filesystems.for_location(location) is None:
            return OperationResult.structural(f"Destination storage location offline: {location.name}")
        return location, os.path.join(location.root_path, relative_dir) if relative_dir else location.root_path

    def _default_destination(
        self, target: _Target, context: PlacementContext
    ) -> Union[OperationResult, tuple[StorageLocation, str]]:
        root = self._select_drop_destination(target)
        if root is None:
            return OperationResult.fatal(f"No drop destination available for {target.full_path}")
        if not context.associations:
            return OperationResult.declined(f"No series association for {target.full_path}")
        series = self.store.get_series(context.associations[0].series_id)
        if series is None:
            return OperationResult.declined(f"Series {context.associations[0].series_id} not in catalog")

        sibling = self._sibling_directory(target, root, series.series_id)
        if sibling is not None:
            return sibling

        folder = sanitize_folder_name(series.name)
        if not folder:
            return OperationResult.structural(f"Series name {series.name!r} is not a usable folder name")
        directory = os.path.join(root.root_path, folder)
        resolved = target.filesystem.resolve(directory)
        if resolved.ok and not resolved.value.is_dir:
            return OperationResult.structural(f"Destination is a file, not a folder: {directory}")
        return root, directory

    def _select_drop_destination(self, target: _Target) -> Optional[StorageLocation]:
        """First online drop destination with the same cloud id and room for the file."""
        for location in self.store.list_locations():
            if not location.is_drop_destination or location.is_drop_source:
                continue
            if location.cloud_id != target.location.cloud_id:
                continue
            filesystem = self.context.filesystems.for_location(location)
            if filesystem is None:
                continue
            if not filesystem.same_device(location.root_path, target.location.root_path):
                quota = filesystem.quota(location.root_path)
                if not quota.ok or quota.value < target.content.file_size:
                    self.logger.info("Not enough free space on %s for %s", location.name, target.full_path)
                    continue
            return location
        return None

    def _sibling_directory(
        self, target: _Target, root: StorageLocation, series_id: int
    ) -> Optional[tuple[StorageLocation, str]]:
        """Folder holding other episodes of the series, newest episode first."""
        current_dir = os.path.dirname(target.full_path)
        episodes = sorted(self.store.list_episodes(series_id), key=lambda item: item.air_date or "", reverse=True)
        for episode in episodes:
            xrefs = self.store.list_xrefs_for_episode(episode.episode_id)
            if len({xref.series_id for xref in xrefs}) > 1:
                continue
            for xref in xrefs:
                if xref.content_hash == target.content.hash:
                    continue
                for other in self.store.list_content_by_hash(xref.content_hash):
                    for placement in self.store.list_placements_for_content(other.content_id):
                        location = self.store.get_location(placement.location_id)
                        if location is None or location.is_drop_source:
                            continue
                        if location.cloud_id != root.cloud_id:
                            continue
                        directory = os.path.dirname(os.path.join(location.root_path, placement.relative_path))
                        if same_path(directory, current_dir):
                            continue
                        resolved = target.filesystem.resolve(directory)
                        if not resolved.ok or not resolved.value.is_dir:
                            continue
                        return location, directory
        return None

    # Shared helpers

    def _load(self, placement_id: int) -> Union[OperationResult, _Target]:
        placement = self.store.get_placement(placement_id)
        if placement is None:
            return OperationResult.structural(f"Placement {placement_id} no longer exists")
        location = self.store.get_location(placement.location_id)
        if location is None:
            self.cleaner.remove_placement(placement_id)
            return OperationResult.structural(f"Storage location {placement.location_id} no longer exists")
        content = self.store.get_content(placement.content_id)
        if content is None:
            self.cleaner.remove_placement(placement_id)
            return OperationResult.structural(f"Content record {placement.content_id} no longer exists")
        filesystem = self.context.filesystems.for_location(location)
        if filesystem is None:
            return OperationResult.structural(f"Storage location offline: {location.name}")
        full_path = os.path.join(location.root_path, placement.relative_path)
        return _Target(placement, content, location, filesystem, full_path)

    def _check_source(self, target: _Target) -> Optional[OperationResult]:
        resolved = target.filesystem.resolve(target.full_path)
        if resolved.ok:
            return None
        if resolved.status == FsStatus.NOT_FOUND:
            self.logger.info("Source missing, removing placement %s: %s", target.placement.placement_id, target.full_path)
            self.cleaner.remove_placement(target.placement.placement_id)
            return OperationResult.structural(f"Source not found: {target.full_path}", FailureKind.SOURCE_NOT_FOUND)
        return OperationResult.retryable(resolved.error, failure_for(resolved.status))

    def _placement_context(self, target: _Target) -> PlacementContext:
        return PlacementContext(
            placement=target.placement,
            content=target.content,
            location=target.location,
            full_path=target.full_path,
            associations=self._associations(target.content.hash),
            locations=self.store.list_locations(),
        )

    def _associations(self, content_hash: str) -> list[EpisodeAssociation]:
        associations = []
        for xref in self.store.list_xrefs(content_hash):
            series = self.store.get_series(xref.series_id)
            episode = self.store.get_episode(xref.episode_id)
            if series is None or episode is None:
                continue
            associations.append(
                EpisodeAssociation(
                    series_id=series.series_id,
                    series_name=series.name,
                    episode_id=episode.episode_id,
                    episode_number=episode.number,
                    air_date=episode.air_date,
                    episode_title=episode.title,
                    group_id=series.group_id,
                )
            )
        return associations

    def _repoint(self, placement: PlacementRecord, location: StorageLocation, new_path: str) -> None:
        """Point a placement at its new path, dropping any stale record already there."""
        relative_path = relative_to(new_path, location.root_path)
        stale = self.store.get_placement_by_path(location.location_id, relative_path)
        if stale is not None and stale.placement_id != placement.placement_id:
            self.cleaner.remove_placement(stale.placement_id)
        self.store.update_placement(replace(placement, location_id=location.location_id, relative_path=relative_path))

    def _carry_subtitles(self, filesystem: FileSystem, old_video: str, new_video: str) -> None:
        for subtitle in find_companions(filesystem, old_video):
            destination = companion_destination(subtitle, old_video, new_video)
            if same_path(subtitle, destination):
                continue
            if filesystem.resolve(destination).ok:
                result = filesystem.delete(subtitle)
                action = "delete"
            else:
                result = filesystem.move(subtitle, destination)
                action = "move"
            if result.ok:
                self.movement_logger.info("Subtitle %s: %s -> %s", action, subtitle, destination)
            else:
                self.movement_logger.warning("Subtitle %s failed: %s (%s)", action, subtitle, result.error)

    def _prune(self, target: _Target) -> None:
        removed = prune_empty_directories(target.filesystem, target.location.root_path)
        if removed:
            self.logger.debug("Removed %s empty folders under %s", removed, target.location.root_path)

    def _current_path(self, placement_id: int) -> Optional[str]:
        placement = self.store.get_placement(placement_id)
        if placement is None:
            return None
        return self.store.full_path(placement)


def prune_empty_directories(filesystem: FileSystem, root: str) -> int:
    """Delete empty folders below ``root``; the root itself is kept."""
    removed = 0

    def visit(directory: str, is_root: bool) -> bool:
        nonlocal removed
        listing = filesystem.list_directory(directory)
        if not listing.ok:
            return False
        empty = True
        for entry in listing.value:
            if entry.is_dir and visit(entry.path, False):
                continue
            empty = False
        if empty and not is_root and filesystem.delete(directory).ok:
            removed += 1
            return True
        return False

    visit(root, True)
    return removed
