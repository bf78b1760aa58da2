"""
Content identity engine: hash files and attach them to content records.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Optional

from filesystem import FileSystem, FsStatus, failure_for, locate
from hashing.hasher import ContentDigests, Hasher
from models import ContentRecord, FailureKind, JobKind, OperationResult, StorageLocation
from operations.cleanup import OrphanCleaner
from orchestrator.context import PipelineContext


class IdentityEngine:
    """Compute content hashes and record identities for placements."""

    def __init__(self, context: PipelineContext, cleaner: OrphanCleaner) -> None:
        self.context = context
        self.store = context.store
        self.logger = context.logger
        self.cleaner = cleaner
        self.hasher = Hasher(
            extra_hashes=context.config.get("hashing", "extra_hashes", default=[]) or [],
            chunk_size=int(context.config.get("hashing", "chunk_bytes", default=4 * 1024 * 1024)),
        )
        self.skip_placeholders = bool(
            context.config.get("hashing", "skip_cloud_placeholders", default=True)
        )

    def identify(self, full_path: str, cancel_event: Optional[threading.Event] = None) -> Optional[str]:
        """Return the content hash of a file, or None if it cannot be read."""
        located = self._locate(full_path)
        if located is None:
            return None
        _, filesystem = located
        digests, _ = self._digest(filesystem, full_path, cancel_event)
        return digests.sha256 if digests else None

    def hash_file(
        self,
        full_path: str,
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> OperationResult:
        """Hash a file, record its identity, and queue metadata processing."""
        located = self._locate(full_path)
        if located is None:
            return OperationResult.structural(f"Not inside an online storage location: {full_path}")
        (location, relative_path), filesystem = located
        existing = self.store.get_placement_by_path(location.location_id, relative_path)

        resolved = filesystem.resolve(full_path)
        if resolved.status == FsStatus.NOT_FOUND:
            if existing is not None:
                self.cleaner.remove_placement(existing.placement_id)
            return OperationResult.structural(f"File not found: {full_path}", FailureKind.SOURCE_NOT_FOUND)
        if not resolved.ok:
            return OperationResult.retryable(resolved.error, failure_for(resolved.status))

        if existing is not None and not force:
            current = self.store.get_content(existing.content_id)
            if current is not None and current.hash and current.file_size == resolved.value.size:
                self.context.queue.enqueue(JobKind.PROCESS_FILE, {"content_id": current.content_id})
                return OperationResult.success(current.hash)

        if self.skip_placeholders and filesystem.is_placeholder(full_path):
            self.logger.warning("Skipping cloud placeholder (not available locally): %s", full_path)
            return OperationResult.declined(f"Cloud placeholder: {full_path}")

        if self.context.monitor is not None:
            self.context.monitor.throttle(cancel_event)
        digests, failure = self._digest(filesystem, full_path, cancel_event)
        if digests is None:
            return failure

        content = self.record_identity(location, relative_path, digests)
        self.logger.debug("Hashed %s -> %s", full_path, digests.sha256)
        self.context.queue.enqueue(JobKind.PROCESS_FILE, {"content_id": content.content_id})
        return OperationResult.success(digests.sha256)

    def record_identity(
        self, location: StorageLocation, relative_path: str, digests: ContentDigests
    ) -> ContentRecord:
        """Attach a placement for ``relative_path`` to the content record of its hash."""
        existing = self.store.get_placement_by_path(location.location_id, relative_path)
        if existing is not None:
            current = self.store.get_content(existing.content_id)
            if current is not None and current.hash == digests.sha256:
                return self._fill_digests(current, digests)
            # Content changed under a known path: detach it from the old record first.
            self.logger.info("Content changed for %s; re-identifying", relative_path)
            self.cleaner.remove_placement(existing.placement_id)

        with self.store.transaction():
            content = self.store.get_content_by_hash(digests.sha256)
            if content is None:
                content = self.store.add_content(
                    digests.sha256,
                    digests.size,
                    md5=digests.md5,
                    sha1=digests.sha1,
                    crc32=digests.crc32,
                )
            else:
                content = self._fill_digests(content, digests)
            if self.store.get_placement_by_path(location.location_id, relative_path) is None:
                self.store.add_placement(location.location_id, relative_path, content.content_id)
        return content

    def _fill_digests(self, content: ContentRecord, digests: ContentDigests) -> ContentRecord:
        updated = replace(
            content,
            md5=content.md5 or digests.md5,
            sha1=content.sha1 or digests.sha1,
            crc32=content.crc32 or digests.crc32,
            file_size=content.file_size or digests.size,
        )
        if updated == content:
            return content
        return self.store.update_content(updated)

    def _locate(self, full_path: str) -> Optional[tuple[tuple[StorageLocation, str], FileSystem]]:
        located = locate(self.store.list_locations(), full_path)
        if located is None:
            return None
        filesystem = self.context.filesystems.for_location(located[0])
        if filesystem is None:
            return None
        return located, filesystem

    def _digest(
        self,
        filesystem: FileSystem,
        full_path: str,
        cancel_event: Optional[threading.Event],
    ) -> tuple[Optional[ContentDigests], OperationResult]:
        opened = filesystem.open_read(full_path)
        if opened.status == FsStatus.NOT_FOUND:
            return None, OperationResult.structural(opened.error, FailureKind.SOURCE_NOT_FOUND)
        if not opened.ok:
            return None, OperationResult.retryable(opened.error, failure_for(opened.status))
        cancelled = cancel_event.is_set if cancel_event is not None else None
        try:
            with opened.value as handle:
                digests = self.hasher.compute(handle, cancelled)
        except OSError as exc:
            self.logger.warning("Read error while hashing %s: %s", full_path, exc)
            return None, OperationResult.retryable(str(exc), FailureKind.FILESYSTEM_ERROR)
        if digests is None:
            return None, OperationResult.retryable(f"Hashing cancelled: {full_path}")
        return digests, OperationResult.success(digests.sha256)
