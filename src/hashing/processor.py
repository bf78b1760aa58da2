"""
Metadata association for identified content records.
"""

from __future__ import annotations

from models import JobKind, OperationResult
from orchestrator.context import PipelineContext


class FileProcessor:
    """Ask the metadata provider about a content hash and store the answer."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.store = context.store
        self.queue = context.queue
        self.logger = context.logger
        self.move_after_process = bool(
            context.config.get("placement", "move_after_process", default=True)
        )
        self.download_images = bool(context.config.get("processing", "download_images", default=True))

    def process(self, content_id: int) -> OperationResult:
        content = self.store.get_content(content_id)
        if content is None:
            return OperationResult.structural(f"Content record {content_id} no longer exists")
        if not content.hash:
            return OperationResult.structural(f"Content record {content_id} has no hash")
        if self.context.provider is None:
            return OperationResult.declined("No metadata provider configured")

        associations = self.context.provider.lookup_by_hash(content.hash, content.file_size)
        if associations is None:
            self.logger.info("No metadata match yet for %s", content.hash)
            return OperationResult.declined(f"No match for {content.hash}")

        touched = self.store.save_associations(content.hash, associations)
        for series_id in sorted(touched):
            self.queue.enqueue(JobKind.UPDATE_SERIES_STATS, {"series_id": series_id})
        if self.download_images and self.context.catalog is not None:
            for series_id in sorted({item.series_id for item in associations}):
                self.queue.enqueue(JobKind.DOWNLOAD_IMAGE, {"series_id": series_id})

        if self.move_after_process and associations:
            for placement in self.store.list_placements_for_content(content_id):
                location = self.store.get_location(placement.location_id)
                if location is not None and location.is_drop_source:
                    self.queue.enqueue(JobKind.MOVE_FILE, {"placement_id": placement.placement_id})
        return OperationResult.success(f"{len(associations)} associations")
