"""
Job handlers: route each job kind to the component that performs it.
"""

from __future__ import annotations

from discovery import FolderScanner
from hashing import FileProcessor, IdentityEngine
from models import Job, JobKind, OperationResult, Outcome
from operations import OrphanCleaner
from organization import PlacementEngine
from reconciliation import ReconciliationEngine

from .context import PipelineContext
from .task_queue import CommandQueue, JobContext


class JobHandlers:
    """Bind pipeline components to the command queue."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.store = context.store
        self.logger = context.logger
        self.cleaner = OrphanCleaner(context)
        self.scanner = FolderScanner(context, self.cleaner)
        self.identity = IdentityEngine(context, self.cleaner)
        self.processor = FileProcessor(context)
        self.placement = PlacementEngine(context, self.cleaner)
        self.reconciler = ReconciliationEngine(context, self.cleaner)

    def register_all(self, queue: CommandQueue) -> None:
        queue.register(JobKind.HASH_FILE, self.hash_file)
        queue.register(JobKind.PROCESS_FILE, self.process_file)
        queue.register(JobKind.MOVE_FILE, self.move_file)
        queue.register(JobKind.UPDATE_SERIES_STATS, self.update_series_stats)
        queue.register(JobKind.SCAN_LOCATION, self.scan_location)
        queue.register(JobKind.SCAN_DROP_SOURCES, self.scan_drop_sources)
        queue.register(JobKind.SCAN_NEW_FILES, self.scan_new_files)
        queue.register(JobKind.RECONCILE, self.reconcile)
        queue.register(JobKind.DOWNLOAD_IMAGE, self.download_image)
        queue.register(JobKind.SYNC_EXTERNAL_CATALOG, self.sync_external_catalog)
        queue.register(JobKind.DELETE_EXTERNAL_REFERENCE, self.delete_external_reference)
        queue.register(JobKind.RECALCULATE_GROUP_FILTER, self.recalculate_group_filter)

    def hash_file(self, job: Job, ctx: JobContext) -> OperationResult:
        return self.identity.hash_file(
            str(job.payload["path"]),
            force=bool(job.payload.get("force", False)),
            cancel_event=ctx.cancel_event,
        )

    def process_file(self, job: Job, ctx: JobContext) -> OperationResult:
        return self.processor.process(int(job.payload["content_id"]))

    def move_file(self, job: Job, ctx: JobContext) -> OperationResult:
        """Place one file; a file still locked after the retry tiers waits for the next scan."""
        placement_id = int(job.payload["placement_id"])
        result = self.placement.evaluate_and_apply(placement_id, wait=ctx.wait).outcome
        if result.outcome == Outcome.RETRYABLE and not ctx.cancelled:
            self.logger.warning("Placement %s left in place until the next scan: %s", placement_id, result.detail)
            return OperationResult.declined(result.detail, result.failure)
        return result

    def update_series_stats(self, job: Job, ctx: JobContext) -> OperationResult:
        series_id = int(job.payload["series_id"])
        series = self.store.update_series_stats(series_id)
        if series is None:
            return OperationResult.structural(f"Series {series_id} not in catalog")
        return OperationResult.success(
            f"{series.available_episodes}/{series.episode_count} episodes available"
        )

    def scan_location(self, job: Job, ctx: JobContext) -> OperationResult:
        result = self.scanner.scan_location(int(job.payload["location_id"]), ctx.cancel_event)
        return OperationResult.success(f"{result.files_found} files, {result.videos_found} new videos")

    def scan_drop_sources(self, job: Job, ctx: JobContext) -> OperationResult:
        result = self.scanner.scan_all_drop_sources(ctx.cancel_event)
        return OperationResult.success(f"{result.files_found} files, {result.videos_found} new videos")

    def scan_new_files(self, job: Job, ctx: JobContext) -> OperationResult:
        result = self.scanner.scan_new_files(ctx.cancel_event)
        return OperationResult.success(f"{result.files_found} files, {result.videos_found} new videos")

    def reconcile(self, job: Job, ctx: JobContext) -> OperationResult:
        report = self.reconciler.reconcile(ctx.cancel_event)
        return OperationResult.success(f"{report.mutations} record changes")

    # External catalog hooks; without a catalog these jobs complete as no-ops.

    def download_image(self, job: Job, ctx: JobContext) -> OperationResult:
        series_id = int(job.payload["series_id"])
        return self._call_catalog(job, lambda catalog: catalog.download_image(series_id))

    def sync_external_catalog(self, job: Job, ctx: JobContext) -> OperationResult:
        return self._call_catalog(job, lambda catalog: catalog.sync_catalog())

    def delete_external_reference(self, job: Job, ctx: JobContext) -> OperationResult:
        content_hash = str(job.payload["hash"])
        size = int(job.payload.get("size") or 0)
        return self._call_catalog(job, lambda catalog: catalog.delete_reference(content_hash, size))

    def recalculate_group_filter(self, job: Job, ctx: JobContext) -> OperationResult:
        return self._call_catalog(job, lambda catalog: catalog.recalculate_group_filter())

    def _call_catalog(self, job: Job, call) -> OperationResult:
        catalog = self.context.catalog
        if catalog is None:
            self.logger.debug("No external catalog configured; skipping %s", job.kind.value)
            return OperationResult.success("no external catalog")
        if call(catalog):
            return OperationResult.success()
        return OperationResult.retryable(f"External catalog call failed for {job.kind.value}")
