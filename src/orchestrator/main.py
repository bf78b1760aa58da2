"""
Primary orchestration entry point for the media import pipeline.
"""

from __future__ import annotations

import argparse
import os
import sys
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional

from config import AppConfig, ensure_directories
from database import DatabaseManager, RecordStore
from filesystem import FileSystemRegistry, LocalFileSystem
from metadata import StaticMetadataProvider
from models import ConfigurationError, JobKind
from organization import build_policy_registry
from utils import ActivityTracker, ProgressReporter, ResourceMonitor, StallMonitor, setup_logging

from .context import PipelineContext
from .handlers import JobHandlers
from .scheduled import ScheduledTasks
from .task_queue import CommandQueue

# (scheduled task name, job kind, config key, default interval in hours)
RECURRING_JOBS = (
    ("scan_new_files", JobKind.SCAN_NEW_FILES, "scan_new_files_hours", 1.0),
    ("scan_drop_sources", JobKind.SCAN_DROP_SOURCES, "scan_drop_sources_hours", 0.25),
    ("reconcile", JobKind.RECONCILE, "reconcile_hours", 24.0),
    ("sync_external_catalog", JobKind.SYNC_EXTERNAL_CATALOG, "sync_external_catalog_hours", 24.0),
    ("recalculate_group_filter", JobKind.RECALCULATE_GROUP_FILTER, "recalculate_group_filter_hours", 24.0),
)


class Orchestrator:
    """Wire the pipeline together and drive the command queue."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.db_paths = self._build_db_paths()
        self.loggers = setup_logging(
            self.config.resolve_path("paths", "logs", default="logs"),
            level=self.config.get("logging", "level", default="INFO"),
        )
        self.logger = self.loggers["main"]
        self.logger.info("Python executable: %s", sys.executable)
        self.db_manager = DatabaseManager(self.db_paths)
        self.store = RecordStore(self.db_paths["catalog"])
        self.resource_monitor = ResourceMonitor.from_config(self.config)
        self.activity_tracker = ActivityTracker(
            min_interval_seconds=float(
                self.config.get("safety", "activity_min_interval_seconds", default=2.0)
            )
        )
        self.queue = CommandQueue(
            self.db_manager,
            logger=self.logger,
            config=self.config,
            activity_tracker=self.activity_tracker,
        )
        self.filesystems = FileSystemRegistry(
            default=LocalFileSystem(
                follow_symlinks=bool(self.config.get("scan", "follow_symlinks", default=False)),
                logger=self.logger,
            ),
            logger=self.logger,
        )
        self.context = PipelineContext(
            config=self.config,
            store=self.store,
            db_manager=self.db_manager,
            queue=self.queue,
            filesystems=self.filesystems,
            policies=build_policy_registry(self.config, self.logger),
            provider=self._load_provider(),
            monitor=self.resource_monitor,
            logger=self.logger,
            movement_logger=self.loggers["movement"],
            performance_logger=self.loggers["performance"],
        )
        self.handlers = JobHandlers(self.context)
        self.handlers.register_all(self.queue)
        self.scheduled = ScheduledTasks(self.db_manager)
        self.stall_monitor = StallMonitor(
            tracker=self.activity_tracker,
            logger=self.logger,
            warning_seconds=float(self.config.get("safety", "stall_warning_seconds", default=600)),
            abort_seconds=float(self.config.get("safety", "stall_abort_seconds", default=0)),
            check_interval_seconds=float(
                self.config.get("safety", "stall_check_interval_seconds", default=30)
            ),
            is_busy=self.queue.has_work,
        )
        self.progress_reporter = ProgressReporter(
            self.queue.counts,
            self.store.counts,
            logger=self.loggers["performance"],
            interval_seconds=int(self.config.get("progress", "interval_seconds", default=30)),
            enabled=bool(self.config.get("progress", "enabled", default=True)),
        )
        self.tick_seconds = float(self.config.get("schedule", "tick_seconds", default=60))
        self._stop_event = threading.Event()

    def initialize(self) -> None:
        """Create databases and directories, then seed configured storage locations."""
        self._ensure_paths()
        self.db_manager.initialize()
        self.store.initialize()
        self._seed_locations()

    def run(self, once: bool = False) -> None:
        """Run the queue until stopped, or drain it once with ``once``."""
        self.initialize()
        self.activity_tracker.touch("startup")
        self.stall_monitor.start()
        self.progress_reporter.start()
        try:
            if once:
                self.run_once()
                return
            self.queue.start()
            while not self._stop_event.is_set():
                self.enqueue_due_tasks()
                self._stop_event.wait(self.tick_seconds)
        except KeyboardInterrupt:
            self.logger.info("Interrupted; shutting down.")
        finally:
            self.queue.stop()
            self.progress_reporter.stop()
            self.stall_monitor.stop()
            self.progress_reporter.report()
            self.store.close()
            self.db_manager.close()

    def run_once(self) -> int:
        """Queue a scan of every location and drain the queue on this thread."""
        recovered = self.db_manager.reset_running_jobs()
        if recovered:
            self.logger.info("Recovered %s interrupted jobs", recovered)
        self.queue.enqueue(JobKind.SCAN_NEW_FILES)
        self.queue.enqueue(JobKind.SCAN_DROP_SOURCES)
        executed = self.queue.run_pending()
        self.logger.info("Single pass finished: %s jobs executed", executed)
        return executed

    def stop(self) -> None:
        self._stop_event.set()

    def enqueue_due_tasks(self) -> list[JobKind]:
        """Queue each recurring job whose interval has elapsed."""
        queued = []
        for name, kind, key, default_hours in RECURRING_JOBS:
            hours = float(self.config.get("schedule", key, default=default_hours))
            if hours <= 0:
                continue
            if not self.scheduled.due(name, timedelta(hours=hours)):
                continue
            job_id = self.queue.enqueue(kind)
            self.scheduled.mark_run(name, details=f"job {job_id}" if job_id else "already queued")
            queued.append(kind)
        return queued

    def retry_failed(self) -> int:
        count = self.queue.retry_all_failed()
        self.logger.info("Re-queued %s failed jobs", count)
        return count

    def _seed_locations(self) -> None:
        entries = self.config.get("storage_locations", default=[]) or []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name") or not entry.get("root_path"):
                raise ConfigurationError(f"storage_locations entries need name and root_path: {entry!r}")
            root_path = Path(str(entry["root_path"])).expanduser()
            if not root_path.is_absolute():
                root_path = (self.config.root_dir / root_path).resolve()
            location = self.store.ensure_location(
                str(entry["name"]),
                str(root_path),
                cloud_id=entry.get("cloud_id"),
                is_drop_source=bool(entry.get("drop_source", False)),
                is_drop_destination=bool(entry.get("drop_destination", False)),
            )
            self.logger.info(
                "Storage location %s: %s (drop source=%s, drop destination=%s)",
                location.name,
                location.root_path,
                location.is_drop_source,
                location.is_drop_destination,
            )

    def _load_provider(self) -> Optional[StaticMetadataProvider]:
        mapping = self.config.get("metadata", "static_file", default=None)
        if not mapping:
            return None
        path = self.config.resolve_path("metadata", "static_file")
        if not path.exists():
            self.logger.warning("Metadata file not found: %s", path)
            return None
        return StaticMetadataProvider.from_yaml(path)

    def _build_db_paths(self) -> dict[str, Path]:
        """Resolve database file paths from configuration."""
        return {
            "catalog": self.config.resolve_path("databases", "catalog", default="data/catalog.sqlite"),
            "state": self.config.resolve_path("databases", "state", default="data/state.sqlite"),
        }

    def _ensure_paths(self) -> None:
        ensure_directories(
            [
                self.config.resolve_path("paths", "logs", default="logs"),
                self.config.resolve_path("paths", "reports", default="data/reports"),
                self.db_paths["catalog"].parent,
                self.db_paths["state"].parent,
            ]
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Media ingestion and placement pipeline")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--once", action="store_true", help="Scan all locations, drain the queue, then exit")
    parser.add_argument("--reconcile", action="store_true", help="Run a reconciliation sweep and exit")
    parser.add_argument("--retry-failed", action="store_true", help="Re-queue every failed job and exit")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    config = AppConfig.load(args.config)
    orchestrator = Orchestrator(config)
    if args.retry_failed or args.reconcile:
        orchestrator.initialize()
        try:
            if args.retry_failed:
                orchestrator.retry_failed()
            if args.reconcile:
                report = orchestrator.handlers.reconciler.reconcile()
                orchestrator.logger.info("Reconcile report: %s", report.report_path or "not written")
        finally:
            orchestrator.store.close()
            orchestrator.db_manager.close()
        return
    orchestrator.run(once=args.once or os.environ.get("MEDIA_IMPORTER_RUN_ONCE") == "1")


if __name__ == "__main__":
    main()
