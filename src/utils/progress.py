"""
Periodic progress reporting for the job queue and the catalog.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from models import utc_timestamp


@dataclass
class ProgressSnapshot:
    """Summary of current pipeline progress."""

    timestamp: str
    job_summary: dict[str, int]
    record_counts: dict[str, int]


class ProgressReporter:
    """Emit periodic progress summaries using a background thread."""

    def __init__(
        self,
        job_counts: Callable[[], dict[str, int]],
        record_counts: Callable[[], dict[str, int]],
        logger: Optional[logging.Logger] = None,
        interval_seconds: int = 30,
        enabled: bool = True,
    ) -> None:
        self.job_counts = job_counts
        self.record_counts = record_counts
        self.logger = logger or logging.getLogger("media_importer.performance")
        self.interval_seconds = max(interval_seconds, 5)
        self.enabled = enabled
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start background reporting if enabled."""
        if not self.enabled or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="progress-reporter", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop background reporting."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=self.interval_seconds + 5)
        self._thread = None

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            timestamp=utc_timestamp(),
            job_summary=self.job_counts(),
            record_counts=self.record_counts(),
        )

    def report(self) -> ProgressSnapshot:
        snapshot = self.snapshot()
        self._log_snapshot(snapshot)
        return snapshot

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.report()

    def _log_snapshot(self, snapshot: ProgressSnapshot) -> None:
        jobs = ", ".join(f"{status}:{count}" for status, count in sorted(snapshot.job_summary.items()))
        records = snapshot.record_counts
        self.logger.info(
            "Progress %s | locations=%s content=%s placements=%s jobs={%s}",
            snapshot.timestamp,
            records.get("locations", 0),
            records.get("content_records", 0),
            records.get("placements", 0),
            jobs,
        )
