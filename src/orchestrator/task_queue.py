"""
Persistent, deduplicating command queue with a bounded worker pool.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from config import AppConfig
from database import DatabaseManager
from models import (
    DEFAULT_PRIORITIES,
    JOB_FAILED,
    Job,
    JobKind,
    OperationResult,
    Outcome,
)


@dataclass
class JobContext:
    """Per-job cancellation token and cancellable wait."""

    job: Job
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``; return False if the job was cancelled."""
        return not self.cancel_event.wait(seconds)


JobHandler = Callable[[Job, JobContext], OperationResult]


class CommandQueue:
    """Queue runner that persists jobs and dispatches them to registered handlers."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        logger: Optional[logging.Logger] = None,
        config: Optional[AppConfig] = None,
        activity_tracker: Optional[object] = None,
    ) -> None:
        self.db_manager = db_manager
        self.logger = logger or logging.getLogger("media_importer")
        self.config = config
        self.activity_tracker = activity_tracker
        self.worker_count = max(int(self._setting("workers", default=2)), 1)
        self.poll_interval = float(self._setting("poll_interval_seconds", default=1.0))
        self._handlers: dict[JobKind, JobHandler] = {}
        self._priorities = self._load_priorities()
        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self._wake = threading.Event()
        self._workers: list[threading.Thread] = []
        self._active: dict[int, threading.Event] = {}
        self._active_lock = threading.Lock()

    def register(self, kind: JobKind, handler: JobHandler) -> None:
        """Register the handler for a job kind."""
        self._handlers[kind] = handler

    def priority_for(self, kind: JobKind) -> int:
        return self._priorities.get(kind, 5)

    def enqueue(
        self,
        kind: JobKind,
        payload: Optional[dict[str, Any]] = None,
        priority: Optional[int] = None,
    ) -> Optional[int]:
        """Persist a job; return its id, or None when an identical job is queued."""
        payload = payload or {}
        if priority is None:
            priority = self.priority_for(kind)
        job_id = self.db_manager.insert_job(kind, payload, priority)
        if job_id is None:
            self.logger.debug("Job already queued: %s %s", kind.value, payload)
            return None
        self.logger.debug("Queued job %s: %s %s", job_id, kind.value, payload)
        self._wake.set()
        return job_id

    def claim(self) -> Optional[Job]:
        """Claim the next runnable job, or None when idle or paused."""
        if self._paused.is_set():
            return None
        return self.db_manager.claim_next_job()

    def complete(self, job: Job) -> None:
        self.db_manager.delete_job(job.job_id)

    def fail(self, job: Job, error: str, retry: bool = True) -> str:
        """Record a failed attempt; return the job's resulting status."""
        max_attempts = self._max_attempts()
        if retry and (max_attempts <= 0 or job.attempts < max_attempts):
            delay = self._retry_delay_seconds(job.attempts)
            self.db_manager.requeue_job(job.job_id, error, delay)
            self.logger.warning(
                "Job %s (%s) failed: %s. Retrying in %.1fs (%s/%s)",
                job.job_id,
                job.kind.value,
                error,
                delay,
                job.attempts,
                max_attempts if max_attempts else "∞",
            )
            return "pending"
        self.db_manager.mark_job_failed(job.job_id, error)
        self.logger.error("Job %s (%s) parked as failed: %s", job.job_id, job.kind.value, error)
        return JOB_FAILED

    def execute(self, job: Job) -> OperationResult:
        """Run one claimed job through its handler and settle it in the queue."""
        handler = self._handlers.get(job.kind)
        if handler is None:
            detail = f"No handler registered for {job.kind.value}"
            self.fail(job, detail, retry=False)
            return OperationResult.fatal(detail)

        context = JobContext(job=job)
        with self._active_lock:
            self._active[job.job_id] = context.cancel_event
            if self._stop_event.is_set():
                context.cancel_event.set()
        if self.activity_tracker is not None:
            self.activity_tracker.touch(f"{job.kind.value} #{job.job_id}")
        try:
            result = handler(job, context)
        except Exception as exc:
            self.logger.exception("Job %s (%s) raised", job.job_id, job.kind.value)
            result = OperationResult.retryable(f"{type(exc).__name__}: {exc}")
        finally:
            with self._active_lock:
                self._active.pop(job.job_id, None)

        if context.cancelled and result.outcome != Outcome.SUCCESS:
            self.db_manager.requeue_job(job.job_id, "cancelled")
            self.logger.info("Job %s (%s) cancelled; returned to queue", job.job_id, job.kind.value)
        elif result.outcome == Outcome.RETRYABLE:
            self.fail(job, result.detail or "retryable failure")
        elif result.outcome == Outcome.FATAL:
            self.fail(job, result.detail or "fatal failure", retry=False)
        else:
            if result.outcome != Outcome.SUCCESS and result.detail:
                self.logger.info("Job %s (%s) %s: %s", job.job_id, job.kind.value, result.outcome.value, result.detail)
            self.complete(job)
        if self.activity_tracker is not None:
            self.activity_tracker.touch()
        return result

    def run_pending(self, limit: Optional[int] = None) -> int:
        """Drain runnable jobs on the calling thread; return how many ran."""
        executed = 0
        while limit is None or executed < limit:
            if self._stop_event.is_set():
                break
            job = self.claim()
            if job is None:
                break
            self.execute(job)
            executed += 1
        return executed

    def start(self) -> None:
        """Recover interrupted jobs and start worker threads."""
        if self._workers:
            return
        recovered = self.db_manager.reset_running_jobs()
        if recovered:
            self.logger.info("Recovered %s interrupted jobs", recovered)
        self._stop_event.clear()
        for index in range(self.worker_count):
            worker = threading.Thread(target=self._worker_loop, name=f"queue-worker-{index + 1}", daemon=True)
            worker.start()
            self._workers.append(worker)
        self.logger.info("Command queue started with %s workers", self.worker_count)

    def stop(self, timeout: float = 30.0) -> None:
        """Cancel running jobs and join the workers."""
        self._stop_event.set()
        self._wake.set()
        with self._active_lock:
            for cancel_event in self._active.values():
                cancel_event.set()
        for worker in self._workers:
            worker.join(timeout=timeout)
        self._workers = []

    def pause(self) -> None:
        self._paused.set()
        self.logger.info("Command queue paused")

    def resume(self) -> None:
        self._paused.clear()
        self._wake.set()
        self.logger.info("Command queue resumed")

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def retry_failed(self, job_id: int) -> bool:
        """Return a failed job to the queue with a fresh attempt count."""
        requeued = self.db_manager.retry_failed_job(job_id)
        if requeued:
            self.logger.info("Failed job %s re-queued", job_id)
            self._wake.set()
        return requeued

    def retry_all_failed(self) -> int:
        return sum(1 for job in self.list_failed() if self.retry_failed(job.job_id))

    def list_failed(self) -> list[Job]:
        return self.db_manager.list_jobs(status=JOB_FAILED)

    def counts(self) -> dict[str, int]:
        return self.db_manager.job_status_summary()

    def has_work(self) -> bool:
        summary = self.counts()
        return bool(summary.get("pending", 0) or summary.get("running", 0))

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            job = self.claim()
            if job is None:
                self._wake.wait(self.poll_interval)
                self._wake.clear()
                continue
            self.execute(job)

    def _setting(self, key: str, default: Any) -> Any:
        if self.config is None:
            return default
        return self.config.get("queue", key, default=default)

    def _max_attempts(self) -> int:
        return int(self._setting("max_attempts", default=3))

    def _retry_delay_seconds(self, attempt: int) -> float:
        base = float(self._setting("retry_delay_seconds", default=30))
        backoff = float(self._setting("retry_backoff", default=2))
        if base <= 0:
            return 0.0
        return base * (backoff ** max(attempt - 1, 0))

    def _load_priorities(self) -> dict[JobKind, int]:
        priorities = dict(DEFAULT_PRIORITIES)
        overrides = self._setting("priorities", default={}) or {}
        for name, value in overrides.items():
            try:
                priorities[JobKind(name)] = int(value)
            except ValueError:
                self.logger.warning("Ignoring priority for unknown job kind: %s", name)
        return priorities
