import threading
from pathlib import Path

from conftest import build_db_paths, write_config
from database import DatabaseManager
from models import JOB_FAILED, JobKind, OperationResult, Outcome
from orchestrator import CommandQueue


def build_queue(tmp_path: Path, max_attempts: int = 3) -> CommandQueue:
    config = write_config(tmp_path, {"queue": {"max_attempts": max_attempts}})
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()
    return CommandQueue(manager, config=config)


def test_enqueue_is_deduplicated(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)

    first = queue.enqueue(JobKind.HASH_FILE, {"path": "/media/a.mkv"})
    assert first is not None
    assert queue.enqueue(JobKind.HASH_FILE, {"path": "/media/a.mkv"}) is None
    assert queue.enqueue(JobKind.HASH_FILE, {"path": "/media/b.mkv"}) is not None
    assert queue.counts() == {"pending": 2}

    queue.db_manager.close()


def test_jobs_run_by_priority_then_fifo(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)
    seen: list[tuple[str, dict]] = []

    def record(job, ctx):
        seen.append((job.kind.value, job.payload))
        return OperationResult.success()

    for kind in (JobKind.HASH_FILE, JobKind.MOVE_FILE, JobKind.RECONCILE):
        queue.register(kind, record)
    queue.enqueue(JobKind.HASH_FILE, {"path": "/1"})
    queue.enqueue(JobKind.HASH_FILE, {"path": "/2"})
    queue.enqueue(JobKind.MOVE_FILE, {"placement_id": 4})
    queue.enqueue(JobKind.RECONCILE)

    assert queue.run_pending() == 4
    assert seen == [
        ("Reconcile", {}),
        ("MoveFile", {"placement_id": 4}),
        ("HashFile", {"path": "/1"}),
        ("HashFile", {"path": "/2"}),
    ]
    assert queue.counts() == {}

    queue.db_manager.close()


def test_retryable_failures_park_after_max_attempts(tmp_path: Path) -> None:
    queue = build_queue(tmp_path, max_attempts=2)
    calls = []

    def flaky(job, ctx):
        calls.append(job.attempts)
        raise OSError("disk busy")

    queue.register(JobKind.HASH_FILE, flaky)
    job_id = queue.enqueue(JobKind.HASH_FILE, {"path": "/locked.mkv"})

    queue.run_pending()

    assert calls == [1, 2]
    failed = queue.list_failed()
    assert [job.job_id for job in failed] == [job_id]
    assert "disk busy" in failed[0].last_error

    # Retrying gives a fresh attempt count.
    queue.register(JobKind.HASH_FILE, lambda job, ctx: OperationResult.success())
    assert queue.retry_all_failed() == 1
    assert queue.run_pending() == 1
    assert queue.counts() == {}

    queue.db_manager.close()


def test_outcomes_settle_jobs(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)
    queue.register(JobKind.MOVE_FILE, lambda job, ctx: OperationResult.fatal("no destination"))
    queue.register(JobKind.PROCESS_FILE, lambda job, ctx: OperationResult.declined("no match"))
    queue.register(JobKind.HASH_FILE, lambda job, ctx: OperationResult.structural("gone"))

    queue.enqueue(JobKind.MOVE_FILE, {"placement_id": 1})
    queue.enqueue(JobKind.PROCESS_FILE, {"content_id": 1})
    queue.enqueue(JobKind.HASH_FILE, {"path": "/gone.mkv"})
    queue.enqueue(JobKind.SCAN_NEW_FILES)

    results = []
    while True:
        job = queue.claim()
        if job is None:
            break
        results.append((job.kind, queue.execute(job).outcome))

    assert results == [
        (JobKind.SCAN_NEW_FILES, Outcome.FATAL),
        (JobKind.MOVE_FILE, Outcome.FATAL),
        (JobKind.PROCESS_FILE, Outcome.POLICY_DECLINED),
        (JobKind.HASH_FILE, Outcome.STRUCTURAL_MISMATCH),
    ]
    failed = {job.kind for job in queue.list_failed()}
    assert failed == {JobKind.SCAN_NEW_FILES, JobKind.MOVE_FILE}
    assert queue.counts() == {JOB_FAILED: 2}

    queue.db_manager.close()


def test_pause_and_persistence(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)
    queue.enqueue(JobKind.SCAN_DROP_SOURCES)
    queue.pause()
    assert queue.claim() is None
    assert queue.has_work()
    queue.resume()
    assert not queue.paused
    queue.pause()
    queue.db_manager.close()

    reopened = build_queue(tmp_path)
    ran = []
    reopened.register(JobKind.SCAN_DROP_SOURCES, lambda job, ctx: ran.append(job.kind) or OperationResult.success())
    assert reopened.run_pending() == 1
    assert ran == [JobKind.SCAN_DROP_SOURCES]
    reopened.db_manager.close()


def test_workers_drain_queue_and_stop(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)
    done = threading.Event()

    def handler(job, ctx):
        done.set()
        return OperationResult.success()

    queue.register(JobKind.RECONCILE, handler)
    queue.start()
    try:
        queue.enqueue(JobKind.RECONCILE)
        assert done.wait(10)
    finally:
        queue.stop(timeout=5)
    assert not queue.has_work()
    queue.db_manager.close()


def test_job_context_wait_is_cancellable(tmp_path: Path) -> None:
    queue = build_queue(tmp_path)
    waits = []

    def handler(job, ctx):
        ctx.cancel_event.set()
        waits.append(ctx.wait(5))
        return OperationResult.retryable("interrupted")

    queue.register(JobKind.MOVE_FILE, handler)
    job_id = queue.enqueue(JobKind.MOVE_FILE, {"placement_id": 9})
    queue.run_pending(limit=1)

    assert waits == [False]
    job = queue.db_manager.get_job(job_id)
    assert job.status == "pending"
    assert job.last_error == "cancelled"
    queue.db_manager.close()
