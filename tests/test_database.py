from pathlib import Path

import pytest

from database import DatabaseManager, RecordStore
from models import EpisodeAssociation, JobKind


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "catalog": root / "catalog.sqlite",
        "state": root / "state.sqlite",
    }


def test_jobs_dedup_and_claim_order(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    hash_id = manager.insert_job(JobKind.HASH_FILE, {"path": "/a.mkv"}, 5)
    assert hash_id is not None
    assert manager.insert_job(JobKind.HASH_FILE, {"path": "/a.mkv"}, 5) is None
    move_id = manager.insert_job(JobKind.MOVE_FILE, {"placement_id": 1}, 3)
    second_move = manager.insert_job(JobKind.MOVE_FILE, {"placement_id": 2}, 3)

    claimed = [manager.claim_next_job() for _ in range(3)]
    assert [job.job_id for job in claimed] == [move_id, second_move, hash_id]
    assert all(job.attempts == 1 for job in claimed)
    assert manager.claim_next_job() is None

    # A running job still blocks a duplicate.
    assert manager.insert_job(JobKind.HASH_FILE, {"path": "/a.mkv"}, 5) is None
    manager.delete_job(hash_id)
    assert manager.insert_job(JobKind.HASH_FILE, {"path": "/a.mkv"}, 5) is not None

    manager.close()


def test_requeue_delay_and_failed_retry(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    job_id = manager.insert_job(JobKind.RECONCILE, {}, 2)
    job = manager.claim_next_job()
    manager.requeue_job(job.job_id, "busy", delay_seconds=3600)
    assert manager.claim_next_job() is None
    assert manager.get_job(job_id).last_error == "busy"

    manager.mark_job_failed(job_id, "gave up")
    assert manager.job_status_summary() == {"failed": 1}

    # An identical active job makes the failed copy redundant.
    active_id = manager.insert_job(JobKind.RECONCILE, {}, 2)
    assert active_id is not None
    assert manager.retry_failed_job(job_id) is False
    assert manager.get_job(job_id) is None
    assert manager.job_status_summary() == {"pending": 1}

    manager.close()


def test_parking_replaces_older_failed_copy(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    first = manager.insert_job(JobKind.MOVE_FILE, {"placement_id": 3}, 3)
    manager.mark_job_failed(first, "no destination")
    other = manager.insert_job(JobKind.MOVE_FILE, {"placement_id": 4}, 3)
    manager.mark_job_failed(other, "no destination")
    second = manager.insert_job(JobKind.MOVE_FILE, {"placement_id": 3}, 3)
    manager.mark_job_failed(second, "still no destination")

    failed = manager.list_jobs(status="failed")
    assert [job.job_id for job in failed] == [other, second]
    assert manager.get_job(second).last_error == "still no destination"

    manager.close()


def test_reset_running_jobs_after_restart(tmp_path: Path) -> None:
    db_paths = build_db_paths(tmp_path)
    manager = DatabaseManager(db_paths)
    manager.initialize()
    manager.insert_job(JobKind.SCAN_NEW_FILES, {}, 2)
    manager.claim_next_job()
    manager.close()

    reopened = DatabaseManager(db_paths)
    assert reopened.reset_running_jobs() == 1
    job = reopened.claim_next_job()
    assert job is not None
    assert job.kind == JobKind.SCAN_NEW_FILES
    assert job.attempts == 2
    reopened.close()


def test_scheduled_tasks_and_audit(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    assert manager.get_scheduled_task("reconcile") is None
    manager.touch_scheduled_task("reconcile", "job 1", "2024-01-01T00:00:00+00:00")
    task = manager.get_scheduled_task("reconcile")
    assert task.last_run == "2024-01-01T00:00:00+00:00"
    assert task.details == "job 1"

    operation_id = manager.start_operation("reconcile")
    manager.record_file_operation(operation_id, "move", "/a.mkv", "/b/a.mkv", "completed", size=10)
    manager.complete_operation(operation_id)
    operations = manager.list_file_operations(operation_id=operation_id)
    assert operations[0]["destination_path"] == "/b/a.mkv"
    assert operations[0]["size"] == 10
    assert manager.list_recent_operations(limit=1)[0]["operation_id"] == operation_id

    manager.close()


def test_record_store_identity_and_paths(tmp_path: Path) -> None:
    store = RecordStore(build_db_paths(tmp_path)["catalog"])
    store.initialize()

    location = store.add_location("Library", str(tmp_path / "lib"))
    content = store.add_content("abcdef", 100)
    assert store.add_content("ABCDEF", 100).content_id == content.content_id
    assert store.get_content_by_hash("AbCdEf").content_id == content.content_id

    placement = store.add_placement(location.location_id, "Show/Episode 01.mkv", content.content_id)
    found = store.get_placement_by_path(location.location_id, "show/EPISODE 01.mkv")
    assert found is not None
    assert found.placement_id == placement.placement_id
    assert store.full_path(placement) == str(tmp_path / "lib" / "Show" / "Episode 01.mkv")

    store.close()
    reopened = RecordStore(build_db_paths(tmp_path)["catalog"])
    reopened.initialize()
    assert reopened.counts() == {"locations": 1, "content_records": 1, "placements": 1}
    reopened.close()


def test_record_store_transaction_rolls_back_cache(tmp_path: Path) -> None:
    store = RecordStore(build_db_paths(tmp_path)["catalog"])
    store.initialize()
    location = store.add_location("Library", str(tmp_path))

    with pytest.raises(RuntimeError):
        with store.transaction():
            content = store.add_content("FEED", 10)
            store.add_placement(location.location_id, "a.mkv", content.content_id)
            raise RuntimeError("boom")

    assert store.get_content_by_hash("FEED") is None
    assert store.get_placement_by_path(location.location_id, "a.mkv") is None
    store.reload()
    assert store.counts()["content_records"] == 0
    store.close()


def test_series_stats_count_available_episodes(tmp_path: Path) -> None:
    store = RecordStore(build_db_paths(tmp_path)["catalog"])
    store.initialize()
    location = store.add_location("Library", str(tmp_path))
    content = store.add_content("AA11", 10)
    store.add_placement(location.location_id, "show - 01.mkv", content.content_id)

    touched = store.save_associations(
        "AA11",
        [EpisodeAssociation(series_id=7, series_name="Show", episode_id=71, episode_number=1)],
    )
    store.save_associations(
        "BB22",
        [EpisodeAssociation(series_id=7, series_name="Show", episode_id=72, episode_number=2)],
    )

    assert touched == {7}
    series = store.update_series_stats(7)
    assert series.episode_count == 2
    assert series.available_episodes == 1
    assert series.missing_episodes == 1
    assert store.update_series_stats(999) is None
    store.close()
