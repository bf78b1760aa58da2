import json
import sqlite3
from dataclasses import replace
from pathlib import Path

from conftest import write_file
from models import EpisodeAssociation, JobKind
from operations import OrphanCleaner
from reconciliation import ReconciliationEngine


def insert_raw_content(db_path: Path, content_hash: str, size: int) -> int:
    conn = sqlite3.connect(db_path)
    cursor = conn.execute(
        "INSERT INTO content_records (hash, file_size, is_ignored, created_at, updated_at) VALUES (?, ?, 0, '', '')",
        (content_hash, size),
    )
    conn.commit()
    conn.close()
    return int(cursor.lastrowid)


def build_messy_catalog(tmp_path: Path, context) -> dict:
    lib = tmp_path / "lib"
    write_file(lib / "a.mkv")
    write_file(lib / "b.mkv")
    store = context.store
    library = store.add_location("Library", str(lib))
    offline = store.add_location("Offline", str(tmp_path / "unplugged"))

    first = store.add_content("AAAA", 4)
    duplicate_id = insert_raw_content(store.db_path, "AAAA", 4)
    store.reload()
    store.add_placement(library.location_id, "a.mkv", first.content_id)
    store.add_placement(library.location_id, "b.mkv", duplicate_id)
    store.add_placement(library.location_id, "./a.mkv", duplicate_id)

    missing = store.add_content("BBBB", 4)
    store.add_placement(library.location_id, "gone.mkv", missing.content_id)
    empty = store.add_content("", 0)
    store.add_placement(library.location_id, "./b.mkv", empty.content_id)
    unlinked = store.add_content("CCCC", 4)
    store.add_placement(offline.location_id, "x.mkv", unlinked.content_id)

    store.save_associations("AAAA", [EpisodeAssociation(series_id=1, series_name="Show", episode_id=11, episode_number=1)])
    store.save_associations("DDDD", [EpisodeAssociation(series_id=1, series_name="Show", episode_id=12, episode_number=2)])
    return {"survivor": duplicate_id, "loser": first.content_id, "unlinked": unlinked.content_id}


def test_reconcile_repairs_catalog(tmp_path: Path, make_context) -> None:
    context = make_context()
    ids = build_messy_catalog(tmp_path, context)
    engine = ReconciliationEngine(context, OrphanCleaner(context))

    report = engine.reconcile()

    assert report.missing_placements_removed == 1
    assert report.offline_locations_skipped == 1
    assert report.empty_hash_records_removed == 1
    assert report.duplicate_hash_groups_merged == 1
    assert report.duplicate_records_removed == 1
    assert report.duplicate_placements_removed == 1
    assert report.orphaned_xrefs_removed == 1
    assert report.process_jobs_queued == 1
    assert report.mutations == 5

    store = context.store
    assert [content.content_id for content in store.list_content_by_hash("AAAA")] == [ids["survivor"]]
    assert store.get_content(ids["loser"]) is None
    assert sorted(p.relative_path for p in store.list_placements_for_content(ids["survivor"])) == ["a.mkv", "b.mkv"]
    assert store.get_content(ids["unlinked"]) is not None
    assert store.list_xrefs("DDDD") == []

    jobs = [(job.kind, job.payload) for job in context.db_manager.list_jobs()]
    assert (JobKind.UPDATE_SERIES_STATS, {"series_id": 1}) in jobs
    assert (JobKind.PROCESS_FILE, {"content_id": ids["unlinked"]}) in jobs
    assert (JobKind.DELETE_EXTERNAL_REFERENCE, {"hash": "BBBB", "size": 4}) in jobs

    saved = json.loads(Path(report.report_path).read_text(encoding="utf-8"))
    assert saved["mutations"] == 5
    assert Path(report.report_path).parent == tmp_path / "reports"


def test_reconcile_is_idempotent(tmp_path: Path, make_context) -> None:
    context = make_context({"reconcile": {"write_report": False}})
    build_messy_catalog(tmp_path, context)
    engine = ReconciliationEngine(context, OrphanCleaner(context))

    engine.reconcile()
    placements = context.store.list_placements()
    content = context.store.list_content()
    second = engine.reconcile()

    assert second.mutations == 0
    assert second.report_path is None
    assert context.store.list_placements() == placements
    assert context.store.list_content() == content


def test_merge_prefers_lowest_id_on_tie(tmp_path: Path, make_context) -> None:
    lib = tmp_path / "lib"
    write_file(lib / "one.mkv")
    write_file(lib / "two.mkv")
    context = make_context({"reconcile": {"write_report": False}})
    store = context.store
    location = store.add_location("Library", str(lib))
    first = store.add_content("EEEE", 4)
    second_id = insert_raw_content(store.db_path, "EEEE", 4)
    store.reload()
    store.update_content(replace(store.get_content(second_id), md5="ABC"))
    store.add_placement(location.location_id, "one.mkv", first.content_id)
    store.add_placement(location.location_id, "two.mkv", second_id)

    ReconciliationEngine(context, OrphanCleaner(context)).reconcile()

    merged = store.list_content_by_hash("EEEE")
    assert [record.content_id for record in merged] == [first.content_id]
    assert merged[0].md5 == "ABC"
    assert store.count_placements(first.content_id) == 2


def test_database_error_skips_only_that_placement(tmp_path: Path, make_context, monkeypatch) -> None:
    context = make_context({"reconcile": {"write_report": False}})
    (tmp_path / "lib").mkdir()
    store = context.store
    library = store.add_location("Library", str(tmp_path / "lib"))
    first = store.add_content("FFFF", 4)
    stuck = store.add_placement(library.location_id, "stuck.mkv", first.content_id)
    second = store.add_content("GGGG", 4)
    gone = store.add_placement(library.location_id, "gone.mkv", second.content_id)
    cleaner = OrphanCleaner(context)
    remove_placement = cleaner.remove_placement

    def flaky_remove(placement_id):
        if placement_id == stuck.placement_id:
            raise sqlite3.OperationalError("database is locked")
        return remove_placement(placement_id)

    monkeypatch.setattr(cleaner, "remove_placement", flaky_remove)
    report = ReconciliationEngine(context, cleaner).reconcile()

    assert report.missing_placements_removed == 1
    assert store.get_placement(gone.placement_id) is None
    assert store.get_placement(stuck.placement_id) is not None
