import sqlite3
from pathlib import Path

from conftest import write_file
from discovery import FolderScanner, VideoClassifier
from models import JobKind
from operations import OrphanCleaner


def _queued(context, kind: JobKind) -> list[dict]:
    return [job.payload for job in context.db_manager.list_jobs() if job.kind == kind]


def test_scan_queues_only_new_videos(tmp_path: Path, make_context) -> None:
    root = tmp_path / "incoming"
    write_file(root / "show.mkv")
    write_file(root / "notes.txt", b"plain text")
    write_file(root / ".hidden" / "secret.mkv")
    write_file(root / "$RECYCLE.BIN" / "old.mkv")
    write_file(root / "sample.part")

    context = make_context({"scan": {"exclude_patterns": ["*.part"]}})
    location = context.store.add_location("Incoming", str(root), is_drop_source=True)
    scanner = FolderScanner(context, OrphanCleaner(context))

    result = scanner.scan_location(location.location_id)

    assert result.files_found == 2
    assert result.videos_found == 1
    assert _queued(context, JobKind.HASH_FILE) == [{"path": str(root / "show.mkv")}]


def test_scan_sniffs_unknown_extensions(tmp_path: Path, make_context) -> None:
    root = tmp_path / "library"
    write_file(root / "episode.bin", b"\x1a\x45\xdf\xa3" + b"\x00" * 32)
    write_file(root / "archive.bin", b"PK\x03\x04" + b"\x00" * 32)

    context = make_context()
    context.store.add_location("Library", str(root))
    result = FolderScanner(context, OrphanCleaner(context)).scan_new_files()

    assert result.videos_found == 1
    assert _queued(context, JobKind.HASH_FILE) == [{"path": str(root / "episode.bin")}]


def test_known_drop_source_files_queue_placement(tmp_path: Path, make_context) -> None:
    root = tmp_path / "incoming"
    write_file(root / "known.mkv")
    context = make_context()
    location = context.store.add_location("Incoming", str(root), is_drop_source=True)
    content = context.store.add_content("AB12", 4)
    placement = context.store.add_placement(location.location_id, "known.mkv", content.content_id)
    scanner = FolderScanner(context, OrphanCleaner(context))

    new_only = scanner.scan_new_files()
    assert new_only.videos_found == 0
    assert _queued(context, JobKind.MOVE_FILE) == []

    scanner.scan_all_drop_sources()
    assert _queued(context, JobKind.MOVE_FILE) == [{"placement_id": placement.placement_id}]
    assert _queued(context, JobKind.HASH_FILE) == []


def test_offline_location_is_skipped(tmp_path: Path, make_context) -> None:
    online = tmp_path / "online"
    write_file(online / "a.mkv")
    context = make_context()
    context.store.add_location("Offline", str(tmp_path / "unplugged"), is_drop_source=True)
    context.store.add_location("Online", str(online), is_drop_source=True)

    result = FolderScanner(context, OrphanCleaner(context)).scan_all_drop_sources()

    assert result.videos_found == 1


def test_scan_new_files_drops_placements_of_removed_locations(tmp_path: Path, make_context) -> None:
    root = tmp_path / "gone"
    root.mkdir()
    context = make_context()
    location = context.store.add_location("Gone", str(root))
    content = context.store.add_content("CD34", 4)
    context.store.add_placement(location.location_id, "a.mkv", content.content_id)
    context.store.delete_location(location.location_id)

    FolderScanner(context, OrphanCleaner(context)).scan_new_files()

    assert context.store.list_placements() == []
    assert context.store.get_content(content.content_id) is None
    assert _queued(context, JobKind.DELETE_EXTERNAL_REFERENCE) == [{"hash": "CD34", "size": 4}]


def test_classifier_extension_rules() -> None:
    classifier = VideoClassifier(video_extensions=["mkv", ".MP4"], sniff_unknown=False)

    assert classifier.is_video("/x/show.MKV")
    assert classifier.is_video("/x/clip.mp4")
    assert not classifier.is_video("/x/show.avi")
    assert not classifier.is_video("/x/show.srt", read_head=lambda path, size: b"\x1a\x45\xdf\xa3")


def test_database_error_skips_only_that_file(tmp_path: Path, make_context, monkeypatch) -> None:
    root = tmp_path / "incoming"
    write_file(root / "a.mkv")
    write_file(root / "b.mkv")
    context = make_context()
    location = context.store.add_location("Incoming", str(root))
    scanner = FolderScanner(context, OrphanCleaner(context))
    enqueue = context.queue.enqueue

    def flaky_enqueue(kind, payload=None, priority=None):
        if payload and payload.get("path", "").endswith("a.mkv"):
            raise sqlite3.OperationalError("database is locked")
        return enqueue(kind, payload, priority)

    monkeypatch.setattr(context.queue, "enqueue", flaky_enqueue)
    result = scanner.scan_location(location.location_id)

    assert result.files_found == 2
    assert result.videos_found == 1
    assert _queued(context, JobKind.HASH_FILE) == [{"path": str(root / "b.mkv")}]
