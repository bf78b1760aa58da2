from pathlib import Path

from conftest import write_file
from models import EpisodeAssociation, JobKind
from operations import OrphanCleaner


def _jobs(context) -> list[tuple[JobKind, dict]]:
    return [(job.kind, job.payload) for job in context.db_manager.list_jobs()]


def test_last_placement_removal_cascades(tmp_path: Path, make_context) -> None:
    context = make_context()
    store = context.store
    location = store.add_location("Library", str(tmp_path))
    content = store.add_content("AB01", 7)
    first = store.add_placement(location.location_id, "a.mkv", content.content_id)
    second = store.add_placement(location.location_id, "copy/a.mkv", content.content_id)
    store.save_associations("AB01", [EpisodeAssociation(series_id=4, series_name="Show", episode_id=41, episode_number=1)])
    cleaner = OrphanCleaner(context)

    partial = cleaner.remove_placement(first.placement_id)
    assert partial.removed_placement and not partial.removed_content
    assert store.get_content(content.content_id) is not None
    assert _jobs(context) == []

    final = cleaner.remove_placement(second.placement_id)
    assert final.removed_content
    assert final.affected_series == (4,)
    assert store.get_content(content.content_id) is None
    assert _jobs(context) == [
        (JobKind.UPDATE_SERIES_STATS, {"series_id": 4}),
        (JobKind.DELETE_EXTERNAL_REFERENCE, {"hash": "AB01", "size": 7}),
    ]
    assert not cleaner.remove_placement(second.placement_id).removed_placement


def test_delete_placement_and_file(tmp_path: Path, make_context) -> None:
    context = make_context()
    path = write_file(tmp_path / "lib" / "a.mkv")
    location = context.store.add_location("Library", str(tmp_path / "lib"))
    content = context.store.add_content("AB02", 4)
    placement = context.store.add_placement(location.location_id, "a.mkv", content.content_id)
    cleaner = OrphanCleaner(context)

    assert cleaner.delete_placement_and_file(placement.placement_id) == ""
    assert not path.exists()
    assert context.store.list_placements() == []
    assert cleaner.delete_placement_and_file(placement.placement_id).startswith("Could not find")
    operations = context.db_manager.list_file_operations(operation_id="cleanup")
    assert [row["action"] for row in operations] == ["delete"]


def test_delete_storage_location_keeps_files(tmp_path: Path, make_context) -> None:
    context = make_context()
    path = write_file(tmp_path / "lib" / "a.mkv")
    location = context.store.add_location("Library", str(tmp_path / "lib"))
    content = context.store.add_content("AB03", 4)
    context.store.add_placement(location.location_id, "a.mkv", content.content_id)
    cleaner = OrphanCleaner(context)

    assert cleaner.delete_storage_location(location.location_id) == ""
    assert path.exists()
    assert context.store.list_locations() == []
    assert context.store.list_content() == []
    assert cleaner.delete_storage_location(location.location_id) != ""


def test_set_ignored(make_context) -> None:
    context = make_context()
    content = context.store.add_content("AB04", 4)
    cleaner = OrphanCleaner(context)

    assert cleaner.set_ignored(content.content_id, True) == ""
    assert context.store.get_content(content.content_id).is_ignored
    assert cleaner.set_ignored(999, True) == "Could not find content record 999"
