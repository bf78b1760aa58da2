import logging
from pathlib import Path

from conftest import write_file
from filesystem import FsResult, FsStatus, LocalFileSystem
from models import EpisodeAssociation, FailureKind, JobKind, Outcome
from operations import OrphanCleaner
from orchestrator.handlers import JobHandlers
from organization import PlacementEngine, prune_empty_directories

TEMPLATE = {"placement": {"filename_template": "{series_name} - {episode_number:02d}{ext}"}}


class BusyFileSystem(LocalFileSystem):
    """Local backend whose renames (or moves) always report a locked file."""

    def __init__(self, cloud_id: str, busy_moves: bool = False) -> None:
        super().__init__(cloud_id=cloud_id)
        self.busy_moves = busy_moves
        self.rename_calls = 0
        self.move_calls = 0

    def rename(self, path: str, new_name: str) -> FsResult:
        self.rename_calls += 1
        if self.busy_moves:
            return super().rename(path, new_name)
        return FsResult.failure(FsStatus.BUSY, f"{path} is locked")

    def move(self, source: str, destination: str) -> FsResult:
        self.move_calls += 1
        if not self.busy_moves:
            return super().move(source, destination)
        return FsResult.failure(FsStatus.BUSY, f"{source} is locked")


class FixedDestination:
    def __init__(self, location, relative_dir: str = "") -> None:
        self.location = location
        self.relative_dir = relative_dir

    def get_filename(self, context):
        return None

    def get_destination(self, context):
        return self.location, self.relative_dir


def setup_episode(tmp_path: Path, context, relative_path: str = "ep01.mkv", cloud_id=None):
    """Drop-source file for episode 1 of series 5, plus an empty library."""
    incoming = tmp_path / "incoming"
    library = tmp_path / "library"
    source = write_file(incoming / relative_path, b"episode one")
    library.mkdir(parents=True, exist_ok=True)
    store = context.store
    drop = store.add_location("Incoming", str(incoming), cloud_id=cloud_id, is_drop_source=True)
    store.add_location("Library", str(library), cloud_id=cloud_id, is_drop_destination=True)
    content = store.add_content("AAAA", 11)
    placement = store.add_placement(drop.location_id, relative_path, content.content_id)
    store.save_associations(
        "AAAA",
        [
            EpisodeAssociation(
                series_id=5,
                series_name="Example Show",
                episode_id=51,
                episode_number=1,
                air_date="2020-01-01",
            )
        ],
    )
    return source, placement


def build_engine(context) -> PlacementEngine:
    return PlacementEngine(context, OrphanCleaner(context))


def test_rename_then_move_carries_subtitles(tmp_path: Path, make_context) -> None:
    context = make_context(TEMPLATE)
    source, placement = setup_episode(tmp_path, context, "batch/ep01.mkv")
    write_file(tmp_path / "incoming" / "batch" / "ep01.en.srt", b"1\n")

    result = build_engine(context).evaluate_and_apply(placement.placement_id, wait=lambda seconds: True)

    target_dir = tmp_path / "library" / "Example Show"
    assert result.rename.outcome == Outcome.SUCCESS
    assert result.move.outcome == Outcome.SUCCESS
    assert result.final_path == str(target_dir / "Example Show - 01.mkv")
    assert (target_dir / "Example Show - 01.mkv").read_bytes() == b"episode one"
    assert (target_dir / "Example Show - 01.en.srt").exists()
    assert not source.exists()
    assert not (tmp_path / "incoming" / "batch").exists()
    assert (tmp_path / "incoming").is_dir()

    moved = context.store.get_placement(placement.placement_id)
    assert context.store.get_location(moved.location_id).name == "Library"
    assert moved.relative_path == "Example Show/Example Show - 01.mkv"
    actions = [row["action"] for row in context.db_manager.list_file_operations(operation_id="placement")]
    assert sorted(actions) == ["move", "rename"]


def test_move_prefers_folder_of_existing_episodes(tmp_path: Path, make_context) -> None:
    context = make_context()
    source, placement = setup_episode(tmp_path, context)
    store = context.store
    library = store.get_location_by_name("Library")
    write_file(tmp_path / "library" / "Shows" / "Example Show (2019)" / "ep02.mkv")
    other = store.add_content("BBBB", 4)
    store.add_placement(library.location_id, "Shows/Example Show (2019)/ep02.mkv", other.content_id)
    store.save_associations(
        "BBBB",
        [EpisodeAssociation(series_id=5, series_name="Example Show", episode_id=52, episode_number=2, air_date="2020-01-08")],
    )

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.rename.outcome == Outcome.POLICY_DECLINED
    assert result.move.outcome == Outcome.SUCCESS
    assert (tmp_path / "library" / "Shows" / "Example Show (2019)" / "ep01.mkv").exists()
    assert not source.exists()


def test_existing_destination_deletes_source(tmp_path: Path, make_context) -> None:
    context = make_context({"placement": {"rename_enabled": False}})
    source, placement = setup_episode(tmp_path, context)
    library = context.store.get_location_by_name("Library")
    kept = write_file(tmp_path / "library" / "Example Show" / "ep01.mkv", b"episode one")
    context.store.add_placement(library.location_id, "Example Show/ep01.mkv", placement.content_id)

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.move.outcome == Outcome.SUCCESS
    assert result.move.failure == FailureKind.DESTINATION_CONFLICT
    assert not source.exists()
    assert kept.exists()
    assert context.store.get_placement(placement.placement_id) is None
    assert [p.relative_path for p in context.store.list_placements()] == ["Example Show/ep01.mkv"]
    assert result.final_path is None


def test_transient_rename_failures_retry_then_skip_move(tmp_path: Path, make_context) -> None:
    context = make_context(TEMPLATE)
    busy = BusyFileSystem(cloud_id="busy")
    context.filesystems.register("busy", busy)
    source, placement = setup_episode(tmp_path, context, cloud_id="busy")
    waits: list[float] = []

    result = build_engine(context).evaluate_and_apply(
        placement.placement_id, wait=lambda seconds: waits.append(seconds) or True
    )

    assert waits == [0.75, 3.0, 5.0]
    assert busy.rename_calls == 4
    assert result.rename.outcome == Outcome.RETRYABLE
    assert result.rename.failure == FailureKind.FILESYSTEM_BUSY
    assert result.move is None
    assert result.outcome.outcome == Outcome.RETRYABLE
    assert source.exists()
    failed = context.db_manager.list_file_operations(operation_id="placement")
    assert [(row["action"], row["status"]) for row in failed] == [("rename", "failed")]


def test_transient_move_failures_use_same_retry_tiers(tmp_path: Path, make_context, caplog) -> None:
    context = make_context({"placement": {"rename_enabled": False}})
    busy = BusyFileSystem(cloud_id="busy", busy_moves=True)
    context.filesystems.register("busy", busy)
    source, placement = setup_episode(tmp_path, context, cloud_id="busy")
    waits: list[float] = []

    with caplog.at_level(logging.INFO, logger="media_importer"):
        result = build_engine(context).evaluate_and_apply(
            placement.placement_id, wait=lambda seconds: waits.append(seconds) or True
        )

    assert waits == [0.75, 3.0, 5.0]
    assert busy.move_calls == 4
    assert result.rename.outcome == Outcome.POLICY_DECLINED
    assert result.move.outcome == Outcome.RETRYABLE
    assert result.move.failure == FailureKind.FILESYSTEM_BUSY
    assert source.exists()
    assert context.store.get_placement(placement.placement_id) == placement
    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
    failed = context.db_manager.list_file_operations(operation_id="placement")
    assert [(row["action"], row["status"]) for row in failed] == [("move", "failed")]


def test_locked_file_waits_for_next_scan(tmp_path: Path, make_context) -> None:
    context = make_context({"placement": {**TEMPLATE["placement"], "retry_delays_ms": [1, 1, 1]}})
    busy = BusyFileSystem(cloud_id="busy")
    context.filesystems.register("busy", busy)
    source, placement = setup_episode(tmp_path, context, cloud_id="busy")
    JobHandlers(context).register_all(context.queue)

    for _ in range(3):
        assert context.queue.enqueue(JobKind.MOVE_FILE, {"placement_id": placement.placement_id}) is not None
        assert context.queue.run_pending() == 1

    assert busy.rename_calls == 12
    assert context.queue.counts() == {}
    assert source.exists()


def test_unplaceable_file_keeps_one_failed_job(tmp_path: Path, make_context) -> None:
    context = make_context()
    write_file(tmp_path / "incoming" / "ep01.mkv")
    drop = context.store.add_location("Incoming", str(tmp_path / "incoming"), is_drop_source=True)
    content = context.store.add_content("AAAA", 4)
    placement = context.store.add_placement(drop.location_id, "ep01.mkv", content.content_id)
    JobHandlers(context).register_all(context.queue)

    for _ in range(3):
        context.queue.enqueue(JobKind.MOVE_FILE, {"placement_id": placement.placement_id})
        context.queue.run_pending()

    failed = context.queue.list_failed()
    assert len(failed) == 1
    assert "No drop destination" in failed[0].last_error
    assert context.queue.counts() == {"failed": 1}


def test_cancelled_wait_stops_retries(tmp_path: Path, make_context) -> None:
    context = make_context(TEMPLATE)
    busy = BusyFileSystem(cloud_id="busy")
    context.filesystems.register("busy", busy)
    _, placement = setup_episode(tmp_path, context, cloud_id="busy")

    result = build_engine(context).evaluate_and_apply(placement.placement_id, wait=lambda seconds: False)

    assert busy.rename_calls == 1
    assert result.rename.outcome == Outcome.RETRYABLE


def test_no_drop_destination_is_fatal(tmp_path: Path, make_context) -> None:
    context = make_context()
    source = write_file(tmp_path / "incoming" / "ep01.mkv")
    drop = context.store.add_location("Incoming", str(tmp_path / "incoming"), is_drop_source=True)
    content = context.store.add_content("AAAA", 4)
    placement = context.store.add_placement(drop.location_id, "ep01.mkv", content.content_id)

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.move.outcome == Outcome.FATAL
    assert source.exists()


def test_policy_destination_on_other_cloud_is_fatal(tmp_path: Path, make_context) -> None:
    context = make_context()
    _, placement = setup_episode(tmp_path, context)
    elsewhere = context.store.add_location("Remote", str(tmp_path / "remote"), cloud_id="other-cloud")
    context.policies.register("fixed", FixedDestination(elsewhere, "Shows"))

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.move.outcome == Outcome.FATAL


def test_move_onto_itself_is_a_no_op(tmp_path: Path, make_context) -> None:
    context = make_context()
    source, placement = setup_episode(tmp_path, context)
    drop = context.store.get_location_by_name("Incoming")
    context.policies.register("fixed", FixedDestination(drop))

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.move.outcome == Outcome.SUCCESS
    assert source.exists()
    assert context.store.get_placement(placement.placement_id) == placement


def test_missing_source_removes_placement(tmp_path: Path, make_context) -> None:
    context = make_context(TEMPLATE)
    source, placement = setup_episode(tmp_path, context)
    source.unlink()

    result = build_engine(context).evaluate_and_apply(placement.placement_id)

    assert result.rename.outcome == Outcome.STRUCTURAL_MISMATCH
    assert result.rename.failure == FailureKind.SOURCE_NOT_FOUND
    assert result.move is None
    assert context.store.get_placement(placement.placement_id) is None


def test_prune_keeps_root(tmp_path: Path) -> None:
    root = tmp_path / "root"
    (root / "a" / "b").mkdir(parents=True)
    write_file(root / "keep" / "file.mkv")

    removed = prune_empty_directories(LocalFileSystem(), str(root))

    assert removed == 2
    assert root.is_dir()
    assert (root / "keep" / "file.mkv").exists()
    assert not (root / "a").exists()
