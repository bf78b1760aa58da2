"""
Entity records shared by the record store, queue, and pipeline engines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional


class JobKind(str, Enum):
    """Kinds of queued work understood by the command queue."""

    HASH_FILE = "HashFile"
    PROCESS_FILE = "ProcessFile"
    MOVE_FILE = "MoveFile"
    DOWNLOAD_IMAGE = "DownloadImage"
    SYNC_EXTERNAL_CATALOG = "SyncExternalCatalog"
    DELETE_EXTERNAL_REFERENCE = "DeleteExternalReference"
    UPDATE_SERIES_STATS = "UpdateSeriesStats"
    RECALCULATE_GROUP_FILTER = "RecalculateGroupFilter"
    SCAN_LOCATION = "ScanLocation"
    SCAN_DROP_SOURCES = "ScanDropSources"
    SCAN_NEW_FILES = "ScanNewFiles"
    RECONCILE = "Reconcile"


PRIORITY_CRITICAL = 0
PRIORITY_HIGH = 2
PRIORITY_NORMAL = 5
PRIORITY_LOW = 8

DEFAULT_PRIORITIES: dict[JobKind, int] = {
    JobKind.SCAN_LOCATION: PRIORITY_HIGH,
    JobKind.SCAN_DROP_SOURCES: PRIORITY_HIGH,
    JobKind.SCAN_NEW_FILES: PRIORITY_HIGH,
    JobKind.RECONCILE: PRIORITY_HIGH,
    JobKind.PROCESS_FILE: 3,
    JobKind.MOVE_FILE: 3,
    JobKind.HASH_FILE: PRIORITY_NORMAL,
    JobKind.UPDATE_SERIES_STATS: 6,
    JobKind.DELETE_EXTERNAL_REFERENCE: 7,
    JobKind.DOWNLOAD_IMAGE: PRIORITY_LOW,
    JobKind.SYNC_EXTERNAL_CATALOG: PRIORITY_LOW,
    JobKind.RECALCULATE_GROUP_FILTER: PRIORITY_LOW,
}

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_FAILED = "failed"


def utc_timestamp(offset_seconds: float = 0.0) -> str:
    """Return an ISO-8601 UTC timestamp, optionally shifted into the future."""
    moment = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
    return moment.isoformat(timespec="microseconds")


def job_signature(kind: JobKind, payload: Optional[dict[str, Any]]) -> str:
    """Build the dedup key for a job from its kind and canonical payload."""
    canonical = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"))
    return f"{kind.value}:{canonical}"


@dataclass(frozen=True)
class StorageLocation:
    """Configured root that the pipeline scans and organizes."""

    location_id: int
    name: str
    root_path: str
    cloud_id: Optional[str] = None
    is_drop_source: bool = False
    is_drop_destination: bool = False


@dataclass(frozen=True)
class ContentRecord:
    """Logical media file keyed by its content hash."""

    content_id: int
    hash: str
    file_size: int
    duration_ms: Optional[int] = None
    md5: Optional[str] = None
    sha1: Optional[str] = None
    crc32: Optional[str] = None
    is_ignored: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class PlacementRecord:
    """One physical copy of a content record."""

    placement_id: int
    location_id: int
    relative_path: str
    content_id: int


@dataclass(frozen=True)
class Job:
    """A unit of queued background work."""

    job_id: int
    kind: JobKind
    payload: dict[str, Any]
    priority: int
    created_at: str
    attempts: int = 0
    status: str = JOB_PENDING
    last_error: Optional[str] = None

    @property
    def signature(self) -> str:
        return job_signature(self.kind, self.payload)


@dataclass(frozen=True)
class ScheduledTask:
    """Named recurring operation with its last run time."""

    name: str
    last_run: Optional[str]
    details: str = ""


@dataclass(frozen=True)
class Series:
    """Series entry of the local catalog, with aggregate stats."""

    series_id: int
    name: str
    group_id: Optional[int] = None
    episode_count: int = 0
    available_episodes: int = 0
    missing_episodes: int = 0
    stats_updated_at: str = ""


@dataclass(frozen=True)
class Episode:
    series_id: int
    episode_id: int
    number: int
    air_date: Optional[str] = None
    title: str = ""


@dataclass(frozen=True)
class EpisodeCrossRef:
    """Link between a content hash and an episode."""

    content_hash: str
    episode_id: int
    series_id: int
    source: str = "provider"


@dataclass(frozen=True)
class EpisodeAssociation:
    """Episode/series answer returned by a metadata provider for a hash."""

    series_id: int
    series_name: str
    episode_id: int
    episode_number: int
    air_date: Optional[str] = None
    episode_title: str = ""
    group_id: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)
