"""
Catalog store for storage locations, content records, placements, and the
series/episode cross-reference catalog.

Locations, content records, and placements are cached in memory behind a
reader/writer lock; every mutation goes through ``transaction()`` so that the
SQLite rows and the cache change together or not at all.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from filesystem.paths import path_key
from models import (
    ContentRecord,
    Episode,
    EpisodeAssociation,
    EpisodeCrossRef,
    PlacementRecord,
    Series,
    StorageLocation,
    utc_timestamp,
)
from utils.locks import ReadWriteLock

from .schema import create_catalog_db

_CONTENT_COLUMNS = "id, hash, file_size, duration_ms, md5, sha1, crc32, is_ignored, created_at, updated_at"
_SERIES_COLUMNS = (
    "id, name, group_id, episode_count, available_episodes, missing_episodes, stats_updated_at"
)


class RecordStore:
    """Cached catalog backed by the SQLite catalog database."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._rw = ReadWriteLock()
        self._sql_lock = threading.RLock()
        self._depth = 0
        self._undo: Optional[list[Callable[[], None]]] = None
        self._loaded = False

        self._locations: dict[int, StorageLocation] = {}
        self._content: dict[int, ContentRecord] = {}
        self._content_by_hash: dict[str, set[int]] = {}
        self._placements: dict[int, PlacementRecord] = {}
        self._placements_by_key: dict[tuple[int, str], set[int]] = {}
        self._placements_by_content: dict[int, set[int]] = {}

    def initialize(self) -> None:
        """Create the catalog tables and load the cache."""
        create_catalog_db(self.db_path)
        self.reload()

    def connect(self) -> None:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL;")

    def close(self) -> None:
        with self._sql_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def reload(self) -> None:
        """Rebuild the in-memory indexes from the database."""
        with self._rw.write(), self._sql_lock:
            self.connect()
            self._locations.clear()
            self._content.clear()
            self._content_by_hash.clear()
            self._placements.clear()
            self._placements_by_key.clear()
            self._placements_by_content.clear()
            for row in self._conn.execute(
                "SELECT id, name, root_path, cloud_id, is_drop_source, is_drop_destination FROM storage_locations"
            ):
                self._index_location(_row_to_location(row))
            for row in self._conn.execute(f"SELECT {_CONTENT_COLUMNS} FROM content_records"):
                self._index_content(_row_to_content(row))
            for row in self._conn.execute(
                "SELECT id, location_id, relative_path, content_id FROM placement_records"
            ):
                self._index_placement(_row_to_placement(row))
            self._loaded = True

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Group mutations into one SQLite transaction with cache rollback."""
        with self._rw.write(), self._sql_lock:
            self._ensure_loaded()
            self.connect()
            outermost = self._depth == 0
            if outermost:
                self._undo = []
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.rollback()
                    for undo in reversed(self._undo or []):
                        undo()
                    self._undo = None
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._conn.commit()
                    self._undo = None

    # Storage locations

    def list_locations(self) -> list[StorageLocation]:
        with self._read():
            return sorted(self._locations.values(), key=lambda item: item.location_id)

    def get_location(self, location_id: int) -> Optional[StorageLocation]:
        with self._read():
            return self._locations.get(location_id)

    def get_location_by_name(self, name: str) -> Optional[StorageLocation]:
        with self._read():
            for location in self._locations.values():
                if location.name == name:
                    return location
        return None

    def add_location(
        self,
        name: str,
        root_path: str,
        cloud_id: Optional[str] = None,
        is_drop_source: bool = False,
        is_drop_destination: bool = False,
    ) -> StorageLocation:
        with self.transaction():
            cursor = self._conn.execute(
                """
                INSERT INTO storage_locations (
                    name, root_path, cloud_id, is_drop_source, is_drop_destination
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (name, root_path, cloud_id, int(is_drop_source), int(is_drop_destination)),
            )
            location = StorageLocation(
                location_id=int(cursor.lastrowid),
                name=name,
                root_path=root_path,
                cloud_id=cloud_id,
                is_drop_source=is_drop_source,
                is_drop_destination=is_drop_destination,
            )
            self._swap(self._index_location, self._unindex_location, None, location)
            return location

    def update_location(self, location: StorageLocation) -> StorageLocation:
        with self.transaction():
            previous = self._locations.get(location.location_id)
            if previous is None:
                raise KeyError(f"Unknown storage location: {location.location_id}")
            self._conn.execute(
                """
                UPDATE storage_locations
                SET name = ?, root_path = ?, cloud_id = ?, is_drop_source = ?, is_drop_destination = ?
                WHERE id = ?
                """,
                (
                    location.name,
                    location.root_path,
                    location.cloud_id,
                    int(location.is_drop_source),
                    int(location.is_drop_destination),
                    location.location_id,
                ),
            )
            self._swap(self._index_location, self._unindex_location, previous, location)
            return location

    def ensure_location(
        self,
        name: str,
        root_path: str,
        cloud_id: Optional[str] = None,
        is_drop_source: bool = False,
        is_drop_destination: bool = False,
    ) -> StorageLocation:
        """Insert a location by name, or update it to match the given values."""
        with self.transaction():
            existing = self.get_location_by_name(name)
            if existing is None:
                return self.add_location(name, root_path, cloud_id, is_drop_source, is_drop_destination)
            wanted = StorageLocation(
                location_id=existing.location_id,
                name=name,
                root_path=root_path,
                cloud_id=cloud_id,
                is_drop_source=is_drop_source,
                is_drop_destination=is_drop_destination,
            )
            if wanted == existing:
                return existing
            return self.update_location(wanted)

    def delete_location(self, location_id: int) -> None:
        with self.transaction():
            previous = self._locations.get(location_id)
            if previous is None:
                return
            self._conn.execute("DELETE FROM storage_locations WHERE id = ?", (location_id,))
            self._swap(self._index_location, self._unindex_location, previous, None)

    # Content records

    def list_content(self) -> list[ContentRecord]:
        with self._read():
            return sorted(self._content.values(), key=lambda item: item.content_id)

    def get_content(self, content_id: int) -> Optional[ContentRecord]:
        with self._read():
            return self._content.get(content_id)

    def get_content_by_hash(self, content_hash: str) -> Optional[ContentRecord]:
        """Return the record for a hash, preferring the lowest id if duplicates exist."""
        if not content_hash:
            return None
        with self._read():
            ids = self._content_by_hash.get(content_hash.upper())
            if not ids:
                return None
            return self._content[min(ids)]

    def list_content_by_hash(self, content_hash: str) -> list[ContentRecord]:
        with self._read():
            ids = self._content_by_hash.get(content_hash.upper(), set())
            return [self._content[content_id] for content_id in sorted(ids)]

    def add_content(
        self,
        content_hash: str,
        file_size: int,
        md5: Optional[str] = None,
        sha1: Optional[str] = None,
        crc32: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> ContentRecord:
        """Create a content record, or return the existing one for a known hash."""
        content_hash = content_hash.upper()
        with self.transaction():
            existing = self.get_content_by_hash(content_hash)
            if existing is not None:
                return existing
            now = utc_timestamp()
            cursor = self._conn.execute(
                """
                INSERT INTO content_records (
                    hash, file_size, duration_ms, md5, sha1, crc32, is_ignored, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (content_hash, file_size, duration_ms, md5, sha1, crc32, now, now),
            )
            record = ContentRecord(
                content_id=int(cursor.lastrowid),
                hash=content_hash,
                file_size=file_size,
                duration_ms=duration_ms,
                md5=md5,
                sha1=sha1,
                crc32=crc32,
                is_ignored=False,
                created_at=now,
                updated_at=now,
            )
            self._swap(self._index_content, self._unindex_content, None, record)
            return record

    def update_content(self, record: ContentRecord) -> ContentRecord:
        with self.transaction():
            previous = self._content.get(record.content_id)
            if previous is None:
                raise KeyError(f"Unknown content record: {record.content_id}")
            updated = ContentRecord(
                content_id=record.content_id,
                hash=record.hash.upper(),
                file_size=record.file_size,
                duration_ms=record.duration_ms,
                md5=record.md5,
                sha1=record.sha1,
                crc32=record.crc32,
                is_ignored=record.is_ignored,
                created_at=previous.created_at,
                updated_at=utc_timestamp(),
            )
            self._conn.execute(
                """
                UPDATE content_records
                SET hash = ?, file_size = ?, duration_ms = ?, md5 = ?, sha1 = ?, crc32 = ?,
                    is_ignored = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.hash,
                    updated.file_size,
                    updated.duration_ms,
                    updated.md5,
                    updated.sha1,
                    updated.crc32,
                    int(updated.is_ignored),
                    updated.updated_at,
                    updated.content_id,
                ),
            )
            self._swap(self._index_content, self._unindex_content, previous, updated)
            return updated

    def delete_content(self, content_id: int) -> None:
        with self.transaction():
            previous = self._content.get(content_id)
            if previous is None:
                return
            self._conn.execute("DELETE FROM content_records WHERE id = ?", (content_id,))
            self._swap(self._index_content, self._unindex_content, previous, None)

    def ignored_paths(self) -> set[str]:
        """Return path keys of every placement whose content is ignored."""
        with self._read():
            keys = set()
            for placement in self._placements.values():
                content = self._content.get(placement.content_id)
                location = self._locations.get(placement.location_id)
                if content is None or location is None or not content.is_ignored:
                    continue
                keys.add(path_key(os.path.join(location.root_path, placement.relative_path)))
            return keys

    # Placements

    def list_placements(self) -> list[PlacementRecord]:
        with self._read():
            return sorted(self._placements.values(), key=lambda item: item.placement_id)

    def get_placement(self, placement_id: int) -> Optional[PlacementRecord]:
        with self._read():
            return self._placements.get(placement_id)

    def get_placement_by_path(self, location_id: int, relative_path: str) -> Optional[PlacementRecord]:
        """Case-insensitive lookup of a placement by location and relative path."""
        with self._read():
            ids = self._placements_by_key.get((location_id, path_key(relative_path)))
            if not ids:
                return None
            return self._placements[min(ids)]

    def list_placements_for_location(self, location_id: int) -> list[PlacementRecord]:
        with self._read():
            return sorted(
                (item for item in self._placements.values() if item.location_id == location_id),
                key=lambda item: item.placement_id,
            )

    def list_placements_for_content(self, content_id: int) -> list[PlacementRecord]:
        with self._read():
            ids = self._placements_by_content.get(content_id, set())
            return [self._placements[placement_id] for placement_id in sorted(ids)]

    def count_placements(self, content_id: int) -> int:
        with self._read():
            return len(self._placements_by_content.get(content_id, ()))

    def add_placement(self, location_id: int, relative_path: str, content_id: int) -> PlacementRecord:
        with self.transaction():
            cursor = self._conn.execute(
                "INSERT INTO placement_records (location_id, relative_path, content_id) VALUES (?, ?, ?)",
                (location_id, relative_path, content_id),
            )
            record = PlacementRecord(
                placement_id=int(cursor.lastrowid),
                location_id=location_id,
                relative_path=relative_path,
                content_id=content_id,
            )
            self._swap(self._index_placement, self._unindex_placement, None, record)
            return record

    def update_placement(self, record: PlacementRecord) -> PlacementRecord:
        with self.transaction():
            previous = self._placements.get(record.placement_id)
            if previous is None:
                raise KeyError(f"Unknown placement: {record.placement_id}")
            self._conn.execute(
                """
                UPDATE placement_records
                SET location_id = ?, relative_path = ?, content_id = ?
                WHERE id = ?
                """,
                (record.location_id, record.relative_path, record.content_id, record.placement_id),
            )
            self._swap(self._index_placement, self._unindex_placement, previous, record)
            return record

    def delete_placement(self, placement_id: int) -> None:
        with self.transaction():
            previous = self._placements.get(placement_id)
            if previous is None:
                return
            self._conn.execute("DELETE FROM placement_records WHERE id = ?", (placement_id,))
            self._swap(self._index_placement, self._unindex_placement, previous, None)

    def full_path(self, placement: PlacementRecord) -> Optional[str]:
        """Join a placement's relative path onto its location root."""
        location = self.get_location(placement.location_id)
        if location is None:
            return None
        return os.path.join(location.root_path, placement.relative_path)

    # Series catalog

    def upsert_series(self, series_id: int, name: str, group_id: Optional[int] = None) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO series (id, name, group_id) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, group_id = excluded.group_id
                """,
                (series_id, name, group_id),
            )

    def get_series(self, series_id: int) -> Optional[Series]:
        with self._sql_lock:
            self.connect()
            row = self._conn.execute(
                f"SELECT {_SERIES_COLUMNS} FROM series WHERE id = ?", (series_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_series(row)

    def upsert_episode(self, episode: Episode) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO episodes (id, series_id, number, air_date, title) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    series_id = excluded.series_id,
                    number = excluded.number,
                    air_date = excluded.air_date,
                    title = excluded.title
                """,
                (episode.episode_id, episode.series_id, episode.number, episode.air_date, episode.title),
            )

    def get_episode(self, episode_id: int) -> Optional[Episode]:
        with self._sql_lock:
            self.connect()
            row = self._conn.execute(
                "SELECT series_id, id, number, air_date, title FROM episodes WHERE id = ?",
                (episode_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_episode(row)

    def list_episodes(self, series_id: int) -> list[Episode]:
        with self._sql_lock:
            self.connect()
            rows = self._conn.execute(
                "SELECT series_id, id, number, air_date, title FROM episodes WHERE series_id = ? ORDER BY number",
                (series_id,),
            ).fetchall()
        return [_row_to_episode(row) for row in rows]

    def add_xref(self, xref: EpisodeCrossRef) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT OR IGNORE INTO episode_xrefs (content_hash, episode_id, series_id, source)
                VALUES (?, ?, ?, ?)
                """,
                (xref.content_hash.upper(), xref.episode_id, xref.series_id, xref.source),
            )

    def list_xrefs(self, content_hash: Optional[str] = None) -> list[EpisodeCrossRef]:
        query = "SELECT content_hash, episode_id, series_id, source FROM episode_xrefs"
        params: tuple = ()
        if content_hash is not None:
            query += " WHERE content_hash = ?"
            params = (content_hash.upper(),)
        query += " ORDER BY id"
        with self._sql_lock:
            self.connect()
            rows = self._conn.execute(query, params).fetchall()
        return [
            EpisodeCrossRef(content_hash=row[0], episode_id=int(row[1]), series_id=int(row[2]), source=row[3] or "")
            for row in rows
        ]

    def list_xrefs_for_episode(self, episode_id: int) -> list[EpisodeCrossRef]:
        with self._sql_lock:
            self.connect()
            rows = self._conn.execute(
                "SELECT content_hash, episode_id, series_id, source FROM episode_xrefs WHERE episode_id = ?",
                (episode_id,),
            ).fetchall()
        return [
            EpisodeCrossRef(content_hash=row[0], episode_id=int(row[1]), series_id=int(row[2]), source=row[3] or "")
            for row in rows
        ]

    def delete_xrefs(self, content_hash: str) -> int:
        with self.transaction():
            cursor = self._conn.execute(
                "DELETE FROM episode_xrefs WHERE content_hash = ?", (content_hash.upper(),)
            )
            return int(cursor.rowcount)

    def series_for_hash(self, content_hash: str) -> set[int]:
        return {xref.series_id for xref in self.list_xrefs(content_hash)}

    def save_associations(self, content_hash: str, associations: Iterable[EpisodeAssociation]) -> set[int]:
        """Replace the cross-references of a hash with provider associations.

        Returns the ids of every series touched, old or new.
        """
        with self.transaction():
            touched = self.series_for_hash(content_hash)
            self.delete_xrefs(content_hash)
            for association in associations:
                self.upsert_series(association.series_id, association.series_name, association.group_id)
                self.upsert_episode(
                    Episode(
                        series_id=association.series_id,
                        episode_id=association.episode_id,
                        number=association.episode_number,
                        air_date=association.air_date,
                        title=association.episode_title,
                    )
                )
                self.add_xref(
                    EpisodeCrossRef(
                        content_hash=content_hash,
                        episode_id=association.episode_id,
                        series_id=association.series_id,
                    )
                )
                touched.add(association.series_id)
            return touched

    def update_series_stats(self, series_id: int) -> Optional[Series]:
        """Recompute episode availability counters for a series."""
        with self.transaction():
            exists = self._conn.execute("SELECT 1 FROM series WHERE id = ?", (series_id,)).fetchone()
            if exists is None:
                return None
            episode_count = int(
                self._conn.execute(
                    "SELECT COUNT(*) FROM episodes WHERE series_id = ?", (series_id,)
                ).fetchone()[0]
            )
            available = int(
                self._conn.execute(
                    """
                    SELECT COUNT(DISTINCT e.id)
                    FROM episodes e
                    JOIN episode_xrefs x ON x.episode_id = e.id
                    JOIN content_records c ON c.hash = x.content_hash
                    JOIN placement_records p ON p.content_id = c.id
                    WHERE e.series_id = ?
                    """,
                    (series_id,),
                ).fetchone()[0]
            )
            self._conn.execute(
                """
                UPDATE series
                SET episode_count = ?, available_episodes = ?, missing_episodes = ?, stats_updated_at = ?
                WHERE id = ?
                """,
                (episode_count, available, episode_count - available, utc_timestamp(), series_id),
            )
        return self.get_series(series_id)

    def counts(self) -> dict[str, int]:
        """Return record counts for progress reporting."""
        with self._read():
            return {
                "locations": len(self._locations),
                "content_records": len(self._content),
                "placements": len(self._placements),
            }

    # Cache internals

    @contextmanager
    def _read(self) -> Iterator[None]:
        self._ensure_loaded()
        with self._rw.read():
            yield

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.reload()

    def _swap(self, index: Callable, unindex: Callable, old: object, new: object) -> None:
        if old is not None:
            unindex(old)
        if new is not None:
            index(new)
        if self._undo is not None:
            self._undo.append(lambda: self._swap_back(index, unindex, old, new))

    @staticmethod
    def _swap_back(index: Callable, unindex: Callable, old: object, new: object) -> None:
        if new is not None:
            unindex(new)
        if old is not None:
            index(old)

    def _index_location(self, location: StorageLocation) -> None:
        self._locations[location.location_id] = location

    def _unindex_location(self, location: StorageLocation) -> None:
        self._locations.pop(location.location_id, None)

    def _index_content(self, record: ContentRecord) -> None:
        self._content[record.content_id] = record
        if record.hash:
            self._content_by_hash.setdefault(record.hash.upper(), set()).add(record.content_id)

    def _unindex_content(self, record: ContentRecord) -> None:
        self._content.pop(record.content_id, None)
        if record.hash:
            ids = self._content_by_hash.get(record.hash.upper())
            if ids is not None:
                ids.discard(record.content_id)
                if not ids:
                    del self._content_by_hash[record.hash.upper()]

    def _index_placement(self, record: PlacementRecord) -> None:
        self._placements[record.placement_id] = record
        key = (record.location_id, path_key(record.relative_path))
        self._placements_by_key.setdefault(key, set()).add(record.placement_id)
        self._placements_by_content.setdefault(record.content_id, set()).add(record.placement_id)

    def _unindex_placement(self, record: PlacementRecord) -> None:
        self._placements.pop(record.placement_id, None)
        key = (record.location_id, path_key(record.relative_path))
        for index, index_key in (
            (self._placements_by_key, key),
            (self._placements_by_content, record.content_id),
        ):
            ids = index.get(index_key)
            if ids is None:
                continue
            ids.discard(record.placement_id)
            if not ids:
                del index[index_key]


def _row_to_location(row: tuple) -> StorageLocation:
    return StorageLocation(
        location_id=int(row[0]),
        name=str(row[1]),
        root_path=str(row[2]),
        cloud_id=row[3],
        is_drop_source=bool(row[4]),
        is_drop_destination=bool(row[5]),
    )


def _row_to_content(row: tuple) -> ContentRecord:
    return ContentRecord(
        content_id=int(row[0]),
        hash=str(row[1] or "").upper(),
        file_size=int(row[2] or 0),
        duration_ms=int(row[3]) if row[3] is not None else None,
        md5=row[4],
        sha1=row[5],
        crc32=row[6],
        is_ignored=bool(row[7]),
        created_at=str(row[8] or ""),
        updated_at=str(row[9] or ""),
    )


def _row_to_placement(row: tuple) -> PlacementRecord:
    return PlacementRecord(
        placement_id=int(row[0]),
        location_id=int(row[1]),
        relative_path=str(row[2]),
        content_id=int(row[3]),
    )


def _row_to_series(row: tuple) -> Series:
    return Series(
        series_id=int(row[0]),
        name=str(row[1] or ""),
        group_id=int(row[2]) if row[2] is not None else None,
        episode_count=int(row[3] or 0),
        available_episodes=int(row[4] or 0),
        missing_episodes=int(row[5] or 0),
        stats_updated_at=str(row[6] or ""),
    )


def _row_to_episode(row: tuple) -> Episode:
    return Episode(
        series_id=int(row[0]),
        episode_id=int(row[1]),
        number=int(row[2] or 0),
        air_date=row[3],
        title=str(row[4] or ""),
    )
