"""
Database schema definitions for the media import pipeline.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict


def create_databases(db_paths: Dict[str, Path]) -> None:
    """Create all SQLite databases and their tables."""
    create_catalog_db(db_paths["catalog"])
    create_state_db(db_paths["state"])


def create_catalog_db(db_path: Path) -> None:
    """Create the catalog database holding locations, content, and placements."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS storage_locations (
            id INTEGER PRIMARY KEY,
            name TEXT UNIQUE,
            root_path TEXT,
            cloud_id TEXT,
            is_drop_source BOOLEAN,
            is_drop_destination BOOLEAN
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS content_records (
            id INTEGER PRIMARY KEY,
            hash TEXT,
            file_size INTEGER,
            duration_ms INTEGER,
            md5 TEXT,
            sha1 TEXT,
            crc32 TEXT,
            is_ignored BOOLEAN DEFAULT 0,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS placement_records (
            id INTEGER PRIMARY KEY,
            location_id INTEGER,
            relative_path TEXT,
            content_id INTEGER,
            FOREIGN KEY (content_id) REFERENCES content_records (id),
            UNIQUE (location_id, relative_path)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS series (
            id INTEGER PRIMARY KEY,
            name TEXT,
            group_id INTEGER,
            episode_count INTEGER DEFAULT 0,
            available_episodes INTEGER DEFAULT 0,
            missing_episodes INTEGER DEFAULT 0,
            stats_updated_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS episodes (
            id INTEGER PRIMARY KEY,
            series_id INTEGER,
            number INTEGER,
            air_date TEXT,
            title TEXT,
            FOREIGN KEY (series_id) REFERENCES series (id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS episode_xrefs (
            id INTEGER PRIMARY KEY,
            content_hash TEXT,
            episode_id INTEGER,
            series_id INTEGER,
            source TEXT,
            UNIQUE (content_hash, episode_id)
        )
        """
    )
    _ensure_column(conn, "content_records", "is_ignored", "BOOLEAN DEFAULT 0")
    # Hash stays non-unique at the SQL level so legacy duplicates can be merged.
    conn.execute("CREATE INDEX IF NOT EXISTS idx_content_hash ON content_records(hash)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_placements_content ON placement_records(content_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_series ON episodes(series_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_xrefs_hash ON episode_xrefs(content_hash)")
    conn.commit()
    conn.close()


def create_state_db(db_path: Path) -> None:
    """Create the state database for jobs, schedules, and audit records."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            job_id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT,
            payload TEXT,
            signature TEXT,
            priority INTEGER,
            status TEXT,
            attempts INTEGER DEFAULT 0,
            created_at TIMESTAMP,
            updated_at TIMESTAMP,
            available_at TIMESTAMP,
            last_error TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS scheduled_tasks (
            name TEXT PRIMARY KEY,
            last_run TIMESTAMP,
            details TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operations (
            id INTEGER PRIMARY KEY,
            operation_id TEXT UNIQUE,
            operation_type TEXT,
            status TEXT,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            details TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS file_operations (
            id INTEGER PRIMARY KEY,
            operation_id TEXT,
            action TEXT,
            source_path TEXT,
            destination_path TEXT,
            status TEXT,
            size INTEGER,
            created_at TIMESTAMP,
            error_message TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_signature
        ON jobs(signature) WHERE status IN ('pending', 'running')
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(status, priority, job_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_file_operations_operation ON file_operations(operation_id)")
    conn.commit()
    conn.close()


def _connect(db_path: Path) -> sqlite3.Connection:
    """Create a SQLite connection with WAL enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    """Ensure a column exists on a SQLite table."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
