"""
SQLite access layer for queue, schedule, and audit state.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from models import (
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    Job,
    JobKind,
    ScheduledTask,
    job_signature,
    utc_timestamp,
)

from .schema import create_databases

_JOB_COLUMNS = "job_id, kind, payload, priority, created_at, attempts, status, last_error"


class DatabaseManager:
    """Manage the state database connection and common queries."""

    def __init__(self, db_paths: Dict[str, Path]) -> None:
        self.db_paths = db_paths
        self._state_conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Create database files and tables."""
        create_databases(self.db_paths)

    def connect(self) -> None:
        """Open the state connection if it is not already open."""
        if self._state_conn is None:
            self._state_conn = sqlite3.connect(self.db_paths["state"], check_same_thread=False)
            self._state_conn.execute("PRAGMA journal_mode=WAL;")

    def close(self) -> None:
        """Close the state connection."""
        with self._lock:
            if self._state_conn is not None:
                self._state_conn.close()
                self._state_conn = None

    # Jobs

    def insert_job(self, kind: JobKind, payload: Dict[str, Any], priority: int) -> Optional[int]:
        """Insert a pending job; return None when an identical job is already active."""
        signature = job_signature(kind, payload)
        now = utc_timestamp()
        with self._lock:
            self.connect()
            cursor = self._state_conn.execute(
                """
                INSERT OR IGNORE INTO jobs (
                    kind, payload, signature, priority, status, attempts,
                    created_at, updated_at, available_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    kind.value,
                    json.dumps(payload, sort_keys=True),
                    signature,
                    priority,
                    JOB_PENDING,
                    now,
                    now,
                    now,
                ),
            )
            self._state_conn.commit()
            if cursor.rowcount == 0:
                return None
            return int(cursor.lastrowid)

    def claim_next_job(self) -> Optional[Job]:
        """Atomically mark the next available pending job as running and return it."""
        now = utc_timestamp()
        with self._lock:
            self.connect()
            row = self._state_conn.execute(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM jobs
                WHERE status = ? AND available_at <= ?
                ORDER BY priority ASC, job_id ASC
                LIMIT 1
                """,
                (JOB_PENDING, now),
            ).fetchone()
            if row is None:
                return None
            self._state_conn.execute(
                """
                UPDATE jobs
                SET status = ?, attempts = attempts + 1, updated_at = ?
                WHERE job_id = ?
                """,
                (JOB_RUNNING, now, int(row[0])),
            )
            self._state_conn.commit()
        job = _row_to_job(row)
        return Job(
            job_id=job.job_id,
            kind=job.kind,
            payload=job.payload,
            priority=job.priority,
            created_at=job.created_at,
            attempts=job.attempts + 1,
            status=JOB_RUNNING,
            last_error=job.last_error,
        )

    def delete_job(self, job_id: int) -> None:
        with self._lock:
            self.connect()
            self._state_conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            self._state_conn.commit()

    def requeue_job(self, job_id: int, error: Optional[str], delay_seconds: float = 0.0) -> None:
        """Return a running job to pending, optionally delaying its next claim."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                UPDATE jobs
                SET status = ?, last_error = ?, updated_at = ?, available_at = ?
                WHERE job_id = ?
                """,
                (JOB_PENDING, error, utc_timestamp(), utc_timestamp(delay_seconds), job_id),
            )
            self._state_conn.commit()

    def mark_job_failed(self, job_id: int, error: Optional[str]) -> None:
        """Park a job as failed, replacing any older failed copy of the same job."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                DELETE FROM jobs
                WHERE status = ? AND job_id != ?
                  AND signature = (SELECT signature FROM jobs WHERE job_id = ?)
                """,
                (JOB_FAILED, job_id, job_id),
            )
            self._state_conn.execute(
                "UPDATE jobs SET status = ?, last_error = ?, updated_at = ? WHERE job_id = ?",
                (JOB_FAILED, error, utc_timestamp(), job_id),
            )
            self._state_conn.commit()

    def reset_running_jobs(self) -> int:
        """Return jobs left running by a previous process to pending."""
        with self._lock:
            self.connect()
            cursor = self._state_conn.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE status = ?",
                (JOB_PENDING, utc_timestamp(), JOB_RUNNING),
            )
            self._state_conn.commit()
            return int(cursor.rowcount)

    def retry_failed_job(self, job_id: int) -> bool:
        """Move a failed job back to pending with a fresh attempt count.

        Returns False when the job is not failed, or when an identical job is
        already active, in which case the failed copy is dropped.
        """
        now = utc_timestamp()
        with self._lock:
            self.connect()
            try:
                cursor = self._state_conn.execute(
                    """
                    UPDATE jobs
                    SET status = ?, attempts = 0, last_error = NULL,
                        updated_at = ?, available_at = ?
                    WHERE job_id = ? AND status = ?
                    """,
                    (JOB_PENDING, now, now, job_id, JOB_FAILED),
                )
            except sqlite3.IntegrityError:
                self._state_conn.rollback()
                self._state_conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
                self._state_conn.commit()
                return False
            self._state_conn.commit()
            return cursor.rowcount > 0

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            self.connect()
            row = self._state_conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_job(row)

    def list_jobs(self, status: Optional[str] = None, limit: Optional[int] = None) -> list[Job]:
        """List jobs in claim order, optionally filtered by status."""
        query = f"SELECT {_JOB_COLUMNS} FROM jobs"
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY priority ASC, job_id ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(query, tuple(params)).fetchall()
        return [_row_to_job(row) for row in rows]

    def job_status_summary(self) -> dict[str, int]:
        """Return counts of jobs grouped by status."""
        with self._lock:
            self.connect()
            cursor = self._state_conn.execute("SELECT status, COUNT(*) FROM jobs GROUP BY status")
            return {str(row[0]): int(row[1]) for row in cursor.fetchall()}

    # Scheduled tasks

    def get_scheduled_task(self, name: str) -> Optional[ScheduledTask]:
        with self._lock:
            self.connect()
            row = self._state_conn.execute(
                "SELECT name, last_run, details FROM scheduled_tasks WHERE name = ?",
                (name,),
            ).fetchone()
        if row is None:
            return None
        return ScheduledTask(name=str(row[0]), last_run=row[1], details=str(row[2] or ""))

    def touch_scheduled_task(self, name: str, details: str = "", when: Optional[str] = None) -> None:
        """Record a run of a scheduled task."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                INSERT INTO scheduled_tasks (name, last_run, details)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    last_run = excluded.last_run,
                    details = excluded.details
                """,
                (name, when or utc_timestamp(), details),
            )
            self._state_conn.commit()

    # Audit

    def record_file_operation(
        self,
        operation_id: str,
        action: str,
        source_path: str,
        destination_path: Optional[str],
        status: str,
        size: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Record a physical file mutation for audit."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                INSERT INTO file_operations (
                    operation_id,
                    action,
                    source_path,
                    destination_path,
                    status,
                    size,
                    created_at,
                    error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    operation_id,
                    action,
                    source_path,
                    destination_path,
                    status,
                    size,
                    utc_timestamp(),
                    error_message,
                ),
            )
            self._state_conn.commit()

    def list_file_operations(
        self, operation_id: Optional[str] = None, action: Optional[str] = None, limit: Optional[int] = None
    ) -> list[dict]:
        """List file operations, newest first, optionally filtered."""
        query = """
            SELECT id, operation_id, action, source_path, destination_path, status, size, created_at,
                   error_message
            FROM file_operations
        """
        params: list = []
        clauses: list[str] = []
        if operation_id:
            clauses.append("operation_id = ?")
            params.append(operation_id)
        if action:
            clauses.append("action = ?")
            params.append(action)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(query, tuple(params)).fetchall()
        results = []
        for row in rows:
            results.append(
                {
                    "id": int(row[0]),
                    "operation_id": str(row[1]) if row[1] else "",
                    "action": str(row[2]) if row[2] else "",
                    "source_path": str(row[3]) if row[3] else "",
                    "destination_path": str(row[4]) if row[4] else "",
                    "status": str(row[5]) if row[5] else "",
                    "size": int(row[6]) if row[6] is not None else None,
                    "created_at": str(row[7]) if row[7] else "",
                    "error_message": str(row[8]) if row[8] else "",
                }
            )
        return results

    def start_operation(self, operation_type: str, details: Optional[str] = None) -> str:
        """Insert an operation record and return the generated operation ID."""
        operation_id = f"{operation_type}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S_%f')}"
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                INSERT INTO operations (
                    operation_id, operation_type, status, started_at, details
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (operation_id, operation_type, "in_progress", utc_timestamp(), details),
            )
            self._state_conn.commit()
        return operation_id

    def complete_operation(self, operation_id: str, status: str = "completed", details: Optional[str] = None) -> None:
        """Mark an operation as completed or failed."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                UPDATE operations
                SET status = ?, finished_at = ?, details = COALESCE(?, details)
                WHERE operation_id = ?
                """,
                (status, utc_timestamp(), details, operation_id),
            )
            self._state_conn.commit()

    def list_recent_operations(self, limit: int = 20) -> list[dict]:
        """List recent operations sorted by start time."""
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(
                """
                SELECT operation_id, operation_type, status, started_at, finished_at, details
                FROM operations
                ORDER BY started_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            {
                "operation_id": row[0],
                "operation_type": row[1],
                "status": row[2],
                "started_at": row[3],
                "finished_at": row[4],
                "details": row[5],
            }
            for row in rows
        ]


def _row_to_job(row: tuple) -> Job:
    return Job(
        job_id=int(row[0]),
        kind=JobKind(row[1]),
        payload=json.loads(row[2]) if row[2] else {},
        priority=int(row[3]),
        created_at=str(row[4]),
        attempts=int(row[5] or 0),
        status=str(row[6]),
        last_error=row[7],
    )
