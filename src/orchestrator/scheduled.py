"""
Recurring task bookkeeping backed by the scheduled_tasks table.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from database import DatabaseManager


class ScheduledTasks:
    """Decide whether a named recurring task is due and record its runs."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager = db_manager

    def due(self, name: str, interval: timedelta, now: Optional[datetime] = None) -> bool:
        """Return True when ``name`` never ran or last ran at least ``interval`` ago."""
        task = self.db_manager.get_scheduled_task(name)
        if task is None or not task.last_run:
            return True
        try:
            last_run = datetime.fromisoformat(task.last_run)
        except ValueError:
            return True
        if last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return now - last_run >= interval

    def mark_run(self, name: str, details: str = "", now: Optional[datetime] = None) -> None:
        when = (now or datetime.now(timezone.utc)).isoformat(timespec="microseconds")
        self.db_manager.touch_scheduled_task(name, details, when)

    def last_run(self, name: str) -> Optional[str]:
        task = self.db_manager.get_scheduled_task(name)
        return task.last_run if task else None
