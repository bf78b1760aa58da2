"""
Activity tracking and stall monitoring for queue workers.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class ActivityTracker:
    """Track the last time any worker made progress."""

    min_interval_seconds: float = 2.0
    _last_touch: float = field(default_factory=time.monotonic, init=False, repr=False)
    _last_note: str = field(default="", init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def touch(self, note: str = "") -> None:
        now = time.monotonic()
        with self._lock:
            if (now - self._last_touch) < self.min_interval_seconds and not note:
                return
            self._last_touch = now
            if note:
                self._last_note = note

    def snapshot(self) -> tuple[float, str]:
        with self._lock:
            return self._last_touch, self._last_note


@dataclass
class StallMonitor:
    """Warn when workers stop making progress while work is still pending.

    ``is_busy`` lets an idle queue stay quiet; ``abort_seconds`` terminates the
    process when a stall outlives it.
    """

    tracker: ActivityTracker
    logger: object
    warning_seconds: float = 600.0
    abort_seconds: float = 0.0
    check_interval_seconds: float = 30.0
    is_busy: Optional[Callable[[], bool]] = None
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _last_warning_at: float = field(default=0.0, init=False, repr=False)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="stall-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=self.check_interval_seconds + 5)
        self._thread = None

    def check(self) -> Optional[float]:
        """Return the idle time when it counts as a stall, logging a warning."""
        if self.is_busy is not None and not self.is_busy():
            return None
        last_touch, note = self.tracker.snapshot()
        idle_for = time.monotonic() - last_touch
        if self.warning_seconds <= 0 or idle_for < self.warning_seconds:
            return None
        now = time.monotonic()
        if (now - self._last_warning_at) >= self.warning_seconds:
            self._last_warning_at = now
            self.logger.warning(
                "Queue stall detected (idle %.0fs). Last job: %s",
                idle_for,
                note or "n/a",
            )
        return idle_for

    def _run(self) -> None:
        while not self._stop_event.wait(self.check_interval_seconds):
            idle_for = self.check()
            if idle_for is not None and self.abort_seconds > 0 and idle_for >= self.abort_seconds:
                self.logger.error("Aborting due to stall (idle %.0fs).", idle_for)
                os._exit(2)
