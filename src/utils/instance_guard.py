"""
Single-instance guard so two pipelines never share one state database.

The lock file sits beside the state database and records who holds it, so a
refused start can name the running process.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from models import utc_timestamp

LOCK_SUFFIX = ".lock"


def lock_path_for(state_db: Path) -> Path:
    """Lock file guarding one state database."""
    return state_db.with_name(state_db.name + LOCK_SUFFIX)


def read_lock_owner(lock_path: Path) -> dict[str, str]:
    """Parse the ``key=value`` lines written by the lock holder."""
    try:
        text = lock_path.read_text(encoding="utf-8")
    except OSError:
        return {}
    owner: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            owner[key.strip()] = value.strip()
    return owner


class InstanceLockError(RuntimeError):
    """Raised when another pipeline already holds the state database."""

    def __init__(self, lock_path: Path, owner: dict[str, str]) -> None:
        self.lock_path = lock_path
        self.owner = owner
        super().__init__(
            f"Another media_importer instance (pid {owner.get('pid', 'unknown')}, "
            f"started {owner.get('started', 'unknown')}) holds {lock_path}"
        )


@dataclass(frozen=True)
class InstanceLock:
    """Open lock file handle; the lock lasts until it is released."""

    handle: TextIO
    path: Path

    def release(self) -> None:
        self.handle.close()

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def _try_lock(handle: TextIO) -> bool:
    try:
        if os.name == "nt":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _write_owner(handle: TextIO, details: dict[str, str]) -> None:
    handle.seek(0)
    handle.truncate()
    lines = [
        f"pid={os.getpid()}",
        f"started={utc_timestamp()}",
        f"argv={' '.join(sys.argv)}",
    ]
    lines.extend(f"{key}={value}" for key, value in sorted(details.items()))
    handle.write("\n".join(lines))
    handle.flush()


def acquire_instance_lock(lock_path: Path, **details: str) -> InstanceLock:
    """Take the lock without blocking; ``details`` are recorded for the next caller to read."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    if not _try_lock(handle):
        handle.close()
        raise InstanceLockError(lock_path, read_lock_owner(lock_path))
    try:
        _write_owner(handle, details)
    except OSError:
        handle.close()
        raise
    return InstanceLock(handle=handle, path=lock_path)
