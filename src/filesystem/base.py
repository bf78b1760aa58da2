"""
Filesystem abstraction: result values and the protocol every backend implements.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Protocol

from models import FailureKind


class FsStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    BUSY = "busy"
    EXISTS = "exists"
    ERROR = "error"


@dataclass(frozen=True)
class FsResult:
    """Outcome of a filesystem call; backends never raise for I/O failures."""

    status: FsStatus
    value: Any = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == FsStatus.OK

    @classmethod
    def success(cls, value: Any = None) -> "FsResult":
        return cls(FsStatus.OK, value)

    @classmethod
    def failure(cls, status: FsStatus, error: str) -> "FsResult":
        return cls(status, None, error)


@dataclass(frozen=True)
class FsObject:
    path: str
    is_dir: bool
    size: int = 0


class FileSystem(Protocol):
    """Operations the pipeline needs from a storage backend."""

    cloud_id: Optional[str]

    def resolve(self, path: str) -> FsResult: ...

    def is_directory(self, path: str) -> bool: ...

    def walk_files(self, root: str, prune: Optional[Callable[[str], bool]] = None) -> Iterator[str]: ...

    def list_directory(self, path: str) -> FsResult: ...

    def open_read(self, path: str) -> FsResult: ...

    def read_head(self, path: str, size: int) -> FsResult: ...

    def rename(self, path: str, new_name: str) -> FsResult: ...

    def move(self, source: str, destination: str) -> FsResult: ...

    def delete(self, path: str) -> FsResult: ...

    def create_directory(self, path: str) -> FsResult: ...

    def quota(self, path: str) -> FsResult: ...

    def same_device(self, first: str, second: str) -> bool: ...

    def is_placeholder(self, path: str) -> bool: ...


def failure_for(status: FsStatus) -> FailureKind:
    """Attribute a failed filesystem status to a failure kind."""
    if status == FsStatus.BUSY:
        return FailureKind.FILESYSTEM_BUSY
    if status == FsStatus.NOT_FOUND:
        return FailureKind.SOURCE_NOT_FOUND
    if status == FsStatus.EXISTS:
        return FailureKind.DESTINATION_CONFLICT
    return FailureKind.FILESYSTEM_ERROR
