"""
Hashing utilities for file content.
"""

from __future__ import annotations

import hashlib
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Optional

SUPPORTED_EXTRA_HASHES = ("md5", "sha1", "crc32")


@dataclass(frozen=True)
class ContentDigests:
    """Digests computed in a single pass over a file."""

    sha256: str
    size: int
    md5: Optional[str] = None
    sha1: Optional[str] = None
    crc32: Optional[str] = None


class Hasher:
    """Compute the full-content SHA-256 identity hash plus optional extra digests."""

    def __init__(self, extra_hashes: Iterable[str] = (), chunk_size: int = 4 * 1024 * 1024) -> None:
        extras = [name.lower() for name in extra_hashes]
        unknown = [name for name in extras if name not in SUPPORTED_EXTRA_HASHES]
        if unknown:
            raise ValueError(f"Unsupported hash type: {', '.join(unknown)}")
        self.extra_hashes = tuple(extras)
        self.chunk_size = chunk_size

    def compute(self, handle: BinaryIO, cancelled=None) -> Optional[ContentDigests]:
        """Stream a binary handle; return None if ``cancelled()`` turns true midway."""
        sha256 = hashlib.sha256()
        md5 = hashlib.md5() if "md5" in self.extra_hashes else None
        sha1 = hashlib.sha1() if "sha1" in self.extra_hashes else None
        crc = 0 if "crc32" in self.extra_hashes else None
        size = 0
        while True:
            if cancelled is not None and cancelled():
                return None
            data = handle.read(self.chunk_size)
            if not data:
                break
            size += len(data)
            sha256.update(data)
            if md5 is not None:
                md5.update(data)
            if sha1 is not None:
                sha1.update(data)
            if crc is not None:
                crc = zlib.crc32(data, crc)
        return ContentDigests(
            sha256=sha256.hexdigest().upper(),
            size=size,
            md5=md5.hexdigest().upper() if md5 is not None else None,
            sha1=sha1.hexdigest().upper() if sha1 is not None else None,
            crc32=f"{crc & 0xFFFFFFFF:08X}" if crc is not None else None,
        )
