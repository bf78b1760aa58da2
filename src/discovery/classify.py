"""
Video classification by extension with a container signature fallback.
"""

from __future__ import annotations

import os
from typing import Callable, Iterable, Optional

DEFAULT_VIDEO_EXTENSIONS = {
    ".mkv",
    ".mp4",
    ".m4v",
    ".avi",
    ".mov",
    ".wmv",
    ".ts",
    ".m2ts",
    ".ogm",
    ".webm",
    ".flv",
    ".mpg",
    ".mpeg",
    ".rmvb",
}

SUBTITLE_EXTENSIONS = {".srt", ".ass", ".ssa", ".sub", ".idx", ".sup", ".vtt", ".smi"}

# Extensions that are never sniffed.
KNOWN_NON_VIDEO_EXTENSIONS = SUBTITLE_EXTENSIONS | {
    ".txt",
    ".nfo",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".pdf",
    ".zip",
    ".rar",
    ".7z",
    ".sfv",
    ".md5",
    ".xml",
    ".json",
    ".db",
    ".ini",
    ".lnk",
    ".url",
    ".part",
    ".tmp",
}

SNIFF_BYTES = 16


def _is_container_signature(head: bytes) -> bool:
    if head.startswith(b"\x1A\x45\xDF\xA3"):  # EBML (Matroska/WebM)
        return True
    if len(head) >= 8 and head[4:8] == b"ftyp":  # ISO BMFF (MP4/MOV)
        return True
    if head.startswith(b"RIFF") and head[8:12] == b"AVI ":
        return True
    if head.startswith(b"\x30\x26\xB2\x75\x8E\x66\xCF\x11"):  # ASF/WMV
        return True
    if head.startswith(b"\x00\x00\x01\xBA") or head.startswith(b"\x00\x00\x01\xB3"):  # MPEG-PS
        return True
    if head.startswith(b"FLV"):
        return True
    if head.startswith(b"OggS"):
        return True
    return False


class VideoClassifier:
    """Decide whether a path is a video file."""

    def __init__(
        self,
        video_extensions: Optional[Iterable[str]] = None,
        sniff_unknown: bool = True,
    ) -> None:
        extensions = video_extensions or DEFAULT_VIDEO_EXTENSIONS
        self.video_extensions = {_normalize_extension(ext) for ext in extensions}
        self.sniff_unknown = sniff_unknown

    def is_video(self, path: str, read_head: Optional[Callable[[str, int], Optional[bytes]]] = None) -> bool:
        extension = os.path.splitext(path)[1].lower()
        if extension in self.video_extensions:
            return True
        if extension in KNOWN_NON_VIDEO_EXTENSIONS or not self.sniff_unknown or read_head is None:
            return False
        head = read_head(path, SNIFF_BYTES)
        if not head:
            return False
        return _is_container_signature(head)


def is_subtitle(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in SUBTITLE_EXTENSIONS


def _normalize_extension(extension: str) -> str:
    extension = extension.strip().lower()
    return extension if extension.startswith(".") else f".{extension}"
