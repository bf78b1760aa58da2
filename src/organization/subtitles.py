"""
Companion subtitle files that travel with a video.
"""

from __future__ import annotations

import os

from discovery.classify import is_subtitle
from filesystem import FileSystem


def find_companions(filesystem: FileSystem, video_path: str) -> list[str]:
    """Return subtitle files next to ``video_path`` sharing its stem (``show.en.srt`` included)."""
    directory = os.path.dirname(video_path)
    stem = os.path.splitext(os.path.basename(video_path))[0].lower()
    listing = filesystem.list_directory(directory)
    if not listing.ok:
        return []
    companions = []
    for entry in listing.value:
        if entry.is_dir or entry.path == video_path:
            continue
        name = os.path.basename(entry.path)
        if not is_subtitle(name):
            continue
        lowered = name.lower()
        if lowered.startswith(stem + "."):
            companions.append(entry.path)
    return companions


def companion_destination(subtitle_path: str, old_video: str, new_video: str) -> str:
    """Map a subtitle path onto the new video's directory and stem."""
    old_stem = os.path.splitext(os.path.basename(old_video))[0]
    new_stem = os.path.splitext(os.path.basename(new_video))[0]
    suffix = os.path.basename(subtitle_path)[len(old_stem):]
    return os.path.join(os.path.dirname(new_video), new_stem + suffix)
