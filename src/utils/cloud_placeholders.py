"""
Detect cloud placeholder files that are not hydrated on local disk
(OneDrive, iCloud Drive, Dropbox online-only files).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Union

# Windows file attribute flags
FILE_ATTRIBUTE_REPARSE_POINT = 0x00000400
FILE_ATTRIBUTE_OFFLINE = 0x00001000
FILE_ATTRIBUTE_RECALL_ON_OPEN = 0x00040000
FILE_ATTRIBUTE_RECALL_ON_DATA_ACCESS = 0x00400000

# macOS st_flags bit for file-provider placeholders
SF_DATALESS = 0x40000000


def is_cloud_placeholder(path: Union[str, Path]) -> bool:
    """Return True if a path looks like a cloud placeholder."""
    try:
        stat = os.stat(path)
    except OSError:
        return False
    if os.name == "nt":
        attrs = getattr(stat, "st_file_attributes", 0)
        if attrs & FILE_ATTRIBUTE_RECALL_ON_DATA_ACCESS:
            return True
        if attrs & FILE_ATTRIBUTE_RECALL_ON_OPEN:
            return True
        return bool((attrs & FILE_ATTRIBUTE_OFFLINE) and (attrs & FILE_ATTRIBUTE_REPARSE_POINT))
    if sys.platform == "darwin":
        return bool(getattr(stat, "st_flags", 0) & SF_DATALESS)
    return False
