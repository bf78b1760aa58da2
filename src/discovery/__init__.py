"""
Folder scanning and video classification.
"""

from .classify import VideoClassifier, is_subtitle
from .scanner import FolderScanner, ScanResult

__all__ = ["FolderScanner", "ScanResult", "VideoClassifier", "is_subtitle"]
