"""
Utility helpers for the media import pipeline.
"""

from .activity import ActivityTracker, StallMonitor
from .cloud_placeholders import is_cloud_placeholder
from .locks import ReadWriteLock
from .logging_setup import setup_logging
from .progress import ProgressReporter
from .resource_monitor import ResourceMonitor

__all__ = [
    "setup_logging",
    "ResourceMonitor",
    "ProgressReporter",
    "ActivityTracker",
    "StallMonitor",
    "ReadWriteLock",
    "is_cloud_placeholder",
]
