"""
Cleanup operations for orphaned and operator-deleted records.
"""

from .cleanup import CleanupResult, OrphanCleaner

__all__ = ["CleanupResult", "OrphanCleaner"]
