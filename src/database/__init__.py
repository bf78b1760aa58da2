"""
Database package for schema creation and persistence helpers.
"""

from .manager import DatabaseManager
from .schema import create_databases
from .store import RecordStore

__all__ = [
    "DatabaseManager",
    "RecordStore",
    "create_databases",
]
