"""
Content identity: hashing, identity records, and metadata processing.
"""

from .engine import IdentityEngine
from .hasher import ContentDigests, Hasher
from .processor import FileProcessor

__all__ = ["ContentDigests", "FileProcessor", "Hasher", "IdentityEngine"]
