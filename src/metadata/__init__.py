"""
Metadata provider contracts.
"""

from .provider import ExternalCatalog, MetadataProvider, StaticMetadataProvider

__all__ = ["ExternalCatalog", "MetadataProvider", "StaticMetadataProvider"]
