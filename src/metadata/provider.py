"""
Metadata provider and external catalog contracts, plus a static provider
backed by a mapping or YAML file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import yaml

from models import EpisodeAssociation


class MetadataProvider(Protocol):
    """Answers which episodes a content hash belongs to."""

    def lookup_by_hash(self, content_hash: str, file_size: int) -> Optional[list[EpisodeAssociation]]:
        """Return associations, or None when the hash is unknown to the provider."""
        ...


class ExternalCatalog(Protocol):
    """Hooks for the external-service job kinds."""

    def download_image(self, series_id: int) -> bool: ...

    def sync_catalog(self) -> bool: ...

    def delete_reference(self, content_hash: str, file_size: int) -> bool: ...

    def recalculate_group_filter(self) -> bool: ...


class StaticMetadataProvider:
    """Provider that answers from a fixed hash -> associations mapping.

    YAML layout::

        <HASH>:
          - series_id: 1
            series_name: Example
            episode_id: 10
            episode_number: 1
            air_date: "2020-01-01"
    """

    def __init__(self, entries: Optional[dict[str, Iterable[Any]]] = None) -> None:
        self._entries: dict[str, list[EpisodeAssociation]] = {}
        for content_hash, associations in (entries or {}).items():
            self._entries[content_hash.upper()] = [_to_association(item) for item in associations]

    @classmethod
    def from_yaml(cls, path: Path) -> "StaticMetadataProvider":
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return cls(data)

    def lookup_by_hash(self, content_hash: str, file_size: int) -> Optional[list[EpisodeAssociation]]:
        associations = self._entries.get(content_hash.upper())
        if associations is None:
            return None
        return list(associations)


def _to_association(item: Any) -> EpisodeAssociation:
    if isinstance(item, EpisodeAssociation):
        return item
    return EpisodeAssociation(
        series_id=int(item["series_id"]),
        series_name=str(item.get("series_name", "")),
        episode_id=int(item["episode_id"]),
        episode_number=int(item.get("episode_number", 0)),
        air_date=str(item["air_date"]) if item.get("air_date") is not None else None,
        episode_title=str(item.get("episode_title", "")),
        group_id=item.get("group_id"),
    )
