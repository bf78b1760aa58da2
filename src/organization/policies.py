"""
Pluggable naming and destination policies, consulted in priority order.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

from config import AppConfig
from filesystem import sanitize_folder_name
from models import ContentRecord, EpisodeAssociation, PlacementRecord, StorageLocation

DEFAULT_FILENAME_TEMPLATE = "{series_name} - {episode_number:02d}{ext}"


@dataclass
class PlacementContext:
    """Everything a policy may look at when deciding a name or destination."""

    placement: PlacementRecord
    content: ContentRecord
    location: StorageLocation
    full_path: str
    associations: list[EpisodeAssociation] = field(default_factory=list)
    locations: list[StorageLocation] = field(default_factory=list)
    cancelled: bool = False

    def cancel(self) -> None:
        """Abort the whole placement; no later policy is consulted."""
        self.cancelled = True

    @property
    def file_name(self) -> str:
        return os.path.basename(self.full_path)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.full_path)[1]


class NamingPolicy(Protocol):
    """A policy returns None to decline and let the next one answer."""

    def get_filename(self, context: PlacementContext) -> Optional[str]: ...

    def get_destination(self, context: PlacementContext) -> Optional[tuple[StorageLocation, str]]: ...


class PolicyRegistry:
    """Ranked collection of naming/destination policies."""

    def __init__(
        self,
        priorities: Optional[dict[str, int]] = None,
        enabled: Optional[Iterable[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.priorities = dict(priorities or {})
        self.enabled = set(enabled) if enabled is not None else None
        self.logger = logger or logging.getLogger("media_importer")
        self._policies: dict[str, NamingPolicy] = {}

    def register(self, policy_id: str, policy: NamingPolicy) -> None:
        self._policies[policy_id] = policy

    def ranked(self) -> list[tuple[str, NamingPolicy]]:
        """Enabled policies ordered by configured priority, then id."""
        entries = [
            (policy_id, policy)
            for policy_id, policy in self._policies.items()
            if self.enabled is None or policy_id in self.enabled
        ]
        return sorted(entries, key=lambda item: (self.priorities.get(item[0], 100), item[0]))

    def get_filename(self, context: PlacementContext) -> Optional[str]:
        for policy_id, policy in self.ranked():
            try:
                name = policy.get_filename(context)
            except Exception:
                self.logger.exception("Naming policy %s failed for %s", policy_id, context.full_path)
                continue
            if context.cancelled:
                self.logger.info("Naming policy %s cancelled placement of %s", policy_id, context.full_path)
                return None
            if name:
                return name
        return None

    def get_destination(self, context: PlacementContext) -> Optional[tuple[StorageLocation, str]]:
        """Return ``(location, relative directory)`` from the first answering policy."""
        for policy_id, policy in self.ranked():
            try:
                answer = policy.get_destination(context)
            except Exception:
                self.logger.exception("Destination policy %s failed for %s", policy_id, context.full_path)
                continue
            if context.cancelled:
                self.logger.info("Destination policy %s cancelled placement of %s", policy_id, context.full_path)
                return None
            if answer is None:
                continue
            location, relative_dir = answer
            relative_dir = (relative_dir or "").strip("/\\")
            # Some policies hand back the full destination file path.
            if os.path.splitext(relative_dir)[1].lower() == context.extension.lower() and context.extension:
                relative_dir = os.path.dirname(relative_dir)
            return location, relative_dir
        return None

    def __len__(self) -> int:
        return len(self._policies)


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return ""


class TemplateNamingPolicy:
    """Build file names from a ``str.format`` template over episode metadata."""

    def __init__(self, template: str = DEFAULT_FILENAME_TEMPLATE) -> None:
        self.template = template

    def get_filename(self, context: PlacementContext) -> Optional[str]:
        if not context.associations:
            return None
        first = context.associations[0]
        values = _SafeFormat(
            series_name=first.series_name,
            episode_number=first.episode_number,
            episode_title=first.episode_title,
            air_date=first.air_date or "",
            hash=context.content.hash,
            crc32=context.content.crc32 or "",
            ext=context.extension,
            original_name=os.path.splitext(context.file_name)[0],
        )
        try:
            rendered = self.template.format_map(values)
        except (ValueError, IndexError) as exc:
            raise ValueError(f"Bad filename template {self.template!r}: {exc}") from exc
        name = sanitize_folder_name(rendered)
        return name or None

    def get_destination(self, context: PlacementContext) -> Optional[tuple[StorageLocation, str]]:
        return None


def build_policy_registry(config: AppConfig, logger: Optional[logging.Logger] = None) -> PolicyRegistry:
    """Create the registry from ``placement`` settings; the template policy joins when configured."""
    settings = config.section("placement")
    priorities: dict[str, Any] = settings.get("policy_priorities") or {}
    enabled = settings.get("enabled_policies")
    registry = PolicyRegistry(
        priorities={key: int(value) for key, value in priorities.items()},
        enabled=enabled,
        logger=logger,
    )
    template = settings.get("filename_template")
    if template:
        registry.register("template", TemplateNamingPolicy(template))
    return registry
