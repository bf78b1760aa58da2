"""
Pipeline context: the single object that owns every collaborator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from config import AppConfig
from database import DatabaseManager, RecordStore
from filesystem import FileSystemRegistry
from utils import ResourceMonitor

from .task_queue import CommandQueue

if TYPE_CHECKING:
    from metadata.provider import ExternalCatalog, MetadataProvider
    from organization.policies import PolicyRegistry


@dataclass
class PipelineContext:
    """Collaborators shared by the scanner, engines, and job handlers."""

    config: AppConfig
    store: RecordStore
    db_manager: DatabaseManager
    queue: CommandQueue
    filesystems: FileSystemRegistry
    policies: "PolicyRegistry"
    provider: Optional["MetadataProvider"] = None
    catalog: Optional["ExternalCatalog"] = None
    monitor: Optional[ResourceMonitor] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("media_importer"))
    movement_logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("media_importer.movement")
    )
    performance_logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("media_importer.performance")
    )
