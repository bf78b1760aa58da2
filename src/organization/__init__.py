"""
File naming policies and the placement engine.
"""

from .placement import RETRY_DELAYS_MS, PlacementEngine, PlacementResult, prune_empty_directories
from .policies import (
    NamingPolicy,
    PlacementContext,
    PolicyRegistry,
    TemplateNamingPolicy,
    build_policy_registry,
)

__all__ = [
    "NamingPolicy",
    "PlacementContext",
    "PlacementEngine",
    "PlacementResult",
    "PolicyRegistry",
    "RETRY_DELAYS_MS",
    "TemplateNamingPolicy",
    "build_policy_registry",
    "prune_empty_directories",
]
