from pathlib import Path
from typing import Any, Optional

import pytest
import yaml

from config import AppConfig
from database import DatabaseManager, RecordStore
from filesystem import FileSystemRegistry
from metadata import StaticMetadataProvider
from orchestrator import CommandQueue, PipelineContext
from organization import build_policy_registry


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "catalog": root / "catalog.sqlite",
        "state": root / "state.sqlite",
    }


def _merge(base: dict, extra: dict) -> dict:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def write_config(tmp_path: Path, settings: Optional[dict[str, Any]] = None) -> AppConfig:
    base = {
        "paths": {"logs": "logs", "reports": "reports"},
        "queue": {"workers": 1, "retry_delay_seconds": 0, "max_attempts": 3},
        "placement": {"retry_delays_ms": [750, 3000, 5000]},
        "resource_limits": {"max_cpu_percent": 0, "max_ram_percent": 0},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(_merge(base, settings or {})), encoding="utf-8")
    return AppConfig.load(config_path)


@pytest.fixture
def make_context(tmp_path: Path):
    """Build a pipeline context over fresh databases in ``tmp_path``."""
    created: list[PipelineContext] = []

    def build(settings: Optional[dict[str, Any]] = None, provider: Optional[StaticMetadataProvider] = None):
        config = write_config(tmp_path, settings)
        db_paths = build_db_paths(tmp_path)
        db_manager = DatabaseManager(db_paths)
        db_manager.initialize()
        store = RecordStore(db_paths["catalog"])
        store.initialize()
        queue = CommandQueue(db_manager, config=config)
        context = PipelineContext(
            config=config,
            store=store,
            db_manager=db_manager,
            queue=queue,
            filesystems=FileSystemRegistry(),
            policies=build_policy_registry(config),
            provider=provider,
        )
        created.append(context)
        return context

    yield build
    for context in created:
        context.store.close()
        context.db_manager.close()


def write_file(path: Path, data: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
