from pathlib import Path

import pytest

from config import AppConfig
from config.settings import ENV_CONFIG_PATH
from models import ConfigurationError


def test_config_resolves_paths(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("paths:\n  logs: \"logs\"\n", encoding="utf-8")

    config = AppConfig.load(config_path)
    logs_path = config.resolve_path("paths", "logs")

    assert logs_path == config_path.parent / "logs"
    assert config.get("missing", default=123) == 123
    assert config.resolve_path("paths", "reports", default="data/reports") == tmp_path / "data" / "reports"


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text(
        "\n".join(
            [
                "queue:",
                "  workers: 4",
                "placement:",
                "  retry_delays_ms: [10, 20]",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv(ENV_CONFIG_PATH, str(config_path))

    config = AppConfig.load()

    assert config.get("queue", "workers") == 4
    assert config.get("placement", "retry_delays_ms") == [10, 20]
    assert config.section("queue") == {"workers": 4}


def test_config_rejects_non_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        AppConfig.load(config_path)


def test_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AppConfig.load(tmp_path / "nope.yaml")
