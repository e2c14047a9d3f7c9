"""Tests for configuration loading."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from polydb.config import AppConfig, configure_logging, load_config
from polydb.exceptions import ValidationError


def test_defaults_when_file_is_missing(tmp_path: Path) -> None:
    config = load_config(environ={"POLYDB_CONFIG_DIR": str(tmp_path)})

    assert config.host == "0.0.0.0"
    assert config.port == 8081
    assert config.api_token is None
    assert config.config_dir == str(tmp_path)
    assert config.connections_path == str(tmp_path / "connections.json")


def test_file_values_then_environment_overrides(tmp_path: Path) -> None:
    (tmp_path / "app.json").write_text(json.dumps({"port": 9000, "log_level": "debug", "cors_origins": ["http://a"]}))

    config = load_config(environ={"POLYDB_CONFIG_DIR": str(tmp_path), "POLYDB_PORT": "9100", "POLYDB_API_TOKEN": "t0k"})

    assert config.port == 9100
    assert config.log_level == "DEBUG"
    assert config.api_token == "t0k"
    assert config.cors_origins == ["http://a"]


def test_cors_origins_from_environment_are_split(tmp_path: Path) -> None:
    config = load_config(environ={"POLYDB_CONFIG_DIR": str(tmp_path), "POLYDB_CORS_ORIGINS": "http://a, http://b"})
    assert config.cors_origins == ["http://a", "http://b"]


@pytest.mark.parametrize("content", ["{broken", "[1, 2]", '{"port": "abc"}', '{"colour": "red"}'])
def test_bad_file_raises_validation_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "app.json"
    path.write_text(content)
    with pytest.raises(ValidationError):
        load_config(str(path), environ={})


def test_absolute_connections_file_is_used_as_is(tmp_path: Path) -> None:
    config = AppConfig(config_dir=str(tmp_path), connections_file="/var/lib/polydb/connections.json")
    assert config.connections_path == "/var/lib/polydb/connections.json"


def test_configure_logging_sets_level_once() -> None:
    logger = configure_logging("warning")
    handlers = list(logger.handlers)
    configure_logging("debug")

    assert logger.name == "polydb"
    assert logger.level == logging.DEBUG
    assert logger.handlers == handlers
    with pytest.raises(ValidationError):
        configure_logging("loud")
