"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from rpmproxy.core.config import Settings, load_settings
from rpmproxy.domain.errors import ConfigError


def test_defaults(tmp_path: Path) -> None:
    settings = load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)})

    assert settings.data_dir == tmp_path
    assert settings.base_url == "http://localhost:8000"
    assert settings.providers == ["cursor"]
    assert settings.header_fetch_bytes == 5 * 1024 * 1024
    assert settings.max_extractions_per_run == 1
    assert settings.check_interval_seconds == 6 * 60 * 60


def test_yaml_in_data_dir(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        yaml.safe_dump({"base_url": "https://rpm.example.com/", "max_extractions_per_run": 3})
    )

    settings = load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)})

    assert settings.base_url == "https://rpm.example.com"
    assert settings.max_extractions_per_run == 3


def test_env_overrides_yaml(tmp_path: Path) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("base_url: https://from-yaml.example.com\nlog_level: DEBUG\n")

    settings = load_settings({
        "RPMPROXY_CONFIG": str(config),
        "RPMPROXY_DATA_DIR": str(tmp_path),
        "RPMPROXY_BASE_URL": "https://from-env.example.com",
    })

    assert settings.base_url == "https://from-env.example.com"
    assert settings.log_level == "DEBUG"


def test_empty_yaml(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("")
    assert load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)}).providers == ["cursor"]


def test_missing_explicit_config(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_settings({"RPMPROXY_CONFIG": str(tmp_path / "absent.yaml")})


def test_invalid_yaml(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("base_url: [unclosed\n")
    with pytest.raises(ConfigError):
        load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)})


def test_yaml_must_be_mapping(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("- cursor\n")
    with pytest.raises(ConfigError):
        load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)})


def test_invalid_values(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("max_extractions_per_run: -1\n")
    with pytest.raises(ConfigError):
        load_settings({"RPMPROXY_DATA_DIR": str(tmp_path)})


def test_settings_model_defaults() -> None:
    assert Settings().fetch_timeout_seconds == 60.0
    assert Settings().extraction_timeout_seconds == 600.0
