"""
Application settings.

Settings are resolved in priority order:
1. Environment variables (RPMPROXY_DATA_DIR, RPMPROXY_BASE_URL,
   RPMPROXY_LOG_LEVEL, RPMPROXY_CONFIG)
2. A YAML config file (RPMPROXY_CONFIG, or <data dir>/config.yaml)
3. The defaults declared on the Settings model
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from rpmproxy.domain.errors import ConfigError

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "RPMPROXY_DATA_DIR"
BASE_URL_ENV_VAR = "RPMPROXY_BASE_URL"
LOG_LEVEL_ENV_VAR = "RPMPROXY_LOG_LEVEL"
CONFIG_ENV_VAR = "RPMPROXY_CONFIG"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"


class Settings(BaseModel):
    """
    Top-level configuration for the RPM repository proxy.
    """

    data_dir: Path = Field(
        default=_DEFAULT_DATA_DIR,
        description="Directory holding the key-value store.",
    )
    base_url: str = Field(
        default="http://localhost:8000",
        description="Public URL of this service, used in generated .repo files.",
    )
    providers: List[str] = Field(
        default_factory=lambda: ["cursor"],
        description="Provider ids to serve and poll.",
    )
    header_fetch_bytes: int = Field(
        default=5 * 1024 * 1024,
        gt=0,
        description="Size of the leading byte range fetched to parse RPM headers.",
    )
    fetch_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout applied to each individual HTTP operation.",
    )
    extraction_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Wall-clock ceiling for one complete metadata extraction.",
    )
    max_extractions_per_run: int = Field(
        default=1,
        ge=0,
        description="How many RPMs a single discovery cycle may extract.",
    )
    check_interval_seconds: int = Field(
        default=6 * 60 * 60,
        ge=0,
        description="Seconds between background discovery cycles. 0 disables the loop.",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level.",
    )


def _config_path(env: Mapping[str, str], data_dir: Path) -> Optional[Path]:
    if CONFIG_ENV_VAR in env:
        path = Path(env[CONFIG_ENV_VAR]).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        return path

    path = data_dir / "config.yaml"
    return path if path.exists() else None


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return raw


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment and an optional YAML file.
    """
    env = os.environ if env is None else env

    data_dir = Path(env[DATA_ROOT_ENV_VAR]).expanduser() if env.get(DATA_ROOT_ENV_VAR) else None

    values: Dict[str, Any] = {}
    config_path = _config_path(env, data_dir or _DEFAULT_DATA_DIR)
    if config_path is not None:
        logger.debug(f"Loading config from {config_path}")
        values.update(_load_yaml(config_path))

    if data_dir is not None:
        values["data_dir"] = data_dir
    if env.get(BASE_URL_ENV_VAR):
        values["base_url"] = env[BASE_URL_ENV_VAR]
    if env.get(LOG_LEVEL_ENV_VAR):
        values["log_level"] = env[LOG_LEVEL_ENV_VAR]

    try:
        settings = Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    settings.base_url = settings.base_url.rstrip("/")
    return settings
