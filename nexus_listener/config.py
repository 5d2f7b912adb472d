"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_NAME = "nexus-listener"
SIGNATURE_HEADER = "x-nexus-webhook-signature"


class WebhookConfig(BaseModel):
    """Process-wide listener settings, frozen once loaded."""

    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    secret_key: str = ""
    artifact_types: frozenset[str] = frozenset()
    port: int = 8080
    bind: str = "0.0.0.0"
    signature_header: str = SIGNATURE_HEADER
    max_body_size: int = Field(default=1024**2, gt=0)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        if not value:
            return value
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("signature_header")
    @classmethod
    def _lower_header(cls, value: str) -> str:
        return value.lower()


class DeployConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    download_dir: str = ""
    target_dir: str = ""
    timeout: float = 60.0

    def get_download_dir(self) -> Path:
        if self.download_dir:
            return Path(self.download_dir).expanduser()
        return Path(tempfile.gettempdir())

    def get_target_dir(self) -> Path:
        if self.target_dir:
            return Path(self.target_dir).expanduser()
        return Path.home()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NEXUS_LISTENER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
    )

    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    log_level: str = "INFO"
    log_json: bool = False


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def default_config_path() -> Path:
    """``config.yaml`` in the per-user config dir (``NEXUS_LISTENER_CONFIG_DIR`` wins)."""
    config_dir = os.environ.get("NEXUS_LISTENER_CONFIG_DIR") or click.get_app_dir(APP_NAME)
    return Path(config_dir) / "config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from env vars and an optional YAML config.

    A file named explicitly (argument or ``NEXUS_LISTENER_CONFIG``) must
    exist; the per-user default is only read when present. ``overrides``
    (typically command-line flags) win over both.
    """
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("NEXUS_LISTENER_CONFIG")

    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {path}")
        yaml_data = _read_yaml(path)
    else:
        default = default_config_path()
        if default.is_file():
            yaml_data = _read_yaml(default)

    if overrides:
        yaml_data = _deep_merge(yaml_data, overrides)

    return Settings(**yaml_data)
