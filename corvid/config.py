"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from corvid.core.approval import ApprovalMode
from corvid.utils.platform import get_config_dir, get_data_dir


class ProviderConfig(BaseModel):
    """Per-instance overrides. Unset fields fall back to the backend's env vars."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    model: str | None = None
    endpoint: str | None = None
    timeout: float | None = None


class RetryConfig(BaseModel):
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0


class CheckpointConfig(BaseModel):
    enabled: bool = False
    db_path: str = ""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CORVID_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    provider: str = ""
    model: str | None = None
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT
    context_size: int | None = None
    max_tokens: int = 2048
    temperature: float = 0.7
    stream: bool = True
    max_iterations: int = 25
    retry: RetryConfig = Field(default_factory=RetryConfig)
    checkpointing: CheckpointConfig = Field(default_factory=CheckpointConfig)
    data_dir: str = ""
    log_level: str = "WARNING"
    log_json: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Init kwargs carry the YAML overlay, so env vars go first.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return get_data_dir()

    def get_checkpoint_db(self) -> Path:
        if self.checkpointing.db_path:
            return Path(self.checkpointing.db_path)
        return self.get_data_dir() / "checkpoints.db"

    def provider_config(self, name: str) -> ProviderConfig:
        """Config for ``name``, with the top-level ``model`` applied when set."""
        config = self.providers.get(name, ProviderConfig())
        if self.model and not config.model:
            config = config.model_copy(update={"model": self.model})
        return config


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings from env vars, a YAML config file and keyword overrides."""
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("CORVID_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # Build settings: YAML values as defaults, env vars override, then explicit
    # overrides (e.g. CLI flags) win over both.
    settings = Settings(**yaml_data)
    updates = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=updates) if updates else settings
