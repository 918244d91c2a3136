"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. The account number and anything
machine-specific can live in .env. Environment variables override both using
``__`` as the nested delimiter (e.g. ``SIGNAL__NUMBER=+15551234567``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from sigbridge.config import get_settings

    s = get_settings()
    print(s.signal.api_url)
    print(s.trigger_pattern.pattern)
"""

from __future__ import annotations

import re
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models: reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class AgentConfig(_StrictModel):
    name: str = "sigbridge"
    trigger_aliases: list[str] = []


class SignalConfig(_StrictModel):
    """The signal-cli-rest-api relay and how we supervise it."""

    enabled: bool = False
    number: str | None = None  # account in E.164, e.g. +15551234567
    api_url: str = "http://localhost:8080"
    container_name: str = "sigbridge-signal-api"
    image: str = "bbernhard/signal-cli-rest-api:latest"
    mode: str = "json-rpc"  # the WebSocket receive feed only exists in json-rpc mode
    health_timeout: float = 180.0  # cold boots of signal-cli are slow
    health_poll_interval: float = 2.0
    probe_timeout: float = 5.0
    request_timeout: float = 10.0
    reconnect_delay: float = 5.0
    group_sync_interval: float = 24 * 60 * 60

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: str | None) -> str | None:
        # SIGNAL__NUMBER= in .env means unset
        if v is not None and not v.strip():
            return None
        if v is not None and not v.startswith("+"):
            raise ValueError("Signal number must start with + and include the country code")
        return v


class WorkspacesConfig(_StrictModel):
    main_folder: str = "main"  # registered group in this folder skips trigger gating


class QueueConfig(_StrictModel):
    max_concurrent: int = 5
    max_retries: int = 5
    base_retry_seconds: float = 5.0

    @field_validator("max_concurrent")
    @classmethod
    def clamp_max_concurrent(cls, v: int) -> int:
        return max(1, v)


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = AgentConfig()
    signal: SignalConfig = SignalConfig()
    workspaces: WorkspacesConfig = WorkspacesConfig()
    queue: QueueConfig = QueueConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def trigger_pattern(self) -> re.Pattern[str]:
        names = [re.escape(self.agent.name)] + [
            re.escape(a.strip()) for a in self.agent.trigger_aliases if a.strip()
        ]
        return re.compile(rf"^@({'|'.join(names)})\b", re.IGNORECASE)

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def store_dir(self) -> Path:
        return (self.project_root / "store").resolve()

    @cached_property
    def signal_data_dir(self) -> Path:
        """Host directory mounted as signal-cli's state dir inside the relay."""
        return self.data_dir / "signal-cli"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
