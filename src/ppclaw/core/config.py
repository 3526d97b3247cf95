# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Core configuration - centralized config for the ppclaw connector.

All environment-based configuration should flow through this module.

Usage:
    from ppclaw.core.config import get_config
    config = get_config()

    discovery_url = config.discovery_url
    api_key = config.api_key
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_URL = "https://api.claw.icu/relay.json"
DEFAULT_CONFIG_FILE = Path.home() / ".ppclaw" / "config.json"
DEFAULT_NOTES_DIR = Path.home() / ".ppclaw" / "notes"


class ConnectorSettings(BaseSettings):
    """Configuration settings for the relay connector.

    Settings can be configured via environment variables with the
    PPCLAW_ prefix. Values persisted by a successful bind (see
    ``ppclaw.core.config_store``) are layered underneath by ``load()``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PPCLAW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # CREDENTIALS
    # ==========================================================================

    api_key: str | None = Field(default=None, description="Durable relay API key")
    bind_token: str | None = Field(
        default=None,
        description="One-time token exchanged for an API key on first start",
    )

    # ==========================================================================
    # RELAY SETTINGS
    # ==========================================================================

    discovery_url: str = Field(
        default=DEFAULT_DISCOVERY_URL,
        description="Discovery endpoint returning the relay pool",
    )
    channel_id: str = Field(default="ppclaw", description="Channel id reported to the agent")
    agent_instance_id: str = Field(
        default="default",
        description="Namespace for per-agent storage keys",
    )
    retry_base_delay: float = Field(default=1.0, gt=0, description="Initial reconnect delay (seconds)")
    retry_max_delay: float = Field(default=30.0, gt=0, description="Reconnect delay cap (seconds)")
    request_timeout: float = Field(default=10.0, gt=0, description="HTTP request timeout (seconds)")
    heartbeat_interval: float = Field(default=30.0, gt=0, description="WebSocket heartbeat (seconds)")

    # ==========================================================================
    # STORAGE
    # ==========================================================================

    config_file: Path = Field(
        default=DEFAULT_CONFIG_FILE,
        description="JSON file holding persisted credentials",
    )
    notes_dir: Path = Field(default=DEFAULT_NOTES_DIR, description="Directory for group notes")

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field(default="", description="Log format: 'json', 'text', or '' (auto-detect)")
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    @model_validator(mode="after")
    def _check_delays(self) -> ConnectorSettings:
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @property
    def has_credentials(self) -> bool:
        """True when an api key or a bind token is available."""
        return bool(self.api_key or self.bind_token)

    @classmethod
    def load(cls, persisted: dict[str, Any] | None = None, **overrides: Any) -> ConnectorSettings:
        """Build settings with precedence: overrides > env > persisted > defaults.

        ``persisted`` is usually the content of the JSON config file written
        by the config store after a successful bind.
        """
        settings = cls(**overrides)
        if not persisted:
            return settings

        explicit = settings.model_fields_set
        updates = {
            key: value
            for key, value in persisted.items()
            if key in cls.model_fields and key not in explicit
        }
        if not updates:
            return settings
        logger.debug(f"Applying persisted settings: {sorted(updates)}")
        return cls(**{**updates, **{k: getattr(settings, k) for k in explicit}})


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: ConnectorSettings | None = None


def get_config() -> ConnectorSettings:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ConnectorSettings()
    return _config


def set_config(config: ConnectorSettings) -> None:
    """Replace the global configuration (called by the CLI after loading)."""
    global _config
    _config = config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
