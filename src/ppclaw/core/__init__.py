"""Core utilities: configuration, logging, exceptions."""

from .config import ConnectorSettings, clear_config_cache, get_config, set_config
from .config_store import ConfigStore, JsonConfigStore, MemoryConfigStore, deep_merge
from .exceptions import (
    BindingError,
    ConfigurationError,
    DiscoveryError,
    PPClawException,
    ProcessingError,
    RelayConnectionError,
    ValidationError,
)
from .logging import (
    configure_logging,
    correlation_context,
    get_correlation_id,
    log_context,
    mask_secret,
)

__all__ = [
    "BindingError",
    "ConfigStore",
    "ConfigurationError",
    "ConnectorSettings",
    "DiscoveryError",
    "JsonConfigStore",
    "MemoryConfigStore",
    "PPClawException",
    "ProcessingError",
    "RelayConnectionError",
    "ValidationError",
    "clear_config_cache",
    "configure_logging",
    "correlation_context",
    "deep_merge",
    "get_config",
    "get_correlation_id",
    "log_context",
    "mask_secret",
    "set_config",
]
