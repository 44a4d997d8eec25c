"""Core."""

from .config import (
    DedupConfig,
    HookguardConfig,
    RetryConfig,
    ServerConfig,
    VerifierConfig,
    clear_config,
    get_config,
    load_config_from_file,
    validate_config,
)

__all__ = [
    "HookguardConfig",
    "VerifierConfig",
    "RetryConfig",
    "DedupConfig",
    "ServerConfig",
    "get_config",
    "clear_config",
    "load_config_from_file",
    "validate_config",
]
