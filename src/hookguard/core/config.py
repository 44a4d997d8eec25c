"""Configuration types with environment variable support.

All settings can be configured via environment variables with the HOOKGUARD_ prefix.
Example: HOOKGUARD_MAX_RETRIES=5 sets the retry budget to 5 retries.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from hookguard.webhooks.retry import RetryPolicy, compute_backoff_delay
from hookguard.webhooks.verifier import SignatureAlgorithm

ENV_PREFIX = "HOOKGUARD_"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            loaded = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            loaded = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return loaded


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


def section_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Merge ``{section: {key: value}}`` file contents into flat setting names.

    Top-level scalar keys are taken as-is, so both of these set max_retries:

        retry:
          max_retries: 5

        max_retries: 5
    """
    result: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            result.update(flatten_config(value))
        else:
            result[key] = value
    return result


_SETTINGS_CONFIG = SettingsConfigDict(
    env_prefix=ENV_PREFIX,
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class VerifierConfig(BaseSettings):
    """Signature verification settings.

    - HOOKGUARD_WEBHOOK_SECRET: Shared secret (required to accept webhooks)
    - HOOKGUARD_SIGNATURE_HEADER: Header carrying ``t=...,<algo>=...``
    - HOOKGUARD_ALGORITHM: sha256 or sha512
    - HOOKGUARD_TOLERANCE_SECONDS: Replay window
    """

    model_config = _SETTINGS_CONFIG

    webhook_secret: str | None = Field(
        default=None,
        repr=False,
        description="Shared secret used to sign webhook payloads.",
    )
    signature_header: str = Field(
        default="X-Signature",
        description="Request header carrying the signature.",
    )
    algorithm: SignatureAlgorithm = Field(
        default=SignatureAlgorithm.SHA256,
        description="Digest algorithm: 'sha256' or 'sha512'.",
    )
    tolerance_seconds: int = Field(
        default=300,
        ge=0,
        description="Maximum signature age (and clock skew) in seconds.",
    )


class RetryConfig(BaseSettings):
    """Retry behavior for webhook processing. Delays are in seconds."""

    model_config = _SETTINGS_CONFIG

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt. 0 disables retrying.",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first retry (seconds).",
    )
    max_delay: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for any single backoff delay (seconds).",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        gt=0,
        description="Factor applied to the delay after each failed attempt.",
    )

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
        )


class DedupConfig(BaseSettings):
    """Deduplication cache settings."""

    model_config = _SETTINGS_CONFIG

    dedup_ttl_seconds: float = Field(
        default=86400.0,
        gt=0,
        description="How long a processed event id is remembered (24 hours default).",
    )
    dedup_max_entries: int = Field(
        default=100_000,
        ge=1,
        description="Maximum remembered event ids before oldest-first eviction.",
    )
    dedup_sweep_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between sweeps of expired entries.",
    )


class ServerConfig(BaseSettings):
    """Webhook receiver settings."""

    model_config = _SETTINGS_CONFIG

    bind: str = Field(
        default="0.0.0.0:8080",
        description="host:port the receiver listens on.",
    )
    processing_timeout: float | None = Field(
        default=25.0,
        description="Overall deadline for processing one event (seconds). None or 0 disables it.",
    )
    max_body_size: int = Field(
        default=1024 * 1024,
        description="Maximum accepted webhook body size (bytes). Default 1MB.",
    )
    admin_user: str | None = Field(
        default=None,
        description="Username protecting /stats and /metrics.",
    )
    admin_password: str | None = Field(
        default=None,
        repr=False,
        description="Password protecting /stats and /metrics.",
    )


_SECTIONS: dict[str, type[BaseSettings]] = {
    "verifier": VerifierConfig,
    "retry": RetryConfig,
    "dedup": DedupConfig,
    "server": ServerConfig,
}


class HookguardConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.retry.max_retries)
        print(config.verifier.tolerance_seconds)
    """

    model_config = _SETTINGS_CONFIG

    _overrides: dict[str, Any] = PrivateAttr(default_factory=dict)

    def _section(self, cls: type[BaseSettings]) -> Any:
        values = {k: v for k, v in self._overrides.items() if k in cls.model_fields}
        return cls(**values)

    def with_overrides(self, overrides: dict[str, Any]) -> HookguardConfig:
        """Return a copy whose sections prefer ``overrides`` over the environment."""
        config = HookguardConfig()
        config._overrides = {**self._overrides, **overrides}
        return config

    @property
    def verifier(self) -> VerifierConfig:
        """Get signature verification configuration."""
        return self._section(VerifierConfig)

    @property
    def retry(self) -> RetryConfig:
        """Get retry configuration."""
        return self._section(RetryConfig)

    @property
    def dedup(self) -> DedupConfig:
        """Get deduplication configuration."""
        return self._section(DedupConfig)

    @property
    def server(self) -> ServerConfig:
        """Get receiver configuration."""
        return self._section(ServerConfig)

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display.

        Secrets are masked.
        """
        display: dict[str, Any] = {}
        for name in _SECTIONS:
            section = getattr(self, name)
            values = section.model_dump(mode="json")
            for key, field_info in type(section).model_fields.items():
                if field_info.repr is False and values.get(key):
                    values[key] = "********"
            display[name] = values
        return display

    def to_env_dict(self) -> dict[str, str]:
        """Export current configuration as environment variable dictionary.

        Unset values are exported as empty strings; secrets are omitted.
        """
        result: dict[str, str] = {}
        for name in _SECTIONS:
            section = getattr(self, name)
            values = section.model_dump(mode="json")
            for key, field_info in type(section).model_fields.items():
                if field_info.repr is False:
                    continue
                value = values[key]
                if value is None:
                    result[f"{ENV_PREFIX}{key.upper()}"] = ""
                elif isinstance(value, bool):
                    result[f"{ENV_PREFIX}{key.upper()}"] = str(value).lower()
                else:
                    result[f"{ENV_PREFIX}{key.upper()}"] = str(value)
        return result


def validate_config(config: HookguardConfig) -> tuple[list[str], list[str]]:
    """Check settings that are individually valid but unusable together.

    Returns:
        Tuple of (errors, warnings).
    """
    errors: list[str] = []
    warnings: list[str] = []

    verifier = config.verifier
    if not verifier.webhook_secret:
        errors.append("webhook_secret is not set; every webhook would be rejected")
    elif len(verifier.webhook_secret) < 16:
        warnings.append("webhook_secret is shorter than 16 characters")
    if verifier.tolerance_seconds > 3600:
        warnings.append(
            f"tolerance_seconds ({verifier.tolerance_seconds}) allows replays for over an hour"
        )

    retry = config.retry
    if retry.max_delay < retry.base_delay:
        warnings.append(
            f"max_delay ({retry.max_delay}s) is below base_delay ({retry.base_delay}s); "
            "every retry will wait max_delay"
        )
    if retry.backoff_multiplier < 1:
        warnings.append(
            f"backoff_multiplier ({retry.backoff_multiplier}) shrinks delays between retries"
        )

    server = config.server
    if server.processing_timeout:
        policy = retry.to_policy()
        worst_case = 0.0
        for attempt in range(retry.max_retries):
            worst_case += compute_backoff_delay(attempt, policy)
            if worst_case >= server.processing_timeout:
                break
        if worst_case >= server.processing_timeout:
            warnings.append(
                f"backoff delays alone ({worst_case:.1f}s) reach processing_timeout "
                f"({server.processing_timeout}s); later retries will never run"
            )
    if bool(server.admin_user) != bool(server.admin_password):
        errors.append("admin_user and admin_password must be set together")

    return errors, warnings


_config: HookguardConfig | None = None


def get_config() -> HookguardConfig:
    """Get the global configuration instance.

    Returns a cached instance of HookguardConfig that reads from environment variables.
    The instance is created once and cached for the lifetime of the process.

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = HookguardConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
