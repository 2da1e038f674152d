"""Environment-driven settings for Conduit.

Environment variables:
    CONDUIT_ENCRYPTION_KEY: Master secret for the credential vault (required by the vault)
    CONDUIT_CACHE_DEFAULT_TTL: Default cache TTL in seconds (default: 300)
    CONDUIT_CACHE_MAX_SIZE: Maximum cache entries (default: 1000)
    CONDUIT_CACHE_SWEEP_INTERVAL: Seconds between expired-entry sweeps (default: 60)
    CONDUIT_CACHE_DB_PATH: SQLite path for the cache persistence mirror (default: unset)
    CONDUIT_CONNECTOR_TIMEOUT: Default fetch timeout in seconds (default: 30)
    CONDUIT_HEALTH_TIMEOUT: Connection test timeout in seconds (default: 10)
    CONDUIT_SAMPLE_TIMEOUT: Sample fetch timeout after a connection test (default: 5)
    CONDUIT_STRICT_DECRYPTION: "1" to refuse connectors whose secrets fail to decrypt
    CONDUIT_AUDIT_LOG_PATH: JSONL audit log path (read by the audit sink)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from conduit.errors import SettingsError

ENV_ENCRYPTION_KEY: Final[str] = "CONDUIT_ENCRYPTION_KEY"
ENV_CACHE_DEFAULT_TTL: Final[str] = "CONDUIT_CACHE_DEFAULT_TTL"
ENV_CACHE_MAX_SIZE: Final[str] = "CONDUIT_CACHE_MAX_SIZE"
ENV_CACHE_SWEEP_INTERVAL: Final[str] = "CONDUIT_CACHE_SWEEP_INTERVAL"
ENV_CACHE_DB_PATH: Final[str] = "CONDUIT_CACHE_DB_PATH"
ENV_CONNECTOR_TIMEOUT: Final[str] = "CONDUIT_CONNECTOR_TIMEOUT"
ENV_HEALTH_TIMEOUT: Final[str] = "CONDUIT_HEALTH_TIMEOUT"
ENV_SAMPLE_TIMEOUT: Final[str] = "CONDUIT_SAMPLE_TIMEOUT"
ENV_STRICT_DECRYPTION: Final[str] = "CONDUIT_STRICT_DECRYPTION"

DEFAULT_CACHE_TTL_SECONDS: Final[float] = 300.0
DEFAULT_CACHE_MAX_SIZE: Final[int] = 1000
DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS: Final[float] = 60.0
DEFAULT_CONNECTOR_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_HEALTH_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_SAMPLE_TIMEOUT_SECONDS: Final[float] = 5.0


@dataclass(frozen=True)
class Settings:
    """Conduit runtime settings (immutable).

    Attributes:
        cache_default_ttl: Default TTL applied by GenericCache.set.
        cache_max_size: Entry cap before FIFO eviction.
        cache_sweep_interval: Interval of the background expired-entry sweep.
        cache_db_path: SQLite mirror path, or None for a memory-only cache.
        connector_timeout: Default Connector.fetch timeout.
        health_timeout: Connector.test_connection timeout.
        sample_timeout: Best-effort sample fetch timeout after a connection test.
        strict_decryption: Refuse to build connectors whose secrets fail to decrypt.
    """

    cache_default_ttl: float = DEFAULT_CACHE_TTL_SECONDS
    cache_max_size: int = DEFAULT_CACHE_MAX_SIZE
    cache_sweep_interval: float = DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS
    cache_db_path: str | None = None
    connector_timeout: float = DEFAULT_CONNECTOR_TIMEOUT_SECONDS
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT_SECONDS
    sample_timeout: float = DEFAULT_SAMPLE_TIMEOUT_SECONDS
    strict_decryption: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.cache_max_size <= 0:
            raise SettingsError(
                f"{ENV_CACHE_MAX_SIZE} must be a positive integer, got {self.cache_max_size}"
            )
        for name, value in (
            ("cache_default_ttl", self.cache_default_ttl),
            ("cache_sweep_interval", self.cache_sweep_interval),
            ("connector_timeout", self.connector_timeout),
            ("health_timeout", self.health_timeout),
            ("sample_timeout", self.sample_timeout),
        ):
            if value <= 0:
                raise SettingsError(f"{name} must be positive, got {value}")


def _parse_positive_int(env_var: str, default: int) -> int:
    """Parse a positive integer from an environment variable.

    Raises:
        SettingsError: If the value is set but not a positive integer.
    """
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return default

    raw = raw.strip()
    try:
        value = int(raw)
    except ValueError as e:
        raise SettingsError(f"{env_var} must be a positive integer, got '{raw}'") from e

    if value <= 0:
        raise SettingsError(f"{env_var} must be a positive integer, got {value}")
    return value


def _parse_positive_float(env_var: str, default: float) -> float:
    """Parse a positive number of seconds from an environment variable.

    Raises:
        SettingsError: If the value is set but not a positive number.
    """
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return default

    raw = raw.strip()
    try:
        value = float(raw)
    except ValueError as e:
        raise SettingsError(f"{env_var} must be a positive number, got '{raw}'") from e

    if value <= 0:
        raise SettingsError(f"{env_var} must be a positive number, got {value}")
    return value


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def load_settings() -> Settings:
    """Load settings from environment variables.

    Returns:
        Settings with validated values.

    Raises:
        SettingsError: If any value is present but invalid.
    """
    db_path = os.environ.get(ENV_CACHE_DB_PATH, "").strip() or None

    return Settings(
        cache_default_ttl=_parse_positive_float(ENV_CACHE_DEFAULT_TTL, DEFAULT_CACHE_TTL_SECONDS),
        cache_max_size=_parse_positive_int(ENV_CACHE_MAX_SIZE, DEFAULT_CACHE_MAX_SIZE),
        cache_sweep_interval=_parse_positive_float(
            ENV_CACHE_SWEEP_INTERVAL, DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS
        ),
        cache_db_path=db_path,
        connector_timeout=_parse_positive_float(
            ENV_CONNECTOR_TIMEOUT, DEFAULT_CONNECTOR_TIMEOUT_SECONDS
        ),
        health_timeout=_parse_positive_float(ENV_HEALTH_TIMEOUT, DEFAULT_HEALTH_TIMEOUT_SECONDS),
        sample_timeout=_parse_positive_float(ENV_SAMPLE_TIMEOUT, DEFAULT_SAMPLE_TIMEOUT_SECONDS),
        strict_decryption=_get_env_bool(ENV_STRICT_DECRYPTION),
    )
