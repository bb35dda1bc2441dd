"""
Configuration module for the reconciliation engine.

Loads configuration from environment variables. Backoff parameters are
configured per call class (READ_* and WRITE_* variables).
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from backoff import BackoffPolicy

logger = logging.getLogger(__name__)


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    if raw.lower() in ("none", "off"):
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_json_object(name: str) -> Dict[str, Any]:
    """Parse a JSON object from the environment; malformed values are ignored."""
    raw = os.getenv(name)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring {name}: not valid JSON")
        return {}
    if not isinstance(value, dict):
        logger.warning(f"Ignoring {name}: expected a JSON object")
        return {}
    return value


@dataclass
class BackoffConfig:
    """Backoff parameters for one call class."""

    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter_factor: float = 0.5
    max_attempts: int = 20
    retry_timeout: Optional[float] = 180.0
    conflict_timeout: Optional[float] = 600.0
    rate_limited_min_delay: float = 5.0

    @classmethod
    def read_defaults(cls):
        return cls.from_policy(BackoffPolicy.read())

    @classmethod
    def write_defaults(cls):
        return cls.from_policy(BackoffPolicy.write())

    @classmethod
    def from_policy(cls, policy: BackoffPolicy):
        return cls(
            base_delay=policy.base_delay,
            max_delay=policy.max_delay,
            jitter_factor=policy.jitter_factor,
            max_attempts=policy.max_attempts,
            retry_timeout=policy.retry_timeout,
            conflict_timeout=policy.conflict_timeout,
            rate_limited_min_delay=policy.rate_limited_min_delay,
        )

    @classmethod
    def from_env(cls, prefix: str, defaults: "BackoffConfig"):
        """Load from ``<prefix>_BACKOFF_*`` environment variables."""
        return cls(
            base_delay=_env_float(f"{prefix}_BACKOFF_BASE_DELAY", defaults.base_delay),
            max_delay=_env_float(f"{prefix}_BACKOFF_MAX_DELAY", defaults.max_delay),
            jitter_factor=_env_float(
                f"{prefix}_BACKOFF_JITTER_FACTOR", defaults.jitter_factor
            ),
            max_attempts=_env_int(f"{prefix}_BACKOFF_MAX_ATTEMPTS", defaults.max_attempts),
            retry_timeout=_env_float(
                f"{prefix}_BACKOFF_RETRY_TIMEOUT", defaults.retry_timeout
            ),
            conflict_timeout=_env_float(
                f"{prefix}_BACKOFF_CONFLICT_TIMEOUT", defaults.conflict_timeout
            ),
            rate_limited_min_delay=_env_float(
                f"{prefix}_BACKOFF_RATE_LIMITED_MIN_DELAY",
                defaults.rate_limited_min_delay,
            ),
        )

    def to_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter_factor=self.jitter_factor,
            max_attempts=self.max_attempts,
            retry_timeout=self.retry_timeout,
            conflict_timeout=self.conflict_timeout,
            rate_limited_min_delay=self.rate_limited_min_delay,
        )


@dataclass
class PollerConfig:
    """Operation polling configuration."""

    interval: float = 3.0  # seconds between status checks
    max_interval: float = 30.0
    backoff_factor: float = 1.0  # 1.0 = fixed interval
    timeout: Optional[float] = 1800.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            interval=_env_float("POLL_INTERVAL", 3.0),
            max_interval=_env_float("POLL_MAX_INTERVAL", 30.0),
            backoff_factor=_env_float("POLL_BACKOFF_FACTOR", 1.0),
            timeout=_env_float("POLL_TIMEOUT", 1800.0),
        )


@dataclass
class RateLimitConfig:
    """Client-side rate limiting per remote action."""

    default_rate: float = 20  # calls per period, 0 disables
    period: float = 1.0
    overrides: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        overrides: Dict[str, float] = {}
        for action, rate in _env_json_object("RATE_LIMIT_OVERRIDES").items():
            try:
                overrides[action] = float(rate)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring rate limit override for {action}: {rate!r}")

        return cls(
            default_rate=_env_float("RATE_LIMIT_DEFAULT", 20),
            period=_env_float("RATE_LIMIT_PERIOD", 1.0),
            overrides=overrides,
        )


@dataclass
class ClassifierConfig:
    """Error classifier overrides (provider error code -> category name)."""

    code_overrides: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        raw = _env_json_object("ERROR_CODE_OVERRIDES")
        return cls(code_overrides={str(k): str(v) for k, v in raw.items()})


@dataclass
class ReconcilerConfig:
    """Default per-operation timeouts and identity format."""

    create_timeout: Optional[float] = 1800.0
    read_timeout: Optional[float] = 300.0
    update_timeout: Optional[float] = 1800.0
    delete_timeout: Optional[float] = 1800.0
    identity_separator: str = "#"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            create_timeout=_env_float("CREATE_TIMEOUT", 1800.0),
            read_timeout=_env_float("READ_TIMEOUT", 300.0),
            update_timeout=_env_float("UPDATE_TIMEOUT", 1800.0),
            delete_timeout=_env_float("DELETE_TIMEOUT", 1800.0),
            identity_separator=os.getenv("IDENTITY_SEPARATOR", "#") or "#",
        )


@dataclass
class ProviderConfig:
    """Default provider and scope."""

    provider: str = ""
    default_region: str = ""
    default_account: str = ""

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            provider=os.getenv("PROVIDER", ""),
            default_region=os.getenv("DEFAULT_REGION", ""),
            default_account=os.getenv("DEFAULT_ACCOUNT", ""),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO"))


@dataclass
class Config:
    """Main configuration object."""

    read_backoff: BackoffConfig
    write_backoff: BackoffConfig
    poller: PollerConfig
    rate_limit: RateLimitConfig
    classifier: ClassifierConfig
    reconciler: ReconcilerConfig
    provider: ProviderConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            read_backoff=BackoffConfig.from_env("READ", BackoffConfig.read_defaults()),
            write_backoff=BackoffConfig.from_env("WRITE", BackoffConfig.write_defaults()),
            poller=PollerConfig.from_env(),
            rate_limit=RateLimitConfig.from_env(),
            classifier=ClassifierConfig.from_env(),
            reconciler=ReconcilerConfig.from_env(),
            provider=ProviderConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            read_backoff=BackoffConfig.read_defaults(),
            write_backoff=BackoffConfig.write_defaults(),
            poller=PollerConfig(),
            rate_limit=RateLimitConfig(),
            classifier=ClassifierConfig(),
            reconciler=ReconcilerConfig(),
            provider=ProviderConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
