"""Unit tests for config.py - Configuration management."""

import os
import pytest
from unittest.mock import patch

import config
from backoff import BackoffPolicy
from config import (
    BackoffConfig,
    ClassifierConfig,
    Config,
    LoggingConfig,
    PollerConfig,
    ProviderConfig,
    RateLimitConfig,
    ReconcilerConfig,
    get_config,
    load_config,
    reset_config,
)


class TestBackoffConfig:
    """Tests for BackoffConfig class."""

    def test_read_defaults(self):
        """Test read defaults match the read policy."""
        cfg = BackoffConfig.read_defaults()
        assert cfg.base_delay == 1.0
        assert cfg.max_delay == 10.0
        assert cfg.to_policy() == BackoffPolicy.read()

    def test_write_defaults(self):
        """Test write defaults match the write policy."""
        cfg = BackoffConfig.write_defaults()
        assert cfg.base_delay == 5.0
        assert cfg.max_delay == 60.0
        assert cfg.to_policy() == BackoffPolicy.write()

    def test_from_env(self):
        """Test loading configuration from prefixed environment variables."""
        env_vars = {
            "WRITE_BACKOFF_BASE_DELAY": "2",
            "WRITE_BACKOFF_MAX_DELAY": "30",
            "WRITE_BACKOFF_JITTER_FACTOR": "0.2",
            "WRITE_BACKOFF_MAX_ATTEMPTS": "7",
            "WRITE_BACKOFF_RETRY_TIMEOUT": "120",
            "WRITE_BACKOFF_CONFLICT_TIMEOUT": "none",
            "WRITE_BACKOFF_RATE_LIMITED_MIN_DELAY": "3",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = BackoffConfig.from_env("WRITE", BackoffConfig.write_defaults())
            assert cfg.base_delay == 2.0
            assert cfg.max_delay == 30.0
            assert cfg.jitter_factor == 0.2
            assert cfg.max_attempts == 7
            assert cfg.retry_timeout == 120.0
            assert cfg.conflict_timeout is None
            assert cfg.rate_limited_min_delay == 3.0

    def test_from_env_prefix_isolated(self):
        """Test that READ variables do not leak into WRITE settings."""
        with patch.dict(os.environ, {"READ_BACKOFF_BASE_DELAY": "9"}, clear=True):
            cfg = BackoffConfig.from_env("WRITE", BackoffConfig.write_defaults())
            assert cfg.base_delay == 5.0

    def test_from_env_invalid_number_raises(self):
        """Test that a non-numeric value raises ValueError."""
        with patch.dict(os.environ, {"READ_BACKOFF_MAX_ATTEMPTS": "lots"}, clear=True):
            with pytest.raises(ValueError) as exc_info:
                BackoffConfig.from_env("READ", BackoffConfig.read_defaults())
            assert "READ_BACKOFF_MAX_ATTEMPTS" in str(exc_info.value)

    def test_invalid_jitter_rejected_by_policy(self):
        """Test that out of range jitter is rejected when building the policy."""
        with pytest.raises(ValueError):
            BackoffConfig(jitter_factor=0.9).to_policy()


class TestPollerConfig:
    """Tests for PollerConfig class."""

    def test_default_values(self):
        cfg = PollerConfig()
        assert cfg.interval == 3.0
        assert cfg.backoff_factor == 1.0
        assert cfg.timeout == 1800.0

    def test_from_env(self):
        env_vars = {
            "POLL_INTERVAL": "5",
            "POLL_MAX_INTERVAL": "60",
            "POLL_BACKOFF_FACTOR": "1.5",
            "POLL_TIMEOUT": "600",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = PollerConfig.from_env()
            assert cfg.interval == 5.0
            assert cfg.max_interval == 60.0
            assert cfg.backoff_factor == 1.5
            assert cfg.timeout == 600.0


class TestRateLimitConfig:
    """Tests for RateLimitConfig class."""

    def test_from_env(self):
        env_vars = {
            "RATE_LIMIT_DEFAULT": "10",
            "RATE_LIMIT_PERIOD": "2",
            "RATE_LIMIT_OVERRIDES": '{"CreateInstance": 1, "Broken": "x"}',
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = RateLimitConfig.from_env()
            assert cfg.default_rate == 10.0
            assert cfg.period == 2.0
            assert cfg.overrides == {"CreateInstance": 1.0}

    def test_from_env_invalid_json(self):
        """Test that invalid JSON overrides are ignored."""
        with patch.dict(os.environ, {"RATE_LIMIT_OVERRIDES": "not json"}, clear=True):
            cfg = RateLimitConfig.from_env()
            assert cfg.overrides == {}
            assert cfg.default_rate == 20


class TestClassifierConfig:
    """Tests for ClassifierConfig class."""

    def test_from_env(self):
        env_vars = {"ERROR_CODE_OVERRIDES": '{"ResourceInUse": "transient"}'}
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = ClassifierConfig.from_env()
            assert cfg.code_overrides == {"ResourceInUse": "transient"}

    def test_from_env_not_an_object(self):
        with patch.dict(os.environ, {"ERROR_CODE_OVERRIDES": "[1, 2]"}, clear=True):
            assert ClassifierConfig.from_env().code_overrides == {}


class TestReconcilerConfig:
    """Tests for ReconcilerConfig class."""

    def test_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = ReconcilerConfig.from_env()
            assert cfg.read_timeout == 300.0
            assert cfg.identity_separator == "#"

    def test_from_env(self):
        env_vars = {
            "CREATE_TIMEOUT": "60",
            "DELETE_TIMEOUT": "off",
            "IDENTITY_SEPARATOR": ":",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = ReconcilerConfig.from_env()
            assert cfg.create_timeout == 60.0
            assert cfg.delete_timeout is None
            assert cfg.identity_separator == ":"


class TestProviderConfig:
    """Tests for ProviderConfig and LoggingConfig."""

    def test_from_env(self):
        env_vars = {
            "PROVIDER": "tencentcloud",
            "DEFAULT_REGION": "ap-guangzhou",
            "DEFAULT_ACCOUNT": "100",
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            provider = ProviderConfig.from_env()
            assert provider.provider == "tencentcloud"
            assert provider.default_region == "ap-guangzhou"
            assert provider.default_account == "100"
            assert LoggingConfig.from_env().log_level == "DEBUG"


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        cfg = Config.default()
        assert cfg.read_backoff.to_policy() == BackoffPolicy.read()
        assert cfg.write_backoff.to_policy() == BackoffPolicy.write()
        assert isinstance(cfg.poller, PollerConfig)

    def test_from_env(self):
        env_vars = {
            "READ_BACKOFF_BASE_DELAY": "0.5",
            "WRITE_BACKOFF_BASE_DELAY": "8",
            "POLL_INTERVAL": "10",
            "PROVIDER": "tencentcloud",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = Config.from_env()
            assert cfg.read_backoff.base_delay == 0.5
            assert cfg.write_backoff.base_delay == 8.0
            assert cfg.write_backoff.max_delay == 60.0
            assert cfg.poller.interval == 10.0
            assert cfg.provider.provider == "tencentcloud"


class TestConfigSingleton:
    """Tests for config singleton functions."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()

    def teardown_method(self):
        """Reset config after each test."""
        reset_config()

    def test_singleton_returns_same_instance(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg1 = load_config()
            cfg2 = get_config()
            assert cfg1 is cfg2
            assert isinstance(cfg1, Config)

    def test_reset_config(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg1 = load_config()
            reset_config()
            assert config.config is None
            cfg2 = load_config()
            assert cfg1 is not cfg2
