"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from robot_mgmt.config import (
    DEFAULT_BASE_URL,
    DEFAULT_PING_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
    LogFormat,
    parse_duration,
)


class TestParseDuration:
    """Tests for duration parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("500ms", 0.5),
            ("5s", 5.0),
            ("2m", 120.0),
            ("1h", 3600.0),
            ("1.5s", 1.5),
            ("10", 10.0),
            (" 3s ", 3.0),
            (7, 7.0),
        ],
    )
    def test_valid_durations(self, value: str | int, expected: float) -> None:
        """Test supported units and bare numbers."""
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "fast", "5d", "-5s", "s"])
    def test_invalid_durations(self, value: str) -> None:
        """Test unrecognised durations raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            parse_duration(value)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test creating a configuration with defaults."""
        config = Config()

        assert config.base_url == DEFAULT_BASE_URL
        assert config.ping_interval_seconds == DEFAULT_PING_INTERVAL_SECONDS
        assert config.poll_timeout_seconds is None
        assert config.request_timeout_seconds == DEFAULT_REQUEST_TIMEOUT_SECONDS
        assert config.log_format == LogFormat.TEXT

    def test_invalid_base_url(self) -> None:
        """Test that a non-http base URL raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(base_url="robot-ws.your-server.de")

        assert "ROBOT_BASE_URL" in str(exc_info.value)

    def test_invalid_ping_interval(self) -> None:
        """Test that out-of-range ping interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ping_interval_seconds=0)

        assert "ROBOT_PING_INTERVAL" in str(exc_info.value)

        with pytest.raises(ConfigurationError):
            Config(ping_interval_seconds=301)

    def test_invalid_poll_timeout(self) -> None:
        """Test that a non-positive poll timeout raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(poll_timeout_seconds=0)

        assert "ROBOT_POLL_TIMEOUT" in str(exc_info.value)

    def test_errors_are_collected(self) -> None:
        """Test that all validation errors are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(base_url="ftp://x", ping_interval_seconds=-1, request_timeout_seconds=0)

        message = str(exc_info.value)
        assert "ROBOT_BASE_URL" in message
        assert "ROBOT_PING_INTERVAL" in message
        assert "ROBOT_REQUEST_TIMEOUT" in message


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env_defaults(self) -> None:
        """Test loading with no environment variables set."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config == Config()

    def test_from_env_reads_variables(self) -> None:
        """Test loading every supported environment variable."""
        env = {
            "ROBOT_BASE_URL": "http://localhost:8080",
            "ROBOT_PING_INTERVAL": "500ms",
            "ROBOT_POLL_TIMEOUT": "2m",
            "ROBOT_REQUEST_TIMEOUT": "30",
            "ROBOT_LOG_FORMAT": "JSON",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.base_url == "http://localhost:8080"
        assert config.ping_interval_seconds == pytest.approx(0.5)
        assert config.poll_timeout_seconds == 120.0
        assert config.request_timeout_seconds == 30.0
        assert config.log_format == LogFormat.JSON

    def test_overrides_take_precedence(self) -> None:
        """Test that non-None overrides win over the environment."""
        env = {"ROBOT_PING_INTERVAL": "10s", "ROBOT_LOG_FORMAT": "json"}
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env(
                ping_interval_seconds=1.0, poll_timeout_seconds=None, log_format="text"
            )

        assert config.ping_interval_seconds == 1.0
        assert config.poll_timeout_seconds is None
        assert config.log_format == LogFormat.TEXT

    def test_invalid_log_format(self) -> None:
        """Test that an unknown log format raises error."""
        with patch.dict(os.environ, {"ROBOT_LOG_FORMAT": "xml"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "ROBOT_LOG_FORMAT" in str(exc_info.value)

    def test_invalid_duration_variable(self) -> None:
        """Test that a malformed duration variable raises error."""
        with patch.dict(os.environ, {"ROBOT_PING_INTERVAL": "soon"}, clear=True):
            with pytest.raises(ConfigurationError):
                Config.from_env()
