"""Configuration management with validation.

Values come from environment variables and can be overridden by CLI flags.
Everything is validated at construction time so a bad setting fails before
any request reaches Robot.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_BASE_URL = "https://robot-ws.your-server.de"

DEFAULT_PING_INTERVAL_SECONDS = 5.0
MAX_PING_INTERVAL_SECONDS = 300.0

# Failover switches usually take ~40s to return
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0

MAX_STATE_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max state document

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int) -> float:
    """Parse a duration such as ``500ms``, ``5s``, ``2m`` or ``1h`` into seconds.

    A bare number is taken as seconds.

    Raises:
        ConfigurationError: If the value is not a recognised duration.
    """
    if isinstance(value, (int, float)):
        return float(value)

    match = _DURATION_PATTERN.match(value)
    if match is None:
        raise ConfigurationError(f"Invalid duration: {value!r} (expected e.g. 500ms, 5s, 2m)")

    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


@dataclass(frozen=True)
class Config:
    """Runtime configuration for a single fetch/plan/apply run.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    base_url: str = DEFAULT_BASE_URL

    # Timing
    ping_interval_seconds: float = DEFAULT_PING_INTERVAL_SECONDS
    # None keeps the completion poller unbounded
    poll_timeout_seconds: float | None = None
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Output
    log_format: LogFormat = LogFormat.TEXT

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.base_url.startswith(("https://", "http://")):
            errors.append(f"ROBOT_BASE_URL must be an http(s) URL: {self.base_url}")

        if not (0 < self.ping_interval_seconds <= MAX_PING_INTERVAL_SECONDS):
            errors.append(
                f"ROBOT_PING_INTERVAL must be greater than 0 and at most "
                f"{MAX_PING_INTERVAL_SECONDS:g} seconds"
            )

        if self.poll_timeout_seconds is not None and self.poll_timeout_seconds <= 0:
            errors.append("ROBOT_POLL_TIMEOUT must be greater than 0 when set")

        if self.request_timeout_seconds <= 0:
            errors.append("ROBOT_REQUEST_TIMEOUT must be greater than 0")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            ROBOT_BASE_URL: Robot webservice URL (default: https://robot-ws.your-server.de)
            ROBOT_PING_INTERVAL: Delay between vSwitch completion checks (default: 5s)
            ROBOT_POLL_TIMEOUT: Give up waiting on a vSwitch after this long
                (default: unset, wait indefinitely)
            ROBOT_REQUEST_TIMEOUT: Per-request timeout (default: 60s)
            ROBOT_LOG_FORMAT: One of text, json (default: text)

        Keyword overrides that are not None take precedence over the
        environment, which is how CLI flags are applied.
        """

        def get_duration(key: str, default: float | None) -> float | None:
            value = os.environ.get(key)
            if not value:
                return default
            return parse_duration(value)

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.TEXT
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"ROBOT_LOG_FORMAT must be one of {valid}: {value}") from e

        values: dict[str, object] = {
            "base_url": os.environ.get("ROBOT_BASE_URL") or DEFAULT_BASE_URL,
            "ping_interval_seconds": get_duration(
                "ROBOT_PING_INTERVAL", DEFAULT_PING_INTERVAL_SECONDS
            ),
            "poll_timeout_seconds": get_duration("ROBOT_POLL_TIMEOUT", None),
            "request_timeout_seconds": get_duration(
                "ROBOT_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            "log_format": get_log_format(os.environ.get("ROBOT_LOG_FORMAT")),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})

        if not isinstance(values["log_format"], LogFormat):
            values["log_format"] = get_log_format(str(values["log_format"]))

        return cls(**values)  # type: ignore[arg-type]
