"""Credential handling for the Robot webservice.

Robot uses HTTP basic auth with a dedicated webservice user. Credentials are
read as ``user:password`` from a file or from standard input, never from a
command-line argument, so they do not end up in shell history or process
listings.

SECURITY INVARIANTS:
1. The password is never logged; only the username appears in audit events
2. Credentials are validated before any request is sent
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

import httpx

logger = logging.getLogger(__name__)

# Values of --auth that mean "read from standard input"
STDIN_SOURCES: tuple[str, ...] = ("-", "stdin")

MAX_CREDENTIAL_FILE_SIZE_BYTES = 4096


class CredentialError(Exception):
    """Raised when credentials are missing, unreadable or malformed.

    This is fatal: no request is sent without valid credentials.
    """

    pass


@dataclass(frozen=True)
class Credentials:
    """Robot webservice user and password."""

    username: str
    password: str = field(repr=False)

    def as_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.username, self.password)


def parse_credentials(text: str) -> Credentials:
    """Parse ``user:password``; surrounding whitespace is ignored.

    Raises:
        CredentialError: If the text is not in ``user:password`` form.
    """
    text = text.strip()
    username, sep, password = text.partition(":")
    if not sep or not username or not password:
        raise CredentialError("Credentials must be in the form user:password")
    return Credentials(username=username, password=password)


def read_credentials(source: str | None, stdin: TextIO | None = None) -> Credentials:
    """Read credentials from a file path, or from stdin for ``-``/``stdin``.

    Args:
        source: Path to a credentials file, or one of STDIN_SOURCES.
        stdin: Stream to use instead of sys.stdin.

    Raises:
        CredentialError: If no source is given or it cannot be read.
    """
    if not source:
        raise CredentialError(
            "No credentials given: pass --auth FILE, --auth - or set ROBOT_AUTH_FILE"
        )

    if source in STDIN_SOURCES:
        stream = stdin or sys.stdin
        if stream.isatty():
            raise CredentialError("Can not read credentials from stdin: it is a terminal")
        text = stream.read()
        origin = "stdin"
    else:
        path = Path(source)
        try:
            if path.stat().st_size > MAX_CREDENTIAL_FILE_SIZE_BYTES:
                raise CredentialError(f"Credentials file is too large: {path}")
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialError(f"Failed to read credentials file {path}: {e}") from e
        origin = str(path)

    credentials = parse_credentials(text)
    log_security_audit_event("credentials_loaded", username=credentials.username, source=origin)
    return credentials


def log_security_audit_event(event_type: str, username: str, source: str | None = None) -> None:
    """Log a security-relevant audit event. Never includes the password."""
    logger.debug(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "username": username,
            "source": source,
        },
    )
