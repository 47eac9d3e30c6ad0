"""Run entry points for fetch, plan and apply.

Each entry point returns a process exit code:
    0: success (apply: no failures; plan: nothing differs)
    1: failures, drift or pending changes, or a fatal document/fetch error
    2: credential problems
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from .api import RobotClient
from .config import Config, LogFormat
from .fetcher import FetchFailure, RemoteStateFetcher
from .reconciler import ReconcileMode, Reconciler
from .security import Credentials
from .state_store import MalformedDocumentError, dump, load_state_file, write_state_file

logger = logging.getLogger(__name__)

# LogRecord attributes that are not user-supplied extra fields
_RECORD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

_LEVEL_SYMBOLS = {
    logging.DEBUG: "·",
    logging.INFO: "ℹ",
    logging.WARNING: "⚠",
    logging.ERROR: "✖",
    logging.CRITICAL: "✖",
}
_SUCCESS_SYMBOL = "✔"


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human readable ``<timestamp> <symbol> <message>`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(
            timespec="milliseconds"
        ).replace("+00:00", "Z")
        if getattr(record, "outcome", None) == "success":
            symbol = _SUCCESS_SYMBOL
        else:
            symbol = _LEVEL_SYMBOLS.get(record.levelno, "")

        line = f"{timestamp} {symbol} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(log_format: LogFormat = LogFormat.TEXT, verbose: bool = False) -> None:
    """Configure logging to stderr, keeping stdout free for documents."""
    handler = logging.StreamHandler(sys.stderr)
    if log_format == LogFormat.JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_client(config: Config, credentials: Credentials) -> RobotClient:
    """Build the Robot client for a run."""
    return RobotClient(
        auth=credentials.as_auth(),
        base_url=config.base_url,
        timeout_seconds=config.request_timeout_seconds,
    )


async def run_fetch(config: Config, credentials: Credentials, output: Path | None) -> int:
    """Fetch remote state and write it as a document to ``output`` or stdout."""
    try:
        async with create_client(config, credentials) as client:
            state = await RemoteStateFetcher(client).fetch_all()
    except FetchFailure as e:
        logger.error(f"Fetching remote state failed: {e}", extra={"error": str(e), "kind": e.kind})
        return 1

    if output is None:
        sys.stdout.write(dump(state))
        return 0

    try:
        write_state_file(state, output)
    except OSError as e:
        logger.error(f"Failed to write state document: {e}", extra={"error": str(e)})
        return 1
    return 0


async def run_reconcile(
    config: Config,
    credentials: Credentials,
    input_path: Path,
    mode: ReconcileMode,
) -> int:
    """Load the desired document and plan or apply it.

    Document problems abort before any request is sent.
    """
    try:
        desired = load_state_file(input_path)
    except MalformedDocumentError as e:
        logger.error(f"Invalid state document: {e}", extra={"path": str(input_path)})
        return 1

    try:
        async with create_client(config, credentials) as client:
            result = await Reconciler(client, config).reconcile(desired, mode)
    except FetchFailure as e:
        logger.error(f"Fetching remote state failed: {e}", extra={"error": str(e), "kind": e.kind})
        return 1

    if mode == ReconcileMode.PLAN:
        return 1 if result.has_changes else 0
    return 0 if result.success else 1


async def run_plan(config: Config, credentials: Credentials, input_path: Path) -> int:
    return await run_reconcile(config, credentials, input_path, ReconcileMode.PLAN)


async def run_apply(config: Config, credentials: Credentials, input_path: Path) -> int:
    return await run_reconcile(config, credentials, input_path, ReconcileMode.APPLY)
