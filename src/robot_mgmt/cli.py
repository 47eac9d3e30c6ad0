"""Robot state CLI (robot-mgmt).

Usage:
    robot-mgmt fetch -a auth.txt -o state.yaml     # Write current state
    robot-mgmt plan -a auth.txt -i state.yaml      # Show what apply would change
    robot-mgmt apply -a auth.txt -i state.yaml     # Apply the document
    echo "user:pass" | robot-mgmt plan -a - -i state.yaml
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from . import __version__
from .config import Config, ConfigurationError, LogFormat, parse_duration
from .main import run_apply, run_fetch, run_plan, setup_logging
from .security import CredentialError, Credentials, read_credentials

# Exit code for credential problems, distinct from run failures
CREDENTIAL_ERROR_EXIT_CODE = 2


def _duration(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> float | None:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ConfigurationError as e:
        raise click.BadParameter(str(e)) from e


auth_option = click.option(
    "--auth",
    "-a",
    envvar="ROBOT_AUTH_FILE",
    metavar="FILE|-",
    help="File with user:password for the Robot webservice; '-' or 'stdin' reads stdin.",
)
log_format_option = click.option(
    "--log-format",
    type=click.Choice([f.value for f in LogFormat]),
    default=None,
    help="Log output format (default: text, or ROBOT_LOG_FORMAT).",
)
verbose_option = click.option("--verbose", "-v", is_flag=True, help="Verbose output")
input_option = click.option(
    "--input",
    "-i",
    "input_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="State document to reconcile.",
)


def _prepare(
    auth: str | None, log_format: str | None, verbose: bool, **overrides: object
) -> tuple[Config, Credentials]:
    """Build config, set up logging and read credentials, or exit."""
    try:
        config = Config.from_env(log_format=log_format, **overrides)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    setup_logging(config.log_format, verbose)

    try:
        credentials = read_credentials(auth)
    except CredentialError as e:
        click.secho(f"Credential error: {e}", fg="red", err=True)
        sys.exit(CREDENTIAL_ERROR_EXIT_CODE)

    return config, credentials


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="robot-mgmt")
def cli() -> None:
    """Manage Hetzner Robot servers, failover IPs and vSwitches from a state file.

    \b
    Quick Start:
        robot-mgmt fetch -a auth.txt -o state.yaml
        robot-mgmt plan -a auth.txt -i state.yaml
        robot-mgmt apply -a auth.txt -i state.yaml
    """
    pass


@cli.command()
@auth_option
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Output file for current state (default: stdout).",
)
@log_format_option
@verbose_option
def fetch(auth: str | None, output: Path | None, log_format: str | None, verbose: bool) -> None:
    """Fetch the current state of all servers, failovers and vSwitches."""
    config, credentials = _prepare(auth, log_format, verbose)
    sys.exit(asyncio.run(run_fetch(config, credentials, output)))


@cli.command()
@auth_option
@input_option
@log_format_option
@verbose_option
def plan(auth: str | None, input_path: Path, log_format: str | None, verbose: bool) -> None:
    """Show the changes apply would make. Exits 1 if anything differs."""
    config, credentials = _prepare(auth, log_format, verbose)
    sys.exit(asyncio.run(run_plan(config, credentials, input_path)))


@cli.command()
@auth_option
@input_option
@click.option(
    "--ping-interval",
    callback=_duration,
    default=None,
    help="Delay between vSwitch completion checks, e.g. 5s (default: 5s).",
)
@click.option(
    "--poll-timeout",
    callback=_duration,
    default=None,
    help="Stop waiting for a vSwitch after this long (default: wait indefinitely).",
)
@log_format_option
@verbose_option
def apply(
    auth: str | None,
    input_path: Path,
    ping_interval: float | None,
    poll_timeout: float | None,
    log_format: str | None,
    verbose: bool,
) -> None:
    """Apply the state document. Exits 1 if any change failed or drift exists."""
    config, credentials = _prepare(
        auth,
        log_format,
        verbose,
        ping_interval_seconds=ping_interval,
        poll_timeout_seconds=poll_timeout,
    )
    sys.exit(asyncio.run(run_apply(config, credentials, input_path)))


if __name__ == "__main__":
    cli()
