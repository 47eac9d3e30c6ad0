"""State document loading and dumping with validation.

The state document is the human-edited YAML description of the desired
resources:

    servers:   { <ip>: { number, name, firewall: { status, whitelistHOS, rules: [...] } } }
    failovers: { <ip>: { serverIP, activeServerIP } }
    vSwitches: [ { id, name, vlan, servers: [<ip>, ...] } ]

Firewall rules are stored as sparse ``key=value;...`` strings (see
``FirewallRule.encode``). Input validation is performed at the boundary:
anything malformed raises MalformedDocumentError before a single request
is sent to Robot.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import MAX_STATE_FILE_SIZE_BYTES
from .models import (
    RULE_DELIMITER,
    RULE_FIELDS,
    Failover,
    Firewall,
    FirewallRule,
    FirewallStatus,
    RobotState,
    RuleEncodingError,
    Server,
    VSwitch,
)

logger = logging.getLogger(__name__)

RULES_COMMENT = "keys: " + RULE_DELIMITER.join(doc_key for _, doc_key in RULE_FIELDS)


class MalformedDocumentError(Exception):
    """Raised when a state document fails parsing or schema validation."""

    pass


# =============================================================================
# Document schema
# =============================================================================


class FirewallEntry(BaseModel):
    """``servers.<ip>.firewall`` section."""

    model_config = {"extra": "ignore"}

    status: FirewallStatus
    whitelist_hos: bool = Field(alias="whitelistHOS")
    rules: list[str] = Field(default_factory=list)


class ServerEntry(BaseModel):
    """``servers.<ip>`` section."""

    model_config = {"extra": "ignore"}

    number: int
    name: str
    firewall: FirewallEntry


class FailoverEntry(BaseModel):
    """``failovers.<ip>`` section."""

    model_config = {"extra": "ignore"}

    server_ip: str = Field(alias="serverIP")
    active_server_ip: str | None = Field(alias="activeServerIP")


class VSwitchEntry(BaseModel):
    """One item of the ``vSwitches`` list."""

    model_config = {"extra": "ignore"}

    id: int
    name: str
    vlan: int
    servers: list[str] = Field(default_factory=list)


class StateDocument(BaseModel):
    """Top level of a state document."""

    model_config = {"extra": "ignore"}

    servers: dict[str, ServerEntry]
    failovers: dict[str, FailoverEntry]
    vswitches: list[VSwitchEntry] = Field(alias="vSwitches")


# =============================================================================
# Load
# =============================================================================


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of overwriting."""


def _construct_unique_mapping(loader: _UniqueKeyLoader, node: yaml.MappingNode) -> dict[Any, Any]:
    mapping: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node)
        if key in mapping:
            raise MalformedDocumentError(
                f"Duplicate key {key!r} at line {key_node.start_mark.line + 1}"
            )
        mapping[key] = loader.construct_object(value_node, deep=True)
    return mapping


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping
)


def _format_validation_error(e: ValidationError) -> str:
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        errors.append(f"  - {loc}: {error['msg']}")
    return "\n".join(errors)


def _decode_rules(ip: str, rules: list[str]) -> tuple[FirewallRule, ...]:
    decoded = []
    for index, text in enumerate(rules):
        try:
            decoded.append(FirewallRule.decode(text))
        except (RuleEncodingError, ValidationError) as e:
            raise MalformedDocumentError(
                f"servers.{ip}.firewall.rules.{index}: {e}"
            ) from e
    return tuple(decoded)


def load(document: str | dict[str, Any]) -> RobotState:
    """Parse a state document into a RobotState.

    Args:
        document: YAML text, or an already parsed mapping.

    Returns:
        The desired state described by the document.

    Raises:
        MalformedDocumentError: If the document is not valid YAML, misses
            required keys, has values of the wrong shape or repeats a key.
    """
    if isinstance(document, str):
        try:
            document = yaml.load(document, Loader=_UniqueKeyLoader)
        except yaml.YAMLError as e:
            raise MalformedDocumentError(f"Invalid YAML: {e}") from e

    if not isinstance(document, dict):
        raise MalformedDocumentError("State document must be a YAML mapping")

    try:
        parsed = StateDocument.model_validate(document)
    except ValidationError as e:
        raise MalformedDocumentError(
            f"State document validation failed:\n{_format_validation_error(e)}"
        ) from e

    servers = tuple(
        Server(
            ip=ip,
            number=entry.number,
            name=entry.name,
            firewall=Firewall(
                status=entry.firewall.status,
                whitelist_hos=entry.firewall.whitelist_hos,
                rules=_decode_rules(ip, entry.firewall.rules),
            ),
        )
        for ip, entry in parsed.servers.items()
    )

    failovers = tuple(
        Failover(ip=ip, server_ip=entry.server_ip, active_server_ip=entry.active_server_ip)
        for ip, entry in parsed.failovers.items()
    )

    seen: set[int] = set()
    for entry in parsed.vswitches:
        if entry.id in seen:
            raise MalformedDocumentError(f"Duplicate vSwitch id in state document: {entry.id}")
        seen.add(entry.id)

    vswitches = tuple(
        VSwitch(id=entry.id, name=entry.name, vlan=entry.vlan, servers=tuple(entry.servers))
        for entry in parsed.vswitches
    )

    return RobotState(servers=servers, failovers=failovers, vswitches=vswitches)


def load_state_file(path: Path) -> RobotState:
    """Load and validate a state document from disk.

    Raises:
        MalformedDocumentError: If the file cannot be read or is invalid.
    """
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise MalformedDocumentError(f"Failed to stat state file {path}: {e}") from e

    if file_size > MAX_STATE_FILE_SIZE_BYTES:
        raise MalformedDocumentError(
            f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedDocumentError(f"Failed to read state file {path}: {e}") from e

    try:
        raw_data = yaml.load(content, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise MalformedDocumentError(f"Invalid YAML in {path}: {e}") from e

    state = load(raw_data)
    logger.info(
        "Loaded state document",
        extra={
            "path": str(path),
            "servers": len(state.servers),
            "failovers": len(state.failovers),
            "vswitches": len(state.vswitches),
        },
    )
    return state


# =============================================================================
# Dump
# =============================================================================


def to_document(state: RobotState) -> dict[str, Any]:
    """Convert a RobotState into the plain mapping written to YAML."""
    servers = {
        server.ip: {
            "number": server.number,
            "name": server.name,
            "firewall": {
                "status": server.firewall.status.value,
                "whitelistHOS": server.firewall.whitelist_hos,
                "rules": [rule.encode() for rule in server.firewall.rules],
            },
        }
        for server in state.servers
    }

    failovers = {
        failover.ip: {
            "serverIP": failover.server_ip,
            "activeServerIP": failover.active_server_ip,
        }
        for failover in state.failovers
    }

    vswitches = [
        {
            "id": vswitch.id,
            "name": vswitch.name,
            "vlan": vswitch.vlan,
            "servers": list(vswitch.servers),
        }
        for vswitch in state.vswitches
    ]

    return {"servers": servers, "failovers": failovers, "vSwitches": vswitches}


class _RulesCommentDumper(yaml.SafeDumper):
    """SafeDumper that writes a ``# keys: ...`` comment above every ``rules`` key.

    The comment is emitted by the emitter between two mapping keys, never
    inside a scalar, so names containing line breaks still load back intact.
    """

    def expect_block_mapping_key(self, first: bool = False) -> None:
        if not first and isinstance(self.event, yaml.ScalarEvent) and self.event.value == "rules":
            self.write_indent()
            self.write_indicator(f"# {RULES_COMMENT}", True)
        super().expect_block_mapping_key(first)


def dump(state: RobotState) -> str:
    """Serialize a RobotState to YAML text.

    Keys keep model order and lines are never folded so rule strings stay
    on one line each. A comment listing the rule keys is placed above every
    ``rules:`` list.
    """
    return yaml.dump(
        to_document(state),
        Dumper=_RulesCommentDumper,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=float("inf"),
    )


def write_state_file(state: RobotState, path: Path) -> None:
    """Write a state document, requiring the parent directory to exist.

    Raises:
        OSError: If the directory is missing or the file cannot be written.
    """
    parent = path.resolve().parent
    if not parent.is_dir():
        raise NotADirectoryError(f"Expected directory: {parent}")

    path.write_text(dump(state), encoding="utf-8")
    logger.info("Wrote state document", extra={"path": str(path)})
