"""Pydantic models for Robot resources with validation.

These models provide:
1. Immutable, typed representation of servers, failovers and vSwitches
2. Conversion from the Robot webservice payloads (snake_case)
3. The sparse ``key=value;...`` firewall rule encoding used in state documents

Desired state (loaded from a document) and observed state (fetched from the
API) are built into the same shapes so they can be compared field by field.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Firewall
# =============================================================================

# (model attribute, document key) in the fixed order used when encoding rules
RULE_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "name"),
    ("dst_ip", "dstIP"),
    ("src_ip", "srcIP"),
    ("dst_port", "dstPort"),
    ("src_port", "srcPort"),
    ("protocol", "protocol"),
    ("tcp_flags", "tcpFlags"),
    ("action", "action"),
)

RULE_DELIMITER = ";"

# Documents written by older tooling use the API's snake_case keys
_RULE_KEY_LOOKUP: dict[str, str] = {
    **{doc_key: attr for attr, doc_key in RULE_FIELDS},
    **{attr: attr for attr, _ in RULE_FIELDS},
}

# Robot only accepts IPv4 input rules
RULE_IP_VERSION = "ipv4"


class RuleEncodingError(ValueError):
    """Raised when a firewall rule string cannot be decoded."""

    pass


class FirewallStatus(str, Enum):
    """Firewall status values reported by Robot."""

    ACTIVE = "active"
    DISABLED = "disabled"
    IN_PROCESS = "in process"


class FirewallRule(BaseModel):
    """A single input rule. Every field is optional; ``None`` means unset."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    dst_ip: str | None = None
    src_ip: str | None = None
    dst_port: str | None = None
    src_port: str | None = None
    protocol: str | None = None
    tcp_flags: str | None = None
    action: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def empty_is_unset(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return str(v)

    def encode(self) -> str:
        """Encode as ``key=value;...`` with unset fields omitted."""
        parts = []
        for attr, doc_key in RULE_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                parts.append(f"{doc_key}={value}")
        return RULE_DELIMITER.join(parts)

    @classmethod
    def decode(cls, text: str) -> FirewallRule:
        """Decode a rule string produced by :meth:`encode`.

        Unknown keys are ignored and missing keys default to ``None``.

        Raises:
            RuleEncodingError: If a segment is not a ``key=value`` pair.
        """
        values: dict[str, str] = {}
        for segment in text.split(RULE_DELIMITER):
            segment = segment.strip()
            if not segment:
                continue
            key, sep, value = segment.partition("=")
            if not sep:
                raise RuleEncodingError(f"expected key=value, got {segment!r} in rule {text!r}")
            attr = _RULE_KEY_LOOKUP.get(key.strip())
            if attr is not None:
                values[attr] = value.strip()
        return cls(**values)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> FirewallRule:
        """Build from a Robot rule payload, dropping fields we do not manage."""
        return cls(**{attr: data.get(attr) for attr, _ in RULE_FIELDS})

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ip_version": RULE_IP_VERSION}
        for attr, _ in RULE_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                payload[attr] = value
        return payload


class Firewall(BaseModel):
    """Firewall configuration of a dedicated server.

    Rule order is significant: it is the order Robot evaluates them in.
    """

    model_config = ConfigDict(frozen=True)

    status: FirewallStatus
    whitelist_hos: bool
    rules: tuple[FirewallRule, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Firewall:
        rules = (data.get("rules") or {}).get("input") or []
        return cls(
            status=data["status"],
            whitelist_hos=data["whitelist_hos"],
            rules=tuple(FirewallRule.from_api(rule) for rule in rules),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "whitelist_hos": self.whitelist_hos,
            "rules": {"input": [rule.to_api() for rule in self.rules]},
        }


# =============================================================================
# Resources
# =============================================================================


class Server(BaseModel):
    """Dedicated server keyed by its main IP."""

    model_config = ConfigDict(frozen=True)

    ip: str = Field(min_length=1)
    number: int
    name: str
    firewall: Firewall

    @classmethod
    def from_api(cls, server: dict[str, Any], firewall: dict[str, Any]) -> Server:
        return cls(
            ip=server["server_ip"],
            number=server["server_number"],
            name=server.get("server_name") or "",
            firewall=Firewall.from_api(firewall),
        )


class Failover(BaseModel):
    """Failover IP.

    ``server_ip`` is the server owning the address and is never changed by
    this tool; ``active_server_ip`` is where traffic is currently routed
    (``None`` when unrouted).
    """

    model_config = ConfigDict(frozen=True)

    ip: str = Field(min_length=1)
    server_ip: str
    active_server_ip: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Failover:
        return cls(
            ip=data["ip"],
            server_ip=data["server_ip"],
            active_server_ip=data.get("active_server_ip"),
        )


class VSwitch(BaseModel):
    """Virtual switch with its member server IPs.

    Membership is compared as a set; member order is kept only so that dumps
    stay stable between runs.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    vlan: int
    servers: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> VSwitch:
        return cls(
            id=data["id"],
            name=data["name"],
            vlan=data["vlan"],
            servers=tuple(member["server_ip"] for member in data.get("server") or []),
        )


class RobotState(BaseModel):
    """Complete set of managed resources on one side of a reconciliation."""

    model_config = ConfigDict(frozen=True)

    servers: tuple[Server, ...] = ()
    failovers: tuple[Failover, ...] = ()
    vswitches: tuple[VSwitch, ...] = ()
