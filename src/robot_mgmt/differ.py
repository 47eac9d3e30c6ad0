"""Pure diff functions comparing desired and observed state.

Nothing here talks to Robot. Each resource kind is compared by key:

- keys only in the desired state are drift ("missing remotely")
- keys only in the observed state are drift ("missing locally")
- keys on both sides are compared field by field, and every difference
  becomes a tagged Mutation intent for the reconciler to execute

Drift is never healed: resources are not created or deleted by this tool.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .models import Failover, RobotState, Server, VSwitch

R = TypeVar("R")


class ResourceKind(str, Enum):
    """Resource kinds in reconciliation order."""

    SERVER = "server"
    FAILOVER = "failover"
    VSWITCH = "vSwitch"


class DriftDirection(str, Enum):
    """Which side a drifted resource exists on."""

    # In the desired state but not on Robot
    MISSING_REMOTELY = "missing_remotely"
    # On Robot but not in the desired state
    MISSING_LOCALLY = "missing_locally"


class MutationType(str, Enum):
    """Remote calls the reconciler knows how to make."""

    RENAME_SERVER = "rename_server"
    REPLACE_FIREWALL = "replace_firewall"
    SWITCH_FAILOVER = "switch_failover"
    EDIT_VSWITCH = "edit_vswitch"
    REMOVE_VSWITCH_SERVERS = "remove_vswitch_servers"
    ADD_VSWITCH_SERVERS = "add_vswitch_servers"


MEMBERSHIP_MUTATIONS = frozenset(
    {MutationType.REMOVE_VSWITCH_SERVERS, MutationType.ADD_VSWITCH_SERVERS}
)

_INTENT_LABELS: dict[MutationType, str] = {
    MutationType.RENAME_SERVER: "name",
    MutationType.REPLACE_FIREWALL: "firewall",
    MutationType.SWITCH_FAILOVER: "active server IP",
    MutationType.EDIT_VSWITCH: "name/vlan",
}


@dataclass(frozen=True)
class Drift:
    """A resource present on exactly one side."""

    kind: ResourceKind
    key: Hashable
    direction: DriftDirection

    def describe(self) -> str:
        if self.direction == DriftDirection.MISSING_LOCALLY:
            return f"{self.kind.value}#{self.key} not found in local state (new?)"
        return f"{self.kind.value}#{self.key} not found in remote state (removed?)"


@dataclass(frozen=True)
class Mutation:
    """One remote call needed to reconcile a matched resource.

    Payload by type:
        RENAME_SERVER: new name (str)
        REPLACE_FIREWALL: desired Firewall
        SWITCH_FAILOVER: new active server IP (str, or None to unroute)
        EDIT_VSWITCH: {"name": str, "vlan": int}
        REMOVE_VSWITCH_SERVERS / ADD_VSWITCH_SERVERS: tuple of server IPs
    """

    type: MutationType
    kind: ResourceKind
    key: Hashable
    payload: Any

    @property
    def label(self) -> str:
        if self.type in MEMBERSHIP_MUTATIONS:
            return f"servers ({len(self.payload)})"
        return _INTENT_LABELS[self.type]

    @property
    def subject(self) -> str:
        return f"{self.kind.value}#{self.key}"

    def describe_intent(self) -> str:
        match self.type:
            case MutationType.REMOVE_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} will be removed"
            case MutationType.ADD_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} will be added"
            case _:
                return f"{self.subject} {self.label} will be changed"

    def describe_success(self) -> str:
        match self.type:
            case MutationType.REMOVE_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} removed"
            case MutationType.ADD_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} added"
            case _:
                return f"{self.subject} {self.label} changed"

    def describe_failure(self) -> str:
        match self.type:
            case MutationType.REMOVE_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} remove caused error"
            case MutationType.ADD_VSWITCH_SERVERS:
                return f"{self.subject} {self.label} add caused error"
            case _:
                return f"{self.subject} {self.label} change caused error"


@dataclass(frozen=True)
class KindDiff:
    """Differences found for one resource kind."""

    kind: ResourceKind
    drift: tuple[Drift, ...] = ()
    mutations: tuple[Mutation, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.drift and not self.mutations


def partition_by_key(
    desired: Sequence[R],
    observed: Sequence[R],
    key: Callable[[R], Hashable],
) -> tuple[list[R], list[R], list[tuple[R, R]]]:
    """Split two collections by key.

    Returns:
        (only_desired, only_observed, matched) where matched holds
        (desired, observed) pairs in desired-state order.
    """
    observed_by_key = {key(item): item for item in observed}
    desired_keys = {key(item) for item in desired}

    only_desired = [item for item in desired if key(item) not in observed_by_key]
    only_observed = [item for item in observed if key(item) not in desired_keys]
    matched = [
        (item, observed_by_key[key(item)]) for item in desired if key(item) in observed_by_key
    ]
    return only_desired, only_observed, matched


def _drift(
    kind: ResourceKind,
    only_desired: list[Any],
    only_observed: list[Any],
    key: Callable[[Any], Hashable],
) -> tuple[Drift, ...]:
    return tuple(
        [Drift(kind, key(item), DriftDirection.MISSING_LOCALLY) for item in only_observed]
        + [Drift(kind, key(item), DriftDirection.MISSING_REMOTELY) for item in only_desired]
    )


def diff_servers(desired: Sequence[Server], observed: Sequence[Server]) -> KindDiff:
    """Compare servers by IP.

    Any firewall difference (status, whitelist, or rule sequence) produces a
    single full replacement because Robot has no partial firewall update.
    Rules on both sides are already normalized to the same sparse shape by
    the model, so plain equality is the right comparison.
    """
    kind = ResourceKind.SERVER
    only_desired, only_observed, matched = partition_by_key(desired, observed, lambda s: s.ip)

    mutations = []
    for want, have in matched:
        if want.name != have.name:
            mutations.append(Mutation(MutationType.RENAME_SERVER, kind, want.ip, want.name))
        if want.firewall != have.firewall:
            mutations.append(
                Mutation(MutationType.REPLACE_FIREWALL, kind, want.ip, want.firewall)
            )

    return KindDiff(
        kind=kind,
        drift=_drift(kind, only_desired, only_observed, lambda s: s.ip),
        mutations=tuple(mutations),
    )


def diff_failovers(desired: Sequence[Failover], observed: Sequence[Failover]) -> KindDiff:
    """Compare failover IPs; only the active server is ever changed."""
    kind = ResourceKind.FAILOVER
    only_desired, only_observed, matched = partition_by_key(desired, observed, lambda f: f.ip)

    mutations = tuple(
        Mutation(MutationType.SWITCH_FAILOVER, kind, want.ip, want.active_server_ip)
        for want, have in matched
        if want.active_server_ip != have.active_server_ip
    )

    return KindDiff(
        kind=kind,
        drift=_drift(kind, only_desired, only_observed, lambda f: f.ip),
        mutations=mutations,
    )


def diff_vswitches(desired: Sequence[VSwitch], observed: Sequence[VSwitch]) -> KindDiff:
    """Compare vSwitches by id.

    Name and VLAN are edited together. Membership is compared as a set and
    yields a remove and/or an add mutation, emitted in that order because
    Robot has no atomic replace.
    """
    kind = ResourceKind.VSWITCH
    only_desired, only_observed, matched = partition_by_key(desired, observed, lambda v: v.id)

    mutations = []
    for want, have in matched:
        if (want.name, want.vlan) != (have.name, have.vlan):
            mutations.append(
                Mutation(
                    MutationType.EDIT_VSWITCH,
                    kind,
                    want.id,
                    {"name": want.name, "vlan": want.vlan},
                )
            )

        wanted, current = set(want.servers), set(have.servers)
        if wanted == current:
            continue

        removed = tuple(ip for ip in have.servers if ip not in wanted)
        added = tuple(ip for ip in want.servers if ip not in current)
        if removed:
            mutations.append(
                Mutation(MutationType.REMOVE_VSWITCH_SERVERS, kind, want.id, removed)
            )
        if added:
            mutations.append(Mutation(MutationType.ADD_VSWITCH_SERVERS, kind, want.id, added))

    return KindDiff(
        kind=kind,
        drift=_drift(kind, only_desired, only_observed, lambda v: v.id),
        mutations=tuple(mutations),
    )


def diff_states(desired: RobotState, observed: RobotState) -> tuple[KindDiff, ...]:
    """Diff every kind, in reconciliation order: servers, failovers, vSwitches."""
    return (
        diff_servers(desired.servers, observed.servers),
        diff_failovers(desired.failovers, observed.failovers),
        diff_vswitches(desired.vswitches, observed.vswitches),
    )
