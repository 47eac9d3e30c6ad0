"""Tests for diffing desired against observed state."""

from robot_mgmt.differ import (
    Drift,
    DriftDirection,
    Mutation,
    MutationType,
    ResourceKind,
    diff_failovers,
    diff_servers,
    diff_states,
    diff_vswitches,
    partition_by_key,
)
from robot_mgmt.models import (
    Failover,
    Firewall,
    FirewallRule,
    FirewallStatus,
    RobotState,
    Server,
    VSwitch,
)


def _firewall(*rules: FirewallRule, status: FirewallStatus = FirewallStatus.ACTIVE) -> Firewall:
    return Firewall(status=status, whitelist_hos=True, rules=rules)


def _server(ip: str, name: str = "web", firewall: Firewall | None = None) -> Server:
    return Server(ip=ip, number=1, name=name, firewall=firewall or _firewall())


class TestPartitionByKey:
    """Tests for splitting collections by key."""

    def test_every_item_lands_in_exactly_one_bucket(self) -> None:
        """Test the partition is complete and disjoint."""
        desired = ["a1", "b1", "c1"]
        observed = ["b2", "c2", "d2"]

        only_desired, only_observed, matched = partition_by_key(
            desired, observed, lambda item: item[0]
        )

        assert only_desired == ["a1"]
        assert only_observed == ["d2"]
        assert matched == [("b1", "b2"), ("c1", "c2")]

    def test_matched_follow_desired_order(self) -> None:
        """Test matched pairs are ordered like the desired collection."""
        _, _, matched = partition_by_key([2, 1], [1, 2], lambda item: item)

        assert matched == [(2, 2), (1, 1)]

    def test_empty_inputs(self) -> None:
        """Test partitioning empty collections."""
        assert partition_by_key([], [], lambda item: item) == ([], [], [])


class TestDiffServers:
    """Tests for server diffs."""

    def test_identical_servers_produce_nothing(self) -> None:
        """Test equal servers yield no drift and no mutations."""
        servers = (_server("1.1.1.1", firewall=_firewall(FirewallRule(action="accept"))),)

        assert diff_servers(servers, servers).is_empty

    def test_rename(self) -> None:
        """Test a name difference yields a rename."""
        diff = diff_servers((_server("1.1.1.1", name="new"),), (_server("1.1.1.1", name="old"),))

        assert diff.mutations == (
            Mutation(MutationType.RENAME_SERVER, ResourceKind.SERVER, "1.1.1.1", "new"),
        )

    def test_firewall_difference_yields_full_replacement(self) -> None:
        """Test any firewall difference replaces the whole firewall."""
        want = _firewall(FirewallRule(name="ssh", dst_port="22", action="accept"))
        have = _firewall(FirewallRule(name="ssh", dst_port="2222", action="accept"))

        diff = diff_servers(
            (_server("1.1.1.1", firewall=want),), (_server("1.1.1.1", firewall=have),)
        )

        assert len(diff.mutations) == 1
        assert diff.mutations[0].type == MutationType.REPLACE_FIREWALL
        assert diff.mutations[0].payload == want

    def test_rule_reorder_is_a_difference(self) -> None:
        """Test reordering rules yields a firewall replacement."""
        a, b = FirewallRule(name="a"), FirewallRule(name="b")

        diff = diff_servers(
            (_server("1.1.1.1", firewall=_firewall(a, b)),),
            (_server("1.1.1.1", firewall=_firewall(b, a)),),
        )

        assert [m.type for m in diff.mutations] == [MutationType.REPLACE_FIREWALL]

    def test_status_difference(self) -> None:
        """Test a firewall status difference yields a replacement."""
        diff = diff_servers(
            (_server("1.1.1.1", firewall=_firewall(status=FirewallStatus.DISABLED)),),
            (_server("1.1.1.1", firewall=_firewall()),),
        )

        assert [m.type for m in diff.mutations] == [MutationType.REPLACE_FIREWALL]

    def test_rename_and_firewall_in_order(self) -> None:
        """Test rename is listed before the firewall replacement."""
        diff = diff_servers(
            (_server("1.1.1.1", name="b", firewall=_firewall(FirewallRule(action="accept"))),),
            (_server("1.1.1.1", name="a"),),
        )

        assert [m.type for m in diff.mutations] == [
            MutationType.RENAME_SERVER,
            MutationType.REPLACE_FIREWALL,
        ]

    def test_drift_in_both_directions(self) -> None:
        """Test unmatched servers become drift, never mutations."""
        diff = diff_servers((_server("1.1.1.1"),), (_server("2.2.2.2"),))

        assert diff.mutations == ()
        assert set(diff.drift) == {
            Drift(ResourceKind.SERVER, "2.2.2.2", DriftDirection.MISSING_LOCALLY),
            Drift(ResourceKind.SERVER, "1.1.1.1", DriftDirection.MISSING_REMOTELY),
        }


class TestDiffFailovers:
    """Tests for failover diffs."""

    def test_switch(self) -> None:
        """Test a different active server yields a switch."""
        diff = diff_failovers(
            (Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip="2.2.2.2"),),
            (Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip="1.1.1.1"),),
        )

        assert diff.mutations == (
            Mutation(MutationType.SWITCH_FAILOVER, ResourceKind.FAILOVER, "9.9.9.9", "2.2.2.2"),
        )

    def test_unroute(self) -> None:
        """Test a null desired active server yields a switch with a None payload."""
        diff = diff_failovers(
            (Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip=None),),
            (Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip="1.1.1.1"),),
        )

        assert diff.mutations[0].payload is None

    def test_server_ip_is_not_managed(self) -> None:
        """Test only the active server is compared."""
        diff = diff_failovers(
            (Failover(ip="9.9.9.9", server_ip="3.3.3.3", active_server_ip="1.1.1.1"),),
            (Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip="1.1.1.1"),),
        )

        assert diff.is_empty


class TestDiffVSwitches:
    """Tests for vSwitch diffs."""

    def test_membership_order_is_ignored(self) -> None:
        """Test membership is compared as a set."""
        diff = diff_vswitches(
            (VSwitch(id=1, name="a", vlan=4000, servers=("1.1.1.1", "2.2.2.2")),),
            (VSwitch(id=1, name="a", vlan=4000, servers=("2.2.2.2", "1.1.1.1")),),
        )

        assert diff.is_empty

    def test_edit_name_and_vlan_together(self) -> None:
        """Test a vlan change edits name and vlan in one mutation."""
        diff = diff_vswitches(
            (VSwitch(id=1, name="a", vlan=4001),),
            (VSwitch(id=1, name="a", vlan=4000),),
        )

        assert diff.mutations == (
            Mutation(
                MutationType.EDIT_VSWITCH, ResourceKind.VSWITCH, 1, {"name": "a", "vlan": 4001}
            ),
        )

    def test_remove_before_add(self) -> None:
        """Test membership changes emit removals before additions."""
        diff = diff_vswitches(
            (VSwitch(id=1, name="b", vlan=4000, servers=("1.1.1.1", "3.3.3.3")),),
            (VSwitch(id=1, name="a", vlan=4000, servers=("1.1.1.1", "2.2.2.2")),),
        )

        assert [(m.type, m.payload) for m in diff.mutations] == [
            (MutationType.EDIT_VSWITCH, {"name": "b", "vlan": 4000}),
            (MutationType.REMOVE_VSWITCH_SERVERS, ("2.2.2.2",)),
            (MutationType.ADD_VSWITCH_SERVERS, ("3.3.3.3",)),
        ]

    def test_only_additions(self) -> None:
        """Test no remove mutation is emitted when nothing is removed."""
        diff = diff_vswitches(
            (VSwitch(id=1, name="a", vlan=4000, servers=("1.1.1.1",)),),
            (VSwitch(id=1, name="a", vlan=4000),),
        )

        assert [m.type for m in diff.mutations] == [MutationType.ADD_VSWITCH_SERVERS]


class TestDiffStates:
    """Tests for whole-state diffs."""

    def _state(self) -> RobotState:
        return RobotState(
            servers=(_server("1.1.1.1"), _server("2.2.2.2", name="db")),
            failovers=(Failover(ip="9.9.9.9", server_ip="1.1.1.1", active_server_ip="1.1.1.1"),),
            vswitches=(VSwitch(id=7, name="net", vlan=4000, servers=("1.1.1.1",)),),
        )

    def test_kind_order(self) -> None:
        """Test diffs are returned servers, failovers, then vSwitches."""
        kinds = [d.kind for d in diff_states(self._state(), self._state())]

        assert kinds == [ResourceKind.SERVER, ResourceKind.FAILOVER, ResourceKind.VSWITCH]

    def test_identical_states_are_empty(self) -> None:
        """Test diffing a state against itself yields nothing."""
        assert all(d.is_empty for d in diff_states(self._state(), self._state()))

    def test_observed_order_does_not_matter(self) -> None:
        """Test permuting the observed collections gives the same diff."""
        desired = self._state().model_copy(update={"servers": (_server("1.1.1.1", name="x"),)})
        observed = self._state()
        reversed_observed = observed.model_copy(update={"servers": observed.servers[::-1]})

        assert diff_states(desired, observed) == diff_states(desired, reversed_observed)


class TestDescriptions:
    """Tests for the human readable messages."""

    def test_drift_messages(self) -> None:
        """Test drift messages name the resource and the direction."""
        local = Drift(ResourceKind.VSWITCH, 7, DriftDirection.MISSING_LOCALLY)
        remote = Drift(ResourceKind.SERVER, "1.1.1.1", DriftDirection.MISSING_REMOTELY)

        assert local.describe() == "vSwitch#7 not found in local state (new?)"
        assert remote.describe() == "server#1.1.1.1 not found in remote state (removed?)"

    def test_mutation_messages(self) -> None:
        """Test intent, success and failure wording."""
        rename = Mutation(MutationType.RENAME_SERVER, ResourceKind.SERVER, "1.1.1.1", "x")
        add = Mutation(
            MutationType.ADD_VSWITCH_SERVERS, ResourceKind.VSWITCH, 7, ("1.1.1.1", "2.2.2.2")
        )

        assert rename.describe_intent() == "server#1.1.1.1 name will be changed"
        assert rename.describe_success() == "server#1.1.1.1 name changed"
        assert add.describe_intent() == "vSwitch#7 servers (2) will be added"
        assert add.describe_failure() == "vSwitch#7 servers (2) add caused error"
