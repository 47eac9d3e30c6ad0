"""Robot API Mock for Integration Testing.

This module provides an in-memory stand-in for RobotClient that enables
reconciliation tests without network access.

Key Features:
- In-memory state for servers, firewalls, failover IPs and vSwitches
- Call recording for asserting which mutations were issued
- Error injection per method and resource key
- vSwitch members that stay "in process" for a configurable number of polls

Usage:
    from robot_mock import MockRobotClient, MockRobotState

    state = MockRobotState()
    state.add_server("1.2.3.4", number=1, name="web-0")
    client = MockRobotClient(state)

    result = await Reconciler(client, config).reconcile(desired, ReconcileMode.APPLY)
    assert client.mutation_calls == [("set_server_name", "1.2.3.4", "web-1")]
"""

from .client import MUTATION_METHODS, MockRobotClient
from .state import MockRobotState, firewall_payload

__all__ = [
    "MUTATION_METHODS",
    "MockRobotClient",
    "MockRobotState",
    "firewall_payload",
]
