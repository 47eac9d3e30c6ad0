"""Declarative state management for Hetzner Robot servers, failover IPs and vSwitches."""

__version__ = "0.1.0"
