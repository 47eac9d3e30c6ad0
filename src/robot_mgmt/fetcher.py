"""Observed state collection from the Robot API.

Each resource kind is fetched concurrently. A run never reconciles against a
partial snapshot: if any listing or detail call fails, the whole fetch fails
with FetchFailure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from operator import itemgetter
from typing import Any, TypeVar

from pydantic import ValidationError

from .api import RobotAPIError, RobotClient
from .models import Failover, RobotState, Server, VSwitch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FetchFailure(Exception):
    """Raised when observed state for a resource kind cannot be collected."""

    def __init__(self, kind: str, error: Exception) -> None:
        super().__init__(f"Failed to fetch {kind} state: {error}")
        self.kind = kind
        self.error = error


async def _gather_all(kind: str, calls: Iterable[Awaitable[T]]) -> list[T]:
    """Await every call; raise FetchFailure for the first one that failed."""
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, RobotAPIError):
            raise FetchFailure(kind, result) from result
        if isinstance(result, BaseException):
            raise result
    return list(results)  # type: ignore[arg-type]


def _build(kind: str, factory: Callable[..., T], *payloads: Any) -> T:
    """Convert API payloads into a model; malformed payloads fail the fetch."""
    try:
        return factory(*payloads)
    except (ValidationError, KeyError, TypeError, ValueError) as e:
        raise FetchFailure(kind, e) from e


class RemoteStateFetcher:
    """Builds a RobotState from live API responses."""

    def __init__(self, client: RobotClient) -> None:
        self._client = client

    async def fetch_all(self) -> RobotState:
        """Fetch servers, failovers and vSwitches concurrently.

        Raises:
            FetchFailure: If any kind cannot be fetched completely.
        """
        results = await asyncio.gather(
            self.fetch_servers(),
            self.fetch_failovers(),
            self.fetch_vswitches(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        servers, failovers, vswitches = results
        logger.info(
            "Fetched remote state",
            extra={
                "servers": len(servers),
                "failovers": len(failovers),
                "vswitches": len(vswitches),
            },
        )
        return RobotState(servers=servers, failovers=failovers, vswitches=vswitches)

    async def fetch_servers(self) -> tuple[Server, ...]:
        """One listing call plus one firewall call per server."""
        try:
            listing = await self._client.list_servers()
        except RobotAPIError as e:
            raise FetchFailure("server", e) from e

        async def with_firewall(server: dict[str, Any]) -> Server:
            ip = _build("server", itemgetter("server_ip"), server)
            firewall = await self._client.get_firewall(ip)
            return _build("server", Server.from_api, server, firewall)

        servers = await _gather_all("server", (with_firewall(s) for s in listing))
        return tuple(servers)

    async def fetch_failovers(self) -> tuple[Failover, ...]:
        try:
            listing = await self._client.list_failovers()
        except RobotAPIError as e:
            raise FetchFailure("failover", e) from e
        return tuple(_build("failover", Failover.from_api, item) for item in listing)

    async def fetch_vswitches(self) -> tuple[VSwitch, ...]:
        """One listing call plus one detail call per active vSwitch.

        Cancelled vSwitches are left out of the observed state entirely.
        """
        try:
            listing = await self._client.list_vswitches()
        except RobotAPIError as e:
            raise FetchFailure("vSwitch", e) from e

        active = [item for item in listing if not item.get("cancelled")]
        if len(active) < len(listing):
            logger.debug("Skipping cancelled vSwitches", extra={"count": len(listing) - len(active)})

        ids = [_build("vSwitch", itemgetter("id"), item) for item in active]
        details = await _gather_all("vSwitch", (self._client.get_vswitch(i) for i in ids))
        return tuple(_build("vSwitch", VSwitch.from_api, detail) for detail in details)
