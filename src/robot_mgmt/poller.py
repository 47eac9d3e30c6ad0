"""Completion polling for asynchronous vSwitch membership changes.

Robot accepts membership changes immediately but applies them in the
background; members report the status ``in process`` until they settle on
``ready`` or ``failed``. The poller blocks until no member is in process.

Without a timeout the wait is unbounded. Robot finishes these operations
within tens of seconds, so a hang means the remote operation is stuck.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from .api import RobotClient

logger = logging.getLogger(__name__)

STATUS_READY = "ready"
STATUS_IN_PROCESS = "inprocess"
STATUS_FAILED = "failed"


class PollTimeoutError(Exception):
    """Raised when a vSwitch is still in process after the configured timeout."""

    def __init__(self, vswitch_id: int, timeout_seconds: float) -> None:
        super().__init__(
            f"vSwitch#{vswitch_id} still in process after {timeout_seconds:g}s"
        )
        self.vswitch_id = vswitch_id
        self.timeout_seconds = timeout_seconds


@dataclass(frozen=True)
class MemberStatusCounts:
    """Tally of vSwitch member statuses."""

    ready: int = 0
    in_process: int = 0
    failed: int = 0

    @classmethod
    def tally(cls, statuses: Iterable[str | None]) -> MemberStatusCounts:
        """Count statuses; spaces and case are ignored, unknown values skipped."""
        counts = {STATUS_READY: 0, STATUS_IN_PROCESS: 0, STATUS_FAILED: 0}
        for status in statuses:
            normalized = (status or "").replace(" ", "").lower()
            if normalized in counts:
                counts[normalized] += 1
        return cls(
            ready=counts[STATUS_READY],
            in_process=counts[STATUS_IN_PROCESS],
            failed=counts[STATUS_FAILED],
        )


class VSwitchCompletionPoller:
    """Waits for a vSwitch to have no members in process."""

    def __init__(
        self,
        client: RobotClient,
        interval_seconds: float,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._sleep = sleep

    async def wait(self, vswitch_id: int) -> MemberStatusCounts:
        """Block until the vSwitch settles and return the final counts.

        Raises:
            PollTimeoutError: If a timeout is configured and exceeded.
            RobotAPIError: If the vSwitch cannot be fetched.
        """
        if self._timeout is None:
            return await self._poll(vswitch_id)

        try:
            return await asyncio.wait_for(self._poll(vswitch_id), timeout=self._timeout)
        except TimeoutError as e:
            raise PollTimeoutError(vswitch_id, self._timeout) from e

    async def _poll(self, vswitch_id: int) -> MemberStatusCounts:
        while True:
            await self._sleep(self._interval)

            vswitch = await self._client.get_vswitch(vswitch_id)
            counts = MemberStatusCounts.tally(
                member.get("status") for member in vswitch.get("server") or []
            )
            extra = {
                "vswitch_id": vswitch_id,
                "ready": counts.ready,
                "in_process": counts.in_process,
                "failed": counts.failed,
            }

            if counts.in_process == 0:
                summary = (
                    f"vSwitch#{vswitch_id} updated "
                    f"({counts.ready} servers ready, {counts.failed} servers failed)"
                )
                if counts.failed > 0:
                    logger.warning(summary, extra=extra)
                else:
                    logger.info(summary, extra={**extra, "outcome": "success"})
                return counts

            logger.info(
                f"vSwitch#{vswitch_id} {counts.in_process} servers still in process "
                f"({counts.ready} ready, {counts.failed} failed)",
                extra=extra,
            )
