"""Reconciliation pipeline: fetch, diff, then plan or apply.

A run goes through:
1. Fetch observed state from Robot (any failure aborts the run)
2. Diff desired against observed, per resource kind
3. For each kind, in order servers -> failovers -> vSwitches:
   - count drift as failures (both modes)
   - PLAN: log every intended mutation, execute none
   - APPLY: execute mutations, one concurrent task per resource
4. Reduce the per-task outcomes into a single verdict

Per-resource failures never abort siblings or later kinds, and nothing is
retried within a run. Tasks return their outcomes instead of updating shared
counters; the result is a reduction over those lists.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .api import RobotAPIError, RobotClient
from .config import Config
from .differ import (
    MEMBERSHIP_MUTATIONS,
    Drift,
    KindDiff,
    Mutation,
    MutationType,
    ResourceKind,
    diff_states,
)
from .fetcher import RemoteStateFetcher
from .models import RobotState
from .poller import PollTimeoutError, VSwitchCompletionPoller

logger = logging.getLogger(__name__)


class ReconcileMode(str, Enum):
    """Whether mutations are executed or only reported."""

    PLAN = "plan"
    APPLY = "apply"


@dataclass(frozen=True)
class MutationOutcome:
    """Result of executing one mutation."""

    mutation: Mutation
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class PollFailure:
    """A vSwitch whose membership change could not be confirmed."""

    vswitch_id: Hashable
    error: str


@dataclass
class ReconcileResult:
    """Result of a single reconciliation run."""

    mode: ReconcileMode
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    drift: list[Drift] = field(default_factory=list)
    planned: list[Mutation] = field(default_factory=list)
    outcomes: list[MutationOutcome] = field(default_factory=list)
    poll_failures: list[PollFailure] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def applied(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        """Drift, failed mutations and unconfirmed vSwitch changes."""
        failed_mutations = sum(1 for outcome in self.outcomes if not outcome.ok)
        return len(self.drift) + failed_mutations + len(self.poll_failures)

    @property
    def total(self) -> int:
        return self.applied + self.failed

    @property
    def has_changes(self) -> bool:
        """True if anything differs between desired and observed state."""
        return bool(self.drift or self.planned)

    @property
    def success(self) -> bool:
        return self.failed == 0


class Reconciler:
    """Drives one plan or apply run against a Robot account."""

    def __init__(self, client: RobotClient, config: Config) -> None:
        self._client = client
        self._config = config
        self._fetcher = RemoteStateFetcher(client)
        self._poller = VSwitchCompletionPoller(
            client,
            interval_seconds=config.ping_interval_seconds,
            timeout_seconds=config.poll_timeout_seconds,
        )

    async def reconcile(self, desired: RobotState, mode: ReconcileMode) -> ReconcileResult:
        """Reconcile the remote state towards ``desired``.

        Raises:
            FetchFailure: If observed state cannot be collected. Nothing has
                been changed at that point.
        """
        result = ReconcileResult(mode=mode)
        logger.info("Starting reconciliation", extra={"mode": mode.value})

        observed = await self._fetcher.fetch_all()

        for kind_diff in diff_states(desired, observed):
            await self._reconcile_kind(kind_diff, mode, result)

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def _reconcile_kind(
        self, kind_diff: KindDiff, mode: ReconcileMode, result: ReconcileResult
    ) -> None:
        for drift in kind_diff.drift:
            logger.error(
                drift.describe(),
                extra={
                    "kind": drift.kind.value,
                    "key": drift.key,
                    "direction": drift.direction.value,
                },
            )
        result.drift.extend(kind_diff.drift)

        for mutation in kind_diff.mutations:
            logger.info(
                mutation.describe_intent(),
                extra={
                    "kind": mutation.kind.value,
                    "key": mutation.key,
                    "mutation": mutation.type.value,
                },
            )
        result.planned.extend(kind_diff.mutations)

        if mode == ReconcileMode.PLAN or not kind_diff.mutations:
            return

        # Group by resource, keeping diff order within each resource
        by_key: dict[Hashable, list[Mutation]] = {}
        for mutation in kind_diff.mutations:
            by_key.setdefault(mutation.key, []).append(mutation)

        task_results = await asyncio.gather(
            *(self._reconcile_resource(key, mutations) for key, mutations in by_key.items())
        )
        for outcomes, poll_failure in task_results:
            result.outcomes.extend(outcomes)
            if poll_failure is not None:
                result.poll_failures.append(poll_failure)

    async def _reconcile_resource(
        self, key: Hashable, mutations: list[Mutation]
    ) -> tuple[list[MutationOutcome], PollFailure | None]:
        """Apply one resource's mutations in order and wait for vSwitch settling."""
        outcomes = [await self._execute(mutation) for mutation in mutations]

        membership_changed = any(
            outcome.ok and outcome.mutation.type in MEMBERSHIP_MUTATIONS for outcome in outcomes
        )
        if not membership_changed or not isinstance(key, int):
            return outcomes, None

        try:
            await self._poller.wait(key)
        except (RobotAPIError, PollTimeoutError) as e:
            logger.error(
                f"vSwitch#{key} completion check failed: {e}",
                extra={"kind": ResourceKind.VSWITCH.value, "key": key, "error": str(e)},
            )
            return outcomes, PollFailure(vswitch_id=key, error=str(e))

        return outcomes, None

    async def _execute(self, mutation: Mutation) -> MutationOutcome:
        extra: dict[str, Any] = {
            "kind": mutation.kind.value,
            "key": mutation.key,
            "mutation": mutation.type.value,
        }
        try:
            await self._call(mutation)
        except RobotAPIError as e:
            logger.error(
                f"{mutation.describe_failure()}: {e}",
                extra={**extra, "error": str(e), "error_code": e.code},
            )
            return MutationOutcome(mutation=mutation, ok=False, error=str(e))

        logger.info(mutation.describe_success(), extra={**extra, "outcome": "success"})
        return MutationOutcome(mutation=mutation, ok=True)

    async def _call(self, mutation: Mutation) -> None:
        """Map a mutation intent onto the matching client call."""
        key, payload = mutation.key, mutation.payload

        match mutation.type:
            case MutationType.RENAME_SERVER:
                await self._client.set_server_name(key, payload)
            case MutationType.REPLACE_FIREWALL:
                await self._client.apply_firewall(key, payload.to_api())
            case MutationType.SWITCH_FAILOVER:
                if payload is None:
                    await self._client.clear_failover(key)
                else:
                    await self._client.switch_failover(key, payload)
            case MutationType.EDIT_VSWITCH:
                await self._client.edit_vswitch(key, payload["name"], payload["vlan"])
            case MutationType.REMOVE_VSWITCH_SERVERS:
                await self._client.remove_vswitch_servers(key, list(payload))
            case MutationType.ADD_VSWITCH_SERVERS:
                await self._client.add_vswitch_servers(key, list(payload))
            case _:
                raise ValueError(f"Unsupported mutation type: {mutation.type}")

    def _log_result(self, result: ReconcileResult) -> None:
        """Log the run summary with structured data."""
        extra: dict[str, Any] = {
            "mode": result.mode.value,
            "duration_seconds": result.duration_seconds,
            "drift": len(result.drift),
            "planned": len(result.planned),
            "applied": result.applied,
            "failed": result.failed,
        }

        if result.mode == ReconcileMode.PLAN:
            message = (
                f"{len(result.planned)} changes planned, "
                f"{len(result.drift)} resources drifted"
            )
            if result.has_changes:
                logger.warning(message, extra=extra)
            else:
                logger.info(message, extra={**extra, "outcome": "success"})
        elif result.failed > 0:
            logger.error(f"{result.failed} / {result.total} changes failed", extra=extra)
        else:
            logger.info(f"{result.total} changes applied", extra={**extra, "outcome": "success"})
