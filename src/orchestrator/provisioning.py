"""Find-or-create provisioning with bounded readiness polling.

Cloud control planes create resources asynchronously and offer no
blocking "create and wait" call. ResourceProvisioner.ensure drives a
descriptor through ABSENT -> CREATING -> AVAILABLE | FAILED, polling at a
fixed interval for at most PollPolicy.max_attempts attempts.

Readiness is parametric: each resource type passes its own ready and
failed vocabularies (AVAILABLE/ACTIVE for memory, READY for gateways and
runtimes, CREATE_COMPLETE for stacks).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .config import Config
from .errors import (
    CreationFailed,
    ProvisioningTimeout,
    RemoteApiError,
    TransientApiError,
)
from .remote import RemoteResourceAPI, ResourceDescriptor, ResourceRecord, call_api
from .retry import RetryPolicy, Sleeper

logger = logging.getLogger(__name__)

DEFAULT_FAILED_STATUSES = frozenset(
    {"FAILED", "CREATE_FAILED", "ROLLBACK_COMPLETE", "ROLLBACK_FAILED"}
)


class ProvisioningState(str, Enum):
    """States of a single ensure() run."""

    ABSENT = "ABSENT"
    CREATING = "CREATING"
    AVAILABLE = "AVAILABLE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PollPolicy:
    """Readiness vocabulary plus the poll budget."""

    ready: frozenset[str]
    failed: frozenset[str] = DEFAULT_FAILED_STATUSES
    interval_seconds: float = 5.0
    max_attempts: int = 60

    def __post_init__(self) -> None:
        if not self.ready:
            raise ValueError("ready status set must not be empty")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(
        cls,
        config: Config,
        ready: frozenset[str] | set[str],
        failed: frozenset[str] | set[str] = DEFAULT_FAILED_STATUSES,
    ) -> PollPolicy:
        return cls(
            ready=frozenset(ready),
            failed=frozenset(failed),
            interval_seconds=config.poll_interval_seconds,
            max_attempts=config.poll_max_attempts,
        )


@dataclass
class ProvisioningRun:
    """What happened during one ensure() call."""

    descriptor: ResourceDescriptor
    record: ResourceRecord | None = None
    created: bool = False
    polls: int = 0
    states: list[ProvisioningState] = field(default_factory=lambda: [ProvisioningState.ABSENT])

    @property
    def state(self) -> ProvisioningState:
        return self.states[-1]

    def transition(self, state: ProvisioningState) -> None:
        if self.states[-1] != state:
            self.states.append(state)


class ResourceProvisioner:
    """Idempotent find-or-create for remote resources."""

    def __init__(
        self,
        api: RemoteResourceAPI,
        sleep: Sleeper = asyncio.sleep,
        call_retry: RetryPolicy | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        self._api = api
        self._sleep = sleep
        self._call_retry = call_retry or RetryPolicy(max_attempts=3, backoff_seconds=2.0)
        self._progress = progress

    def _report(self, message: str) -> None:
        if self._progress is not None:
            self._progress(message)

    async def ensure(self, descriptor: ResourceDescriptor, policy: PollPolicy) -> ResourceRecord:
        """Return a ready record for `descriptor`, creating it if needed.

        Raises:
            CreationFailed: If the create call is rejected or the resource
                reaches a failed status.
            ProvisioningTimeout: If the poll budget is spent before the
                resource reports a ready status.
        """
        run = await self.provision(descriptor, policy)
        assert run.record is not None
        return run.record

    async def provision(
        self, descriptor: ResourceDescriptor, policy: PollPolicy
    ) -> ProvisioningRun:
        run = ProvisioningRun(descriptor=descriptor)
        label = f"{descriptor.type} '{descriptor.name}'"

        existing = await self._lookup(descriptor)
        if existing is not None:
            if existing.status in policy.ready:
                logger.info(
                    "Resource already available",
                    extra={
                        "type": descriptor.type,
                        "resource_name": descriptor.name,
                        "id": existing.id,
                    },
                )
                self._report(f"{label} already exists ({existing.status})")
                run.record = existing
                run.transition(ProvisioningState.AVAILABLE)
                return run

            if existing.status in policy.failed:
                run.transition(ProvisioningState.FAILED)
                raise CreationFailed(
                    f"{label} exists in failed status {existing.status}; delete it and re-run"
                )

            logger.info(
                "Resource exists but is not ready, polling",
                extra={
                    "type": descriptor.type,
                    "resource_name": descriptor.name,
                    "status": existing.status,
                },
            )
            self._report(f"{label} exists ({existing.status}), waiting for readiness")
            run.record = existing
        else:
            run.record = await self._create(descriptor)
            run.created = True
            self._report(f"{label} create requested ({run.record.status or 'pending'})")
            if run.record.status in policy.ready:
                run.transition(ProvisioningState.AVAILABLE)
                return run

        run.transition(ProvisioningState.CREATING)
        await self._poll(run, policy)
        return run

    async def _lookup(self, descriptor: ResourceDescriptor) -> ResourceRecord | None:
        async def get() -> ResourceRecord | None:
            return await call_api(
                self._api.get_resource, descriptor.type, descriptor.name, descriptor.parent
            )

        record = await self._call_retry.call(get, sleep=self._sleep, description="Lookup")
        # Names match exactly and case-sensitively
        if record is not None and record.name != descriptor.name:
            return None
        return record

    async def _create(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        async def create() -> ResourceRecord:
            return await call_api(self._api.create_resource, descriptor.type, descriptor)

        logger.info(
            "Creating resource",
            extra={
                "type": descriptor.type,
                "resource_name": descriptor.name,
                "region": descriptor.region,
            },
        )
        try:
            record = await self._call_retry.call(create, sleep=self._sleep, description="Create")
        except RemoteApiError as e:
            logger.error(
                "Create call rejected",
                extra={"type": descriptor.type, "resource_name": descriptor.name, "error": str(e)},
            )
            raise CreationFailed(str(e)) from e

        logger.info(
            "Create accepted",
            extra={"type": descriptor.type, "resource_name": descriptor.name, "id": record.id},
        )
        return record

    async def _poll(self, run: ProvisioningRun, policy: PollPolicy) -> None:
        descriptor = run.descriptor
        assert run.record is not None
        last_status: str | None = run.record.status or None

        for attempt in range(1, policy.max_attempts + 1):
            await self._sleep(policy.interval_seconds)
            run.polls = attempt

            try:
                record = await call_api(
                    self._api.get_resource, descriptor.type, descriptor.name, descriptor.parent
                )
            except TransientApiError as e:
                logger.warning(
                    "Transient error while polling, continuing",
                    extra={
                        "type": descriptor.type,
                        "resource_name": descriptor.name,
                        "attempt": attempt,
                        "error": str(e),
                    },
                )
                continue

            if record is None:
                # Listing can lag behind a fresh create
                logger.debug(
                    "Resource not visible yet",
                    extra={
                        "type": descriptor.type,
                        "resource_name": descriptor.name,
                        "attempt": attempt,
                    },
                )
                continue

            run.record = record
            last_status = record.status
            self._report(
                f"  [{attempt}/{policy.max_attempts}] {descriptor.name}: {record.status}"
            )

            if record.status in policy.ready:
                run.transition(ProvisioningState.AVAILABLE)
                logger.info(
                    "Resource available",
                    extra={
                        "type": descriptor.type,
                        "resource_name": descriptor.name,
                        "id": record.id,
                        "polls": attempt,
                    },
                )
                return

            if record.status in policy.failed:
                run.transition(ProvisioningState.FAILED)
                raise CreationFailed(
                    f"{descriptor.type} '{descriptor.name}' reached {record.status}"
                )

        run.transition(ProvisioningState.FAILED)
        logger.error(
            "Resource not ready within attempt budget",
            extra={
                "type": descriptor.type,
                "resource_name": descriptor.name,
                "attempts": policy.max_attempts,
                "last_status": last_status,
            },
        )
        raise ProvisioningTimeout(
            f"{descriptor.type} '{descriptor.name}'", last_status, policy.max_attempts
        )

    async def wait_for_absence(
        self,
        type: str,
        name: str,
        policy: PollPolicy,
        parent: str | None = None,
    ) -> bool:
        """Poll until a deleted resource disappears.

        Returns:
            True once the resource is gone, False if the budget is spent.
        """
        for attempt in range(1, policy.max_attempts + 1):
            try:
                record = await call_api(self._api.get_resource, type, name, parent)
            except TransientApiError as e:
                logger.warning(
                    "Transient error while waiting for deletion",
                    extra={
                        "type": type,
                        "resource_name": name,
                        "attempt": attempt,
                        "error": str(e),
                    },
                )
                await self._sleep(policy.interval_seconds)
                continue
            if record is None:
                logger.info("Resource deleted", extra={"type": type, "resource_name": name})
                return True
            if record.status in policy.failed:
                logger.warning(
                    "Deletion reached a failed status",
                    extra={"type": type, "resource_name": name, "status": record.status},
                )
                return False
            await self._sleep(policy.interval_seconds)

        logger.warning(
            "Resource still present after deletion wait",
            extra={"type": type, "resource_name": name, "attempts": policy.max_attempts},
        )
        return False
