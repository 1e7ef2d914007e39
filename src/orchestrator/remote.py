"""Abstract remote resource API consumed by the orchestration engine.

The engine never talks to a cloud SDK directly. It sees resources through
the RemoteResourceAPI protocol below; aws_api.py provides the boto3
implementation and the test suite provides an in-memory one.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class ResourceType(str, Enum):
    """Resource types addressed through the remote API."""

    MEMORY = "memory"
    OAUTH2_PROVIDER = "oauth2_credential_provider"
    WORKLOAD_IDENTITY = "workload_identity"
    GATEWAY = "gateway"
    GATEWAY_TARGET = "gateway_target"
    AGENT_RUNTIME = "agent_runtime"
    RUNTIME_ENDPOINT = "runtime_endpoint"
    TOOL_STACK = "tool_stack"
    ECR_REPOSITORY = "ecr_repository"
    ECR_IMAGE = "ecr_image"
    IAM_ROLE = "iam_role"
    IAM_ROLE_POLICY = "iam_role_policy"


def type_name(type: str) -> str:
    """Plain string form of a resource type (enum member or str)."""
    return type.value if isinstance(type, Enum) else str(type)


class ResourceStatus(str, Enum):
    """Normalized lifecycle status of a remote resource."""

    PENDING = "PENDING"
    AVAILABLE = "AVAILABLE"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"
    ORPHANED = "ORPHANED"


@dataclass(frozen=True)
class ResourceDescriptor:
    """A named, typed request for a remote resource.

    Attributes are passed through to the create call unchanged.
    """

    type: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    region: str = ""
    parent: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", type_name(self.type))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


@dataclass
class ResourceRecord:
    """Reconciled view of a live remote resource.

    `status` holds the raw status string reported by the service
    (AVAILABLE, ACTIVE, READY, CREATE_COMPLETE, ...). Readiness is decided
    by the caller's ready set, not by this class.
    """

    id: str
    type: str
    name: str
    status: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    last_observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    parent: str | None = None

    def normalized_status(
        self, ready: frozenset[str], failed: frozenset[str] = frozenset()
    ) -> ResourceStatus:
        if self.status in ready:
            return ResourceStatus.AVAILABLE
        if self.status in failed:
            return ResourceStatus.FAILED
        if not self.status:
            return ResourceStatus.UNKNOWN
        return ResourceStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "status": self.status,
            "attributes": self.attributes,
            "last_observed_at": self.last_observed_at.isoformat().replace("+00:00", "Z"),
        }


@dataclass(frozen=True)
class ListPage:
    """One page of a listing call."""

    items: list[ResourceRecord]
    next_token: str | None = None


class RemoteResourceAPI(Protocol):
    """Control-plane operations the orchestrator depends on.

    Implementations raise the errors from errors.py: ResourceNotFound,
    DependencyInUse, TransientApiError or RemoteApiError. `parent`
    scopes child resources (gateway targets, runtime endpoints, images).
    """

    def list_resources(
        self, type: str, cursor: str | None = None, parent: str | None = None
    ) -> ListPage: ...

    def get_resource(
        self, type: str, name: str, parent: str | None = None
    ) -> ResourceRecord | None: ...

    def create_resource(self, type: str, descriptor: ResourceDescriptor) -> ResourceRecord: ...

    def delete_resource(self, type: str, id: str, parent: str | None = None) -> None: ...

    def update_resource(
        self, type: str, id: str, attributes: Mapping[str, Any]
    ) -> ResourceRecord: ...

    def caller_account(self) -> str: ...


async def call_api(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking API call without stalling the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
