"""boto3-backed implementation of the remote resource API.

Covers the Bedrock AgentCore control plane (memory, OAuth2 credential
providers, workload identities, gateways and targets, agent runtimes and
endpoints), CloudFormation for the tool function stack, ECR repositories
and images, and IAM roles with their policies.

Each resource type is served by private `_<op>_<type>` methods; the
public methods dispatch on the type name and translate botocore errors
into the orchestrator's error taxonomy in one place.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import DependencyInUse, RemoteApiError, ResourceNotFound, TransientApiError
from .remote import ListPage, ResourceDescriptor, ResourceRecord, ResourceType, type_name

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

AGENTCORE_CONTROL = "bedrock-agentcore-control"

NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NotFoundException",
        "NoSuchEntity",
        "RepositoryNotFoundException",
        "ImageNotFoundException",
        "ImageNotFound",
    }
)
TRANSIENT_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailableException",
        "ServiceUnavailable",
        "InternalServerException",
        "InternalFailure",
    }
)
IN_USE_CODES = frozenset(
    {
        "ConflictException",
        "ResourceInUseException",
        "ResourceInUse",
        "DependencyViolation",
        "DeleteConflict",
    }
)

# Resources without a lifecycle status are usable as soon as they exist
STATIC_STATUS = "AVAILABLE"

# CloudFormation statuses of stacks that still exist
ACTIVE_STACK_STATUSES = [
    "CREATE_IN_PROGRESS",
    "CREATE_FAILED",
    "CREATE_COMPLETE",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_FAILED",
    "ROLLBACK_COMPLETE",
    "DELETE_IN_PROGRESS",
    "DELETE_FAILED",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_COMPLETE",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE",
]

# Upper bound on pages scanned when a lookup by name needs a listing
MAX_LOOKUP_PAGES = 100


def translate_client_error(error: ClientError) -> RemoteApiError:
    """Map a botocore ClientError onto the orchestrator error taxonomy."""
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message", str(error))

    if code in NOT_FOUND_CODES:
        return ResourceNotFound(message, code)
    # CloudFormation reports missing stacks as a validation error
    if code == "ValidationError" and "does not exist" in message:
        return ResourceNotFound(message, code)
    if code in TRANSIENT_CODES:
        return TransientApiError(message, code)
    if code in IN_USE_CODES:
        return DependencyInUse(message, code)
    return RemoteApiError(f"{code}: {message}" if code else message, code or None)


def translated(func: F) -> F:
    """Re-raise botocore failures as orchestrator errors."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ClientError as e:
            raise translate_client_error(e) from e
        except (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError) as e:
            raise TransientApiError(str(e)) from e
        except BotoCoreError as e:
            raise RemoteApiError(str(e)) from e

    return wrapper  # type: ignore[return-value]


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value is not None else ""


def _token_kwargs(cursor: str | None, key: str = "nextToken") -> dict[str, Any]:
    return {key: cursor} if cursor else {}


class AgentCoreResourceAPI:
    """RemoteResourceAPI over boto3 clients for one region."""

    def __init__(
        self,
        region: str,
        session: boto3.session.Session | None = None,
        page_size: int = 20,
    ) -> None:
        self._region = region
        self._session = session or boto3.session.Session(region_name=region)
        self._page_size = page_size
        self._clients: dict[str, Any] = {}
        # SDK-level retries are kept low; the orchestrator owns retry policy
        self._boto_config = BotoConfig(retries={"max_attempts": 2, "mode": "standard"})

    def client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self._session.client(
                service, region_name=self._region, config=self._boto_config
            )
        return self._clients[service]

    @property
    def _control(self) -> Any:
        return self.client(AGENTCORE_CONTROL)

    def _handler(self, op: str, type: str) -> Callable[..., Any]:
        name = type_name(type)
        handler = getattr(self, f"_{op}_{name}", None)
        if handler is None:
            raise RemoteApiError(f"Operation '{op}' is not supported for {name}")
        return handler

    # =========================================================================
    # RemoteResourceAPI
    # =========================================================================

    @translated
    def list_resources(
        self, type: str, cursor: str | None = None, parent: str | None = None
    ) -> ListPage:
        return self._handler("list", type)(cursor, parent)

    @translated
    def get_resource(
        self, type: str, name: str, parent: str | None = None
    ) -> ResourceRecord | None:
        try:
            return self._handler("get", type)(name, parent)
        except ClientError as e:
            error = translate_client_error(e)
            if isinstance(error, ResourceNotFound):
                return None
            raise

    @translated
    def create_resource(self, type: str, descriptor: ResourceDescriptor) -> ResourceRecord:
        logger.debug(
            "create_resource",
            extra={"type": type_name(type), "resource_name": descriptor.name},
        )
        return self._handler("create", type)(descriptor)

    @translated
    def delete_resource(self, type: str, id: str, parent: str | None = None) -> None:
        logger.debug("delete_resource", extra={"type": type_name(type), "id": id})
        self._handler("delete", type)(id, parent)

    @translated
    def update_resource(
        self, type: str, id: str, attributes: Mapping[str, Any]
    ) -> ResourceRecord:
        return self._handler("update", type)(id, dict(attributes))

    @translated
    def caller_account(self) -> str:
        return self.client("sts").get_caller_identity()["Account"]

    def _find_by_name(
        self, type: ResourceType, name: str, parent: str | None = None
    ) -> ResourceRecord | None:
        cursor: str | None = None
        for _ in range(MAX_LOOKUP_PAGES):
            page = self._handler("list", type)(cursor, parent)
            for item in page.items:
                if item.name == name:
                    return item
            if not page.next_token:
                return None
            cursor = page.next_token
        logger.warning(
            "Lookup page limit reached", extra={"type": type.value, "resource_name": name}
        )
        return None

    # =========================================================================
    # Memory
    # =========================================================================

    @staticmethod
    def _memory_record(item: dict[str, Any]) -> ResourceRecord:
        memory_id = item.get("id", "")
        # Summaries carry no name; ids are "<name>-<suffix>"
        name = item.get("name") or memory_id.rsplit("-", 1)[0]
        return ResourceRecord(
            id=memory_id,
            type=ResourceType.MEMORY.value,
            name=name,
            status=item.get("status", ""),
            attributes={
                "arn": item.get("arn", ""),
                "description": item.get("description", ""),
                "event_expiry_days": item.get("eventExpiryDuration", ""),
                "created_at": _iso(item.get("createdAt")),
            },
        )

    def _list_memory(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_memories(
            maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._memory_record(m) for m in response.get("memories", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_memory(self, name: str, parent: str | None) -> ResourceRecord | None:
        summary = self._find_by_name(ResourceType.MEMORY, name)
        if summary is None:
            return None
        response = self._control.get_memory(memoryId=summary.id)
        return self._memory_record(response["memory"])

    def _create_memory(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_memory(name=descriptor.name, **descriptor.attributes)
        return self._memory_record(response["memory"])

    def _delete_memory(self, id: str, parent: str | None) -> None:
        self._control.delete_memory(memoryId=id)

    # =========================================================================
    # OAuth2 credential providers
    # =========================================================================

    @staticmethod
    def _provider_record(item: dict[str, Any]) -> ResourceRecord:
        secret = item.get("clientSecretArn") or {}
        secret_arn = secret.get("secretArn", "") if isinstance(secret, dict) else ""
        return ResourceRecord(
            id=item["name"],
            type=ResourceType.OAUTH2_PROVIDER.value,
            name=item["name"],
            status=STATIC_STATUS,
            attributes={
                "arn": item.get("credentialProviderArn", ""),
                "vendor": item.get("credentialProviderVendor", ""),
                "client_secret_arn": secret_arn,
            },
        )

    def _list_oauth2_credential_provider(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_oauth2_credential_providers(
            maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._provider_record(p) for p in response.get("credentialProviders", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_oauth2_credential_provider(
        self, name: str, parent: str | None
    ) -> ResourceRecord | None:
        return self._provider_record(self._control.get_oauth2_credential_provider(name=name))

    def _create_oauth2_credential_provider(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_oauth2_credential_provider(
            name=descriptor.name, **descriptor.attributes
        )
        return self._provider_record(response)

    def _update_oauth2_credential_provider(
        self, id: str, attributes: dict[str, Any]
    ) -> ResourceRecord:
        response = self._control.update_oauth2_credential_provider(name=id, **attributes)
        return self._provider_record(response)

    def _delete_oauth2_credential_provider(self, id: str, parent: str | None) -> None:
        self._control.delete_oauth2_credential_provider(name=id)

    # =========================================================================
    # Workload identities
    # =========================================================================

    @staticmethod
    def _identity_record(item: dict[str, Any]) -> ResourceRecord:
        return ResourceRecord(
            id=item["name"],
            type=ResourceType.WORKLOAD_IDENTITY.value,
            name=item["name"],
            status=STATIC_STATUS,
            attributes={"arn": item.get("workloadIdentityArn", "")},
        )

    def _list_workload_identity(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_workload_identities(
            maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._identity_record(i) for i in response.get("workloadIdentities", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_workload_identity(self, name: str, parent: str | None) -> ResourceRecord | None:
        return self._identity_record(self._control.get_workload_identity(name=name))

    def _create_workload_identity(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_workload_identity(
            name=descriptor.name, **descriptor.attributes
        )
        return self._identity_record(response)

    def _delete_workload_identity(self, id: str, parent: str | None) -> None:
        self._control.delete_workload_identity(name=id)

    # =========================================================================
    # Gateways and targets
    # =========================================================================

    @staticmethod
    def _gateway_record(item: dict[str, Any]) -> ResourceRecord:
        return ResourceRecord(
            id=item.get("gatewayId", ""),
            type=ResourceType.GATEWAY.value,
            name=item.get("name", ""),
            status=item.get("status", ""),
            attributes={
                "arn": item.get("gatewayArn", ""),
                "url": item.get("gatewayUrl", ""),
                "role_arn": item.get("roleArn", ""),
            },
        )

    def _list_gateway(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_gateways(maxResults=self._page_size, **_token_kwargs(cursor))
        items = [self._gateway_record(g) for g in response.get("items", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_gateway(self, name: str, parent: str | None) -> ResourceRecord | None:
        summary = self._find_by_name(ResourceType.GATEWAY, name)
        if summary is None:
            return None
        return self._gateway_record(self._control.get_gateway(gatewayIdentifier=summary.id))

    def _create_gateway(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_gateway(name=descriptor.name, **descriptor.attributes)
        return self._gateway_record(response)

    def _delete_gateway(self, id: str, parent: str | None) -> None:
        self._control.delete_gateway(gatewayIdentifier=id)

    @staticmethod
    def _target_record(item: dict[str, Any], gateway_id: str | None) -> ResourceRecord:
        return ResourceRecord(
            id=item.get("targetId", ""),
            type=ResourceType.GATEWAY_TARGET.value,
            name=item.get("name", ""),
            status=item.get("status", ""),
            parent=gateway_id,
        )

    def _list_gateway_target(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_gateway_targets(
            gatewayIdentifier=parent, maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._target_record(t, parent) for t in response.get("items", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_gateway_target(self, name: str, parent: str | None) -> ResourceRecord | None:
        summary = self._find_by_name(ResourceType.GATEWAY_TARGET, name, parent)
        if summary is None:
            return None
        response = self._control.get_gateway_target(
            gatewayIdentifier=parent, targetId=summary.id
        )
        return self._target_record(response, parent)

    def _create_gateway_target(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_gateway_target(
            gatewayIdentifier=descriptor.parent, name=descriptor.name, **descriptor.attributes
        )
        return self._target_record(response, descriptor.parent)

    def _delete_gateway_target(self, id: str, parent: str | None) -> None:
        self._control.delete_gateway_target(gatewayIdentifier=parent, targetId=id)

    # =========================================================================
    # Agent runtimes and endpoints
    # =========================================================================

    @staticmethod
    def _runtime_record(item: dict[str, Any]) -> ResourceRecord:
        return ResourceRecord(
            id=item.get("agentRuntimeId", ""),
            type=ResourceType.AGENT_RUNTIME.value,
            name=item.get("agentRuntimeName", ""),
            status=item.get("status", ""),
            attributes={
                "arn": item.get("agentRuntimeArn", ""),
                "version": item.get("agentRuntimeVersion", ""),
            },
        )

    def _list_agent_runtime(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_agent_runtimes(
            maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._runtime_record(r) for r in response.get("agentRuntimes", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_agent_runtime(self, name: str, parent: str | None) -> ResourceRecord | None:
        summary = self._find_by_name(ResourceType.AGENT_RUNTIME, name)
        if summary is None:
            return None
        return self._runtime_record(self._control.get_agent_runtime(agentRuntimeId=summary.id))

    def _create_agent_runtime(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self._control.create_agent_runtime(
            agentRuntimeName=descriptor.name, **descriptor.attributes
        )
        record = self._runtime_record(response)
        record.name = descriptor.name
        return record

    def _delete_agent_runtime(self, id: str, parent: str | None) -> None:
        self._control.delete_agent_runtime(agentRuntimeId=id)

    @staticmethod
    def _endpoint_record(item: dict[str, Any], runtime_id: str | None) -> ResourceRecord:
        # Endpoints are addressed by name within their runtime
        return ResourceRecord(
            id=item.get("name", ""),
            type=ResourceType.RUNTIME_ENDPOINT.value,
            name=item.get("name", ""),
            status=item.get("status", ""),
            attributes={"arn": item.get("agentRuntimeEndpointArn", "")},
            parent=runtime_id,
        )

    def _list_runtime_endpoint(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self._control.list_agent_runtime_endpoints(
            agentRuntimeId=parent, maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._endpoint_record(e, parent) for e in response.get("runtimeEndpoints", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_runtime_endpoint(self, name: str, parent: str | None) -> ResourceRecord | None:
        response = self._control.get_agent_runtime_endpoint(
            agentRuntimeId=parent, endpointName=name
        )
        return self._endpoint_record(response, parent)

    def _delete_runtime_endpoint(self, id: str, parent: str | None) -> None:
        self._control.delete_agent_runtime_endpoint(agentRuntimeId=parent, endpointName=id)

    # =========================================================================
    # CloudFormation tool stack
    # =========================================================================

    @staticmethod
    def _stack_record(item: dict[str, Any]) -> ResourceRecord:
        outputs = {o["OutputKey"]: o.get("OutputValue", "") for o in item.get("Outputs", [])}
        return ResourceRecord(
            id=item.get("StackId", item.get("StackName", "")),
            type=ResourceType.TOOL_STACK.value,
            name=item.get("StackName", ""),
            status=item.get("StackStatus", ""),
            attributes={"outputs": outputs},
        )

    def _list_tool_stack(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self.client("cloudformation").list_stacks(
            StackStatusFilter=ACTIVE_STACK_STATUSES, **_token_kwargs(cursor, "NextToken")
        )
        items = [self._stack_record(s) for s in response.get("StackSummaries", [])]
        return ListPage(items=items, next_token=response.get("NextToken"))

    def _get_tool_stack(self, name: str, parent: str | None) -> ResourceRecord | None:
        response = self.client("cloudformation").describe_stacks(StackName=name)
        stacks = response.get("Stacks", [])
        if not stacks or stacks[0].get("StackStatus") == "DELETE_COMPLETE":
            return None
        return self._stack_record(stacks[0])

    def _create_tool_stack(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self.client("cloudformation").create_stack(
            StackName=descriptor.name, **descriptor.attributes
        )
        return ResourceRecord(
            id=response["StackId"],
            type=ResourceType.TOOL_STACK.value,
            name=descriptor.name,
            status="CREATE_IN_PROGRESS",
        )

    def _update_tool_stack(self, id: str, attributes: dict[str, Any]) -> ResourceRecord:
        response = self.client("cloudformation").update_stack(StackName=id, **attributes)
        return ResourceRecord(
            id=response["StackId"],
            type=ResourceType.TOOL_STACK.value,
            name=id,
            status="UPDATE_IN_PROGRESS",
        )

    def _delete_tool_stack(self, id: str, parent: str | None) -> None:
        self.client("cloudformation").delete_stack(StackName=id)

    # =========================================================================
    # ECR repositories and images
    # =========================================================================

    @staticmethod
    def _repository_record(item: dict[str, Any]) -> ResourceRecord:
        return ResourceRecord(
            id=item["repositoryName"],
            type=ResourceType.ECR_REPOSITORY.value,
            name=item["repositoryName"],
            status=STATIC_STATUS,
            attributes={
                "arn": item.get("repositoryArn", ""),
                "uri": item.get("repositoryUri", ""),
            },
        )

    def _list_ecr_repository(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self.client("ecr").describe_repositories(
            maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._repository_record(r) for r in response.get("repositories", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_ecr_repository(self, name: str, parent: str | None) -> ResourceRecord | None:
        response = self.client("ecr").describe_repositories(repositoryNames=[name])
        repositories = response.get("repositories", [])
        return self._repository_record(repositories[0]) if repositories else None

    def _create_ecr_repository(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self.client("ecr").create_repository(
            repositoryName=descriptor.name, **descriptor.attributes
        )
        return self._repository_record(response["repository"])

    def _delete_ecr_repository(self, id: str, parent: str | None) -> None:
        self.client("ecr").delete_repository(repositoryName=id, force=True)

    @staticmethod
    def _image_record(item: dict[str, Any], repository: str | None) -> ResourceRecord:
        digest = item.get("imageDigest", "")
        return ResourceRecord(
            id=digest,
            type=ResourceType.ECR_IMAGE.value,
            name=item.get("imageTag") or digest,
            status=STATIC_STATUS,
            parent=repository,
        )

    def _list_ecr_image(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self.client("ecr").list_images(
            repositoryName=parent, maxResults=self._page_size, **_token_kwargs(cursor)
        )
        items = [self._image_record(i, parent) for i in response.get("imageIds", [])]
        return ListPage(items=items, next_token=response.get("nextToken"))

    def _get_ecr_image(self, name: str, parent: str | None) -> ResourceRecord | None:
        response = self.client("ecr").describe_images(
            repositoryName=parent, imageIds=[{"imageTag": name}]
        )
        details = response.get("imageDetails", [])
        if not details:
            return None
        return self._image_record(
            {"imageDigest": details[0].get("imageDigest", ""), "imageTag": name}, parent
        )

    def _delete_ecr_image(self, id: str, parent: str | None) -> None:
        response = self.client("ecr").batch_delete_image(
            repositoryName=parent, imageIds=[{"imageDigest": id}]
        )
        for failure in response.get("failures", []):
            code = failure.get("failureCode", "")
            reason = failure.get("failureReason", code)
            if code in NOT_FOUND_CODES:
                raise ResourceNotFound(reason, code)
            raise RemoteApiError(f"{code}: {reason}", code)

    # =========================================================================
    # IAM roles and their policies
    # =========================================================================

    @staticmethod
    def _role_record(item: dict[str, Any]) -> ResourceRecord:
        return ResourceRecord(
            id=item["RoleName"],
            type=ResourceType.IAM_ROLE.value,
            name=item["RoleName"],
            status=STATIC_STATUS,
            attributes={"arn": item.get("Arn", "")},
        )

    def _list_iam_role(self, cursor: str | None, parent: str | None) -> ListPage:
        response = self.client("iam").list_roles(
            MaxItems=self._page_size, **_token_kwargs(cursor, "Marker")
        )
        items = [self._role_record(r) for r in response.get("Roles", [])]
        marker = response.get("Marker") if response.get("IsTruncated") else None
        return ListPage(items=items, next_token=marker)

    def _get_iam_role(self, name: str, parent: str | None) -> ResourceRecord | None:
        return self._role_record(self.client("iam").get_role(RoleName=name)["Role"])

    def _create_iam_role(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        response = self.client("iam").create_role(
            RoleName=descriptor.name, **descriptor.attributes
        )
        return self._role_record(response["Role"])

    def _delete_iam_role(self, id: str, parent: str | None) -> None:
        self.client("iam").delete_role(RoleName=id)

    def _list_iam_role_policy(self, cursor: str | None, parent: str | None) -> ListPage:
        """Managed policies first, then inline ones.

        The cursor is "managed:<marker>" or "inline:<marker>".
        """
        iam = self.client("iam")
        phase, _, marker = (cursor or "managed:").partition(":")

        if phase == "managed":
            response = iam.list_attached_role_policies(
                RoleName=parent, MaxItems=self._page_size, **_token_kwargs(marker, "Marker")
            )
            items = [
                ResourceRecord(
                    id=p["PolicyArn"],
                    type=ResourceType.IAM_ROLE_POLICY.value,
                    name=p.get("PolicyName", p["PolicyArn"]),
                    status=STATIC_STATUS,
                    attributes={"kind": "managed"},
                    parent=parent,
                )
                for p in response.get("AttachedPolicies", [])
            ]
            if response.get("IsTruncated"):
                return ListPage(items=items, next_token=f"managed:{response['Marker']}")
            return ListPage(items=items, next_token="inline:")

        response = iam.list_role_policies(
            RoleName=parent, MaxItems=self._page_size, **_token_kwargs(marker, "Marker")
        )
        items = [
            ResourceRecord(
                id=name,
                type=ResourceType.IAM_ROLE_POLICY.value,
                name=name,
                status=STATIC_STATUS,
                attributes={"kind": "inline"},
                parent=parent,
            )
            for name in response.get("PolicyNames", [])
        ]
        next_token = f"inline:{response['Marker']}" if response.get("IsTruncated") else None
        return ListPage(items=items, next_token=next_token)

    def _delete_iam_role_policy(self, id: str, parent: str | None) -> None:
        iam = self.client("iam")
        if id.startswith("arn:"):
            iam.detach_role_policy(RoleName=parent, PolicyArn=id)
        else:
            iam.delete_role_policy(RoleName=parent, PolicyName=id)

    def _create_iam_role_policy(self, descriptor: ResourceDescriptor) -> ResourceRecord:
        """Put an inline policy; an existing policy of the same name is replaced."""
        self.client("iam").put_role_policy(
            RoleName=descriptor.parent,
            PolicyName=descriptor.name,
            PolicyDocument=descriptor.attributes["PolicyDocument"],
        )
        return ResourceRecord(
            id=descriptor.name,
            type=ResourceType.IAM_ROLE_POLICY.value,
            name=descriptor.name,
            status=STATIC_STATUS,
            attributes={"kind": "inline"},
            parent=descriptor.parent,
        )
