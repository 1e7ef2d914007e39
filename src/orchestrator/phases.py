"""Provisioning phases.

Each phase reads what it needs from the base settings and from sections
written by earlier phases, drives its resources through the provisioner,
and records the result in its own generated section. A phase whose
prerequisites have not been recorded yet fails with ConfigMissing before
any remote call.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import MAX_CONFIG_FILE_SIZE_BYTES
from .context import OrchestratorContext
from .errors import ConfigMissing, CreationFailed, RemoteApiError
from .remote import ResourceDescriptor, ResourceRecord, ResourceType, call_api

logger = logging.getLogger(__name__)

MEMORY_READY = frozenset({"AVAILABLE", "ACTIVE"})
MEMORY_FAILED = frozenset({"FAILED"})
PROVIDER_READY = frozenset({"AVAILABLE"})
STACK_READY = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE"})
STACK_FAILED = frozenset({"CREATE_FAILED", "ROLLBACK_COMPLETE", "ROLLBACK_FAILED"})
GATEWAY_READY = frozenset({"READY"})
GATEWAY_FAILED = frozenset({"FAILED", "UPDATE_UNSUCCESSFUL"})
RUNTIME_READY = frozenset({"READY"})
RUNTIME_FAILED = frozenset({"CREATE_FAILED", "UPDATE_FAILED", "FAILED"})
REPOSITORY_READY = frozenset({"AVAILABLE"})
ROLE_READY = frozenset({"AVAILABLE"})

OAUTH_VENDOR = "CustomOauth2"
DEFAULT_ENDPOINT_NAME = "DEFAULT"
AGENTCORE_SERVICE_PRINCIPAL = "bedrock-agentcore.amazonaws.com"
EXECUTION_ROLE_DESCRIPTION = "Execution role for AgentCore runtime"
AGENTS = ("diy", "sdk")

# CloudFormation inline templates are capped by the service
MAX_TEMPLATE_BODY_BYTES = 51_200
STACK_CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]

# Stack output key -> tool_lambda section field
TOOL_STACK_OUTPUTS = {
    "FunctionName": "function_name",
    "FunctionArn": "function_arn",
    "FunctionRoleArn": "role_arn",
    "GatewayExecutionRoleArn": "gateway_execution_role_arn",
}


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _require(value: str, what: str, hint: str) -> str:
    if not value:
        raise ConfigMissing(f"{what} is not recorded yet; run '{hint}' first")
    return value


def _read_local_file(path: Path, what: str, max_bytes: int) -> str:
    if not path.exists():
        raise ConfigMissing(f"{what} not found: {path}")
    size = path.stat().st_size
    if size > max_bytes:
        raise ConfigMissing(f"{what} exceeds maximum size of {max_bytes} bytes: {path}")
    return path.read_text(encoding="utf-8")


# =============================================================================
# Prerequisites
# =============================================================================


def execution_trust_policy(account_id: str, region: str) -> dict[str, Any]:
    """Trust policy letting the AgentCore service assume the execution role."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AssumeRolePolicy",
                "Effect": "Allow",
                "Principal": {"Service": AGENTCORE_SERVICE_PRINCIPAL},
                "Action": "sts:AssumeRole",
                "Condition": {
                    "StringEquals": {"aws:SourceAccount": account_id},
                    "ArnLike": {
                        "aws:SourceArn": f"arn:aws:bedrock-agentcore:{region}:{account_id}:*"
                    },
                },
            }
        ],
    }


def execution_permissions_policy(account_id: str, region: str) -> dict[str, Any]:
    """Inline permissions for the agent runtimes running under the execution role."""
    log_groups = f"arn:aws:logs:{region}:{account_id}:log-group:/aws/bedrock-agentcore/*"
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "ECRImageAccess",
                "Effect": "Allow",
                "Action": ["ecr:BatchGetImage", "ecr:GetDownloadUrlForLayer"],
                "Resource": f"arn:aws:ecr:{region}:{account_id}:repository/*",
            },
            {
                "Sid": "ECRTokenAccess",
                "Effect": "Allow",
                "Action": "ecr:GetAuthorizationToken",
                "Resource": "*",
            },
            {
                "Sid": "Logs",
                "Effect": "Allow",
                "Action": [
                    "logs:CreateLogGroup",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                    "logs:DescribeLogGroups",
                    "logs:DescribeLogStreams",
                ],
                "Resource": log_groups,
            },
            {
                "Sid": "Telemetry",
                "Effect": "Allow",
                "Action": [
                    "xray:PutTraceSegments",
                    "xray:PutTelemetryRecords",
                    "cloudwatch:PutMetricData",
                ],
                "Resource": "*",
            },
            {
                "Sid": "BedrockModelInvocation",
                "Effect": "Allow",
                "Action": ["bedrock:InvokeModel", "bedrock:InvokeModelWithResponseStream"],
                "Resource": "*",
            },
            {
                "Sid": "AgentCoreIdentityAndMemory",
                "Effect": "Allow",
                "Action": [
                    "bedrock-agentcore:GetWorkloadAccessToken",
                    "bedrock-agentcore:GetWorkloadAccessTokenForJWT",
                    "bedrock-agentcore:GetWorkloadAccessTokenForUserId",
                    "bedrock-agentcore:GetResourceOauth2Token",
                    "bedrock-agentcore:CreateEvent",
                    "bedrock-agentcore:ListEvents",
                    "bedrock-agentcore:GetMemory",
                ],
                "Resource": f"arn:aws:bedrock-agentcore:{region}:{account_id}:*",
            },
        ],
    }


async def verify_account(ctx: OrchestratorContext) -> str:
    """Return the caller's account id, warning when it is not the configured one."""
    expected = ctx.base.aws.account_id
    actual = await call_api(ctx.api.caller_account)
    if actual != expected:
        logger.warning(
            "Caller account does not match configuration",
            extra={"caller_account": actual, "configured_account": expected},
        )
        ctx.echo(
            f"⚠ Current AWS account ({actual}) does not match configured account ({expected})"
        )
    else:
        ctx.echo(f"AWS credentials valid for account {actual}")
    return actual


async def provision_prerequisites(ctx: OrchestratorContext) -> ResourceRecord:
    """Check the caller account, then ensure the execution role and registries.

    The inline permissions policy is put on every run, so an existing
    role picks up policy changes.
    """
    base = ctx.base
    account_id, region = base.aws.account_id, base.aws.region
    await verify_account(ctx)

    role_name = base.naming.execution_role
    role = await ctx.provisioner.ensure(
        ResourceDescriptor(
            type=ResourceType.IAM_ROLE,
            name=role_name,
            attributes={
                "AssumeRolePolicyDocument": json.dumps(execution_trust_policy(account_id, region)),
                "Description": EXECUTION_ROLE_DESCRIPTION,
            },
            region=region,
        ),
        ctx.poll_policy(ROLE_READY),
    )

    policy = ResourceDescriptor(
        type=ResourceType.IAM_ROLE_POLICY,
        name=base.naming.execution_policy,
        attributes={
            "PolicyDocument": json.dumps(execution_permissions_policy(account_id, region))
        },
        region=region,
        parent=role_name,
    )
    await call_api(ctx.api.create_resource, ResourceType.IAM_ROLE_POLICY, policy)
    ctx.echo(f"  policy {policy.name} put on {role_name}")
    logger.info(
        "Execution role policy applied",
        extra={"role": role_name, "policy": policy.name},
    )

    for repository in base.naming.ecr_repositories.values():
        await ctx.provisioner.ensure(
            ResourceDescriptor(type=ResourceType.ECR_REPOSITORY, name=repository, region=region),
            ctx.poll_policy(REPOSITORY_READY),
        )

    return role


# =============================================================================
# Memory
# =============================================================================


async def provision_memory(ctx: OrchestratorContext) -> ResourceRecord:
    """Find or create the conversation memory store."""
    base = ctx.base
    descriptor = ResourceDescriptor(
        type=ResourceType.MEMORY,
        name=base.memory.name,
        attributes={
            "description": base.memory.description,
            "eventExpiryDuration": base.memory.event_expiry_days,
        },
        region=base.aws.region,
    )
    record = await ctx.provisioner.ensure(
        descriptor, ctx.poll_policy(MEMORY_READY, MEMORY_FAILED)
    )

    ctx.store.update(
        "memory",
        {
            "id": record.id,
            "name": base.memory.name,
            "region": base.aws.region,
            "status": record.status,
            "event_expiry_days": base.memory.event_expiry_days,
            "created_at": record.attributes.get("created_at") or _now(),
            "description": base.memory.description,
        },
    )
    return record


# =============================================================================
# OAuth2 credential provider
# =============================================================================


def oauth_provider_attributes(
    discovery_url: str, client_id: str, client_secret: str
) -> dict[str, Any]:
    return {
        "credentialProviderVendor": OAUTH_VENDOR,
        "oauth2ProviderConfigInput": {
            "customOauth2ProviderConfig": {
                "oauthDiscovery": {"discoveryUrl": discovery_url},
                "clientId": client_id,
                "clientSecret": client_secret,
            }
        },
    }


async def provision_oauth_provider(
    ctx: OrchestratorContext,
    client_id: str,
    client_secret: str,
    scope: str | None = None,
) -> ResourceRecord:
    """Create the Okta credential provider, or update it in place.

    The client secret is passed to the control plane only; it is never
    written to the generated document.
    """
    okta = ctx.base.okta
    if not okta.domain:
        raise ConfigMissing("okta.domain is required in the base configuration")
    if not client_id or not client_secret:
        raise ConfigMissing("OAuth client id and client secret are required")

    attributes = oauth_provider_attributes(okta.discovery_url, client_id, client_secret)
    existing = await call_api(
        ctx.api.get_resource, ResourceType.OAUTH2_PROVIDER, okta.provider_name
    )

    if existing is not None:
        ctx.echo(f"Credential provider '{okta.provider_name}' exists, updating credentials")
        try:
            record = await call_api(
                ctx.api.update_resource, ResourceType.OAUTH2_PROVIDER, existing.id, attributes
            )
        except RemoteApiError as e:
            raise CreationFailed(f"update of {okta.provider_name} rejected: {e}") from e
    else:
        descriptor = ResourceDescriptor(
            type=ResourceType.OAUTH2_PROVIDER,
            name=okta.provider_name,
            attributes=attributes,
            region=ctx.base.aws.region,
        )
        record = await ctx.provisioner.ensure(descriptor, ctx.poll_policy(PROVIDER_READY))

    ctx.store.update(
        "oauth_provider",
        {
            "provider_name": okta.provider_name,
            "provider_arn": record.attributes.get("arn", ""),
            "domain": okta.domain,
            "scopes": [scope or okta.scope],
            "status": record.status,
        },
    )
    return record


# =============================================================================
# Tool function (CloudFormation stack)
# =============================================================================


async def deploy_tool_function(ctx: OrchestratorContext) -> ResourceRecord:
    """Deploy the pre-packaged tool function stack and record its outputs."""
    settings = ctx.base.tool_lambda
    template = _read_local_file(
        Path(settings.template_path), "Tool function template", MAX_TEMPLATE_BODY_BYTES
    )

    descriptor = ResourceDescriptor(
        type=ResourceType.TOOL_STACK,
        name=settings.stack_name,
        attributes={"TemplateBody": template, "Capabilities": STACK_CAPABILITIES},
        region=ctx.base.aws.region,
    )
    record = await ctx.provisioner.ensure(descriptor, ctx.poll_policy(STACK_READY, STACK_FAILED))

    outputs: dict[str, str] = record.attributes.get("outputs", {})
    section: dict[str, Any] = {
        field: outputs.get(key, "") for key, field in TOOL_STACK_OUTPUTS.items()
    }
    section["function_name"] = section["function_name"] or settings.function_name
    section["stack_name"] = settings.stack_name
    section["status"] = record.status

    missing = [key for key in TOOL_STACK_OUTPUTS if not outputs.get(key)]
    if missing:
        logger.warning(
            "Stack outputs missing", extra={"stack": settings.stack_name, "missing": missing}
        )
        ctx.echo(f"Warning: stack outputs not found: {', '.join(missing)}")

    ctx.store.update("tool_lambda", section)
    return record


# =============================================================================
# Gateway
# =============================================================================


def load_tool_schema(path: Path) -> list[dict[str, Any]]:
    content = _read_local_file(path, "Tool schema", MAX_CONFIG_FILE_SIZE_BYTES)
    try:
        schema = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigMissing(f"Invalid JSON in tool schema {path}: {e}") from e
    if not isinstance(schema, list) or not schema:
        raise ConfigMissing(f"Tool schema must be a non-empty JSON list: {path}")
    return schema


async def create_gateway(ctx: OrchestratorContext) -> ResourceRecord:
    """Create the MCP gateway and its Lambda target."""
    base = ctx.base
    generated = ctx.generated()
    function_arn = _require(
        generated.tool_lambda.function_arn, "Tool function ARN", "deploy-tool-function"
    )
    role_arn = _require(
        generated.tool_lambda.gateway_execution_role_arn,
        "Gateway execution role",
        "deploy-tool-function",
    )
    if not base.okta.domain:
        raise ConfigMissing("okta.domain is required in the base configuration")
    tool_schema = load_tool_schema(Path(base.tool_lambda.tool_schema_path))

    gateway = await ctx.provisioner.ensure(
        ResourceDescriptor(
            type=ResourceType.GATEWAY,
            name=base.gateway.name,
            attributes={
                "description": base.gateway.description,
                "roleArn": role_arn,
                "protocolType": "MCP",
                "authorizerType": "CUSTOM_JWT",
                "authorizerConfiguration": {
                    "customJWTAuthorizer": {
                        "discoveryUrl": base.okta.discovery_url,
                        "allowedAudience": [base.okta.audience],
                    }
                },
            },
            region=base.aws.region,
        ),
        ctx.poll_policy(GATEWAY_READY, GATEWAY_FAILED),
    )
    ctx.store.update(
        "gateway",
        {
            "id": gateway.id,
            "arn": gateway.attributes.get("arn", ""),
            "url": gateway.attributes.get("url", ""),
            "status": gateway.status,
        },
    )

    await ctx.provisioner.ensure(
        ResourceDescriptor(
            type=ResourceType.GATEWAY_TARGET,
            name=base.gateway.target_name,
            attributes={
                "targetConfiguration": {
                    "mcp": {
                        "lambda": {
                            "lambdaArn": function_arn,
                            "toolSchema": {"inlinePayload": tool_schema},
                        }
                    }
                },
                "credentialProviderConfigurations": [
                    {"credentialProviderType": "GATEWAY_IAM_ROLE"}
                ],
            },
            region=base.aws.region,
            parent=gateway.id,
        ),
        ctx.poll_policy(GATEWAY_READY, GATEWAY_FAILED),
    )
    return gateway


# =============================================================================
# Agent runtimes
# =============================================================================


async def deploy_runtime(ctx: OrchestratorContext, agent: str) -> ResourceRecord:
    """Create the DIY or SDK agent runtime from its registry image."""
    if agent not in AGENTS:
        raise ValueError(f"agent must be one of {AGENTS}: {agent}")

    base = ctx.base
    generated = ctx.generated()
    section = f"runtime.{agent}_agent"
    agent_settings = getattr(base.runtime, f"{agent}_agent")
    repository = base.naming.ecr_repositories.get(agent)
    if not repository:
        raise ConfigMissing(f"naming.ecr_repositories.{agent} is required")

    # The registry must exist before an image can be referenced
    await ctx.provisioner.ensure(
        ResourceDescriptor(
            type=ResourceType.ECR_REPOSITORY, name=repository, region=base.aws.region
        ),
        ctx.poll_policy(REPOSITORY_READY),
    )
    recorded = getattr(generated.runtime, f"{agent}_agent")
    image_uri = recorded.ecr_uri or base.ecr_uri(repository)

    environment = {"AWS_REGION": base.aws.region}
    if generated.memory.id:
        environment["MEMORY_ID"] = generated.memory.id
    if generated.gateway.url:
        environment["GATEWAY_URL"] = generated.gateway.url

    attributes: dict[str, Any] = {
        "agentRuntimeArtifact": {"containerConfiguration": {"containerUri": image_uri}},
        "roleArn": f"arn:aws:iam::{base.aws.account_id}:role/{base.naming.execution_role}",
        "networkConfiguration": {"networkMode": base.runtime.network_mode},
        "protocolConfiguration": {"serverProtocol": "HTTP"},
        "environmentVariables": environment,
    }
    if base.okta.domain:
        attributes["authorizerConfiguration"] = {
            "customJWTAuthorizer": {
                "discoveryUrl": base.okta.discovery_url,
                "allowedAudience": [base.okta.audience],
            }
        }

    runtime = await ctx.provisioner.ensure(
        ResourceDescriptor(
            type=ResourceType.AGENT_RUNTIME,
            name=agent_settings.name,
            attributes=attributes,
            region=base.aws.region,
        ),
        ctx.poll_policy(RUNTIME_READY, RUNTIME_FAILED),
    )

    endpoint = await call_api(
        ctx.api.get_resource, ResourceType.RUNTIME_ENDPOINT, DEFAULT_ENDPOINT_NAME, runtime.id
    )
    endpoint_arn = endpoint.attributes.get("arn", "") if endpoint is not None else ""
    if not endpoint_arn:
        ctx.echo(f"Warning: no {DEFAULT_ENDPOINT_NAME} endpoint found for {agent_settings.name}")

    ctx.store.update(
        section,
        {
            "arn": runtime.attributes.get("arn", ""),
            "id": runtime.id,
            "ecr_uri": image_uri,
            "endpoint_arn": endpoint_arn,
            "status": runtime.status,
        },
    )
    ctx.store.update("client", {f"{agent}_runtime_endpoint": endpoint_arn})
    return runtime
