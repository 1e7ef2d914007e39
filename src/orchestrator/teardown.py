"""Per-family cleanup routines and the cleanup-all step order.

Families are torn down dependents first: runtimes, gateways, the tool
function stack, identity resources, memory, container registries, then
IAM. Every routine is safe to re-run; anything already gone counts as
deleted.
"""

from __future__ import annotations

import logging
from typing import Any

from .bulk_delete import DeletionResult
from .cleanup import FamilyReport, Step, run_with_pass_retry
from .context import OrchestratorContext
from .phases import DEFAULT_ENDPOINT_NAME
from .provisioning import PollPolicy
from .remote import ResourceRecord, ResourceType, call_api

logger = logging.getLogger(__name__)

DELETE_FAILED = frozenset({"DELETE_FAILED"})

FAMILY_RUNTIMES = "runtimes"
FAMILY_GATEWAYS = "gateways"
FAMILY_TOOL_FUNCTION = "tool-function"
FAMILY_IDENTITY = "identity"
FAMILY_MEMORY = "memory"
FAMILY_REGISTRIES = "registries"
FAMILY_IAM = "iam"

CLEANUP_ORDER = (
    FAMILY_RUNTIMES,
    FAMILY_GATEWAYS,
    FAMILY_TOOL_FUNCTION,
    FAMILY_IDENTITY,
    FAMILY_MEMORY,
    FAMILY_REGISTRIES,
    FAMILY_IAM,
)

# Generated sections owned by each family
FAMILY_SECTIONS: dict[str, tuple[str, ...]] = {
    FAMILY_RUNTIMES: ("runtime", "client"),
    FAMILY_GATEWAYS: ("gateway",),
    FAMILY_TOOL_FUNCTION: ("tool_lambda",),
    FAMILY_IDENTITY: ("oauth_provider",),
    FAMILY_MEMORY: ("memory",),
    FAMILY_REGISTRIES: (),
    FAMILY_IAM: (),
}


def _absence_policy(ctx: OrchestratorContext) -> PollPolicy:
    return PollPolicy(
        ready=frozenset({"DELETED"}),
        failed=DELETE_FAILED,
        interval_seconds=ctx.config.poll_interval_seconds,
        max_attempts=ctx.config.delete_wait_attempts,
    )


async def _delete_and_wait(
    ctx: OrchestratorContext,
    type: ResourceType,
    records: list[ResourceRecord],
    report: FamilyReport,
    retry_conflicts: bool = False,
) -> None:
    """Delete records, then wait until each one is gone."""
    if not records:
        return

    delete = ctx.delete_operation(type)
    if retry_conflicts:
        result = await run_with_pass_retry(
            lambda: ctx.engine.delete_all(records, delete), ctx.pass_retry, sleep=ctx.sleep
        )
    else:
        result = await ctx.engine.delete_all(records, delete)
    report.absorb(result)

    failed = {id(item) for item in result.failed_items}
    for record in records:
        if id(record) in failed:
            continue
        gone = await ctx.provisioner.wait_for_absence(
            type, record.name, _absence_policy(ctx), parent=record.parent
        )
        if not gone:
            report.failed_items.append(record.name)
            report.notes.append(f"{type.value} '{record.name}' still present after deletion")


async def _scoped(ctx: OrchestratorContext, type: ResourceType, names: set[str]) -> list[Any]:
    keep = ctx.list_operation(type, keep=lambda item: item.name in names)
    return await ctx.engine.enumerate_all(keep).collect()


# =============================================================================
# Runtimes
# =============================================================================


async def delete_runtimes(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete the agent runtimes and their non-default endpoints."""
    base = ctx.base
    report = report if report is not None else FamilyReport()
    names = {base.runtime.diy_agent.name, base.runtime.sdk_agent.name}
    runtimes = await _scoped(ctx, ResourceType.AGENT_RUNTIME, names)

    for runtime in runtimes:
        ctx.echo(f"  runtime {runtime.name} ({runtime.id})")
        # The default endpoint goes away with its runtime
        endpoints = await ctx.engine.enumerate_all(
            ctx.list_operation(
                ResourceType.RUNTIME_ENDPOINT,
                parent=runtime.id,
                keep=lambda e: e.name != DEFAULT_ENDPOINT_NAME,
            )
        ).collect()
        if endpoints:
            result = await ctx.engine.delete_all(
                endpoints, ctx.delete_operation(ResourceType.RUNTIME_ENDPOINT)
            )
            report.absorb(result)

    await _delete_and_wait(ctx, ResourceType.AGENT_RUNTIME, runtimes, report)
    return report


# =============================================================================
# Gateways
# =============================================================================


async def delete_gateways(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete every target of the project gateway, then the gateway."""
    base = ctx.base
    recorded_id = ctx.generated().gateway.id
    report = report if report is not None else FamilyReport()

    gateways = await ctx.engine.enumerate_all(
        ctx.list_operation(
            ResourceType.GATEWAY,
            keep=lambda g: g.name == base.gateway.name or (recorded_id and g.id == recorded_id),
        )
    ).collect()

    for gateway in gateways:
        ctx.echo(f"  gateway {gateway.name} ({gateway.id})")
        targets = ctx.engine.enumerate_all(
            ctx.list_operation(ResourceType.GATEWAY_TARGET, parent=gateway.id)
        )
        items = await targets.collect()
        report.truncated = report.truncated or targets.truncated
        if items:
            result = await ctx.engine.delete_all(
                items, ctx.delete_operation(ResourceType.GATEWAY_TARGET)
            )
            report.absorb(result)

    # Target deletion is asynchronous; the gateway refuses deletion until it settles
    await _delete_and_wait(ctx, ResourceType.GATEWAY, gateways, report, retry_conflicts=True)
    return report


# =============================================================================
# Tool function stack
# =============================================================================


async def delete_tool_deployment(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete the tool function's CloudFormation stack."""
    stack_name = ctx.generated().tool_lambda.stack_name or ctx.base.tool_lambda.stack_name
    report = report if report is not None else FamilyReport()

    stack = await call_api(ctx.api.get_resource, ResourceType.TOOL_STACK, stack_name)
    if stack is None:
        ctx.echo(f"  stack {stack_name} not found")
        return report

    ctx.echo(f"  stack {stack_name} ({stack.status})")
    await _delete_and_wait(ctx, ResourceType.TOOL_STACK, [stack], report)
    return report


# =============================================================================
# Identity
# =============================================================================


async def delete_identity(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete workload identities and OAuth2 providers, then verify.

    Without cleanup.delete_all_workload_identities only resources whose
    name starts with the project prefix are touched.
    """
    base = ctx.base
    delete_everything = base.cleanup.delete_all_workload_identities
    prefix = base.identity_prefix
    provider_name = base.okta.provider_name

    def identity_in_scope(item: Any) -> bool:
        return delete_everything or item.name.startswith(prefix)

    def provider_in_scope(item: Any) -> bool:
        return delete_everything or item.name == provider_name or item.name.startswith(prefix)

    report = report if report is not None else FamilyReport()

    identities = ctx.engine.enumerate_all(
        ctx.list_operation(ResourceType.WORKLOAD_IDENTITY, keep=identity_in_scope)
    )
    identity_items = await identities.collect()
    report.truncated = report.truncated or identities.truncated
    ctx.echo(f"  workload identities in scope: {len(identity_items)} ({identities.pages} page(s))")
    if identity_items:
        result = await ctx.engine.delete_all(
            identity_items, ctx.delete_operation(ResourceType.WORKLOAD_IDENTITY)
        )
        report.absorb(result)

    provider_list = ctx.list_operation(ResourceType.OAUTH2_PROVIDER, keep=provider_in_scope)

    async def provider_pass() -> DeletionResult:
        providers = await ctx.engine.enumerate_all(provider_list).collect()
        ctx.echo(f"  credential providers in scope: {len(providers)}")
        return await ctx.engine.delete_all(
            providers, ctx.delete_operation(ResourceType.OAUTH2_PROVIDER)
        )

    result = await run_with_pass_retry(provider_pass, ctx.pass_retry, sleep=ctx.sleep)
    report.absorb(result)

    remaining_identities = await ctx.engine.verify(
        ctx.list_operation(ResourceType.WORKLOAD_IDENTITY, keep=identity_in_scope)
    )
    remaining_providers = await ctx.engine.verify(provider_list)

    if remaining_identities.remaining_count or remaining_providers.remaining_count:
        report.verified_clean = False
        for name in remaining_providers.remaining_sample + remaining_identities.remaining_sample:
            report.notes.append(f"still present: {name}")
    elif remaining_identities.clean and remaining_providers.clean:
        report.verified_clean = True
    else:
        # An empty filtered first page proves nothing about later pages
        report.verified_clean = False
        report.notes.append("verification inconclusive: more pages exist")

    return report


# =============================================================================
# Memory
# =============================================================================


async def delete_memory(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete the conversation memory store."""
    name = ctx.generated().memory.name or ctx.base.memory.name
    report = report if report is not None else FamilyReport()

    memory = await call_api(ctx.api.get_resource, ResourceType.MEMORY, name)
    if memory is None:
        ctx.echo(f"  memory {name} not found")
        return report

    ctx.echo(f"  memory {memory.name} ({memory.id})")
    await _delete_and_wait(ctx, ResourceType.MEMORY, [memory], report)
    return report


# =============================================================================
# Container registries
# =============================================================================


async def delete_registries(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Delete every image of each project repository, then the repository."""
    report = report if report is not None else FamilyReport()

    for repository in ctx.base.naming.ecr_repositories.values():
        record = await call_api(ctx.api.get_resource, ResourceType.ECR_REPOSITORY, repository)
        if record is None:
            ctx.echo(f"  repository {repository} not found")
            continue

        images = ctx.engine.enumerate_all(
            ctx.list_operation(ResourceType.ECR_IMAGE, parent=repository)
        )
        image_items = await images.collect()
        report.truncated = report.truncated or images.truncated
        ctx.echo(f"  repository {repository}: {len(image_items)} image(s)")
        if image_items:
            result = await ctx.engine.delete_all(
                image_items, ctx.delete_operation(ResourceType.ECR_IMAGE)
            )
            report.absorb(result)

        result = await ctx.engine.delete_all(
            [record], ctx.delete_operation(ResourceType.ECR_REPOSITORY)
        )
        report.absorb(result)

    return report


# =============================================================================
# IAM
# =============================================================================


async def delete_iam_roles(
    ctx: OrchestratorContext, report: FamilyReport | None = None
) -> FamilyReport:
    """Detach and delete the execution role's policies, then the role."""
    role_name = ctx.base.naming.execution_role
    report = report if report is not None else FamilyReport()

    role = await call_api(ctx.api.get_resource, ResourceType.IAM_ROLE, role_name)
    if role is None:
        ctx.echo(f"  role {role_name} not found")
        return report

    policies = await ctx.engine.enumerate_all(
        ctx.list_operation(ResourceType.IAM_ROLE_POLICY, parent=role_name)
    ).collect()
    ctx.echo(f"  role {role_name}: {len(policies)} polic(ies)")
    if policies:
        result = await ctx.engine.delete_all(
            policies, ctx.delete_operation(ResourceType.IAM_ROLE_POLICY)
        )
        report.absorb(result)

    result = await run_with_pass_retry(
        lambda: ctx.engine.delete_all([role], ctx.delete_operation(ResourceType.IAM_ROLE)),
        ctx.pass_retry,
        sleep=ctx.sleep,
    )
    report.absorb(result)
    return report


ROUTINES = {
    FAMILY_RUNTIMES: delete_runtimes,
    FAMILY_GATEWAYS: delete_gateways,
    FAMILY_TOOL_FUNCTION: delete_tool_deployment,
    FAMILY_IDENTITY: delete_identity,
    FAMILY_MEMORY: delete_memory,
    FAMILY_REGISTRIES: delete_registries,
    FAMILY_IAM: delete_iam_roles,
}


def build_cleanup_steps(
    ctx: OrchestratorContext, families: tuple[str, ...] = CLEANUP_ORDER
) -> list[Step]:
    """Return steps for `families`, always in reverse-dependency order."""
    unknown = set(families) - set(CLEANUP_ORDER)
    if unknown:
        raise ValueError(f"Unknown resource families: {sorted(unknown)}")

    steps = []
    for family in CLEANUP_ORDER:
        if family not in families:
            continue
        routine = ROUTINES[family]
        timeout = (
            ctx.config.identity_step_timeout_seconds
            if family == FAMILY_IDENTITY
            else ctx.config.step_timeout_seconds
        )
        report = FamilyReport()
        steps.append(
            Step(
                family=family,
                routine=lambda routine=routine, report=report: routine(ctx, report),
                sections=FAMILY_SECTIONS[family],
                timeout_seconds=timeout,
                report=report,
            )
        )
    return steps
