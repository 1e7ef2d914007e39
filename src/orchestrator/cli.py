"""AgentCore Orchestrator CLI (aco).

One command per lifecycle phase. Provisioning commands are safe to re-run:
resources that already exist are adopted, not duplicated.

Usage:
    aco setup-prerequisites         # Account check, execution role, registries
    aco provision-memory            # Conversation memory store
    aco provision-oauth-provider    # Okta OAuth2 credential provider
    aco deploy-tool-function        # Tool function stack
    aco create-gateway              # MCP gateway and tool target
    aco deploy-runtime-diy          # DIY agent runtime
    aco deploy-runtime-sdk          # SDK agent runtime
    aco cleanup-all                 # Tear everything down
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypeVar

import click

from .cleanup import CONFIRMATION_PHRASE, CleanupOrchestrator, CleanupSummary, ConfirmationGate
from .config import VALID_LOG_FORMATS, Config, ConfigurationError
from .context import OrchestratorContext
from .errors import ConfirmationDeclined, OrchestratorError
from .main import (
    EXIT_ABORTED,
    EXIT_FAILURE,
    ApiFactory,
    build_context,
    cleanup_exit_code,
    default_api_factory,
    exit_code_for,
    run_async,
    setup_logging,
)
from .phases import (
    create_gateway,
    deploy_runtime,
    deploy_tool_function,
    provision_memory,
    provision_oauth_provider,
    provision_prerequisites,
    verify_account,
)
from .remote import ResourceRecord
from .retry import Sleeper
from .teardown import (
    CLEANUP_ORDER,
    FAMILY_GATEWAYS,
    FAMILY_MEMORY,
    FAMILY_RUNTIMES,
    FAMILY_TOOL_FUNCTION,
    build_cleanup_steps,
)

T = TypeVar("T")

DEFAULT_OAUTH_SCOPE = "api"


@dataclass
class CliState:
    """Per-invocation wiring; tests pass a prepared instance as `obj`."""

    config: Config | None = None
    api_factory: ApiFactory = default_api_factory
    sleep: Sleeper | None = None
    configure_logging: bool = True


def _fail(message: str, code: int = EXIT_FAILURE) -> NoReturn:
    click.secho(f"✗ {message}", fg="red", err=True)
    click.get_current_context().exit(code)


def _execute(state: CliState, action: Callable[[OrchestratorContext], Awaitable[T]]) -> T:
    """Build the context, run `action` and turn failures into exit codes."""
    assert state.config is not None
    try:
        context = build_context(state.config, click.echo, state.api_factory, state.sleep)
        return run_async(action(context))
    except ConfirmationDeclined as e:
        _fail(f"Cancelled: {e}")
    except OrchestratorError as e:
        _fail(str(e), exit_code_for(e))
    except (KeyboardInterrupt, click.Abort):
        _fail("Aborted by operator", EXIT_ABORTED)


def _report_provisioned(label: str, record: ResourceRecord) -> None:
    click.secho(f"✓ {label} ready: {record.name}", fg="green")
    click.echo(f"  id:     {record.id}")
    click.echo(f"  status: {record.status}")


def _prompt(text: str) -> str:
    return click.prompt(text, default="", show_default=False)


def _run_cleanup(
    state: CliState, families: tuple[str, ...], phrase: str | None, confirm: bool
) -> None:
    assert state.config is not None
    config = state.config

    async def action(context: OrchestratorContext) -> CleanupSummary:
        await verify_account(context)
        gate = None
        if confirm:
            gate = ConfirmationGate(
                prompt=_prompt,
                echo=click.echo,
                abort_window_seconds=config.abort_window_seconds,
                sleep=context.sleep,
                phrase=phrase,
            )
        steps = build_cleanup_steps(context, families)
        click.echo(f"Families to clean up: {', '.join(s.family for s in steps)}")
        orchestrator = CleanupOrchestrator(context.store, echo=click.echo)
        return await orchestrator.run(steps, gate)

    summary = _execute(state, action)
    click.echo("")
    for line in summary.lines():
        click.echo(line)

    if summary.fully_clean:
        click.secho("✓ Cleanup complete", fg="green")
    else:
        click.secho("✗ Cleanup finished with remaining resources", fg="yellow")
    click.get_current_context().exit(cleanup_exit_code(summary))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="aco")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the base and generated documents (env: ACO_CONFIG_DIR)",
)
@click.option(
    "--log-format",
    type=click.Choice(sorted(VALID_LOG_FORMATS)),
    default=None,
    help="Log output format (env: ACO_LOG_FORMAT)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(
    ctx: click.Context, config_dir: Path | None, log_format: str | None, verbose: bool
) -> None:
    """AgentCore Orchestrator - provision and tear down agent infrastructure.

    \b
    Provisioning:
      setup-prerequisites, provision-memory, provision-oauth-provider,
      deploy-tool-function, create-gateway, deploy-runtime-diy,
      deploy-runtime-sdk

    \b
    Teardown:
      delete-runtimes, delete-gateways, delete-tool-deployment,
      delete-memory, cleanup-all
    """
    state = ctx.ensure_object(CliState)
    if state.config is None:
        try:
            state.config = Config.from_env(
                config_dir=config_dir,
                log_format=log_format,
                log_level="DEBUG" if verbose else None,
            )
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
    if state.configure_logging:
        setup_logging(state.config.log_format, state.config.log_level)


# =============================================================================
# Provisioning Commands
# =============================================================================


@cli.command("setup-prerequisites")
@click.pass_obj
def setup_prerequisites_cmd(state: CliState) -> None:
    """Check the caller account and create the execution role and registries."""
    record = _execute(state, provision_prerequisites)
    _report_provisioned("Execution role", record)


@cli.command("provision-memory")
@click.pass_obj
def provision_memory_cmd(state: CliState) -> None:
    """Create the conversation memory store."""
    record = _execute(state, provision_memory)
    _report_provisioned("Memory", record)


@cli.command("provision-oauth-provider")
@click.option("--client-id", prompt="Okta client id", help="OAuth2 client id")
@click.option(
    "--client-secret",
    prompt="Okta client secret",
    hide_input=True,
    help="OAuth2 client secret (never written to disk)",
)
@click.option("--scope", default=DEFAULT_OAUTH_SCOPE, show_default=True, help="OAuth2 scope")
@click.pass_obj
def provision_oauth_provider_cmd(
    state: CliState, client_id: str, client_secret: str, scope: str
) -> None:
    """Create or update the Okta OAuth2 credential provider."""
    record = _execute(
        state, lambda context: provision_oauth_provider(context, client_id, client_secret, scope)
    )
    _report_provisioned("Credential provider", record)


@cli.command("deploy-tool-function")
@click.pass_obj
def deploy_tool_function_cmd(state: CliState) -> None:
    """Deploy the tool function stack from its packaged template."""
    record = _execute(state, deploy_tool_function)
    _report_provisioned("Tool function stack", record)


@cli.command("create-gateway")
@click.pass_obj
def create_gateway_cmd(state: CliState) -> None:
    """Create the MCP gateway and its tool function target."""
    record = _execute(state, create_gateway)
    _report_provisioned("Gateway", record)


@cli.command("deploy-runtime-diy")
@click.pass_obj
def deploy_runtime_diy_cmd(state: CliState) -> None:
    """Deploy the DIY agent runtime."""
    record = _execute(state, lambda context: deploy_runtime(context, "diy"))
    _report_provisioned("DIY agent runtime", record)


@cli.command("deploy-runtime-sdk")
@click.pass_obj
def deploy_runtime_sdk_cmd(state: CliState) -> None:
    """Deploy the SDK agent runtime."""
    record = _execute(state, lambda context: deploy_runtime(context, "sdk"))
    _report_provisioned("SDK agent runtime", record)


# =============================================================================
# Teardown Commands
# =============================================================================

_yes_option = click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")


@cli.command("delete-runtimes")
@_yes_option
@click.pass_obj
def delete_runtimes_cmd(state: CliState, yes: bool) -> None:
    """Delete both agent runtimes and their endpoints."""
    _run_cleanup(state, (FAMILY_RUNTIMES,), phrase=None, confirm=not yes)


@cli.command("delete-gateways")
@_yes_option
@click.pass_obj
def delete_gateways_cmd(state: CliState, yes: bool) -> None:
    """Delete the gateway and all of its targets."""
    _run_cleanup(state, (FAMILY_GATEWAYS,), phrase=None, confirm=not yes)


@cli.command("delete-tool-deployment")
@_yes_option
@click.pass_obj
def delete_tool_deployment_cmd(state: CliState, yes: bool) -> None:
    """Delete the tool function stack."""
    _run_cleanup(state, (FAMILY_TOOL_FUNCTION,), phrase=None, confirm=not yes)


@cli.command("delete-memory")
@_yes_option
@click.pass_obj
def delete_memory_cmd(state: CliState, yes: bool) -> None:
    """Delete the conversation memory store."""
    _run_cleanup(state, (FAMILY_MEMORY,), phrase=None, confirm=not yes)


@cli.command("cleanup-all")
@click.pass_obj
def cleanup_all_cmd(state: CliState) -> None:
    """Delete every project resource, dependents first.

    Requires typing the confirmation phrase and then YES. Deletion starts
    after a short abort window.
    """
    click.secho("This deletes ALL agent infrastructure for this project:", fg="red", bold=True)
    for family in CLEANUP_ORDER:
        click.echo(f"  - {family}")
    _run_cleanup(state, CLEANUP_ORDER, phrase=CONFIRMATION_PHRASE, confirm=True)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
