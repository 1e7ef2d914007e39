"""Tests for the aco command line."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from agentcore_mock import FakeResourceAPI, FakeSleeper
from orchestrator.cleanup import CONFIRMATION_PHRASE
from orchestrator.cli import CliState, cli
from orchestrator.config import Config
from orchestrator.config_store import ConfigStore
from orchestrator.main import EXIT_ABORTED, EXIT_FAILURE, EXIT_PARTIAL, EXIT_SUCCESS
from orchestrator.remote import ResourceType


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake() -> FakeResourceAPI:
    return FakeResourceAPI()


def _state(config_dir: Path, fake: FakeResourceAPI) -> CliState:
    return CliState(
        config=Config(config_dir=config_dir, abort_window_seconds=0, poll_max_attempts=3),
        api_factory=lambda base, config: fake,
        sleep=FakeSleeper(),
        configure_logging=False,
    )


class TestGroup:
    """Tests for the top-level group."""

    def test_version(self, runner: CliRunner) -> None:
        """Test that --version prints the program name and version."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "aco" in result.output
        assert "0.1.0" in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        """Test that every lifecycle command is listed."""
        result = runner.invoke(cli, ["--help"])

        for command in (
            "setup-prerequisites",
            "provision-memory",
            "create-gateway",
            "cleanup-all",
            "delete-memory",
        ):
            assert command in result.output


class TestProvisionCommands:
    """Tests for the provisioning commands."""

    def test_provision_memory(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that provision-memory creates the store and reports it."""
        result = runner.invoke(cli, ["provision-memory"], obj=_state(config_dir, fake))

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "✓ Memory ready: bac_agent_memory" in result.output
        assert fake.count(ResourceType.MEMORY) == 1

    def test_setup_prerequisites(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that setup-prerequisites creates the execution role and reports it."""
        result = runner.invoke(cli, ["setup-prerequisites"], obj=_state(config_dir, fake))

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "✓ Execution role ready: bac-execution-role" in result.output
        assert fake.count(ResourceType.IAM_ROLE_POLICY) == 1
        assert fake.count(ResourceType.ECR_REPOSITORY) == 2

    def test_missing_base_config(
        self, runner: CliRunner, tmp_path: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that a missing base document fails with exit code 1."""
        empty = tmp_path / "empty"
        empty.mkdir()

        result = runner.invoke(cli, ["provision-memory"], obj=_state(empty, fake))

        assert result.exit_code == EXIT_FAILURE
        assert "static-config.yaml" in result.output
        assert fake.calls == {}

    def test_oauth_provider_prompts_for_secret(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that credentials are prompted for and the secret is not persisted."""
        state = _state(config_dir, fake)

        result = runner.invoke(
            cli, ["provision-oauth-provider"], obj=state, input="client-1\ns3cr3t\n"
        )

        assert result.exit_code == EXIT_SUCCESS, result.output
        generated = ConfigStore.from_config(state.config).generated_path.read_text()
        assert "s3cr3t" not in generated

    def test_gateway_requires_tool_function(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that running phases out of order names the missing step."""
        result = runner.invoke(cli, ["create-gateway"], obj=_state(config_dir, fake))

        assert result.exit_code == EXIT_FAILURE
        assert "deploy-tool-function" in result.output


class TestCleanupCommands:
    """Tests for the teardown commands."""

    def test_cleanup_all_confirmed(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that the phrase and YES run every family and exit 0 when clean."""
        fake.add("memory", "bac_agent_memory")
        fake.add("gateway", "bac-gtw")

        result = runner.invoke(
            cli,
            ["cleanup-all"],
            obj=_state(config_dir, fake),
            input=f"{CONFIRMATION_PHRASE}\nYES\n",
        )

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "Result: fully clean" in result.output
        assert fake.count(ResourceType.MEMORY) == 0
        assert fake.count(ResourceType.GATEWAY) == 0

    def test_cleanup_all_declined(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that a wrong phrase deletes nothing and exits 1."""
        fake.add("memory", "bac_agent_memory")

        result = runner.invoke(
            cli, ["cleanup-all"], obj=_state(config_dir, fake), input="no thanks\n"
        )

        assert result.exit_code == EXIT_FAILURE
        assert "Cancelled" in result.output
        assert fake.deleted == []

    def test_account_mismatch_warned_before_confirmation(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that a different caller account is shown before the operator is asked."""
        fake.account_id = "210987654321"

        result = runner.invoke(
            cli, ["cleanup-all"], obj=_state(config_dir, fake), input="no thanks\n"
        )

        warning = result.output.index("does not match configured account (123456789012)")
        assert warning < result.output.index(f"Type '{CONFIRMATION_PHRASE}'")
        assert fake.deleted == []

    def test_prompt_closed_aborts(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that closing the prompt is treated as an operator abort."""
        result = runner.invoke(cli, ["delete-memory"], obj=_state(config_dir, fake), input="")

        assert result.exit_code == EXIT_ABORTED
        assert fake.deleted == []

    def test_delete_memory_skip_confirmation(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that --yes deletes without prompting."""
        fake.add("memory", "bac_agent_memory")

        result = runner.invoke(cli, ["delete-memory", "--yes"], obj=_state(config_dir, fake))

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert fake.count(ResourceType.MEMORY) == 0

    def test_partially_clean_exit_code(
        self, runner: CliRunner, config_dir: Path, fake: FakeResourceAPI
    ) -> None:
        """Test that leftover resources give exit code 2."""
        memory = fake.add("memory", "bac_agent_memory")
        fake.keep_after_delete("memory", memory.id)

        result = runner.invoke(cli, ["delete-memory", "-y"], obj=_state(config_dir, fake))

        assert result.exit_code == EXIT_PARTIAL
        assert "Re-run needed for: memory" in result.output
