"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import yaml

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for agentcore_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from agentcore_mock import FakeResourceAPI, FakeSleeper  # noqa: E402
from orchestrator.config import Config  # noqa: E402
from orchestrator.config_store import ConfigStore  # noqa: E402
from orchestrator.context import OrchestratorContext  # noqa: E402

BASE_DOCUMENT = {
    "aws": {"region": "us-east-1", "account_id": "123456789012"},
    "naming": {"prefix": "bac", "execution_role": "bac-execution-role"},
    "okta": {"domain": "dev-123.okta.com"},
    "gateway": {"name": "bac-gtw", "target_name": "bac-tool"},
}


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Config directory holding a valid base document."""
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "static-config.yaml").write_text(yaml.safe_dump(BASE_DOCUMENT))
    return directory


@pytest.fixture
def config(config_dir: Path) -> Config:
    """Runtime config with no abort window and small poll budgets."""
    return Config(
        config_dir=config_dir,
        poll_max_attempts=5,
        delete_wait_attempts=3,
        abort_window_seconds=0,
    )


@pytest.fixture
def store(config: Config) -> ConfigStore:
    return ConfigStore.from_config(config)


@pytest.fixture
def api() -> FakeResourceAPI:
    return FakeResourceAPI()


@pytest.fixture
def sleeper() -> FakeSleeper:
    return FakeSleeper()


@pytest.fixture
def ctx(
    config: Config, store: ConfigStore, api: FakeResourceAPI, sleeper: FakeSleeper
) -> OrchestratorContext:
    """Orchestrator context wired to the fake control plane."""
    messages: list[str] = []
    context = OrchestratorContext(
        config=config, store=store, api=api, sleep=sleeper, echo=messages.append
    )
    context.messages = messages  # type: ignore[attr-defined]
    return context
