"""Runtime configuration with validation.

Timing knobs and budgets are read from the environment once per
invocation. Every wait in the orchestrator is bounded by one of the
values below, so they are validated at load time rather than at use.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_INTERVAL_SECONDS = 300.0

DEFAULT_POLL_MAX_ATTEMPTS = 60
MAX_POLL_MAX_ATTEMPTS = 1000

# Polls spent waiting for a deleted resource to disappear
DEFAULT_DELETE_WAIT_ATTEMPTS = 12

DEFAULT_PAGE_CEILING = 2000
MAX_PAGE_CEILING = 100_000
DEFAULT_PAGE_SIZE = 20
DEFAULT_PAGE_DELAY_SECONDS = 0.1

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 1000
DEFAULT_BURST_EVERY = 10
DEFAULT_BURST_DELAY_SECONDS = 1.0
DEFAULT_BATCH_DELAY_SECONDS = 2.0

DEFAULT_PASS_RETRY_ATTEMPTS = 3
DEFAULT_PASS_RETRY_BACKOFF_SECONDS = 10.0

DEFAULT_STEP_TIMEOUT_SECONDS = 300
DEFAULT_IDENTITY_STEP_TIMEOUT_SECONDS = 600
MAX_STEP_TIMEOUT_SECONDS = 7200

DEFAULT_ABORT_WINDOW_SECONDS = 5

# Document files
DEFAULT_BASE_FILE = "static-config.yaml"
DEFAULT_GENERATED_FILE = "dynamic-config.yaml"
MAX_CONFIG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB

VALID_LOG_FORMATS = ("text", "json")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Config:
    """Orchestrator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Paths
    config_dir: Path = field(default_factory=lambda: Path("config"))
    base_file: str = DEFAULT_BASE_FILE
    generated_file: str = DEFAULT_GENERATED_FILE

    # Provisioning poll loop
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    delete_wait_attempts: int = DEFAULT_DELETE_WAIT_ATTEMPTS

    # Bulk deletion
    page_ceiling: int = DEFAULT_PAGE_CEILING
    page_size: int = DEFAULT_PAGE_SIZE
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    burst_every: int = DEFAULT_BURST_EVERY
    burst_delay_seconds: float = DEFAULT_BURST_DELAY_SECONDS
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS

    # Whole-pass retry for dependency conflicts
    pass_retry_attempts: int = DEFAULT_PASS_RETRY_ATTEMPTS
    pass_retry_backoff_seconds: float = DEFAULT_PASS_RETRY_BACKOFF_SECONDS

    # Cleanup
    step_timeout_seconds: int = DEFAULT_STEP_TIMEOUT_SECONDS
    identity_step_timeout_seconds: int = DEFAULT_IDENTITY_STEP_TIMEOUT_SECONDS
    abort_window_seconds: int = DEFAULT_ABORT_WINDOW_SECONDS

    # Logging
    log_format: str = "text"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.base_file or not self.generated_file:
            errors.append("ACO_BASE_FILE and ACO_GENERATED_FILE must not be empty")
        elif self.base_file == self.generated_file:
            errors.append("Base and generated documents must be different files")

        if not (0 <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS):
            errors.append(
                f"ACO_POLL_INTERVAL must be between 0 and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )
        if not (1 <= self.poll_max_attempts <= MAX_POLL_MAX_ATTEMPTS):
            errors.append(f"ACO_POLL_MAX_ATTEMPTS must be between 1 and {MAX_POLL_MAX_ATTEMPTS}")
        if not (1 <= self.delete_wait_attempts <= MAX_POLL_MAX_ATTEMPTS):
            errors.append(
                f"ACO_DELETE_WAIT_ATTEMPTS must be between 1 and {MAX_POLL_MAX_ATTEMPTS}"
            )
        elif self.delete_wait_attempts * self.poll_interval_seconds >= self.step_timeout_seconds:
            # A cleanup step must outlive one full deletion wait
            errors.append(
                "ACO_DELETE_WAIT_ATTEMPTS x ACO_POLL_INTERVAL must stay below ACO_STEP_TIMEOUT"
            )

        if not (1 <= self.page_ceiling <= MAX_PAGE_CEILING):
            errors.append(f"ACO_PAGE_CEILING must be between 1 and {MAX_PAGE_CEILING}")
        if self.page_size < 1:
            errors.append("ACO_PAGE_SIZE must be at least 1")
        if not (1 <= self.batch_size <= MAX_BATCH_SIZE):
            errors.append(f"ACO_BATCH_SIZE must be between 1 and {MAX_BATCH_SIZE}")
        if self.burst_every < 1:
            errors.append("ACO_BURST_EVERY must be at least 1")

        for name, value in (
            ("ACO_PAGE_DELAY", self.page_delay_seconds),
            ("ACO_BURST_DELAY", self.burst_delay_seconds),
            ("ACO_BATCH_DELAY", self.batch_delay_seconds),
            ("ACO_PASS_RETRY_BACKOFF", self.pass_retry_backoff_seconds),
        ):
            if value < 0:
                errors.append(f"{name} must not be negative")

        if self.pass_retry_attempts < 1:
            errors.append("ACO_PASS_RETRY_ATTEMPTS must be at least 1")

        for name, value in (
            ("ACO_STEP_TIMEOUT", self.step_timeout_seconds),
            ("ACO_IDENTITY_STEP_TIMEOUT", self.identity_step_timeout_seconds),
        ):
            if not (1 <= value <= MAX_STEP_TIMEOUT_SECONDS):
                errors.append(f"{name} must be between 1 and {MAX_STEP_TIMEOUT_SECONDS} seconds")

        if self.abort_window_seconds < 0:
            errors.append("ACO_ABORT_WINDOW must not be negative")

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"ACO_LOG_FORMAT must be one of {', '.join(VALID_LOG_FORMATS)}")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"ACO_LOG_LEVEL must be one of {', '.join(VALID_LOG_LEVELS)}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_path(self) -> Path:
        return self.config_dir / self.base_file

    @property
    def generated_path(self) -> Path:
        return self.config_dir / self.generated_file

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            ACO_CONFIG_DIR: Directory holding both documents (default: ./config)
            ACO_BASE_FILE: Base settings file name (default: static-config.yaml)
            ACO_GENERATED_FILE: Generated state file name (default: dynamic-config.yaml)
            ACO_POLL_INTERVAL: Seconds between readiness polls (default: 5)
            ACO_POLL_MAX_ATTEMPTS: Poll attempt budget (default: 60)
            ACO_DELETE_WAIT_ATTEMPTS: Polls per deleted resource (default: 12)
            ACO_PAGE_CEILING: Max pages followed per enumeration (default: 2000)
            ACO_PAGE_SIZE: Items requested per page (default: 20)
            ACO_PAGE_DELAY: Seconds between page fetches (default: 0.1)
            ACO_BATCH_SIZE: Items per deletion batch (default: 50)
            ACO_BURST_EVERY: Deletions between short pauses (default: 10)
            ACO_BURST_DELAY: Short pause length in seconds (default: 1)
            ACO_BATCH_DELAY: Seconds between batches (default: 2)
            ACO_PASS_RETRY_ATTEMPTS: Whole-pass attempts on conflicts (default: 3)
            ACO_PASS_RETRY_BACKOFF: Seconds between whole passes (default: 10)
            ACO_STEP_TIMEOUT: Per-family cleanup timeout (default: 300)
            ACO_IDENTITY_STEP_TIMEOUT: Identity cleanup timeout (default: 600)
            ACO_ABORT_WINDOW: Countdown before destructive calls (default: 5)
            ACO_LOG_FORMAT: text or json (default: text)
            ACO_LOG_LEVEL: Root log level (default: INFO)

        Keyword overrides (for example from CLI options) win over the
        environment when they are not None.
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        values: dict[str, object] = {
            "config_dir": Path(os.environ.get("ACO_CONFIG_DIR", "config")),
            "base_file": os.environ.get("ACO_BASE_FILE", DEFAULT_BASE_FILE),
            "generated_file": os.environ.get("ACO_GENERATED_FILE", DEFAULT_GENERATED_FILE),
            "poll_interval_seconds": get_float("ACO_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            "poll_max_attempts": get_int("ACO_POLL_MAX_ATTEMPTS", DEFAULT_POLL_MAX_ATTEMPTS),
            "delete_wait_attempts": get_int(
                "ACO_DELETE_WAIT_ATTEMPTS", DEFAULT_DELETE_WAIT_ATTEMPTS
            ),
            "page_ceiling": get_int("ACO_PAGE_CEILING", DEFAULT_PAGE_CEILING),
            "page_size": get_int("ACO_PAGE_SIZE", DEFAULT_PAGE_SIZE),
            "page_delay_seconds": get_float("ACO_PAGE_DELAY", DEFAULT_PAGE_DELAY_SECONDS),
            "batch_size": get_int("ACO_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            "burst_every": get_int("ACO_BURST_EVERY", DEFAULT_BURST_EVERY),
            "burst_delay_seconds": get_float("ACO_BURST_DELAY", DEFAULT_BURST_DELAY_SECONDS),
            "batch_delay_seconds": get_float("ACO_BATCH_DELAY", DEFAULT_BATCH_DELAY_SECONDS),
            "pass_retry_attempts": get_int("ACO_PASS_RETRY_ATTEMPTS", DEFAULT_PASS_RETRY_ATTEMPTS),
            "pass_retry_backoff_seconds": get_float(
                "ACO_PASS_RETRY_BACKOFF", DEFAULT_PASS_RETRY_BACKOFF_SECONDS
            ),
            "step_timeout_seconds": get_int("ACO_STEP_TIMEOUT", DEFAULT_STEP_TIMEOUT_SECONDS),
            "identity_step_timeout_seconds": get_int(
                "ACO_IDENTITY_STEP_TIMEOUT", DEFAULT_IDENTITY_STEP_TIMEOUT_SECONDS
            ),
            "abort_window_seconds": get_int("ACO_ABORT_WINDOW", DEFAULT_ABORT_WINDOW_SECONDS),
            "log_format": os.environ.get("ACO_LOG_FORMAT", "text").lower(),
            "log_level": os.environ.get("ACO_LOG_LEVEL", "INFO").upper(),
        }

        for key, value in overrides.items():
            if value is None:
                continue
            if key not in values:
                raise ConfigurationError(f"Unknown configuration override: {key}")
            values[key] = value

        return cls(**values)  # type: ignore[arg-type]
