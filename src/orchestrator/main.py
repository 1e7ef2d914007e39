"""Process wiring: logging, context construction and exit codes.

Exit codes:
    0   success (cleanup: fully clean)
    1   unrecoverable failure (configuration, creation, timeout, API)
    2   cleanup finished partially clean, re-run recommended
    130 aborted by the operator
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any, TypeVar

from .aws_api import AgentCoreResourceAPI
from .cleanup import CleanupSummary
from .config import Config
from .config_store import ConfigStore
from .context import OrchestratorContext
from .errors import CleanupAborted
from .models import BaseSettings
from .remote import RemoteResourceAPI
from .retry import Sleeper

T = TypeVar("T")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2
EXIT_ABORTED = 130

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "asctime",
        "message",
    }
)


def _extras(record: logging.LogRecord) -> dict[str, object]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_KEYS}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        log_data.update(_extras(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with extras appended as key=value pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extras(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        return line


def setup_logging(log_format: str = "text", level: str = "INFO") -> None:
    """Configure root logging on stderr, keeping stdout for the progress report."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if log_format == "json" else TextFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from the AWS SDK
    for noisy in ("boto3", "botocore", "urllib3", "s3transfer"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


ApiFactory = Callable[[BaseSettings, Config], RemoteResourceAPI]


def default_api_factory(base: BaseSettings, config: Config) -> RemoteResourceAPI:
    return AgentCoreResourceAPI(region=base.aws.region, page_size=config.page_size)


def build_context(
    config: Config,
    echo: Callable[[str], None],
    api_factory: ApiFactory = default_api_factory,
    sleep: Sleeper | None = None,
) -> OrchestratorContext:
    """Load the base settings and wire one invocation's collaborators.

    Raises:
        ConfigMissing: If the base settings cannot be loaded.
    """
    store = ConfigStore.from_config(config)
    base = store.load_base()
    api = api_factory(base, config)
    extra = {"sleep": sleep} if sleep is not None else {}
    context = OrchestratorContext(config=config, store=store, api=api, echo=echo, **extra)
    # Seed the cached settings so they are read once per invocation
    context.__dict__["base"] = base
    return context


# =============================================================================
# Outcome to exit code
# =============================================================================


def exit_code_for(error: BaseException) -> int:
    """Map an exception escaping a command to the process exit code."""
    if isinstance(error, (CleanupAborted, KeyboardInterrupt, asyncio.CancelledError)):
        return EXIT_ABORTED
    return EXIT_FAILURE


def cleanup_exit_code(summary: CleanupSummary) -> int:
    return EXIT_SUCCESS if summary.fully_clean else EXIT_PARTIAL


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run one command's coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
