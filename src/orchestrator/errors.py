"""Error taxonomy shared by provisioning and cleanup.

Per-resource and per-step failures are caught by the cleanup orchestrator
and turned into step outcomes. Only ConfigMissing and the confirmation
errors are allowed to abort a whole run.
"""

from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    """Base class for all orchestration failures."""

    pass


class ConfigMissing(OrchestratorError):
    """Required base configuration is absent or malformed."""

    pass


class CreationFailed(OrchestratorError):
    """The remote create call was rejected."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Creation failed: {reason}")
        self.reason = reason


class ProvisioningTimeout(OrchestratorError):
    """A resource never reached a ready status within the attempt budget."""

    def __init__(self, resource: str, last_status: str | None, attempts: int) -> None:
        super().__init__(
            f"{resource} not ready after {attempts} attempts (last status: {last_status})"
        )
        self.resource = resource
        self.last_status = last_status
        self.attempts = attempts


class RemoteApiError(OrchestratorError):
    """Permanent error returned by the remote control plane."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransientApiError(RemoteApiError):
    """Rate limiting or temporary unavailability."""

    pass


class DependencyInUse(RemoteApiError):
    """Deletion blocked by a live dependent."""

    pass


class ResourceNotFound(RemoteApiError):
    """The addressed resource does not exist."""

    pass


class PartialFailure(OrchestratorError):
    """Bulk deletion where some items could not be removed."""

    def __init__(self, deleted_count: int, failed_items: list[Any]) -> None:
        super().__init__(
            f"Deleted {deleted_count} item(s), {len(failed_items)} failed"
        )
        self.deleted_count = deleted_count
        self.failed_items = failed_items


class ConfirmationDeclined(OrchestratorError):
    """The operator did not confirm a destructive run."""

    pass


class CleanupAborted(OrchestratorError):
    """The operator interrupted the run during the abort window."""

    pass
