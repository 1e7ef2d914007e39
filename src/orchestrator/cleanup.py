"""Cleanup orchestration across resource families.

Steps run strictly in the order given, one at a time, each under its own
timeout. A failed or timed-out step is recorded and the next step still
runs, so a stuck gateway never blocks IAM cleanup. Once every step has
returned, cleaned sections of the generated document are reset and the
sections of families that could not be confirmed gone are marked
ORPHANED. The base document is never written.

Nothing is deleted until the operator passes the confirmation gate and
the abort window has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from .bulk_delete import DeletionResult
from .config_store import ConfigStore, ConfigStoreError
from .errors import (
    CleanupAborted,
    ConfirmationDeclined,
    OrchestratorError,
    PartialFailure,
)
from .retry import RetryPolicy, Sleeper

logger = logging.getLogger(__name__)

CONFIRMATION_PHRASE = "DELETE EVERYTHING"
AFFIRMATIVE = "YES"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ISSUES = "completed-with-issues"
    SKIPPED_NOT_FOUND = "skipped-not-found"
    FAILED = "failed"
    TIMED_OUT = "timed-out"

    @property
    def clean(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.SKIPPED_NOT_FOUND)


@dataclass
class FamilyReport:
    """What a per-family routine observed and removed."""

    found: int = 0
    deleted: int = 0
    failed_items: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    truncated: bool = False
    verified_clean: bool | None = None

    @property
    def clean(self) -> bool:
        return not self.failed_items and not self.truncated and self.verified_clean is not False

    def absorb(self, result: DeletionResult, found: int | None = None) -> None:
        if found is None:
            found = result.deleted_count + result.failed_count
        self.found += found
        self.deleted += result.deleted_count
        self.failed_items.extend(str(getattr(i, "name", i)) for i in result.failed_items)


@dataclass(frozen=True)
class Step:
    """One resource family's teardown routine.

    `report`, when given, is the object the routine fills in as it goes, so
    whatever it recorded survives a timeout or failure.
    """

    family: str
    routine: Callable[[], Awaitable[FamilyReport]]
    sections: tuple[str, ...] = ()
    timeout_seconds: float = 300
    report: FamilyReport | None = None


@dataclass
class StepOutcome:
    family: str
    status: StepStatus
    report: FamilyReport | None = None
    error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class CleanupSummary:
    """Final per-family report of a cleanup run."""

    outcomes: list[StepOutcome] = field(default_factory=list)
    reset_sections: list[str] = field(default_factory=list)
    orphaned_sections: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    config_error: str | None = None

    @property
    def fully_clean(self) -> bool:
        return all(o.status.clean for o in self.outcomes) and self.config_error is None

    @property
    def needs_rerun(self) -> list[str]:
        return [o.family for o in self.outcomes if not o.status.clean]

    def lines(self) -> list[str]:
        lines = ["Cleanup summary:"]
        for outcome in self.outcomes:
            detail = ""
            if outcome.report is not None:
                detail = f" (deleted {outcome.report.deleted}/{outcome.report.found})"
            if outcome.error:
                detail += f": {outcome.error}"
            lines.append(f"  {outcome.family:<14} {outcome.status.value}{detail}")
            if outcome.report is not None:
                for item in outcome.report.failed_items[:10]:
                    lines.append(f"      remaining: {item}")
                for note in outcome.report.notes:
                    lines.append(f"      {note}")
        if self.reset_sections:
            lines.append(f"Reset sections: {', '.join(self.reset_sections)}")
        if self.orphaned_sections:
            lines.append(f"Marked ORPHANED: {', '.join(self.orphaned_sections)}")
        for item in self.preserved:
            lines.append(f"Preserved: {item}")
        if self.config_error:
            lines.append(f"Configuration update failed: {self.config_error}")
        if self.fully_clean:
            lines.append("Result: fully clean")
        else:
            lines.append("Result: partially clean - retry recommended")
            lines.append(f"Re-run needed for: {', '.join(self.needs_rerun) or 'configuration'}")
        return lines


class ConfirmationGate:
    """Typed confirmation followed by an abort window."""

    def __init__(
        self,
        prompt: Callable[[str], str],
        echo: Callable[[str], None],
        abort_window_seconds: int = 5,
        sleep: Sleeper = asyncio.sleep,
        phrase: str | None = CONFIRMATION_PHRASE,
    ) -> None:
        self._prompt = prompt
        self._echo = echo
        self._abort_window = abort_window_seconds
        self._sleep = sleep
        self._phrase = phrase

    def confirm(self) -> None:
        """Raise ConfirmationDeclined unless the operator types both answers."""
        if self._phrase is not None:
            answer = self._prompt(f"Type '{self._phrase}' to continue")
            if answer.strip() != self._phrase:
                raise ConfirmationDeclined("Confirmation phrase did not match")

        answer = self._prompt(f"Type '{AFFIRMATIVE}' to confirm deletion")
        if answer.strip() != AFFIRMATIVE:
            raise ConfirmationDeclined("Deletion not confirmed")

    async def countdown(self) -> None:
        if self._abort_window <= 0:
            return
        self._echo(f"Starting in {self._abort_window} seconds. Press Ctrl+C to abort.")
        try:
            for remaining in range(self._abort_window, 0, -1):
                self._echo(f"  {remaining}...")
                await self._sleep(1)
        except (asyncio.CancelledError, KeyboardInterrupt) as e:
            raise CleanupAborted("Aborted during the abort window") from e


async def run_with_pass_retry(
    run_pass: Callable[[], Awaitable[DeletionResult]],
    policy: RetryPolicy,
    sleep: Sleeper = asyncio.sleep,
    description: str = "Deletion pass",
) -> DeletionResult:
    """Repeat a whole deletion pass while dependency conflicts remain.

    Permanent failures end the retry immediately. The last pass's result
    is returned either way.
    """
    last: DeletionResult | None = None

    async def attempt() -> DeletionResult:
        nonlocal last
        last = await run_pass()
        if last.retriable_items:
            raise PartialFailure(last.deleted_count, list(last.failed_items))
        return last

    retrying = RetryPolicy.fixed(
        policy.max_attempts,
        policy.backoff_seconds,
        retryable=lambda e: isinstance(e, PartialFailure),
    )
    try:
        return await retrying.call(attempt, sleep=sleep, description=description)
    except PartialFailure:
        assert last is not None
        return last


class CleanupOrchestrator:
    """Run teardown steps in order with failure isolation."""

    def __init__(
        self,
        store: ConfigStore,
        echo: Callable[[str], None] = print,
    ) -> None:
        self._store = store
        self._echo = echo

    async def run(self, steps: list[Step], gate: ConfirmationGate | None = None) -> CleanupSummary:
        """Confirm, then execute every step and reconcile the generated document.

        Raises:
            ConfirmationDeclined: If the operator does not confirm.
            CleanupAborted: If the operator interrupts the abort window.
        """
        if gate is not None:
            gate.confirm()
            await gate.countdown()

        summary = CleanupSummary()
        for index, step in enumerate(steps, start=1):
            self._echo(f"[{index}/{len(steps)}] Cleaning up {step.family}...")
            outcome = await self._run_step(step)
            summary.outcomes.append(outcome)
            self._echo(f"[{index}/{len(steps)}] {step.family}: {outcome.status.value}")

        self._reconcile_config(steps, summary)
        summary.preserved.append(f"base settings ({self._store.base_path})")
        return summary

    async def _run_step(self, step: Step) -> StepOutcome:
        start = time.monotonic()
        outcome = StepOutcome(family=step.family, status=StepStatus.FAILED)

        try:
            report = await asyncio.wait_for(step.routine(), timeout=step.timeout_seconds)
            outcome.report = report
            if report.found == 0 and report.clean:
                outcome.status = StepStatus.SKIPPED_NOT_FOUND
            elif report.clean:
                outcome.status = StepStatus.COMPLETED
            else:
                outcome.status = StepStatus.COMPLETED_WITH_ISSUES
        except TimeoutError:
            logger.error(
                "Cleanup step timed out",
                extra={"family": step.family, "timeout_seconds": step.timeout_seconds},
            )
            outcome.status = StepStatus.TIMED_OUT
            outcome.error = f"timed out after {step.timeout_seconds}s"
            outcome.report = step.report
        except OrchestratorError as e:
            logger.error("Cleanup step failed", extra={"family": step.family, "error": str(e)})
            outcome.error = str(e)
            outcome.report = step.report
        except Exception as e:
            # Isolate unexpected failures so later families still run
            logger.exception("Unexpected error in cleanup step", extra={"family": step.family})
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.report = step.report

        outcome.duration_seconds = time.monotonic() - start
        logger.info(
            "Cleanup step finished",
            extra={
                "family": step.family,
                "status": outcome.status.value,
                "duration_seconds": round(outcome.duration_seconds, 2),
            },
        )
        return outcome

    def _reconcile_config(self, steps: list[Step], summary: CleanupSummary) -> None:
        statuses = {o.family: o.status for o in summary.outcomes}
        try:
            for step in steps:
                for section in step.sections:
                    if statuses[step.family].clean:
                        self._store.reset(section)
                        summary.reset_sections.append(section)
                    else:
                        self._store.mark_orphaned(section)
                        summary.orphaned_sections.append(section)
        except (ConfigStoreError, OSError) as e:
            logger.error("Failed to update generated configuration", extra={"error": str(e)})
            summary.config_error = str(e)
