"""Tests for the cleanup orchestrator."""

import asyncio

import pytest

from agentcore_mock import FakeSleeper
from orchestrator.bulk_delete import DeletionResult
from orchestrator.cleanup import (
    CONFIRMATION_PHRASE,
    CleanupOrchestrator,
    ConfirmationGate,
    FamilyReport,
    Step,
    StepStatus,
    run_with_pass_retry,
)
from orchestrator.config_store import ConfigStore
from orchestrator.errors import CleanupAborted, ConfirmationDeclined, RemoteApiError
from orchestrator.models import ORPHANED
from orchestrator.retry import RetryPolicy


def _answers(*values: str):
    remaining = list(values)
    asked: list[str] = []

    def prompt(text: str) -> str:
        asked.append(text)
        return remaining.pop(0)

    prompt.asked = asked  # type: ignore[attr-defined]
    return prompt


def _step(family: str, report: FamilyReport | None = None, sections=(), error=None) -> Step:
    async def routine() -> FamilyReport:
        if error is not None:
            raise error
        return report or FamilyReport()

    return Step(family=family, routine=routine, sections=tuple(sections), timeout_seconds=5)


class TestConfirmationGate:
    """Tests for the typed confirmation and abort window."""

    def test_both_answers_required(self) -> None:
        """Test that the phrase and then YES pass the gate."""
        prompt = _answers(CONFIRMATION_PHRASE, "YES")
        gate = ConfirmationGate(prompt=prompt, echo=lambda _: None)

        gate.confirm()

        assert len(prompt.asked) == 2

    def test_wrong_phrase_declines(self) -> None:
        """Test that a near-miss phrase does not pass."""
        gate = ConfirmationGate(prompt=_answers("delete everything"), echo=lambda _: None)

        with pytest.raises(ConfirmationDeclined):
            gate.confirm()

    def test_missing_affirmative_declines(self) -> None:
        """Test that anything but YES at the second prompt declines."""
        gate = ConfirmationGate(prompt=_answers(CONFIRMATION_PHRASE, "y"), echo=lambda _: None)

        with pytest.raises(ConfirmationDeclined):
            gate.confirm()

    def test_single_confirmation_without_phrase(self) -> None:
        """Test that single-family gates ask only for YES."""
        prompt = _answers("YES")
        gate = ConfirmationGate(prompt=prompt, echo=lambda _: None, phrase=None)

        gate.confirm()

        assert len(prompt.asked) == 1

    @pytest.mark.asyncio
    async def test_countdown_uses_abort_window(self) -> None:
        """Test that the countdown waits one second per remaining second."""
        sleeper = FakeSleeper()
        lines: list[str] = []
        gate = ConfirmationGate(
            prompt=_answers(), echo=lines.append, abort_window_seconds=3, sleep=sleeper
        )

        await gate.countdown()

        assert sleeper.delays == [1, 1, 1]
        assert "Press Ctrl+C to abort" in lines[0]

    @pytest.mark.asyncio
    async def test_interrupt_during_countdown_aborts(self) -> None:
        """Test that an interrupt in the abort window raises CleanupAborted."""

        async def interrupted(seconds: float) -> None:
            raise KeyboardInterrupt

        gate = ConfirmationGate(
            prompt=_answers(), echo=lambda _: None, abort_window_seconds=5, sleep=interrupted
        )

        with pytest.raises(CleanupAborted):
            await gate.countdown()


class TestPassRetry:
    """Tests for whole-pass retry on dependency conflicts."""

    @pytest.mark.asyncio
    async def test_retries_until_conflicts_clear(self) -> None:
        """Test that a pass with retriable failures is repeated after the backoff."""
        sleeper = FakeSleeper()
        results = [
            DeletionResult(failed_count=1, failed_items=["gw"], retriable_items=["gw"]),
            DeletionResult(deleted_count=1),
        ]

        async def run_pass() -> DeletionResult:
            return results.pop(0)

        result = await run_with_pass_retry(run_pass, RetryPolicy.fixed(3, 10.0), sleep=sleeper)

        assert result.deleted_count == 1
        assert sleeper.delays == [10.0]

    @pytest.mark.asyncio
    async def test_returns_last_pass_when_exhausted(self) -> None:
        """Test that the final pass result is returned after the last attempt."""
        sleeper = FakeSleeper()
        calls = {"count": 0}

        async def run_pass() -> DeletionResult:
            calls["count"] += 1
            return DeletionResult(failed_count=1, failed_items=["gw"], retriable_items=["gw"])

        result = await run_with_pass_retry(run_pass, RetryPolicy.fixed(3, 10.0), sleep=sleeper)

        assert calls["count"] == 3
        assert result.failed_items == ["gw"]
        assert sleeper.delays == [10.0, 10.0]

    @pytest.mark.asyncio
    async def test_permanent_failures_not_retried(self) -> None:
        """Test that a pass without dependency conflicts runs once."""
        calls = {"count": 0}

        async def run_pass() -> DeletionResult:
            calls["count"] += 1
            return DeletionResult(failed_count=1, failed_items=["role"])

        await run_with_pass_retry(run_pass, RetryPolicy.fixed(3, 10.0), sleep=FakeSleeper())

        assert calls["count"] == 1


class TestCleanupOrchestrator:
    """Tests for CleanupOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_declined_confirmation_runs_nothing(self, store: ConfigStore) -> None:
        """Test that no step runs when the operator declines."""
        ran: list[str] = []

        async def routine() -> FamilyReport:
            ran.append("gateways")
            return FamilyReport()

        gate = ConfirmationGate(prompt=_answers("no"), echo=lambda _: None)

        with pytest.raises(ConfirmationDeclined):
            await CleanupOrchestrator(store, echo=lambda _: None).run(
                [Step(family="gateways", routine=routine)], gate
            )

        assert ran == []

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, store: ConfigStore) -> None:
        """Test that steps execute sequentially in the given order."""
        order: list[str] = []

        def recording(family: str) -> Step:
            async def routine() -> FamilyReport:
                order.append(family)
                return FamilyReport(found=1, deleted=1)

            return Step(family=family, routine=routine)

        await CleanupOrchestrator(store, echo=lambda _: None).run(
            [recording("runtimes"), recording("gateways"), recording("iam")]
        )

        assert order == ["runtimes", "gateways", "iam"]

    @pytest.mark.asyncio
    async def test_failed_step_does_not_block_later_steps(self, store: ConfigStore) -> None:
        """Test that an erroring family is recorded and the next family still runs."""
        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [
                _step("gateways", error=RemoteApiError("AccessDenied")),
                _step("iam", FamilyReport(found=1, deleted=1)),
            ]
        )

        statuses = {o.family: o.status for o in summary.outcomes}
        assert statuses == {"gateways": StepStatus.FAILED, "iam": StepStatus.COMPLETED}
        assert "AccessDenied" in summary.outcomes[0].error
        assert summary.fully_clean is False
        assert summary.needs_rerun == ["gateways"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated(self, store: ConfigStore) -> None:
        """Test that a programming error in one routine does not stop the run."""
        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [_step("memory", error=KeyError("id")), _step("iam")]
        )

        assert [o.status for o in summary.outcomes] == [
            StepStatus.FAILED,
            StepStatus.SKIPPED_NOT_FOUND,
        ]

    @pytest.mark.asyncio
    async def test_step_timeout(self, store: ConfigStore) -> None:
        """Test that a hung routine is cut off at its timeout."""

        async def hang() -> FamilyReport:
            await asyncio.sleep(3600)
            return FamilyReport()

        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [Step(family="identity", routine=hang, timeout_seconds=0.01), _step("iam")]
        )

        assert summary.outcomes[0].status == StepStatus.TIMED_OUT
        assert summary.outcomes[1].status == StepStatus.SKIPPED_NOT_FOUND

    @pytest.mark.asyncio
    async def test_timed_out_step_keeps_partial_report(self, store: ConfigStore) -> None:
        """Test that progress recorded before a timeout is reported."""
        report = FamilyReport()

        async def stall() -> FamilyReport:
            report.found = 3
            report.deleted = 2
            report.failed_items.append("bac-gtw")
            await asyncio.sleep(3600)
            return report

        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [Step(family="gateways", routine=stall, timeout_seconds=0.01, report=report)]
        )

        outcome = summary.outcomes[0]
        assert outcome.status == StepStatus.TIMED_OUT
        assert outcome.report is report
        assert outcome.report.deleted == 2
        assert any("(deleted 2/3)" in line for line in summary.lines())

    @pytest.mark.asyncio
    async def test_status_classification(self, store: ConfigStore) -> None:
        """Test the mapping from family reports to step statuses."""
        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [
                _step("runtimes", FamilyReport()),
                _step("gateways", FamilyReport(found=2, deleted=2)),
                _step("identity", FamilyReport(found=3, deleted=2, failed_items=["wi-1"])),
                _step("registries", FamilyReport(found=1, deleted=1, truncated=True)),
            ]
        )

        assert [o.status for o in summary.outcomes] == [
            StepStatus.SKIPPED_NOT_FOUND,
            StepStatus.COMPLETED,
            StepStatus.COMPLETED_WITH_ISSUES,
            StepStatus.COMPLETED_WITH_ISSUES,
        ]

    @pytest.mark.asyncio
    async def test_config_reconciled_after_steps(self, store: ConfigStore) -> None:
        """Test that clean families reset their sections and others are marked ORPHANED."""
        store.update("gateway", {"id": "gw-1"})
        store.update("memory", {"id": "mem-1"})

        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [
                _step("gateways", error=RemoteApiError("AccessDenied"), sections=["gateway"]),
                _step("memory", FamilyReport(found=1, deleted=1), sections=["memory"]),
            ]
        )

        state = store.load_generated()
        assert state.gateway.status == ORPHANED
        assert state.gateway.id == "gw-1"
        assert state.memory.id == ""
        assert summary.reset_sections == ["memory"]
        assert summary.orphaned_sections == ["gateway"]
        assert any("static-config.yaml" in p for p in summary.preserved)

    @pytest.mark.asyncio
    async def test_summary_lines(self, store: ConfigStore) -> None:
        """Test the human-readable summary of a partially clean run."""
        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [
                _step("identity", FamilyReport(found=3, deleted=2, failed_items=["wi-1"])),
                _step("iam", FamilyReport(found=1, deleted=1)),
            ]
        )

        lines = summary.lines()
        assert any("remaining: wi-1" in line for line in lines)
        assert "Result: partially clean - retry recommended" in lines
        assert "Re-run needed for: identity" in lines

    @pytest.mark.asyncio
    async def test_fully_clean_summary(self, store: ConfigStore) -> None:
        """Test that an all-clean run reports fully clean."""
        summary = await CleanupOrchestrator(store, echo=lambda _: None).run(
            [_step("memory", FamilyReport(found=1, deleted=1))]
        )

        assert summary.fully_clean is True
        assert summary.lines()[-1] == "Result: fully clean"
