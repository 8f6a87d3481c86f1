"""Tests for the reconcile result algebra."""

import pytest

from operator_cassandra.errors import InvariantError, ReconcileResultError
from operator_cassandra.result import (
    Continue,
    Done,
    Error,
    ReconcileOutput,
    RequeueSoon,
    run_guards,
)


class TestResultVariants:
    """Tests for completed() and output() of each variant."""

    def test_continue_is_not_completed(self):
        """Continue hands over to the next check."""
        assert Continue().completed() is False

    def test_continue_output_fails_loudly(self):
        """Asking Continue for its output is a programming error."""
        with pytest.raises(ReconcileResultError):
            Continue().output()

    def test_done_output(self):
        """Done completes without requeue or error."""
        result = Done()
        assert result.completed() is True
        assert result.output() == ReconcileOutput(requeue=False, requeue_after=0.0, error=None)

    def test_requeue_soon_output(self):
        """RequeueSoon asks for a re-run after its delay."""
        output = RequeueSoon(5).output()
        assert output.requeue is True
        assert output.requeue_after == 5.0
        assert output.error is None

    def test_error_output(self):
        """Error surfaces its exception without a requeue delay."""
        err = InvariantError("boom")
        output = Error(err).output()
        assert output.error is err
        assert output.requeue is False

    def test_equality(self):
        """Variants compare by value."""
        assert Continue() == Continue()
        assert Done() == Done()
        assert RequeueSoon(2) == RequeueSoon(2)
        assert RequeueSoon(2) != RequeueSoon(10)
        assert Done() != Continue()


class TestRunGuards:
    """Tests for first-completed-wins composition."""

    @pytest.mark.asyncio
    async def test_returns_first_completed_result(self):
        """Guards after the first completed one never run."""
        calls = []

        async def passes():
            calls.append("passes")
            return Continue()

        async def acts():
            calls.append("acts")
            return RequeueSoon(2)

        async def never():
            calls.append("never")
            return Done()

        result = await run_guards([passes, acts, never])

        assert result == RequeueSoon(2)
        assert calls == ["passes", "acts"]

    @pytest.mark.asyncio
    async def test_all_passing_returns_continue(self):
        """No completed result means Continue."""

        async def passes():
            return Continue()

        assert await run_guards([passes, passes]) == Continue()

    @pytest.mark.asyncio
    async def test_empty_guard_list(self):
        """An empty pipeline passes."""
        assert await run_guards([]) == Continue()
