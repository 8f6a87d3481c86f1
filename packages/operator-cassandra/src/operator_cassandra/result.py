"""
Reconcile result algebra.

Every check in a reconcile pass returns one of four results:

- Continue: the check found nothing to do; the caller moves on to the next check
- Done: the pass is complete, no error, no re-invocation
- RequeueSoon(seconds): the pass is complete; re-invoke after the delay
- Error(exc): the pass is complete; surface the error to the controller backoff

Checks compose by returning the first completed result:

    for guard in guards:
        result = await guard()
        if result.completed():
            return result
    return Continue()

`run_guards` implements exactly that loop so call sites read as an ordered
list of guards instead of nested conditionals.

Calling `output()` on Continue raises ReconcileResultError. Treating a
non-terminal result as terminal is a programming error.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from operator_cassandra.errors import ReconcileResultError


@dataclass(frozen=True)
class ReconcileOutput:
    """
    What the controller does after a pass.

    Attributes:
        requeue: Whether the key should be processed again.
        requeue_after: Seconds to wait before processing again.
        error: Error to surface to the controller's backoff, if any.
    """

    requeue: bool = False
    requeue_after: float = 0.0
    error: BaseException | None = None


class ReconcileResult:
    """Base class for the four result variants."""

    def completed(self) -> bool:
        raise NotImplementedError

    def output(self) -> ReconcileOutput:
        raise NotImplementedError


class Continue(ReconcileResult):
    """Nothing to do here, proceed to the next check."""

    def completed(self) -> bool:
        return False

    def output(self) -> ReconcileOutput:
        raise ReconcileResultError("there was no result to return from Continue")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Continue)

    def __hash__(self) -> int:
        return hash(Continue)

    def __repr__(self) -> str:
        return "Continue()"


class Done(ReconcileResult):
    """The pass completed without error and needs no re-invocation."""

    def completed(self) -> bool:
        return True

    def output(self) -> ReconcileOutput:
        return ReconcileOutput()

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Done)

    def __hash__(self) -> int:
        return hash(Done)

    def __repr__(self) -> str:
        return "Done()"


@dataclass(frozen=True, eq=True)
class RequeueSoon(ReconcileResult):
    """The pass completed; call back after `seconds`."""

    seconds: float

    def completed(self) -> bool:
        return True

    def output(self) -> ReconcileOutput:
        return ReconcileOutput(requeue=True, requeue_after=float(self.seconds))


@dataclass(frozen=True, eq=True)
class Error(ReconcileResult):
    """The pass completed with an error; the controller decides on backoff."""

    error: BaseException

    def completed(self) -> bool:
        return True

    def output(self) -> ReconcileOutput:
        return ReconcileOutput(error=self.error)


Guard = Callable[[], Awaitable[ReconcileResult]]
"""An async check that either acts (completed result) or passes (Continue)."""


async def run_guards(guards: Iterable[Guard]) -> ReconcileResult:
    """
    Run guards in order and return the first completed result.

    Args:
        guards: Ordered async callables, each returning a ReconcileResult.

    Returns:
        The first completed result, or Continue if every guard passed.
    """
    for guard in guards:
        result = await guard()
        if result.completed():
            return result
    return Continue()
