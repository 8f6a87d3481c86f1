"""
Exception classes for the reconcile engine.

Guards convert OperatorError subclasses into Error() results so the
controller applies its backoff. "Not found" on a child object is a normal
state transition (the object has not been created yet) and callers check
for NotFoundError explicitly instead of treating it as a failure.
"""


class OperatorError(Exception):
    """Base class for all operator exceptions."""


class NotFoundError(OperatorError):
    """
    Raised when an orchestration object does not exist.

    Attributes:
        kind: Object kind (e.g., "Workload", "VolumeClaim")
        name: Object name
    """

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name!r} not found")


class ConflictError(OperatorError):
    """
    Raised when an optimistic write loses against a concurrent writer.

    Attributes:
        kind: Object kind
        name: Object name
        expected: Resource version the writer last observed
        actual: Resource version currently stored
    """

    def __init__(self, kind: str, name: str, expected: int, actual: int) -> None:
        self.kind = kind
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{kind} {name!r} was modified concurrently "
            f"(observed version {expected}, current version {actual})"
        )


class OrchestrationError(OperatorError):
    """
    Raised when an orchestration API call fails for a reason other than a
    missing object or a version conflict.

    Attributes:
        operation: Client method that failed (e.g., "delete_volume_claim")
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(f"orchestration call {operation} failed: {reason}")


class TopologyError(OperatorError):
    """Raised when the requested size cannot be laid out over the racks."""


class InvariantError(OperatorError):
    """Raised when observed state contradicts an operator invariant."""


class ManagementApiError(OperatorError):
    """
    Raised when a call to a node's management API fails.

    Attributes:
        node: Name of the node-instance the call was made against
        endpoint: API path that was called
    """

    def __init__(self, node: str, endpoint: str, reason: str) -> None:
        self.node = node
        self.endpoint = endpoint
        super().__init__(f"management API call {endpoint} on {node} failed: {reason}")


class ReconcileResultError(Exception):
    """Raised when a non-terminal result is asked for its output."""
