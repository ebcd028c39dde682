"""Error taxonomy for instance reconciliation.

ValidationError never reaches the remote API. Every other error aborts the
executor at the failing operation; the caller gets the partial observed
state and decides whether to reconcile again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validator import Violation


class ReconcileError(Exception):
    """Base class for reconciliation errors."""

    pass


class ValidationError(ReconcileError):
    """Raised when a desired record violates structural invariants."""

    def __init__(self, violations: list[Violation]) -> None:
        self.violations = list(violations)
        details = "; ".join(f"{v.path}: {v.reason}" for v in self.violations)
        super().__init__(f"Desired state is invalid ({len(self.violations)} violations): {details}")


class PlanningError(ReconcileError):
    """Raised when the planner cannot produce a safe plan.

    The planner fails closed: no operation of the rejected plan is applied.
    """

    pass


class RemoteError(ReconcileError):
    """Raised when a Cloud API Client call fails.

    The client's error is kept verbatim in ``error`` (and as ``__cause__``
    when raised with ``from``).
    """

    def __init__(self, message: str, error: BaseException | None = None) -> None:
        super().__init__(message)
        self.error = error


class ConflictError(RemoteError):
    """Raised when the target resource is in a state incompatible with the operation."""

    pass


class NotFoundError(RemoteError):
    """Raised when a referenced resource does not exist."""

    pass


class TerminalStateError(RemoteError):
    """Raised when a resource reports an error status while being awaited."""

    def __init__(self, message: str, snapshot: object | None = None) -> None:
        super().__init__(message)
        self.snapshot = snapshot


class WaitTimeoutError(ReconcileError, TimeoutError):
    """Raised when a wait deadline elapses before the target condition holds."""

    def __init__(self, message: str, polls: int, timeout_seconds: float) -> None:
        super().__init__(message)
        self.polls = polls
        self.timeout_seconds = timeout_seconds


class WaitCancelledError(ReconcileError):
    """Raised when the reconciliation request is cancelled during a wait."""

    pass
