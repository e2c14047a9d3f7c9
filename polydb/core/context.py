"""
Operation context.
Carries a deadline and a cancellation flag through every adapter call.
"""

from typing import Optional
import threading
import time

from ..exceptions import OperationCancelled, OperationTimeout

QUERY_TIMEOUT = 30.0
CONNECT_TIMEOUT = 15.0
DISCONNECT_TIMEOUT = 5.0
PROBE_TIMEOUT = 2.0
SHUTDOWN_TIMEOUT = 10.0


class OperationContext:
    """
    Deadline-bound, cancellable context for a single operation.

    Usage:
        ctx = OperationContext(30.0, operation="list_tables")
        rows = client.fetch(timeout=ctx.remaining())
        ctx.check()
    """

    def __init__(
        self,
        timeout: Optional[float] = QUERY_TIMEOUT,
        operation: str = "operation",
        _deadline: Optional[float] = None
    ):
        self.operation = operation
        self.timeout = timeout
        if _deadline is not None:
            self.deadline = _deadline
        elif timeout is not None:
            self.deadline = time.monotonic() + timeout
        else:
            self.deadline = None
        self._cancelled = threading.Event()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, never negative. None means unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise if the context was cancelled or its deadline passed."""
        if self.cancelled:
            raise OperationCancelled(self.operation)
        if self.expired:
            raise OperationTimeout(self.operation, self.timeout)

    def child(self, timeout: Optional[float] = None, operation: Optional[str] = None) -> "OperationContext":
        """
        Derive a context with a tighter deadline.

        The child never outlives its parent; cancelling the parent
        does not propagate, callers check the parent themselves.
        """
        deadline = self.deadline
        if timeout is not None:
            own = time.monotonic() + timeout
            deadline = own if deadline is None else min(deadline, own)
        return OperationContext(
            timeout if timeout is not None else self.timeout,
            operation=operation or self.operation,
            _deadline=deadline,
        )

    def __repr__(self) -> str:
        return f"OperationContext(operation={self.operation!r}, remaining={self.remaining()!r})"


def background(operation: str = "operation") -> OperationContext:
    """Context without a deadline."""
    return OperationContext(None, operation=operation)
