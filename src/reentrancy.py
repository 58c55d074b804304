"""
CryptoEscrow - Reentrancy Guard

A mutual-exclusion flag shared by every state-mutating entry point that can
move assets. The guard is not reentrant: a call that re-enters any guarded
operation from the same thread (for example an asset implementation calling
back into the ledger in the middle of a transfer) fails immediately with
ReentrancyError. Calls from other threads wait, which serializes operations.

Usage:
    class EscrowLedger:
        def __init__(self):
            self._guard = ReentrancyGuard("escrow-ledger")

        @non_reentrant
        def release_funds(self, caller, escrow_id):
            ...
"""

import threading
from contextlib import contextmanager
from functools import wraps

from escrow_exceptions import ReentrancyError


class ReentrancyGuard:
    """
    Non-reentrant lock with owner tracking.

    Several components may share one guard so that re-entry into *any* of
    them is rejected, not only re-entry into the same method.
    """

    def __init__(self, name: str = "escrow"):
        self.name = name
        self._lock = threading.Lock()
        self._owner: int | None = None
        self._operation: str | None = None

    @property
    def entered(self) -> bool:
        """True while a guarded operation is executing."""
        return self._owner is not None

    @property
    def operation(self) -> str | None:
        """Name of the operation currently holding the guard."""
        return self._operation

    @contextmanager
    def enter(self, operation: str = "unknown"):
        """
        Hold the guard for the duration of the block.

        Raises:
            ReentrancyError: if the current thread already holds the guard
        """
        if self._owner == threading.get_ident():
            raise ReentrancyError(
                f"Reentrant call to '{operation}' while '{self._operation}' is in progress",
                component=self.name,
                action=operation,
                details={"in_progress": self._operation},
            )
        self._lock.acquire()
        self._owner = threading.get_ident()
        self._operation = operation
        try:
            yield
        finally:
            self._owner = None
            self._operation = None
            self._lock.release()


def non_reentrant(func):
    """
    Decorator for methods of objects that carry a ``_guard`` attribute.

    The guard is released on every exit path, success or failure.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._guard.enter(func.__name__):
            return func(self, *args, **kwargs)

    return wrapper
