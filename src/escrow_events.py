"""
CryptoEscrow - Event Log

Append-only notifications emitted by the escrow core for external observers
and audit logs. Events are never consulted for control flow.

Events raised inside ``atomic()`` are discarded if the block fails, so a
rolled-back operation leaves no trace; subscribers are only notified once the
outermost unit of work commits.
"""

import logging
import threading
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Event names
ESCROW_CREATED = "EscrowCreated"
FUNDS_DEPOSITED = "FundsDeposited"
FUNDS_RELEASED = "FundsReleased"
ESCROW_CANCELLED = "EscrowCancelled"
DISPUTE_RAISED = "DisputeRaised"
DISPUTE_RESOLVED = "DisputeResolved"
DISPUTE_EVIDENCE_SUBMITTED = "DisputeEvidenceSubmitted"
ARBITRATOR_SELECTED = "ArbitratorSelected"
ARBITRATOR_REGISTERED = "ArbitratorRegistered"
ARBITRATOR_UPDATED = "ArbitratorUpdated"
TOKEN_WRAPPED = "TokenWrapped"
TOKEN_UNWRAPPED = "TokenUnwrapped"
CONFIGURATION_CHANGED = "ConfigurationChanged"


@dataclass
class EscrowEvent:
    """A single emitted event."""
    sequence: int
    name: str
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def escrow_id(self) -> int | None:
        return self.data.get("escrow_id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event": self.name,
            "timestamp": self.timestamp,
            **self.data
        }


class EventLog:
    """Ordered, append-only event store with post-commit subscribers."""

    def __init__(self):
        self.events: list[EscrowEvent] = []
        self._subscribers: list[Callable[[EscrowEvent], None]] = []
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_from = 0

    def subscribe(self, callback: Callable[[EscrowEvent], None]) -> None:
        """Register a callback invoked for every committed event."""
        self._subscribers.append(callback)

    def emit(self, name: str, timestamp: float, **data: Any) -> EscrowEvent:
        with self._lock:
            event = EscrowEvent(
                sequence=len(self.events) + 1,
                name=name,
                timestamp=timestamp,
                data=data
            )
            self.events.append(event)
            logger.info("Event %s", name, extra={"event": event.to_dict()})
            if self._depth == 0:
                self._notify([event])
            return event

    @contextmanager
    def atomic(self):
        with self._lock:
            mark = len(self.events)
            if self._depth == 0:
                self._pending_from = mark
            self._depth += 1
            try:
                yield
            except BaseException:
                del self.events[mark:]
                raise
            finally:
                self._depth -= 1
            if self._depth == 0:
                self._notify(self.events[self._pending_from:])

    def _notify(self, events: list[EscrowEvent]) -> None:
        for event in events:
            for callback in self._subscribers:
                try:
                    callback(event)
                except Exception:
                    # Observers must not affect a committed operation
                    logger.exception("Event subscriber failed for %s", event.name)

    def filter(self, name: str | None = None, escrow_id: int | None = None) -> list[EscrowEvent]:
        """Events matching the given name and/or escrow id, in order."""
        with self._lock:
            return [
                e for e in self.events
                if (name is None or e.name == name)
                and (escrow_id is None or e.escrow_id == escrow_id)
            ]

    def names(self) -> list[str]:
        return [e.name for e in self.events]
