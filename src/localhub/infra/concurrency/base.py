"""Admission-queue exceptions and state enums."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InvalidCapacity(ValueError):
    """Raised when a queue is built with a capacity that is not a positive int."""


class QueueClosed(Exception):
    """Raised by ``submit`` once the queue has stopped admitting work."""

    def __init__(self, message: str, *, queue: str = "default") -> None:
        super().__init__(message)
        self.queue = queue


class UnknownResourceClass(KeyError):
    """Raised when no queue is configured for a resource class."""

    def __init__(self, resource_class: str) -> None:
        super().__init__(resource_class)
        self.resource_class = resource_class

    def __str__(self) -> str:
        return f"No admission queue for resource class {self.resource_class!r}"


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


class WorkItemState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class QueueState(str, Enum):
    IDLE = "idle"
    SATURATED = "saturated"
    DRAINING = "draining"


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time snapshot of one queue's bookkeeping."""

    name: str
    capacity: int
    in_flight: int
    pending: int
    closed: bool
    state: QueueState

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "in_flight": self.in_flight,
            "pending": self.pending,
            "closed": self.closed,
            "state": self.state.value,
        }
