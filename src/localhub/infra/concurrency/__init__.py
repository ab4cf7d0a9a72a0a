"""Admission control for request handling.

Three pieces:

1. **AdmissionQueue** (``capacity`` slots): runs at most ``capacity``
   submitted tasks concurrently and queues the rest in strict arrival
   order.  ``submit`` never blocks; the caller awaits the returned
   future, which settles with the task's own result or error.

2. **QueueRegistry**: one queue per resource class (``general``,
   ``upload``, ``database``), built by the lifespan and injected through
   ``app.state`` rather than held in module globals.

3. **AdmissionMiddleware**: routes each HTTP request's remaining handler
   chain through the queue of its resource class; ``503`` once the queue
   is closed for shutdown.

Everything is in-process and driven by the ``asyncio`` event loop; queue
bookkeeping never spans an ``await``, so it needs no lock.
"""

from .base import (
    InvalidCapacity,
    QueueClosed,
    QueueState,
    QueueStats,
    UnknownResourceClass,
    WorkItemState,
)
from .middleware import AdmissionMiddleware, ResourceClassifier
from .queue import AdmissionQueue, WorkItem, with_timeout
from .registry import QueueRegistry, build_queue_registry, get_queue_registry

__all__ = [
    "AdmissionMiddleware",
    "AdmissionQueue",
    "InvalidCapacity",
    "QueueClosed",
    "QueueRegistry",
    "QueueState",
    "QueueStats",
    "ResourceClassifier",
    "UnknownResourceClass",
    "WorkItem",
    "WorkItemState",
    "build_queue_registry",
    "get_queue_registry",
    "with_timeout",
]
