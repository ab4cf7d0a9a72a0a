"""AdmissionQueue — bounded-concurrency gate with FIFO admission.

At most ``capacity`` submitted tasks run at once; the rest wait in
arrival order.  Each caller gets an ``asyncio.Future`` that settles with
its own task's result or exception.

Bookkeeping (``_in_flight`` / ``_pending``) is only touched from
synchronous code on the event-loop thread: ``submit``, the runner
done-callback and the future cancel-callback.  None of them awaits, so
no other submission or settlement can interleave.  The queue is **not**
thread-safe; call it from the loop that owns it.

Usage::

    queue = AdmissionQueue(20, name="upload")

    result = await queue.submit(lambda: store_image(blob))

    ...

    await queue.aclose()   # stop admitting, wait for accepted work
"""

from __future__ import annotations

import asyncio
import contextvars
import itertools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Generic, TypeVar

from localhub.core.metrics import (
    QUEUE_CAPACITY,
    QUEUE_IN_FLIGHT,
    QUEUE_PENDING,
    QUEUE_REJECTIONS_TOTAL,
    QUEUE_TASKS_TOTAL,
    QUEUE_WAIT_SECONDS,
)
from localhub.infra.logging import current_queue

from .base import (
    InvalidCapacity,
    QueueClosed,
    QueueState,
    QueueStats,
    WorkItemState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFn = Callable[[], Awaitable[T]]


@dataclass(eq=False)
class WorkItem(Generic[T]):
    """One submitted unit of work and the future its caller awaits.

    ``context`` is a copy of the submitter's context; the runner executes
    in it, so context variables (the active span included) follow the
    task even when it is admitted later from another task's settlement.
    """

    task: TaskFn[T]
    future: asyncio.Future[T]
    sequence: int
    enqueued_at: float
    context: contextvars.Context = field(repr=False)
    state: WorkItemState = WorkItemState.PENDING
    runner: asyncio.Task[T] | None = field(default=None, repr=False)


async def _invoke(task: TaskFn[T]) -> T:
    # Runs the task inside the runner so a synchronous raise from the
    # callable lands on the runner like any other failure.
    return await task()


def with_timeout(task: TaskFn[T], timeout: timedelta) -> TaskFn[T]:
    """Wrap *task* so its execution fails with ``TimeoutError`` after *timeout*.

    Only execution time counts; time spent pending in a queue does not.
    """
    seconds = timeout.total_seconds()

    async def timed() -> T:
        async with asyncio.timeout(seconds):
            return await task()

    return timed


class AdmissionQueue:
    """Admit up to ``capacity`` tasks concurrently, queue the rest FIFO.

    *name* labels the Prometheus gauges and the ``queue`` log field.  The
    gauges are process-wide, so two live queues must not share a name;
    ``QueueRegistry`` guarantees that for its queues by keying them on
    the resource class.
    """

    def __init__(self, capacity: int, *, name: str = "default") -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise InvalidCapacity(
                f"Queue {name!r}: capacity must be an int, got {type(capacity).__name__}"
            )
        if capacity <= 0:
            raise InvalidCapacity(
                f"Queue {name!r}: capacity must be > 0, got {capacity}"
            )

        self._name = name
        self._capacity = capacity
        self._in_flight = 0
        self._pending: deque[WorkItem[Any]] = deque()
        self._sequence = itertools.count()
        self._closed = False
        self._drained: asyncio.Future[None] | None = None

        QUEUE_CAPACITY.labels(queue=name).set(capacity)
        self._publish()

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> QueueState:
        if self._in_flight == 0:
            return QueueState.IDLE
        if self._in_flight >= self._capacity:
            return QueueState.SATURATED
        return QueueState.DRAINING

    def stats(self) -> QueueStats:
        return QueueStats(
            name=self._name,
            capacity=self._capacity,
            in_flight=self._in_flight,
            pending=len(self._pending),
            closed=self._closed,
            state=self.state,
        )

    def __repr__(self) -> str:
        return (
            f"<AdmissionQueue {self._name!r} in_flight={self._in_flight}/"
            f"{self._capacity} pending={len(self._pending)}"
            f"{' closed' if self._closed else ''}>"
        )

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def submit(self, task: TaskFn[T]) -> asyncio.Future[T]:
        """Queue *task* for execution and return the future of its outcome.

        Never blocks.  The task starts right away when a slot is free,
        otherwise it waits behind every earlier submission.

        Cancelling the returned future withdraws a pending task, or
        cancels a running one (its slot is released on settlement).

        Raises:
            QueueClosed: after ``close()`` has been called.
        """
        if self._closed:
            QUEUE_REJECTIONS_TOTAL.labels(queue=self._name).inc()
            raise QueueClosed(
                f"Queue {self._name!r} is closed and no longer admits work.",
                queue=self._name,
            )

        loop = asyncio.get_running_loop()
        item: WorkItem[T] = WorkItem(
            task=task,
            future=loop.create_future(),
            sequence=next(self._sequence),
            enqueued_at=time.monotonic(),
            context=contextvars.copy_context(),
        )
        item.future.add_done_callback(lambda _: self._on_future_done(item))

        self._pending.append(item)
        self._try_admit_next()
        if item.state is WorkItemState.PENDING:
            logger.debug(
                "Queue %s saturated: task #%d pending (position=%d)",
                self._name,
                item.sequence,
                len(self._pending),
            )
        self._publish()
        return item.future

    def close(self, *, cancel_pending: bool = False) -> asyncio.Future[None]:
        """Stop admitting new work; return a future that resolves once drained.

        Running tasks always finish.  Pending tasks finish too unless
        *cancel_pending* is set, in which case their futures are
        cancelled without the tasks ever running.  Calling ``close``
        again returns the same future (and may still cancel pending
        work).
        """
        if self._drained is None or self._drained.cancelled():
            self._drained = asyncio.get_running_loop().create_future()
        if not self._closed:
            self._closed = True
            logger.info(
                "Queue %s closing (in_flight=%d, pending=%d)",
                self._name,
                self._in_flight,
                len(self._pending),
            )

        if cancel_pending:
            while self._pending:
                item = self._pending.popleft()
                item.state = WorkItemState.CANCELLED
                item.future.cancel()
                QUEUE_TASKS_TOTAL.labels(queue=self._name, outcome="cancelled").inc()

        self._publish()
        self._check_drained()
        return self._drained

    async def aclose(self, *, cancel_pending: bool = False) -> None:
        """Close the queue and wait until every accepted task has settled."""
        await asyncio.shield(self.close(cancel_pending=cancel_pending))

    # -----------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------

    def _try_admit_next(self) -> None:
        while self._in_flight < self._capacity and self._pending:
            item = self._pending.popleft()
            if item.future.done():
                # Cancelled by its caller; the cancel callback has not run yet.
                continue
            self._start(item)

    def _start(self, item: WorkItem[Any]) -> None:
        self._in_flight += 1
        item.state = WorkItemState.RUNNING
        QUEUE_WAIT_SECONDS.labels(queue=self._name).observe(
            time.monotonic() - item.enqueued_at
        )
        item.context.run(current_queue.set, self._name)
        runner = asyncio.get_running_loop().create_task(
            _invoke(item.task),
            name=f"{self._name}#{item.sequence}",
            context=item.context,
        )
        item.runner = runner
        runner.add_done_callback(lambda r: self._on_settled(item, r))
        logger.debug(
            "Queue %s admitted task #%d (in_flight=%d/%d)",
            self._name,
            item.sequence,
            self._in_flight,
            self._capacity,
        )

    # -----------------------------------------------------------------
    # Settlement
    # -----------------------------------------------------------------

    def _on_settled(self, item: WorkItem[Any], runner: asyncio.Task[Any]) -> None:
        self._in_flight -= 1

        if runner.cancelled():
            item.state = WorkItemState.CANCELLED
            outcome = "cancelled"
            item.future.cancel()
        else:
            exc = runner.exception()
            if exc is not None:
                item.state = WorkItemState.REJECTED
                outcome = "error"
                logger.error(
                    "Queue %s task #%d failed",
                    self._name,
                    item.sequence,
                    exc_info=exc,
                )
                if not item.future.done():
                    item.future.set_exception(exc)
            else:
                item.state = WorkItemState.FULFILLED
                outcome = "ok"
                if not item.future.done():
                    item.future.set_result(runner.result())

        QUEUE_TASKS_TOTAL.labels(queue=self._name, outcome=outcome).inc()
        self._try_admit_next()
        self._publish()
        self._check_drained()

    def _on_future_done(self, item: WorkItem[Any]) -> None:
        if not item.future.cancelled():
            return
        if item.state is WorkItemState.PENDING:
            item.state = WorkItemState.CANCELLED
            try:
                self._pending.remove(item)
            except ValueError:
                # Already skipped by ``_try_admit_next``.
                pass
            QUEUE_TASKS_TOTAL.labels(queue=self._name, outcome="cancelled").inc()
            logger.debug("Queue %s: pending task #%d cancelled", self._name, item.sequence)
            self._publish()
            self._check_drained()
        elif item.state is WorkItemState.RUNNING and item.runner is not None:
            item.runner.cancel()

    def _check_drained(self) -> None:
        if (
            self._drained is not None
            and not self._drained.done()
            and self._in_flight == 0
            and not self._pending
        ):
            self._drained.set_result(None)
            logger.info("Queue %s drained", self._name)

    def _publish(self) -> None:
        QUEUE_IN_FLIGHT.labels(queue=self._name).set(self._in_flight)
        QUEUE_PENDING.labels(queue=self._name).set(len(self._pending))
