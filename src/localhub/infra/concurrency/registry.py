"""QueueRegistry — one admission queue per resource class.

Built once by the ``build_queue_registry`` lifespan dependency and kept
on ``app.state``.  Request handling reaches it through
``get_queue_registry`` (or ``scope["app"].state`` inside ASGI
middleware); nothing holds it in a module global.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Iterator, Mapping
from typing import Annotated

from fastapi import Depends, FastAPI, Request

from localhub.configs.config import AppConfig, get_app_config
from localhub.configs.system import QueueConfig
from localhub.infra.lifespan import get_app

from .base import QueueStats, UnknownResourceClass
from .queue import AdmissionQueue

logger = logging.getLogger(__name__)


class QueueRegistry:
    """Named ``AdmissionQueue`` instances plus the default resource class."""

    def __init__(self, queues: Mapping[str, AdmissionQueue], default: str) -> None:
        if default not in queues:
            raise UnknownResourceClass(default)
        self._queues = dict(queues)
        self._default = default

    @classmethod
    def from_config(cls, config: QueueConfig) -> QueueRegistry:
        queues = {
            name: AdmissionQueue(capacity, name=name)
            for name, capacity in config.capacities.items()
        }
        return cls(queues, default=config.default_class)

    @property
    def default(self) -> AdmissionQueue:
        return self._queues[self._default]

    def get(self, resource_class: str) -> AdmissionQueue:
        try:
            return self._queues[resource_class]
        except KeyError:
            raise UnknownResourceClass(resource_class) from None

    def __contains__(self, resource_class: object) -> bool:
        return resource_class in self._queues

    def __iter__(self) -> Iterator[str]:
        return iter(self._queues)

    def __len__(self) -> int:
        return len(self._queues)

    def stats(self) -> list[QueueStats]:
        return [queue.stats() for queue in self._queues.values()]

    @property
    def closed(self) -> bool:
        return any(queue.closed for queue in self._queues.values())

    def close(self, *, cancel_pending: bool = False) -> None:
        """Stop admission on every queue without waiting."""
        for queue in self._queues.values():
            queue.close(cancel_pending=cancel_pending)

    async def aclose(self, *, cancel_pending: bool = False) -> None:
        """Close every queue and wait until all of them have drained."""
        await asyncio.gather(
            *(q.aclose(cancel_pending=cancel_pending) for q in self._queues.values())
        )


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_queue_registry(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create the registry, attach to ``app.state``; drain on shutdown.

    Shutdown stops admission on every queue and waits up to
    ``drain_timeout`` for accepted work.  Whatever is still pending after
    that is cancelled; running tasks are left to finish.
    """
    qc = config.queues
    registry = QueueRegistry.from_config(qc)
    app.state.queue_registry = registry
    logger.info(
        "Admission queues ready (%s; default=%s)",
        ", ".join(f"{name}={cap}" for name, cap in qc.capacities.items()),
        qc.default_class,
    )

    yield

    timeout = qc.drain_timeout.total_seconds()
    try:
        async with asyncio.timeout(timeout):
            await registry.aclose()
    except TimeoutError:
        logger.warning(
            "Admission queues not drained after %.1fs; cancelling pending work",
            timeout,
        )
        registry.close(cancel_pending=True)


# ---------------------------------------------------------------------------
# Per-request dependency, reads from app.state
# ---------------------------------------------------------------------------


def get_queue_registry(request: Request) -> QueueRegistry:
    """Return the ``QueueRegistry`` stored on ``app.state`` by the lifespan."""
    return request.app.state.queue_registry
