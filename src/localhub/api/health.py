"""Health endpoints with per-queue occupancy.

Process memory and CPU are not repeated here; ``/metrics`` exports them
through the Prometheus process collector.
"""

import time
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from .deps import QueueRegistryDep

router = APIRouter(prefix="/health", tags=["health"])


def _uptime(request: Request) -> float:
    started_at = getattr(request.app.state, "started_at", None)
    if started_at is None:
        return 0.0
    return round(time.monotonic() - started_at, 3)


@router.get("")
async def health(request: Request, registry: QueueRegistryDep) -> JSONResponse:
    """Liveness plus a snapshot of every admission queue.

    Answers 503 once shutdown has closed the queues, so load balancers
    stop routing new traffic while accepted work drains.
    """
    draining = registry.closed
    body: dict[str, Any] = {
        "message": "DRAINING" if draining else "OK",
        "uptime": _uptime(request),
        "timestamp": int(time.time() * 1000),
        "queues": {stats.name: stats.as_dict() for stats in registry.stats()},
    }
    return JSONResponse(status_code=503 if draining else 200, content=body)


@router.get("/queues/{resource_class}")
async def queue_health(resource_class: str, registry: QueueRegistryDep) -> dict[str, Any]:
    """One queue's stats; unknown classes become 404 via the exception handler."""
    return registry.get(resource_class).stats().as_dict()
