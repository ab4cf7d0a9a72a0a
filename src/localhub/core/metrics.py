"""Prometheus metrics for the LocalHub service.

Admission-queue metrics that complement the auto-instrumented HTTP
metrics provided by ``prometheus-fastapi-instrumentator``.

All metrics use the ``localhub_`` prefix and carry a ``queue`` label
holding the queue name.  Gauges are set, not summed, per label value:
queue names must be unique within the process.

Process figures (resident memory, CPU seconds, open fds) come from
``prometheus_client``'s default process collector on the same endpoint.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from localhub.configs.config import AppConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Admission queue metrics
# ---------------------------------------------------------------------------

QUEUE_CAPACITY = Gauge(
    "localhub_queue_capacity",
    "Maximum concurrently executing tasks per queue",
    ["queue"],
)

QUEUE_IN_FLIGHT = Gauge(
    "localhub_queue_in_flight",
    "Tasks currently executing",
    ["queue"],
)

QUEUE_PENDING = Gauge(
    "localhub_queue_pending",
    "Tasks waiting for a free slot",
    ["queue"],
)

QUEUE_TASKS_TOTAL = Counter(
    "localhub_queue_tasks_total",
    "Settled tasks, by outcome",
    ["queue", "outcome"],  # "ok" | "error" | "cancelled"
)

QUEUE_WAIT_SECONDS = Histogram(
    "localhub_queue_wait_seconds",
    "Time between submission and admission",
    ["queue"],
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30),
)

QUEUE_REJECTIONS_TOTAL = Counter(
    "localhub_queue_rejections_total",
    "Submissions refused because the queue was closed (503 responses)",
    ["queue"],
)

REQUEST_TIMEOUTS_TOTAL = Counter(
    "localhub_request_timeouts_total",
    "Requests that exceeded their resource-class timeout (504 responses)",
    ["queue"],
)


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def instrument_app(app: FastAPI, config: AppConfig) -> None:
    """Attach HTTP instrumentation and the metrics endpoint.

    Must run while the app is being built: Starlette refuses new
    middleware once the lifespan has started.
    """
    if not config.metrics.enabled:
        logger.info("Prometheus metrics disabled")
        return

    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.tracing.excluded_urls,
    ).instrument(app).expose(app, endpoint=config.metrics.endpoint)

    logger.info("Prometheus metrics initialised (%s)", config.metrics.endpoint)
