"""AdmissionMiddleware — gate each HTTP request through its resource queue.

The rest of the ASGI chain (routing, dependencies, the endpoint) is
submitted to the ``AdmissionQueue`` of the request's resource class, so
at most ``capacity`` requests of that class are handled at once and the
rest wait in arrival order.

Resource classes are picked by path prefix from ``QueueConfig.routes``
(longest prefix wins, unmatched paths use ``default_class``).  Exempt
paths such as ``/health`` skip admission, so probes keep answering while
the service is saturated.

Responses produced here:

* ``503`` when the queue is closed (shutdown in progress).
* ``504`` when a per-class timeout fires before the handler responded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from localhub.configs.system import QueueConfig
from localhub.core.metrics import REQUEST_TIMEOUTS_TOTAL
from localhub.infra.telemetry import (
    ATTR_QUEUE_NAME,
    ATTR_QUEUE_REJECTED,
    ATTR_QUEUE_TIMED_OUT,
    ATTR_QUEUE_WAITED,
    SPAN_QUEUE_ADMISSION,
    tracer,
)

from .base import QueueClosed
from .queue import with_timeout

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Service temporarily unavailable"
TIMEOUT_MESSAGE = "Request timed out"


def _prefix_matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


class ResourceClassifier:
    """Map a request path to its resource class (``None`` = exempt)."""

    def __init__(
        self,
        routes: Mapping[str, str],
        default_class: str,
        exempt_paths: Iterable[str] = (),
    ) -> None:
        # Longest prefix first so the first match is the most specific.
        self._routes = sorted(routes.items(), key=lambda kv: len(kv[0]), reverse=True)
        self._default_class = default_class
        self._exempt = tuple(exempt_paths)

    def classify(self, path: str) -> str | None:
        if any(_prefix_matches(path, prefix) for prefix in self._exempt):
            return None
        for prefix, resource_class in self._routes:
            if _prefix_matches(path, prefix):
                return resource_class
        return self._default_class


class AdmissionMiddleware:
    """Pure ASGI middleware; reads the registry from ``app.state``."""

    def __init__(self, app: ASGIApp, *, config: QueueConfig) -> None:
        self.app = app
        self._classifier = ResourceClassifier(
            config.routes, config.default_class, config.exempt_paths
        )
        self._timeouts: dict[str, timedelta] = dict(config.timeouts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        resource_class = self._classifier.classify(scope["path"])
        registry = getattr(scope["app"].state, "queue_registry", None)
        if resource_class is None or registry is None or resource_class not in registry:
            await self.app(scope, receive, send)
            return

        queue = registry.get(resource_class)
        timeout = self._timeouts.get(resource_class)
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        async def handle() -> None:
            await self.app(scope, receive, send_wrapper)

        task = handle if timeout is None else with_timeout(handle, timeout)

        with tracer.start_as_current_span(SPAN_QUEUE_ADMISSION) as span:
            span.set_attribute(ATTR_QUEUE_NAME, resource_class)
            span.set_attribute(ATTR_QUEUE_WAITED, queue.in_flight >= queue.capacity)
            try:
                future = queue.submit(task)
            except QueueClosed:
                span.set_attribute(ATTR_QUEUE_REJECTED, True)
                logger.warning(
                    "Queue %s closed, rejecting %s %s",
                    resource_class,
                    scope["method"],
                    scope["path"],
                )
                await self._respond(scope, receive, send, 503, UNAVAILABLE_MESSAGE)
                return

            try:
                await future
            except TimeoutError:
                if timeout is None or response_started:
                    raise
                span.set_attribute(ATTR_QUEUE_TIMED_OUT, True)
                REQUEST_TIMEOUTS_TOTAL.labels(queue=resource_class).inc()
                logger.warning(
                    "%s %s exceeded %s timeout (%.1fs)",
                    scope["method"],
                    scope["path"],
                    resource_class,
                    timeout.total_seconds(),
                )
                await self._respond(scope, receive, send, 504, TIMEOUT_MESSAGE)

    @staticmethod
    async def _respond(
        scope: Scope, receive: Receive, send: Send, status_code: int, message: str
    ) -> None:
        response = JSONResponse(
            status_code=status_code,
            content={"success": False, "message": message},
        )
        await response(scope, receive, send)
