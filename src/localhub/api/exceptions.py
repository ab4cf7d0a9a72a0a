"""Global exception handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from localhub.infra.concurrency.base import QueueClosed, UnknownResourceClass

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on ``app``.

    Call before the app first runs: Starlette copies the handler table
    when it builds the middleware stack.

    Covers handlers that submit to a queue themselves; requests gated by
    ``AdmissionMiddleware`` get their 503 from the middleware.
    """

    @app.exception_handler(QueueClosed)
    async def handle_queue_closed(request: Request, exc: QueueClosed) -> JSONResponse:
        logger.warning("Queue %s closed during %s", exc.queue, request.url.path)
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "message": "Service temporarily unavailable",
                "code": "QUEUE_CLOSED",
            },
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(UnknownResourceClass)
    async def handle_unknown_resource_class(
        request: Request, exc: UnknownResourceClass
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "message": str(exc),
                "code": "UNKNOWN_RESOURCE_CLASS",
            },
        )

