"""FastAPI application entry point."""

import logging
import time
from typing import Annotated, AsyncGenerator

from fastapi import Depends, FastAPI

from localhub import __version__
from localhub.api.exceptions import register_exception_handlers
from localhub.api.health import router as health_router
from localhub.configs.config import AppConfig, get_app_config
from localhub.core.metrics import instrument_app
from localhub.infra.concurrency.middleware import AdmissionMiddleware
from localhub.infra.concurrency.registry import build_queue_registry
from localhub.infra.lifespan import inject
from localhub.infra.logging import setup_logging
from localhub.infra.telemetry import build_telemetry, init_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _telemetry: Annotated[None, Depends(build_telemetry)],
    _queues: Annotated[None, Depends(build_queue_registry)],
) -> AsyncGenerator[None, None]:
    """Startup/shutdown is owned by the lifespan dependencies above.

    Teardown runs in reverse: the queue registry drains before tracing
    is flushed.
    """
    logger.info("LocalHub started")
    yield
    logger.info("LocalHub shutting down")


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    When *config* is given it replaces ``get_app_config`` for every
    dependency, the lifespan ones included.
    """
    if config is None:
        config = get_app_config()

    app = FastAPI(
        title="LocalHub",
        description="Classifieds marketplace API with per-resource admission queues",
        version=__version__,
        lifespan=lifespan,
    )
    app.dependency_overrides[get_app_config] = lambda: config
    app.state.started_at = time.monotonic()

    register_exception_handlers(app)
    app.add_middleware(AdmissionMiddleware, config=config.queues)
    instrument_app(app, config)
    init_telemetry(app, config.tracing)

    app.include_router(health_router)

    return app


def main() -> None:
    """Run the service with uvicorn (``python -m localhub``)."""
    import uvicorn

    config = get_app_config()
    setup_logging(config.logging)
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )
