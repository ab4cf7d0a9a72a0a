"""OpenTelemetry bootstrap — tracing initialisation and span names.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing is
enabled via ``TracingConfig``.  When disabled the module is a graceful
no-op and ``tracer`` hands out non-recording spans.

``init_telemetry`` runs while the app is built (the FastAPI
instrumentation adds middleware); ``build_telemetry`` is the lifespan
dependency that flushes spans on shutdown.

Usage::

    from localhub.infra.telemetry import SPAN_QUEUE_ADMISSION, tracer

    with tracer.start_as_current_span(SPAN_QUEUE_ADMISSION) as span:
        span.set_attribute(ATTR_QUEUE_NAME, "upload")
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry import trace

from localhub.configs.config import AppConfig, get_app_config
from localhub.configs.system import TracingConfig

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("localhub")

# ---------------------------------------------------------------------------
# Span names and attribute keys
# ---------------------------------------------------------------------------

SPAN_QUEUE_ADMISSION = "queue.admission"

ATTR_QUEUE_NAME = "queue.name"
ATTR_QUEUE_WAITED = "queue.waited"
ATTR_QUEUE_REJECTED = "queue.rejected"
ATTR_QUEUE_TIMED_OUT = "queue.timed_out"


def init_telemetry(
    app: FastAPI | None = None,
    settings: TracingConfig | None = None,
) -> bool:
    """Initialise the OTEL ``TracerProvider`` and FastAPI instrumentation.

    Returns ``True`` when tracing was switched on.
    """
    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return False

    if not settings.endpoint or not settings.username or not settings.password:
        logger.warning(
            "Tracing enabled but endpoint/credentials not configured, "
            "skipping OpenTelemetry setup."
        )
        return False

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})
    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)

    credentials = f"{settings.username}:{settings.password}"
    encoded = base64.b64encode(credentials.encode()).decode()

    exporter = OTLPSpanExporter(
        endpoint=settings.endpoint,
        headers={"Authorization": f"Basic {encoded}"},
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        excluded = ",".join(settings.excluded_urls) if settings.excluded_urls else ""
        FastAPIInstrumentor.instrument_app(app, excluded_urls=excluded)

    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )
    return True


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_telemetry(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Flush and stop the SDK tracer provider on shutdown."""
    yield
    if not config.tracing.enabled:
        return
    # The no-op proxy provider has no ``shutdown``.
    shutdown = getattr(trace.get_tracer_provider(), "shutdown", None)
    if shutdown is not None:
        shutdown()
        logger.info("OpenTelemetry tracer provider shut down.")
