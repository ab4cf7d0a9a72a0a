"""Shared fixtures: app configuration, an in-process HTTP client, spans and logging."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

from localhub.configs.config import AppConfig


@pytest.fixture(scope="session")
def tracer_provider() -> TracerProvider:
    """SDK provider installed globally once; the global can be set only once."""
    provider = TracerProvider()
    trace.set_tracer_provider(provider)
    return provider


@pytest.fixture
def span_exporter(tracer_provider: TracerProvider) -> Iterator[InMemorySpanExporter]:
    """Collect the spans finished during one test."""
    exporter = InMemorySpanExporter()
    processor = SimpleSpanProcessor(exporter)
    tracer_provider.add_span_processor(processor)
    yield exporter
    processor.shutdown()


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Put back the handlers and levels ``setup_logging`` replaces."""
    names = ("", "uvicorn", "uvicorn.error", "uvicorn.access")
    saved = {
        name: (
            logging.getLogger(name).handlers[:],
            logging.getLogger(name).level,
            logging.getLogger(name).propagate,
        )
        for name in names
    }
    yield
    for name, (handlers, level, propagate) in saved.items():
        logger = logging.getLogger(name)
        logger.handlers = handlers
        logger.setLevel(level)
        logger.propagate = propagate


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    """Build an ``AppConfig`` with Prometheus off unless asked for.

    The instrumentator registers its HTTP metrics in the global
    registry, so only one app per test session may enable it.
    """

    def _make(**overrides: Any) -> AppConfig:
        overrides.setdefault("metrics", {"enabled": False})
        overrides.setdefault("logging", {"json_output": False})
        return AppConfig(**overrides)

    return _make


@pytest.fixture
def serve() -> Callable[..., Any]:
    """Run *app*'s lifespan and yield an ``httpx.AsyncClient`` bound to it."""

    @asynccontextmanager
    async def _serve(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
            async with httpx.AsyncClient(
                transport=transport, base_url="http://localhub.test"
            ) as client:
                yield client

    return _serve
