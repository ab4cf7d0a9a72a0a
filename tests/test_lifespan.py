"""Tests for the ``inject`` lifespan bridge and the application lifespan."""

# Annotations stay evaluated here: FastAPI resolves the lifespan's
# ``Annotated`` hints through a ``functools.partial``.

from typing import Annotated, AsyncGenerator

import pytest
from fastapi import Depends, FastAPI, Request

from localhub.app import create_app
from localhub.infra.concurrency import QueueRegistry
from localhub.infra.lifespan import (
    LIFESPAN_PATH,
    LifespanDependencyError,
    get_app,
    inject,
)

# =========================================================================
# Lifespan dependencies used by the tests below
# =========================================================================


async def build_store(
    app: Annotated[FastAPI, Depends(get_app)],
) -> AsyncGenerator[str, None]:
    app.state.events.append("store:start")
    yield "store"
    app.state.events.append("store:stop")


async def build_worker(
    app: Annotated[FastAPI, Depends(get_app)],
    store: Annotated[str, Depends(build_store)],
) -> AsyncGenerator[None, None]:
    app.state.events.append(f"worker:start({store})")
    yield
    app.state.events.append("worker:stop")


async def fake_store(
    app: Annotated[FastAPI, Depends(get_app)],
) -> AsyncGenerator[str, None]:
    app.state.events.append("fake:start")
    yield "fake"
    app.state.events.append("fake:stop")


def capture_scope(request: Request) -> None:
    request.app.state.scope = dict(request.scope)


async def needs_query(limit: int) -> AsyncGenerator[int, None]:
    yield limit


@inject
async def worker_lifespan(
    app: FastAPI,
    _worker: Annotated[None, Depends(build_worker)],
) -> AsyncGenerator[None, None]:
    app.state.events.append("body:start")
    yield
    app.state.events.append("body:stop")


@inject
async def scope_lifespan(
    app: FastAPI,
    _scope: Annotated[None, Depends(capture_scope)],
) -> AsyncGenerator[None, None]:
    yield


@inject
async def unsatisfiable_lifespan(
    app: FastAPI,
    _limit: Annotated[int, Depends(needs_query)],
) -> AsyncGenerator[None, None]:
    yield


def _app(lifespan) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.events = []
    return app


# =========================================================================
# inject
# =========================================================================


class TestInject:
    @pytest.mark.asyncio
    async def test_dependencies_start_in_order_and_stop_in_reverse(self):
        app = _app(worker_lifespan)

        async with app.router.lifespan_context(app):
            assert app.state.events == [
                "store:start",
                "worker:start(store)",
                "body:start",
            ]

        assert app.state.events[3:] == ["body:stop", "worker:stop", "store:stop"]

    @pytest.mark.asyncio
    async def test_dependency_overrides_apply(self):
        app = _app(worker_lifespan)
        app.dependency_overrides[build_store] = fake_store

        async with app.router.lifespan_context(app):
            assert app.state.events[:2] == ["fake:start", "worker:start(fake)"]

        assert app.state.events[-1] == "fake:stop"

    @pytest.mark.asyncio
    async def test_scope_carries_every_exit_stack(self):
        app = _app(scope_lifespan)

        async with app.router.lifespan_context(app):
            scope = app.state.scope

        assert scope["path"] == LIFESPAN_PATH
        assert scope["app"] is app
        stacks = {
            scope["fastapi_astack"],
            scope["fastapi_inner_astack"],
            scope["fastapi_function_astack"],
        }
        assert len(stacks) == 1

    @pytest.mark.asyncio
    async def test_unresolvable_dependency_fails_startup(self):
        app = _app(unsatisfiable_lifespan)

        with pytest.raises(LifespanDependencyError) as exc_info:
            async with app.router.lifespan_context(app):
                pass
        assert exc_info.value.errors


# =========================================================================
# Application lifespan
# =========================================================================


class TestAppLifespan:
    @pytest.mark.asyncio
    async def test_startup_builds_registry_and_shutdown_drains_it(self, make_config):
        app = create_app(make_config())

        async with app.router.lifespan_context(app):
            registry = app.state.queue_registry
            assert isinstance(registry, QueueRegistry)
            assert sorted(registry) == ["database", "general", "upload"]
            assert not registry.closed

        assert registry.closed
        assert all(s.in_flight == 0 and s.pending == 0 for s in registry.stats())
