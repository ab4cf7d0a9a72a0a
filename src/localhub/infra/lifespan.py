"""Lifespan dependency injection bridge.

``inject`` lets the FastAPI lifespan declare ``Depends()`` parameters
the same way a route handler does, so each long-lived resource (the
queue registry, tracing) owns its own setup and teardown in one
generator.

Resolution runs against a synthetic ``/lifespan`` request whose scope
carries every exit stack FastAPI's dependency solver looks up, all
pointing at the one ``AsyncExitStack`` that lives as long as the app.

Based on https://github.com/fastapi/fastapi/discussions/11742
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from functools import partial
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.dependencies.utils import get_dependant, solve_dependencies
from starlette.types import Scope

logger = logging.getLogger(__name__)

LIFESPAN_PATH = "/lifespan"

# Request-scoped exit stacks across FastAPI releases; older releases
# ignore the keys they do not know.
_EXIT_STACK_KEYS = (
    "fastapi_astack",
    "fastapi_inner_astack",
    "fastapi_function_astack",
)


class LifespanDependencyError(RuntimeError):
    """A ``Depends()`` parameter of the lifespan could not be resolved."""

    def __init__(self, errors: list[Any]) -> None:
        self.errors = errors
        super().__init__(f"Lifespan dependencies failed to resolve: {errors}")


def get_app(request: Request) -> FastAPI:
    """Lifespan dependency — returns the ``FastAPI`` application."""
    return request.app


def lifespan_scope(app: FastAPI, stack: AsyncExitStack) -> Scope:
    """HTTP scope that lifespan dependencies are solved against."""
    scope: Scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": LIFESPAN_PATH,
        "raw_path": LIFESPAN_PATH.encode(),
        "query_string": b"",
        "root_path": "",
        "headers": [(b"x-request-scope", b"lifespan")],
        "client": ("localhost", 80),
        "server": ("localhost", 80),
        "state": app.state,
        "app": app,
    }
    scope.update(dict.fromkeys(_EXIT_STACK_KEYS, stack))
    return scope


def inject(
    lifespan: Callable[..., Any],
) -> Callable[[FastAPI], Any]:
    """Resolve ``Depends()`` parameters for a lifespan function.

    Usage::

        @inject
        async def lifespan(
            app: FastAPI,
            _queues: Annotated[None, Depends(build_queue_registry)],
        ):
            yield

    Cleanups run in reverse resolution order on shutdown, and
    ``app.dependency_overrides`` is honoured so tests can replace any
    lifespan dependency.

    Raises:
        LifespanDependencyError: on startup, when a dependency asks for
            something a lifespan request cannot supply (a query
            parameter, a body).
    """
    body = asynccontextmanager(lifespan)

    @asynccontextmanager
    async def wrapper(app: FastAPI):  # type: ignore[misc]
        dependant = get_dependant(path=LIFESPAN_PATH, call=partial(lifespan, app))

        async with AsyncExitStack() as stack:
            solved = await solve_dependencies(
                request=Request(lifespan_scope(app, stack)),
                dependant=dependant,
                async_exit_stack=stack,
                embed_body_fields=False,
                dependency_overrides_provider=app,
            )
            if solved.errors:
                raise LifespanDependencyError(list(solved.errors))

            logger.debug(
                "Lifespan dependencies resolved: %s",
                ", ".join(solved.values) or "(none)",
            )
            async with body(app, **solved.values):
                yield

    return wrapper
