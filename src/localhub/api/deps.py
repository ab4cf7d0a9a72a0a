"""Centralized FastAPI dependency type aliases.

Each alias maps to a single ``get_*`` factory that tests can override
via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from localhub.configs.config import AppConfig, get_app_config
from localhub.infra.concurrency.registry import QueueRegistry, get_queue_registry

AppConfigDep = Annotated[AppConfig, Depends(get_app_config)]
QueueRegistryDep = Annotated[QueueRegistry, Depends(get_queue_registry)]
