"""LocalHub backend: admission-controlled FastAPI service."""

__version__ = "0.1.0"
