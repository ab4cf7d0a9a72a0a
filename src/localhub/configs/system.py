from datetime import timedelta

from pydantic import BaseModel, Field, field_validator, model_validator


class ServerConfig(BaseModel):
    """Where uvicorn binds."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=5000, description="API server port")


class QueueConfig(BaseModel):
    """Admission queues, one per resource class."""

    capacities: dict[str, int] = Field(
        default_factory=lambda: {"general": 100, "upload": 20, "database": 50},
        description="Maximum concurrently executing requests per resource class",
    )
    default_class: str = Field(
        default="general",
        description="Resource class for requests that match no route prefix",
    )
    routes: dict[str, str] = Field(
        default_factory=lambda: {
            "/api/posts/upload": "upload",
            "/uploads": "upload",
            "/api/users": "database",
            "/api/ratings": "database",
        },
        description="Path prefix -> resource class (longest prefix wins)",
    )
    exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health", "/metrics"],
        description="Path prefixes that bypass admission entirely",
    )
    timeouts: dict[str, timedelta] = Field(
        default_factory=dict,
        description="Optional execution timeout per resource class",
    )
    drain_timeout: timedelta = Field(
        default=timedelta(seconds=30),
        description="How long shutdown waits for queued work to finish",
    )

    @field_validator("capacities")
    @classmethod
    def _positive_capacities(cls, value: dict[str, int]) -> dict[str, int]:
        for name, capacity in value.items():
            if capacity <= 0:
                raise ValueError(
                    f"capacity for resource class {name!r} must be > 0, got {capacity}"
                )
        return value

    @model_validator(mode="after")
    def _default_class_exists(self) -> "QueueConfig":
        if self.default_class not in self.capacities:
            raise ValueError(
                f"default_class {self.default_class!r} has no configured capacity"
            )
        return self


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=True, description="Emit JSON lines instead of coloured text"
    )


class TracingConfig(BaseModel):
    """OpenTelemetry exporter settings."""

    enabled: bool = Field(default=False, description="Enable OTLP tracing")
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    username: str = Field(default="", description="Basic-auth user for the collector")
    password: str = Field(default="", description="Basic-auth password for the collector")
    service_name: str = Field(default="localhub", description="service.name resource")
    sample_rate: float = Field(default=1.0, description="Root span sampling ratio")
    excluded_urls: list[str] = Field(
        default_factory=lambda: ["/health", "/metrics"],
        description="URLs excluded from tracing and HTTP metrics",
    )


class MetricsConfig(BaseModel):
    """Prometheus HTTP instrumentation."""

    enabled: bool = Field(default=True, description="Expose HTTP + queue metrics")
    endpoint: str = Field(default="/metrics", description="Exposition path")
