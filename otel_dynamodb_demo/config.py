"""
Configuration management for the DynamoDB OpenTelemetry demo.

Everything the process needs is read from environment variables (or a local
``.env`` file) exactly once at start-up and frozen afterwards. Two models are
exposed:

- ``TelemetryConfig``: service identity + OTLP exporter settings
- ``DemoSettings``: DynamoDB target and loop pacing

Only the documented variable names are read (``OTEL_SERVICE_NAME``,
``DYNAMODB_TABLE``, ...); constructor keywords use the same names.

Malformed values never abort start-up: they fall back to the documented
default and a warning is logged.
"""
from functools import lru_cache
from typing import Any, Optional

import structlog
from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

DEFAULT_SERVICE_NAME = "otel-dynamodb-demo"
DEFAULT_EXPORTER_ENDPOINT = "http://localhost:4318/v1/traces"
DEFAULT_TABLE_NAME = "otel-demo-items"
DEFAULT_REGION = "us-east-1"
DEFAULT_INTERVAL_MS = 10_000
DEFAULT_MAX_ITERATIONS = 0

AUTHORIZATION_MARKER = "Authorization"


def extract_authorization_token(headers: Optional[str]) -> Optional[str]:
    """
    Pull the credential out of an ``OTEL_EXPORTER_OTLP_HEADERS`` style string.

    Only ``Authorization=<value>`` is understood. Everything after the first
    ``Authorization=`` is taken as the value, so a value that itself contains
    ``=`` or further comma-separated headers is kept whole (no quoting rules).

    Args:
        headers: Raw header string, e.g. ``"Authorization=abc123"``

    Returns:
        The stripped token, or None when no Authorization header is present
    """
    if not headers or AUTHORIZATION_MARKER not in headers:
        return None
    _, sep, value = headers.partition(f"{AUTHORIZATION_MARKER}=")
    if not sep:
        return None
    return value.strip() or None


def _env_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() == "true"


def _lenient_int(value: Any, default: int, field_name: str) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning("config_value_invalid", field=field_name, value=str(value), default=default)
        return default
    if parsed < 0:
        logger.warning("config_value_negative", field=field_name, value=parsed, default=default)
        return default
    return parsed


class TelemetryConfig(BaseSettings):
    """Service identity and OTLP exporter settings."""

    service_name: str = Field(
        default=DEFAULT_SERVICE_NAME,
        validation_alias="OTEL_SERVICE_NAME",
        description="service.name resource attribute",
    )
    service_namespace: str = Field(
        default="demo",
        validation_alias="OTEL_SERVICE_NAMESPACE",
        description="service.namespace resource attribute",
    )
    service_version: str = Field(
        default="1.0.0",
        validation_alias="OTEL_SERVICE_VERSION",
        description="service.version resource attribute",
    )
    environment: str = Field(
        default="development",
        validation_alias="OTEL_ENVIRONMENT",
        description="deployment.environment resource attribute",
    )

    # Base endpoint is trace-shaped (…/v1/traces); metric and log URLs are derived from it
    exporter_endpoint: str = Field(
        default=DEFAULT_EXPORTER_ENDPOINT,
        validation_alias=AliasChoices("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_ENDPOINT"),
        description="Base OTLP/HTTP endpoint",
    )
    metrics_endpoint: Optional[str] = Field(
        default=None,
        validation_alias="OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
        description="Explicit metrics endpoint (wins over the derived one)",
    )
    logs_endpoint: Optional[str] = Field(
        default=None,
        validation_alias="OTEL_EXPORTER_OTLP_LOGS_ENDPOINT",
        description="Explicit logs endpoint (wins over the derived one)",
    )

    otlp_headers: Optional[str] = Field(
        default=None,
        validation_alias="OTEL_EXPORTER_OTLP_HEADERS",
        description="Raw OTLP header string; only Authorization=... is used",
    )
    grafana_otel_token: Optional[str] = Field(
        default=None,
        validation_alias="GRAFANA_OTEL_TOKEN",
        description="Fallback credential when no Authorization header is configured",
    )

    debug_enabled: bool = Field(
        default=False,
        validation_alias="OTEL_DEBUG",
        description="Verbose diagnostic logging (\"true\" in any case enables it)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("debug_enabled", mode="before")
    @classmethod
    def parse_debug_flag(cls, v: Any) -> bool:
        return _env_flag(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exporter_token(self) -> Optional[str]:
        """Credential for the exporter Authorization header, if any."""
        if self.otlp_headers and AUTHORIZATION_MARKER in self.otlp_headers:
            return extract_authorization_token(self.otlp_headers)
        return self.grafana_otel_token or None


class DemoSettings(BaseSettings):
    """Workload target and loop pacing."""

    table_name: str = Field(
        default=DEFAULT_TABLE_NAME,
        validation_alias=AliasChoices("DYNAMODB_TABLE", "TABLE_NAME"),
        description="DynamoDB table used by the demo",
    )
    region: str = Field(
        default=DEFAULT_REGION,
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION"),
        description="AWS region of the table",
    )
    interval_ms: int = Field(
        default=DEFAULT_INTERVAL_MS,
        validation_alias="DEMO_INTERVAL_MS",
        description="Pause between iterations in milliseconds",
    )
    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        validation_alias="DEMO_ITERATIONS",
        description="Number of iterations to run (0 = until stopped)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("interval_ms", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> int:
        return _lenient_int(v, DEFAULT_INTERVAL_MS, "interval_ms")

    @field_validator("max_iterations", mode="before")
    @classmethod
    def parse_iterations(cls, v: Any) -> int:
        return _lenient_int(v, DEFAULT_MAX_ITERATIONS, "max_iterations")

    @property
    def is_bounded(self) -> bool:
        return self.max_iterations > 0


@lru_cache()
def get_telemetry_config() -> TelemetryConfig:
    """
    Get cached telemetry configuration.

    Uses lru_cache so the environment is only read once per process.
    """
    return TelemetryConfig()


@lru_cache()
def get_demo_settings() -> DemoSettings:
    """Get cached demo settings."""
    return DemoSettings()
