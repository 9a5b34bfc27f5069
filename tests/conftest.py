"""
Pytest configuration and fixtures for the DynamoDB OpenTelemetry demo.

No test talks to a real collector or to AWS: spans and metrics go to the
SDK's in-memory exporter/reader and DynamoDB is stubbed with botocore's
Stubber.
"""
from typing import Any, Dict, List

import boto3
import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from otel_dynamodb_demo.config import TelemetryConfig

TELEMETRY_ENV_VARS = (
    "OTEL_SERVICE_NAME",
    "OTEL_SERVICE_NAMESPACE",
    "OTEL_SERVICE_VERSION",
    "OTEL_ENVIRONMENT",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_EXPORTER_ENDPOINT",
    "OTEL_EXPORTER_OTLP_LOGS_ENDPOINT",
    "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
    "OTEL_EXPORTER_OTLP_HEADERS",
    "GRAFANA_OTEL_TOKEN",
    "OTEL_DEBUG",
    "DYNAMODB_TABLE",
    "TABLE_NAME",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "DEMO_INTERVAL_MS",
    "DEMO_ITERATIONS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Environment with none of the demo's variables set."""
    for name in TELEMETRY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def telemetry_config(clean_env: pytest.MonkeyPatch) -> TelemetryConfig:
    """Default telemetry configuration (no env, no .env file)."""
    return TelemetryConfig(_env_file=None)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    provider = MeterProvider(metric_readers=[metric_reader])
    yield provider
    provider.shutdown()


@pytest.fixture
def meter(meter_provider: MeterProvider) -> Any:
    return meter_provider.get_meter("tests")


@pytest.fixture
def dynamodb_client() -> Any:
    """Real botocore client with dummy credentials; pair it with a Stubber."""
    return boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def metric_points(reader: InMemoryMetricReader) -> Dict[str, List[Any]]:
    """Collect the reader and index data points by metric name."""
    points: Dict[str, List[Any]] = {}
    data = reader.get_metrics_data()
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points.setdefault(metric.name, []).extend(metric.data.data_points)
    return points
