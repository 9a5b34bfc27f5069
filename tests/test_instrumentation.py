"""
Tests for provider bootstrap, flush coordination and shutdown.
"""
import logging
import time
from unittest.mock import MagicMock

import pytest
from botocore.stub import ANY, Stubber
from opentelemetry.sdk._logs.export import InMemoryLogExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from otel_dynamodb_demo.config import TelemetryConfig
from otel_dynamodb_demo.observability.hooks import DB_NAME_ATTRIBUTE, DYNAMODB_OPERATION_ATTRIBUTE
from otel_dynamodb_demo.observability.instrumentation import (
    SPAN_SCHEDULE_DELAY_MILLIS,
    TelemetryProviders,
    build_exporter_headers,
    build_log_exporter,
    build_metric_exporter,
    build_span_exporter,
    initialize_observability,
    register_instrumentations,
)
from otel_dynamodb_demo.observability.logging_config import install_otlp_log_bridge, remove_otlp_log_bridge
from otel_dynamodb_demo.observability.metering import OPERATION_COUNTER
from tests.conftest import metric_points


@pytest.fixture
def providers(telemetry_config, span_exporter, metric_reader):
    log_exporter = InMemoryLogExporter()
    handle = initialize_observability(
        telemetry_config,
        span_exporter=span_exporter,
        metric_reader=metric_reader,
        log_exporter=log_exporter,
        activate_global=False,
        instrument=False,
    )
    handle.test_log_exporter = log_exporter
    yield handle
    handle.shutdown()


def mock_providers(**overrides) -> TelemetryProviders:
    parts = {
        "resource": MagicMock(),
        "tracer_provider": MagicMock(),
        "meter_provider": MagicMock(),
        "logger_provider": MagicMock(),
    }
    parts.update(overrides)
    for name in ("tracer_provider", "meter_provider", "logger_provider"):
        if not overrides.get(name):
            parts[name].force_flush.return_value = True
    return TelemetryProviders(**parts)


@pytest.mark.unit
class TestExporterConfiguration:
    def test_basic_auth_header_from_token(self, clean_env) -> None:
        config = TelemetryConfig(_env_file=None, GRAFANA_OTEL_TOKEN="c3RhY2s6a2V5")

        assert build_exporter_headers(config) == {"Authorization": "Basic c3RhY2s6a2V5"}

    def test_no_token_no_header(self, telemetry_config) -> None:
        assert build_exporter_headers(telemetry_config) == {}

    def test_exporters_use_resolved_endpoints(self, clean_env) -> None:
        config = TelemetryConfig(
            _env_file=None,
            OTEL_EXPORTER_OTLP_ENDPOINT="https://otlp.example.com/otlp/v1/traces",
            OTEL_EXPORTER_OTLP_LOGS_ENDPOINT="https://logs.example.com/ingest",
        )

        span_exporter = build_span_exporter(config)
        metric_exporter = build_metric_exporter(config)
        log_exporter = build_log_exporter(config)

        assert span_exporter._endpoint == "https://otlp.example.com/otlp/v1/traces"
        assert metric_exporter._endpoint == "https://otlp.example.com/otlp/v1/metrics"
        assert log_exporter._endpoint == "https://logs.example.com/ingest"
        for exporter in (span_exporter, metric_exporter, log_exporter):
            assert exporter._compression.value == "gzip"
            assert exporter._timeout == 1


@pytest.mark.unit
class TestInitializeObservability:
    def test_providers_share_the_resource(self, providers, telemetry_config) -> None:
        expected = {
            "service.name": telemetry_config.service_name,
            "service.namespace": telemetry_config.service_namespace,
            "service.version": telemetry_config.service_version,
            "deployment.environment": telemetry_config.environment,
        }

        assert dict(providers.tracer_provider.resource.attributes) == expected
        assert providers.resource is providers.tracer_provider.resource

    def test_always_samples(self, providers) -> None:
        assert providers.tracer_provider.sampler is ALWAYS_ON

    def test_span_export_is_flush_driven(self, providers, span_exporter) -> None:
        assert SPAN_SCHEDULE_DELAY_MILLIS == 60_000

        with providers.get_tracer("tests").start_as_current_span("unit-of-work"):
            pass

        assert span_exporter.get_finished_spans() == ()
        assert providers.force_flush_sync() is True
        assert [s.name for s in span_exporter.get_finished_spans()] == ["unit-of-work"]

    def test_metrics_flow_through_meter(self, providers, metric_reader) -> None:
        providers.get_meter("tests").create_counter(OPERATION_COUNTER).add(1, {"operation": "Scan"})

        assert metric_points(metric_reader)[OPERATION_COUNTER][0].value == 1

    def test_log_bridge_exports_records(self, providers) -> None:
        install_otlp_log_bridge(providers.logger_provider)
        try:
            logging.getLogger("otel_dynamodb_demo.tests").warning("bridge check")
            providers.force_flush_sync()
        finally:
            remove_otlp_log_bridge()

        bodies = [entry.log_record.body for entry in providers.test_log_exporter.get_finished_logs()]
        assert "bridge check" in bodies

    def test_log_bridge_skips_telemetry_internals(self, providers) -> None:
        install_otlp_log_bridge(providers.logger_provider)
        try:
            logging.getLogger("opentelemetry.sdk.trace").warning("sdk noise")
            providers.force_flush_sync()
        finally:
            remove_otlp_log_bridge()

        bodies = [entry.log_record.body for entry in providers.test_log_exporter.get_finished_logs()]
        assert "sdk noise" not in bodies


@pytest.mark.unit
class TestFlushAndShutdown:
    def test_flush_order_and_timeout(self) -> None:
        handle = mock_providers()

        assert handle.force_flush_sync(250) is True
        handle.tracer_provider.force_flush.assert_called_once_with(250)
        handle.meter_provider.force_flush.assert_called_once_with(250)
        handle.logger_provider.force_flush.assert_called_once_with(250)

    def test_flush_errors_are_swallowed(self) -> None:
        tracer_provider = MagicMock()
        tracer_provider.force_flush.side_effect = RuntimeError("exporter exploded")
        handle = mock_providers(tracer_provider=tracer_provider)

        assert handle.force_flush_sync() is False
        # The other providers are still flushed
        handle.meter_provider.force_flush.assert_called_once()
        handle.logger_provider.force_flush.assert_called_once()

    def test_incomplete_flush_reports_false(self) -> None:
        meter_provider = MagicMock()
        meter_provider.force_flush.return_value = False
        handle = mock_providers(meter_provider=meter_provider)

        assert handle.force_flush_sync() is False

    @pytest.mark.asyncio
    async def test_async_flush(self) -> None:
        handle = mock_providers()

        assert await handle.force_flush() is True

    def test_shutdown_swallows_errors(self) -> None:
        tracer_provider = MagicMock()
        tracer_provider.shutdown.side_effect = RuntimeError("already gone")
        handle = mock_providers(tracer_provider=tracer_provider)

        assert handle.shutdown(timeout_seconds=1) is False
        handle.meter_provider.shutdown.assert_called_once_with()
        handle.logger_provider.shutdown.assert_called_once_with()

    def test_shutdown_is_bounded(self) -> None:
        tracer_provider = MagicMock()
        tracer_provider.shutdown.side_effect = lambda: time.sleep(2)
        handle = mock_providers(tracer_provider=tracer_provider)

        started = time.monotonic()
        assert handle.shutdown(timeout_seconds=0.05) is False
        assert time.monotonic() - started < 1.5

    def test_shutdown_runs_once(self) -> None:
        handle = mock_providers()

        assert handle.shutdown(timeout_seconds=1) is True
        assert handle.shutdown(timeout_seconds=1) is True
        handle.tracer_provider.shutdown.assert_called_once_with()

    def test_shutdown_uninstruments(self) -> None:
        instrumentor = MagicMock()
        handle = mock_providers()
        handle.instrumentors = [instrumentor]

        handle.shutdown(timeout_seconds=1)

        instrumentor.uninstrument.assert_called_once_with()


@pytest.mark.integration
def test_botocore_spans_are_enriched(telemetry_config, tracer_provider, span_exporter, dynamodb_client) -> None:
    instrumentors = register_instrumentations(telemetry_config, tracer_provider)
    try:
        with Stubber(dynamodb_client) as stubber:
            stubber.add_response("put_item", {}, {"TableName": "otel-demo-items", "Item": ANY})
            dynamodb_client.put_item(TableName="otel-demo-items", Item={"id": {"S": "item-1"}})
    finally:
        for instrumentor in instrumentors:
            instrumentor.uninstrument()

    aws_spans = [s for s in span_exporter.get_finished_spans() if DYNAMODB_OPERATION_ATTRIBUTE in s.attributes]
    assert len(aws_spans) == 1
    assert aws_spans[0].attributes[DYNAMODB_OPERATION_ATTRIBUTE] == "PutItem"
    assert aws_spans[0].attributes[DB_NAME_ATTRIBUTE] == "otel-demo-items"
