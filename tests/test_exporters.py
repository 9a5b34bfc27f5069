"""
Tests for the result-logging exporter adapters.

The adapters must return the delegate's result unchanged, log anything that
is not SUCCESS, and never let an exporter exception escape.
"""
import warnings
from unittest.mock import MagicMock

import pytest
from opentelemetry.sdk._logs.export import LogExportResult
from opentelemetry.sdk.metrics.export import MetricExporter, MetricExportResult
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from structlog.testing import capture_logs

from otel_dynamodb_demo.observability.exporters import (
    LogRecordExporter,
    ResultLoggingLogExporter,
    ResultLoggingMetricExporter,
    ResultLoggingSpanExporter,
)


def metric_delegate() -> MagicMock:
    delegate = MagicMock(spec=MetricExporter)
    delegate._preferred_temporality = {}
    delegate._preferred_aggregation = {}
    return delegate


@pytest.mark.unit
class TestResultLoggingSpanExporter:
    def test_success_passes_through_silently(self) -> None:
        delegate = MagicMock(spec=SpanExporter)
        delegate.export.return_value = SpanExportResult.SUCCESS
        exporter = ResultLoggingSpanExporter(delegate)

        with capture_logs() as logs:
            result = exporter.export(["span"])

        assert result is SpanExportResult.SUCCESS
        delegate.export.assert_called_once_with(["span"])
        assert logs == []

    def test_failure_is_logged_and_returned(self) -> None:
        delegate = MagicMock(spec=SpanExporter)
        delegate.export.return_value = SpanExportResult.FAILURE
        exporter = ResultLoggingSpanExporter(delegate)

        with capture_logs() as logs:
            result = exporter.export(["a", "b"])

        assert result is SpanExportResult.FAILURE
        assert logs[0]["event"] == "telemetry_export_failed"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["signal"] == "trace"
        assert logs[0]["code"] == "FAILURE"
        assert logs[0]["batch_size"] == 2

    def test_exception_becomes_failure(self) -> None:
        delegate = MagicMock(spec=SpanExporter)
        delegate.export.side_effect = ConnectionError("collector down")
        exporter = ResultLoggingSpanExporter(delegate)

        with capture_logs() as logs:
            result = exporter.export(["span"])

        assert result is SpanExportResult.FAILURE
        assert logs[0]["event"] == "telemetry_export_error"
        assert logs[0]["error"] == "collector down"

    def test_flush_and_shutdown_delegate(self) -> None:
        delegate = MagicMock(spec=SpanExporter)
        delegate.force_flush.return_value = True
        exporter = ResultLoggingSpanExporter(delegate)

        assert exporter.force_flush(500) is True
        exporter.shutdown()

        delegate.force_flush.assert_called_once_with(500)
        delegate.shutdown.assert_called_once_with()


@pytest.mark.unit
class TestResultLoggingMetricExporter:
    def test_failure_is_logged(self) -> None:
        delegate = metric_delegate()
        delegate.export.return_value = MetricExportResult.FAILURE
        exporter = ResultLoggingMetricExporter(delegate)

        with capture_logs() as logs:
            result = exporter.export(MagicMock(), timeout_millis=1000)

        assert result is MetricExportResult.FAILURE
        assert logs[0]["signal"] == "metric"

    def test_success_is_silent(self) -> None:
        delegate = metric_delegate()
        delegate.export.return_value = MetricExportResult.SUCCESS
        exporter = ResultLoggingMetricExporter(delegate)

        with capture_logs() as logs:
            assert exporter.export(MagicMock()) is MetricExportResult.SUCCESS

        assert logs == []

    def test_exception_becomes_failure(self) -> None:
        delegate = metric_delegate()
        delegate.export.side_effect = RuntimeError("boom")
        exporter = ResultLoggingMetricExporter(delegate)

        with capture_logs():
            assert exporter.export(MagicMock()) is MetricExportResult.FAILURE


@pytest.mark.unit
class TestResultLoggingLogExporter:
    def test_failure_is_logged(self) -> None:
        delegate = MagicMock(spec=LogRecordExporter)
        delegate.export.return_value = LogExportResult.FAILURE
        exporter = ResultLoggingLogExporter(delegate)

        with capture_logs() as logs:
            result = exporter.export(["record"])

        assert result is LogExportResult.FAILURE
        assert logs[0]["signal"] == "log"
        assert logs[0]["batch_size"] == 1

    def test_exception_becomes_failure(self) -> None:
        delegate = MagicMock(spec=LogRecordExporter)
        delegate.export.side_effect = TimeoutError("slow")
        exporter = ResultLoggingLogExporter(delegate)

        with capture_logs():
            assert exporter.export(["record"]) is LogExportResult.FAILURE

    def test_uses_current_exporter_interface(self) -> None:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            exporter = ResultLoggingLogExporter(MagicMock(spec=LogRecordExporter))

        assert isinstance(exporter, LogRecordExporter)
        assert not [w for w in caught if issubclass(w.category, DeprecationWarning)]
