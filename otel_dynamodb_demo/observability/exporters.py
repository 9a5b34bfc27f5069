"""
Result-logging exporter adapters.

Each adapter sits in front of a real OTLP exporter, exposes the same
interface, and logs a warning whenever an export does not succeed. The
result is passed back to the SDK processor unchanged, so batching and
retry behaviour stay exactly as the SDK implements them.

FAILURE MODE:
Grafana/collector outages show up as warnings in the console log. They never
reach the DynamoDB workload: an exception raised by the wrapped exporter is
logged and converted into a FAILURE result.

These loggers are excluded from the OTLP log bridge (see logging_config), so
a failing log export cannot feed itself.
"""
from typing import Any, Optional, Sequence

import structlog
from opentelemetry.sdk._logs.export import LogExportResult
from opentelemetry.sdk.metrics.export import MetricExporter, MetricExportResult, MetricsData
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

try:
    from opentelemetry.sdk._logs.export import LogRecordExporter
except ImportError:  # SDK releases before LogExporter was renamed
    from opentelemetry.sdk._logs.export import LogExporter as LogRecordExporter

logger = structlog.get_logger(__name__)


def _log_failed_export(signal: str, code: Any, batch_size: Optional[int] = None) -> None:
    logger.warning(
        "telemetry_export_failed",
        signal=signal,
        code=getattr(code, "name", str(code)),
        batch_size=batch_size,
    )


def _log_export_error(signal: str, exc: Exception) -> None:
    logger.warning(
        "telemetry_export_error",
        signal=signal,
        error=str(exc),
        error_type=type(exc).__name__,
    )


class ResultLoggingSpanExporter(SpanExporter):
    """SpanExporter that delegates to ``delegate`` and reports failed exports."""

    signal = "trace"

    def __init__(self, delegate: SpanExporter):
        self.delegate = delegate

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            result = self.delegate.export(spans)
        except Exception as exc:
            _log_export_error(self.signal, exc)
            return SpanExportResult.FAILURE
        if result is not SpanExportResult.SUCCESS:
            _log_failed_export(self.signal, result, len(spans))
        return result

    def shutdown(self) -> None:
        self.delegate.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.delegate.force_flush(timeout_millis)


class ResultLoggingMetricExporter(MetricExporter):
    """MetricExporter adapter; keeps the delegate's temporality and aggregation preferences."""

    signal = "metric"

    def __init__(self, delegate: MetricExporter):
        super().__init__(
            preferred_temporality=delegate._preferred_temporality,
            preferred_aggregation=delegate._preferred_aggregation,
        )
        self.delegate = delegate

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10_000,
        **kwargs: Any,
    ) -> MetricExportResult:
        try:
            result = self.delegate.export(metrics_data, timeout_millis=timeout_millis, **kwargs)
        except Exception as exc:
            _log_export_error(self.signal, exc)
            return MetricExportResult.FAILURE
        if result is not MetricExportResult.SUCCESS:
            _log_failed_export(self.signal, result)
        return result

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return self.delegate.force_flush(timeout_millis=timeout_millis)

    def shutdown(self, timeout_millis: float = 30_000, **kwargs: Any) -> None:
        self.delegate.shutdown(timeout_millis=timeout_millis, **kwargs)


class ResultLoggingLogExporter(LogRecordExporter):
    """LogRecordExporter adapter."""

    signal = "log"

    def __init__(self, delegate: LogRecordExporter):
        self.delegate = delegate

    def export(self, batch: Sequence[Any]) -> LogExportResult:
        try:
            result = self.delegate.export(batch)
        except Exception as exc:
            _log_export_error(self.signal, exc)
            return LogExportResult.FAILURE
        if result is not LogExportResult.SUCCESS:
            _log_failed_export(self.signal, result, len(batch))
        return result

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        force_flush = getattr(self.delegate, "force_flush", None)
        if force_flush is None:
            return True
        return force_flush(timeout_millis)

    def shutdown(self) -> None:
        self.delegate.shutdown()
