"""
OpenTelemetry provider bootstrap.

Builds one provider per signal, all sharing the same Resource:

- TRACES:  TracerProvider -> BatchSpanProcessor -> OTLP/HTTP span exporter
- METRICS: MeterProvider -> PeriodicExportingMetricReader (10s) -> OTLP/HTTP metric exporter
- LOGS:    LoggerProvider -> BatchLogRecordProcessor -> OTLP/HTTP log exporter

and registers the auto-instrumentation for the AWS SDK (botocore) and the
HTTP clients (requests, urllib3).

CRITICAL: Flush-driven trace export
-----------------------------------
The span processor's scheduled delay is 60s, far longer than one demo
iteration. Spans therefore leave the process when the demo loop calls
``TelemetryProviders.force_flush()`` after each iteration, not on a timer.
Every flush is bounded (1s per provider); a stalled collector costs one
failed flush and a warning, never a hung loop.

FAILURE MODE:
A malformed endpoint degrades to the unmodified URL (see endpoints.py) and
export failures are logged by the result-logging adapters. Nothing in here
raises into the demo once the providers exist.

The providers are returned as an explicit ``TelemetryProviders`` object and
passed to whoever needs to emit telemetry or flush. They are also installed
as the OpenTelemetry globals so instrumentation libraries pick them up.
"""
import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http import Compression
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.instrumentation.urllib3 import URLLib3Instrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from otel_dynamodb_demo.config import TelemetryConfig
from otel_dynamodb_demo.observability.endpoints import Signal, resolve_endpoint
from otel_dynamodb_demo.observability.exporters import (
    LogRecordExporter,
    ResultLoggingLogExporter,
    ResultLoggingMetricExporter,
    ResultLoggingSpanExporter,
)
from otel_dynamodb_demo.observability.hooks import OutgoingCallFilter, enrich_dynamodb_span
from otel_dynamodb_demo.observability.resource import create_resource

logger = structlog.get_logger(__name__)

# Exporter network timeout (seconds)
EXPORT_TIMEOUT_SECONDS = 1

# Span batching: effectively "export on force_flush only"
SPAN_MAX_QUEUE_SIZE = 2048
SPAN_MAX_EXPORT_BATCH_SIZE = 500
SPAN_SCHEDULE_DELAY_MILLIS = 60_000
SPAN_EXPORT_TIMEOUT_MILLIS = 1_000

METRIC_EXPORT_INTERVAL_MILLIS = 10_000

# Per-provider flush timeout, and the overall bound for one flush round
FLUSH_TIMEOUT_MILLIS = 1_000
FLUSH_DEADLINE_SECONDS = 5.0

SHUTDOWN_TIMEOUT_SECONDS = 5.0


def build_exporter_headers(config: TelemetryConfig) -> Dict[str, str]:
    """Authorization header for the OTLP exporters (empty when no token is configured)."""
    token = config.exporter_token
    if not token:
        return {}
    return {"Authorization": f"Basic {token}"}


@dataclass
class TelemetryProviders:
    """
    Handle on the three providers plus the instrumentors registered with them.

    Constructed once by ``initialize_observability`` and passed by reference to
    the workload (for tracers/meters) and the demo loop (for flushing).
    """

    resource: Resource
    tracer_provider: TracerProvider
    meter_provider: MeterProvider
    logger_provider: LoggerProvider
    instrumentors: List[Any] = field(default_factory=list)
    _shut_down: bool = field(default=False, init=False, repr=False)

    def get_tracer(self, name: str) -> trace.Tracer:
        return self.tracer_provider.get_tracer(name)

    def get_meter(self, name: str) -> metrics.Meter:
        return self.meter_provider.get_meter(name)

    def _providers(self) -> List[Tuple[str, Any]]:
        return [
            (Signal.TRACE.value, self.tracer_provider),
            (Signal.METRIC.value, self.meter_provider),
            (Signal.LOG.value, self.logger_provider),
        ]

    def activate_global(self) -> None:
        """Install the providers as the OpenTelemetry process-wide defaults."""
        trace.set_tracer_provider(self.tracer_provider)
        metrics.set_meter_provider(self.meter_provider)
        set_logger_provider(self.logger_provider)

    def force_flush_sync(self, timeout_millis: int = FLUSH_TIMEOUT_MILLIS) -> bool:
        """
        Flush traces, then metrics, then logs; each bounded by ``timeout_millis``.

        Returns:
            True only if all three providers reported a complete flush
        """
        flushed = True
        for signal, provider in self._providers():
            try:
                ok = provider.force_flush(timeout_millis)
            except Exception as e:
                logger.warning("telemetry_flush_error", signal=signal, error=str(e))
                flushed = False
                continue
            if ok is False:
                logger.warning("telemetry_flush_incomplete", signal=signal, timeout_millis=timeout_millis)
                flushed = False
        return flushed

    async def force_flush(self, timeout_millis: int = FLUSH_TIMEOUT_MILLIS) -> bool:
        """
        Best-effort flush from async code.

        The blocking SDK flush runs in a worker thread so the event loop stays
        responsive; the whole round is bounded by ``FLUSH_DEADLINE_SECONDS``.
        A timeout counts as a failed flush, never as an error.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.force_flush_sync, timeout_millis),
                timeout=FLUSH_DEADLINE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("telemetry_flush_timeout", deadline_seconds=FLUSH_DEADLINE_SECONDS)
            return False

    def shutdown(self, timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS) -> bool:
        """
        Bounded graceful shutdown: uninstrument, then shut the providers down
        (trace provider first). Errors are logged and swallowed.

        Each provider gets ``timeout_seconds``; a provider that does not finish
        in time is abandoned on a daemon thread so process exit is never blocked.

        Returns:
            True if every provider shut down cleanly in time
        """
        if self._shut_down:
            return True
        self._shut_down = True

        for instrumentor in self.instrumentors:
            try:
                instrumentor.uninstrument()
            except Exception as e:
                logger.warning("uninstrument_failed", instrumentor=type(instrumentor).__name__, error=str(e))

        clean = True
        for signal, provider in self._providers():
            outcome: Dict[str, bool] = {}
            worker = threading.Thread(
                target=_shutdown_provider,
                args=(signal, provider, outcome),
                name=f"otel-shutdown-{signal}",
                daemon=True,
            )
            worker.start()
            worker.join(timeout_seconds)
            if worker.is_alive():
                logger.warning("telemetry_shutdown_timeout", signal=signal, timeout_seconds=timeout_seconds)
                clean = False
            elif not outcome.get("ok", False):
                clean = False
        return clean


def _shutdown_provider(signal: str, provider: Any, outcome: Dict[str, bool]) -> None:
    try:
        provider.shutdown()
    except Exception as e:
        logger.warning("telemetry_shutdown_error", signal=signal, error=str(e))
        outcome["ok"] = False
        return
    outcome["ok"] = True


# ============================================================================
# EXPORTERS
# ============================================================================

def build_span_exporter(config: TelemetryConfig) -> SpanExporter:
    return OTLPSpanExporter(
        endpoint=resolve_endpoint(Signal.TRACE, config),
        headers=build_exporter_headers(config),
        timeout=EXPORT_TIMEOUT_SECONDS,
        compression=Compression.Gzip,
    )


def build_metric_exporter(config: TelemetryConfig) -> OTLPMetricExporter:
    return OTLPMetricExporter(
        endpoint=resolve_endpoint(Signal.METRIC, config),
        headers=build_exporter_headers(config),
        timeout=EXPORT_TIMEOUT_SECONDS,
        compression=Compression.Gzip,
    )


def build_log_exporter(config: TelemetryConfig) -> LogRecordExporter:
    return OTLPLogExporter(
        endpoint=resolve_endpoint(Signal.LOG, config),
        headers=build_exporter_headers(config),
        timeout=EXPORT_TIMEOUT_SECONDS,
        compression=Compression.Gzip,
    )


# ============================================================================
# PROVIDERS
# ============================================================================

def setup_tracing(
    config: TelemetryConfig,
    resource: Resource,
    span_exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """
    TracerProvider with 100% sampling and a flush-driven BatchSpanProcessor.

    Args:
        config: Telemetry configuration
        resource: Shared service resource
        span_exporter: Exporter to use instead of OTLP/HTTP (tests)
    """
    exporter = ResultLoggingSpanExporter(span_exporter or build_span_exporter(config))
    provider = TracerProvider(resource=resource, sampler=ALWAYS_ON, shutdown_on_exit=False)
    provider.add_span_processor(
        BatchSpanProcessor(
            exporter,
            max_queue_size=SPAN_MAX_QUEUE_SIZE,
            max_export_batch_size=SPAN_MAX_EXPORT_BATCH_SIZE,
            schedule_delay_millis=SPAN_SCHEDULE_DELAY_MILLIS,
            export_timeout_millis=SPAN_EXPORT_TIMEOUT_MILLIS,
        )
    )
    logger.info("tracing_initialized", endpoint=resolve_endpoint(Signal.TRACE, config))
    return provider


def setup_metrics(
    config: TelemetryConfig,
    resource: Resource,
    metric_reader: Optional[MetricReader] = None,
) -> MeterProvider:
    """
    MeterProvider pushing to OTLP every 10 seconds (plus on every flush).

    Args:
        config: Telemetry configuration
        resource: Shared service resource
        metric_reader: Reader to use instead of the periodic OTLP reader (tests)
    """
    if metric_reader is None:
        metric_reader = PeriodicExportingMetricReader(
            ResultLoggingMetricExporter(build_metric_exporter(config)),
            export_interval_millis=METRIC_EXPORT_INTERVAL_MILLIS,
        )
    provider = MeterProvider(resource=resource, metric_readers=[metric_reader], shutdown_on_exit=False)
    logger.info("metrics_initialized", endpoint=resolve_endpoint(Signal.METRIC, config))
    return provider


def setup_logs(
    config: TelemetryConfig,
    resource: Resource,
    log_exporter: Optional[LogRecordExporter] = None,
) -> LoggerProvider:
    """LoggerProvider with a default-scheduled BatchLogRecordProcessor."""
    exporter = ResultLoggingLogExporter(log_exporter or build_log_exporter(config))
    provider = LoggerProvider(resource=resource, shutdown_on_exit=False)
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    logger.info("logs_initialized", endpoint=resolve_endpoint(Signal.LOG, config))
    return provider


# ============================================================================
# AUTO-INSTRUMENTATION
# ============================================================================

def register_instrumentations(config: TelemetryConfig, tracer_provider: TracerProvider) -> List[Any]:
    """
    Instrument the HTTP clients and the AWS SDK.

    The HTTP instrumentors get the telemetry exclusion list so the exporters'
    own requests are never traced. The botocore instrumentor gets the
    DynamoDB enrichment hook.

    Returns:
        The instrumentors, so they can be uninstrumented on shutdown
    """
    call_filter = OutgoingCallFilter(config.exporter_endpoint)
    excluded_urls = call_filter.excluded_urls()

    instrumentors: List[Any] = []

    requests_instrumentor = RequestsInstrumentor()
    requests_instrumentor.instrument(tracer_provider=tracer_provider, excluded_urls=excluded_urls)
    instrumentors.append(requests_instrumentor)

    urllib3_instrumentor = URLLib3Instrumentor()
    urllib3_instrumentor.instrument(tracer_provider=tracer_provider, excluded_urls=excluded_urls)
    instrumentors.append(urllib3_instrumentor)

    botocore_instrumentor = BotocoreInstrumentor()
    botocore_instrumentor.instrument(tracer_provider=tracer_provider, request_hook=enrich_dynamodb_span)
    instrumentors.append(botocore_instrumentor)

    logger.debug("instrumentation_registered", excluded_urls=excluded_urls)
    return instrumentors


# ============================================================================
# INITIALIZATION FUNCTION (called by cli.py)
# ============================================================================

def initialize_observability(
    config: TelemetryConfig,
    *,
    span_exporter: Optional[SpanExporter] = None,
    metric_reader: Optional[MetricReader] = None,
    log_exporter: Optional[LogRecordExporter] = None,
    activate_global: bool = True,
    instrument: bool = True,
) -> TelemetryProviders:
    """
    One-call setup for traces, metrics and logs.

    Usage:
        providers = initialize_observability(get_telemetry_config())
        tracer = providers.get_tracer(__name__)
        ...
        await providers.force_flush()

    Args:
        config: Telemetry configuration
        span_exporter: Override for the OTLP span exporter
        metric_reader: Override for the periodic OTLP metric reader
        log_exporter: Override for the OTLP log exporter
        activate_global: Install providers + W3C propagator as process globals
        instrument: Register botocore/requests/urllib3 instrumentation

    Returns:
        TelemetryProviders handle
    """
    resource = create_resource(config)

    providers = TelemetryProviders(
        resource=resource,
        tracer_provider=setup_tracing(config, resource, span_exporter),
        meter_provider=setup_metrics(config, resource, metric_reader),
        logger_provider=setup_logs(config, resource, log_exporter),
    )

    if activate_global:
        set_global_textmap(CompositePropagator([TraceContextTextMapPropagator()]))
        providers.activate_global()

    if instrument:
        providers.instrumentors = register_instrumentations(config, providers.tracer_provider)

    logger.info(
        "observability_initialized",
        service_name=config.service_name,
        environment=config.environment,
        debug_enabled=config.debug_enabled,
    )
    return providers
