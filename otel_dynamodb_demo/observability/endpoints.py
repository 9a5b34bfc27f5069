"""
Per-signal OTLP endpoint resolution.

Grafana Cloud (and most OTLP/HTTP collectors) accept one base URL per signal:

    https://otlp-gateway.grafana.net/otlp/v1/traces
    https://otlp-gateway.grafana.net/otlp/v1/metrics
    https://otlp-gateway.grafana.net/otlp/v1/logs

Operators usually configure only the trace URL, so the metric and log URLs
are derived from it. Resolution order:

1. explicit per-signal override (returned verbatim)
2. path rewrite of the base endpoint
3. the unmodified base endpoint when it cannot be parsed

Resolution never raises; a bad URL must not stop the demo from starting.
"""
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from otel_dynamodb_demo.config import TelemetryConfig


class Signal(str, Enum):
    TRACE = "trace"
    METRIC = "metric"
    LOG = "log"


TRACES_PATH = "/v1/traces"

SIGNAL_PATHS = {
    Signal.TRACE: TRACES_PATH,
    Signal.METRIC: "/v1/metrics",
    Signal.LOG: "/v1/logs",
}


def signal_override(signal: Signal, config: TelemetryConfig) -> Optional[str]:
    """Return the explicitly configured endpoint for ``signal``, if any."""
    if signal is Signal.METRIC:
        return config.metrics_endpoint or None
    if signal is Signal.LOG:
        return config.logs_endpoint or None
    return None


def derive_signal_endpoint(base_endpoint: str, signal: Signal) -> str:
    """
    Rewrite a trace-shaped base URL into the URL for ``signal``.

    A path ending in ``/v1/traces`` has that suffix swapped for the signal's
    path; an empty or root path gets the signal's path; any other path is left
    alone. Scheme, host, port, query and fragment are preserved.

    Args:
        base_endpoint: Base OTLP URL (usually the trace endpoint)
        signal: Target signal kind

    Returns:
        Derived URL, or ``base_endpoint`` unchanged if it does not parse
    """
    try:
        parts = urlsplit(base_endpoint)
        # Accessing .port validates it (raises ValueError on junk like ":abc")
        parts.port
    except (TypeError, ValueError, AttributeError):
        return base_endpoint

    if not parts.scheme or not parts.netloc:
        return base_endpoint

    path = parts.path
    canonical = SIGNAL_PATHS[signal]
    if path.endswith(TRACES_PATH):
        path = path[: -len(TRACES_PATH)] + canonical
    elif path in ("", "/"):
        path = canonical

    return urlunsplit(parts._replace(path=path))


def resolve_endpoint(signal: Signal, config: TelemetryConfig) -> str:
    """
    Resolve the OTLP URL a given signal should be exported to.

    Args:
        signal: ``Signal.TRACE``, ``Signal.METRIC`` or ``Signal.LOG``
        config: Telemetry configuration

    Returns:
        The endpoint URL (never raises)
    """
    override = signal_override(Signal(signal), config)
    if override:
        return override
    return derive_signal_endpoint(config.exporter_endpoint, Signal(signal))
