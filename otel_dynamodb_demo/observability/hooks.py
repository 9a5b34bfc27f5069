"""
Instrumentation hooks for the traced workload.

Two hooks are registered during bootstrap:

1. ``OutgoingCallFilter`` keeps the HTTP-client instrumentation away from
   the telemetry pipeline's own traffic. Without it every OTLP export would
   produce an HTTP span, which gets exported, which produces another span...

2. ``enrich_dynamodb_span`` is the botocore request hook. It tags DynamoDB
   spans with the operation and table so Grafana can filter on them.
"""
import re
from typing import Any, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from opentelemetry.trace import Span

# Telemetry vendors this demo may be running next to
TELEMETRY_HOSTS: Tuple[str, ...] = (
    "collector.newrelic.com",
    "grafana.net",
    "launchdarkly.com",
)

TELEMETRY_PATH_MARKERS: Tuple[str, ...] = (
    "otlp",
    "v1/traces",
    "grafana.net",
    "newrelic",
)

DYNAMODB_OPERATION_ATTRIBUTE = "aws.dynamodb.operation"
DB_NAME_ATTRIBUTE = "db.name"


def _hostname(host: Optional[str]) -> str:
    """``"example.com:4318"`` -> ``"example.com"``; tolerant of junk."""
    if not host:
        return ""
    try:
        return (urlsplit(f"//{host}").hostname or "").lower()
    except ValueError:
        return host.lower()


class OutgoingCallFilter:
    """
    Decides whether an outgoing HTTP call must be left uninstrumented.

    A call is ignored if ANY of these match:
    - its host is the configured exporter host (hostname or host:port)
    - its host contains a known telemetry hostname
    - its path contains a known telemetry path marker

    Args:
        exporter_endpoint: Configured base OTLP endpoint (may be unparseable)
        ignored_hosts: Telemetry hostnames to ignore
        ignored_path_markers: Path substrings to ignore
    """

    def __init__(
        self,
        exporter_endpoint: Optional[str],
        ignored_hosts: Iterable[str] = TELEMETRY_HOSTS,
        ignored_path_markers: Iterable[str] = TELEMETRY_PATH_MARKERS,
    ):
        self.ignored_hosts = tuple(ignored_hosts)
        self.ignored_path_markers = tuple(ignored_path_markers)
        self.exporter_hostname = ""
        self.exporter_netloc = ""

        if exporter_endpoint:
            try:
                parts = urlsplit(exporter_endpoint)
                self.exporter_hostname = (parts.hostname or "").lower()
                self.exporter_netloc = parts.netloc.rsplit("@", 1)[-1].lower()
            except ValueError:
                # Unparseable endpoint: fall back to the deny-lists only
                self.exporter_hostname = ""
                self.exporter_netloc = ""

    def should_ignore(self, host: Optional[str], path: Optional[str] = "") -> bool:
        """
        Args:
            host: Target host of the outgoing call, with or without port
            path: Request path (query string included is fine)

        Returns:
            True when the call must not be instrumented
        """
        host = (host or "").lower()
        path = path or ""

        if host and self.exporter_hostname:
            if host == self.exporter_netloc or _hostname(host) == self.exporter_hostname:
                return True

        if host and any(ignored in host for ignored in self.ignored_hosts):
            return True

        return any(marker in path for marker in self.ignored_path_markers)

    def __call__(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        path = parts.path
        if parts.query:
            path = f"{path}?{parts.query}"
        return self.should_ignore(parts.netloc.rsplit("@", 1)[-1], path)

    def excluded_urls(self) -> str:
        """
        Render the filter as an ``excluded_urls`` value for the HTTP-client
        instrumentors (comma-separated regexes, searched against the full URL).
        """
        patterns = []
        if self.exporter_hostname:
            patterns.append(
                r"^[A-Za-z][A-Za-z0-9+.\-]*://([^/@]*@)?"
                + re.escape(self.exporter_hostname)
                + r"(:\d+)?([/?#]|$)"
            )
        for host in self.ignored_hosts:
            patterns.append(r"^[A-Za-z][A-Za-z0-9+.\-]*://([^/@]*@)?[^/?#]*" + re.escape(host))
        for marker in self.ignored_path_markers:
            patterns.append(r"://[^/?#]*[/?].*" + re.escape(marker))
        return ",".join(patterns)


def _table_name(api_params: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not api_params:
        return None
    table = api_params.get("TableName")
    if not table:
        request_items = api_params.get("RequestItems")
        if isinstance(request_items, Mapping) and request_items:
            table = ",".join(request_items.keys())
    return table if isinstance(table, str) and table else None


def enrich_dynamodb_span(
    span: Span,
    service_name: str,
    operation_name: str,
    api_params: Optional[Mapping[str, Any]],
) -> None:
    """
    botocore request hook: tag DynamoDB spans with operation and table name.

    Batch operations (BatchGetItem, BatchWriteItem) address several tables
    through ``RequestItems``; their names are joined with a comma.
    """
    if span is None or not span.is_recording():
        return
    if (service_name or "").lower() != "dynamodb" or not operation_name:
        return

    span.set_attribute(DYNAMODB_OPERATION_ATTRIBUTE, operation_name)
    table = _table_name(api_params)
    if table:
        span.set_attribute(DB_NAME_ATTRIBUTE, table)
