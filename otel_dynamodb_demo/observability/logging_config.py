"""
Structured logging configuration.

Log events are written with structlog and travel through the standard
library ``logging`` module to two destinations:

1. stdout, as JSON (python-json-logger), so the demo stays readable locally
2. the OpenTelemetry LoggerProvider, so the same events reach Grafana/Loki
   as OTLP log records with their key/value pairs as attributes

The OTLP bridge is attached after the providers exist (``install_otlp_log_bridge``);
until then only the console handler is active.
"""
import logging
import sys
from typing import Any, Iterable

import structlog
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from pythonjsonlogger import jsonlogger

from otel_dynamodb_demo.config import TelemetryConfig

# Records from these loggers are never re-exported over OTLP
TELEMETRY_INTERNAL_LOGGERS = (
    "opentelemetry",
    "otel_dynamodb_demo.observability.exporters",
    "urllib3",
    "requests",
)

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


class ExcludeLoggersFilter(logging.Filter):
    """Drop records whose logger name is (or is a child of) one of ``prefixes``."""

    def __init__(self, prefixes: Iterable[str] = TELEMETRY_INTERNAL_LOGGERS):
        super().__init__()
        self.prefixes = tuple(prefixes)

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        return not any(name == prefix or name.startswith(prefix + ".") for prefix in self.prefixes)


def setup_logging(config: TelemetryConfig, cache_loggers: bool = True) -> None:
    """
    Configure structlog + JSON console logging.

    Level is DEBUG when ``config.debug_enabled`` is set, INFO otherwise. In
    debug mode the OpenTelemetry SDK's own loggers are opened up as well,
    which is the Python equivalent of a diagnostic console logger.

    Args:
        config: Telemetry configuration
        cache_loggers: Freeze structlog loggers on first use (off in tests)
    """
    level = logging.DEBUG if config.debug_enabled else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            # Event keys become LogRecord extras -> JSON fields and OTLP attributes
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
            },
        )
    )
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("opentelemetry").setLevel(logging.DEBUG if config.debug_enabled else logging.WARNING)

    get_logger(__name__).debug("logging_configured", debug_enabled=config.debug_enabled)


def install_otlp_log_bridge(logger_provider: LoggerProvider) -> LoggingHandler:
    """
    Forward standard-library log records to the OTLP LoggerProvider.

    Idempotent: an existing LoggingHandler on the root logger is reused.

    Returns:
        The handler attached to the root logger
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, LoggingHandler):
            return handler

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
    handler.addFilter(ExcludeLoggersFilter())
    root_logger.addHandler(handler)
    return handler


def remove_otlp_log_bridge() -> None:
    """Detach the OTLP handler (used before the logger provider shuts down)."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, LoggingHandler):
            root_logger.removeHandler(handler)


def get_logger(name: str, **context: Any) -> Any:
    """
    Get a structured logger, optionally with pre-bound context.

    Example:
        logger = get_logger(__name__, table="otel-demo-items")
        logger.info("scan_complete", count=3)
    """
    logger = structlog.get_logger(name)
    if context:
        return logger.bind(**context)
    return logger
