"""
Entry point: initialise OpenTelemetry first, then run the DynamoDB demo loop.

Order matters: the botocore instrumentation must be registered before the
DynamoDB client is created so its calls are traced.

Exit codes:
    0  loop completed (bounded) or was stopped cleanly
    1  start-up failed, or the run died with an unhandled error
"""
import asyncio
import signal
import sys
from typing import Any, Callable, Optional

from otel_dynamodb_demo.config import (
    DemoSettings,
    TelemetryConfig,
    get_demo_settings,
    get_telemetry_config,
)
from otel_dynamodb_demo.loop import DemoLoop
from otel_dynamodb_demo.observability.instrumentation import TelemetryProviders, initialize_observability
from otel_dynamodb_demo.observability.logging_config import (
    get_logger,
    install_otlp_log_bridge,
    remove_otlp_log_bridge,
    setup_logging,
)
from otel_dynamodb_demo.observability.metering import OperationMetrics
from otel_dynamodb_demo.workload import DynamoDBDemo, create_dynamodb_client

logger = get_logger(__name__)

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)

# After the first signal the running iteration gets this long before it is cancelled
STOP_GRACE_SECONDS = 10.0


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    on_stop: Callable[[], None],
    grace_seconds: float = STOP_GRACE_SECONDS,
) -> None:
    """
    Route SIGTERM/SIGINT to ``on_stop`` (the demo loop drains, then the process exits 0).

    Every signal calls ``on_stop``; the demo loop treats a repeated stop as
    "cancel the running iteration". The first signal also schedules that
    repeat after ``grace_seconds``, so a hung workload call cannot block exit.
    """
    received = []

    def handle(sig: signal.Signals) -> None:
        received.append(sig)
        if len(received) == 1:
            logger.info("shutdown_signal_received", signal=sig.name, grace_seconds=grace_seconds)
            loop.call_later(grace_seconds, on_stop)
        else:
            logger.warning("shutdown_signal_repeated", signal=sig.name, count=len(received))
        on_stop()

    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, handle, sig)
        except NotImplementedError:
            # No add_signal_handler on this platform (Windows event loops)
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(handle, signal.Signals(signum)))


def build_demo_loop(
    config: TelemetryConfig,
    settings: DemoSettings,
    providers: TelemetryProviders,
    client: Optional[Any] = None,
) -> DemoLoop:
    """Wire workload, metrics and flush into a DemoLoop."""
    operation_metrics = OperationMetrics(providers.get_meter(config.service_name), settings.table_name)
    demo = DynamoDBDemo(
        client if client is not None else create_dynamodb_client(settings.region),
        settings.table_name,
        operation_metrics,
        tracer=providers.get_tracer(config.service_name),
    )
    return DemoLoop(
        workload=demo.run,
        flush=providers.force_flush,
        interval_ms=settings.interval_ms,
        max_iterations=settings.max_iterations,
    )


async def run_demo(
    config: TelemetryConfig,
    settings: DemoSettings,
    providers: TelemetryProviders,
    client: Optional[Any] = None,
) -> DemoLoop:
    logger.info(
        "demo_starting",
        table=settings.table_name,
        region=settings.region,
        interval_ms=settings.interval_ms,
        max_iterations=settings.max_iterations or None,
    )
    demo_loop = build_demo_loop(config, settings, providers, client)
    install_signal_handlers(asyncio.get_running_loop(), demo_loop.request_stop)
    await demo_loop.run()
    return demo_loop


def main() -> int:
    try:
        config = get_telemetry_config()
        settings = get_demo_settings()
        setup_logging(config)
        providers = initialize_observability(config)
        install_otlp_log_bridge(providers.logger_provider)
    except Exception as e:
        logger.error("demo_startup_failed", error=str(e), error_type=type(e).__name__)
        return 1

    try:
        asyncio.run(run_demo(config, settings, providers))
    except Exception as e:
        logger.error("demo_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        remove_otlp_log_bridge()
        providers.shutdown()

    logger.info("demo_exited")
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
