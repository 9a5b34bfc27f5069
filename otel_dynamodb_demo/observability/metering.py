"""
Metered operation wrapper.

Every DynamoDB call made by the demo goes through ``record_operation``:

    dynamodb.operation.count        counter    {operation, table}
    dynamodb.operation.error.count  counter    {operation, table}
    dynamodb.operation.duration.ms  histogram  {operation, table[, error]}

The wrapper only observes. It never retries, never swallows, never changes
the exception that the wrapped call raised.
"""
import time
from typing import Awaitable, Callable, TypeVar

from opentelemetry.metrics import Meter

T = TypeVar("T")

OPERATION_COUNTER = "dynamodb.operation.count"
ERROR_COUNTER = "dynamodb.operation.error.count"
DURATION_HISTOGRAM = "dynamodb.operation.duration.ms"


class OperationMetrics:
    """
    The three instruments plus the wrapper that feeds them.

    Create once per process from the demo's Meter and share it; the
    instruments are safe to call from any thread.

    Args:
        meter: Meter obtained from the demo's MeterProvider
        table_name: Value of the ``table`` attribute on every data point
        clock: Monotonic clock in seconds
    """

    def __init__(self, meter: Meter, table_name: str, clock: Callable[[], float] = time.perf_counter):
        self.table_name = table_name
        self.clock = clock
        self.operation_counter = meter.create_counter(
            OPERATION_COUNTER,
            description="Number of DynamoDB operations performed",
        )
        self.error_counter = meter.create_counter(
            ERROR_COUNTER,
            description="Number of DynamoDB operations that failed",
        )
        self.duration_histogram = meter.create_histogram(
            DURATION_HISTOGRAM,
            unit="ms",
            description="DynamoDB operation duration in milliseconds",
        )

    async def record_operation(self, operation_name: str, action: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``action()`` and record count/duration (or error) for it.

        Args:
            operation_name: DynamoDB operation, e.g. "PutItem"
            action: Zero-argument callable returning an awaitable

        Returns:
            Whatever the action returned

        Raises:
            Whatever the action raised, unchanged
        """
        attributes = {"operation": operation_name, "table": self.table_name}
        start = self.clock()
        try:
            result = await action()
        except BaseException:
            # Cancellation and interrupts are recorded as failures too
            duration_ms = (self.clock() - start) * 1000.0
            self.error_counter.add(1, attributes)
            self.duration_histogram.record(duration_ms, {**attributes, "error": True})
            raise

        duration_ms = (self.clock() - start) * 1000.0
        self.operation_counter.add(1, attributes)
        self.duration_histogram.record(duration_ms, attributes)
        return result
