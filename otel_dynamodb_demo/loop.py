"""
Demo loop controller.

    RUNNING -> SLEEPING -> RUNNING -> ... -> DRAINING

Each iteration runs the workload once and then flushes telemetry, whether
the workload succeeded or not. A failing iteration is logged and the loop
moves on. When the iteration budget is used up (or a stop was requested)
the loop drains: one last flush, then ``run()`` returns.

A second stop request cancels the workload call that is still in flight, so
a hung DynamoDB call cannot hold the process open.
"""
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from otel_dynamodb_demo.observability.logging_config import get_logger

logger = get_logger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    DRAINING = "draining"


class DemoLoop:
    """
    Sequential workload driver.

    Args:
        workload: Coroutine function running one pass of the demo
        flush: Coroutine function flushing all telemetry providers
        interval_ms: Pause between iterations
        max_iterations: Iterations to run; 0 runs until ``request_stop()``
    """

    def __init__(
        self,
        workload: Callable[[], Awaitable[None]],
        flush: Callable[[], Awaitable[bool]],
        interval_ms: int = 10_000,
        max_iterations: int = 0,
    ):
        self.workload = workload
        self.flush = flush
        self.interval_ms = max(0, interval_ms)
        self.max_iterations = max(0, max_iterations)

        self.iteration = 0
        self.failures = 0
        self.state = LoopState.IDLE
        self._stop_requested = asyncio.Event()
        self._current: Optional[asyncio.Future] = None
        self._forced = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_stop(self) -> None:
        """
        Finish the current iteration, skip the rest, drain.

        Calling it again while an iteration is running escalates to ``force_stop()``.
        """
        if self._stop_requested.is_set():
            self.force_stop()
            return
        logger.info("demo_stop_requested", iteration=self.iteration)
        self._stop_requested.set()

    def force_stop(self) -> None:
        """Stop now: cancel the in-flight workload call and drain."""
        self._stop_requested.set()
        current = self._current
        if current is None or current.done():
            return
        logger.warning("demo_iteration_cancelled", iteration=self.iteration)
        self._forced = True
        current.cancel()

    def _has_more_iterations(self) -> bool:
        if self.stop_requested:
            return False
        return self.max_iterations == 0 or self.iteration < self.max_iterations

    async def _flush(self) -> bool:
        try:
            return await self.flush()
        except Exception as e:
            logger.warning("telemetry_flush_failed", iteration=self.iteration, error=str(e))
            return False

    async def _sleep(self) -> None:
        self.state = LoopState.SLEEPING
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.interval_ms / 1000.0)
        except asyncio.TimeoutError:
            pass

    async def run_iteration(self) -> bool:
        """
        Run the workload once and flush.

        Returns:
            True if the workload succeeded
        """
        self.state = LoopState.RUNNING
        self.iteration += 1
        succeeded = True
        self._current = asyncio.ensure_future(self.workload())
        try:
            await self._current
        except asyncio.CancelledError:
            if not self._forced:
                raise
            succeeded = False
            self.failures += 1
        except Exception as e:
            succeeded = False
            self.failures += 1
            logger.error(
                "demo_iteration_failed",
                iteration=self.iteration,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._current = None

        await self._flush()
        if succeeded:
            logger.info("demo_iteration_complete", iteration=self.iteration)
        return succeeded

    async def run(self) -> int:
        """
        Drive the loop to completion.

        Returns:
            Number of iterations executed
        """
        logger.info(
            "demo_loop_starting",
            interval_ms=self.interval_ms,
            max_iterations=self.max_iterations or None,
        )

        while self._has_more_iterations():
            await self.run_iteration()
            if self._has_more_iterations():
                await self._sleep()

        self.state = LoopState.DRAINING
        logger.info("demo_finished_flushing", iterations=self.iteration, failures=self.failures)
        await self._flush()
        return self.iteration
