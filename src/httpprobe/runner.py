"""
Test runner for HTTP latency probing.

Orchestrates a probe run:
- Duration mode: workers loop until the time budget elapses
- Fixed-count mode: every worker performs exactly one request
- Interrupt handling: SIGINT ends the run after printing the summary
"""

import asyncio
import logging
import signal
from enum import Enum
from typing import Optional

from .errors import RunInterrupted, RunTimeoutError, TransportError
from .models import RunConfig
from .output import ConsoleOutput, format_duration
from .request_engine import HTTPRequestEngine
from .statistics import ResultSummary
from .workers import WorkerPool

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Why the event loop stopped."""
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    TIMED_OUT = "timed_out"


class TestRunner:
    """
    Runs the probe and collects the results.

    Results and errors from the worker pool, the time budget and the
    interrupt signal all compete in a single wait; whichever is ready
    first is handled first.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        config: RunConfig,
        engine: Optional[HTTPRequestEngine] = None,
        output: Optional[ConsoleOutput] = None,
        interrupt: Optional[asyncio.Event] = None,
    ):
        """
        Initialize the test runner.

        Args:
            config: Run configuration (validated here)
            engine: Request engine (default: HTTPRequestEngine built from config)
            output: Where results and the summary are written
            interrupt: Event that ends the run when set (default: SIGINT)
        """
        config.validate()
        self.config = config
        self.engine = engine or HTTPRequestEngine(
            timeout=config.timeout,
            http2=config.http2,
            verify=config.verify,
        )
        self.output = output or ConsoleOutput()
        self.interrupt = interrupt
        self.failures: list[TransportError] = []

    async def run(self) -> ResultSummary:
        """Run in duration or fixed-count mode depending on the config."""
        if self.config.fixed_count:
            return await self.run_fixed_test()
        return await self.run_duration_test()

    async def run_duration_test(self) -> ResultSummary:
        """
        Probe until the time budget elapses.

        The first failed request ends the run.

        Returns:
            ResultSummary of all completed requests

        Raises:
            TransportError: A request failed
            RunInterrupted: The interrupt fired (after printing the summary)
        """
        summary = ResultSummary()
        self.output.header(self.config)

        outcome = await self._drive(
            summary,
            budget=self.config.duration,
            iterations=None,
        )
        logger.info("Run ended (%s) after %d requests", outcome.value, summary.count)

        self.output.summary(summary)
        if outcome is Outcome.INTERRUPTED:
            raise RunInterrupted("interrupt signal received")
        return summary

    async def run_fixed_test(self) -> ResultSummary:
        """
        Perform one request per worker and wait for all of them.

        A failed request counts toward the total so the run always ends.

        Returns:
            ResultSummary of the successful requests

        Raises:
            RunTimeoutError: Not all requests finished within attempt_timeout
            RunInterrupted: The interrupt fired (after printing the summary)
            TransportError: At least one request failed (after the summary)
        """
        summary = ResultSummary()
        self.failures = []
        self.output.header(self.config)

        bound = self.config.attempt_timeout
        outcome = await self._drive(summary, budget=bound, iterations=1)
        logger.info("Run ended (%s) after %d requests", outcome.value, summary.count)

        if outcome is Outcome.TIMED_OUT:
            outstanding = self.config.concurrency - summary.count - len(self.failures)
            raise RunTimeoutError(
                f"timed out after {format_duration(bound)} with "
                f"{outstanding} of {self.config.concurrency} requests outstanding",
                bound=bound,
            )

        self.output.summary(summary)
        if outcome is Outcome.INTERRUPTED:
            raise RunInterrupted("interrupt signal received")
        if self.failures:
            raise self.failures[0]
        return summary

    async def _drive(
        self,
        summary: ResultSummary,
        budget: float,
        iterations: Optional[int],
    ) -> Outcome:
        """Start the workers and consume their output until the run ends."""
        fixed = iterations is not None
        expected = self.config.concurrency * iterations if fixed else None

        pool = WorkerPool(
            self.config.concurrency,
            lambda: self.engine.request(self.config.url),
        )
        interrupt, remove_handler = self._interrupt_source()

        deadline = asyncio.ensure_future(asyncio.sleep(budget))
        interrupted = asyncio.ensure_future(interrupt.wait())
        next_result = asyncio.ensure_future(pool.results.get())
        next_error = asyncio.ensure_future(pool.errors.get())

        pool.start(iterations=iterations)
        try:
            while True:
                done, _ = await asyncio.wait(
                    {deadline, interrupted, next_result, next_error},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                # Items already taken off a queue are handled before anything else.
                if next_result in done:
                    result = next_result.result()
                    self.output.result(result)
                    summary.load(result)
                    next_result = asyncio.ensure_future(pool.results.get())

                if next_error in done:
                    error = next_error.result()
                    next_error = asyncio.ensure_future(pool.errors.get())
                    if not fixed:
                        raise error
                    logger.warning("Request failed: %s", error)
                    self.output.failure(error)
                    self.failures.append(error)

                if fixed and summary.count + len(self.failures) >= expected:
                    return Outcome.COMPLETED

                if interrupted in done:
                    return Outcome.INTERRUPTED

                if deadline in done:
                    return Outcome.TIMED_OUT if fixed else Outcome.COMPLETED
        finally:
            for future in (deadline, interrupted, next_result, next_error):
                future.cancel()
            remove_handler()
            await pool.stop()

    def _interrupt_source(self):
        """
        Return the interrupt event and a callback that removes its handler.

        Uses the injected event if there is one, otherwise installs a
        SIGINT handler on the running loop.
        """
        if self.interrupt is not None:
            return self.interrupt, lambda: None

        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers.
            previous = signal.signal(
                signal.SIGINT,
                lambda signum, frame: loop.call_soon_threadsafe(event.set),
            )
            return event, lambda: signal.signal(signal.SIGINT, previous)

        return event, lambda: loop.remove_signal_handler(signal.SIGINT)
