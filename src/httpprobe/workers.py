"""
Worker pool for concurrent request execution.

Each worker repeatedly performs one request and publishes the outcome
to the shared results or errors queue. Queues hold at most one item,
so a slow consumer stalls the workers.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .models import Result

logger = logging.getLogger(__name__)

ProduceFn = Callable[[], Awaitable[Result]]

# How long stop() waits for cancelled workers before abandoning them.
DEFAULT_STOP_TIMEOUT = 1.0


class WorkerPool:
    """Runs a fixed number of request loops concurrently."""

    def __init__(
        self,
        concurrency: int,
        produce: ProduceFn,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ):
        """
        Initialize the pool.

        Args:
            concurrency: Number of workers
            produce: Coroutine function performing one request attempt
            stop_timeout: Seconds stop() waits for workers to unwind
        """
        if concurrency < 1:
            raise ValueError("concurrency should be greater or equal to 1")
        self.concurrency = concurrency
        self._produce = produce
        self.stop_timeout = stop_timeout
        self.results: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.errors: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._stopped = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def start(self, iterations: Optional[int] = None) -> None:
        """
        Launch the workers.

        Args:
            iterations: Attempts per worker (None runs until stopped)
        """
        logger.debug("Starting %d workers (iterations=%s)", self.concurrency, iterations)
        self._tasks = [
            asyncio.create_task(self._work(iterations), name=f"worker-{i}")
            for i in range(self.concurrency)
        ]

    async def _work(self, iterations: Optional[int]) -> None:
        attempts = 0
        while not self._stopped.is_set():
            if iterations is not None and attempts >= iterations:
                return
            attempts += 1
            try:
                result = await self._produce()
            except Exception as e:
                await self._publish(self.errors, e)
                continue
            await self._publish(self.results, result)

    async def _publish(self, queue: asyncio.Queue, item) -> bool:
        """
        Put item on the queue unless the pool stops first.

        Returns False if the item was dropped because of stop().
        """
        if self._stopped.is_set():
            return False

        put = asyncio.ensure_future(queue.put(item))
        stopped = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({put, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            put.cancel()
            stopped.cancel()
        return put.done() and not put.cancelled()

    async def stop(self) -> None:
        """
        Stop launching requests and abandon the ones in flight.

        Workers are cancelled and given stop_timeout seconds to unwind;
        any still running after that are left behind.
        """
        self._stopped.set()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=self.stop_timeout)
        if pending:
            logger.warning("Abandoning %d workers that did not stop", len(pending))
        logger.debug("Stopped %d workers", len(tasks) - len(pending))
