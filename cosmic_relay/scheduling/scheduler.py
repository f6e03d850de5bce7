"""
Tick loop that dispatches due sources to the crawl executor.

Each tick asks the registry for due sources (earliest first) and starts
one task per source while the global in-flight count is below
``max_concurrency``. Once the cap is reached the remaining due sources
simply wait for a later tick. Selection and the in-flight mark happen in
one synchronous step, so a source can never be dispatched twice.

Per-source state machine:
    Idle -> Running -> Idle (success, or failure below the limit)
                    -> Paused (failure at the limit)
    Paused -> Running (one probe once the pause has elapsed)
"""

import asyncio
import time

import structlog

from cosmic_relay.clock import Clock, system_clock
from cosmic_relay.observability.metrics import get_metrics
from cosmic_relay.scheduling.executor import CrawlExecutor
from cosmic_relay.scheduling.registry import SourceRegistry

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Cooperative scheduler with a global concurrency cap.

    Usage:
        scheduler = Scheduler(registry, executor, max_concurrency=2)
        await scheduler.start()   # spawns the tick loop
        ...
        await scheduler.stop()    # waits for in-flight runs
    """

    def __init__(
        self,
        registry: SourceRegistry,
        executor: CrawlExecutor,
        max_concurrency: int = 2,
        tick_interval: float = 1.0,
        clock: Clock | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._registry = registry
        self._executor = executor
        self._max_concurrency = max_concurrency
        self._tick_interval = tick_interval
        self._clock = clock or system_clock
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return self._registry.in_flight_count

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def tick(self, now: int | None = None) -> list[str]:
        """Dispatch every due source the concurrency cap allows.

        Returns:
            Ids of the sources dispatched on this tick
        """
        now = self._clock() if now is None else now
        dispatched: list[str] = []
        for source in self._registry.due_sources(now):
            if self._registry.in_flight_count >= self._max_concurrency:
                break
            self._registry.mark_in_flight(source.id)
            task = asyncio.create_task(self._executor.run(source), name=f"crawl_{source.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched.append(source.id)

        if dispatched:
            get_metrics().set_in_flight(self._registry.in_flight_count)
            logger.debug("Dispatched crawls", sources=dispatched, in_flight=self.in_flight)
        return dispatched

    async def start(self) -> None:
        """Spawn the tick loop. Calling it twice is a no-op."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._run(), name="scheduler_tick_loop")
        logger.info(
            "Scheduler started",
            sources=len(self._registry),
            max_concurrency=self._max_concurrency,
            tick_interval=self._tick_interval,
        )

    async def stop(self) -> None:
        """Stop ticking, then wait for the runs still in flight to finish."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._tasks:
            pending = list(self._tasks)
            logger.info("Waiting for in-flight crawls", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait until every dispatched run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self) -> None:
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Scheduler tick failed", error=str(e), exc_info=True)
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self._tick_interval - elapsed))
