"""
Retention sweeper.

Deletes data points (and optionally status records) older than the
retention window on a fixed period. A failed sweep is logged and counted,
and the next period tries again. Query paths clamp to the same window on
their own, so a late sweep never exposes stale rows.
"""

import asyncio

import structlog

from cosmic_relay.clock import Clock, system_clock, to_datetime
from cosmic_relay.observability.metrics import get_metrics
from cosmic_relay.storage.base import Store

logger = structlog.get_logger(__name__)


class RetentionSweeper:
    """
    Periodic retention enforcement.

    Usage:
        sweeper = RetentionSweeper(store, retention_window_ms=4 * HOUR_MS)
        await sweeper.start()
        deleted = await sweeper.sweep_once()
        await sweeper.stop()
    """

    def __init__(
        self,
        store: Store,
        retention_window_ms: int,
        interval_seconds: float = 60.0,
        include_statuses: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._retention_window_ms = retention_window_ms
        self._interval = interval_seconds
        self._include_statuses = include_statuses
        self._clock = clock or system_clock
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def cutoff(self) -> int:
        """Oldest collection time still inside the window, epoch ms."""
        return self._clock() - self._retention_window_ms

    async def sweep_once(self) -> tuple[int, int]:
        """Run one sweep. Store errors propagate to the caller.

        Returns:
            (data points deleted, status records deleted)
        """
        cutoff = to_datetime(self.cutoff())
        points, statuses = await self._store.delete_older_than(
            cutoff, include_statuses=self._include_statuses
        )
        get_metrics().record_sweep(points, statuses)
        if points or statuses:
            logger.info(
                "Retention sweep removed rows",
                cutoff=cutoff.isoformat(),
                data_points=points,
                status_records=statuses,
            )
        return points, statuses

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="retention_sweeper")
        logger.info("Retention sweeper started", interval_seconds=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Retention sweeper stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                get_metrics().record_sweep_error()
                logger.error("Retention sweep failed", error=str(e), exc_info=True)
            await asyncio.sleep(self._interval)
