"""
Relay service - composition root of the relay core.

Loads source definitions at boot, restores scheduling state from the
store, and owns the scheduler, retention sweeper, event bus and
extractor for the process lifetime. The gateway talks only to this
class.

Features:
- Boot-time config loading (invalid definitions abort startup)
- Failure-state hydration across restarts
- Retention-clamped latest/history queries
- Subscription setup with a latest-value greeting
- Development-only selector preview
"""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from cosmic_relay.clock import SECOND_MS, Clock, system_clock, to_datetime, to_ms
from cosmic_relay.config.settings import Settings, get_settings
from cosmic_relay.errors import (
    DataNotFoundError,
    InvalidRangeError,
    PreviewNotAllowedError,
    SourceNotFoundError,
)
from cosmic_relay.events.bus import EventBus, Subscription
from cosmic_relay.events.messages import connected_message, latest_message
from cosmic_relay.extraction.base import Extractor, PreviewResult
from cosmic_relay.observability.metrics import get_metrics
from cosmic_relay.scheduling.executor import CrawlExecutor
from cosmic_relay.scheduling.registry import SourceRegistry
from cosmic_relay.scheduling.scheduler import Scheduler
from cosmic_relay.scheduling.sweeper import RetentionSweeper
from cosmic_relay.sources.loader import load_source_configs, parse_source_definition
from cosmic_relay.sources.parsers import to_utc
from cosmic_relay.sources.schemas import ResolvedSource
from cosmic_relay.storage.base import DataPoint, Store
from cosmic_relay.storage.database import Database
from cosmic_relay.storage.memory import MemoryStore
from cosmic_relay.storage.postgres import PostgresStore

logger = structlog.get_logger(__name__)

RECENT_STATUS_LIMIT = 5


@dataclass
class HistoryResult:
    """Data points inside the clamped ``[start, end]`` range, oldest first."""

    start: datetime
    end: datetime
    data: list[DataPoint]

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.start.isoformat(),
            "to": self.end.isoformat(),
            "data": [p.to_dict() for p in self.data],
        }


def parse_query_time(value: str) -> datetime:
    """Parse an ISO-8601 timestamp or epoch milliseconds. Naive values are UTC.

    Raises:
        InvalidRangeError: the value is neither.
    """
    text = value.strip()
    try:
        if text.lstrip("-").isdigit():
            return to_datetime(int(text))
        return to_utc(datetime.fromisoformat(text))
    except (ValueError, OverflowError, OSError) as e:
        raise InvalidRangeError("Invalid date range") from e


def create_store(settings: Settings) -> Store:
    """Build the configured store backend (not yet connected)."""
    if settings.storage_backend == "memory":
        return MemoryStore()
    return PostgresStore(Database())


def create_extractor(settings: Settings) -> Extractor:
    # Imported lazily so memory/test setups never load Playwright
    from cosmic_relay.extraction.browser import PlaywrightExtractor

    return PlaywrightExtractor(headless=settings.browser_headless)


class RelayService:
    """
    Owner of the relay core.

    Usage:
        service = RelayService()
        await service.start()
        latest = await service.latest("iss-position")
        await service.stop()
    """

    def __init__(
        self,
        sources: list[ResolvedSource] | None = None,
        store: Store | None = None,
        extractor: Extractor | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        background: bool = True,
    ):
        """
        Initialize the relay service.

        Args:
            sources: Resolved sources (or load from ``settings.sources_dir``)
            store: Store backend (or build from ``settings.storage_backend``)
            extractor: Field extractor (or a shared Playwright browser)
            settings: Settings (or the cached process settings)
            clock: Epoch-millisecond clock
            rng: Random source for jitter
            background: Run the tick loop and sweeper as background tasks
        """
        self._settings = settings or get_settings()
        self._clock = clock or system_clock
        self._background = background
        self._preset_sources = sources
        self._sources: dict[str, ResolvedSource] = {}
        self._started = False

        self.store = store or create_store(self._settings)
        self._extractor = extractor
        self.bus = EventBus(
            max_subscribers=self._settings.ws_max_connections,
            queue_size=self._settings.ws_queue_size,
        )
        self.registry = SourceRegistry(
            clock=self._clock,
            pause_duration_ms=self._settings.pause_duration_seconds * SECOND_MS,
            rng=rng,
        )
        self._retention_window_ms = int(self._settings.retention_window.total_seconds() * 1000)
        self.sweeper = RetentionSweeper(
            self.store,
            retention_window_ms=self._retention_window_ms,
            interval_seconds=self._settings.sweep_interval_seconds,
            include_statuses=self._settings.sweep_status_records,
            clock=self._clock,
        )
        self._scheduler: Scheduler | None = None

    @property
    def extractor(self) -> Extractor:
        if self._extractor is None:
            self._extractor = create_extractor(self._settings)
        return self._extractor

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            executor = CrawlExecutor(
                self.registry, self.store, self.extractor, self.bus, clock=self._clock
            )
            self._scheduler = Scheduler(
                self.registry,
                executor,
                max_concurrency=self._settings.max_concurrency,
                tick_interval=self._settings.tick_interval_seconds,
                clock=self._clock,
            )
        return self._scheduler

    @property
    def sources(self) -> list[ResolvedSource]:
        return list(self._sources.values())

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        """
        Boot the relay core.

        Raises:
            ConfigError: a source definition is invalid (fatal)
            PersistenceError: the store is unreachable
        """
        if self._started:
            return

        sources = self._preset_sources
        if sources is None:
            sources = load_source_configs(self._settings.sources_dir, self._settings.rate_floor_ms)
        self._sources = {s.id: s for s in sources}

        await self.store.connect()
        await self.store.create_tables()
        await self.store.upsert_sources(sources)

        now = self._clock()
        metrics = get_metrics()
        for source in sources:
            self.registry.register(source, now=now)
            if self._settings.persist_failure_state:
                persisted = await self.store.load_runtime_state(source.id)
                if persisted is not None:
                    self.registry.hydrate(source.id, persisted, now=now)
            state = self.registry.get(source.id)
            metrics.set_source_state(source.id, state.consecutive_failures, state.paused)

        self._started = True
        if self._background:
            await self.scheduler.start()
            await self.sweeper.start()

        logger.info(
            "Relay service started",
            sources=len(sources),
            enabled=sum(1 for s in sources if s.enabled),
            storage=type(self.store).__name__,
            retention_seconds=self._settings.retention_window_seconds,
        )

    async def stop(self) -> None:
        """Stop background work, drain in-flight runs and release resources."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        await self.sweeper.stop()
        self.bus.close_all()
        if self._extractor is not None:
            await self._extractor.close()
        await self.store.close()
        self._started = False
        logger.info("Relay service stopped")

    # ── Queries ───────────────────────────────────────────

    def _window_start(self, now: int) -> int:
        return now - self._retention_window_ms

    def _enabled_source(self, source_id: str) -> ResolvedSource:
        source = self._sources.get(source_id)
        if source is None or not source.enabled:
            raise SourceNotFoundError("Source not found or disabled")
        return source

    def is_subscribable(self, source_id: str) -> bool:
        source = self._sources.get(source_id)
        return source is not None and source.enabled

    async def list_sources(self) -> list[dict[str, Any]]:
        """Catalog rows for every configured source."""
        summaries = await self.store.list_sources()
        return [s.to_dict() for s in summaries if s.id in self._sources]

    async def get_source(self, source_id: str) -> dict[str, Any]:
        """Summary, the most recent status records and the public config."""
        source = self._sources.get(source_id)
        summary = await self.store.get_source(source_id) if source else None
        if source is None or summary is None:
            raise SourceNotFoundError("Source not found")

        statuses = await self.store.recent_statuses(source_id, limit=RECENT_STATUS_LIMIT)
        data = summary.to_dict()
        data["statuses"] = [s.to_dict() for s in statuses]
        data["config"] = source.to_public_dict()
        return data

    def list_resolved_configs(self) -> list[dict[str, Any]]:
        return [s.to_public_dict() for s in self._sources.values()]

    async def latest(self, source_id: str) -> DataPoint:
        """
        Most recent data point inside the retention window.

        Raises:
            SourceNotFoundError: unknown or disabled source
            DataNotFoundError: nothing collected inside the window
        """
        self._enabled_source(source_id)
        now = self._clock()
        point = await self.store.find_latest(
            source_id, to_datetime(self._window_start(now)), to_datetime(now)
        )
        if point is None:
            raise DataNotFoundError("No data found for source")
        return point

    async def history(
        self,
        source_id: str,
        start: str | None = None,
        end: str | None = None,
    ) -> HistoryResult:
        """
        Data points in ``[start, end]`` clamped to the retention window.

        Args:
            source_id: Source to query
            start: ISO-8601 or epoch-ms lower bound (default: window start)
            end: ISO-8601 or epoch-ms upper bound (default: now)

        Raises:
            SourceNotFoundError: unknown or disabled source
            InvalidRangeError: unparseable bound, or start after end
            DataNotFoundError: the clamped range holds no data
        """
        self._enabled_source(source_id)
        now = self._clock()
        window_start = self._window_start(now)

        requested_start = to_ms(parse_query_time(start)) if start else window_start
        requested_end = to_ms(parse_query_time(end)) if end else now
        if requested_start > requested_end:
            raise InvalidRangeError("Invalid date range")

        lower = max(requested_start, window_start)
        upper = min(requested_end, now)
        if lower > upper:
            raise DataNotFoundError("No history found for source")

        points = await self.store.find_range(source_id, to_datetime(lower), to_datetime(upper))
        if not points:
            raise DataNotFoundError("No history found for source")
        return HistoryResult(start=to_datetime(lower), end=to_datetime(upper), data=points)

    # ── Subscriptions ─────────────────────────────────────

    async def open_subscription(self, source_id: str) -> tuple[Subscription, list[dict[str, Any]]]:
        """
        Subscribe to a source and build the greeting messages.

        The subscription is registered before the latest value is read so
        no update published in between is lost; a subscriber may see that
        update both as ``latest`` and as ``update``.

        Returns:
            (subscription, [connected, latest?]) in send order

        Raises:
            SourceNotFoundError: unknown or disabled source
            SubscriptionLimitError: the subscription table is full
        """
        self._enabled_source(source_id)
        subscription = self.bus.subscribe(source_id)
        try:
            greeting = [connected_message(source_id)]
            now = self._clock()
            point = await self.store.find_latest(
                source_id, to_datetime(self._window_start(now)), to_datetime(now)
            )
            if point is not None:
                greeting.append(latest_message(point))
        except BaseException:
            self.bus.unsubscribe(subscription)
            raise
        return subscription, greeting

    def close_subscription(self, subscription: Subscription) -> None:
        self.bus.unsubscribe(subscription)

    # ── Preview ───────────────────────────────────────────

    async def preview(self, payload: Any) -> PreviewResult:
        """
        Probe a candidate definition's selectors without storing anything.

        Raises:
            PreviewNotAllowedError: preview disabled or running in production
            ConfigError: the definition is invalid
            ExtractionError: the page could not be loaded
        """
        if not self._settings.preview_allowed:
            raise PreviewNotAllowedError("Preview endpoint disabled in production")
        source = parse_source_definition(payload, self._settings.rate_floor_ms)
        logger.info("Preview requested", source_id=source.id, url=source.url)
        return await self.extractor.inspect(source.url, source.selectors, source.browser)

    # ── Health ────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        try:
            store_ok = await self.store.health_check()
        except Exception as e:
            logger.warning("Store health check failed", error=str(e))
            store_ok = False
        scheduler_running = self._scheduler is not None and self._scheduler.running
        return {
            "status": "healthy" if store_ok else "unhealthy",
            "store": store_ok,
            "scheduler_running": scheduler_running,
            "sources": len(self._sources),
            "enabled_sources": sum(1 for s in self._sources.values() if s.enabled),
            "in_flight": self.registry.in_flight_count,
            "subscribers": self.bus.subscriber_count(),
        }
