"""
Crawl executor: one attempt for one source.

``run`` is the failure boundary of the relay core. Whatever happens
inside (extractor error, timeout, validation failure, store outage), the
attempt ends as data: a status record, a registry update and an event.
The in-flight flag set by the scheduler is cleared exactly once, in
``finally``.

Sequence on success:
    running -> extract -> normalize/validate -> store data point
    -> success status -> registry success -> publish update
    -> idle status -> save runtime state

Sequence on failure:
    running -> ... error -> error status -> registry failure
    -> publish error -> idle status -> save runtime state
"""

import time
from dataclasses import dataclass
from datetime import datetime

import structlog

from cosmic_relay.clock import Clock, system_clock, to_datetime
from cosmic_relay.errors import PersistenceError, RelayError
from cosmic_relay.events.bus import EventBus
from cosmic_relay.events.messages import error_message, update_message
from cosmic_relay.extraction.base import Extractor
from cosmic_relay.observability.logging import crawl_context
from cosmic_relay.observability.metrics import get_metrics
from cosmic_relay.scheduling.registry import SourceRegistry
from cosmic_relay.sources.parsers import apply_parsers, to_utc, validate_output
from cosmic_relay.sources.schemas import ResolvedSource
from cosmic_relay.storage.base import DataPoint, StatusRecord, Store

logger = structlog.get_logger(__name__)


@dataclass
class RunResult:
    """Outcome of one crawl attempt."""

    source_id: str
    success: bool
    next_run_at: int | None = None
    data_point: DataPoint | None = None
    error: str | None = None
    duration_ms: int = 0


class CrawlExecutor:
    """
    Runs single crawl attempts and records their outcome.

    Usage:
        executor = CrawlExecutor(registry, store, extractor, bus)
        registry.mark_in_flight(source.id)
        result = await executor.run(source)
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: Store,
        extractor: Extractor,
        bus: EventBus,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._extractor = extractor
        self._bus = bus
        self._clock = clock or system_clock

    async def run(self, source: ResolvedSource) -> RunResult:
        """Execute one attempt. Never raises; the caller must have marked the source in flight."""
        log = logger.bind(source_id=source.id)
        started = time.monotonic()
        result = RunResult(source_id=source.id, success=False)
        try:
            try:
                await self._status(source, "running", "Crawl started")
                with crawl_context(source.id):
                    point = await self._crawl(source)
            except Exception as e:
                result.error = _describe(e)
                log.warning("Crawl failed", error=result.error, error_type=type(e).__name__)
                await self._on_failure(source, result)
            else:
                result.success = True
                result.data_point = point
                result.duration_ms = int((time.monotonic() - started) * 1000)
                await self._on_success(source, point, result)
                log.info("Crawl succeeded", duration_ms=result.duration_ms, data_id=point.id)
        except Exception:
            log.exception("Crawl bookkeeping failed")
            if result.next_run_at is None and self._registry.get(source.id).in_flight:
                # Outcome never reached the registry; back off instead of retrying every tick
                result.success = False
                result.next_run_at = self._registry.record_failure(source.id, now=self._clock())
        finally:
            self._registry.clear_in_flight(source.id)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            metrics = get_metrics()
            metrics.record_crawl(
                source.id, "success" if result.success else "error", result.duration_ms / 1000
            )
            metrics.set_in_flight(self._registry.in_flight_count)
        return result

    async def _crawl(self, source: ResolvedSource) -> DataPoint:
        """Extract, normalize, validate and persist. Any failure raises."""
        raw = await self._extractor.extract(source.url, source.selectors, source.browser)
        normalized = apply_parsers(raw, source.definition.parse)
        parsed = validate_output(source.output_model, normalized)

        source_timestamp: datetime | None = None
        timestamp_field = source.definition.timestamp_field
        if timestamp_field and parsed.get(timestamp_field):
            source_timestamp = to_utc(datetime.fromisoformat(parsed[timestamp_field]))

        point = DataPoint(
            source_id=source.id,
            raw=dict(raw),
            parsed=parsed,
            collected_at=to_datetime(self._clock()),
            source_timestamp=source_timestamp,
        )
        return await self._store.create_data_point(point)

    async def _on_success(self, source: ResolvedSource, point: DataPoint, result: RunResult) -> None:
        # The data point is stored; a lost status row must not turn this into a failure
        try:
            await self._status(source, "success", f"Completed in {result.duration_ms}ms")
        except PersistenceError as e:
            logger.warning("Success status not recorded", source_id=source.id, error=str(e))

        result.next_run_at = self._registry.record_success(source.id, now=self._clock())
        self._bus.publish(source.id, update_message(point))
        await self._finish(source, result.next_run_at)

    async def _on_failure(self, source: ResolvedSource, result: RunResult) -> None:
        error = result.error or "Unknown error"
        attempts = self._registry.get(source.id).consecutive_failures + 1
        try:
            await self._status(source, "error", error, attempts=attempts)
        except PersistenceError as e:
            logger.warning("Error status not recorded", source_id=source.id, error=str(e))

        result.next_run_at = self._registry.record_failure(source.id, now=self._clock())
        self._bus.publish(source.id, error_message(source.id, error, attempts))
        await self._finish(source, result.next_run_at)

    async def _finish(self, source: ResolvedSource, next_run_at: int) -> None:
        """Record the scheduled next run and persist runtime state."""
        state = self._registry.get(source.id)
        get_metrics().set_source_state(source.id, state.consecutive_failures, state.paused)
        try:
            await self._status(
                source,
                "idle",
                "Scheduled",
                attempts=state.consecutive_failures,
                next_run_at=to_datetime(next_run_at),
            )
        except PersistenceError as e:
            logger.warning("Idle status not recorded", source_id=source.id, error=str(e))
        try:
            await self._store.save_runtime_state(source.id, state.to_runtime_state())
        except PersistenceError as e:
            logger.warning("Runtime state not persisted", source_id=source.id, error=str(e))

    async def _status(
        self,
        source: ResolvedSource,
        state: str,
        message: str,
        attempts: int | None = None,
        next_run_at: datetime | None = None,
    ) -> None:
        if attempts is None:
            attempts = self._registry.get(source.id).consecutive_failures
        await self._store.append_status_record(
            StatusRecord(
                source_id=source.id,
                state=state,
                message=message,
                attempts=attempts,
                next_run_at=next_run_at,
                created_at=to_datetime(self._clock()),
            )
        )


def _describe(error: Exception) -> str:
    """Human-readable failure message for status records and subscribers."""
    if isinstance(error, TimeoutError):
        return "Timed out"
    message = str(error) or type(error).__name__
    if isinstance(error, RelayError):
        return message
    return f"{type(error).__name__}: {message}"
