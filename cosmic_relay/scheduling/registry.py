"""
Source registry: resolved sources plus their mutable runtime state.

The registry is the single owner of scheduling state. All mutation goes
through its methods, which never await, so each call is atomic on the
event loop. Outcome updates (``record_success`` / ``record_failure``)
are only accepted while the source is marked in flight, which makes the
scheduler/executor pair for that source its only writer.
"""

import random
from dataclasses import dataclass
from datetime import datetime

import structlog

from cosmic_relay.clock import DAY_MS, Clock, system_clock, to_datetime, to_ms
from cosmic_relay.scheduling.backoff import BackoffPolicy
from cosmic_relay.sources.schemas import ResolvedSource
from cosmic_relay.storage.base import RuntimeState

logger = structlog.get_logger(__name__)


@dataclass
class SourceState:
    """Runtime state of one source. Times are epoch milliseconds."""

    source: ResolvedSource
    policy: BackoffPolicy
    next_run_at: int
    consecutive_failures: int = 0
    in_flight: bool = False
    paused_until: int | None = None
    last_run_at: int | None = None
    last_status: str | None = None

    @property
    def paused(self) -> bool:
        return self.paused_until is not None

    def to_runtime_state(self) -> RuntimeState:
        """Persistable snapshot for the store."""
        return RuntimeState(
            consecutive_failures=self.consecutive_failures,
            next_run_at=to_datetime(self.next_run_at),
            paused_until=to_datetime(self.paused_until) if self.paused_until else None,
            last_run_at=to_datetime(self.last_run_at) if self.last_run_at else None,
            last_status=self.last_status,
        )


class SourceRegistry:
    """
    Owner of per-source scheduling state.

    Usage:
        registry = SourceRegistry()
        registry.register(source)
        for source in registry.due_sources():
            registry.mark_in_flight(source.id)
            ...
            registry.record_success(source.id)
            registry.clear_in_flight(source.id)
    """

    def __init__(
        self,
        clock: Clock | None = None,
        pause_duration_ms: int = DAY_MS,
        rng: random.Random | None = None,
    ) -> None:
        self._clock = clock or system_clock
        self._pause_duration_ms = pause_duration_ms
        self._rng = rng or random.Random()
        self._states: dict[str, SourceState] = {}

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    @property
    def in_flight_count(self) -> int:
        return sum(1 for s in self._states.values() if s.in_flight)

    def register(self, source: ResolvedSource, now: int | None = None) -> SourceState:
        """Add a source, due immediately. Registering an id twice is an error."""
        if source.id in self._states:
            raise ValueError(f"source {source.id!r} already registered")
        schedule = source.schedule
        state = SourceState(
            source=source,
            policy=BackoffPolicy(
                base_ms=source.effective_interval_ms,
                max_delay_ms=schedule.max_backoff_ms,
                multiplier=schedule.backoff_multiplier,
                jitter_ms=schedule.jitter_ms,
                rng=self._rng,
            ),
            next_run_at=self._clock() if now is None else now,
        )
        self._states[source.id] = state
        return state

    def hydrate(self, source_id: str, persisted: RuntimeState, now: int | None = None) -> None:
        """Restore failure history saved before a restart.

        The failure counter and last-run fields are restored as-is. A saved
        next run still in the future (a pending backoff or interval) is kept;
        one already in the past leaves the source due now. A pause that has
        not yet elapsed keeps the source parked until it does; an elapsed
        pause leaves the source due for its probe run.
        """
        state = self.get(source_id)
        now = self._clock() if now is None else now
        state.consecutive_failures = max(0, persisted.consecutive_failures)
        state.last_status = persisted.last_status
        state.last_run_at = to_ms(persisted.last_run_at) if persisted.last_run_at else None
        if persisted.next_run_at is not None:
            state.next_run_at = max(now, to_ms(persisted.next_run_at))
        if persisted.paused_until is not None:
            paused_until = to_ms(persisted.paused_until)
            state.paused_until = paused_until
            state.next_run_at = max(now, paused_until)
        logger.debug(
            "Runtime state hydrated",
            source_id=source_id,
            failures=state.consecutive_failures,
            paused_until=persisted.paused_until.isoformat() if persisted.paused_until else None,
        )

    def get(self, source_id: str) -> SourceState:
        try:
            return self._states[source_id]
        except KeyError:
            raise KeyError(f"unknown source {source_id!r}") from None

    def states(self) -> list[SourceState]:
        return list(self._states.values())

    def due_sources(self, now: int | None = None) -> list[ResolvedSource]:
        """Enabled, idle sources whose next run has come, earliest-due first."""
        now = self._clock() if now is None else now
        due = [
            s for s in self._states.values()
            if s.source.enabled and not s.in_flight and now >= s.next_run_at
        ]
        due.sort(key=lambda s: s.next_run_at)
        return [s.source for s in due]

    def mark_in_flight(self, source_id: str) -> None:
        state = self.get(source_id)
        if state.in_flight:
            raise RuntimeError(f"source {source_id!r} is already in flight")
        if not state.source.enabled:
            raise RuntimeError(f"source {source_id!r} is disabled")
        state.in_flight = True

    def clear_in_flight(self, source_id: str) -> None:
        self.get(source_id).in_flight = False

    def _writable(self, source_id: str) -> SourceState:
        state = self.get(source_id)
        if not state.in_flight:
            raise RuntimeError(
                f"source {source_id!r} must be in flight to record a run outcome"
            )
        return state

    def record_success(self, source_id: str, now: int | None = None) -> int:
        """Reset failures, clear any pause, schedule one interval out.

        Returns:
            The absolute next-run time in epoch milliseconds
        """
        state = self._writable(source_id)
        now = self._clock() if now is None else now
        state.consecutive_failures = 0
        state.paused_until = None
        state.last_run_at = now
        state.last_status = "success"
        state.next_run_at = now + state.policy.interval_delay()
        return state.next_run_at

    def record_failure(self, source_id: str, now: int | None = None) -> int:
        """Count a failure and back off, or pause once the limit is reached.

        Returns:
            The absolute next-run time in epoch milliseconds
        """
        state = self._writable(source_id)
        now = self._clock() if now is None else now
        state.consecutive_failures += 1
        state.last_run_at = now
        state.last_status = "error"

        if state.consecutive_failures >= state.source.schedule.failure_limit:
            state.paused_until = now + self._pause_duration_ms
            state.next_run_at = state.paused_until
            logger.warning(
                "Source paused after consecutive failures",
                source_id=source_id,
                failures=state.consecutive_failures,
                paused_until=to_datetime(state.paused_until).isoformat(),
            )
        else:
            state.paused_until = None
            state.next_run_at = now + state.policy.failure_delay(state.consecutive_failures)
        return state.next_run_at

    def paused_until(self, source_id: str) -> datetime | None:
        state = self.get(source_id)
        return to_datetime(state.paused_until) if state.paused_until else None
