"""In-process store for development (``STORAGE_BACKEND=memory``) and tests.

Nothing survives a restart. Records are copied on the way in and out so
callers cannot mutate stored state.
"""

import copy
import itertools
from dataclasses import replace
from datetime import datetime

from cosmic_relay.sources.schemas import ResolvedSource
from cosmic_relay.storage.base import (
    DataPoint,
    RuntimeState,
    SourceSummary,
    StatusRecord,
    Store,
)


def _copy_point(point: DataPoint) -> DataPoint:
    return replace(point, raw=copy.deepcopy(point.raw), parsed=copy.deepcopy(point.parsed))


class MemoryStore(Store):
    """Store contract over plain dicts and lists."""

    def __init__(self) -> None:
        self._sources: dict[str, SourceSummary] = {}
        self._runtime: dict[str, RuntimeState] = {}
        self._points: list[DataPoint] = []
        self._statuses: list[StatusRecord] = []
        self._ids = itertools.count(1)

    async def create_tables(self) -> None:
        return None

    async def upsert_sources(self, sources: list[ResolvedSource]) -> int:
        for source in sources:
            existing = self._sources.get(source.id)
            self._sources[source.id] = SourceSummary(
                id=source.id,
                name=source.name,
                description=source.description,
                url=source.url,
                enabled=source.enabled,
                last_run_at=existing.last_run_at if existing else None,
                last_status=existing.last_status if existing else None,
                failure_count=existing.failure_count if existing else 0,
            )
        return len(sources)

    async def list_sources(self) -> list[SourceSummary]:
        return [replace(self._sources[k]) for k in sorted(self._sources)]

    async def get_source(self, source_id: str) -> SourceSummary | None:
        summary = self._sources.get(source_id)
        return replace(summary) if summary else None

    async def create_data_point(self, point: DataPoint) -> DataPoint:
        stored = replace(
            point,
            id=next(self._ids),
            raw=copy.deepcopy(point.raw),
            parsed=copy.deepcopy(point.parsed),
        )
        self._points.append(stored)
        return _copy_point(stored)

    async def find_latest(
        self, source_id: str, since: datetime, until: datetime | None = None
    ) -> DataPoint | None:
        latest: DataPoint | None = None
        for point in self._points:
            if point.source_id != source_id or point.collected_at < since:
                continue
            if until is not None and point.collected_at > until:
                continue
            # Later insertion wins ties
            if latest is None or point.collected_at >= latest.collected_at:
                latest = point
        return _copy_point(latest) if latest else None

    async def find_range(
        self, source_id: str, start: datetime, end: datetime
    ) -> list[DataPoint]:
        matches = [
            _copy_point(p)
            for p in self._points
            if p.source_id == source_id and start <= p.collected_at <= end
        ]
        matches.sort(key=lambda p: (p.collected_at, p.id))
        return matches

    async def delete_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        before = len(self._points)
        self._points = [p for p in self._points if p.collected_at >= cutoff]
        points = before - len(self._points)

        statuses = 0
        if include_statuses:
            before = len(self._statuses)
            self._statuses = [s for s in self._statuses if s.created_at >= cutoff]
            statuses = before - len(self._statuses)
        return points, statuses

    async def count_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        points = sum(1 for p in self._points if p.collected_at < cutoff)
        statuses = 0
        if include_statuses:
            statuses = sum(1 for s in self._statuses if s.created_at < cutoff)
        return points, statuses

    async def append_status_record(self, record: StatusRecord) -> None:
        self._statuses.append(replace(record))

    async def recent_statuses(self, source_id: str, limit: int = 5) -> list[StatusRecord]:
        history = [s for s in self._statuses if s.source_id == source_id]
        return [replace(s) for s in reversed(history[-limit:])] if limit > 0 else []

    async def load_runtime_state(self, source_id: str) -> RuntimeState | None:
        state = self._runtime.get(source_id)
        return replace(state) if state else None

    async def save_runtime_state(self, source_id: str, state: RuntimeState) -> None:
        self._runtime[source_id] = replace(state)
        summary = self._sources.get(source_id)
        if summary is not None:
            summary.failure_count = state.consecutive_failures
            summary.last_run_at = state.last_run_at
            summary.last_status = state.last_status

    async def health_check(self) -> bool:
        return True
