"""
Abstract store interface and the records it persists.

The relay core only depends on this contract. Implementations may wrap
PostgreSQL or live in process memory while providing a consistent API.
All methods are async to support non-blocking I/O; implementations raise
``PersistenceError`` when the backend fails.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from cosmic_relay.sources.schemas import ResolvedSource

StatusState = Literal["running", "success", "error", "idle"]

VALID_STATES: frozenset[str] = frozenset({"running", "success", "error", "idle"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class DataPoint:
    """
    One successful extraction result.

    Attributes:
        source_id: Source that produced the record
        raw: Field values exactly as extracted
        parsed: Normalized, validated field values (JSON-compatible)
        collected_at: When the crawl produced the record
        source_timestamp: Timestamp declared by the source itself, if any
        id: Store-assigned identifier
    """

    source_id: str
    raw: dict[str, Any]
    parsed: dict[str, Any]
    collected_at: datetime = field(default_factory=_utcnow)
    source_timestamp: datetime | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "raw": self.raw,
            "parsed": self.parsed,
            "collected_at": _iso(self.collected_at),
            "source_timestamp": _iso(self.source_timestamp),
        }


@dataclass
class StatusRecord:
    """An append-only history entry for one source."""

    source_id: str
    state: str
    message: str = ""
    attempts: int = 0
    next_run_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.state not in VALID_STATES:
            raise ValueError(
                f"Invalid state {self.state!r}. Must be one of: {sorted(VALID_STATES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "state": self.state,
            "message": self.message,
            "attempts": self.attempts,
            "next_run_at": _iso(self.next_run_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class RuntimeState:
    """Scheduling state persisted so a restart keeps failure history."""

    consecutive_failures: int = 0
    next_run_at: datetime | None = None
    paused_until: datetime | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None


@dataclass
class SourceSummary:
    """Catalog row for one source as listed by the gateway."""

    id: str
    name: str
    url: str
    description: str | None = None
    enabled: bool = False
    last_run_at: datetime | None = None
    last_status: str | None = None
    failure_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "url": self.url,
            "enabled": self.enabled,
            "last_run_at": _iso(self.last_run_at),
            "last_status": self.last_status,
            "failure_count": self.failure_count,
        }


class Store(ABC):
    """Persistence contract consumed by the relay core."""

    @abstractmethod
    async def create_tables(self) -> None:
        """Create backing tables/indexes (idempotent)."""
        ...

    @abstractmethod
    async def upsert_sources(self, sources: list[ResolvedSource]) -> int:
        """Insert or refresh catalog rows. Runtime state is left untouched."""
        ...

    @abstractmethod
    async def list_sources(self) -> list[SourceSummary]:
        ...

    @abstractmethod
    async def get_source(self, source_id: str) -> SourceSummary | None:
        ...

    @abstractmethod
    async def create_data_point(self, point: DataPoint) -> DataPoint:
        """Persist a data point and return it with its assigned id."""
        ...

    @abstractmethod
    async def find_latest(
        self, source_id: str, since: datetime, until: datetime | None = None
    ) -> DataPoint | None:
        """Most recent data point collected in ``[since, until]``.

        ``until=None`` leaves the range open at the top.
        """
        ...

    @abstractmethod
    async def find_range(
        self, source_id: str, start: datetime, end: datetime
    ) -> list[DataPoint]:
        """Data points collected in ``[start, end]``, oldest first."""
        ...

    @abstractmethod
    async def delete_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        """Delete rows collected/created before ``cutoff``.

        Returns:
            (data points deleted, status records deleted)
        """
        ...

    @abstractmethod
    async def count_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        """Rows ``delete_older_than`` would remove, without removing them."""
        ...

    @abstractmethod
    async def append_status_record(self, record: StatusRecord) -> None:
        ...

    @abstractmethod
    async def recent_statuses(self, source_id: str, limit: int = 5) -> list[StatusRecord]:
        """Newest first."""
        ...

    @abstractmethod
    async def load_runtime_state(self, source_id: str) -> RuntimeState | None:
        ...

    @abstractmethod
    async def save_runtime_state(self, source_id: str, state: RuntimeState) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    async def connect(self) -> None:
        """Open backend resources. Called once before any other method."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None
