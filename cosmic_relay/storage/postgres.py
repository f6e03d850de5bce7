"""PostgreSQL implementation of the store contract."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

import asyncpg

from cosmic_relay.errors import PersistenceError
from cosmic_relay.sources.schemas import ResolvedSource
from cosmic_relay.storage.base import (
    DataPoint,
    RuntimeState,
    SourceSummary,
    StatusRecord,
    Store,
)
from cosmic_relay.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    description   TEXT,
    url           TEXT NOT NULL,
    enabled       BOOLEAN NOT NULL DEFAULT FALSE,
    config        JSONB NOT NULL DEFAULT '{}',
    failure_count INTEGER NOT NULL DEFAULT 0,
    next_run_at   TIMESTAMPTZ,
    paused_until  TIMESTAMPTZ,
    last_run_at   TIMESTAMPTZ,
    last_status   TEXT,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS source_data (
    id               BIGSERIAL PRIMARY KEY,
    source_id        TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    raw              JSONB NOT NULL,
    parsed           JSONB NOT NULL,
    collected_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    source_timestamp TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_source_data_source_collected
    ON source_data(source_id, collected_at DESC);
CREATE INDEX IF NOT EXISTS idx_source_data_collected
    ON source_data(collected_at);

CREATE TABLE IF NOT EXISTS source_status (
    id          BIGSERIAL PRIMARY KEY,
    source_id   TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    state       TEXT NOT NULL CHECK (state IN ('running', 'success', 'error', 'idle')),
    message     TEXT NOT NULL DEFAULT '',
    attempts    INTEGER NOT NULL DEFAULT 0,
    next_run_at TIMESTAMPTZ,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_source_status_source_created
    ON source_status(source_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_source_status_created
    ON source_status(created_at);
"""

_UPSERT_SOURCE_SQL = """
INSERT INTO sources (id, name, description, url, enabled, config)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (id) DO UPDATE SET
    name = EXCLUDED.name,
    description = EXCLUDED.description,
    url = EXCLUDED.url,
    enabled = EXCLUDED.enabled,
    config = EXCLUDED.config,
    updated_at = NOW()
"""

_SUMMARY_COLUMNS = (
    "id, name, description, url, enabled, last_run_at, last_status, failure_count"
)

_DATA_COLUMNS = "id, source_id, raw, parsed, collected_at, source_timestamp"

# Errors that mean the backend, not the caller, is at fault
_BACKEND_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError)


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    """Surface backend failures as PersistenceError."""
    try:
        yield
    except _BACKEND_ERRORS as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


def _rowcount(status: str) -> int:
    """Parse the row count out of a command tag such as ``DELETE 12``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


def _record_to_summary(record) -> SourceSummary:
    return SourceSummary(
        id=record["id"],
        name=record["name"],
        description=record["description"],
        url=record["url"],
        enabled=record["enabled"],
        last_run_at=record["last_run_at"],
        last_status=record["last_status"],
        failure_count=record["failure_count"],
    )


def _record_to_data_point(record) -> DataPoint:
    return DataPoint(
        id=record["id"],
        source_id=record["source_id"],
        raw=dict(record["raw"]) if record["raw"] else {},
        parsed=dict(record["parsed"]) if record["parsed"] else {},
        collected_at=record["collected_at"],
        source_timestamp=record["source_timestamp"],
    )


def _record_to_status(record) -> StatusRecord:
    return StatusRecord(
        source_id=record["source_id"],
        state=record["state"],
        message=record["message"],
        attempts=record["attempts"],
        next_run_at=record["next_run_at"],
        created_at=record["created_at"],
    )


class PostgresStore(Store):
    """Store backed by the ``sources``, ``source_data`` and ``source_status`` tables."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def connect(self) -> None:
        with _guard("connect"):
            await self._db.connect()

    async def create_tables(self) -> None:
        with _guard("create_tables"):
            await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Relay tables ensured")

    async def upsert_sources(self, sources: list[ResolvedSource]) -> int:
        if not sources:
            return 0
        rows = [
            (s.id, s.name, s.description, s.url, s.enabled, s.to_public_dict())
            for s in sources
        ]
        with _guard("upsert_sources"):
            await self._db.executemany(_UPSERT_SOURCE_SQL, rows)
        logger.info("Upserted %d sources", len(rows))
        return len(rows)

    async def list_sources(self) -> list[SourceSummary]:
        with _guard("list_sources"):
            rows = await self._db.fetch(
                f"SELECT {_SUMMARY_COLUMNS} FROM sources ORDER BY id"
            )
        return [_record_to_summary(r) for r in rows]

    async def get_source(self, source_id: str) -> SourceSummary | None:
        with _guard("get_source"):
            row = await self._db.fetchrow(
                f"SELECT {_SUMMARY_COLUMNS} FROM sources WHERE id = $1", source_id
            )
        return _record_to_summary(row) if row else None

    async def create_data_point(self, point: DataPoint) -> DataPoint:
        with _guard("create_data_point"):
            row = await self._db.fetchrow(
                f"""
                INSERT INTO source_data (source_id, raw, parsed, collected_at, source_timestamp)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING {_DATA_COLUMNS}
                """,
                point.source_id,
                point.raw,
                point.parsed,
                point.collected_at,
                point.source_timestamp,
            )
        return _record_to_data_point(row)

    async def find_latest(
        self, source_id: str, since: datetime, until: datetime | None = None
    ) -> DataPoint | None:
        args: list = [source_id, since]
        upper = ""
        if until is not None:
            args.append(until)
            upper = "AND collected_at <= $3"
        with _guard("find_latest"):
            row = await self._db.fetchrow(
                f"""
                SELECT {_DATA_COLUMNS} FROM source_data
                WHERE source_id = $1 AND collected_at >= $2 {upper}
                ORDER BY collected_at DESC, id DESC
                LIMIT 1
                """,
                *args,
            )
        return _record_to_data_point(row) if row else None

    async def find_range(
        self, source_id: str, start: datetime, end: datetime
    ) -> list[DataPoint]:
        with _guard("find_range"):
            rows = await self._db.fetch(
                f"""
                SELECT {_DATA_COLUMNS} FROM source_data
                WHERE source_id = $1 AND collected_at >= $2 AND collected_at <= $3
                ORDER BY collected_at ASC, id ASC
                """,
                source_id,
                start,
                end,
            )
        return [_record_to_data_point(r) for r in rows]

    async def delete_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        with _guard("delete_older_than"):
            points = _rowcount(
                await self._db.execute(
                    "DELETE FROM source_data WHERE collected_at < $1", cutoff
                )
            )
            statuses = 0
            if include_statuses:
                statuses = _rowcount(
                    await self._db.execute(
                        "DELETE FROM source_status WHERE created_at < $1", cutoff
                    )
                )
        return points, statuses

    async def count_older_than(
        self, cutoff: datetime, include_statuses: bool = True
    ) -> tuple[int, int]:
        with _guard("count_older_than"):
            points = await self._db.fetchval(
                "SELECT COUNT(*) FROM source_data WHERE collected_at < $1", cutoff
            )
            statuses = 0
            if include_statuses:
                statuses = await self._db.fetchval(
                    "SELECT COUNT(*) FROM source_status WHERE created_at < $1", cutoff
                )
        return int(points or 0), int(statuses or 0)

    async def append_status_record(self, record: StatusRecord) -> None:
        with _guard("append_status_record"):
            await self._db.execute(
                """
                INSERT INTO source_status (source_id, state, message, attempts, next_run_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                record.source_id,
                record.state,
                record.message,
                record.attempts,
                record.next_run_at,
                record.created_at,
            )

    async def recent_statuses(self, source_id: str, limit: int = 5) -> list[StatusRecord]:
        with _guard("recent_statuses"):
            rows = await self._db.fetch(
                """
                SELECT source_id, state, message, attempts, next_run_at, created_at
                FROM source_status
                WHERE source_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                source_id,
                limit,
            )
        return [_record_to_status(r) for r in rows]

    async def load_runtime_state(self, source_id: str) -> RuntimeState | None:
        with _guard("load_runtime_state"):
            row = await self._db.fetchrow(
                """
                SELECT failure_count, next_run_at, paused_until, last_run_at, last_status
                FROM sources WHERE id = $1
                """,
                source_id,
            )
        if row is None:
            return None
        return RuntimeState(
            consecutive_failures=row["failure_count"],
            next_run_at=row["next_run_at"],
            paused_until=row["paused_until"],
            last_run_at=row["last_run_at"],
            last_status=row["last_status"],
        )

    async def save_runtime_state(self, source_id: str, state: RuntimeState) -> None:
        with _guard("save_runtime_state"):
            await self._db.execute(
                """
                UPDATE sources SET
                    failure_count = $2,
                    next_run_at = $3,
                    paused_until = $4,
                    last_run_at = $5,
                    last_status = $6,
                    updated_at = NOW()
                WHERE id = $1
                """,
                source_id,
                state.consecutive_failures,
                state.next_run_at,
                state.paused_until,
                state.last_run_at,
                state.last_status,
            )

    async def health_check(self) -> bool:
        return await self._db.health_check()

    async def close(self) -> None:
        await self._db.close()
