"""Tests for the in-memory store contract."""

from datetime import timedelta

import pytest

from cosmic_relay.clock import to_datetime
from cosmic_relay.storage.base import DataPoint, RuntimeState, StatusRecord
from tests.conftest import T0, make_source

NOW = to_datetime(T0)


def _point(source_id="alpha", minutes_ago=0, value=1):
    return DataPoint(
        source_id=source_id,
        raw={"value": str(value)},
        parsed={"value": value},
        collected_at=NOW - timedelta(minutes=minutes_ago),
    )


class TestSourceCatalog:
    @pytest.mark.asyncio
    async def test_upsert_keeps_runtime_columns(self, store):
        await store.upsert_sources([make_source("alpha")])
        await store.save_runtime_state(
            "alpha", RuntimeState(consecutive_failures=3, last_status="error", last_run_at=NOW)
        )

        await store.upsert_sources([make_source("alpha", name="Renamed")])

        summary = await store.get_source("alpha")
        assert summary.name == "Renamed"
        assert summary.failure_count == 3
        assert summary.last_status == "error"

    @pytest.mark.asyncio
    async def test_list_sorted_by_id(self, store):
        await store.upsert_sources([make_source("beta"), make_source("alpha")])
        assert [s.id for s in await store.list_sources()] == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_unknown_source(self, store):
        assert await store.get_source("nope") is None


class TestDataPoints:
    @pytest.mark.asyncio
    async def test_ids_are_assigned(self, store):
        first = await store.create_data_point(_point())
        second = await store.create_data_point(_point())
        assert first.id is not None
        assert second.id > first.id

    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self, store):
        point = _point()
        await store.create_data_point(point)
        point.parsed["value"] = 999

        latest = await store.find_latest("alpha", NOW - timedelta(hours=1))
        assert latest.parsed["value"] == 1

    @pytest.mark.asyncio
    async def test_returned_copies_are_isolated(self, store):
        await store.create_data_point(_point())

        latest = await store.find_latest("alpha", NOW - timedelta(hours=1))
        latest.parsed["value"] = 999
        latest.raw["value"] = "999"
        (ranged,) = await store.find_range("alpha", NOW - timedelta(hours=1), NOW)
        ranged.parsed["value"] = 555

        again = await store.find_latest("alpha", NOW - timedelta(hours=1))
        assert again.parsed == {"value": 1}
        assert again.raw == {"value": "1"}

    @pytest.mark.asyncio
    async def test_latest_excludes_rows_after_until(self, store):
        await store.create_data_point(_point(minutes_ago=-60, value=1))
        await store.create_data_point(_point(minutes_ago=10, value=2))

        latest = await store.find_latest("alpha", NOW - timedelta(hours=4), NOW)
        unbounded = await store.find_latest("alpha", NOW - timedelta(hours=4))

        assert latest.parsed["value"] == 2
        assert unbounded.parsed["value"] == 1

    @pytest.mark.asyncio
    async def test_latest_respects_since(self, store):
        await store.create_data_point(_point(minutes_ago=300, value=1))
        assert await store.find_latest("alpha", NOW - timedelta(hours=4)) is None

        await store.create_data_point(_point(minutes_ago=10, value=2))
        await store.create_data_point(_point(minutes_ago=20, value=3))
        latest = await store.find_latest("alpha", NOW - timedelta(hours=4))
        assert latest.parsed["value"] == 2

    @pytest.mark.asyncio
    async def test_range_is_inclusive_and_ordered(self, store):
        for minutes, value in ((30, 1), (10, 2), (20, 3), (40, 4)):
            await store.create_data_point(_point(minutes_ago=minutes, value=value))
        await store.create_data_point(_point(source_id="beta", minutes_ago=20))

        points = await store.find_range(
            "alpha", NOW - timedelta(minutes=30), NOW - timedelta(minutes=10)
        )

        assert [p.parsed["value"] for p in points] == [1, 3, 2]

    @pytest.mark.asyncio
    async def test_count_matches_delete(self, store):
        await store.create_data_point(_point(minutes_ago=300))
        await store.create_data_point(_point(minutes_ago=1))
        await store.append_status_record(
            StatusRecord(source_id="alpha", state="idle", created_at=NOW - timedelta(hours=5))
        )
        cutoff = NOW - timedelta(hours=4)

        assert await store.count_older_than(cutoff) == (1, 1)
        assert await store.delete_older_than(cutoff) == (1, 1)
        assert await store.count_older_than(cutoff) == (0, 0)


class TestStatusRecords:
    @pytest.mark.asyncio
    async def test_recent_newest_first(self, store):
        for state in ("running", "success", "idle"):
            await store.append_status_record(StatusRecord(source_id="alpha", state=state))

        recent = await store.recent_statuses("alpha", limit=2)

        assert [s.state for s in recent] == ["idle", "success"]

    def test_invalid_state_rejected(self):
        with pytest.raises(ValueError):
            StatusRecord(source_id="alpha", state="paused")


class TestRuntimeState:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        assert await store.load_runtime_state("alpha") is None

        state = RuntimeState(consecutive_failures=5, paused_until=NOW + timedelta(hours=20))
        await store.save_runtime_state("alpha", state)

        loaded = await store.load_runtime_state("alpha")
        assert loaded == state
        assert loaded is not state
