"""Tests for RelayService queries, subscriptions and restart behaviour."""

from datetime import timedelta

import pytest
import pytest_asyncio

from cosmic_relay.clock import DAY_MS, HOUR_MS, to_datetime
from cosmic_relay.errors import (
    ConfigError,
    DataNotFoundError,
    InvalidRangeError,
    PreviewNotAllowedError,
    SourceNotFoundError,
    SubscriptionLimitError,
)
from cosmic_relay.services.relay_service import RelayService, parse_query_time
from cosmic_relay.storage.base import DataPoint, RuntimeState
from tests.conftest import T0, make_source, source_definition


def _sources():
    return [make_source("alpha"), make_source("beta"), make_source("off", permitted=False)]


@pytest.fixture
def service_factory(store, extractor, test_settings, clock):
    def build(**overrides):
        settings = test_settings.model_copy(update=overrides)
        return RelayService(
            sources=_sources(),
            store=store,
            extractor=extractor,
            settings=settings,
            clock=clock,
            background=False,
        )

    return build


@pytest_asyncio.fixture
async def service(service_factory):
    relay = service_factory()
    await relay.start()
    yield relay
    await relay.stop()


async def _seed(store, source_id, ages_ms, clock):
    for age in ages_ms:
        await store.create_data_point(
            DataPoint(
                source_id=source_id,
                raw={"value": str(age)},
                parsed={"value": age},
                collected_at=to_datetime(clock() - age),
            )
        )


async def _crawl_once(relay):
    dispatched = relay.scheduler.tick()
    await relay.scheduler.wait_idle()
    return dispatched


# ── Latest ──────────────────────────────────────────────


class TestLatest:
    @pytest.mark.asyncio
    async def test_returns_most_recent(self, service, store, clock):
        await _seed(store, "alpha", [HOUR_MS, 60_000, 2 * HOUR_MS], clock)
        point = await service.latest("alpha")
        assert point.parsed["value"] == 60_000

    @pytest.mark.asyncio
    async def test_rows_outside_window_are_invisible(self, service, store, clock):
        await _seed(store, "alpha", [5 * HOUR_MS], clock)
        with pytest.raises(DataNotFoundError):
            await service.latest("alpha")

    @pytest.mark.asyncio
    async def test_rows_after_now_are_invisible(self, service, store, clock):
        await _seed(store, "alpha", [-HOUR_MS], clock)
        with pytest.raises(DataNotFoundError):
            await service.latest("alpha")

        await _seed(store, "alpha", [60_000], clock)
        point = await service.latest("alpha")
        assert point.parsed["value"] == 60_000

    @pytest.mark.asyncio
    async def test_disabled_source_is_not_found(self, service, store, clock):
        await _seed(store, "off", [0], clock)
        with pytest.raises(SourceNotFoundError):
            await service.latest("off")

    @pytest.mark.asyncio
    async def test_unknown_source(self, service):
        with pytest.raises(SourceNotFoundError):
            await service.latest("nope")


# ── History ─────────────────────────────────────────────


class TestHistory:
    @pytest.mark.asyncio
    async def test_default_range_is_whole_window(self, service, store, clock):
        await _seed(store, "alpha", [5 * HOUR_MS, 3 * HOUR_MS, HOUR_MS], clock)

        result = await service.history("alpha")

        assert [p.parsed["value"] for p in result.data] == [3 * HOUR_MS, HOUR_MS]
        assert result.start == to_datetime(clock() - 4 * HOUR_MS)
        assert result.end == to_datetime(clock())

    @pytest.mark.asyncio
    async def test_start_before_window_is_clamped(self, service, store, clock):
        await _seed(store, "alpha", [5 * HOUR_MS, HOUR_MS], clock)
        start = (to_datetime(clock()) - timedelta(days=2)).isoformat()

        result = await service.history("alpha", start=start)

        assert result.start == to_datetime(clock() - 4 * HOUR_MS)
        assert [p.parsed["value"] for p in result.data] == [HOUR_MS]

    @pytest.mark.asyncio
    async def test_end_in_future_is_clamped(self, service, store, clock):
        await _seed(store, "alpha", [HOUR_MS], clock)
        result = await service.history("alpha", end=str(clock() + DAY_MS))
        assert result.end == to_datetime(clock())

    @pytest.mark.asyncio
    async def test_start_after_end_is_invalid(self, service, store, clock):
        await _seed(store, "alpha", [HOUR_MS], clock)
        with pytest.raises(InvalidRangeError):
            await service.history(
                "alpha", start="2026-02-07T09:00:00Z", end="2026-02-07T08:00:00Z"
            )

    @pytest.mark.asyncio
    async def test_unparseable_bound_is_invalid(self, service):
        with pytest.raises(InvalidRangeError):
            await service.history("alpha", start="yesterday")

    @pytest.mark.asyncio
    async def test_range_entirely_before_window(self, service, store, clock):
        await _seed(store, "alpha", [5 * HOUR_MS], clock)
        with pytest.raises(DataNotFoundError):
            await service.history(
                "alpha",
                start=str(clock() - 6 * HOUR_MS),
                end=str(clock() - 5 * HOUR_MS),
            )

    @pytest.mark.asyncio
    async def test_empty_window(self, service):
        with pytest.raises(DataNotFoundError):
            await service.history("alpha")

    def test_parse_query_time_accepts_epoch_ms_and_naive_iso(self):
        assert parse_query_time(str(T0)) == to_datetime(T0)
        assert parse_query_time("2026-02-07T10:00:00") == to_datetime(T0)


# ── Catalog ─────────────────────────────────────────────


class TestCatalog:
    @pytest.mark.asyncio
    async def test_list_sources(self, service):
        sources = await service.list_sources()
        assert [s["id"] for s in sources] == ["alpha", "beta", "off"]
        assert [s["enabled"] for s in sources] == [True, True, False]

    @pytest.mark.asyncio
    async def test_source_detail_after_crawl(self, service):
        await _crawl_once(service)

        detail = await service.get_source("alpha")

        assert [s["state"] for s in detail["statuses"]] == ["idle", "success", "running"]
        assert detail["last_status"] == "success"
        assert detail["config"]["effective_interval_ms"] == 30_000

    @pytest.mark.asyncio
    async def test_unknown_source_detail(self, service):
        with pytest.raises(SourceNotFoundError):
            await service.get_source("nope")

    @pytest.mark.asyncio
    async def test_resolved_configs(self, service):
        configs = service.list_resolved_configs()
        assert {c["id"] for c in configs} == {"alpha", "beta", "off"}


# ── Subscriptions ───────────────────────────────────────


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_greeting_includes_latest(self, service, store, clock):
        await _seed(store, "alpha", [HOUR_MS, 1000], clock)

        subscription, greeting = await service.open_subscription("alpha")

        assert [m["type"] for m in greeting] == ["connected", "latest"]
        assert greeting[1]["data"]["parsed"] == {"value": 1000}
        service.close_subscription(subscription)

    @pytest.mark.asyncio
    async def test_greeting_skips_rows_after_now(self, service, store, clock):
        await _seed(store, "alpha", [-HOUR_MS], clock)

        subscription, greeting = await service.open_subscription("alpha")

        assert [m["type"] for m in greeting] == ["connected"]
        service.close_subscription(subscription)

    @pytest.mark.asyncio
    async def test_greeting_without_data(self, service):
        subscription, greeting = await service.open_subscription("alpha")
        assert [m["type"] for m in greeting] == ["connected"]
        service.close_subscription(subscription)

    @pytest.mark.asyncio
    async def test_disabled_source_rejected_without_subscribing(self, service):
        with pytest.raises(SourceNotFoundError):
            await service.open_subscription("off")
        assert service.bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_limit_surfaces(self, service):
        for _ in range(5):
            await service.open_subscription("alpha")
        with pytest.raises(SubscriptionLimitError):
            await service.open_subscription("beta")

    @pytest.mark.asyncio
    async def test_update_follows_crawl(self, service):
        subscription, _ = await service.open_subscription("alpha")

        await _crawl_once(service)

        message = subscription.get_nowait()
        assert message["type"] == "update"
        assert message["data"]["parsed"] == {"value": 42.0}
        service.close_subscription(subscription)
        assert service.bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_store_failure_releases_subscription(self, service, store):
        async def broken(*args, **kwargs):
            raise RuntimeError("db down")

        store.find_latest = broken
        with pytest.raises(RuntimeError):
            await service.open_subscription("alpha")
        assert service.bus.subscriber_count() == 0


# ── Restart ─────────────────────────────────────────────


class TestRestart:
    @pytest.mark.asyncio
    async def test_pause_survives_restart(self, service_factory, extractor, clock):
        first = service_factory()
        await first.start()
        extractor.fail("https://example.org/alpha", 5)
        for attempt in range(5):
            if attempt:
                clock.set(first.registry.get("alpha").next_run_at)
            await _crawl_once(first)
        paused_until = first.registry.paused_until("alpha")
        await first.stop()
        clock.advance(20 * HOUR_MS)

        second = service_factory()
        await second.start()

        state = second.registry.get("alpha")
        assert paused_until is not None
        assert state.consecutive_failures == 5
        assert state.paused
        assert "alpha" not in [s.id for s in second.registry.due_sources()]
        await second.stop()

    @pytest.mark.asyncio
    async def test_backoff_survives_restart(self, service_factory, extractor, clock):
        first = service_factory()
        await first.start()
        extractor.fail("https://example.org/alpha", 1)
        await _crawl_once(first)
        next_run_at = first.registry.get("alpha").next_run_at
        await first.stop()

        second = service_factory()
        await second.start()

        assert second.registry.get("alpha").next_run_at == next_run_at
        assert "alpha" not in [s.id for s in second.registry.due_sources()]
        await second.stop()

    @pytest.mark.asyncio
    async def test_persisted_pause_restored(self, service_factory, store, clock):
        await store.save_runtime_state(
            "alpha",
            RuntimeState(
                consecutive_failures=5, paused_until=to_datetime(clock() + 20 * HOUR_MS)
            ),
        )

        relay = service_factory()
        await relay.start()

        assert relay.registry.get("alpha").paused
        assert [s.id for s in relay.registry.due_sources()] == ["beta"]
        await relay.stop()

    @pytest.mark.asyncio
    async def test_failure_state_ignored_when_disabled(self, service_factory, store, clock):
        await store.save_runtime_state(
            "alpha",
            RuntimeState(
                consecutive_failures=5, paused_until=to_datetime(clock() + 20 * HOUR_MS)
            ),
        )

        relay = service_factory(persist_failure_state=False)
        await relay.start()

        state = relay.registry.get("alpha")
        assert state.consecutive_failures == 0
        assert not state.paused
        await relay.stop()


# ── Preview ─────────────────────────────────────────────


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_probes_selectors(self, service):
        result = await service.preview(source_definition("candidate"))
        assert result.url == "https://example.org/candidate"
        assert [p.field for p in result.results] == ["value"]

    @pytest.mark.asyncio
    async def test_invalid_definition(self, service):
        with pytest.raises(ConfigError):
            await service.preview({"id": "x"})

    @pytest.mark.asyncio
    async def test_forbidden_in_production(self, service_factory):
        relay = service_factory(environment="production")
        with pytest.raises(PreviewNotAllowedError):
            await relay.preview(source_definition("candidate"))


# ── Health ──────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_snapshot(self, service):
        health = await service.health()
        assert health["status"] == "healthy"
        assert health["sources"] == 3
        assert health["enabled_sources"] == 2
        assert health["subscribers"] == 0
