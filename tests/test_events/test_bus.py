"""Tests for EventBus subscription table and fan-out."""

import asyncio

import pytest

from cosmic_relay.errors import SubscriptionLimitError
from cosmic_relay.events.bus import EventBus


def _msg(n: int) -> dict:
    return {"type": "update", "source_id": "alpha", "data": {"n": n}}


def _drain(subscription) -> list:
    items = []
    while subscription.pending:
        item = subscription.get_nowait()
        items.append(item)
        if item is None:
            break
    return items


@pytest.fixture
def bus():
    return EventBus(max_subscribers=3, queue_size=5)


# ── Subscription table ──────────────────────────────────


class TestSubscriptionTable:
    def test_subscribe_and_unsubscribe(self, bus):
        first = bus.subscribe("alpha")
        second = bus.subscribe("beta")
        assert bus.subscriber_count() == 2
        assert bus.subscriber_count("alpha") == 1

        assert bus.unsubscribe(first) is True
        assert bus.unsubscribe(second) is True
        assert bus.subscriber_count() == 0
        assert bus.subscriber_count("alpha") == 0

    def test_unsubscribe_twice_is_safe(self, bus):
        subscription = bus.subscribe("alpha")
        assert bus.unsubscribe(subscription) is True
        assert bus.unsubscribe(subscription) is False
        assert bus.subscriber_count() == 0

    def test_limit_enforced(self, bus):
        for _ in range(3):
            bus.subscribe("alpha")
        with pytest.raises(SubscriptionLimitError):
            bus.subscribe("beta")
        assert bus.subscriber_count() == 3

    def test_slot_freed_after_unsubscribe(self, bus):
        subscriptions = [bus.subscribe("alpha") for _ in range(3)]
        bus.unsubscribe(subscriptions[0])
        bus.subscribe("alpha")
        assert bus.subscriber_count() == 3


# ── Delivery ────────────────────────────────────────────


class TestPublish:
    def test_topics_are_isolated(self, bus):
        alpha = bus.subscribe("alpha")
        beta = bus.subscribe("beta")

        assert bus.publish("alpha", _msg(1)) == 1

        assert _drain(alpha) == [_msg(1)]
        assert _drain(beta) == []

    def test_publish_without_subscribers(self, bus):
        assert bus.publish("nobody", _msg(1)) == 0

    def test_all_subscribers_see_identical_order(self, bus):
        subscriptions = [bus.subscribe("alpha") for _ in range(2)]
        for n in (1, 2):
            bus.publish("alpha", _msg(n))

        for subscription in subscriptions:
            assert _drain(subscription) == [_msg(1), _msg(2)]

    def test_unsubscribed_receives_nothing_more(self, bus):
        subscription = bus.subscribe("alpha")
        bus.unsubscribe(subscription)

        assert bus.publish("alpha", _msg(1)) == 0
        assert _drain(subscription) == [None]

    @pytest.mark.asyncio
    async def test_get_waits_for_publish(self, bus):
        subscription = bus.subscribe("alpha")
        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        assert not waiter.done()

        bus.publish("alpha", _msg(7))

        assert await asyncio.wait_for(waiter, 1) == _msg(7)


# ── Back-pressure ───────────────────────────────────────


class TestSlowSubscriber:
    def test_full_queue_drops_only_that_subscriber(self, bus):
        slow = bus.subscribe("alpha")
        fast = bus.subscribe("alpha")

        for n in range(5):
            bus.publish("alpha", _msg(n))
            fast.get_nowait()
        delivered = bus.publish("alpha", _msg(5))

        assert delivered == 1
        assert slow.dropped and slow.closed
        assert not fast.dropped
        assert bus.subscriber_count("alpha") == 1
        assert fast.get_nowait() == _msg(5)

    @pytest.mark.asyncio
    async def test_dropped_subscriber_drains_then_ends(self, bus):
        slow = bus.subscribe("alpha")
        for n in range(6):
            bus.publish("alpha", _msg(n))

        received = []
        while (message := await slow.get()) is not None:
            received.append(message)

        assert received == [_msg(n) for n in range(5)]
        assert await slow.get() is None


# ── Shutdown ────────────────────────────────────────────


class TestCloseAll:
    @pytest.mark.asyncio
    async def test_close_all_ends_every_stream(self, bus):
        subscriptions = [bus.subscribe("alpha"), bus.subscribe("beta")]

        bus.close_all()

        assert bus.subscriber_count() == 0
        for subscription in subscriptions:
            assert subscription.closed
            assert await subscription.get() is None
