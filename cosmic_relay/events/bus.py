"""In-process publish/subscribe keyed by source id.

The bus keeps an explicit subscription table instead of anonymous
listeners: every subscription is registered under its source id, counted,
and must be removed with ``unsubscribe`` when its connection closes.

Each subscription owns a bounded FIFO queue. ``publish`` never awaits;
it appends the message to every subscriber of the topic in the same
order, so all subscribers of a source see an identical sequence. A
subscriber that cannot keep up (queue full) is dropped from the table
and its consumer receives end-of-stream, leaving every other subscriber
and the crawl cadence untouched.

Pattern: subscription table + per-subscriber queue.
"""

import asyncio
import itertools
import logging
from typing import Any

from cosmic_relay.errors import SubscriptionLimitError
from cosmic_relay.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

Message = dict[str, Any]

_CLOSED = object()
_ids = itertools.count(1)


class Subscription:
    """Handle for one subscriber to one source topic."""

    def __init__(self, source_id: str, queue_size: int) -> None:
        self.id = next(_ids)
        self.source_id = source_id
        # One extra slot is reserved for the end-of-stream marker
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + 1)
        self._limit = queue_size
        self.closed = False
        self.dropped = False

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, source_id={self.source_id!r}, closed={self.closed})"

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, message: Message) -> bool:
        if self.closed or self._queue.qsize() >= self._limit:
            return False
        self._queue.put_nowait(message)
        return True

    def _close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Message | None:
        """Next message in publish order, or None once the subscription is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep returning end-of-stream to repeated callers
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def get_nowait(self) -> Message | None:
        """Like ``get`` but raises ``asyncio.QueueEmpty`` when nothing is buffered."""
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item


class EventBus:
    """
    Topic-per-source fan-out with a bounded subscription table.

    Usage:
        bus = EventBus(max_subscribers=200, queue_size=100)
        sub = bus.subscribe("iss-position")
        bus.publish("iss-position", {"type": "update", ...})
        message = await sub.get()
        bus.unsubscribe(sub)
    """

    def __init__(self, max_subscribers: int = 200, queue_size: int = 100) -> None:
        self._max_subscribers = max_subscribers
        self._queue_size = queue_size
        self._topics: dict[str, dict[int, Subscription]] = {}
        self._count = 0

    def subscriber_count(self, source_id: str | None = None) -> int:
        """Live subscriptions, overall or for one source."""
        if source_id is None:
            return self._count
        return len(self._topics.get(source_id, {}))

    def subscribe(self, source_id: str) -> Subscription:
        """Register a subscriber for ``source_id``.

        Raises:
            SubscriptionLimitError: the table already holds ``max_subscribers``.
        """
        if self._count >= self._max_subscribers:
            raise SubscriptionLimitError(
                f"subscription limit reached ({self._max_subscribers})"
            )
        subscription = Subscription(source_id, self._queue_size)
        self._topics.setdefault(source_id, {})[subscription.id] = subscription
        self._count += 1
        get_metrics().set_subscribers(self._count)
        logger.debug(
            "Subscribed (source_id=%s, id=%d, total=%d)",
            source_id, subscription.id, self._count,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription and close its stream. Safe to call twice.

        Returns:
            True if the subscription was still registered.
        """
        removed = self._remove(subscription)
        subscription._close()
        if removed:
            logger.debug(
                "Unsubscribed (source_id=%s, id=%d, total=%d)",
                subscription.source_id, subscription.id, self._count,
            )
        return removed

    def _remove(self, subscription: Subscription) -> bool:
        topic = self._topics.get(subscription.source_id)
        if topic is None or topic.pop(subscription.id, None) is None:
            return False
        if not topic:
            del self._topics[subscription.source_id]
        self._count -= 1
        get_metrics().set_subscribers(self._count)
        return True

    def publish(self, source_id: str, message: Message) -> int:
        """Deliver ``message`` to every subscriber of ``source_id``.

        Returns:
            Number of subscribers the message was queued for.
        """
        topic = self._topics.get(source_id)
        if not topic:
            return 0

        delivered = 0
        for subscription in list(topic.values()):
            if subscription._offer(message):
                delivered += 1
                continue
            # Slow consumer: drop it rather than block the producer
            subscription.dropped = True
            self._remove(subscription)
            subscription._close()
            logger.warning(
                "Dropped slow subscriber (source_id=%s, id=%d, queued=%d)",
                source_id, subscription.id, self._queue_size,
            )
        return delivered

    def close_all(self) -> None:
        """Close every subscription, e.g. at shutdown."""
        for topic in list(self._topics.values()):
            for subscription in list(topic.values()):
                subscription._close()
        self._topics.clear()
        self._count = 0
        get_metrics().set_subscribers(0)
        logger.info("EventBus closed all subscriptions")
