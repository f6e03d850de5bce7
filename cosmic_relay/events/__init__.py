"""Events: in-process delivery of source updates to live subscribers."""

from cosmic_relay.events.bus import EventBus, Message, Subscription
from cosmic_relay.events.messages import (
    connected_message,
    error_message,
    heartbeat_message,
    latest_message,
    update_message,
)

__all__ = [
    "EventBus",
    "Message",
    "Subscription",
    "connected_message",
    "error_message",
    "heartbeat_message",
    "latest_message",
    "update_message",
]
