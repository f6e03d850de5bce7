"""Request middleware for the gateway."""

from cosmic_relay.api.middleware.timeout import TimeoutMiddleware

__all__ = ["TimeoutMiddleware"]
