"""Observability layer - logging and metrics."""

from cosmic_relay.observability.logging import (
    bind_context,
    clear_context,
    crawl_context,
    setup_logging,
)
from cosmic_relay.observability.metrics import MetricsCollector, get_metrics

__all__ = [
    "setup_logging",
    "bind_context",
    "clear_context",
    "crawl_context",
    "MetricsCollector",
    "get_metrics",
]
