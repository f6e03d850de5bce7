"""
Prometheus metrics for monitoring the relay core.

Defines and exposes metrics for:
- Crawl outcomes and latency per source
- Scheduler concurrency
- Failure and pause state per source
- Live subscribers
- Retention sweeps

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from cosmic_relay.config.settings import get_settings

logger = logging.getLogger(__name__)

# Crawls are browser-bound, so buckets stretch well past the API defaults
CRAWL_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the relay core.

    Usage:
        metrics = get_metrics()
        metrics.start_server()
        metrics.record_crawl("iss-position", "success", 1.8)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.crawl_runs = Counter(
            "cosmic_relay_crawl_runs_total",
            "Total crawl runs by outcome",
            ["source_id", "status"],  # status: success, error
        )

        self.crawl_duration = Histogram(
            "cosmic_relay_crawl_duration_seconds",
            "Wall time of a single crawl run",
            ["source_id"],
            buckets=CRAWL_BUCKETS,
        )

        self.crawls_in_flight = Gauge(
            "cosmic_relay_crawls_in_flight",
            "Number of crawl runs currently executing",
        )

        self.source_failures = Gauge(
            "cosmic_relay_source_failures",
            "Consecutive failures per source",
            ["source_id"],
        )

        self.source_paused = Gauge(
            "cosmic_relay_source_paused",
            "Source pause state (1=paused, 0=active)",
            ["source_id"],
        )

        self.subscribers = Gauge(
            "cosmic_relay_subscribers",
            "Live subscriptions across all sources",
        )

        self.retention_deleted = Counter(
            "cosmic_relay_retention_deleted_total",
            "Rows removed by the retention sweeper",
            ["kind"],  # kind: data_point, status_record
        )

        self.sweep_errors = Counter(
            "cosmic_relay_sweep_errors_total",
            "Retention sweeps that raised",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_crawl(self, source_id: str, status: str, duration: float) -> None:
        """Record the outcome and latency of one crawl run."""
        self.crawl_runs.labels(source_id=source_id, status=status).inc()
        if duration > 0:
            self.crawl_duration.labels(source_id=source_id).observe(duration)

    def set_in_flight(self, count: int) -> None:
        self.crawls_in_flight.set(count)

    def set_source_state(self, source_id: str, failures: int, paused: bool) -> None:
        """Mirror a source's failure counter and pause flag."""
        self.source_failures.labels(source_id=source_id).set(failures)
        self.source_paused.labels(source_id=source_id).set(1 if paused else 0)

    def set_subscribers(self, count: int) -> None:
        self.subscribers.set(count)

    def record_sweep(self, data_points: int, status_records: int) -> None:
        """Record rows removed by one retention sweep."""
        if data_points:
            self.retention_deleted.labels(kind="data_point").inc(data_points)
        if status_records:
            self.retention_deleted.labels(kind="status_record").inc(status_records)

    def record_sweep_error(self) -> None:
        self.sweep_errors.inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
