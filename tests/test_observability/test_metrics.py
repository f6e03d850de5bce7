"""Tests for the Prometheus metrics collector."""

from prometheus_client import REGISTRY

from cosmic_relay.observability.metrics import get_metrics


def _value(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_collector_is_a_singleton():
    assert get_metrics() is get_metrics()


def test_record_crawl_counts_by_outcome():
    before = _value("cosmic_relay_crawl_runs_total", source_id="metrics-src", status="error")

    get_metrics().record_crawl("metrics-src", "error", 0.2)

    after = _value("cosmic_relay_crawl_runs_total", source_id="metrics-src", status="error")
    assert after == before + 1


def test_source_state_gauges():
    get_metrics().set_source_state("metrics-src", 5, True)

    assert _value("cosmic_relay_source_failures", source_id="metrics-src") == 5
    assert _value("cosmic_relay_source_paused", source_id="metrics-src") == 1


def test_sweep_counts_only_nonzero_kinds():
    before = _value("cosmic_relay_retention_deleted_total", kind="status_record")

    get_metrics().record_sweep(3, 0)

    assert _value("cosmic_relay_retention_deleted_total", kind="status_record") == before
