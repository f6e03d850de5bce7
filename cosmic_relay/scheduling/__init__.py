"""Scheduling: registry, executor, tick loop and retention sweeper."""

from cosmic_relay.scheduling.backoff import BackoffPolicy
from cosmic_relay.scheduling.executor import CrawlExecutor, RunResult
from cosmic_relay.scheduling.registry import SourceRegistry, SourceState
from cosmic_relay.scheduling.scheduler import Scheduler
from cosmic_relay.scheduling.sweeper import RetentionSweeper

__all__ = [
    "BackoffPolicy",
    "CrawlExecutor",
    "RetentionSweeper",
    "RunResult",
    "Scheduler",
    "SourceRegistry",
    "SourceState",
]
