"""Storage layer for data points, status history and runtime state."""

from cosmic_relay.storage.base import DataPoint, RuntimeState, SourceSummary, StatusRecord, Store
from cosmic_relay.storage.database import Database
from cosmic_relay.storage.memory import MemoryStore
from cosmic_relay.storage.postgres import PostgresStore

__all__ = [
    "DataPoint",
    "Database",
    "MemoryStore",
    "PostgresStore",
    "RuntimeState",
    "SourceSummary",
    "StatusRecord",
    "Store",
]
