"""Message shapes delivered to subscribers.

Every message is a JSON-serializable dict with a ``type`` key:
``connected``, ``latest``, ``update``, ``error`` or ``heartbeat``.
"""

from datetime import datetime, timezone
from typing import Any

from cosmic_relay.storage.base import DataPoint


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def connected_message(source_id: str) -> dict[str, Any]:
    return {
        "type": "connected",
        "source_id": source_id,
        "message": f"Subscribed to {source_id}",
    }


def latest_message(point: DataPoint) -> dict[str, Any]:
    return {"type": "latest", "source_id": point.source_id, "data": point.to_dict()}


def update_message(point: DataPoint) -> dict[str, Any]:
    return {"type": "update", "source_id": point.source_id, "data": point.to_dict()}


def error_message(source_id: str, error: str, attempts: int) -> dict[str, Any]:
    return {
        "type": "error",
        "source_id": source_id,
        "error": error,
        "attempts": attempts,
        "timestamp": _now_iso(),
    }


def heartbeat_message() -> dict[str, Any]:
    return {"type": "heartbeat", "timestamp": _now_iso()}
