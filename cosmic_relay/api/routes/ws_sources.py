"""WebSocket endpoint for live source updates.

Clients connect to ``/ws/sources/{source_id}``. Unknown or disabled
sources get an error message and close code 1008 before any subscription
exists. Otherwise the client receives, in order: ``connected``, the
``latest`` stored value (when there is one inside the retention window),
then ``update`` / ``error`` messages as crawls finish. A ``heartbeat`` is
sent when the stream has been quiet for ``ws_heartbeat_seconds``.

Every exit path unsubscribes; a failing connection never affects other
subscribers or the crawl schedule.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from cosmic_relay.api.dependencies import peek_relay_service
from cosmic_relay.config.settings import get_settings
from cosmic_relay.errors import SourceNotFoundError, SubscriptionLimitError
from cosmic_relay.events.bus import Subscription
from cosmic_relay.events.messages import heartbeat_message

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


async def _reject(ws: WebSocket, message: str, code: int, reason: str) -> None:
    await ws.send_json({"type": "error", "message": message})
    await ws.close(code=code, reason=reason)


async def _pump(ws: WebSocket, subscription: Subscription, heartbeat_seconds: float) -> None:
    """
    Forward bus messages to the socket until the bus ends the stream.

    The handler cancels this task before it unsubscribes, so reaching the
    end of the stream here means the bus closed it: the subscriber was too
    slow, or the relay is shutting down.
    """
    while True:
        try:
            message = await asyncio.wait_for(subscription.get(), timeout=heartbeat_seconds)
        except TimeoutError:
            message = heartbeat_message()
        if message is None:
            break
        await ws.send_json(message)

    if subscription.dropped:
        await ws.close(code=CLOSE_TRY_AGAIN_LATER, reason="Subscriber too slow")
    else:
        await ws.close(code=CLOSE_GOING_AWAY, reason="Server shutting down")


def _pump_done(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        # Usually a send racing a client disconnect
        logger.debug("WebSocket pump stopped: %s", error)


@router.websocket("/ws/sources/{source_id}")
async def ws_source(ws: WebSocket, source_id: str) -> None:
    """Stream updates for one source."""
    service = peek_relay_service()
    if service is None:
        await ws.close(code=CLOSE_INTERNAL_ERROR, reason="Relay service not available")
        return

    await ws.accept()

    if not service.is_subscribable(source_id):
        await _reject(ws, "Unknown or disabled source", CLOSE_POLICY_VIOLATION, "Unknown source")
        return

    try:
        subscription, greeting = await service.open_subscription(source_id)
    except SourceNotFoundError:
        await _reject(ws, "Unknown or disabled source", CLOSE_POLICY_VIOLATION, "Unknown source")
        return
    except SubscriptionLimitError:
        await _reject(ws, "Too many subscribers", CLOSE_TRY_AGAIN_LATER, "Max connections reached")
        return
    except Exception as e:
        logger.error("Subscription setup failed (source_id=%s): %s", source_id, e, exc_info=True)
        await _reject(ws, "Internal server error", CLOSE_INTERNAL_ERROR, "Internal error")
        return

    logger.info(
        "WebSocket subscriber connected (source_id=%s, total=%d)",
        source_id, service.bus.subscriber_count(),
    )

    pump: asyncio.Task | None = None
    try:
        for message in greeting:
            await ws.send_json(message)

        heartbeat = get_settings().ws_heartbeat_seconds
        pump = asyncio.create_task(_pump(ws, subscription, heartbeat), name=f"ws_pump_{source_id}")
        pump.add_done_callback(_pump_done)

        # Keep connection alive, answering client pings
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        # Transport failures stay with this connection
        logger.warning("WebSocket connection failed (source_id=%s): %s", source_id, e)
    finally:
        # No awaits here: the transport may already be cancelling this handler
        if pump is not None:
            pump.cancel()
        service.close_subscription(subscription)
        logger.info(
            "WebSocket subscriber disconnected (source_id=%s, total=%d)",
            source_id, service.bus.subscriber_count(),
        )
