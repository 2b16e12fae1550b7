"""WebSocket stream of a session's bus events."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from agor_orchestrator.core.events import Subscription
from agor_orchestrator.core.orchestrator import AgorOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])

POLL_INTERVAL_SECONDS = 1.0


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.get(timeout=POLL_INTERVAL_SECONDS)
        if event is not None:
            await websocket.send_json(event.model_dump(mode="json"))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Read (and ignore) client frames until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/sessions/{session_id}/events")
async def session_events(websocket: WebSocket, session_id: str) -> None:
    """Stream every bus event of one session as JSON envelopes.

    The stream ends, and its bus subscription is released, as soon as the
    client disconnects, even if the session is quiet.
    """
    orchestrator: AgorOrchestrator = websocket.app.state.orchestrator
    await websocket.accept()

    with orchestrator.bus.subscribe(session_id) as subscription:
        pump = asyncio.create_task(_forward_events(websocket, subscription))
        watcher = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            done, _ = await asyncio.wait({pump, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pump.cancel()
            watcher.cancel()
            await asyncio.gather(pump, watcher, return_exceptions=True)

        if pump in done:
            error = pump.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                raise error

    logger.debug(f"Event stream for session {session_id} closed")
