"""
Signaling Routes - Desktop/phone session brokering over two transports

Provides the signaling relay endpoints:
- WebSocket transport (persistent, preferred)
- HTTP long-polling transport (fallback when WebSocket upgrades are blocked)
- HTTP stats endpoint for monitoring

The router is built per mount path. main.py mounts it on the application
path and on the conventional default path; both routers resolve the same
SignalingChannel through get_deps().

Message format (both transports, both directions):
{
    "event": "create-session" | "join-session" | "signal" | ...,
    "data": {...} | null
}
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from camlink.core.signaling.transport import ClientConnection, POLLING, WEBSOCKET
from camlink.routes import get_deps
from camlink.utils.error_handler import ConnectionNotFoundError, handle_api_error

logger = logging.getLogger(__name__)

MAX_POLL_TIMEOUT = 60.0


# =============================================================================
# WEBSOCKET TRANSPORT
# =============================================================================


async def _pump_outbox(websocket: WebSocket, connection: ClientConnection):
    """Write queued envelopes to the socket in order until the connection closes."""
    try:
        while True:
            message = await connection.next_message()
            if message is None:
                break
            await websocket.send_json(message)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug(f"[Signaling-WS] Send to {connection.connection_id} failed: {e}")
        return

    # Closed from the server side (shutdown)
    if websocket.application_state == WebSocketState.CONNECTED:
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"[Signaling-WS] Close failed: {e}")


async def serve_websocket(websocket: WebSocket, path: str):
    """Run one WebSocket signaling client until it disconnects."""
    deps = get_deps()
    channel = deps.signaling_channel
    await websocket.accept()

    connection = channel.connect(WEBSOCKET)
    connection_id = connection.connection_id
    logger.info(f"[Signaling-WS] Client connected on {path}: {connection_id}")

    writer = asyncio.create_task(_pump_outbox(websocket, connection))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("text") is not None:
                channel.handle_message(connection_id, message["text"])
            elif message.get("bytes") is not None:
                channel.handle_message(connection_id, message["bytes"])

    except WebSocketDisconnect:
        pass
    except ConnectionNotFoundError:
        logger.info(f"[Signaling-WS] Connection {connection_id} was closed by the server")
    except Exception as e:
        logger.error(f"[Signaling-WS] Error on {connection_id}: {e}")
    finally:
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        session_id = channel.disconnect(connection_id)
        logger.info(
            f"[Signaling-WS] Client disconnected: {connection_id}"
            + (f" (session {session_id} removed)" if session_id else "")
        )


# =============================================================================
# ROUTER FACTORY
# =============================================================================


def create_signaling_router(path: str) -> APIRouter:
    """
    Build the signaling router for one mount path.

    Args:
        path: Mount prefix, e.g. "/api/signaling"
    """
    router = APIRouter(prefix=path, tags=["signaling"])

    @router.websocket("/ws")
    async def signaling_websocket(websocket: WebSocket):
        """
        WebSocket signaling endpoint.

        The server greets with {"event": "connected", "data": {"connectionId": ...}}
        and then relays session events until either side closes.
        """
        await serve_websocket(websocket, path)

    # =========================================================================
    # LONG-POLLING TRANSPORT
    # =========================================================================

    @router.post("/poll")
    async def open_polling_connection():
        """Open a long-polling connection. Returns its id and the poll timeout."""
        deps = get_deps()
        connection = deps.signaling_channel.connect(POLLING)
        logger.info(f"[Signaling-Poll] Client connected on {path}: {connection.connection_id}")
        return {
            "success": True,
            "connectionId": connection.connection_id,
            "pollTimeout": deps.settings.POLL_TIMEOUT,
        }

    @router.get("/poll/{connection_id}")
    async def poll_events(
        connection_id: str,
        timeout: Optional[float] = Query(None, ge=0, le=MAX_POLL_TIMEOUT),
    ):
        """
        Long-poll for queued events.

        Holds the request open until at least one event is available or the
        timeout elapses, then returns every queued event in order.
        """
        deps = get_deps()
        connection = deps.connection_hub.get(connection_id)
        try:
            if connection is None or connection.transport != POLLING:
                raise ConnectionNotFoundError(connection_id)

            wait = deps.settings.POLL_TIMEOUT if timeout is None else timeout
            events = await connection.drain(wait)
            if not events and connection.closed:
                raise ConnectionNotFoundError(connection_id)
            return {"success": True, "events": events}
        except ConnectionNotFoundError as e:
            return handle_api_error(e)

    @router.post("/poll/{connection_id}")
    async def send_polling_message(connection_id: str, request: Request):
        """Submit one client envelope over the polling transport."""
        deps = get_deps()
        connection = deps.connection_hub.get(connection_id)
        try:
            if connection is None or connection.transport != POLLING:
                raise ConnectionNotFoundError(connection_id)
            body = await request.body()
            accepted = deps.signaling_channel.handle_message(connection_id, body)
            return {"success": accepted}
        except ConnectionNotFoundError as e:
            return handle_api_error(e)

    @router.delete("/poll/{connection_id}")
    async def close_polling_connection(connection_id: str):
        """Close a polling connection (the client's disconnect)."""
        deps = get_deps()
        connection = deps.connection_hub.get(connection_id)
        try:
            if connection is None or connection.transport != POLLING:
                raise ConnectionNotFoundError(connection_id)
            session_id = deps.signaling_channel.disconnect(connection_id)
            logger.info(f"[Signaling-Poll] Client disconnected: {connection_id}")
            return {"success": True, "sessionRemoved": session_id is not None}
        except ConnectionNotFoundError as e:
            return handle_api_error(e)

    # =========================================================================
    # STATS
    # =========================================================================

    @router.get("/stats")
    async def get_signaling_stats():
        """Get session and connection statistics."""
        deps = get_deps()
        return {"success": True, "path": path, **deps.signaling_channel.get_stats()}

    return router
