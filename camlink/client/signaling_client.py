"""
Signaling Client - Connects a desktop or phone client to the signaling server.

Tries the WebSocket transport first and falls back to HTTP long-polling when
the upgrade is blocked. Incoming events are dispatched one at a time, in
arrival order, to the handlers registered with on().

Usage:
    client = SignalingClient("http://localhost:8080")

    @client.on("session-created")
    async def on_session_created(data):
        print(data["sessionId"])

    await client.connect()
    await client.emit("create-session")
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from camlink.config.defaults import Defaults
from camlink.core.signaling import messages
from camlink.core.signaling.transport import POLLING, TRANSPORTS, WEBSOCKET
from camlink.utils.error_handler import SignalingConnectionError

logger = logging.getLogger(__name__)

# Pseudo-event dispatched when the transport drops
DISCONNECT = "disconnect"

_DISCONNECTED = object()

Handler = Callable[[Optional[Dict[str, Any]]], Any]


def websocket_url(http_url: str) -> str:
    """Translate an http(s) URL into the matching ws(s) URL."""
    parts = urlsplit(http_url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


class SignalingClient:
    def __init__(
        self,
        server_url: str,
        path: str = "/api/signaling",
        transports: Sequence[str] = TRANSPORTS,
        poll_timeout: Optional[float] = None,
        connect_timeout: float = 10.0,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        unknown = [t for t in transports if t not in TRANSPORTS]
        if unknown or not transports:
            raise ValueError(f"Unsupported transports: {list(transports)}")

        self.base_url = server_url.rstrip("/") + "/" + path.strip("/")
        self.transports = tuple(transports)
        self.poll_timeout = poll_timeout or Defaults.POLL_TIMEOUT
        self.connect_timeout = connect_timeout

        self.transport: Optional[str] = None
        self.connection_id: Optional[str] = None
        self.connected = False

        self._session_factory = session_factory
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._handlers: Dict[str, List[Handler]] = {}
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._greeting = asyncio.Event()
        self._reader: Optional[asyncio.Task] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._closing = False

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def on(self, event: str, handler: Optional[Handler] = None):
        """
        Register a handler for a server event. Works as a decorator too.

        Handlers receive the event's `data` object and may be coroutines.
        """
        def register(func: Handler) -> Handler:
            self._handlers.setdefault(event, []).append(func)
            return func

        if handler is not None:
            return register(handler)
        return register

    async def _dispatch(self, event: str, data: Optional[Dict[str, Any]]):
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[SignalingClient] Handler for '{event}' failed: {e}", exc_info=True)

    async def _dispatch_loop(self):
        while True:
            message = await self._inbox.get()
            if message is _DISCONNECTED:
                was_connected = self.connected
                self.connected = False
                if was_connected and not self._closing:
                    logger.warning(f"[SignalingClient] {self.transport} transport closed")
                    await self._dispatch(DISCONNECT, None)
                return

            event = message.get("event")
            data = message.get("data")
            if event == messages.CONNECTED and data:
                self.connection_id = data.get("connectionId", self.connection_id)
                self._greeting.set()
            await self._dispatch(event, data)

    # =========================================================================
    # CONNECT
    # =========================================================================

    async def connect(self):
        """
        Connect using the first transport that works.

        Raises:
            SignalingConnectionError: If no transport could reach the server
        """
        self._http = self._session_factory()
        self._closing = False
        self._inbox = asyncio.Queue()
        self._greeting.clear()
        errors = []

        for transport in self.transports:
            try:
                if transport == WEBSOCKET:
                    await self._connect_websocket()
                else:
                    await self._connect_polling()
                self.transport = transport
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"[SignalingClient] {transport} transport unavailable: {e}")
                errors.append(f"{transport}: {e}")
        else:
            await self._http.close()
            self._http = None
            raise SignalingConnectionError(
                "Could not connect to signaling server (" + "; ".join(errors) + ")",
                url=self.base_url,
            )

        self.connected = True
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        try:
            await asyncio.wait_for(self._greeting.wait(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise SignalingConnectionError(
                "Signaling server did not greet the connection", url=self.base_url
            )
        logger.info(
            f"[SignalingClient] Connected via {self.transport} as {self.connection_id}"
        )

    async def _connect_websocket(self):
        url = websocket_url(self.base_url + "/ws")
        self._ws = await asyncio.wait_for(
            self._http.ws_connect(url, heartbeat=20), timeout=self.connect_timeout
        )
        self._reader = asyncio.create_task(self._read_websocket())

    async def _connect_polling(self):
        timeout = aiohttp.ClientTimeout(total=self.connect_timeout)
        async with self._http.post(self.base_url + "/poll", timeout=timeout) as resp:
            resp.raise_for_status()
            body = await resp.json()
        self.connection_id = body["connectionId"]
        self._reader = asyncio.create_task(self._read_polling(self.connection_id))

    # =========================================================================
    # READERS
    # =========================================================================

    async def _read_websocket(self):
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        self._inbox.put_nowait(msg.json())
                    except ValueError:
                        logger.warning("[SignalingClient] Dropped non-JSON message")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"[SignalingClient] WebSocket error: {self._ws.exception()}")
                    break
        finally:
            self._inbox.put_nowait(_DISCONNECTED)

    async def _read_polling(self, connection_id: str):
        url = f"{self.base_url}/poll/{connection_id}"
        timeout = aiohttp.ClientTimeout(total=self.poll_timeout + 10)
        try:
            while not self._closing:
                async with self._http.get(
                    url, params={"timeout": str(self.poll_timeout)}, timeout=timeout
                ) as resp:
                    if resp.status == 404:
                        logger.info(f"[SignalingClient] Polling connection {connection_id} closed")
                        break
                    resp.raise_for_status()
                    body = await resp.json()
                for event in body.get("events", []):
                    self._inbox.put_nowait(event)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"[SignalingClient] Polling failed: {e}")
        finally:
            self._inbox.put_nowait(_DISCONNECTED)

    # =========================================================================
    # SEND
    # =========================================================================

    async def emit(self, event: str, data: Optional[Dict[str, Any]] = None):
        """
        Send one event to the server.

        Raises:
            SignalingConnectionError: If not connected or the send failed
        """
        if not self.connected:
            raise SignalingConnectionError(
                f"Cannot send '{event}', not connected", url=self.base_url
            )
        message = messages.envelope(event, data)

        try:
            if self.transport == WEBSOCKET:
                await self._ws.send_json(message)
            else:
                url = f"{self.base_url}/poll/{self.connection_id}"
                async with self._http.post(url, json=message) as resp:
                    if resp.status == 404:
                        raise SignalingConnectionError(
                            "Polling connection expired", url=self.base_url
                        )
                    resp.raise_for_status()
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise SignalingConnectionError(
                f"Failed to send '{event}': {e}", url=self.base_url
            ) from e

    async def emit_signal(self, session_id: str, signal: Dict[str, Any]):
        """Relay a connection descriptor to the session's other member."""
        await self.emit(messages.SIGNAL, {"sessionId": session_id, "signal": signal})

    # =========================================================================
    # CLOSE
    # =========================================================================

    async def close(self):
        """Disconnect (idempotent). No 'disconnect' event is dispatched."""
        if self._http is None:
            return
        self._closing = True
        self.connected = False

        if self.transport == POLLING and self.connection_id:
            try:
                async with self._http.delete(f"{self.base_url}/poll/{self.connection_id}"):
                    pass
            except aiohttp.ClientError as e:
                logger.debug(f"[SignalingClient] Close request failed: {e}")
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        for task in (self._reader, self._dispatcher):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        # Lets a dispatcher that called close() from a handler finish
        self._inbox.put_nowait(_DISCONNECTED)
        self._reader = self._dispatcher = None

        await self._http.close()
        self._http = None
        logger.info(f"[SignalingClient] Disconnected {self.connection_id}")
