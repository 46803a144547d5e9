"""
Signaling Transports - Per-client connections and outbound queues.

Two transports carry the same envelopes:
- websocket: persistent bidirectional socket (preferred)
- polling: HTTP long-polling fallback for networks/proxies that block upgrades

Each connection owns a FIFO outbox. Server-side code only ever calls
ConnectionHub.deliver(), which queues without awaiting, so registry
operations never yield and per-connection order is preserved.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from camlink.core.signaling import messages

logger = logging.getLogger(__name__)

WEBSOCKET = "websocket"
POLLING = "polling"
TRANSPORTS = (WEBSOCKET, POLLING)

# Pushed into an outbox to wake a writer/poller when the connection closes
_CLOSED = None


class ClientConnection:
    """A signaling client attached over one transport."""

    def __init__(self, transport: str, connection_id: Optional[str] = None):
        if transport not in TRANSPORTS:
            raise ValueError(f"Unknown transport: {transport}")
        self.connection_id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.connected_at = time.time()
        self.last_seen = self.connected_at
        self.closed = False
        self.messages_sent = 0
        self.active_polls = 0
        self._outbox: asyncio.Queue = asyncio.Queue()

    def deliver(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Queue an event for the client. Returns False once closed."""
        if self.closed:
            return False
        self._outbox.put_nowait(messages.envelope(event, data))
        return True

    def touch(self):
        self.last_seen = time.time()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._outbox.put_nowait(_CLOSED)

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    async def next_message(self) -> Optional[Dict[str, Any]]:
        """Wait for the next outbound envelope, None once the connection closed."""
        message = await self._outbox.get()
        if message is not None:
            self.messages_sent += 1
        return message

    async def drain(self, timeout: float) -> List[Dict[str, Any]]:
        """
        Long-poll helper: wait up to `timeout` for the first envelope, then
        return it together with everything else already queued.
        """
        self.active_polls += 1
        self.touch()
        try:
            if not self._outbox.empty():
                first = self._outbox.get_nowait()
            else:
                try:
                    first = await asyncio.wait_for(self._outbox.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    return []

            batch = []
            message = first
            while message is not None:
                batch.append(message)
                if self._outbox.empty():
                    break
                message = self._outbox.get_nowait()

            if message is None:
                # Keep the close marker for the next poll
                self._outbox.put_nowait(_CLOSED)
            self.messages_sent += len(batch)
            return batch
        finally:
            self.active_polls -= 1
            self.touch()

    def is_idle(self, max_idle: float, now: Optional[float] = None) -> bool:
        if self.active_polls > 0:
            return False
        now = time.time() if now is None else now
        return now - self.last_seen > max_idle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "transport": self.transport,
            "connected_seconds": round(time.time() - self.connected_at, 1),
            "messages_sent": self.messages_sent,
            "pending": self.pending,
            "closed": self.closed,
        }


class ConnectionHub:
    """
    Routing table of live signaling connections, shared by every transport
    adapter and every mount path.
    """

    def __init__(self):
        self._connections: Dict[str, ClientConnection] = {}

    def open(self, transport: str) -> ClientConnection:
        connection = ClientConnection(transport)
        self._connections[connection.connection_id] = connection
        logger.info(
            f"[ConnectionHub] {transport} connection opened: {connection.connection_id}"
        )
        return connection

    def get(self, connection_id: str) -> Optional[ClientConnection]:
        return self._connections.get(connection_id)

    def deliver(
        self, connection_id: str, event: str, data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Queue an event for a connection; unknown/closed connections are skipped."""
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"[ConnectionHub] Skipped '{event}' for gone connection {connection_id}")
            return False
        return connection.deliver(event, data)

    def remove(self, connection_id: str) -> Optional[ClientConnection]:
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            connection.close()
            logger.info(
                f"[ConnectionHub] {connection.transport} connection closed: {connection_id}"
            )
        return connection

    def idle_polling_connections(self, max_idle: float) -> List[str]:
        now = time.time()
        return [
            cid
            for cid, conn in self._connections.items()
            if conn.transport == POLLING and conn.is_idle(max_idle, now)
        ]

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get_stats(self) -> Dict[str, Any]:
        by_transport = {t: 0 for t in TRANSPORTS}
        for conn in self._connections.values():
            by_transport[conn.transport] += 1
        return {"connections": len(self._connections), "by_transport": by_transport}

    def close_all(self):
        for connection_id in list(self._connections):
            self.remove(connection_id)
