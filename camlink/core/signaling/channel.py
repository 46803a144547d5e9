"""
Signaling Channel - Routes client events between transports and the registry.

The channel is a pure event router: it owns no session state. Transport
adapters (WebSocket and long-polling routes, on every mount path) call
connect() / handle_message() / disconnect(); the registry decides what
happens and notifies clients through the connection hub.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union

from camlink.core.signaling import messages
from camlink.core.signaling.messages import (
    CreateSessionEvent,
    JoinSessionEvent,
    SignalEvent,
    parse_client_event,
)
from camlink.core.signaling.session_registry import JoinResult, SessionRegistry
from camlink.core.signaling.transport import ClientConnection, ConnectionHub
from camlink.utils.error_handler import CamLinkError, ConnectionNotFoundError

logger = logging.getLogger(__name__)


class SignalingChannel:
    """
    Usage:
        hub = ConnectionHub()
        registry = SessionRegistry(timeout_seconds=120, notify=hub.deliver)
        channel = SignalingChannel(registry, hub)

        connection = channel.connect("websocket")
        channel.handle_message(connection.connection_id, '{"event": "create-session"}')
        channel.disconnect(connection.connection_id)
    """

    def __init__(self, registry: SessionRegistry, hub: ConnectionHub):
        self.registry = registry
        self.hub = hub

    def connect(self, transport: str) -> ClientConnection:
        """Attach a new client and greet it with its connection id."""
        connection = self.hub.open(transport)
        connection.deliver(
            messages.CONNECTED,
            {"connectionId": connection.connection_id, "transport": transport},
        )
        return connection

    def handle_message(
        self, connection_id: str, raw: Union[str, bytes, Dict[str, Any]]
    ) -> bool:
        """
        Validate and dispatch one client message.

        Rejected messages are answered with an `error` event on the sender's
        connection; nothing raised here reaches the transport loop except an
        unknown connection id.

        Returns:
            True if the message was accepted and dispatched
        """
        connection = self.hub.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        connection.touch()

        try:
            event = parse_client_event(raw)
            self._dispatch(connection_id, event)
            return True
        except CamLinkError as e:
            logger.warning(f"[SignalingChannel] Rejected message from {connection_id}: {e.message}")
            connection.deliver(messages.ERROR, e.to_event_data())
        except Exception as e:
            # A failure while handling one client must not take down the relay
            logger.error(
                f"[SignalingChannel] Error handling message from {connection_id}: {e}",
                exc_info=True,
            )
            connection.deliver(
                messages.ERROR, {"code": "INTERNAL_ERROR", "message": "Internal error"}
            )
        return False

    def _dispatch(self, connection_id: str, event):
        if isinstance(event, CreateSessionEvent):
            session_id = self.registry.create_session(connection_id)
            self.hub.deliver(connection_id, messages.SESSION_CREATED, {"sessionId": session_id})

        elif isinstance(event, JoinSessionEvent):
            result = self.registry.join_session(event.data.session_id, connection_id)
            if result is JoinResult.NOT_FOUND:
                self.hub.deliver(connection_id, messages.SESSION_NOT_FOUND, None)

        elif isinstance(event, SignalEvent):
            self.registry.relay(
                event.data.session_id, connection_id, event.data.signal.model_dump()
            )

    def disconnect(self, connection_id: str) -> Optional[str]:
        """
        Detach a client. Its session (at most one) is removed in the same call.

        Returns:
            The removed session id, if any
        """
        session_id = self.registry.on_disconnect(connection_id)
        self.hub.remove(connection_id)
        return session_id

    # =========================================================================
    # POLLING HOUSEKEEPING
    # =========================================================================

    def reap_idle_connections(self, max_idle: float) -> int:
        """Disconnect polling clients that stopped polling. Returns the count."""
        idle = self.hub.idle_polling_connections(max_idle)
        for connection_id in idle:
            logger.info(f"[SignalingChannel] Polling client {connection_id} timed out")
            self.disconnect(connection_id)
        return len(idle)

    async def run_reaper(self, max_idle: float, interval: float):
        """Background task: periodically reap idle polling connections."""
        logger.info(
            f"[SignalingChannel] Polling reaper started (idle timeout {max_idle:g}s)"
        )
        while True:
            await asyncio.sleep(interval)
            try:
                self.reap_idle_connections(max_idle)
            except Exception as e:
                logger.error(f"[SignalingChannel] Reaper error: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, Any]:
        return {"sessions": self.registry.get_stats(), "transport": self.hub.get_stats()}

    def shutdown(self):
        self.registry.close_all()
        self.hub.close_all()
