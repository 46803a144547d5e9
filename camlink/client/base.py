"""
Camera Link Base - Shared status machine for the desktop and phone clients.

Status flow:
    initializing -> ready (desktop: code shown) -> connecting -> connected
    any step -> timeout | error | closed

timeout and error are terminal for the session; retry() starts over.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from camlink.client.signaling_client import DISCONNECT, SignalingClient
from camlink.core.signaling import messages
from camlink.core.streaming.negotiator import NegotiationState, PeerNegotiator
from camlink.utils.error_handler import (
    CamLinkError,
    PeerDisconnectedError,
    SignalingConnectionError,
    get_user_friendly_message,
)

logger = logging.getLogger(__name__)


class LinkStatus(Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TIMEOUT = "timeout"
    ERROR = "error"
    CLOSED = "closed"


TERMINAL_STATUSES = (LinkStatus.TIMEOUT, LinkStatus.ERROR, LinkStatus.CLOSED)


class CameraLink:
    """Common plumbing: status, waiters, negotiator lifecycle, relayed signals."""

    role = "link"

    def __init__(
        self,
        client: SignalingClient,
        *,
        ice_servers: Optional[List[str]] = None,
        peer_factory: Optional[Callable[..., Any]] = None,
        on_status: Optional[Callable[[LinkStatus, str], None]] = None,
    ):
        self.client = client
        self.status = LinkStatus.INITIALIZING
        self.status_message = ""
        self.error: Optional[CamLinkError] = None
        self.session_id: Optional[str] = None
        self.negotiator: Optional[PeerNegotiator] = None

        self._ice_servers = ice_servers
        self._peer_factory = peer_factory
        self._on_status = on_status
        self._waiters: List[Tuple[Set[LinkStatus], asyncio.Future]] = []

        client.on(messages.SIGNAL, self._on_signal)
        client.on(messages.PEER_DISCONNECTED, self._on_peer_disconnected)
        client.on(messages.ERROR, self._on_server_error)
        client.on(DISCONNECT, self._on_transport_lost)

    # =========================================================================
    # STATUS
    # =========================================================================

    def _set_status(self, status: LinkStatus, message: str = ""):
        if self.status is LinkStatus.CLOSED:
            return
        self.status = status
        self.status_message = message
        logger.info(f"[{self.role}] Status: {status.value}" + (f" ({message})" if message else ""))

        if self._on_status:
            try:
                self._on_status(status, message)
            except Exception as e:
                logger.error(f"[{self.role}] Status callback error: {e}")

        remaining = []
        for statuses, future in self._waiters:
            if future.done():
                continue
            if status in statuses:
                future.set_result(status)
            else:
                remaining.append((statuses, future))
        self._waiters = remaining

    def _fail(self, error: CamLinkError, status: LinkStatus = LinkStatus.ERROR):
        self.error = error
        self._set_status(status, get_user_friendly_message(error))

    async def wait_for_status(
        self, *statuses: LinkStatus, timeout: Optional[float] = None
    ) -> LinkStatus:
        """Wait until the link reaches one of `statuses` (returns immediately if there)."""
        if self.status in statuses:
            return self.status
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((set(statuses), future))
        return await asyncio.wait_for(future, timeout=timeout)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # =========================================================================
    # NEGOTIATOR
    # =========================================================================

    def _negotiator_kwargs(self) -> Dict[str, Any]:
        return {
            "send_signal": self._send_signal,
            "ice_servers": self._ice_servers,
            "peer_factory": self._peer_factory,
            "on_state_change": self._on_negotiation_state,
        }

    async def _send_signal(self, signal: Dict[str, Any]):
        if self.session_id is None:
            return
        await self.client.emit_signal(self.session_id, signal)

    def _on_negotiation_state(self, state: NegotiationState):
        if state is NegotiationState.CONNECTED:
            self._set_status(LinkStatus.CONNECTED)
        elif state is NegotiationState.ERROR and self.negotiator is not None:
            self._fail(self.negotiator.error)

    async def _teardown_negotiator(self):
        if self.negotiator is not None:
            negotiator, self.negotiator = self.negotiator, None
            await negotiator.close()

    # =========================================================================
    # SERVER EVENTS
    # =========================================================================

    async def _on_signal(self, data: Optional[Dict[str, Any]]):
        if not data or data.get("sessionId") != self.session_id:
            logger.debug(f"[{self.role}] Ignoring signal for another session")
            return
        if self.negotiator is None:
            logger.warning(f"[{self.role}] Signal received without a negotiator, dropped")
            return
        await self.negotiator.signal(data.get("signal") or {})

    async def _on_peer_disconnected(self, data):
        await self._release_media()
        self._fail(PeerDisconnectedError(self.session_id))
        self.session_id = None

    async def _on_server_error(self, data: Optional[Dict[str, Any]]):
        data = data or {}
        logger.error(
            f"[{self.role}] Server rejected a message: {data.get('code')} {data.get('message')}"
        )

    async def _on_transport_lost(self, data):
        await self._release_media()
        if not self.is_terminal:
            self._fail(SignalingConnectionError("Signaling connection lost", url=self.client.base_url))

    async def _release_media(self):
        """Stop the peer connection (subclasses also release capture/camera)."""
        await self._teardown_negotiator()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _ensure_connected(self):
        if not self.client.connected:
            try:
                await self.client.connect()
            except SignalingConnectionError as e:
                self._fail(e)
                raise

    async def close(self):
        """Tear everything down. The link cannot be restarted afterwards."""
        await self._release_media()
        await self.client.close()
        self._set_status(LinkStatus.CLOSED)
        self.session_id = None
        for _, future in self._waiters:
            if not future.done():
                future.cancel()
        self._waiters = []
