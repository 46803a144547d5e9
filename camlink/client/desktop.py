"""
Desktop Camera Link - The desktop side of a phone camera session.

Creates a pairing session, exposes the pairing link/QR code for the phone,
answers the phone's offer and turns the incoming stream into still images.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from camlink.client.base import CameraLink, LinkStatus
from camlink.client.signaling_client import SignalingClient
from camlink.core.signaling import messages
from camlink.core.streaming.capture import CaptureCoordinator
from camlink.core.streaming.negotiator import NegotiatorRole, PeerNegotiator
from camlink.utils.error_handler import SessionTimeoutError
from camlink.utils.pairing import build_pairing_link, link_origin, render_qr_ascii

logger = logging.getLogger(__name__)


class DesktopCameraLink(CameraLink):
    """
    Usage:
        link = DesktopCameraLink(SignalingClient(server), on_capture=save)
        await link.start()
        await link.wait_for_status(LinkStatus.READY)
        print(link.qr_ascii())
        await link.wait_for_status(LinkStatus.CONNECTED)
        link.capture()
    """

    role = "DesktopLink"

    def __init__(
        self,
        client: SignalingClient,
        *,
        origin: Optional[str] = None,
        capture: Optional[CaptureCoordinator] = None,
        on_capture: Optional[Callable[[str], None]] = None,
        ice_servers: Optional[List[str]] = None,
        peer_factory: Optional[Callable[..., Any]] = None,
        on_status: Optional[Callable[[LinkStatus, str], None]] = None,
    ):
        super().__init__(
            client, ice_servers=ice_servers, peer_factory=peer_factory, on_status=on_status
        )
        # Pairing links point at the web app, which is usually served by the signaling host
        self.origin = origin or link_origin(client.base_url)
        self.capture_coordinator = capture or CaptureCoordinator(on_capture=on_capture)
        if on_capture and capture is not None:
            self.capture_coordinator.on_capture = on_capture
        self.session_created_at: Optional[float] = None

        client.on(messages.SESSION_CREATED, self._on_session_created)
        client.on(messages.MOBILE_CONNECTED, self._on_mobile_connected)
        client.on(messages.SESSION_TIMEOUT, self._on_session_timeout)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start(self):
        """Connect (if needed) and request a new pairing session."""
        self._set_status(LinkStatus.INITIALIZING, "Generating pairing code")
        await self._ensure_connected()
        await self.client.emit(messages.CREATE_SESSION)

    async def retry(self):
        """
        Discard the current session and request a new one.

        The server replaces a previous session owned by this connection.
        """
        logger.info("[DesktopLink] Retrying with a new session")
        await self._release_media()
        self.session_id = None
        self.error = None
        await self.start()

    @property
    def pairing_link(self) -> Optional[str]:
        if self.session_id is None or self.origin is None:
            return None
        return build_pairing_link(self.origin, self.session_id)

    def qr_ascii(self) -> Optional[str]:
        """Terminal QR code of the pairing link."""
        link = self.pairing_link
        return render_qr_ascii(link) if link else None

    def capture(self) -> Optional[str]:
        """Capture the current frame as a JPEG data URL (None if no frame yet)."""
        return self.capture_coordinator.capture()

    async def capture_after(
        self, seconds: int, on_tick: Optional[Callable[[int], None]] = None
    ) -> Optional[str]:
        return await self.capture_coordinator.capture_after(seconds, on_tick=on_tick)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "capture": self.capture_coordinator.get_stats(),
            "negotiator": self.negotiator.get_stats() if self.negotiator else None,
        }

    # =========================================================================
    # SERVER EVENTS
    # =========================================================================

    async def _on_session_created(self, data: Optional[Dict[str, Any]]):
        self.session_id = (data or {}).get("sessionId")
        self.session_created_at = time.time()
        self._set_status(LinkStatus.READY, "Scan the QR code with your phone")
        logger.info(f"[DesktopLink] Pairing link: {self.pairing_link}")

    async def _on_mobile_connected(self, data):
        self._set_status(LinkStatus.CONNECTING, "Phone connected, starting video")
        await self._teardown_negotiator()
        self.negotiator = PeerNegotiator(
            NegotiatorRole.RECEIVER,
            on_stream=self.capture_coordinator.attach,
            on_data=self.capture_coordinator.handle_command,
            **self._negotiator_kwargs(),
        )
        await self.negotiator.start()

    async def _on_session_timeout(self, data):
        self._fail(SessionTimeoutError(self.session_id), status=LinkStatus.TIMEOUT)
        self.session_id = None

    async def _release_media(self):
        await super()._release_media()
        await self.capture_coordinator.detach()
