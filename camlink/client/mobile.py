"""
Mobile Camera Link - The phone side of a camera session.

Joins the session named in the pairing link, opens the camera and offers its
video to the desktop. The phone can ask the desktop to take a picture over
the data channel.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from camlink.client.base import CameraLink, LinkStatus
from camlink.client.signaling_client import SignalingClient
from camlink.core.signaling import messages
from camlink.core.streaming.capture import CAPTURE_COMMAND
from camlink.core.streaming.media import CameraSource, open_camera
from camlink.core.streaming.negotiator import NegotiatorRole, PeerNegotiator
from camlink.utils.error_handler import MediaAccessError, SessionNotFoundError
from camlink.utils.pairing import link_origin, parse_pairing_link

logger = logging.getLogger(__name__)


class MobileCameraLink(CameraLink):
    role = "MobileLink"

    def __init__(
        self,
        client: SignalingClient,
        session_id: str,
        *,
        device: Optional[str] = None,
        fmt: Optional[str] = None,
        camera_factory: Callable[..., CameraSource] = open_camera,
        ice_servers: Optional[List[str]] = None,
        peer_factory: Optional[Callable[..., Any]] = None,
        on_status: Optional[Callable[[LinkStatus, str], None]] = None,
    ):
        if not session_id:
            raise ValueError("session_id is required")
        super().__init__(
            client, ice_servers=ice_servers, peer_factory=peer_factory, on_status=on_status
        )
        self.session_id = session_id
        self.device = device
        self.fmt = fmt
        self.camera: Optional[CameraSource] = None
        self._camera_factory = camera_factory

        client.on(messages.CONNECTION_SUCCESSFUL, self._on_connection_successful)
        client.on(messages.SESSION_NOT_FOUND, self._on_session_not_found)

    @classmethod
    def from_pairing_link(
        cls, link: str, server_url: Optional[str] = None, **kwargs
    ) -> "MobileCameraLink":
        """
        Build a link from the scanned pairing URL.

        The signaling server defaults to the link's origin.

        Raises:
            ValueError: If the link has no session id or no server can be derived
        """
        session_id = parse_pairing_link(link)
        server_url = server_url or link_origin(link)
        if server_url is None:
            raise ValueError(f"Cannot derive signaling server from link: {link}")
        return cls(SignalingClient(server_url), session_id, **kwargs)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start(self):
        """Connect (if needed) and join the session."""
        self._set_status(LinkStatus.CONNECTING, "Joining session")
        await self._ensure_connected()
        await self.client.emit(messages.JOIN_SESSION, {"sessionId": self.session_id})

    async def retry(self, session_id: Optional[str] = None):
        """
        Join again, optionally with a freshly scanned session id.

        A session id is single use: rejoining a consumed or expired one ends
        in session-not-found.
        """
        await self._release_media()
        if session_id:
            self.session_id = session_id
        self.error = None
        await self.start()

    def request_capture(self) -> bool:
        """Ask the desktop to capture a picture. False if the link is not up."""
        if self.negotiator is None:
            return False
        return self.negotiator.send({"type": CAPTURE_COMMAND})

    # =========================================================================
    # SERVER EVENTS
    # =========================================================================

    async def _on_connection_successful(self, data):
        try:
            self.camera = self._camera_factory(self.device, self.fmt)
        except MediaAccessError as e:
            logger.error(f"[MobileLink] {e.message}")
            self._fail(e)
            return

        self._set_status(LinkStatus.CONNECTING, "Connecting to desktop")
        await self._teardown_negotiator()
        self.negotiator = PeerNegotiator(
            NegotiatorRole.INITIATOR,
            local_track=self.camera.video,
            **self._negotiator_kwargs(),
        )
        await self.negotiator.start()

    async def _on_session_not_found(self, data):
        self._fail(SessionNotFoundError(self.session_id))

    async def _release_media(self):
        await super()._release_media()
        if self.camera is not None:
            self.camera.stop()
            self.camera = None

    async def _on_peer_disconnected(self, data):
        # Keep the id around so retry() can report a clean session-not-found
        session_id = self.session_id
        await super()._on_peer_disconnected(data)
        self.session_id = session_id
