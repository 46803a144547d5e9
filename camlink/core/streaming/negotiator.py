"""
Peer Connection Negotiator - WebRTC offer/answer handshake for one session.

Two roles share one implementation:
- initiator (mobile): adds the camera track, opens the data channel, sends the offer
- receiver (desktop): answers the offer and surfaces the remote video track

Descriptors travel through the signaling relay as
{"kind": "offer" | "answer" | "ice-candidate", "payload": {...}}.

aiortc finishes ICE gathering inside setLocalDescription(), so local
candidates are carried in the SDP and no separate ice-candidate messages are
emitted. Candidates trickled by a remote browser peer are still accepted and
held back until a remote description is in place.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from camlink.config.defaults import Defaults
from camlink.utils.error_handler import CamLinkError, ErrorContext, NegotiationError

logger = logging.getLogger(__name__)

SendSignal = Callable[[Dict[str, Any]], Awaitable[Any]]

DEFAULT_CHANNEL_LABEL = "camlink"


class NegotiatorRole(Enum):
    INITIATOR = "initiator"
    RECEIVER = "receiver"


class NegotiationState(Enum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


TERMINAL_STATES = (NegotiationState.ERROR, NegotiationState.CLOSED)


def build_rtc_configuration(urls: Optional[List[str]] = None) -> RTCConfiguration:
    """RTCConfiguration for a list of STUN/TURN urls (default: public STUN)."""
    urls = list(Defaults.ICE_SERVERS) if urls is None else list(urls)
    return RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in urls])


def parse_ice_candidate(payload: Dict[str, Any]) -> Optional[RTCIceCandidate]:
    """
    Build an aiortc candidate from a browser-style candidate payload.

    Returns None for the empty end-of-candidates marker.
    """
    line = payload.get("candidate") or ""
    if not line:
        return None
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


@dataclass
class NegotiationStats:
    signals_sent: int = 0
    signals_received: int = 0
    candidates_added: int = 0
    started_at: Optional[float] = None
    connected_at: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        setup = None
        if self.started_at and self.connected_at:
            setup = round(self.connected_at - self.started_at, 3)
        return {
            "signals_sent": self.signals_sent,
            "signals_received": self.signals_received,
            "candidates_added": self.candidates_added,
            "setup_seconds": setup,
            "last_error": self.last_error,
        }


class PeerNegotiator:
    """
    Owns one RTCPeerConnection for the lifetime of a pairing session.

    Usage (desktop):
        negotiator = PeerNegotiator(
            NegotiatorRole.RECEIVER,
            send_signal=lambda s: client.emit_signal(session_id, s),
            on_stream=capture.attach,
        )
        await negotiator.start()
        ...
        await negotiator.signal(relayed_signal)   # for every "signal" event

    A failed negotiation is terminal: the owner discards the negotiator and
    starts a new session. Signals arriving after that are ignored.
    """

    def __init__(
        self,
        role: NegotiatorRole,
        send_signal: SendSignal,
        *,
        local_track=None,
        ice_servers: Optional[List[str]] = None,
        peer_factory: Optional[Callable[[RTCConfiguration], Any]] = None,
        on_stream: Optional[Callable[[Any], None]] = None,
        on_data: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_state_change: Optional[Callable[[NegotiationState], None]] = None,
        channel_label: str = DEFAULT_CHANNEL_LABEL,
    ):
        self.role = role
        self.state = NegotiationState.NEW
        self.error: Optional[CamLinkError] = None
        self.remote_track = None
        self.stats = NegotiationStats()

        self._send_signal = send_signal
        self._local_track = local_track
        self._ice_servers = ice_servers
        self._peer_factory = peer_factory or (
            lambda config: RTCPeerConnection(configuration=config)
        )
        self._on_stream = on_stream
        self._on_data = on_data
        self._on_state_change = on_state_change
        self._channel_label = channel_label

        self._pc = None
        self._channel = None
        self._pending_candidates: List[RTCIceCandidate] = []
        self._lock = asyncio.Lock()
        self._closing = False

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def peer_connection(self):
        return self._pc

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def data_channel_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    async def start(self):
        """
        Create the peer connection. The initiator immediately sends an offer;
        the receiver waits for one.
        """
        if self.state is not NegotiationState.NEW:
            raise NegotiationError(
                f"Negotiator already started ({self.state.value})", role=self.role.value
            )

        self.stats.started_at = time.time()
        self._pc = self._peer_factory(build_rtc_configuration(self._ice_servers))
        self._register_peer_handlers(self._pc)
        self._set_state(NegotiationState.CONNECTING)
        logger.info(f"[Negotiator] Started as {self.role.value}")

        if self.role is NegotiatorRole.RECEIVER:
            return

        async with self._lock:
            try:
                with ErrorContext("creating offer", raise_as=NegotiationError):
                    if self._local_track is not None:
                        self._pc.addTrack(self._local_track)
                    self._bind_channel(self._pc.createDataChannel(self._channel_label))

                    offer = await self._pc.createOffer()
                    await self._pc.setLocalDescription(offer)
                    await self._emit("offer", self._description_payload())
            except CamLinkError as e:
                await self._fail(e)

    async def signal(self, signal: Dict[str, Any]):
        """
        Feed one remote descriptor: {"kind": ..., "payload": {...}}.

        Failures move the negotiator to the terminal error state instead of
        raising; check `state` / `error` or use on_state_change.
        """
        async with self._lock:
            if self.is_terminal:
                logger.debug(
                    f"[Negotiator] Ignoring '{signal.get('kind')}' in state {self.state.value}"
                )
                return
            if self._pc is None:
                logger.warning("[Negotiator] Signal received before start(), ignoring")
                return

            self.stats.signals_received += 1
            try:
                await self._apply_signal(signal)
            except CamLinkError as e:
                await self._fail(e)

    def send(self, message: Dict[str, Any]) -> bool:
        """Send a JSON message over the data channel. False if not open."""
        if not self.data_channel_open:
            return False
        self._channel.send(json.dumps(message))
        return True

    async def close(self):
        """Close the peer connection (idempotent)."""
        if self.state is NegotiationState.CLOSED:
            return
        self._closing = True
        if self._pc is not None:
            try:
                await self._pc.close()
            except Exception as e:
                logger.debug(f"[Negotiator] Error closing peer connection: {e}")
        self._pending_candidates.clear()
        self._set_state(NegotiationState.CLOSED, force=True)
        logger.info(f"[Negotiator] Closed ({self.role.value})")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "state": self.state.value,
            "connection_state": getattr(self._pc, "connectionState", None),
            "data_channel_open": self.data_channel_open,
            "buffered_candidates": len(self._pending_candidates),
            **self.stats.to_dict(),
        }

    # =========================================================================
    # SIGNAL HANDLING
    # =========================================================================

    async def _apply_signal(self, signal: Dict[str, Any]):
        kind = signal.get("kind")
        payload = signal.get("payload") or {}

        if kind == "offer":
            if self.role is not NegotiatorRole.RECEIVER:
                raise NegotiationError("Initiator received an offer", role=self.role.value)
            with ErrorContext("applying remote offer", raise_as=NegotiationError):
                await self._pc.setRemoteDescription(
                    RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])
                )
                await self._flush_candidates()
                answer = await self._pc.createAnswer()
                await self._pc.setLocalDescription(answer)
                await self._emit("answer", self._description_payload())

        elif kind == "answer":
            if self.role is not NegotiatorRole.INITIATOR:
                raise NegotiationError("Receiver received an answer", role=self.role.value)
            with ErrorContext("applying remote answer", raise_as=NegotiationError):
                await self._pc.setRemoteDescription(
                    RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])
                )
                await self._flush_candidates()

        elif kind == "ice-candidate":
            with ErrorContext("adding remote candidate", raise_as=NegotiationError):
                candidate = parse_ice_candidate(payload)
                if candidate is None:
                    return
                if self._pc.remoteDescription is None:
                    self._pending_candidates.append(candidate)
                else:
                    await self._pc.addIceCandidate(candidate)
                    self.stats.candidates_added += 1

        else:
            logger.warning(f"[Negotiator] Unknown signal kind: {kind}")

    async def _flush_candidates(self):
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._pc.addIceCandidate(candidate)
            self.stats.candidates_added += 1

    def _description_payload(self) -> Dict[str, Any]:
        description = self._pc.localDescription
        return {"type": description.type, "sdp": description.sdp}

    async def _emit(self, kind: str, payload: Dict[str, Any]):
        await self._send_signal({"kind": kind, "payload": payload})
        self.stats.signals_sent += 1
        logger.info(f"[Negotiator] Sent {kind} ({self.role.value})")

    # =========================================================================
    # PEER CONNECTION EVENTS
    # =========================================================================

    def _register_peer_handlers(self, pc):
        @pc.on("track")
        def on_track(track):
            if track.kind != "video":
                logger.debug(f"[Negotiator] Ignoring remote {track.kind} track")
                return
            logger.info("[Negotiator] Remote video track received")
            self.remote_track = track
            if self._on_stream:
                try:
                    self._on_stream(track)
                except Exception as e:
                    logger.error(f"[Negotiator] Stream callback error: {e}")
            if self.role is NegotiatorRole.RECEIVER:
                self._set_state(NegotiationState.CONNECTED)

        @pc.on("datachannel")
        def on_datachannel(channel):
            logger.info(f"[Negotiator] Data channel '{channel.label}' announced by peer")
            self._bind_channel(channel)

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            connection_state = pc.connectionState
            logger.info(f"[Negotiator] Connection state: {connection_state}")

            if connection_state == "connected":
                if self.role is NegotiatorRole.INITIATOR:
                    self._set_state(NegotiationState.CONNECTED)
            elif connection_state in ("failed", "closed", "disconnected"):
                if self._closing or self.is_terminal:
                    return
                await self._fail(
                    NegotiationError(
                        f"Peer connection {connection_state}", role=self.role.value
                    )
                )

    def _bind_channel(self, channel):
        self._channel = channel

        @channel.on("message")
        def on_message(message):
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.warning(f"[Negotiator] Non-JSON data channel message: {message[:64]}")
                return
            if not isinstance(data, dict):
                return
            if self._on_data:
                try:
                    self._on_data(data)
                except Exception as e:
                    logger.error(f"[Negotiator] Data callback error: {e}")

    # =========================================================================
    # STATE
    # =========================================================================

    def _set_state(self, state: NegotiationState, force: bool = False):
        if state is self.state:
            return
        if self.is_terminal and not force:
            return
        if state is NegotiationState.CONNECTED:
            self.stats.connected_at = time.time()
        self.state = state
        logger.debug(f"[Negotiator] {self.role.value} -> {state.value}")
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"[Negotiator] State callback error: {e}")

    async def _fail(self, error: CamLinkError):
        logger.error(f"[Negotiator] Negotiation failed ({self.role.value}): {error.message}")
        self.error = error
        self.stats.last_error = error.message
        self._set_state(NegotiationState.ERROR)
        self._closing = True
        if self._pc is not None:
            try:
                await self._pc.close()
            except Exception as e:
                logger.debug(f"[Negotiator] Error closing failed peer connection: {e}")
