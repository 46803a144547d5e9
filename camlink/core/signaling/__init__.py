"""
Signaling module for desktop/phone camera pairing.
Provides the session registry, wire messages, transports and the event router.
"""

from .session_registry import SessionRegistry, Session, SessionState, JoinResult
from .transport import ClientConnection, ConnectionHub, WEBSOCKET, POLLING
from .channel import SignalingChannel

__all__ = [
    "SessionRegistry",
    "Session",
    "SessionState",
    "JoinResult",
    "ClientConnection",
    "ConnectionHub",
    "WEBSOCKET",
    "POLLING",
    "SignalingChannel",
]
