"""
Streaming - Direct peer connection, camera access and frame capture.
"""

from camlink.core.streaming.capture import CaptureCoordinator, decode_data_url
from camlink.core.streaming.media import CameraSource, open_camera
from camlink.core.streaming.negotiator import (
    NegotiationState,
    NegotiatorRole,
    PeerNegotiator,
)

__all__ = [
    "CaptureCoordinator",
    "decode_data_url",
    "CameraSource",
    "open_camera",
    "NegotiationState",
    "NegotiatorRole",
    "PeerNegotiator",
]
