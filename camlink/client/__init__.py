"""
Client library for both ends of a camera link.
"""

from camlink.client.base import LinkStatus
from camlink.client.desktop import DesktopCameraLink
from camlink.client.mobile import MobileCameraLink
from camlink.client.signaling_client import SignalingClient

__all__ = ["LinkStatus", "DesktopCameraLink", "MobileCameraLink", "SignalingClient"]
