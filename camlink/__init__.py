"""
camlink - Phone-to-desktop camera pairing and streaming link.

A signaling server pairs a desktop client with a phone through a short-lived
session, after which both sides negotiate a direct WebRTC stream and the
desktop grabs still frames from the live video.
"""

__version__ = "0.3.1"
