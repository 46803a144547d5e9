"""
camlink - Default Configuration Constants

Centralized configuration for the signaling server and the camera clients.
Values can be overridden via environment variables.

Usage:
    from camlink.config.defaults import Defaults
    timeout = Defaults.SESSION_TIMEOUT
"""

import os
from dataclasses import dataclass, field, fields
from typing import List, Optional


def _env_list(name: str, default: List[str]) -> List[str]:
    """Read a comma separated list from the environment."""
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class AppDefaults:
    """Application-wide default configuration."""

    # ==========================================================================
    # Server Settings
    # ==========================================================================
    SERVER_PORT: int = 8080
    SERVER_HOST: str = "0.0.0.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])

    # Public origin used to build pairing links (None = derive from request)
    PUBLIC_ORIGIN: Optional[str] = None

    # ==========================================================================
    # Signaling Settings
    # ==========================================================================
    # Seconds a pending session waits for the phone to join. The QR code flow
    # keeps the code on screen for two minutes; UI driven flows use ~10s.
    SESSION_TIMEOUT: float = 120.0

    # Both paths share one registry: the application path and the
    # conventional default path older clients connect to
    SIGNALING_PATHS: List[str] = field(
        default_factory=lambda: ["/api/signaling", "/socket.io"]
    )

    # ==========================================================================
    # Long-Polling Transport Settings (seconds)
    # ==========================================================================
    POLL_TIMEOUT: float = 25.0  # Max time a GET poll is held open
    POLL_IDLE_TIMEOUT: float = 60.0  # Drop polling clients silent this long
    POLL_REAP_INTERVAL: float = 15.0

    # ==========================================================================
    # WebRTC Settings
    # ==========================================================================
    ICE_SERVERS: List[str] = field(
        default_factory=lambda: [
            "stun:stun.l.google.com:19302",
            "stun:stun1.l.google.com:19302",
        ]
    )

    # ==========================================================================
    # Capture Settings
    # ==========================================================================
    CAPTURE_COUNTDOWN: int = 5  # "Take Photo" countdown (seconds)
    CAPTURE_JPEG_QUALITY: int = 92

    @classmethod
    def from_env(cls) -> "AppDefaults":
        """Create config from environment variables with defaults."""
        defaults = cls()
        return cls(
            SERVER_PORT=int(os.getenv("SERVER_PORT", defaults.SERVER_PORT)),
            SERVER_HOST=os.getenv("SERVER_HOST", defaults.SERVER_HOST),
            LOG_LEVEL=os.getenv("LOG_LEVEL", defaults.LOG_LEVEL).upper(),
            CORS_ORIGINS=_env_list("CORS_ORIGINS", defaults.CORS_ORIGINS),
            PUBLIC_ORIGIN=os.getenv("PUBLIC_ORIGIN") or None,
            SESSION_TIMEOUT=float(
                os.getenv("SESSION_TIMEOUT", defaults.SESSION_TIMEOUT)
            ),
            SIGNALING_PATHS=_env_list("SIGNALING_PATHS", defaults.SIGNALING_PATHS),
            POLL_TIMEOUT=float(os.getenv("POLL_TIMEOUT", defaults.POLL_TIMEOUT)),
            POLL_IDLE_TIMEOUT=float(
                os.getenv("POLL_IDLE_TIMEOUT", defaults.POLL_IDLE_TIMEOUT)
            ),
            POLL_REAP_INTERVAL=float(
                os.getenv("POLL_REAP_INTERVAL", defaults.POLL_REAP_INTERVAL)
            ),
            ICE_SERVERS=_env_list("ICE_SERVERS", defaults.ICE_SERVERS),
            CAPTURE_COUNTDOWN=int(
                os.getenv("CAPTURE_COUNTDOWN", defaults.CAPTURE_COUNTDOWN)
            ),
            CAPTURE_JPEG_QUALITY=int(
                os.getenv("CAPTURE_JPEG_QUALITY", defaults.CAPTURE_JPEG_QUALITY)
            ),
        )


# Global defaults instance - can be overridden at runtime
Defaults = AppDefaults()


def load_defaults_from_env() -> AppDefaults:
    """
    Reload defaults from environment variables.

    Updates the shared Defaults instance in place so modules that imported
    it see the new values.
    """
    fresh = AppDefaults.from_env()
    for item in fields(AppDefaults):
        setattr(Defaults, item.name, getattr(fresh, item.name))
    return Defaults
