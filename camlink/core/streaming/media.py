"""
Camera Access - Open the local camera on the phone side of the link.

Wraps aiortc's MediaPlayer (FFmpeg device input). Any video file or stream URL
FFmpeg can read also works as a device, which is handy for demos.
"""

import logging
import platform
from typing import Any, Callable, Dict, Optional

import av
from aiortc.contrib.media import MediaPlayer

from camlink.utils.error_handler import MediaAccessError

logger = logging.getLogger(__name__)

DEFAULT_CAMERA_OPTIONS = {"framerate": "30", "video_size": "640x480"}

# platform.system() -> (device, FFmpeg input format)
PLATFORM_CAMERAS = {
    "Linux": ("/dev/video0", "v4l2"),
    "Darwin": ("default:none", "avfoundation"),
    "Windows": ("video=Integrated Camera", "dshow"),
}


def default_camera(system: Optional[str] = None):
    """Default (device, format) pair for the current platform."""
    system = system or platform.system()
    return PLATFORM_CAMERAS.get(system, PLATFORM_CAMERAS["Linux"])


class CameraSource:
    """An opened camera. `video` is the track handed to the negotiator."""

    def __init__(self, player, device: str):
        self._player = player
        self.device = device
        self.video = player.video

    def stop(self):
        if self.video is not None:
            self.video.stop()
            logger.info(f"[Camera] Released {self.device}")


def open_camera(
    device: Optional[str] = None,
    fmt: Optional[str] = None,
    options: Optional[Dict[str, Any]] = None,
    player_factory: Callable[..., Any] = MediaPlayer,
) -> CameraSource:
    """
    Open a camera (or any FFmpeg readable source) as a video track.

    Args:
        device: Device name/path; platform default camera when omitted
        fmt: FFmpeg input format (v4l2, avfoundation, dshow, ...)
        options: FFmpeg input options

    Raises:
        MediaAccessError: If the device cannot be opened or has no video
    """
    if device is None:
        device, default_fmt = default_camera()
        fmt = fmt or default_fmt
        if options is None:
            options = dict(DEFAULT_CAMERA_OPTIONS)

    logger.info(f"[Camera] Opening {device}" + (f" ({fmt})" if fmt else ""))
    try:
        player = player_factory(device, format=fmt, options=options or {})
    except (av.error.FFmpegError, OSError) as e:
        raise MediaAccessError(f"Cannot open camera {device}: {e}", device=device) from e

    if player.video is None:
        raise MediaAccessError(f"No video stream on {device}", device=device)

    return CameraSource(player, device)
