"""
Capture Coordinator - Still images from the live phone camera stream.

The desktop keeps the most recent decoded frame of the remote video track and
turns it into a JPEG data URL on demand: immediately, after a countdown, or
when the phone sends {"type": "capture"} over the data channel.
"""

import asyncio
import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from aiortc.mediastreams import MediaStreamError
from PIL import Image

from camlink.config.defaults import Defaults

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/jpeg;base64,"

CAPTURE_COMMAND = "capture"


@dataclass
class FrameStats:
    """Statistics for the frames received from a remote track."""
    frames_received: int = 0
    last_frame_time: float = 0.0
    attach_time: float = field(default_factory=time.time)
    frame_width: int = 0
    frame_height: int = 0
    ended: bool = False

    @property
    def fps(self) -> float:
        elapsed = time.time() - self.attach_time
        if elapsed > 1:
            return self.frames_received / elapsed
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frames_received": self.frames_received,
            "fps": round(self.fps, 2),
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
            "ended": self.ended,
        }


class FrameGrabber:
    """Background reader that keeps only the latest frame of a video track."""

    def __init__(self, track):
        self.track = track
        self.latest_frame = None
        self.stats = FrameStats()
        self._task: Optional[asyncio.Task] = None

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self):
        while True:
            try:
                frame = await self.track.recv()
            except MediaStreamError:
                logger.info("[FrameGrabber] Remote track ended")
                break

            self.latest_frame = frame
            self.stats.frames_received += 1
            self.stats.last_frame_time = time.time()
            self.stats.frame_width = frame.width
            self.stats.frame_height = frame.height

            if self.stats.frames_received == 1:
                logger.info(f"[FrameGrabber] First frame: {frame.width}x{frame.height}")
        self.stats.ended = True

    def cancel(self):
        if self._task is not None:
            self._task.cancel()

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


def encode_data_url(image: Image.Image, quality: int) -> str:
    """Encode a PIL image as a JPEG data URL."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")


def decode_data_url(data_url: str) -> bytes:
    """
    Decode a base64 data URL into raw bytes.

    Raises:
        ValueError: If the string is not a base64 data URL
    """
    if not data_url.startswith("data:") or ";base64," not in data_url:
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(data_url.split(",", 1)[1])


class CaptureCoordinator:
    """
    Usage:
        capture = CaptureCoordinator(on_capture=save_image)
        capture.attach(remote_track)
        data_url = capture.capture()        # None until the first frame arrives
        await capture.capture_after(5, on_tick=print)
    """

    def __init__(
        self,
        jpeg_quality: Optional[int] = None,
        on_capture: Optional[Callable[[str], None]] = None,
    ):
        self.jpeg_quality = jpeg_quality or Defaults.CAPTURE_JPEG_QUALITY
        self.on_capture = on_capture
        self.captures = 0
        self._grabber: Optional[FrameGrabber] = None

    def attach(self, track):
        """Start grabbing frames from a remote video track."""
        if self._grabber is not None and self._grabber.track is track:
            return
        if self._grabber is not None:
            logger.info("[Capture] Replacing attached track")
            self._grabber.cancel()
        self._grabber = FrameGrabber(track)
        self._grabber.start()
        logger.info("[Capture] Attached remote video track")

    async def detach(self):
        if self._grabber is None:
            return
        await self._grabber.stop()
        self._grabber = None
        logger.info("[Capture] Detached remote video track")

    @property
    def is_ready(self) -> bool:
        """True once a frame with a non-zero size is available."""
        frame = self._grabber.latest_frame if self._grabber else None
        return frame is not None and frame.width > 0 and frame.height > 0

    def capture_image(self) -> Optional[Image.Image]:
        """Latest frame as a PIL image at its native resolution."""
        if not self.is_ready:
            return None
        return self._grabber.latest_frame.to_image()

    def capture(self) -> Optional[str]:
        """
        Capture the current frame as a JPEG data URL.

        Returns None (and does nothing) when no frame has arrived yet.
        """
        image = self.capture_image()
        if image is None:
            logger.warning("[Capture] No video frame available yet, capture skipped")
            return None

        data_url = encode_data_url(image, self.jpeg_quality)
        self.captures += 1
        logger.info(
            f"[Capture] Captured {image.width}x{image.height} image "
            f"({len(data_url)} chars)"
        )

        if self.on_capture:
            try:
                self.on_capture(data_url)
            except Exception as e:
                logger.error(f"[Capture] Capture callback error: {e}")
        return data_url

    async def capture_after(
        self,
        seconds: int,
        on_tick: Optional[Callable[[int], None]] = None,
        tick: float = 1.0,
    ) -> Optional[str]:
        """
        Count down, then capture. Cancel the awaiting task to abort.

        Args:
            seconds: Countdown length
            on_tick: Called with the remaining seconds before each tick
            tick: Length of one countdown step in seconds
        """
        for remaining in range(seconds, 0, -1):
            if on_tick:
                on_tick(remaining)
            await asyncio.sleep(tick)
        return self.capture()

    def handle_command(self, message: Dict[str, Any]) -> Optional[str]:
        """Run a command received over the data channel."""
        if message.get("type") == CAPTURE_COMMAND:
            logger.info("[Capture] Remote capture requested by phone")
            return self.capture()
        logger.debug(f"[Capture] Ignoring data channel message: {message.get('type')}")
        return None

    def get_stats(self) -> Dict[str, Any]:
        stats = self._grabber.stats.to_dict() if self._grabber else {}
        return {"attached": self._grabber is not None, "captures": self.captures, **stats}
