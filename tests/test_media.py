import av
import pytest

from camlink.core.streaming import media
from camlink.core.streaming.media import default_camera, open_camera
from camlink.utils.error_handler import MediaAccessError

from fakes import FakeVideoTrack


class FakePlayer:
    def __init__(self, file, format=None, options=None, video=True):
        self.file = file
        self.format = format
        self.options = options
        self.video = FakeVideoTrack() if video else None


def test_default_camera_per_platform():
    assert default_camera("Linux") == ("/dev/video0", "v4l2")
    assert default_camera("Darwin") == ("default:none", "avfoundation")
    assert default_camera("Windows")[1] == "dshow"
    assert default_camera("Plan9") == ("/dev/video0", "v4l2")


def test_open_default_camera_uses_platform_settings(monkeypatch):
    monkeypatch.setattr(media.platform, "system", lambda: "Darwin")
    players = []

    def factory(file, format=None, options=None):
        players.append(FakePlayer(file, format, options))
        return players[-1]

    camera = open_camera(player_factory=factory)

    assert camera.device == "default:none"
    assert players[0].format == "avfoundation"
    assert players[0].options == media.DEFAULT_CAMERA_OPTIONS
    assert camera.video is players[0].video


def test_open_explicit_device_keeps_format_and_options():
    camera = open_camera("clip.mp4", player_factory=FakePlayer)
    assert camera.device == "clip.mp4"
    assert camera._player.format is None
    assert camera._player.options == {}


def test_open_failure_raises_media_access_error():
    def denied(file, format=None, options=None):
        raise PermissionError("camera permission denied")

    with pytest.raises(MediaAccessError) as exc_info:
        open_camera("/dev/video9", "v4l2", player_factory=denied)
    assert exc_info.value.code == "MEDIA_ACCESS_DENIED"
    assert exc_info.value.details["device"] == "/dev/video9"


def test_ffmpeg_error_raises_media_access_error():
    def broken(file, format=None, options=None):
        raise av.error.FFmpegError(-1, "no such device")

    with pytest.raises(MediaAccessError):
        open_camera("/dev/video9", "v4l2", player_factory=broken)


def test_source_without_video_is_rejected():
    def audio_only(file, format=None, options=None):
        return FakePlayer(file, format, options, video=False)

    with pytest.raises(MediaAccessError):
        open_camera("song.mp3", player_factory=audio_only)


def test_stop_releases_track():
    camera = open_camera("clip.mp4", player_factory=FakePlayer)
    camera.stop()
    assert camera.video.stopped
