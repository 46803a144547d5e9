"""In-memory stand-ins for aiortc peer connections, tracks and frames."""

import asyncio
import inspect

from aiortc import RTCSessionDescription
from aiortc.mediastreams import MediaStreamError
from PIL import Image


class FakeEmitter:
    def __init__(self):
        self._handlers = {}

    def on(self, event, f=None):
        def register(func):
            self._handlers.setdefault(event, []).append(func)
            return func

        return register(f) if f is not None else register

    async def emit(self, event, *args):
        for handler in list(self._handlers.get(event, [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result


class FakeDataChannel(FakeEmitter):
    def __init__(self, label, ready_state="open"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent = []

    def send(self, data):
        self.sent.append(data)


class FakePeerConnection(FakeEmitter):
    def __init__(self, configuration=None, fail_remote=False):
        super().__init__()
        self.configuration = configuration
        self.fail_remote = fail_remote
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.tracks = []
        self.channels = []
        self.candidates = []
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    def createDataChannel(self, label):
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0 offer", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="v=0 answer", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.fail_remote:
            raise ValueError("bad remote description")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def set_connection_state(self, state):
        self.connectionState = state
        await self.emit("connectionstatechange")

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self.set_connection_state("closed")


class PeerFactory:
    """peer_factory that remembers every connection it built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created = []

    def __call__(self, configuration):
        pc = FakePeerConnection(configuration, **self.kwargs)
        self.created.append(pc)
        return pc

    @property
    def last(self):
        return self.created[-1]


class FakeFrame:
    """Minimal av.VideoFrame: size plus to_image()."""

    def __init__(self, width=64, height=48, color=(200, 30, 30), mode="RGB"):
        self.width = width
        self.height = height
        self._color = color
        self._mode = mode

    def to_image(self):
        if self._mode == "RGBA":
            return Image.new("RGBA", (self.width, self.height), self._color + (255,))
        return Image.new(self._mode, (self.width, self.height), self._color)


class FakeVideoTrack(FakeEmitter):
    """Remote track yielding queued frames, then ending."""

    kind = "video"

    def __init__(self, frames=None):
        super().__init__()
        self._frames = asyncio.Queue()
        for frame in frames or []:
            self._frames.put_nowait(frame)
        self.stopped = False

    def push(self, frame):
        self._frames.put_nowait(frame)

    def end(self):
        self._frames.put_nowait(None)

    async def recv(self):
        frame = await self._frames.get()
        if frame is None:
            raise MediaStreamError
        return frame

    def stop(self):
        self.stopped = True


class FakeAudioTrack:
    kind = "audio"
