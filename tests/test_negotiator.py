import asyncio
import json

import pytest

from camlink.core.signaling import messages
from camlink.core.signaling.session_registry import SessionRegistry
from camlink.core.streaming.negotiator import (
    NegotiationState,
    NegotiatorRole,
    PeerNegotiator,
    build_rtc_configuration,
    parse_ice_candidate,
)
from camlink.utils.error_handler import NegotiationError

from fakes import FakeAudioTrack, FakeDataChannel, FakeVideoTrack, PeerFactory

HOST_CANDIDATE = {
    "candidate": "candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


def make(role, factory=None, **kwargs):
    sent = []

    async def send_signal(signal):
        sent.append(signal)

    negotiator = PeerNegotiator(
        role, send_signal, peer_factory=factory or PeerFactory(), **kwargs
    )
    return negotiator, sent


def test_default_configuration_uses_public_stun():
    config = build_rtc_configuration()
    urls = [server.urls[0] for server in config.iceServers]
    assert "stun:stun.l.google.com:19302" in urls


def test_parse_ice_candidate():
    candidate = parse_ice_candidate(HOST_CANDIDATE)
    assert candidate.ip == "192.168.1.2"
    assert candidate.port == 50000
    assert candidate.type == "host"
    assert candidate.sdpMid == "0"
    assert candidate.sdpMLineIndex == 0
    assert parse_ice_candidate({"candidate": ""}) is None


def test_initiator_start_adds_track_and_sends_offer():
    async def scenario():
        factory = PeerFactory()
        track = FakeVideoTrack()
        negotiator, sent = make(NegotiatorRole.INITIATOR, factory, local_track=track)
        await negotiator.start()
        return negotiator, sent, factory.last, track

    negotiator, sent, pc, track = asyncio.run(scenario())
    assert negotiator.state is NegotiationState.CONNECTING
    assert pc.tracks == [track]
    assert [c.label for c in pc.channels] == ["camlink"]
    assert sent == [{"kind": "offer", "payload": {"type": "offer", "sdp": "v=0 offer"}}]


def test_start_twice_is_rejected():
    async def scenario():
        negotiator, _ = make(NegotiatorRole.RECEIVER)
        await negotiator.start()
        await negotiator.start()

    with pytest.raises(NegotiationError):
        asyncio.run(scenario())


def test_receiver_answers_offer():
    async def scenario():
        factory = PeerFactory()
        negotiator, sent = make(NegotiatorRole.RECEIVER, factory)
        await negotiator.start()
        assert sent == []
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer", "sdp": "v=0 remote"}})
        return sent, factory.last

    sent, pc = asyncio.run(scenario())
    assert pc.remoteDescription.sdp == "v=0 remote"
    assert sent == [{"kind": "answer", "payload": {"type": "answer", "sdp": "v=0 answer"}}]


def test_candidates_buffered_until_remote_description():
    async def scenario():
        factory = PeerFactory()
        negotiator, _ = make(NegotiatorRole.RECEIVER, factory)
        await negotiator.start()
        await negotiator.signal({"kind": "ice-candidate", "payload": HOST_CANDIDATE})
        buffered = (len(factory.last.candidates), negotiator.get_stats()["buffered_candidates"])
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer", "sdp": "v=0"}})
        await negotiator.signal({"kind": "ice-candidate", "payload": HOST_CANDIDATE})
        await negotiator.signal({"kind": "ice-candidate", "payload": {"candidate": ""}})
        return buffered, factory.last

    buffered, pc = asyncio.run(scenario())
    assert buffered == (0, 1)
    assert len(pc.candidates) == 2


def test_receiver_connects_on_remote_video_track():
    async def scenario():
        factory = PeerFactory()
        streams, states = [], []
        negotiator, _ = make(
            NegotiatorRole.RECEIVER,
            factory,
            on_stream=streams.append,
            on_state_change=states.append,
        )
        await negotiator.start()
        await factory.last.emit("track", FakeAudioTrack())
        audio_state = negotiator.state
        track = FakeVideoTrack()
        await factory.last.emit("track", track)
        return negotiator, streams, states, track, audio_state

    negotiator, streams, states, track, audio_state = asyncio.run(scenario())
    assert audio_state is NegotiationState.CONNECTING
    assert streams == [track]
    assert negotiator.remote_track is track
    assert states == [NegotiationState.CONNECTING, NegotiationState.CONNECTED]


def test_initiator_connects_on_connection_state():
    async def scenario():
        factory = PeerFactory()
        negotiator, _ = make(NegotiatorRole.INITIATOR, factory)
        await negotiator.start()
        await factory.last.set_connection_state("connecting")
        mid = negotiator.state
        await factory.last.set_connection_state("connected")
        return mid, negotiator.state

    assert asyncio.run(scenario()) == (NegotiationState.CONNECTING, NegotiationState.CONNECTED)


@pytest.mark.parametrize("connection_state", ["failed", "closed", "disconnected"])
def test_transport_failure_is_terminal(connection_state):
    async def scenario():
        factory = PeerFactory()
        negotiator, sent = make(NegotiatorRole.RECEIVER, factory)
        await negotiator.start()
        await factory.last.set_connection_state(connection_state)
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer", "sdp": "v=0"}})
        return negotiator, sent, factory.last

    negotiator, sent, pc = asyncio.run(scenario())
    assert negotiator.state is NegotiationState.ERROR
    assert isinstance(negotiator.error, NegotiationError)
    assert negotiator.error.code == "NEGOTIATION_FAILED"
    assert pc.closed
    # Signals after the failure are ignored
    assert sent == []


def test_bad_remote_description_moves_to_error():
    async def scenario():
        negotiator, sent = make(NegotiatorRole.RECEIVER, PeerFactory(fail_remote=True))
        await negotiator.start()
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer", "sdp": "v=0"}})
        return negotiator, sent

    negotiator, sent = asyncio.run(scenario())
    assert negotiator.state is NegotiationState.ERROR
    assert "applying remote offer" in negotiator.error.message
    assert sent == []


def test_offer_without_sdp_moves_to_error():
    async def scenario():
        negotiator, _ = make(NegotiatorRole.RECEIVER)
        await negotiator.start()
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer"}})
        return negotiator

    assert asyncio.run(scenario()).state is NegotiationState.ERROR


def test_initiator_rejects_offer():
    async def scenario():
        negotiator, _ = make(NegotiatorRole.INITIATOR)
        await negotiator.start()
        await negotiator.signal({"kind": "offer", "payload": {"type": "offer", "sdp": "v=0"}})
        return negotiator

    negotiator = asyncio.run(scenario())
    assert negotiator.state is NegotiationState.ERROR
    assert negotiator.error.details["role"] == "initiator"


def test_close_is_not_an_error():
    async def scenario():
        factory = PeerFactory()
        states = []
        negotiator, _ = make(NegotiatorRole.INITIATOR, factory, on_state_change=states.append)
        await negotiator.start()
        await negotiator.close()
        await negotiator.close()
        return negotiator, factory.last, states

    negotiator, pc, states = asyncio.run(scenario())
    assert negotiator.state is NegotiationState.CLOSED
    assert negotiator.error is None
    assert pc.closed
    assert states == [NegotiationState.CONNECTING, NegotiationState.CLOSED]


def test_data_channel_messages_both_directions():
    async def scenario():
        factory = PeerFactory()
        received = []
        negotiator, _ = make(NegotiatorRole.RECEIVER, factory, on_data=received.append)
        await negotiator.start()
        assert negotiator.send({"type": "capture"}) is False

        channel = FakeDataChannel("camlink")
        await factory.last.emit("datachannel", channel)
        await channel.emit("message", json.dumps({"type": "capture"}))
        await channel.emit("message", "not json")
        await channel.emit("message", b'{"type": "ping"}')
        sent_ok = negotiator.send({"type": "status", "ok": True})
        return received, channel, sent_ok

    received, channel, sent_ok = asyncio.run(scenario())
    assert received == [{"type": "capture"}, {"type": "ping"}]
    assert sent_ok is True
    assert json.loads(channel.sent[0]) == {"type": "status", "ok": True}


def test_end_to_end_descriptors_relayed_exactly(scheduler):
    """Desktop/phone negotiators talking through the real registry."""

    async def scenario():
        inbox = {"desk": [], "phone": []}

        def notify(connection_id, event, data=None):
            inbox[connection_id].append((event, data))

        registry = SessionRegistry(timeout_seconds=30, notify=notify, scheduler=scheduler)
        session_id = registry.create_session("desk")
        assert registry.join_session(session_id, "phone").value == "success"
        assert inbox["desk"] == [(messages.MOBILE_CONNECTED, None)]
        assert inbox["phone"] == [(messages.CONNECTION_SUCCESSFUL, None)]
        inbox["desk"].clear()
        inbox["phone"].clear()

        async def relay_from(connection_id, signal):
            registry.relay(session_id, connection_id, signal)

        desk_factory, phone_factory = PeerFactory(), PeerFactory()
        streams = []
        desktop = PeerNegotiator(
            NegotiatorRole.RECEIVER,
            lambda s: relay_from("desk", s),
            peer_factory=desk_factory,
            on_stream=streams.append,
        )
        mobile = PeerNegotiator(
            NegotiatorRole.INITIATOR,
            lambda s: relay_from("phone", s),
            peer_factory=phone_factory,
            local_track=FakeVideoTrack(),
        )
        await desktop.start()
        await mobile.start()

        # Phone's offer (D1) reaches the desktop unchanged
        (event, data), = inbox["desk"]
        assert event == messages.SIGNAL
        d1 = data["signal"]
        assert d1 == {"kind": "offer", "payload": {"type": "offer", "sdp": "v=0 offer"}}
        await desktop.signal(d1)

        # Desktop's answer (D2) reaches the phone unchanged
        (event, data), = inbox["phone"]
        d2 = data["signal"]
        assert d2 == {"kind": "answer", "payload": {"type": "answer", "sdp": "v=0 answer"}}
        await mobile.signal(d2)
        assert phone_factory.last.remoteDescription.sdp == "v=0 answer"

        track = FakeVideoTrack()
        await desk_factory.last.emit("track", track)
        await phone_factory.last.set_connection_state("connected")
        return desktop, mobile, streams, track

    desktop, mobile, streams, track = asyncio.run(scenario())
    assert streams == [track]
    assert desktop.state is NegotiationState.CONNECTED
    assert mobile.state is NegotiationState.CONNECTED
