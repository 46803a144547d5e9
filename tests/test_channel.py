import asyncio
import json

import pytest

from camlink.core.signaling import messages
from camlink.core.signaling.channel import SignalingChannel
from camlink.core.signaling.session_registry import SessionRegistry
from camlink.core.signaling.transport import POLLING, WEBSOCKET, ConnectionHub
from camlink.utils.error_handler import ConnectionNotFoundError


@pytest.fixture
def channel(scheduler):
    hub = ConnectionHub()
    registry = SessionRegistry(timeout_seconds=30, notify=hub.deliver, scheduler=scheduler)
    return SignalingChannel(registry, hub)


def drain(connection):
    """Synchronously pop every queued envelope."""
    out = []
    while connection.pending:
        out.append(connection._outbox.get_nowait())
    return out


def send(channel, connection, event, data=None):
    return channel.handle_message(
        connection.connection_id, json.dumps({"event": event, "data": data})
    )


def pair(channel):
    desk = channel.connect(WEBSOCKET)
    phone = channel.connect(POLLING)
    send(channel, desk, messages.CREATE_SESSION)
    session_id = drain(desk)[-1]["data"]["sessionId"]
    send(channel, phone, messages.JOIN_SESSION, {"sessionId": session_id})
    drain(desk)
    drain(phone)
    return desk, phone, session_id


def test_connect_greets_with_connection_id(channel):
    connection = channel.connect(WEBSOCKET)
    assert drain(connection) == [
        {
            "event": messages.CONNECTED,
            "data": {"connectionId": connection.connection_id, "transport": WEBSOCKET},
        }
    ]


def test_create_session_replies_session_created(channel):
    desk = channel.connect(WEBSOCKET)
    drain(desk)

    assert send(channel, desk, messages.CREATE_SESSION)

    (reply,) = drain(desk)
    assert reply["event"] == messages.SESSION_CREATED
    assert reply["data"]["sessionId"] in channel.registry


def test_join_success_notifies_both_sides_across_transports(channel):
    desk = channel.connect(WEBSOCKET)
    phone = channel.connect(POLLING)
    send(channel, desk, messages.CREATE_SESSION)
    session_id = drain(desk)[-1]["data"]["sessionId"]
    drain(phone)

    send(channel, phone, messages.JOIN_SESSION, {"sessionId": session_id})

    assert [m["event"] for m in drain(desk)] == [messages.MOBILE_CONNECTED]
    assert [m["event"] for m in drain(phone)] == [messages.CONNECTION_SUCCESSFUL]


def test_join_unknown_session_replies_not_found(channel):
    phone = channel.connect(WEBSOCKET)
    drain(phone)

    send(channel, phone, messages.JOIN_SESSION, {"sessionId": "missing"})

    assert drain(phone) == [{"event": messages.SESSION_NOT_FOUND, "data": None}]


def test_signals_relayed_verbatim_in_order(channel):
    desk, phone, session_id = pair(channel)
    d1 = {"kind": "offer", "payload": {"type": "offer", "sdp": "D1"}}
    c1 = {"kind": "ice-candidate", "payload": {"candidate": "candidate:1", "sdpMid": "0", "sdpMLineIndex": 0}}

    send(channel, phone, messages.SIGNAL, {"sessionId": session_id, "signal": d1})
    send(channel, phone, messages.SIGNAL, {"sessionId": session_id, "signal": c1})

    assert drain(desk) == [
        {"event": messages.SIGNAL, "data": {"sessionId": session_id, "signal": d1}},
        {"event": messages.SIGNAL, "data": {"sessionId": session_id, "signal": c1}},
    ]
    assert drain(phone) == []


def test_invalid_message_answered_with_error_event(channel):
    desk = channel.connect(WEBSOCKET)
    drain(desk)

    assert not channel.handle_message(desk.connection_id, "{bad json")

    (reply,) = drain(desk)
    assert reply["event"] == messages.ERROR
    assert reply["data"]["code"] == "INVALID_MESSAGE"


def test_unexpected_failure_does_not_escape(channel, monkeypatch):
    desk = channel.connect(WEBSOCKET)
    drain(desk)

    def explode(connection_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(channel.registry, "create_session", explode)

    assert not send(channel, desk, messages.CREATE_SESSION)
    (reply,) = drain(desk)
    assert reply["data"]["code"] == "INTERNAL_ERROR"


def test_message_from_unknown_connection_raises(channel):
    with pytest.raises(ConnectionNotFoundError):
        channel.handle_message("ghost", '{"event": "create-session"}')


def test_disconnect_removes_session_and_notifies_peer(channel):
    desk, phone, session_id = pair(channel)

    assert channel.disconnect(phone.connection_id) == session_id

    assert drain(desk) == [{"event": messages.PEER_DISCONNECTED, "data": None}]
    assert session_id not in channel.registry
    assert phone.connection_id not in channel.hub


def test_expiry_reaches_desktop_through_hub(channel, scheduler):
    desk = channel.connect(WEBSOCKET)
    send(channel, desk, messages.CREATE_SESSION)
    drain(desk)

    scheduler.advance(30)

    assert drain(desk) == [{"event": messages.SESSION_TIMEOUT, "data": None}]


def test_reap_idle_polling_connections(channel):
    desk, phone, session_id = pair(channel)
    phone.last_seen = 0

    assert channel.reap_idle_connections(max_idle=5) == 1

    assert phone.connection_id not in channel.hub
    assert desk.connection_id in channel.hub
    assert [m["event"] for m in drain(desk)] == [messages.PEER_DISCONNECTED]


def test_run_reaper_reaps_periodically(channel):
    async def scenario():
        connection = channel.connect(POLLING)
        connection.last_seen = 0
        task = asyncio.create_task(channel.run_reaper(max_idle=5, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return connection.connection_id in channel.hub

    assert asyncio.run(scenario()) is False


def test_shutdown_clears_everything(channel):
    pair(channel)
    channel.shutdown()
    stats = channel.get_stats()
    assert stats["sessions"]["active_sessions"] == 0
    assert stats["transport"]["connections"] == 0
