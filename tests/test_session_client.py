"""
Tests for the Session Client

Tests for the room lifecycle, reconnect handling, heartbeat and relayed
notifications. The transport hooks are driven directly against a mocked
connection.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from src.client.events import (
    Disconnected,
    IceCandidateReceived,
    OfferReceived,
    PeerJoined,
    PeerLeft,
    ReconnectAttempt,
    ReconnectFailed,
    Reconnected,
    RestartRequested,
    RoomReady,
    SessionError,
    StateChanged,
)
from src.client.session_client import ConnectionState, SessionClient

CODE = "AB12C3"


def make_session(role="initiator", **kwargs):
    session = SessionClient("ws://relay", CODE, role, **kwargs)
    session.websocket = AsyncMock()
    session._connected = True
    return session


def sent(session):
    return [json.loads(call.args[0]) for call in session.websocket.send.call_args_list]


def record(session, *event_types):
    events = []
    for event_type in event_types:
        session.subscribe(event_type, events.append)
    return events


async def ack_last_request(session, **data):
    await asyncio.sleep(0.01)
    request_id = sent(session)[-1]["id"]
    await session._dispatch(json.dumps({"type": "ack", "id": request_id, "data": data}))
    await asyncio.sleep(0.01)


def test_unknown_role_rejected():
    """Test that only the two room roles are accepted."""
    with pytest.raises(ValueError):
        SessionClient("ws://relay", CODE, "observer")


@pytest.mark.asyncio
async def test_initiator_creates_room():
    """Test the initiator sends create-room on first connect."""
    session = make_session("initiator")
    events = record(session, RoomReady, PeerJoined)

    await session._on_transport_connected()
    await ack_last_request(session, success=True, role="initiator")

    assert sent(session)[0]["type"] == "create-room"
    assert sent(session)[0]["data"] == {"code": CODE}
    assert session.state == ConnectionState.ROOM_JOINED
    assert events == [RoomReady()]
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_responder_joins_room():
    """Test the responder joins and learns its peer is already there."""
    session = make_session("responder")
    events = record(session, RoomReady, PeerJoined)

    await session._on_transport_connected()
    await ack_last_request(session, success=True, role="responder")

    assert sent(session)[0]["type"] == "join-room"
    assert events == [RoomReady(), PeerJoined(CODE)]
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_rejected_join_reports_error():
    """Test a failed ack surfaces the relay's message."""
    session = make_session("responder")
    session.state = ConnectionState.CONNECTING
    errors = record(session, SessionError)

    await session._on_transport_connected()
    await ack_last_request(
        session,
        success=False,
        msg="Room not found or initiator missing",
        error_code="room-not-found",
    )

    assert errors == [SessionError("Room not found or initiator missing")]
    assert session.state == ConnectionState.CONNECTING
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_reconnect_rejoins_room():
    """Test a reconnect sends rejoin-room instead of create/join."""
    session = make_session("responder")
    session.state = ConnectionState.RECONNECTING
    session.reconnect_attempts = 3
    session.has_joined = True
    events = record(session, Reconnected)

    await session._on_transport_connected()

    assert sent(session) == [
        {"type": "rejoin-room", "data": {"code": CODE, "role": "responder"}}
    ]
    assert session.state == ConnectionState.ROOM_JOINED
    assert session.reconnect_attempts == 0
    assert events == [Reconnected()]
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_resume_rejoins_on_first_connect():
    """Test a resumed session goes straight to rejoin-room."""
    session = make_session("initiator", resume=True)

    await session._on_transport_connected()

    assert [m["type"] for m in sent(session)] == ["rejoin-room"]
    assert session.state == ConnectionState.ROOM_JOINED
    assert session.resume is False
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_drop_starts_reconnect_indicator():
    """Test the indicator ticks up to its cap and then gives up."""
    session = make_session(reconnect_interval=0.01, max_reconnect_attempts=3)
    session.state = ConnectionState.PEER_CONNECTED
    events = record(session, Disconnected, ReconnectAttempt, ReconnectFailed)

    await session._on_transport_disconnected("closed")
    assert session.state == ConnectionState.RECONNECTING
    await asyncio.sleep(0.1)

    assert events == [
        Disconnected("closed"),
        ReconnectAttempt(1, 3),
        ReconnectAttempt(2, 3),
        ReconnectAttempt(3, 3),
        ReconnectFailed(),
    ]


@pytest.mark.asyncio
async def test_drop_after_leave_is_quiet():
    """Test a drop after an intentional leave is not treated as a loss."""
    session = make_session()
    session.state = ConnectionState.DISCONNECTED
    events = record(session, Disconnected, StateChanged)

    await session._on_transport_disconnected("closed")

    assert events == []
    assert session._reconnect_task is None


@pytest.mark.asyncio
async def test_start_chat_marks_peer_joined():
    """Test start-chat from the relay."""
    session = make_session()
    session.state = ConnectionState.CONNECTING
    events = record(session, PeerJoined)

    await session._dispatch(json.dumps({"type": "start-chat", "data": {"code": CODE}}))

    assert events == [PeerJoined(CODE)]
    assert session.state == ConnectionState.ROOM_JOINED


@pytest.mark.asyncio
async def test_relayed_notifications():
    """Test each relay notification maps to its event."""
    session = make_session()
    events = record(
        session, PeerLeft, RestartRequested, OfferReceived, IceCandidateReceived, SessionError
    )
    sdp = {"type": "offer", "sdp": "v=0"}
    candidate = {"candidate": "candidate:1", "sdpMid": "0", "sdpMLineIndex": 0}

    for message in (
        {"type": "peer-left"},
        {"type": "restart-webrtc"},
        {"type": "offer", "data": {"code": CODE, "sdp": sdp}},
        {"type": "ice-candidate", "data": {"code": CODE, "candidate": candidate}},
        {"type": "error", "data": {"success": False, "message": "Invalid JSON format"}},
        {"type": "something-new"},
    ):
        await session._dispatch(json.dumps(message))

    assert events == [
        PeerLeft(),
        RestartRequested(),
        OfferReceived(sdp),
        IceCandidateReceived(candidate),
        SessionError("Invalid JSON format"),
    ]


@pytest.mark.asyncio
async def test_heartbeat_ack_recorded():
    """Test heartbeat-ack updates the liveness timestamp."""
    session = make_session()
    assert session.last_heartbeat_ack is None

    await session._dispatch(json.dumps({"type": "heartbeat-ack"}))

    assert session.last_heartbeat_ack is not None


@pytest.mark.asyncio
async def test_heartbeat_sent_periodically():
    """Test the heartbeat loop while connected."""
    session = make_session(heartbeat_interval=0.01)

    session._start_heartbeat()
    await asyncio.sleep(0.05)
    session._stop_heartbeat()

    assert {"type": "heartbeat"} in sent(session)


@pytest.mark.asyncio
async def test_mark_peer_connected_only_from_room_joined():
    """Test the link can only promote a joined session."""
    session = make_session()

    session.state = ConnectionState.RECONNECTING
    session.mark_peer_connected()
    assert session.state == ConnectionState.RECONNECTING

    session.state = ConnectionState.ROOM_JOINED
    session.mark_peer_connected()
    assert session.state == ConnectionState.PEER_CONNECTED


@pytest.mark.asyncio
async def test_handshake_messages_carry_room_code():
    """Test outbound offer, answer and candidate messages."""
    session = make_session()

    await session.send_offer({"type": "offer", "sdp": "o"})
    await session.send_answer({"type": "answer", "sdp": "a"})
    await session.send_ice_candidate({"candidate": "c"})

    assert sent(session) == [
        {"type": "offer", "data": {"code": CODE, "sdp": {"type": "offer", "sdp": "o"}}},
        {"type": "answer", "data": {"code": CODE, "sdp": {"type": "answer", "sdp": "a"}}},
        {"type": "ice-candidate", "data": {"code": CODE, "candidate": {"candidate": "c"}}},
    ]


@pytest.mark.asyncio
async def test_leave_closes_for_good():
    """Test leave sends leave-room and stops reconnecting."""
    session = make_session()
    session.state = ConnectionState.PEER_CONNECTED
    websocket = session.websocket

    await session.leave()

    assert json.loads(websocket.send.call_args.args[0]) == {
        "type": "leave-room",
        "data": {"code": CODE},
    }
    websocket.close.assert_awaited_once()
    assert session.state == ConnectionState.DISCONNECTED
    assert session._closing


@pytest.mark.asyncio
async def test_state_changes_are_published():
    """Test StateChanged is emitted once per transition."""
    session = make_session()
    changes = record(session, StateChanged)

    session._set_state(ConnectionState.CONNECTING)
    session._set_state(ConnectionState.CONNECTING)
    session._set_state(ConnectionState.ROOM_JOINED)

    assert [c.state for c in changes] == [
        ConnectionState.CONNECTING,
        ConnectionState.ROOM_JOINED,
    ]


@pytest.mark.asyncio
async def test_reconnect_before_join_enters_room_again():
    """Test a drop before the first ack retries create/join, not rejoin."""
    session = make_session("initiator")
    session.state = ConnectionState.RECONNECTING

    await session._on_transport_connected()
    await ack_last_request(session, success=True, role="initiator")

    assert [m["type"] for m in sent(session)] == ["create-room"]
    assert session.state == ConnectionState.ROOM_JOINED
    assert session.has_joined
    session._stop_heartbeat()


@pytest.mark.asyncio
async def test_transport_failure_is_reported():
    """Test a transport that cannot start leaves the session disconnected."""

    def broken_factory(url):
        raise ValueError("invalid URI")

    session = SessionClient("ws://relay", CODE, "initiator", websocket_factory=broken_factory)
    errors = record(session, SessionError)

    await session.start()
    await asyncio.sleep(0.01)

    assert session.state == ConnectionState.DISCONNECTED
    assert errors == [SessionError("Cannot reach the relay: invalid URI")]


@pytest.mark.asyncio
async def test_peer_left_returns_to_room_joined():
    """Test peer-left drops a connected session back to waiting for a peer."""
    session = make_session()
    session.state = ConnectionState.PEER_CONNECTED
    events = record(session, PeerLeft)

    await session._dispatch(json.dumps({"type": "peer-left"}))

    assert session.state == ConnectionState.ROOM_JOINED
    assert events == [PeerLeft()]
