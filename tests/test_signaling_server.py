"""
Tests for the WebSocket Signaling Server

Tests for request handling, notifications and handshake forwarding. Most
tests drive process_message() directly with fake connections; the last
ones run the server on a real socket.
"""

import asyncio
import json
import uuid
from http import HTTPStatus

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock
from websockets.asyncio.client import connect
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from src.relay.ice_config import get_ice_servers
from src.relay.room_registry import Role, RoomRegistry
from src.relay.room_store import MemoryRoomStore
from src.relay.websocket_server import SignalingServer

CODE = "AB12C3"


class FakeConnection:
    """Server-side connection stand-in that replays scripted messages."""

    def __init__(self, messages=()):
        self.id = uuid.uuid4()
        self.messages = list(messages)
        self.send = AsyncMock()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message


def make_server(grace_period=0.05, host="localhost"):
    registry = RoomRegistry(MemoryRoomStore(), grace_period=grace_period)
    return SignalingServer(registry, host, 0, get_ice_servers())


def connect_fake(server, handle):
    websocket = AsyncMock()
    server.connections[handle] = websocket
    return websocket


def sent(websocket):
    return [json.loads(call.args[0]) for call in websocket.send.call_args_list]


def request(message_type, data=None, request_id=None):
    message = {"type": message_type}
    if data is not None:
        message["data"] = data
    if request_id is not None:
        message["id"] = request_id
    return json.dumps(message)


async def create_and_join(server):
    initiator = connect_fake(server, "h1")
    responder = connect_fake(server, "h2")
    await server.process_message("h1", request("create-room", {"code": CODE}, 1))
    await server.process_message("h2", request("join-room", {"code": CODE}, 1))
    initiator.send.reset_mock()
    responder.send.reset_mock()
    return initiator, responder


@pytest.mark.asyncio
async def test_create_room_acknowledged():
    """Test create-room is acknowledged with the initiator role."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", request("create-room", {"code": CODE}, 7))

    assert sent(websocket) == [
        {"type": "ack", "id": 7, "data": {"success": True, "role": "initiator"}}
    ]
    assert server.room_members(CODE) == {"h1"}


@pytest.mark.asyncio
async def test_create_room_invalid_code():
    """Test create-room with a malformed code."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", request("create-room", {"code": "bad"}, 1))

    ack = sent(websocket)[0]
    assert ack["data"]["success"] is False
    assert ack["data"]["error_code"] == "invalid-code"
    assert server.room_members("bad") == set()


@pytest.mark.asyncio
async def test_join_notifies_initiator_only():
    """Test start-chat goes to the initiator and not to the joiner."""
    server = make_server()
    initiator = connect_fake(server, "h1")
    responder = connect_fake(server, "h2")
    await server.process_message("h1", request("create-room", {"code": CODE}, 1))
    initiator.send.reset_mock()

    await server.process_message("h2", request("join-room", {"code": CODE}, 2))

    assert sent(initiator) == [{"type": "start-chat", "data": {"code": CODE}}]
    assert sent(responder) == [
        {"type": "ack", "id": 2, "data": {"success": True, "role": "responder"}}
    ]


@pytest.mark.asyncio
async def test_join_missing_room():
    """Test join-room for a room that does not exist."""
    server = make_server()
    websocket = connect_fake(server, "h2")

    await server.process_message("h2", request("join-room", {"code": CODE}, 3))

    ack = sent(websocket)[0]
    assert ack["id"] == 3
    assert ack["data"]["error_code"] == "room-not-found"


@pytest.mark.asyncio
async def test_rejoin_restarts_both_current_handles():
    """Test a rejoin with both slots occupied restarts both peers."""
    server = make_server()
    old_initiator, responder = await create_and_join(server)

    # The initiator's transport dropped and came back under a new handle
    server.unsubscribe("h1")
    server.connections.pop("h1")
    new_initiator = connect_fake(server, "h3")

    await server.process_message(
        "h3", request("rejoin-room", {"code": CODE, "role": "initiator"})
    )

    start_chat = {"type": "start-chat", "data": {"code": CODE}}
    assert sent(new_initiator) == [{"type": "restart-webrtc"}, start_chat]
    assert sent(responder) == [{"type": "restart-webrtc"}, start_chat]
    assert sent(old_initiator) == []
    assert server.registry.get_room(CODE).get(Role.INITIATOR).handle == "h3"


@pytest.mark.asyncio
async def test_rejoin_alone_does_not_restart():
    """Test a rejoin into a half-empty room only announces start-chat."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message(
        "h1", request("rejoin-room", {"code": CODE, "role": "initiator"})
    )

    assert sent(websocket) == [{"type": "start-chat", "data": {"code": CODE}}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [
        {"code": CODE, "role": "observer"},
        {"code": CODE},
        {"code": "bad", "role": "initiator"},
    ],
)
async def test_invalid_rejoin_is_ignored(data):
    """Test rejoin-room with a bad role or code changes nothing."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", request("rejoin-room", data))

    assert sent(websocket) == []
    assert server.registry.room_count() == 0


@pytest.mark.asyncio
async def test_leave_room_notifies_everyone():
    """Test leave-room sends peer-left to the peer and the leaver."""
    server = make_server()
    initiator, responder = await create_and_join(server)

    await server.process_message("h2", request("leave-room", {"code": CODE}))

    assert sent(initiator) == [{"type": "peer-left"}]
    assert sent(responder) == [{"type": "peer-left"}]
    assert server.registry.get_room(CODE).get(Role.RESPONDER) is None
    assert server.room_members(CODE) == {"h1"}


@pytest.mark.asyncio
async def test_offer_forwarded_to_peer_only():
    """Test handshake messages reach the other participant untouched."""
    server = make_server()
    initiator, responder = await create_and_join(server)
    sdp = {"type": "offer", "sdp": "v=0\r\n"}

    await server.process_message("h1", request("offer", {"code": CODE, "sdp": sdp}))

    assert sent(responder) == [{"type": "offer", "data": {"code": CODE, "sdp": sdp}}]
    assert sent(initiator) == []


@pytest.mark.asyncio
async def test_ice_candidate_forwarded():
    """Test ice-candidate forwarding uses the candidate field."""
    server = make_server()
    initiator, _ = await create_and_join(server)
    candidate = {"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host", "sdpMid": "0"}

    await server.process_message(
        "h2", request("ice-candidate", {"code": CODE, "candidate": candidate})
    )

    assert sent(initiator) == [
        {"type": "ice-candidate", "data": {"code": CODE, "candidate": candidate}}
    ]


@pytest.mark.asyncio
async def test_signal_without_code_is_rejected():
    """Test a handshake message missing its room code."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", request("answer", {"sdp": {}}))

    error = sent(websocket)[0]
    assert error["type"] == "error"
    assert error["data"]["error_code"] == "invalid-request"


@pytest.mark.asyncio
async def test_heartbeat():
    """Test heartbeat is answered with heartbeat-ack."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", request("heartbeat"))

    assert sent(websocket) == [{"type": "heartbeat-ack"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["{not json", "[1, 2]", request("dance")])
async def test_malformed_messages(message):
    """Test malformed and unknown messages get an error response."""
    server = make_server()
    websocket = connect_fake(server, "h1")

    await server.process_message("h1", message)

    error = sent(websocket)[0]
    assert error["type"] == "error"
    assert error["data"]["success"] is False


@pytest.mark.asyncio
async def test_unexpected_failure_acknowledged_as_server_error():
    """Test an internal failure turns into a server-error ack."""
    server = make_server()
    websocket = connect_fake(server, "h1")
    server.registry.create_or_rebind_initiator = AsyncMock(
        side_effect=RuntimeError("boom")
    )

    await server.process_message("h1", request("create-room", {"code": CODE}, 4))

    assert sent(websocket) == [
        {
            "type": "ack",
            "id": 4,
            "data": {
                "success": False,
                "msg": "Server error",
                "error_code": "server-error",
            },
        }
    ]


@pytest.mark.asyncio
async def test_send_to_unknown_handle():
    """Test sending to a handle without a live connection."""
    server = make_server()
    assert await server.send_to("ghost", {"type": "peer-left"}) is False


@pytest.mark.asyncio
async def test_disconnect_then_eviction_notifies_peer():
    """Test a drop that outlasts the grace period reaches the peer."""
    server = make_server()
    responder = connect_fake(server, "h2")
    connection = FakeConnection([request("create-room", {"code": CODE}, 1)])
    handle = str(connection.id)

    await server.handle_client(connection)
    await server.process_message("h2", request("join-room", {"code": CODE}, 1))
    responder.send.reset_mock()

    assert handle not in server.connections
    assert server.registry.has_pending_disconnect(CODE, Role.INITIATOR)

    await asyncio.sleep(0.2)

    assert sent(responder) == [{"type": "peer-left"}]
    assert server.registry.get_room(CODE).get(Role.INITIATOR) is None


@pytest.mark.asyncio
async def test_disconnect_then_rejoin_is_silent():
    """Test a drop followed by a quick rejoin never reports peer-left."""
    server = make_server()
    initiator, responder = await create_and_join(server)
    server.registry.handle_disconnect("h2", server.on_evicted)
    server.unsubscribe("h2")
    server.connections.pop("h2")
    connect_fake(server, "h4")

    await server.process_message(
        "h4", request("rejoin-room", {"code": CODE, "role": "responder"})
    )
    await asyncio.sleep(0.2)

    assert {"type": "peer-left"} not in sent(initiator)


def test_process_request_serves_ice_config():
    """Test the HTTP credential endpoint."""
    server = make_server()
    connection = MagicMock()
    connection.respond.side_effect = lambda status, text: Response(
        status.value,
        status.phrase,
        Headers([("Content-Type", "text/plain; charset=utf-8")]),
        text.encode(),
    )

    response = server.process_request(connection, Request("/api/ice-config", Headers()))

    assert response.status_code == HTTPStatus.OK
    assert response.headers["Content-Type"] == "application/json"
    assert json.loads(response.body) == get_ice_servers()


def test_process_request_lets_websocket_through():
    """Test other paths proceed with the WebSocket handshake."""
    server = make_server()
    assert server.process_request(MagicMock(), Request("/", Headers())) is None


@pytest.mark.asyncio
async def test_two_clients_over_real_socket():
    """Test create, join and offer forwarding end to end."""
    server = make_server(host="127.0.0.1")
    await server.start()
    port = server.server.sockets[0].getsockname()[1]
    url = f"ws://127.0.0.1:{port}"

    try:
        async with connect(url) as initiator, connect(url) as responder:
            await initiator.send(request("create-room", {"code": CODE}, 1))
            ack = json.loads(await initiator.recv())
            assert ack["data"]["role"] == "initiator"

            await responder.send(request("join-room", {"code": CODE}, 1))
            ack = json.loads(await responder.recv())
            assert ack["data"]["role"] == "responder"
            assert json.loads(await initiator.recv())["type"] == "start-chat"

            await initiator.send(request("offer", {"code": CODE, "sdp": {"sdp": "x"}}))
            forwarded = json.loads(await asyncio.wait_for(responder.recv(), 2))
            assert forwarded == {"type": "offer", "data": {"code": CODE, "sdp": {"sdp": "x"}}}

            async with httpx.AsyncClient() as client:
                response = await client.get(f"http://127.0.0.1:{port}/api/ice-config")
            assert response.status_code == 200
            assert response.json() == get_ice_servers()
    finally:
        await server.stop()
        server.registry.close()
