"""
Tests for Client Service

Tests for the relay transport: reconnect iteration, acknowledgment
matching and message dispatch. The network layer is replaced through the
websocket_factory hook.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from src.client import ClientService, CreateRoomRequest, RoomAck
from src.client.schemas import HeartbeatRequest


class FakeWebSocket:
    """Client connection stand-in that yields scripted frames, then closes."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.send = AsyncMock()
        self.close = AsyncMock()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


def factory_for(*sockets):
    def factory(url):
        async def connections():
            for websocket in sockets:
                yield websocket

        return connections()

    return factory


class RecordingService(ClientService):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def _on_transport_connected(self):
        self.calls.append(("connected",))

    async def _on_transport_disconnected(self, reason):
        self.calls.append(("disconnected", reason))

    async def _handle_message(self, message_type, payload):
        self.calls.append(("message", message_type, payload))


def connected_service():
    service = ClientService(server_url="ws://localhost:3000")
    service.websocket = FakeWebSocket()
    service._connected = True
    return service


def test_client_service_can_be_instantiated():
    """Test that ClientService can be instantiated."""
    service = ClientService(server_url="ws://localhost:3000")
    assert service.server_url == "ws://localhost:3000"
    assert not service.is_connected


@pytest.mark.asyncio
async def test_run_reports_every_connection_and_drop():
    """Test hooks fire for each connection the factory yields."""
    first = FakeWebSocket([json.dumps({"type": "start-chat", "data": {"code": "AB12C3"}})])
    second = FakeWebSocket([json.dumps({"type": "peer-left"})])
    service = RecordingService("ws://relay", websocket_factory=factory_for(first, second))

    await service.run()

    assert service.calls == [
        ("connected",),
        ("message", "start-chat", {"code": "AB12C3"}),
        ("disconnected", "closed"),
        ("connected",),
        ("message", "peer-left", {}),
        ("disconnected", "closed"),
    ]
    assert not service.is_connected


@pytest.mark.asyncio
async def test_run_stops_after_close():
    """Test that an intentional close ends the reconnect loop."""
    first = FakeWebSocket([json.dumps({"type": "heartbeat-ack"})])
    second = FakeWebSocket()
    service = RecordingService("ws://relay", websocket_factory=factory_for(first, second))

    async def close_on_message(message_type, payload):
        await service.close()

    service._handle_message = close_on_message
    await service.run()

    assert service.calls == [("connected",)]
    first.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_send_when_disconnected():
    """Test send reports failure without a connection."""
    service = ClientService(server_url="ws://relay")
    assert await service.send(HeartbeatRequest()) is False


@pytest.mark.asyncio
async def test_send_writes_json():
    """Test send serializes the request."""
    service = connected_service()

    assert await service.send(HeartbeatRequest())

    service.websocket.send.assert_awaited_once_with('{"type": "heartbeat"}')


@pytest.mark.asyncio
async def test_request_matches_ack_by_id():
    """Test request waits for the ack carrying its id."""
    service = connected_service()

    task = asyncio.ensure_future(service.request(CreateRoomRequest("AB12C3")))
    await asyncio.sleep(0.01)
    sent = json.loads(service.websocket.send.call_args.args[0])
    assert sent == {"type": "create-room", "data": {"code": "AB12C3"}, "id": 1}

    await service._dispatch(json.dumps({"type": "ack", "id": 99, "data": {"success": False}}))
    assert not task.done()
    await service._dispatch(
        json.dumps({"type": "ack", "id": 1, "data": {"success": True, "role": "initiator"}})
    )

    assert await asyncio.wait_for(task, 1) == RoomAck(success=True, role="initiator")


@pytest.mark.asyncio
async def test_request_fails_when_connection_drops():
    """Test pending requests fail with ConnectionError on a drop."""
    service = connected_service()

    task = asyncio.ensure_future(service.request(CreateRoomRequest("AB12C3")))
    await asyncio.sleep(0)
    service._fail_pending_acks()

    with pytest.raises(ConnectionError):
        await task


@pytest.mark.asyncio
async def test_request_times_out():
    """Test request gives up when no ack arrives."""
    service = connected_service()

    with pytest.raises(asyncio.TimeoutError):
        await service.request(CreateRoomRequest("AB12C3"), timeout=0.01)
    assert service._pending_acks == {}


@pytest.mark.asyncio
async def test_request_requires_connection():
    """Test request refuses to run while disconnected."""
    service = ClientService(server_url="ws://relay")
    with pytest.raises(ConnectionError):
        await service.request(CreateRoomRequest("AB12C3"))


@pytest.mark.asyncio
async def test_malformed_frames_are_ignored():
    """Test garbage from the relay never reaches the handler."""
    service = RecordingService("ws://relay")

    await service._dispatch("{not json")
    await service._dispatch("[1, 2, 3]")

    assert service.calls == []
