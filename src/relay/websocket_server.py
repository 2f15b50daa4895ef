"""
WebSocket Signaling Server

Handles WebSocket connections from clients, routes room requests to the
RoomRegistry and forwards handshake messages between the two participants
of a room. The same listener answers GET /api/ice-config over plain HTTP.
"""

import json
import logging
from http import HTTPStatus
from typing import Any, Dict, Optional, Set

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from .room_registry import ErrorCode, Role, RoomRegistry
from .schemas import (
    create_ack,
    create_error_response,
    create_heartbeat_ack,
    create_peer_left_event,
    create_restart_webrtc_event,
    create_server_error_ack,
    create_signal_event,
    create_start_chat_event,
)

logger = logging.getLogger(__name__)

ICE_CONFIG_PATH = "/api/ice-config"

# Handshake message type -> name of its opaque payload field
SIGNAL_PAYLOADS = {
    "offer": "sdp",
    "answer": "sdp",
    "ice-candidate": "candidate",
}


class SignalingServer:
    """
    WebSocket server relaying room and handshake messages.

    Each connection is identified by a handle (the string form of the
    connection id). Connections subscribe to a room's broadcast group once
    they create, join or rejoin it.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        host: str,
        port: int,
        ice_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the server.

        Args:
            registry: The room registry
            host: Host address to bind to
            port: Port to listen on
            ice_config: Relay credential set served at /api/ice-config
        """
        self.registry = registry
        self.host = host
        self.port = port
        self.ice_config = ice_config or {}
        self.server = None
        # handle -> connection
        self.connections: Dict[str, ServerConnection] = {}
        # room code -> handles subscribed to the room's broadcast group
        self._room_clients: Dict[str, Set[str]] = {}
        # handle -> room codes it is subscribed to
        self._client_rooms: Dict[str, Set[str]] = {}

    async def start(self):
        """Start the WebSocket server."""
        self.server = await serve(
            self.handle_client,
            self.host,
            self.port,
            process_request=self.process_request,
        )
        logger.info(f"Signaling server started on ws://{self.host}:{self.port}")

    async def stop(self):
        """Stop the WebSocket server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("Signaling server stopped")

    def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        """Serve the relay credential endpoint; let other requests upgrade."""
        if request.path.split("?", 1)[0] != ICE_CONFIG_PATH:
            return None
        response = connection.respond(HTTPStatus.OK, json.dumps(self.ice_config))
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    def subscribe(self, handle: str, code: str):
        """Add a connection to a room's broadcast group."""
        self._room_clients.setdefault(code, set()).add(handle)
        self._client_rooms.setdefault(handle, set()).add(code)

    def unsubscribe(self, handle: str, code: Optional[str] = None):
        """
        Remove a connection from broadcast groups.

        Args:
            handle: The connection handle
            code: Optional specific room. If None, leaves all groups.
        """
        codes = [code] if code else list(self._client_rooms.get(handle, ()))
        for rid in codes:
            members = self._room_clients.get(rid)
            if members is not None:
                members.discard(handle)
                if not members:
                    del self._room_clients[rid]
            if handle in self._client_rooms:
                self._client_rooms[handle].discard(rid)
        if not code:
            self._client_rooms.pop(handle, None)

    def room_members(self, code: str) -> Set[str]:
        return set(self._room_clients.get(code, ()))

    async def send_to(self, handle: str, message: dict) -> bool:
        """
        Send a message directly to one connection.

        Returns:
            True if the message was written to the connection
        """
        websocket = self.connections.get(handle)
        if websocket is None:
            logger.debug(f"No live connection for handle {handle}")
            return False
        try:
            await websocket.send(json.dumps(message))
            return True
        except ConnectionClosed:
            return False

    async def broadcast_to_room(
        self,
        code: str,
        message: dict,
        exclude_handle: Optional[str] = None,
    ):
        """
        Broadcast a message to every connection in a room's group.

        Args:
            code: The room code
            message: The message to broadcast
            exclude_handle: Optional handle to skip
        """
        for handle in self.room_members(code):
            if handle != exclude_handle:
                await self.send_to(handle, message)

    async def handle_client(self, websocket: ServerConnection):
        """
        Handle a client connection.

        Args:
            websocket: The WebSocket connection
        """
        handle = str(websocket.id)
        self.connections[handle] = websocket
        logger.info(f"Client {handle} connected")

        try:
            async for message in websocket:
                await self.process_message(handle, message)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"Error handling client {handle}: {e}")
        finally:
            logger.info(f"Client {handle} disconnected")
            self.unsubscribe(handle)
            self.connections.pop(handle, None)
            self.registry.handle_disconnect(handle, self.on_evicted)

    async def on_evicted(self, code: str, role: Role):
        """Tell the rest of a room that a participant is gone for good."""
        logger.info(f"{role.value} permanently removed from room {code}")
        await self.broadcast_to_room(code, create_peer_left_event())

    async def process_message(self, handle: str, message: str):
        """
        Process an incoming message from a client.

        Args:
            handle: The sender's connection handle
            message: The message string (JSON)
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received from {handle}: {e}")
            await self.send_to(handle, create_error_response("Invalid JSON format"))
            return

        if not isinstance(data, dict):
            await self.send_to(handle, create_error_response("Invalid message"))
            return

        message_type = data.get("type")
        payload = data.get("data") or {}
        request_id = data.get("id")

        if not isinstance(payload, dict):
            await self.send_to(handle, create_error_response("Invalid payload"))
            return

        try:
            if message_type == "create-room":
                await self.handle_create_room(handle, payload, request_id)
            elif message_type == "join-room":
                await self.handle_join_room(handle, payload, request_id)
            elif message_type == "rejoin-room":
                await self.handle_rejoin_room(handle, payload)
            elif message_type == "leave-room":
                await self.handle_leave_room(handle, payload)
            elif message_type in SIGNAL_PAYLOADS:
                await self.handle_signal(handle, message_type, payload)
            elif message_type == "heartbeat":
                await self.send_to(handle, create_heartbeat_ack())
            else:
                logger.warning(f"Unknown message type: {message_type}")
                await self.send_to(
                    handle,
                    create_error_response(f"Unknown message type: {message_type}"),
                )
        except Exception as e:
            logger.error(f"Error processing {message_type} from {handle}: {e}")
            if request_id is not None:
                await self.send_to(handle, create_server_error_ack(request_id))

    async def handle_create_room(
        self, handle: str, payload: dict, request_id: Optional[int]
    ):
        """
        Handle a create-room request.

        Args:
            handle: The sender's connection handle
            payload: The request data ({code})
            request_id: Id echoed in the acknowledgment
        """
        code = payload.get("code")
        logger.info(f"Processing create-room request: {code} by {handle}")

        result = await self.registry.create_or_rebind_initiator(code, handle)
        if result.success:
            self.subscribe(handle, code)
        await self.send_to(handle, create_ack(request_id, result.to_ack()))

    async def handle_join_room(
        self, handle: str, payload: dict, request_id: Optional[int]
    ):
        """
        Handle a join-room request.

        On success the initiator, and only the initiator, is told the peer
        has arrived.
        """
        code = payload.get("code")
        logger.info(f"Processing join-room request: {code} by {handle}")

        result = await self.registry.join_as_responder(code, handle)
        if result.success:
            self.subscribe(handle, code)
            if result.initiator_handle:
                await self.send_to(
                    result.initiator_handle, create_start_chat_event(code)
                )
        await self.send_to(handle, create_ack(request_id, result.to_ack()))

    async def handle_rejoin_room(self, handle: str, payload: dict):
        """
        Handle a rejoin-room request from a reconnecting client.

        When both slots are occupied afterwards, both current handles are
        told to rebuild their peer link from scratch.
        """
        code = payload.get("code")
        try:
            role = Role(payload.get("role"))
        except ValueError:
            logger.warning(f"Ignoring rejoin-room with bad role from {handle}")
            return

        result = await self.registry.rejoin(code, role, handle)
        if not result.success:
            logger.warning(
                f"Ignoring rejoin-room from {handle}: {result.error_code.value}"
            )
            return

        self.subscribe(handle, code)
        if result.both_present:
            restart = create_restart_webrtc_event()
            await self.send_to(result.initiator.handle, restart)
            await self.send_to(result.responder.handle, restart)

        await self.broadcast_to_room(code, create_start_chat_event(code))

    async def handle_leave_room(self, handle: str, payload: dict):
        """
        Handle an intentional leave-room request.

        peer-left goes to the whole room, the leaver included.
        """
        code = payload.get("code")
        if not code:
            return
        self.unsubscribe(handle, code)
        await self.registry.leave(code, handle)
        peer_left = create_peer_left_event()
        await self.broadcast_to_room(code, peer_left)
        await self.send_to(handle, peer_left)

    async def handle_signal(self, handle: str, message_type: str, payload: dict):
        """Forward an offer, answer or ice-candidate to the rest of the room."""
        code = payload.get("code")
        if not code:
            await self.send_to(
                handle,
                create_error_response(
                    f"Missing room code in {message_type}",
                    ErrorCode.INVALID_REQUEST.value,
                ),
            )
            return
        payload_key = SIGNAL_PAYLOADS[message_type]
        event = create_signal_event(
            message_type, code, payload_key, payload.get(payload_key)
        )
        await self.broadcast_to_room(code, event, exclude_handle=handle)
