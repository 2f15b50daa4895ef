"""
Client Service for the Relay

This module provides the transport layer of the client: a WebSocket
connection to the relay that reconnects on its own, request/acknowledgment
matching, and dispatch of incoming messages.

Architecture:
    - Uses the websockets connect() iterator, which reconnects with
      exponential backoff whenever the connection drops
    - Subclasses react to _on_transport_connected(),
      _on_transport_disconnected() and _handle_message()
    - Supports dependency injection for the network layer (for testability)
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from .schemas import BaseRequest, RoomAck

logger = logging.getLogger(__name__)

# Seconds to wait for an acknowledgment
ACK_TIMEOUT = 10.0


class ClientService:
    """
    WebSocket transport to the relay server.

    Attributes:
        server_url: WebSocket URL of the relay (e.g., ws://localhost:3000)
        websocket: Active WebSocket connection (None if not connected)
    """

    def __init__(
        self,
        server_url: str,
        websocket_factory: Optional[Callable] = None,
    ):
        """
        Initialize the client service.

        Args:
            server_url: WebSocket URL of the relay server
            websocket_factory: Optional replacement for websockets' connect,
                             called with the URL and iterated for connections
        """
        self.server_url = server_url
        self.websocket: Optional[ClientConnection] = None
        self._websocket_factory = websocket_factory or connect
        self._connected = False
        self._closing = False
        self._next_request_id = 0
        self._pending_acks: Dict[int, asyncio.Future] = {}

        logger.info("ClientService initialized for relay: %s", server_url)

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the relay."""
        return self._connected and self.websocket is not None

    async def run(self) -> None:
        """
        Keep a connection to the relay open until close() is called.

        Each time the transport (re)connects, _on_transport_connected() runs
        before any message is read; each drop runs
        _on_transport_disconnected().
        """
        self._closing = False
        async for websocket in self._websocket_factory(self.server_url):
            self.websocket = websocket
            self._connected = True
            logger.info("Connected to relay %s", self.server_url)
            reason = ""
            try:
                await self._on_transport_connected()
                async for message in websocket:
                    await self._dispatch(message)
            except ConnectionClosed as e:
                reason = str(e)
            finally:
                self._connected = False
                self.websocket = None
                self._fail_pending_acks()

            if self._closing:
                break
            logger.warning("Connection to relay lost: %s", reason or "closed")
            await self._on_transport_disconnected(reason or "closed")

    async def close(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        if self.websocket is not None:
            await self.websocket.close()
        self._connected = False
        logger.info("Disconnected from relay")

    async def send(self, request: BaseRequest) -> bool:
        """
        Send a request without waiting for an acknowledgment.

        Returns:
            True if the message was written to the connection
        """
        if not self.is_connected:
            logger.debug("Not connected, dropping %s", request.to_dict()["type"])
            return False
        try:
            await self.websocket.send(request.to_json())
            return True
        except ConnectionClosed:
            return False

    async def request(
        self, request: BaseRequest, timeout: float = ACK_TIMEOUT
    ) -> RoomAck:
        """
        Send a request and wait for its acknowledgment.

        Raises:
            ConnectionError: If not connected or the connection drops first
            asyncio.TimeoutError: If no acknowledgment arrives in time
        """
        if not self.is_connected:
            raise ConnectionError("Not connected to the relay")

        self._next_request_id += 1
        request_id = self._next_request_id
        future = asyncio.get_running_loop().create_future()
        self._pending_acks[request_id] = future
        try:
            await self.websocket.send(request.to_json(request_id))
            data = await asyncio.wait_for(future, timeout)
        except ConnectionClosed as e:
            raise ConnectionError(f"Connection closed: {e}")
        finally:
            self._pending_acks.pop(request_id, None)
        return RoomAck.from_dict(data)

    def _fail_pending_acks(self):
        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(ConnectionError("Connection lost"))
        self._pending_acks.clear()

    async def _dispatch(self, message: str) -> None:
        """Route one incoming frame to an ack future or _handle_message."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed message from relay")
            return
        if not isinstance(data, dict):
            return

        message_type = data.get("type")
        payload = data.get("data") or {}
        if message_type == "ack":
            future = self._pending_acks.get(data.get("id"))
            if future is not None and not future.done():
                future.set_result(payload)
            return
        await self._handle_message(message_type, payload)

    async def _on_transport_connected(self) -> None:
        """Called after every successful (re)connection."""

    async def _on_transport_disconnected(self, reason: str) -> None:
        """Called after the connection dropped unexpectedly."""

    async def _handle_message(
        self, message_type: str, payload: Dict[str, Any]
    ) -> None:
        """Called for every message that is not an acknowledgment."""
        logger.debug("Unhandled message: %s", message_type)
