"""
Session Client

This module provides the client-side session controller. SessionClient
extends ClientService with the room lifecycle:

    disconnected -> connecting -> room_joined -> peer_connected
                         ^                |
                         +-- reconnecting <+ (transport dropped)

It creates or joins the room on first connect, rejoins on every reconnect,
keeps a heartbeat going while connected and drives a reconnect indicator
while the transport is down. The indicator is for display only; the
transport retries on its own schedule.

Usage:
    session = SessionClient("ws://localhost:3000", "AB12C3", "initiator")
    session.subscribe(PeerJoined, on_peer_joined)
    await session.start()
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Type, TypeVar

from .events import (
    AnswerReceived,
    Disconnected,
    EventEmitter,
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
from .schemas import (
    AnswerMessage,
    CreateRoomRequest,
    HeartbeatRequest,
    IceCandidateMessage,
    JoinRoomRequest,
    LeaveRoomRequest,
    OfferMessage,
    RejoinRoomRequest,
)
from .service import ClientService

logger = logging.getLogger(__name__)

E = TypeVar("E")

HEARTBEAT_INTERVAL = 10.0
RECONNECT_INTERVAL = 2.0
MAX_RECONNECT_ATTEMPTS = 20

INITIATOR = "initiator"
RESPONDER = "responder"


class ConnectionState(Enum):
    """Connection state of a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ROOM_JOINED = "room_joined"
    PEER_CONNECTED = "peer_connected"
    RECONNECTING = "reconnecting"


class SessionClient(ClientService):
    """
    Client session controller for one room.

    Attributes:
        code: Room code
        role: "initiator" or "responder"
        state: Current ConnectionState
        resume: Rejoin straight away on first connect instead of creating
                or joining (the client restarted inside a live session)
        last_heartbeat_ack: Monotonic time of the last heartbeat-ack
        reconnect_attempts: Ticks of the reconnect indicator so far
        has_joined: Whether the relay ever acknowledged this client in the room
    """

    def __init__(
        self,
        server_url: str,
        code: str,
        role: str,
        resume: bool = False,
        websocket_factory: Optional[Callable] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        reconnect_interval: float = RECONNECT_INTERVAL,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
    ):
        super().__init__(server_url, websocket_factory)
        if role not in (INITIATOR, RESPONDER):
            raise ValueError(f"Unknown role: {role}")

        self.code = code
        self.role = role
        self.resume = resume
        self.state = ConnectionState.DISCONNECTED
        self.events = EventEmitter()
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.last_heartbeat_ack: Optional[float] = None
        self.reconnect_attempts = 0
        self.has_joined = False

        self._run_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(
        self, event_type: Type[E], callback: Callable[[E], Any]
    ) -> Callable[[], None]:
        """Register a callback for one session event class."""
        return self.events.subscribe(event_type, callback)

    def _set_state(self, state: ConnectionState):
        if state == self.state:
            return
        logger.info("Session state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.events.emit(StateChanged(state))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Lifecycle

    async def start(self) -> None:
        """Open the transport and keep it running in the background."""
        if self._run_task is not None and not self._run_task.done():
            return
        self._set_state(ConnectionState.CONNECTING)
        self._run_task = asyncio.ensure_future(self.run())
        self._run_task.add_done_callback(self._on_run_done)

    def _on_run_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error("Relay transport stopped: %s", error)
        self._stop_heartbeat()
        self._stop_reconnect_indicator()
        self._set_state(ConnectionState.DISCONNECTED)
        self.events.emit(SessionError(f"Cannot reach the relay: {error}"))

    async def leave(self) -> None:
        """Leave the room for good and close the transport."""
        await self.send(LeaveRoomRequest(self.code))
        self._stop_heartbeat()
        self._stop_reconnect_indicator()
        self._set_state(ConnectionState.DISCONNECTED)
        await self.close()
        if self._run_task is not None:
            self._run_task.cancel()
            self._run_task = None
        for task in list(self._tasks):
            task.cancel()
        logger.info("Left room %s", self.code)

    async def rejoin(self) -> None:
        """Ask the relay to re-register this client with its room."""
        await self.send(RejoinRoomRequest(self.code, self.role))

    def mark_peer_connected(self) -> None:
        """Record that the peer link reported itself connected."""
        if self.state == ConnectionState.ROOM_JOINED:
            self._set_state(ConnectionState.PEER_CONNECTED)

    # Transport hooks

    async def _on_transport_connected(self) -> None:
        self._start_heartbeat()

        if self.state == ConnectionState.RECONNECTING:
            self._stop_reconnect_indicator()
            self.events.emit(Reconnected())
            if self.has_joined:
                await self.rejoin()
                self._set_state(ConnectionState.ROOM_JOINED)
                return
            # Dropped before the room was ever entered
            self._set_state(ConnectionState.CONNECTING)

        elif self.resume:
            self.resume = False
            self.has_joined = True
            await self.rejoin()
            self._set_state(ConnectionState.ROOM_JOINED)
            return

        # The ack is read by the message loop, so wait for it elsewhere
        self._spawn(self._enter_room())

    async def _on_transport_disconnected(self, reason: str) -> None:
        self._stop_heartbeat()
        if self.state == ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.RECONNECTING)
        self.events.emit(Disconnected(reason))
        self._start_reconnect_indicator()

    async def _enter_room(self) -> None:
        """Create or join the room according to this client's role."""
        if self.role == INITIATOR:
            request = CreateRoomRequest(self.code)
            fallback = "Could not create room."
        else:
            request = JoinRoomRequest(self.code)
            fallback = "Could not join room."

        try:
            ack = await self.request(request)
        except (ConnectionError, asyncio.TimeoutError) as e:
            logger.warning("No acknowledgment for %s: %s", request.to_dict()["type"], e)
            return

        if not ack.success:
            logger.warning("Room request rejected: %s", ack.msg)
            self.events.emit(SessionError(ack.msg or fallback))
            return

        self.has_joined = True
        self._set_state(ConnectionState.ROOM_JOINED)
        self.events.emit(RoomReady())
        if self.role == RESPONDER:
            # The initiator is already in the room
            self.events.emit(PeerJoined(self.code))

    async def _handle_message(
        self, message_type: str, payload: Dict[str, Any]
    ) -> None:
        if message_type == "start-chat":
            self.has_joined = True
            self._set_state(ConnectionState.ROOM_JOINED)
            self.events.emit(PeerJoined(payload.get("code")))
        elif message_type == "peer-left":
            if self.state == ConnectionState.PEER_CONNECTED:
                self._set_state(ConnectionState.ROOM_JOINED)
            self.events.emit(PeerLeft())
        elif message_type == "restart-webrtc":
            self.events.emit(RestartRequested())
        elif message_type == "offer":
            self.events.emit(OfferReceived(payload.get("sdp")))
        elif message_type == "answer":
            self.events.emit(AnswerReceived(payload.get("sdp")))
        elif message_type == "ice-candidate":
            self.events.emit(IceCandidateReceived(payload.get("candidate")))
        elif message_type == "heartbeat-ack":
            self.last_heartbeat_ack = time.monotonic()
        elif message_type == "error":
            self.events.emit(SessionError(payload.get("message", "Relay error")))
        else:
            logger.debug("Ignoring unknown message type: %s", message_type)

    # Signaling

    async def send_offer(self, sdp: Any) -> bool:
        return await self.send(OfferMessage(self.code, sdp))

    async def send_answer(self, sdp: Any) -> bool:
        return await self.send(AnswerMessage(self.code, sdp))

    async def send_ice_candidate(self, candidate: Any) -> bool:
        return await self.send(IceCandidateMessage(self.code, candidate))

    # Heartbeat

    def _start_heartbeat(self):
        self._stop_heartbeat()
        self.last_heartbeat_ack = time.monotonic()
        self._heartbeat_task = asyncio.ensure_future(self._heartbeat_loop())

    def _stop_heartbeat(self):
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self.is_connected:
                await self.send(HeartbeatRequest())

    # Reconnect indicator

    def _start_reconnect_indicator(self):
        self._stop_reconnect_indicator()
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    def _stop_reconnect_indicator(self):
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self.reconnect_attempts = 0

    async def _reconnect_loop(self):
        while self.reconnect_attempts < self.max_reconnect_attempts:
            await asyncio.sleep(self.reconnect_interval)
            self.reconnect_attempts += 1
            self.events.emit(
                ReconnectAttempt(self.reconnect_attempts, self.max_reconnect_attempts)
            )
        logger.error(
            "Reconnect failed after %s attempts", self.max_reconnect_attempts
        )
        self.events.emit(ReconnectFailed())
        self._reconnect_task = None
