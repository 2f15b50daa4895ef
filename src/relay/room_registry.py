"""
Room Registry for the Relay Server

This module keeps the authoritative in-memory state of every two-party room
served by this process. Each room holds at most one participant per role,
and a participant whose connection drops keeps its slot for a grace period
so that a quick reconnect can take it back silently.

Concurrency:
    All mutations of a room run under that room's asyncio.Lock. Grace
    timers are scheduled with loop.call_later and re-acquire the same lock
    before touching state, so a timer firing and a concurrent rejoin are
    always serialized.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .room_store import RoomStore
from .utils import KeyedLock, validate_room_code

logger = logging.getLogger(__name__)

# Seconds a dropped participant keeps its slot before eviction
DISCONNECT_GRACE_PERIOD = 15.0


class Role(Enum):
    """Role of a participant inside a room."""

    INITIATOR = "initiator"
    RESPONDER = "responder"


class ErrorCode(Enum):
    """Error codes reported back to clients."""

    INVALID_CODE = "invalid-code"
    ROOM_NOT_FOUND = "room-not-found"
    SERVER_ERROR = "server-error"
    INVALID_REQUEST = "invalid-request"


@dataclass
class Participant:
    """
    A participant occupying one role slot of a room.

    Attributes:
        handle: Connection handle currently bound to the slot
        role: The slot this participant occupies
    """

    handle: str
    role: Role

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary for persistence."""
        return {"handle": self.handle, "role": self.role.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        """Create from a persisted dictionary."""
        return cls(handle=data["handle"], role=Role(data["role"]))


@dataclass
class Room:
    """
    A two-party room.

    Attributes:
        code: Six character alphanumeric room code
        participants: Participants keyed by role
    """

    code: str
    participants: Dict[Role, Participant] = field(default_factory=dict)

    def get(self, role: Role) -> Optional[Participant]:
        """Return the participant holding a role, if any."""
        return self.participants.get(role)

    def bind(self, role: Role, handle: str):
        """Bind a handle to a role slot, adding the slot if it is empty."""
        participant = self.participants.get(role)
        if participant:
            participant.handle = handle
        else:
            self.participants[role] = Participant(handle=handle, role=role)

    def role_of(self, handle: str) -> Optional[Role]:
        """Return the role bound to a handle, if any."""
        for role, participant in self.participants.items():
            if participant.handle == handle:
                return role
        return None

    def is_empty(self) -> bool:
        return not self.participants

    def participant_list(self) -> List[Dict[str, str]]:
        """Participants in persisted form, initiator first."""
        return [
            self.participants[role].to_dict()
            for role in Role
            if role in self.participants
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert room to dictionary for serialization."""
        return {"code": self.code, "participants": self.participant_list()}


@dataclass
class RoomResult:
    """
    Outcome of a registry operation.

    Attributes:
        success: Whether the operation succeeded
        role: Role assigned to the caller on success
        error_code: Error code on failure
        msg: Human-readable failure message
        initiator_handle: Handle of the initiator (join only)
        initiator: Initiator participant after a rejoin
        responder: Responder participant after a rejoin
    """

    success: bool
    role: Optional[Role] = None
    error_code: Optional[ErrorCode] = None
    msg: Optional[str] = None
    initiator_handle: Optional[str] = None
    initiator: Optional[Participant] = None
    responder: Optional[Participant] = None

    @classmethod
    def failure(cls, error_code: ErrorCode, msg: str) -> "RoomResult":
        return cls(success=False, error_code=error_code, msg=msg)

    @property
    def both_present(self) -> bool:
        """True when both role slots are occupied."""
        return self.initiator is not None and self.responder is not None

    def to_ack(self) -> Dict[str, Any]:
        """Convert to the acknowledgment payload sent to the caller."""
        ack: Dict[str, Any] = {"success": self.success}
        if self.role:
            ack["role"] = self.role.value
        if self.msg:
            ack["msg"] = self.msg
        if self.error_code:
            ack["error_code"] = self.error_code.value
        return ack


@dataclass
class PendingDisconnect:
    """
    Grace timer armed for a dropped participant.

    Attributes:
        handle: The handle that dropped
        generation: Tag identifying this particular timer
        timer: The scheduled loop callback
    """

    handle: str
    generation: int
    timer: asyncio.TimerHandle


EvictionCallback = Callable[[str, Role], Any]


class RoomRegistry:
    """
    Authoritative registry of rooms and their participants.

    Every operation takes the room code and the caller's connection handle.
    Domain failures are reported through RoomResult; store failures never
    reach the caller because the RoomStore swallows them.
    """

    def __init__(
        self,
        store: RoomStore,
        grace_period: float = DISCONNECT_GRACE_PERIOD,
    ):
        """
        Initialize the registry.

        Args:
            store: Durable store mirrored on every membership change
            grace_period: Seconds a dropped participant keeps its slot
        """
        self.store = store
        self.grace_period = grace_period
        self._rooms: Dict[str, Room] = {}
        self._locks = KeyedLock()
        self._pending: Dict[Tuple[str, Role], PendingDisconnect] = {}
        self._generation = 0
        self._eviction_tasks: set = set()

    async def load(self, on_evicted: Optional[EvictionCallback] = None) -> int:
        """
        Warm the registry from the durable store.

        Must be called once at startup. Failures propagate since the
        process cannot serve without its persisted rooms.

        Restored participants are bound to handles of the previous process,
        so each one starts its grace period straight away and is evicted
        unless it rejoins in time.

        Args:
            on_evicted: Passed on to the grace timers of restored participants

        Returns:
            Number of rooms loaded
        """
        rooms = await self.store.load_all()
        for record in rooms:
            room = Room(code=record["code"])
            for entry in record.get("participants", []):
                participant = Participant.from_dict(entry)
                room.participants[participant.role] = participant
            self._rooms[room.code] = room
            for participant in room.participants.values():
                self._arm_grace_timer(
                    room.code, participant.role, participant.handle, on_evicted
                )
        logger.info(f"Loaded {len(self._rooms)} rooms from store")
        return len(self._rooms)

    async def _sync(self, code: str):
        """Mirror a room's current state to the store. Caller holds the lock."""
        room = self._rooms.get(code)
        if room is None:
            await self.store.delete(code)
        else:
            await self.store.upsert(code, room.participant_list())

    def cancel_pending_disconnect(self, code: str, role: Role) -> bool:
        """
        Cancel the grace timer for a (room, role) slot.

        Safe to call when no timer exists or it has already fired.

        Returns:
            True if a timer was cancelled
        """
        pending = self._pending.pop((code, role), None)
        if pending is None:
            return False
        pending.timer.cancel()
        logger.debug(f"Cancelled pending disconnect for {role.value} in {code}")
        return True

    async def create_or_rebind_initiator(
        self, code: str, handle: str
    ) -> RoomResult:
        """
        Create a room, or rebind the initiator slot if it already exists.

        Args:
            code: Room code
            handle: Connection handle of the caller

        Returns:
            RoomResult with role INITIATOR, or an invalid-code failure
        """
        is_valid, error = validate_room_code(code)
        if not is_valid:
            return RoomResult.failure(ErrorCode.INVALID_CODE, error)

        async with self._locks.hold(code):
            self.cancel_pending_disconnect(code, Role.INITIATOR)
            room = self._rooms.get(code)
            if room is None:
                room = Room(code=code)
                self._rooms[code] = room
                logger.info(f"Room {code} created by {handle}")
            else:
                logger.info(f"Initiator of room {code} rebound to {handle}")
            room.bind(Role.INITIATOR, handle)
            await self._sync(code)

        return RoomResult(success=True, role=Role.INITIATOR)

    async def join_as_responder(self, code: str, handle: str) -> RoomResult:
        """
        Join an existing room as the responder.

        Args:
            code: Room code
            handle: Connection handle of the caller

        Returns:
            RoomResult with role RESPONDER and the initiator's handle, or an
            invalid-code / room-not-found failure
        """
        is_valid, error = validate_room_code(code)
        if not is_valid:
            return RoomResult.failure(ErrorCode.INVALID_CODE, error)

        async with self._locks.hold(code):
            room = self._rooms.get(code)
            if room is None or room.is_empty():
                return RoomResult.failure(
                    ErrorCode.ROOM_NOT_FOUND,
                    "Room not found or initiator missing",
                )

            self.cancel_pending_disconnect(code, Role.RESPONDER)
            room.bind(Role.RESPONDER, handle)
            await self._sync(code)

            initiator = room.get(Role.INITIATOR)
            logger.info(f"Responder {handle} joined room {code}")
            return RoomResult(
                success=True,
                role=Role.RESPONDER,
                initiator_handle=initiator.handle if initiator else None,
            )

    async def rejoin(self, code: str, role: Role, handle: str) -> RoomResult:
        """
        Re-register a reconnecting participant.

        Recreates the room if it had been evicted in the meantime.

        Args:
            code: Room code
            role: Role the participant held before reconnecting
            handle: The participant's new connection handle

        Returns:
            RoomResult carrying the current occupants of both slots
        """
        is_valid, error = validate_room_code(code)
        if not is_valid:
            return RoomResult.failure(ErrorCode.INVALID_CODE, error)

        async with self._locks.hold(code):
            self.cancel_pending_disconnect(code, role)
            room = self._rooms.get(code)
            if room is None:
                room = Room(code=code)
                self._rooms[code] = room
                logger.info(f"Room {code} recreated on rejoin")
            room.bind(role, handle)
            await self._sync(code)

            logger.info(f"{role.value} rejoined room {code} as {handle}")
            return RoomResult(
                success=True,
                role=role,
                initiator=_copy(room.get(Role.INITIATOR)),
                responder=_copy(room.get(Role.RESPONDER)),
            )

    async def leave(self, code: str, handle: str) -> bool:
        """
        Remove a handle from a room immediately, without a grace period.

        Returns:
            True if the handle was found and removed
        """
        is_valid, _ = validate_room_code(code)
        if not is_valid:
            return False

        async with self._locks.hold(code):
            room = self._rooms.get(code)
            if room is None:
                return False
            role = room.role_of(handle)
            if role is None:
                return False

            del room.participants[role]
            self.cancel_pending_disconnect(code, role)
            if room.is_empty():
                del self._rooms[code]
                logger.info(f"Room {code} deleted after leave")
            await self._sync(code)
            logger.info(f"{role.value} {handle} left room {code}")
            return True

    def find_by_handle(self, handle: str) -> Optional[Tuple[Room, Role]]:
        """Return the (room, role) a handle is bound to, if any."""
        for room in self._rooms.values():
            role = room.role_of(handle)
            if role is not None:
                return room, role
        return None

    def handle_disconnect(
        self,
        handle: str,
        on_evicted: Optional[EvictionCallback] = None,
    ) -> Optional[Tuple[str, Role]]:
        """
        Arm the grace timer for a dropped connection.

        Args:
            handle: The handle whose connection dropped
            on_evicted: Called with (code, role) if the slot is vacated when
                        the grace period expires. May be a coroutine function.

        Returns:
            The (code, role) the handle was bound to, or None if unknown
        """
        found = self.find_by_handle(handle)
        if found is None:
            return None

        room, role = found
        code = room.code
        self._arm_grace_timer(code, role, handle, on_evicted)
        logger.info(
            f"{role.value} {handle} disconnected from room {code}, "
            f"evicting in {self.grace_period}s unless it rejoins"
        )
        return code, role

    def _arm_grace_timer(
        self,
        code: str,
        role: Role,
        handle: str,
        on_evicted: Optional[EvictionCallback],
    ):
        """Replace any grace timer of a slot with a fresh one for handle."""
        self.cancel_pending_disconnect(code, role)

        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        timer = loop.call_later(
            self.grace_period,
            self._spawn_eviction,
            code,
            role,
            handle,
            generation,
            on_evicted,
        )
        self._pending[(code, role)] = PendingDisconnect(
            handle=handle, generation=generation, timer=timer
        )

    def _spawn_eviction(self, code, role, handle, generation, on_evicted):
        task = asyncio.ensure_future(
            self._evict(code, role, handle, generation, on_evicted)
        )
        self._eviction_tasks.add(task)
        task.add_done_callback(self._eviction_tasks.discard)

    async def _evict(
        self,
        code: str,
        role: Role,
        handle: str,
        generation: int,
        on_evicted: Optional[EvictionCallback],
    ) -> bool:
        """Vacate a slot once its grace period has expired."""
        async with self._locks.hold(code):
            pending = self._pending.get((code, role))
            if pending is None or pending.generation != generation:
                logger.debug(f"Stale grace timer for {role.value} in {code}")
                return False
            del self._pending[(code, role)]

            room = self._rooms.get(code)
            if room is None:
                return False
            participant = room.get(role)
            if participant is None or participant.handle != handle:
                # A rejoin replaced the handle during the grace window
                return False

            del room.participants[role]
            if room.is_empty():
                del self._rooms[code]
                logger.info(f"Room {code} deleted after grace period")
            await self._sync(code)

        logger.info(f"{role.value} {handle} evicted from room {code}")
        if on_evicted:
            try:
                result = on_evicted(code, role)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Eviction callback failed for room {code}: {e}")
        return True

    def has_pending_disconnect(self, code: str, role: Role) -> bool:
        return (code, role) in self._pending

    def get_room(self, code: str) -> Optional[Room]:
        """Return the room for a code, if any."""
        return self._rooms.get(code)

    def room_count(self) -> int:
        return len(self._rooms)

    def close(self):
        """Cancel every pending grace timer."""
        for pending in self._pending.values():
            pending.timer.cancel()
        self._pending.clear()


def _copy(participant: Optional[Participant]) -> Optional[Participant]:
    if participant is None:
        return None
    return Participant(handle=participant.handle, role=participant.role)
