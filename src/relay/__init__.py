"""
Relay Server Package

This package provides the relay server: the room registry with its
disconnect grace period, the durable room store, and the WebSocket
signaling server.
"""

from .room_registry import (
    RoomRegistry,
    Room,
    Participant,
    Role,
    ErrorCode,
    RoomResult,
    DISCONNECT_GRACE_PERIOD,
)
from .room_store import RoomStore, MemoryRoomStore, RedisRoomStore
from .websocket_server import SignalingServer
from .ice_config import get_ice_servers

__all__ = [
    "RoomRegistry",
    "Room",
    "Participant",
    "Role",
    "ErrorCode",
    "RoomResult",
    "DISCONNECT_GRACE_PERIOD",
    "RoomStore",
    "MemoryRoomStore",
    "RedisRoomStore",
    "SignalingServer",
    "get_ice_servers",
]
