"""
Schemas Package

This package contains protocol message schemas for client-relay
communication, organized by category: room membership and signaling.

Every message is a JSON object {"type": ..., "data": {...}}. Requests that
expect an acknowledgment also carry an integer "id".
"""

from .base import BaseRequest, BaseResponse
from .room import (
    CreateRoomRequest,
    JoinRoomRequest,
    RejoinRoomRequest,
    LeaveRoomRequest,
    RoomAck,
)
from .signaling import (
    OfferMessage,
    AnswerMessage,
    IceCandidateMessage,
    HeartbeatRequest,
)

__all__ = [
    # Base classes
    "BaseRequest",
    "BaseResponse",
    # Room schemas
    "CreateRoomRequest",
    "JoinRoomRequest",
    "RejoinRoomRequest",
    "LeaveRoomRequest",
    "RoomAck",
    # Signaling schemas
    "OfferMessage",
    "AnswerMessage",
    "IceCandidateMessage",
    "HeartbeatRequest",
]
