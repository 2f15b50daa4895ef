"""
Room Schema Definitions

This module defines the message structures for room membership:
creating, joining, rejoining and leaving a room.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseRequest, BaseResponse


@dataclass
class CreateRoomRequest(BaseRequest):
    """
    Request to create a room, or to reclaim the initiator slot of one.

    Attributes:
        code: Six character room code
    """

    code: str

    @property
    def _message_type(self) -> str:
        return "create-room"


@dataclass
class JoinRoomRequest(BaseRequest):
    """
    Request to join an existing room as the responder.

    Attributes:
        code: Six character room code
    """

    code: str

    @property
    def _message_type(self) -> str:
        return "join-room"


@dataclass
class RejoinRoomRequest(BaseRequest):
    """
    Request to re-register with a room after the transport reconnected.

    Attributes:
        code: Six character room code
        role: Role held before the reconnect ("initiator" or "responder")
    """

    code: str
    role: str

    @property
    def _message_type(self) -> str:
        return "rejoin-room"


@dataclass
class LeaveRoomRequest(BaseRequest):
    """Request to leave a room for good."""

    code: str

    @property
    def _message_type(self) -> str:
        return "leave-room"


@dataclass
class RoomAck(BaseResponse):
    """
    Acknowledgment of a create-room or join-room request.

    Attributes:
        success: Whether the request succeeded
        role: Role assigned on success
        msg: Human-readable failure message
        error_code: Error code on failure (invalid-code, room-not-found,
                    server-error)
    """

    success: bool
    role: Optional[str] = None
    msg: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def _from_data(cls, data: Dict[str, Any]) -> "RoomAck":
        return cls(
            success=bool(data.get("success")),
            role=data.get("role"),
            msg=data.get("msg"),
            error_code=data.get("error_code"),
        )
