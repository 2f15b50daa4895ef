"""
Client Package

This package provides the client side of a two-party session: the
transport service, the session controller with its reconnect and
heartbeat handling, the peer link controller with its retry queue, and
the terminal user interface.

Schemas are organized in the `schemas` subpackage by category:
    - room: Room creation, joining, rejoining and leaving
    - signaling: Handshake messages and heartbeat
"""

from .service import ClientService
from .session_client import SessionClient, ConnectionState
from .link import LinkController, LinkState, LinkHandlers, ChannelHandlers
from .retry_queue import RetryQueue
from .events import EventEmitter
from .schemas import (
    # Base classes
    BaseRequest,
    BaseResponse,
    # Room schemas
    CreateRoomRequest,
    JoinRoomRequest,
    RejoinRoomRequest,
    LeaveRoomRequest,
    RoomAck,
    # Signaling schemas
    OfferMessage,
    AnswerMessage,
    IceCandidateMessage,
    HeartbeatRequest,
)

__all__ = [
    # Service classes
    "ClientService",
    "SessionClient",
    "ConnectionState",
    "LinkController",
    "LinkState",
    "LinkHandlers",
    "ChannelHandlers",
    "RetryQueue",
    "EventEmitter",
    # Base schema classes
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
