"""
Signaling Schema Definitions

This module defines the handshake messages relayed between the two
participants of a room. Their payloads are opaque to the relay.
"""

from dataclasses import dataclass
from typing import Any

from .base import BaseRequest


@dataclass
class OfferMessage(BaseRequest):
    """
    Session description offer.

    Attributes:
        code: Room code
        sdp: Session description ({"type": "offer", "sdp": "..."})
    """

    code: str
    sdp: Any

    @property
    def _message_type(self) -> str:
        return "offer"


@dataclass
class AnswerMessage(BaseRequest):
    """Session description answer."""

    code: str
    sdp: Any

    @property
    def _message_type(self) -> str:
        return "answer"


@dataclass
class IceCandidateMessage(BaseRequest):
    """
    Connectivity candidate.

    Attributes:
        code: Room code
        candidate: Candidate ({"candidate", "sdpMid", "sdpMLineIndex"})
    """

    code: str
    candidate: Any

    @property
    def _message_type(self) -> str:
        return "ice-candidate"


@dataclass
class HeartbeatRequest(BaseRequest):
    """Liveness check, answered with heartbeat-ack."""

    @property
    def _message_type(self) -> str:
        return "heartbeat"
