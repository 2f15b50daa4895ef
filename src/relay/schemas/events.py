"""
Event Schema Definitions

Contains functions for creating the notifications the relay pushes to
clients: peer arrival, peer departure, renegotiation requests and the
forwarded handshake messages.
"""

from typing import Any, Dict


def create_start_chat_event(code: str) -> Dict[str, Any]:
    """
    Create a start-chat event, telling a client its peer is present.

    Args:
        code: Room code

    Returns:
        dict: Event message
    """
    return {"type": "start-chat", "data": {"code": code}}


def create_peer_left_event() -> Dict[str, Any]:
    """Create a peer-left event."""
    return {"type": "peer-left"}


def create_restart_webrtc_event() -> Dict[str, Any]:
    """Create a restart-webrtc event asking a client to rebuild its link."""
    return {"type": "restart-webrtc"}


def create_heartbeat_ack() -> Dict[str, Any]:
    return {"type": "heartbeat-ack"}


def create_signal_event(
    message_type: str,
    code: str,
    payload_key: str,
    payload: Any,
) -> Dict[str, Any]:
    """
    Create a forwarded handshake message.

    The payload is passed through untouched; it belongs to the peer link
    protocol and the relay never inspects it.

    Args:
        message_type: "offer", "answer" or "ice-candidate"
        code: Room code
        payload_key: "sdp" or "candidate"
        payload: Opaque payload from the sender

    Returns:
        dict: Event message
    """
    return {
        "type": message_type,
        "data": {"code": code, payload_key: payload},
    }
