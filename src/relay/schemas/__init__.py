"""
Schemas for the Relay Server

This module contains the message structures the relay sends to clients.
"""

from .events import (
    create_start_chat_event,
    create_peer_left_event,
    create_restart_webrtc_event,
    create_heartbeat_ack,
    create_signal_event,
)
from .responses import (
    create_ack,
    create_server_error_ack,
    create_error_response,
)

__all__ = [
    "create_start_chat_event",
    "create_peer_left_event",
    "create_restart_webrtc_event",
    "create_heartbeat_ack",
    "create_signal_event",
    "create_ack",
    "create_server_error_ack",
    "create_error_response",
]
