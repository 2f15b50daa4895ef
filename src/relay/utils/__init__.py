"""
Utilities for the Relay Server

This module contains utility functions for validation and per-room locking.
"""

from .locks import KeyedLock
from .validation import validate_room_code, ROOM_CODE_LENGTH

__all__ = [
    "KeyedLock",
    "validate_room_code",
    "ROOM_CODE_LENGTH",
]
