"""
Validation Utilities

Contains utility functions for validating room codes and request payloads.
"""

import re
from typing import Any, Optional, Tuple

ROOM_CODE_LENGTH = 6
ROOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]{6}$")


def validate_room_code(code: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a room code.

    Room codes are exactly six ASCII letters or digits, case-sensitive.

    Args:
        code: The room code to validate

    Returns:
        tuple: (is_valid, error_message)
            - is_valid: True if the code is well formed, False otherwise
            - error_message: Error message if invalid, None if valid
    """
    if not isinstance(code, str) or not ROOM_CODE_PATTERN.fullmatch(code):
        return (
            False,
            f"Invalid code (expected {ROOM_CODE_LENGTH} letters or digits)",
        )
    return True, None
