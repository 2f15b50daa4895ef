"""
Response Schema Definitions

Contains functions for creating acknowledgment and error responses.
"""

from typing import Any, Dict, Optional


def create_ack(
    request_id: Optional[int],
    payload: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Create an acknowledgment for a request that asked for one.

    Args:
        request_id: The "id" carried by the request
        payload: Acknowledgment body ({success, role?, msg?, error_code?})

    Returns:
        dict: Ack message
    """
    return {"type": "ack", "id": request_id, "data": payload}


def create_server_error_ack(request_id: Optional[int]) -> Dict[str, Any]:
    """Create the ack sent when a request failed unexpectedly."""
    return create_ack(
        request_id,
        {"success": False, "msg": "Server error", "error_code": "server-error"},
    )


def create_error_response(
    error_message: str,
    error_code: str = "invalid-request",
) -> Dict[str, Any]:
    """
    Create a generic error response.

    Args:
        error_message: Error message text
        error_code: Machine-readable error code

    Returns:
        dict: Error response
    """
    return {
        "type": "error",
        "data": {
            "success": False,
            "message": error_message,
            "error_code": error_code,
        },
    }
