"""
Base Schema Classes

Requests are dataclasses that serialize into the relay envelope
{"type", "data", "id"?}; responses are parsed back out of the "data"
member of an envelope, or from a bare payload.
"""

import json
from dataclasses import asdict, fields
from typing import Any, Dict, Optional, TypeVar

T = TypeVar("T", bound="BaseResponse")


class BaseRequest:
    """
    Base class for outbound messages.

    Subclasses are dataclasses whose fields become the "data" object and
    which name their wire type through _message_type.
    """

    def to_dict(self, request_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Build the envelope for this message.

        Args:
            request_id: Id the relay echoes in its ack; omitted for
                        fire-and-forget messages

        Returns:
            Envelope dict. Messages without fields carry no "data".
        """
        envelope: Dict[str, Any] = {"type": self._message_type}
        if hasattr(self, "__dataclass_fields__") and fields(self):
            envelope["data"] = asdict(self)
        if request_id is not None:
            envelope["id"] = request_id
        return envelope

    def to_json(self, request_id: Optional[int] = None) -> str:
        """Serialize the envelope to a text frame."""
        return json.dumps(self.to_dict(request_id))

    @property
    def _message_type(self) -> str:
        raise NotImplementedError("Subclasses must define _message_type")


class BaseResponse:
    """Base class for inbound payloads."""

    @classmethod
    def from_dict(cls: type[T], data: Dict[str, Any]) -> T:
        """
        Parse a full envelope or a bare payload.

        Args:
            data: Decoded frame, or its "data" member

        Returns:
            Instance of the response class
        """
        return cls._from_data(data.get("data", data))

    @classmethod
    def from_json(cls: type[T], json_str: str) -> T:
        """Parse a text frame."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def _from_data(cls: type[T], data: Dict[str, Any]) -> T:
        # Subclasses override this when payload keys do not map 1:1 to fields
        return cls(**data)
