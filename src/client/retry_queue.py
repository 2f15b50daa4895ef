"""
Retry Queue for Outbound Peer Messages

Holds payloads sent while the data channel is not open yet and delivers
them in order once it is. A payload leaves the queue only after the
channel accepted it, so a channel that closes mid-flush loses nothing and
delivers nothing twice.
"""

import logging
from collections import deque
from typing import Any, Deque

logger = logging.getLogger(__name__)


class RetryQueue:
    """
    Unbounded FIFO of payloads awaiting an open data channel.

    Attributes:
        delivered: Number of payloads flushed since creation
    """

    def __init__(self):
        self._items: Deque[Any] = deque()
        self.delivered = 0

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def append(self, payload: Any) -> None:
        self._items.append(payload)
        logger.debug("Queued payload (%s waiting)", len(self._items))

    def clear(self) -> None:
        """Drop every waiting payload."""
        if self._items:
            logger.info("Dropping %s queued payloads", len(self._items))
        self._items.clear()

    def flush(self, channel) -> int:
        """
        Send waiting payloads while the channel stays open.

        Args:
            channel: Data channel exposing ready_state and send()

        Returns:
            Number of payloads sent
        """
        sent = 0
        while self._items and channel is not None and channel.ready_state == "open":
            payload = self._items[0]
            try:
                channel.send(payload)
            except Exception as e:
                logger.warning("Flush interrupted, will retry: %s", e)
                break
            self._items.popleft()
            sent += 1

        if sent:
            self.delivered += sent
            logger.debug("Flushed %s payloads (%s left)", sent, len(self._items))
        return sent
