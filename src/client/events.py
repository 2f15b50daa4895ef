"""
Client Events

Every client component publishes a fixed set of event dataclasses through
an EventEmitter. Subscribers register per event class:

    session.subscribe(PeerJoined, on_peer_joined)

Callbacks may be plain functions or coroutine functions; coroutines are
scheduled on the running loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")


class EventEmitter:
    """Typed publish/subscribe keyed by event class."""

    def __init__(self):
        self._subscribers: Dict[type, List[Callable[[Any], Any]]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(
        self, event_type: Type[E], callback: Callable[[E], Any]
    ) -> Callable[[], None]:
        """
        Register a callback for one event class.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: Any):
        """Deliver an event to every subscriber of its class."""
        for callback in list(self._subscribers.get(type(event), [])):
            try:
                result = callback(event)
            except Exception as e:
                logger.error(
                    "Subscriber for %s failed: %s", type(event).__name__, e
                )
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error("Async subscriber failed: %s", task.exception())


# Session events


@dataclass(frozen=True)
class StateChanged:
    state: Any


@dataclass(frozen=True)
class RoomReady:
    """The create or join request was acknowledged."""


@dataclass(frozen=True)
class PeerJoined:
    code: Optional[str] = None


@dataclass(frozen=True)
class PeerLeft:
    pass


@dataclass(frozen=True)
class RestartRequested:
    """The relay asked for the peer link to be rebuilt."""


@dataclass(frozen=True)
class OfferReceived:
    sdp: Any


@dataclass(frozen=True)
class AnswerReceived:
    sdp: Any


@dataclass(frozen=True)
class IceCandidateReceived:
    candidate: Any


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class Reconnected:
    pass


@dataclass(frozen=True)
class ReconnectAttempt:
    attempt: int
    max_attempts: int


@dataclass(frozen=True)
class ReconnectFailed:
    pass


@dataclass(frozen=True)
class SessionError:
    message: str


# Link events


@dataclass(frozen=True)
class LinkConnected:
    first_time: bool


@dataclass(frozen=True)
class LinkDegraded:
    pass


@dataclass(frozen=True)
class LinkFailed:
    pass


@dataclass(frozen=True)
class DataChannelOpen:
    pass


@dataclass(frozen=True)
class DataChannelMessage:
    data: Any


@dataclass(frozen=True)
class DataChannelClosed:
    pass


@dataclass(frozen=True)
class DataChannelError:
    error: Any


@dataclass(frozen=True)
class RemoteTrack:
    track: Any
