"""
Peer Link Controller

This module owns the client's direct peer link. The link itself is opaque:
any object implementing PeerLink will do, created by a factory that
receives the relay credentials and a LinkHandlers bundle. The controller
creates the link, applies relayed handshake steps to it, repairs it when
its health drops, and queues outbound payloads until the data channel
opens.

Link lifecycle:
    absent -> negotiating -> established <-> degraded
                                  |              |
                                  +-> failed <---+  (full restart)

Every link instance is tagged with a generation number. Callbacks carry
the generation they were created for and are ignored once the link they
belong to has been replaced or torn down.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit

import httpx

from .events import (
    AnswerReceived,
    DataChannelClosed,
    DataChannelError,
    DataChannelMessage,
    DataChannelOpen,
    EventEmitter,
    IceCandidateReceived,
    LinkConnected,
    LinkDegraded,
    LinkFailed,
    OfferReceived,
    PeerJoined,
    PeerLeft,
    RemoteTrack,
    RestartRequested,
)
from .retry_queue import RetryQueue

logger = logging.getLogger(__name__)

RETRY_INTERVAL = 2.0
DATA_CHANNEL_LABEL = "chat"
ICE_CONFIG_PATH = "/api/ice-config"

DEFAULT_ICE_CONFIG: Dict[str, Any] = {
    "iceServers": [
        {"urls": "stun:stun.l.google.com:19302"},
        {"urls": "stun:stun1.l.google.com:19302"},
    ],
    "iceCandidatePoolSize": 10,
}


class LinkState(Enum):
    """Lifecycle state of the peer link."""

    ABSENT = "absent"
    NEGOTIATING = "negotiating"
    ESTABLISHED = "established"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class LinkHandlers:
    """Callbacks a PeerLink invokes; set by the controller."""

    on_state_change: Callable[[str], None]
    on_ice_candidate: Callable[[Any], None]
    on_data_channel: Callable[[Any], None]
    on_track: Callable[[Any], None]


@dataclass
class ChannelHandlers:
    """Callbacks a data channel invokes; set by the controller."""

    on_open: Callable[[], None]
    on_message: Callable[[Any], None]
    on_close: Callable[[], None]
    on_error: Callable[[Any], None]


@dataclass
class CapturedStream:
    """Local media returned by a capture function."""

    tracks: List[Any] = field(default_factory=list)

    def get_tracks(self) -> List[Any]:
        return list(self.tracks)


# A PeerLink provides: local_description, create_offer(ice_restart=False),
# create_answer(), set_local_description(), set_remote_description(),
# add_ice_candidate(), create_data_channel(label), get_senders(),
# add_track(track), remove_track(sender) and close(). Data channels provide
# ready_state, send(payload) and set_handlers(ChannelHandlers).
LinkFactory = Callable[[Dict[str, Any], LinkHandlers], Any]
MediaCapture = Callable[[bool], Awaitable[CapturedStream]]


def ice_config_url(server_url: str) -> str:
    """Map the relay's WebSocket URL to its credential endpoint."""
    parts = urlsplit(server_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, ICE_CONFIG_PATH, "", ""))


async def fetch_ice_config(server_url: str, timeout: float = 5.0) -> Dict[str, Any]:
    """
    Fetch the relay credential set from the relay server.

    Raises:
        httpx.HTTPError: If the request fails
    """
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(ice_config_url(server_url))
        response.raise_for_status()
        return response.json()


class LinkController:
    """
    Client peer-link controller.

    Attributes:
        session: The SessionClient relaying handshake messages
        link: Current peer link, or None
        data_channel: Current data channel, or None
        state: Current LinkState
        retry_queue: Payloads waiting for the data channel to open
        has_ever_connected: Whether any link of this controller connected
    """

    def __init__(
        self,
        session,
        link_factory: LinkFactory,
        ice_config_loader: Optional[Callable[[str], Awaitable[Dict[str, Any]]]] = None,
        media_capture: Optional[MediaCapture] = None,
        retry_interval: float = RETRY_INTERVAL,
    ):
        """
        Initialize the controller and subscribe to the session's events.

        Args:
            session: SessionClient for this room
            link_factory: Builds a PeerLink from (ice_config, handlers)
            ice_config_loader: Coroutine fetching credentials for a relay URL
            media_capture: Coroutine returning a CapturedStream for start_media
            retry_interval: Seconds between retry-queue flush attempts
        """
        self.session = session
        self.role = session.role
        self.events = EventEmitter()
        self.link = None
        self.data_channel = None
        self.state = LinkState.ABSENT
        self.retry_queue = RetryQueue()
        self.retry_interval = retry_interval
        self.has_ever_connected = False
        self.ice_config: Optional[Dict[str, Any]] = None
        self.local_stream: Optional[CapturedStream] = None
        self.remote_tracks: List[Any] = []

        self._link_factory = link_factory
        self._ice_config_loader = ice_config_loader or fetch_ice_config
        self._media_capture = media_capture
        self._generation = 0
        self._setup_lock = asyncio.Lock()
        self._retry_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        session.subscribe(OfferReceived, self._on_offer)
        session.subscribe(AnswerReceived, self._on_answer)
        session.subscribe(IceCandidateReceived, self._on_ice_candidate)
        session.subscribe(RestartRequested, self._on_restart_requested)
        session.subscribe(PeerJoined, self._on_peer_joined)
        session.subscribe(PeerLeft, self._on_peer_left)
        self.events.subscribe(LinkConnected, lambda _: session.mark_peer_connected())

    def subscribe(self, event_type, callback):
        """Register a callback for one link event class."""
        return self.events.subscribe(event_type, callback)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.link is not None

    # Setup and teardown

    async def _load_ice_config(self) -> Dict[str, Any]:
        if self.ice_config is not None:
            return self.ice_config
        try:
            self.ice_config = await self._ice_config_loader(self.session.server_url)
        except Exception as e:
            logger.warning("Failed to fetch ICE config, using defaults: %s", e)
            self.ice_config = copy.deepcopy(DEFAULT_ICE_CONFIG)
        return self.ice_config

    async def setup(self) -> None:
        """
        Create the peer link if none exists.

        The initiator opens the data channel and sends the first offer; the
        responder waits for the peer's offer and data channel.
        """
        async with self._setup_lock:
            if self.link is not None:
                return
            started = self._generation
            config = await self._load_ice_config()
            if started != self._generation:
                logger.debug("Link torn down while fetching ICE config")
                return

            self._generation += 1
            generation = self._generation
            handlers = LinkHandlers(
                on_state_change=partial(self._on_link_state, generation),
                on_ice_candidate=partial(self._on_local_candidate, generation),
                on_data_channel=partial(self._on_data_channel, generation),
                on_track=partial(self._on_track, generation),
            )
            self.link = self._link_factory(config, handlers)
            self.state = LinkState.NEGOTIATING
            logger.info("Peer link %s created (%s)", generation, self.role)

            if self.role != "initiator":
                return

            self._bind_data_channel(
                self.link.create_data_channel(DATA_CHANNEL_LABEL), generation
            )
            try:
                await self._send_offer(generation)
            except Exception as e:
                logger.error("Error creating offer: %s", e)

    async def _send_offer(self, generation: int, ice_restart: bool = False):
        link = self.link
        offer = await link.create_offer(ice_restart=ice_restart)
        if not self._is_current(generation):
            return
        await link.set_local_description(offer)
        if not self._is_current(generation):
            return
        await self.session.send_offer(link.local_description)

    async def cleanup(self) -> None:
        """Tear down the link, drop queued payloads and stop the retry timer."""
        self._generation += 1
        link = self.link
        self.link = None
        self.data_channel = None
        self.state = LinkState.ABSENT
        self.retry_queue.clear()
        self._stop_retry_timer()
        if link is not None:
            try:
                await link.close()
            except Exception as e:
                logger.warning("Error closing peer link: %s", e)
            logger.info("Peer link torn down")

    async def restart(self) -> None:
        """Full restart: tear the link down and rejoin the room."""
        logger.info("Full peer link restart")
        await self.cleanup()
        await self.session.rejoin()

    async def attempt_ice_restart(self) -> None:
        """Renegotiate the existing link; fall back to a full restart."""
        if self.link is None:
            return
        generation = self._generation
        try:
            logger.info("Attempting ICE restart...")
            await self._send_offer(generation, ice_restart=True)
        except Exception as e:
            logger.error("ICE restart failed, doing full restart: %s", e)
            if generation == self._generation:
                await self.restart()

    # Link callbacks

    def _on_link_state(self, generation: int, link_state: str):
        if not self._is_current(generation):
            return
        logger.info("Peer link state: %s", link_state)

        if link_state in ("connected", "completed"):
            self.state = LinkState.ESTABLISHED
            first_time = not self.has_ever_connected
            self.has_ever_connected = True
            self.events.emit(LinkConnected(first_time))
        elif link_state == "disconnected":
            self.state = LinkState.DEGRADED
            self.events.emit(LinkDegraded())
            self._spawn(self.attempt_ice_restart())
        elif link_state == "failed":
            self.state = LinkState.FAILED
            self.events.emit(LinkFailed())
            self._spawn(self.restart())

    def _on_local_candidate(self, generation: int, candidate: Any):
        if self._is_current(generation) and candidate:
            self._spawn(self.session.send_ice_candidate(candidate))

    def _on_data_channel(self, generation: int, channel: Any):
        if self._is_current(generation):
            self._bind_data_channel(channel, generation)

    def _on_track(self, generation: int, track: Any):
        if self._is_current(generation):
            self.remote_tracks.append(track)
            self.events.emit(RemoteTrack(track))

    # Data channel

    def _bind_data_channel(self, channel: Any, generation: int):
        self.data_channel = channel
        channel.set_handlers(
            ChannelHandlers(
                on_open=partial(self._on_channel_open, generation),
                on_message=partial(self._on_channel_message, generation),
                on_close=partial(self._on_channel_close, generation),
                on_error=partial(self._on_channel_error, generation),
            )
        )

    def _on_channel_open(self, generation: int):
        if not self._is_current(generation):
            return
        logger.info("Data channel open")
        self.events.emit(DataChannelOpen())
        self.retry_queue.flush(self.data_channel)
        if not self.retry_queue:
            self._stop_retry_timer()

    def _on_channel_message(self, generation: int, data: Any):
        if self._is_current(generation):
            self.events.emit(DataChannelMessage(data))

    def _on_channel_close(self, generation: int):
        if self._is_current(generation):
            logger.info("Data channel closed")
            self.events.emit(DataChannelClosed())

    def _on_channel_error(self, generation: int, error: Any):
        if self._is_current(generation):
            logger.error("Data channel error: %s", error)
            self.events.emit(DataChannelError(error))

    def is_data_channel_open(self) -> bool:
        return self.data_channel is not None and self.data_channel.ready_state == "open"

    def send(self, payload: Any) -> bool:
        """
        Send a payload over the data channel.

        Returns:
            True if delivered now; False if queued for retry
        """
        if self.is_data_channel_open():
            self.retry_queue.flush(self.data_channel)
            if not self.retry_queue:
                try:
                    self.data_channel.send(payload)
                    return True
                except Exception as e:
                    logger.warning("Send failed, queueing payload: %s", e)

        self.retry_queue.append(payload)
        self._start_retry_timer()
        return False

    def _start_retry_timer(self):
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.ensure_future(self._retry_loop())

    def _stop_retry_timer(self):
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None

    async def _retry_loop(self):
        while self.retry_queue:
            await asyncio.sleep(self.retry_interval)
            self.retry_queue.flush(self.data_channel)
        self._retry_task = None

    # Relayed handshake steps

    async def _on_offer(self, event: OfferReceived):
        try:
            if self.link is None:
                await self.setup()
            link = self.link
            generation = self._generation
            if link is None:
                return
            await link.set_remote_description(event.sdp)
            answer = await link.create_answer()
            if not self._is_current(generation):
                return
            await link.set_local_description(answer)
            await self.session.send_answer(link.local_description)
        except Exception as e:
            logger.error("Error handling offer: %s", e)

    async def _on_answer(self, event: AnswerReceived):
        if self.link is None:
            return
        try:
            await self.link.set_remote_description(event.sdp)
        except Exception as e:
            logger.error("Error handling answer: %s", e)

    async def _on_ice_candidate(self, event: IceCandidateReceived):
        if self.link is None or not event.candidate:
            return
        try:
            await self.link.add_ice_candidate(event.candidate)
        except Exception as e:
            logger.error("Error adding ICE candidate: %s", e)

    async def _on_restart_requested(self, _event: RestartRequested):
        await self.cleanup()
        await self.setup()

    async def _on_peer_joined(self, _event: PeerJoined):
        await self.setup()

    async def _on_peer_left(self, _event: PeerLeft):
        # A new peer always gets a fresh link and a fresh offer
        await self.cleanup()

    # Media

    async def start_media(self, video: bool = True) -> CapturedStream:
        """
        Attach local audio (and video) to the link and renegotiate.

        Raises:
            RuntimeError: If no media capture function was configured
        """
        if self._media_capture is None:
            raise RuntimeError("No media capture configured")
        if self.link is None:
            await self.setup()
        if self.local_stream is None:
            self.local_stream = await self._media_capture(video)

        link = self.link
        existing = {s.track.id for s in link.get_senders() if s.track is not None}
        for track in self.local_stream.get_tracks():
            if track.id not in existing:
                link.add_track(track)

        await self._send_offer(self._generation)
        return self.local_stream

    async def stop_media(self) -> None:
        """Stop local and remote tracks and detach them from the link."""
        if self.local_stream is not None:
            for track in self.local_stream.get_tracks():
                track.stop()
            self.local_stream = None
        for track in self.remote_tracks:
            track.stop()
        self.remote_tracks = []

        if self.link is not None:
            for sender in self.link.get_senders():
                if sender.track is None:
                    continue
                try:
                    await self.link.remove_track(sender)
                except Exception as e:
                    # The track may already be gone
                    logger.debug("Ignoring remove_track error: %s", e)
