"""
aiortc Peer Link

Adapts aiortc's RTCPeerConnection to the PeerLink interface expected by
LinkController. Session descriptions and candidates travel over the relay
in browser form:

    {"type": "offer", "sdp": "v=0..."}
    {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}

aiortc gathers candidates before returning a description, so the link
never reports local candidates, and it cannot perform ICE restarts; an
ICE restart request raises, which makes the controller fall back to a full
restart.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

from .link import CapturedStream, ChannelHandlers, LinkHandlers

logger = logging.getLogger(__name__)


def build_configuration(ice_config: Dict[str, Any]) -> RTCConfiguration:
    """Convert a relay credential set to an RTCConfiguration."""
    servers = [
        RTCIceServer(
            urls=entry["urls"],
            username=entry.get("username"),
            credential=entry.get("credential"),
        )
        for entry in ice_config.get("iceServers", [])
    ]
    return RTCConfiguration(iceServers=servers)


class AiortcDataChannel:
    """Data channel wrapper exposing ready_state, send and set_handlers."""

    def __init__(self, channel):
        self.channel = channel

    @property
    def ready_state(self) -> str:
        return self.channel.readyState

    def send(self, payload: Any):
        self.channel.send(payload)

    def set_handlers(self, handlers: ChannelHandlers):
        self.channel.on("open", handlers.on_open)
        self.channel.on("message", handlers.on_message)
        self.channel.on("close", handlers.on_close)
        self.channel.on("error", handlers.on_error)
        if self.channel.readyState == "open":
            # Channels announced by the remote side arrive already open
            asyncio.get_running_loop().call_soon(handlers.on_open)


class AiortcPeerLink:
    """PeerLink backed by an aiortc RTCPeerConnection."""

    def __init__(self, ice_config: Dict[str, Any], handlers: LinkHandlers):
        self.pc = RTCPeerConnection(configuration=build_configuration(ice_config))
        self.handlers = handlers

        @self.pc.on("iceconnectionstatechange")
        def on_ice_state():
            handlers.on_state_change(self.pc.iceConnectionState)

        @self.pc.on("datachannel")
        def on_datachannel(channel):
            handlers.on_data_channel(AiortcDataChannel(channel))

        @self.pc.on("track")
        def on_track(track):
            handlers.on_track(track)

    @property
    def local_description(self) -> Optional[Dict[str, str]]:
        description = self.pc.localDescription
        if description is None:
            return None
        return {"type": description.type, "sdp": description.sdp}

    async def create_offer(self, ice_restart: bool = False):
        if ice_restart:
            raise RuntimeError("ICE restart not supported by aiortc")
        return await self.pc.createOffer()

    async def create_answer(self):
        return await self.pc.createAnswer()

    async def set_local_description(self, description):
        await self.pc.setLocalDescription(description)

    async def set_remote_description(self, description: Dict[str, str]):
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Dict[str, Any]):
        line = candidate.get("candidate", "")
        if not line:
            return
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        ice_candidate = candidate_from_sdp(line)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice_candidate)

    def create_data_channel(self, label: str) -> AiortcDataChannel:
        return AiortcDataChannel(self.pc.createDataChannel(label))

    def get_senders(self) -> List[Any]:
        return self.pc.getSenders()

    def add_track(self, track):
        return self.pc.addTrack(track)

    async def remove_track(self, sender):
        # aiortc has no removeTrack; detaching the track stops sending it
        sender.replaceTrack(None)

    async def close(self):
        await self.pc.close()


def create_aiortc_link(ice_config: Dict[str, Any], handlers: LinkHandlers) -> AiortcPeerLink:
    """LinkFactory building aiortc links."""
    return AiortcPeerLink(ice_config, handlers)


class MediaPlayerCapture:
    """
    Media capture backed by aiortc's MediaPlayer.

    Args:
        file: Device or file to read, e.g. "/dev/video0" or "default"
        format: Optional input format, e.g. "v4l2", "pulse", "avfoundation"
        options: Optional demuxer options
    """

    def __init__(self, file: str, format: Optional[str] = None, options: Optional[Dict[str, str]] = None):
        self.file = file
        self.format = format
        self.options = options or {}

    async def __call__(self, video: bool) -> CapturedStream:
        player = MediaPlayer(self.file, format=self.format, options=self.options)
        tracks = [player.audio]
        if video:
            tracks.append(player.video)
        return CapturedStream([t for t in tracks if t is not None])
