"""
Chat Application UI

Terminal UI for a two-party session, built using the Textual framework.
Shows the session and link state, relay notifications and the messages
exchanged over the peer data channel.
"""

import logging
from datetime import datetime
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Button, Footer, Header, Input, Static

from ..events import (
    DataChannelMessage,
    DataChannelOpen,
    Disconnected,
    LinkConnected,
    LinkDegraded,
    LinkFailed,
    PeerJoined,
    PeerLeft,
    ReconnectAttempt,
    ReconnectFailed,
    Reconnected,
    RoomReady,
    SessionError,
    StateChanged,
)
from ..link import LinkController
from ..session_client import SessionClient

logger = logging.getLogger(__name__)


class MessageDisplay(Static):
    """Widget for displaying a single chat message."""

    def __init__(self, sender: str, content: str, is_own_message: bool = False) -> None:
        """Initialize message display."""
        super().__init__()
        self.msg_sender = sender
        self.msg_content = content
        self.is_own_message = is_own_message
        self.msg_timestamp = datetime.now().strftime("%H:%M:%S")

    def compose(self) -> ComposeResult:
        """Compose the message display."""
        prefix = "You" if self.is_own_message else self.msg_sender
        yield Static(
            f"[bold cyan]{prefix}[/] [dim]{self.msg_timestamp}[/]\n{self.msg_content}",
            classes="message-content",
        )


class SystemMessage(Static):
    """Widget for displaying system messages and notifications."""

    def __init__(self, message: str, message_type: str = "info") -> None:
        """Initialize system message display."""
        self.message = message
        self.message_type = message_type
        super().__init__()

    def compose(self) -> ComposeResult:
        """Compose the system message."""
        color = {
            "info": "blue",
            "warning": "yellow",
            "error": "red",
            "success": "green",
        }.get(self.message_type, "white")
        yield Static(f"[{color}]⚡ {self.message}[/]", classes="system-message")


class ChatApp(App):
    """Main chat application."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #status-bar {
        height: 1;
        padding: 0 1;
        background: $surface;
    }

    #messages-container {
        height: 1fr;
        padding: 1;
    }

    #message-input-row {
        height: 3;
        padding: 0 1;
    }

    #message-input {
        width: 1fr;
    }

    #send-btn {
        margin: 0 0 0 1;
    }

    MessageDisplay {
        padding: 0 0 1 0;
    }

    .message-content {
        padding: 0 1;
    }

    SystemMessage {
        padding: 0 0 1 0;
    }

    .system-message {
        text-align: center;
        text-style: italic;
    }
    """

    BINDINGS = [
        Binding("ctrl+l", "leave", "Leave", show=True),
        Binding("ctrl+r", "restart_link", "Restart link", show=True),
        Binding("ctrl+t", "start_media", "Share media", show=True),
    ]

    def __init__(self, session: SessionClient, link: LinkController) -> None:
        """Initialize the chat application."""
        super().__init__()
        self.session = session
        self.link = link
        self.peer_name = "Peer"
        self._reconnect_status: Optional[str] = None

    def compose(self) -> ComposeResult:
        """Compose the main application layout."""
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="messages-container")
        with Horizontal(id="message-input-row"):
            yield Input(placeholder="Type a message...", id="message-input")
            yield Button("Send", id="send-btn", variant="primary")
        yield Footer()

    async def on_mount(self) -> None:
        """Wire session and link events, then connect."""
        self.title = f"Room {self.session.code}"
        self.sub_title = self.session.role

        session = self.session
        session.subscribe(StateChanged, lambda e: self._update_status())
        session.subscribe(RoomReady, lambda e: self._add_system_message("Room ready", "success"))
        session.subscribe(PeerJoined, lambda e: self._add_system_message("Peer joined"))
        session.subscribe(PeerLeft, lambda e: self._add_system_message("Peer left", "warning"))
        session.subscribe(SessionError, lambda e: self._add_system_message(e.message, "error"))
        session.subscribe(Disconnected, self._on_disconnected)
        session.subscribe(ReconnectAttempt, self._on_reconnect_attempt)
        session.subscribe(ReconnectFailed, self._on_reconnect_failed)
        session.subscribe(Reconnected, self._on_reconnected)

        link = self.link
        link.subscribe(LinkConnected, self._on_link_connected)
        link.subscribe(LinkDegraded, lambda e: self._add_system_message("Link unstable, repairing...", "warning"))
        link.subscribe(LinkFailed, lambda e: self._add_system_message("Link failed, restarting...", "error"))
        link.subscribe(DataChannelOpen, lambda e: self._update_status())
        link.subscribe(DataChannelMessage, self._on_peer_message)

        self._update_status()
        await session.start()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button press events."""
        if event.button.id == "send-btn":
            self._handle_send_message()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle input submit events (Enter key)."""
        if event.input.id == "message-input":
            self._handle_send_message()

    def _handle_send_message(self) -> None:
        message_input = self.query_one("#message-input", Input)
        content = message_input.value.strip()
        if not content:
            return
        message_input.value = ""
        self._add_chat_message("You", content, is_own_message=True)
        if not self.link.send(content):
            self._add_system_message("Peer not reachable yet, message queued", "warning")

    def _on_peer_message(self, event: DataChannelMessage) -> None:
        self._add_chat_message(self.peer_name, str(event.data))

    def _on_link_connected(self, event: LinkConnected) -> None:
        text = "Connected to peer" if event.first_time else "Reconnected to peer"
        self._add_system_message(text, "success")
        self._update_status()

    def _on_disconnected(self, event: Disconnected) -> None:
        self._add_system_message("Connection to relay lost", "warning")

    def _on_reconnect_attempt(self, event: ReconnectAttempt) -> None:
        self._reconnect_status = f"reconnecting {event.attempt}/{event.max_attempts}"
        self._update_status()

    def _on_reconnect_failed(self, event: ReconnectFailed) -> None:
        self._reconnect_status = "reconnect failed"
        self._add_system_message("Could not reconnect to the relay", "error")
        self._update_status()

    def _on_reconnected(self, event: Reconnected) -> None:
        self._reconnect_status = None
        self._add_system_message("Reconnected to relay", "success")
        self._update_status()

    def _update_status(self) -> None:
        status = self.query_one("#status-bar", Static)
        parts = [
            f"session: {self.session.state.value}",
            f"link: {self.link.state.value}",
        ]
        if self._reconnect_status:
            parts.append(self._reconnect_status)
        if self.link.retry_queue:
            parts.append(f"queued: {len(self.link.retry_queue)}")
        status.update(" | ".join(parts))

    def _add_chat_message(self, sender: str, content: str, is_own_message: bool = False) -> None:
        container = self.query_one("#messages-container", VerticalScroll)
        container.mount(MessageDisplay(sender, content, is_own_message))
        container.scroll_end(animate=False)

    def _add_system_message(self, message: str, message_type: str = "info") -> None:
        container = self.query_one("#messages-container", VerticalScroll)
        container.mount(SystemMessage(message, message_type))
        container.scroll_end(animate=False)

    async def action_leave(self) -> None:
        """Leave the room and quit."""
        logger.info("Leaving room %s", self.session.code)
        await self.link.stop_media()
        await self.link.cleanup()
        await self.session.leave()
        self.exit()

    async def action_restart_link(self) -> None:
        """Force a full peer link restart."""
        logger.info("Peer link restart requested from the UI")
        await self.link.restart()

    async def action_start_media(self) -> None:
        """Attach local audio and video to the peer link."""
        try:
            stream = await self.link.start_media()
        except Exception as e:
            logger.error("Could not start media: %s", e)
            self._add_system_message(f"Could not start media: {e}", "error")
            return
        self._add_system_message(
            f"Sharing {len(stream.get_tracks())} media tracks", "success"
        )
