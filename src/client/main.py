#!/usr/bin/env python3
"""
Pairlink Client Application

Connects to a relay, creates or joins a room and chats with the peer over
a direct data channel. Provides a terminal-based user interface using the
Textual framework.
"""

import argparse
import logging
import sys

from .aiortc_link import MediaPlayerCapture, create_aiortc_link
from .link import LinkController
from .session_client import INITIATOR, RESPONDER, SessionClient

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Pairlink peer chat client")
    parser.add_argument(
        "--server",
        default="ws://localhost:3000",
        help="WebSocket URL of the relay server",
    )
    parser.add_argument("--code", required=True, help="Six character room code")
    parser.add_argument(
        "--role",
        choices=[INITIATOR, RESPONDER],
        default=INITIATOR,
        help="Create the room (initiator) or join it (responder)",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Rejoin a session this client was already part of",
    )
    parser.add_argument(
        "--media",
        default=None,
        help="Media device or file to share with ctrl+t (enables audio/video)",
    )
    parser.add_argument("--media-format", default=None, help="Media input format")
    parser.add_argument(
        "--log-file", default="pairlink_client.log", help="Log file path"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the chat client."""
    args = parse_args(argv)

    # Log to a file to avoid interfering with the UI
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.FileHandler(args.log_file, mode="a")],
    )
    logger.info("Starting chat client...")

    from .ui import ChatApp

    session = SessionClient(args.server, args.code, args.role, resume=args.resume)
    capture = MediaPlayerCapture(args.media, args.media_format) if args.media else None
    link = LinkController(session, create_aiortc_link, media_capture=capture)

    try:
        ChatApp(session, link).run()
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
