#!/usr/bin/env python3
"""
Pairlink Relay Server

Pairs two clients into a room and relays the handshake messages they need
to open a direct peer link.
"""

import asyncio
import logging
import os
import signal
import sys

from .ice_config import ice_config_from_env
from .room_registry import DISCONNECT_GRACE_PERIOD, RoomRegistry
from .room_store import DEFAULT_KEY_PREFIX, MemoryRoomStore, RedisRoomStore
from .websocket_server import SignalingServer

logger = logging.getLogger(__name__)


async def run_server(
    host: str,
    port: int,
    redis_url: str,
    key_prefix: str,
    grace_period: float,
):
    """
    Run the relay server until SIGINT or SIGTERM.

    Args:
        host: Host address to bind to
        port: Port to listen on
        redis_url: Redis URL for the room store, empty for in-memory
        key_prefix: Key prefix for room records in Redis
        grace_period: Seconds a dropped participant keeps its slot
    """
    if redis_url:
        store = await RedisRoomStore.connect(redis_url, key_prefix)
    else:
        logger.warning("REDIS_URL not set, rooms will not survive a restart")
        store = MemoryRoomStore()

    registry = RoomRegistry(store, grace_period=grace_period)
    server = SignalingServer(registry, host, port, ice_config_from_env())
    await registry.load(server.on_evicted)

    await server.start()
    logger.info(f"Relay server listening on ws://{host}:{port}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        await stop.wait()
        logger.info("Shutdown requested")
    finally:
        await server.stop()
        registry.close()
        await store.close()
        logger.info("Relay server stopped")


def main():
    """Main entry point for the relay server."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting pairlink relay server...")

    host = os.environ.get("RELAY_HOST", "0.0.0.0")
    port = int(os.environ.get("RELAY_PORT", "3000"))
    redis_url = os.environ.get("REDIS_URL", "")
    key_prefix = os.environ.get("ROOM_KEY_PREFIX", DEFAULT_KEY_PREFIX)
    grace_period = float(
        os.environ.get("DISCONNECT_GRACE_SECONDS", DISCONNECT_GRACE_PERIOD)
    )

    try:
        asyncio.run(run_server(host, port, redis_url, key_prefix, grace_period))
    except KeyboardInterrupt:
        logger.info("Shutting down relay server...")
    except Exception as e:
        logger.error(f"Failed to start relay server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
