"""
Durable Room Store

Persists room membership so the registry can be rebuilt after a restart.
One record is kept per room:

    {"code": "AB12C3", "participants": [{"handle": "...", "role": "initiator"}]}

Persistence is best-effort. upsert() and delete() log and swallow every
failure because the in-memory registry stays authoritative; only load_all()
propagates errors, since it runs once at boot.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from .utils.locks import KeyedLock

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "pairlink:room:"


class RoomStore:
    """
    Base class for room stores.

    Subclasses implement the _load_all, _upsert and _delete primitives;
    this class adds per-code serialization and failure handling.
    """

    def __init__(self):
        self._locks = KeyedLock()

    async def load_all(self) -> List[Dict[str, Any]]:
        """
        Load every persisted room.

        Returns:
            List of room records

        Raises:
            Exception: If the backing store is unreachable
        """
        return await self._load_all()

    async def upsert(self, code: str, participants: List[Dict[str, str]]) -> bool:
        """
        Create or replace the record for a room.

        Args:
            code: Room code
            participants: Participants in persisted form

        Returns:
            True if the write succeeded
        """
        record = {"code": code, "participants": participants}
        async with self._locks.hold(code):
            try:
                await self._upsert(code, record)
                return True
            except Exception as e:
                logger.error(f"Failed to persist room {code}: {e}")
                return False

    async def delete(self, code: str) -> bool:
        """
        Delete the record for a room.

        Returns:
            True if the delete succeeded
        """
        async with self._locks.hold(code):
            try:
                await self._delete(code)
                return True
            except Exception as e:
                logger.error(f"Failed to delete room {code}: {e}")
                return False

    async def close(self):
        """Release any connection held by the store."""

    async def _load_all(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _upsert(self, code: str, record: Dict[str, Any]):
        raise NotImplementedError

    async def _delete(self, code: str):
        raise NotImplementedError


class MemoryRoomStore(RoomStore):
    """Process-local store, used when no Redis URL is configured."""

    def __init__(self):
        super().__init__()
        self.records: Dict[str, Dict[str, Any]] = {}

    async def _load_all(self) -> List[Dict[str, Any]]:
        return [json.loads(json.dumps(r)) for r in self.records.values()]

    async def _upsert(self, code: str, record: Dict[str, Any]):
        self.records[code] = json.loads(json.dumps(record))

    async def _delete(self, code: str):
        self.records.pop(code, None)


class RedisRoomStore(RoomStore):
    """
    Redis-backed store.

    Each room is a JSON string under "<prefix><code>".
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        """
        Initialize the store.

        Args:
            client: redis.asyncio client created with decode_responses=True
            key_prefix: Prefix prepended to every room key
        """
        super().__init__()
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    async def connect(
        cls, url: str, key_prefix: str = DEFAULT_KEY_PREFIX
    ) -> "RedisRoomStore":
        """
        Connect to Redis and verify the connection.

        Raises:
            redis.RedisError: If the server cannot be reached
        """
        client = redis.from_url(url, decode_responses=True)
        await client.ping()
        logger.info(f"Connected to Redis room store at {url}")
        return cls(client, key_prefix)

    def _key(self, code: str) -> str:
        return f"{self.key_prefix}{code}"

    async def _load_all(self) -> List[Dict[str, Any]]:
        rooms = []
        async for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
            raw: Optional[str] = await self.client.get(key)
            if not raw:
                continue
            try:
                record = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Skipping unreadable room record {key}")
                continue
            rooms.append(record)
        return rooms

    async def _upsert(self, code: str, record: Dict[str, Any]):
        await self.client.set(self._key(code), json.dumps(record))

    async def _delete(self, code: str):
        await self.client.delete(self._key(code))

    async def close(self):
        await self.client.aclose()
        logger.info("Redis room store connection closed")
