"""Durable key-value stores backing the upload retry queue"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String key-value store; values are opaque JSON text"""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisKeyValueStore:
    """Key-value store on Redis"""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Args:
            redis_url: Connection URL, used when no client is injected
            client: Pre-built async Redis client
        """
        self.redis_url = redis_url
        self._client = client

    async def get_client(self) -> redis.Redis:
        """Get or create Redis client"""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return self._client

    async def close(self):
        """Close Redis connection"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Optional[str]:
        client = await self.get_client()
        return await client.get(key)

    async def set(self, key: str, value: str) -> None:
        client = await self.get_client()
        await client.set(key, value)

    async def delete(self, key: str) -> None:
        client = await self.get_client()
        await client.delete(key)


class JsonFileKeyValueStore:
    """
    Key-value store kept in a single JSON file on the device.

    The whole file is rewritten on every change through a temporary file
    and an atomic rename.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable key-value file {self.path}, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def get(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    async def delete(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)
