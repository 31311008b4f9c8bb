"""
Redis cache backend, shared by every worker process.

Snapshots are stored as JSON strings with a Redis-side expiry, and
invalidating everything is a SCAN over the snapshot key prefix.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

import redis.asyncio as redis


class RedisCacheBackend:
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        default_ttl: int = 60,
        max_connections: int = 10,
    ):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.max_connections = max_connections
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        # Lazily built so importing the app never opens a socket
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=self.max_connections,
            )
        return self._client

    async def connect(self) -> None:
        """Fail fast at startup when Redis is unreachable."""
        await self.client.ping()

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | timedelta | None = None) -> bool:
        expiry = self.default_ttl if ttl is None else ttl
        return bool(await self.client.set(key, json.dumps(value, default=str), ex=expiry or None))

    async def delete(self, key: str) -> bool:
        return await self.client.delete(key) > 0

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self.client.scan_iter(match=pattern, count=500)]
        if not keys:
            return 0
        return await self.client.delete(*keys)
