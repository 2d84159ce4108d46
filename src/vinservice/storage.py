from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_PING_TIMEOUT = 0.75


class RedisCache:
    """``VinCache`` backed by Redis, with an in-process TTL dict when Redis is unreachable.

    Values are stored as JSON. ``ttl_seconds=None`` means no expiry.
    """

    def __init__(self, redis_url: str | None = None, namespace: str = "vindecode") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        if not self.redis_url:
            return
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(client.ping(), timeout=_PING_TIMEOUT)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Redis unavailable at %s, using in-memory cache: %s", self.redis_url, exc)
            await client.aclose()
            return
        self._client = client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=_PING_TIMEOUT))
        except (RedisError, OSError, asyncio.TimeoutError):
            return False

    async def get(self, key: str) -> Any | None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                raw = await self._client.get(full_key)
                return None if raw is None else json.loads(raw)
            except (RedisError, OSError) as exc:
                logger.warning("Redis get failed for %s: %s", full_key, exc)
                return None
        raw = self._mem_get(full_key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        full_key = self._build_key(key)
        payload = json.dumps(value, default=str)
        if self._client is not None:
            try:
                await self._client.set(full_key, payload, ex=ttl_seconds or None)
                return True
            except (RedisError, OSError) as exc:
                logger.warning("Redis set failed for %s, storing in memory: %s", full_key, exc)
        self._mem[full_key] = payload
        if ttl_seconds:
            self._expiry[full_key] = self._now() + ttl_seconds
        else:
            self._expiry.pop(full_key, None)
        return True

    async def delete(self, key: str) -> bool:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                return bool(await self._client.delete(full_key))
            except (RedisError, OSError) as exc:
                logger.warning("Redis delete failed for %s: %s", full_key, exc)
                return False
        self._expiry.pop(full_key, None)
        return self._mem.pop(full_key, None) is not None

    async def has(self, key: str) -> bool:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                return bool(await self._client.exists(full_key))
            except (RedisError, OSError) as exc:
                logger.warning("Redis exists failed for %s: %s", full_key, exc)
                return False
        return self._mem_get(full_key) is not None

    def _mem_get(self, full_key: str) -> str | None:
        expires = self._expiry.get(full_key)
        if expires is not None and self._now() > expires:
            self._mem.pop(full_key, None)
            self._expiry.pop(full_key, None)
            return None
        return self._mem.get(full_key)

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()
