from __future__ import annotations

import hashlib
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class VinCache(Protocol):
    """Key/value store with per-entry TTL; calls are point-in-time, not transactional."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def has(self, key: str) -> bool: ...


def identifier_hash(identifier: str) -> str:
    return hashlib.md5(str(identifier).encode("utf-8")).hexdigest()


def cache_key(prefix: str, identifier: str) -> str:
    return f"{prefix}_{identifier_hash(identifier)}"
