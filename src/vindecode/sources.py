from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from vindecode.caching import VinCache, cache_key
from vindecode.data_models import Identifier, SourceResult
from vindecode.local_decoder import DECODER_NAME, LocalVinDecoder

logger = logging.getLogger(__name__)


@runtime_checkable
class DecodingSource(Protocol):
    """Capability interface every decoding source provides.

    ``decode`` must not raise for a validated identifier: network, parse and
    timeout problems come back as a failed ``SourceResult``.
    """

    @property
    def name(self) -> str: ...

    @property
    def priority(self) -> int: ...

    @property
    def source_type(self) -> str: ...

    def is_enabled(self) -> bool: ...

    def set_enabled(self, enabled: bool) -> None: ...

    def can_handle(self, identifier: Identifier) -> bool: ...

    async def decode(self, identifier: Identifier) -> SourceResult: ...


def decode_metadata(decoded_by: str, started: float, **extra: Any) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    meta: dict[str, Any] = {
        "decoded_by": decoded_by,
        "execution_time": time.perf_counter() - started,
        "timestamp": now.timestamp(),
        "decoding_date": now.strftime("%Y-%m-%d %H:%M:%S"),
    }
    meta.update(extra)
    return meta


class LocalSource:
    """Offline baseline; always enabled so the chain has a guaranteed fallback."""

    cache_prefix = "local_vin"

    def __init__(
        self,
        decoder: LocalVinDecoder | None = None,
        cache: VinCache | None = None,
        cache_ttl: int | None = 2_592_000,
        priority: int = 1,
    ) -> None:
        self.decoder = decoder or LocalVinDecoder()
        self.cache = cache
        self.cache_ttl = cache_ttl
        self._priority = priority

    @property
    def name(self) -> str:
        return "local"

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def source_type(self) -> str:
        return "local"

    def is_enabled(self) -> bool:
        return True

    def set_enabled(self, enabled: bool) -> None:
        if not enabled:
            logger.debug("Ignoring request to disable the local source")

    def can_handle(self, identifier: Identifier) -> bool:
        return True

    async def decode(self, identifier: Identifier) -> SourceResult:
        started = time.perf_counter()
        key = cache_key(self.cache_prefix, identifier.value)
        try:
            if self.cache is not None:
                cached = await self.cache.get(key)
                if cached is not None:
                    return SourceResult.ok(self.name, cached, **decode_metadata(DECODER_NAME, started, cache_hit=True))

            data = self.decoder.decode(identifier)
            if self.cache is not None:
                await self.cache.set(key, data, self.cache_ttl)
            return SourceResult.ok(self.name, data, **decode_metadata(DECODER_NAME, started, cache_hit=False))
        except Exception as exc:
            logger.exception("Local decoder failed for %s", identifier.value)
            return SourceResult.failure(
                self.name, f"Local decoder error: {exc}", **decode_metadata(DECODER_NAME, started)
            )

    async def clear_cache(self, identifier: Identifier) -> bool:
        if self.cache is None:
            return False
        return await self.cache.delete(cache_key(self.cache_prefix, identifier.value))

    def add_manufacturer_code(self, wmi: str, manufacturer: str) -> bool:
        return self.decoder.add_manufacturer_code(wmi, manufacturer)
