from __future__ import annotations

import logging
from typing import Callable, Iterable

import httpx

from vindecode.caching import VinCache
from vindecode.chain import SourceChain
from vindecode.chassis_decoder import JapaneseChassisDecoder
from vindecode.config import (
    CONFLICT_RESOLUTIONS,
    EXECUTION_STRATEGIES,
    MERGE_STRATEGIES,
    check_choice,
)
from vindecode.local_decoder import LocalVinDecoder
from vindecode.merger import MergeEngine
from vindecode.sources import DecodingSource, LocalSource
from vinservice.clearvin import DEFAULT_BASE_URL as CLEARVIN_BASE_URL
from vinservice.clearvin import ClearVinSource
from vinservice.nhtsa import DEFAULT_BASE_URL as NHTSA_BASE_URL
from vinservice.nhtsa import NhtsaApiSource, NhtsaClient
from vinservice.orchestrator import DEFAULT_CACHE_TTL, ChainOrchestrator
from vinservice.settings import DecoderSettings
from vinservice.storage import RedisCache

logger = logging.getLogger(__name__)

SourceFactory = Callable[["VinCache | None", "int | None"], DecodingSource]


class OrchestratorBuilder:
    """Fluent assembly of a source chain, merge engine and cache.

    Sources are constructed in ``build()`` so they pick up whatever cache and
    TTL were configured, regardless of call order.
    """

    def __init__(self) -> None:
        self._factories: dict[str, SourceFactory] = {}
        self._disabled: list[str] = []
        self._removed: list[str] = []
        self._cache: VinCache | None = None
        self._cache_ttl: int | None = DEFAULT_CACHE_TTL
        self._execution_strategy = "fail_fast"
        self._merge_strategy = "priority"
        self._conflict_resolution = "priority"
        self._field_priorities: dict[str, tuple[str, ...]] = {}
        self._use_local_fallback = True
        self._local_decoder: LocalVinDecoder | None = None

    def add_local_source(self, decoder: LocalVinDecoder | None = None) -> OrchestratorBuilder:
        if decoder is not None:
            self._local_decoder = decoder
        self._factories["local"] = lambda cache, ttl: LocalSource(
            decoder=self._local_decoder, cache=cache, cache_ttl=ttl
        )
        return self

    def add_nhtsa_source(
        self,
        base_url: str = NHTSA_BASE_URL,
        timeout_seconds: float = 15.0,
        max_retries: int = 3,
        rate_limit_delay: float = 0.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: float = 0.1,
    ) -> OrchestratorBuilder:
        client = NhtsaClient(base_url=base_url, timeout_seconds=timeout_seconds, transport=transport)
        self._factories["nhtsa_api"] = lambda cache, ttl: NhtsaApiSource(
            client=client,
            cache=cache,
            cache_ttl=ttl,
            max_retries=max_retries,
            rate_limit_delay=rate_limit_delay,
            retry_backoff=retry_backoff,
        )
        return self

    def add_clearvin_source(
        self,
        base_url: str = CLEARVIN_BASE_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OrchestratorBuilder:
        self._factories["clearvin"] = lambda cache, ttl: ClearVinSource(
            cache=cache,
            cache_ttl=ttl,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )
        return self

    def add_custom_source(self, source: DecodingSource) -> OrchestratorBuilder:
        self._factories[source.name] = lambda cache, ttl: source
        return self

    def set_execution_strategy(self, strategy: str) -> OrchestratorBuilder:
        self._execution_strategy = check_choice("execution strategy", strategy, EXECUTION_STRATEGIES)
        return self

    def set_merge_strategy(self, strategy: str) -> OrchestratorBuilder:
        self._merge_strategy = check_choice("merge strategy", strategy, MERGE_STRATEGIES)
        return self

    def set_conflict_resolution(self, resolution: str) -> OrchestratorBuilder:
        self._conflict_resolution = check_choice("conflict resolution", resolution, CONFLICT_RESOLUTIONS)
        return self

    def set_field_priority(self, name: str, order: Iterable[str]) -> OrchestratorBuilder:
        self._field_priorities[name] = tuple(order)
        return self

    def set_cache(self, cache: VinCache) -> OrchestratorBuilder:
        self._cache = cache
        return self

    def set_cache_ttl(self, ttl: int | None) -> OrchestratorBuilder:
        self._cache_ttl = ttl
        return self

    def set_local_fallback(self, enabled: bool) -> OrchestratorBuilder:
        self._use_local_fallback = enabled
        return self

    def enable_source(self, name: str) -> OrchestratorBuilder:
        if name in self._disabled:
            self._disabled.remove(name)
        return self

    def disable_source(self, name: str) -> OrchestratorBuilder:
        if name not in self._disabled:
            self._disabled.append(name)
        return self

    def remove_source(self, name: str) -> OrchestratorBuilder:
        if name not in self._removed:
            self._removed.append(name)
        return self

    def build(self) -> ChainOrchestrator:
        if not self._factories:
            self.add_local_source()
            self.add_nhtsa_source()

        chain = SourceChain(factory(self._cache, self._cache_ttl) for factory in self._factories.values())
        for name in self._disabled:
            chain.disable_source(name)
        for name in self._removed:
            chain.remove_source(name)
        chain.sort_by_priority()

        merger = MergeEngine(
            strategy=self._merge_strategy,
            conflict_resolution=self._conflict_resolution,
            field_priorities=self._field_priorities,
        )
        orchestrator = ChainOrchestrator(
            chain,
            merger,
            cache=self._cache,
            execution_strategy=self._execution_strategy,
            cache_ttl=self._cache_ttl,
        )
        orchestrator.set_local_fallback(self._use_local_fallback)
        logger.debug(
            "Built orchestrator with sources %s (%s/%s)",
            [s.name for s in chain.sources],
            self._execution_strategy,
            self._merge_strategy,
        )
        return orchestrator

    @classmethod
    def minimal(cls) -> OrchestratorBuilder:
        return cls().add_local_source()

    @classmethod
    def standard(cls) -> OrchestratorBuilder:
        return cls().add_local_source().add_nhtsa_source()

    @classmethod
    def full(cls) -> OrchestratorBuilder:
        return (
            cls()
            .add_local_source()
            .add_nhtsa_source()
            .add_clearvin_source()
            .set_execution_strategy("collect_all")
            .set_merge_strategy("priority")
        )

    @classmethod
    def from_settings(cls, settings: DecoderSettings | None = None, cache: VinCache | None = None) -> OrchestratorBuilder:
        settings = settings or DecoderSettings()
        decoder = LocalVinDecoder(JapaneseChassisDecoder(settings.japanese_model_codes_path))
        return (
            cls()
            .add_local_source(decoder)
            .add_nhtsa_source(
                base_url=settings.nhtsa_base_url,
                timeout_seconds=settings.nhtsa_timeout_seconds,
                max_retries=settings.nhtsa_max_retries,
                rate_limit_delay=settings.nhtsa_rate_limit_delay,
            )
            .add_clearvin_source(
                base_url=settings.clearvin_base_url,
                timeout_seconds=settings.clearvin_timeout_seconds,
            )
            .set_cache(cache or RedisCache(settings.redis_url, namespace=settings.cache_namespace))
            .set_cache_ttl(settings.vin_cache_ttl_seconds)
            .set_execution_strategy(settings.execution_strategy)
            .set_merge_strategy(settings.merge_strategy)
            .set_conflict_resolution(settings.conflict_resolution)
            .set_local_fallback(settings.use_local_fallback)
        )
