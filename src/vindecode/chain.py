from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable

from vindecode.config import EXECUTION_STRATEGIES, ExecutionStrategy, check_choice
from vindecode.data_models import ChainExecutionResult, Identifier, SourceResult
from vindecode.sources import DecodingSource

logger = logging.getLogger(__name__)


class SourceChain:
    """Ordered collection of decoding sources executed under one strategy.

    ``fail_fast`` awaits sources one at a time and stops at the first success;
    sources after it are never invoked. ``collect_all`` fans out to every
    applicable source concurrently and reports results in priority order.
    There is no retry or timeout at this level.
    """

    def __init__(self, sources: Iterable[DecodingSource] = ()) -> None:
        self._sources: dict[str, DecodingSource] = {}
        for source in sources:
            self.add_source(source)

    @property
    def sources(self) -> list[DecodingSource]:
        return list(self._sources.values())

    def add_source(self, source: DecodingSource) -> SourceChain:
        if source.name in self._sources:
            logger.debug("Replacing source %s in chain", source.name)
        self._sources[source.name] = source
        return self

    def remove_source(self, name: str) -> SourceChain:
        self._sources.pop(name, None)
        return self

    def get_source(self, name: str) -> DecodingSource | None:
        return self._sources.get(name)

    def has_source(self, name: str) -> bool:
        return name in self._sources

    def enable_source(self, name: str) -> SourceChain:
        source = self._sources.get(name)
        if source is not None:
            source.set_enabled(True)
        return self

    def disable_source(self, name: str) -> SourceChain:
        source = self._sources.get(name)
        if source is not None:
            source.set_enabled(False)
        return self

    def sort_by_priority(self) -> SourceChain:
        ordered = sorted(self._sources.values(), key=lambda s: s.priority)
        self._sources = {s.name: s for s in ordered}
        return self

    def reorder_sources(self, names: Iterable[str]) -> SourceChain:
        reordered: dict[str, DecodingSource] = {}
        for name in names:
            if name in self._sources and name not in reordered:
                reordered[name] = self._sources[name]
        for name, source in self._sources.items():
            reordered.setdefault(name, source)
        self._sources = reordered
        return self

    def without(self, name: str) -> SourceChain:
        """New chain over the same source objects, minus ``name``."""
        return SourceChain(s for s in self._sources.values() if s.name != name)

    def get_enabled_sources(self) -> list[DecodingSource]:
        enabled = [s for s in self._sources.values() if s.is_enabled()]
        return sorted(enabled, key=lambda s: s.priority)

    async def execute(self, identifier: Identifier, strategy: ExecutionStrategy = "fail_fast") -> ChainExecutionResult:
        check_choice("execution strategy", strategy, EXECUTION_STRATEGIES)
        started = time.perf_counter()
        enabled = self.get_enabled_sources()
        if not enabled:
            return ChainExecutionResult(
                strategy=strategy,
                total_execution_time=time.perf_counter() - started,
                metadata={"message": "No enabled sources available"},
            )

        applicable = [s for s in enabled if s.can_handle(identifier)]
        if strategy == "fail_fast":
            results: list[SourceResult] = []
            for source in applicable:
                result = await self._run_source(source, identifier)
                results.append(result)
                if result.success:
                    break
        else:
            results = list(await asyncio.gather(*(self._run_source(s, identifier) for s in applicable)))

        successful = tuple(r for r in results if r.success)
        failed = tuple(r for r in results if not r.success)
        return ChainExecutionResult(
            successful=successful,
            failed=failed,
            strategy=strategy,
            total_execution_time=time.perf_counter() - started,
            metadata={
                "total_sources": len(enabled),
                "successful_count": len(successful),
                "failed_count": len(failed),
            },
        )

    async def _run_source(self, source: DecodingSource, identifier: Identifier) -> SourceResult:
        try:
            result = await source.decode(identifier)
        except Exception as exc:
            logger.exception("Source %s raised while decoding %s", source.name, identifier.value)
            return SourceResult.failure(source.name, f"Unexpected error: {exc}")
        if not result.success:
            logger.warning("Source %s failed for %s: %s", source.name, identifier.value, result.error)
        return result
