from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx

from vindecode import validation
from vindecode.caching import VinCache, cache_key
from vindecode.chain import SourceChain
from vindecode.config import (
    EXECUTION_STRATEGIES,
    MANUFACTURER_CODES_KEY,
    MERGED_RECORD_PREFIX,
    ExecutionStrategy,
    check_choice,
)
from vindecode.data_models import (
    ChainExecutionResult,
    ChassisNumber,
    Identifier,
    MergedRecord,
    SourceResult,
    ValidationOutcome,
    Vin,
    is_empty,
)
from vindecode.errors import DecodeFailedError, MalformedResponseError, RemoteDecodeError, RemoteFailureKind
from vindecode.local_decoder import DECODER_NAME as LOCAL_DECODER_NAME
from vindecode.local_decoder import LocalVinDecoder
from vindecode.merger import MergeEngine
from vindecode.sources import LocalSource
from vinservice.logging_config import get_correlation_id
from vinservice.nhtsa import SOURCE_NAME as NHTSA_SOURCE_NAME
from vinservice.nhtsa import NhtsaClient, format_nhtsa_results

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 2_592_000
LOCAL_SOURCE_NAME = "local"


def local_record(data: dict[str, Any], **cache_metadata: Any) -> MergedRecord:
    meta: dict[str, Any] = {
        "sources": [LOCAL_SOURCE_NAME],
        "decoded_by": LOCAL_DECODER_NAME,
        "total_execution_time": 0,
        "source_details": {},
    }
    meta.update(cache_metadata)
    return MergedRecord(fields=data, cache_metadata=meta)


class DecodingOrchestrator(ABC):
    """Shared surface of both orchestrator modes.

    Holds the merged-record cache and the learned manufacturer-code overlay,
    which is restored from the cache before the first decode and written back
    whenever a remote source teaches it a new WMI.
    """

    def __init__(
        self,
        cache: VinCache | None,
        cache_ttl: int | None,
        local_decoder: LocalVinDecoder,
        use_local_fallback: bool = True,
    ) -> None:
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.local_decoder = local_decoder
        self.use_local_fallback = use_local_fallback
        self._codes_restored = False

    def validate(self, raw: str) -> ValidationOutcome:
        return validation.validate(raw)

    @abstractmethod
    async def decode(self, raw: str, skip_cache: bool = False, force_refresh: bool = False) -> MergedRecord:
        ...

    async def decode_locally(self, raw: str) -> MergedRecord:
        identifier = validation.parse_identifier(raw)
        cid = get_correlation_id()
        await self._restore_learned_codes()
        record = local_record(self.local_decoder.decode(identifier))
        await self._store(identifier, record)
        logger.debug(
            "Decoded %s locally",
            identifier.value,
            extra={"extra_data": {"correlation_id": cid, "identifier_type": identifier.kind}},
        )
        return record

    async def clear_cache(self, raw: str) -> bool:
        if self.cache is None:
            return False
        identifier = validation.parse_identifier(raw)
        return await self.cache.delete(self._record_key(identifier))

    def set_local_fallback(self, enabled: bool) -> DecodingOrchestrator:
        self.use_local_fallback = enabled
        return self

    def set_cache_ttl(self, ttl: int | None) -> DecodingOrchestrator:
        self.cache_ttl = ttl
        return self

    def _record_key(self, identifier: Identifier) -> str:
        return cache_key(MERGED_RECORD_PREFIX, identifier.value)

    async def _cached_record(self, identifier: Identifier, skip_cache: bool, force_refresh: bool) -> MergedRecord | None:
        if skip_cache or self.cache is None:
            return None
        cached = await self.cache.get(self._record_key(identifier))
        if cached is None:
            return None
        record = MergedRecord.from_dict(cached)
        if force_refresh and record.is_locally_decoded:
            logger.debug("Refreshing locally decoded cache entry for %s", identifier.value)
            return None
        return record

    async def _store(self, identifier: Identifier, record: MergedRecord) -> None:
        if self.cache is None:
            return
        if await self.cache.set(self._record_key(identifier), record.to_dict(), self.cache_ttl):
            logger.debug("Cached decoded record for %s", identifier.value)

    async def _restore_learned_codes(self) -> None:
        if self._codes_restored:
            return
        self._codes_restored = True
        if self.cache is None:
            return
        stored = await self.cache.get(MANUFACTURER_CODES_KEY)
        if isinstance(stored, dict):
            restored = self.local_decoder.load_learned_codes(stored)
            logger.debug("Restored %d learned manufacturer codes", restored)

    async def _learn_manufacturer(self, identifier: Identifier, manufacturer: Any) -> None:
        if not isinstance(identifier, Vin) or is_empty(manufacturer):
            return
        if not self.local_decoder.add_manufacturer_code(identifier.wmi, str(manufacturer)):
            return
        logger.info(
            "Learned manufacturer for WMI %s",
            identifier.wmi,
            extra={"extra_data": {"wmi": identifier.wmi, "manufacturer": manufacturer}},
        )
        if self.cache is not None:
            await self.cache.set(MANUFACTURER_CODES_KEY, self.local_decoder.learned_codes(), None)


class ChainOrchestrator(DecodingOrchestrator):
    """Runs a source chain and merges its successes into one record.

    The ``local`` source is a fallback: under ``fail_fast`` it runs only after
    every other source failed, and with local fallback disabled it never runs.
    Under ``collect_all`` with fallback enabled it joins the fan-out and
    contributes its fields to the merge.
    """

    def __init__(
        self,
        chain: SourceChain,
        merger: MergeEngine,
        cache: VinCache | None = None,
        execution_strategy: ExecutionStrategy = "fail_fast",
        cache_ttl: int | None = DEFAULT_CACHE_TTL,
    ) -> None:
        local = chain.get_source(LOCAL_SOURCE_NAME)
        decoder = local.decoder if isinstance(local, LocalSource) else LocalVinDecoder()
        super().__init__(cache, cache_ttl, decoder)
        self.chain = chain
        self.merger = merger
        self.execution_strategy = check_choice("execution strategy", execution_strategy, EXECUTION_STRATEGIES)

    def set_execution_strategy(self, strategy: str) -> ChainOrchestrator:
        self.execution_strategy = check_choice("execution strategy", strategy, EXECUTION_STRATEGIES)
        return self

    async def decode(self, raw: str, skip_cache: bool = False, force_refresh: bool = False) -> MergedRecord:
        identifier = validation.parse_identifier(raw)
        cid = get_correlation_id()
        await self._restore_learned_codes()

        cached = await self._cached_record(identifier, skip_cache, force_refresh)
        if cached is not None:
            return cached

        result = await self._execute(identifier, cid)
        successful = list(result.successful)
        if not successful:
            logger.warning(
                "No source could decode %s",
                identifier.value,
                extra={"extra_data": {"correlation_id": cid, "failed_sources": result.failed_sources}},
            )
            raise DecodeFailedError(identifier.value, result.failed)

        for source_result in successful:
            if source_result.source != LOCAL_SOURCE_NAME:
                await self._learn_manufacturer(identifier, source_result.get("manufacturer"))

        merged = self.merger.merge(successful)
        metadata = dict(merged.cache_metadata)
        metadata["decoded_by"] = self._decoded_by(successful)
        metadata["execution_strategy"] = result.strategy
        record = MergedRecord(fields=merged.fields, cache_metadata=metadata)
        await self._store(identifier, record)
        logger.info(
            "Decoded %s",
            identifier.value,
            extra={"extra_data": {"correlation_id": cid, "sources": record.sources, "strategy": result.strategy}},
        )
        return record

    async def _execute(self, identifier: Identifier, cid: str) -> ChainExecutionResult:
        local = self.chain.get_source(LOCAL_SOURCE_NAME)
        if local is None or (self.use_local_fallback and self.execution_strategy == "collect_all"):
            return await self.chain.execute(identifier, self.execution_strategy)

        remote = await self.chain.without(LOCAL_SOURCE_NAME).execute(identifier, self.execution_strategy)
        if remote.successful or not self.use_local_fallback:
            return remote

        logger.info(
            "No remote source decoded %s, falling back to local",
            identifier.value,
            extra={"extra_data": {"correlation_id": cid, "failed_sources": remote.failed_sources}},
        )
        fallback = await SourceChain([local]).execute(identifier, self.execution_strategy)
        return ChainExecutionResult(
            successful=fallback.successful,
            failed=remote.failed + fallback.failed,
            strategy=self.execution_strategy,
            total_execution_time=remote.total_execution_time + fallback.total_execution_time,
            metadata={
                "total_sources": len(self.chain.get_enabled_sources()),
                "successful_count": len(fallback.successful),
                "failed_count": len(remote.failed) + len(fallback.failed),
                "local_fallback": True,
            },
        )

    @staticmethod
    def _decoded_by(results: list[SourceResult]) -> str:
        remote = [r.source for r in results if r.source != LOCAL_SOURCE_NAME]
        return remote[0] if remote else LOCAL_DECODER_NAME


class LegacyOrchestrator(DecodingOrchestrator):
    """Local baseline plus a single NHTSA lookup layered on top of it."""

    def __init__(
        self,
        cache: VinCache | None = None,
        remote: NhtsaClient | None = None,
        cache_ttl: int | None = DEFAULT_CACHE_TTL,
        use_local_fallback: bool = True,
        local_decoder: LocalVinDecoder | None = None,
    ) -> None:
        super().__init__(cache, cache_ttl, local_decoder or LocalVinDecoder(), use_local_fallback)
        self.remote = remote or NhtsaClient()

    async def decode(self, raw: str, skip_cache: bool = False, force_refresh: bool = False) -> MergedRecord:
        identifier = validation.parse_identifier(raw)
        cid = get_correlation_id()
        await self._restore_learned_codes()

        cached = await self._cached_record(identifier, skip_cache, force_refresh)
        if cached is not None:
            return cached

        baseline = self.local_decoder.decode(identifier)
        if isinstance(identifier, ChassisNumber):
            record = local_record(
                baseline,
                remote_skipped=f"{NHTSA_SOURCE_NAME} cannot decode {identifier.kind} identifiers",
            )
            await self._store(identifier, record)
            return record

        started = time.perf_counter()
        try:
            remote_data = await self._fetch_remote(identifier)
        except httpx.TransportError as exc:
            return await self._fall_back(identifier, baseline, "connection", exc, cid)
        except httpx.HTTPError as exc:
            return await self._fall_back(identifier, baseline, "request", exc, cid)
        except MalformedResponseError as exc:
            return await self._fall_back(identifier, baseline, "malformed_response", exc, cid)
        except Exception as exc:
            logger.exception("Unexpected error from %s for %s", NHTSA_SOURCE_NAME, identifier.value)
            return await self._fall_back(identifier, baseline, "unexpected", exc, cid)
        elapsed = time.perf_counter() - started

        record = self._layer_remote(baseline, remote_data, elapsed)
        await self._learn_manufacturer(identifier, remote_data.get("manufacturer"))
        await self._store(identifier, record)
        logger.info(
            "Decoded %s",
            identifier.value,
            extra={"extra_data": {"correlation_id": cid, "sources": record.sources}},
        )
        return record

    async def _fetch_remote(self, identifier: Vin) -> dict[str, Any]:
        rows = await self.remote.decode_vin(identifier.value)
        if not rows:
            raise MalformedResponseError("No results returned from NHTSA API")
        return format_nhtsa_results(rows, identifier.value)

    def _layer_remote(self, baseline: dict[str, Any], remote: dict[str, Any], elapsed: float) -> MergedRecord:
        fields = dict(baseline)
        for name, value in remote.items():
            if name != "additional_info" and not is_empty(value):
                fields[name] = value
        additional = dict(baseline.get("additional_info") or {})
        additional.update(remote.get("additional_info") or {})
        additional["decoded_by"] = NHTSA_SOURCE_NAME
        additional["decoding_date"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        fields["additional_info"] = additional
        return MergedRecord(
            fields=fields,
            cache_metadata={
                "sources": [NHTSA_SOURCE_NAME, LOCAL_SOURCE_NAME],
                "decoded_by": NHTSA_SOURCE_NAME,
                "total_execution_time": elapsed,
                "source_details": {NHTSA_SOURCE_NAME: {"api_url": self.remote.endpoint, "response_time": elapsed}},
            },
        )

    async def _fall_back(
        self,
        identifier: Identifier,
        baseline: dict[str, Any],
        kind: RemoteFailureKind,
        exc: Exception,
        cid: str,
    ) -> MergedRecord:
        message = str(exc) or exc.__class__.__name__
        if not self.use_local_fallback:
            raise RemoteDecodeError(kind, message) from exc
        logger.warning(
            "Remote decode failed for %s, using local data: %s",
            identifier.value,
            message,
            extra={"extra_data": {"correlation_id": cid, "failure_kind": kind}},
        )
        record = local_record(baseline, remote_error=message, failure_kind=kind)
        await self._store(identifier, record)
        return record


def create_orchestrator(
    chain: SourceChain,
    merger: MergeEngine,
    cache: VinCache | None = None,
    execution_strategy: ExecutionStrategy = "fail_fast",
    cache_ttl: int | None = DEFAULT_CACHE_TTL,
) -> ChainOrchestrator:
    return ChainOrchestrator(chain, merger, cache=cache, execution_strategy=execution_strategy, cache_ttl=cache_ttl)


def create_legacy_orchestrator(
    cache: VinCache | None = None,
    remote: NhtsaClient | None = None,
    cache_ttl: int | None = DEFAULT_CACHE_TTL,
    use_local_fallback: bool = True,
) -> LegacyOrchestrator:
    return LegacyOrchestrator(cache=cache, remote=remote, cache_ttl=cache_ttl, use_local_fallback=use_local_fallback)
