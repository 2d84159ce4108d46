"""NHTSA vPIC collaborator: raw transport plus the ``nhtsa_api`` decoding source."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from vindecode.caching import VinCache, cache_key
from vindecode.data_models import DEFAULT_VALIDATION, Identifier, SourceResult, Vin
from vindecode.errors import MalformedResponseError
from vindecode.sources import decode_metadata
from vindecode.transmission import apply_transmission
from vindecode.validation import VIN_ALPHABET

logger = logging.getLogger(__name__)

SOURCE_NAME = "nhtsa_api"
DEFAULT_BASE_URL = "https://vpic.nhtsa.dot.gov/api/vehicles"

_FIELD_MAP = {
    "Make": "make",
    "Model": "model",
    "Model Year": "year",
    "Trim": "trim",
    "Plant City": "plant",
    "Body Class": "body_style",
    "Fuel Type - Primary": "fuel_type",
    "Transmission Style": "transmission",
    "Manufacturer Name": "manufacturer",
    "Plant Country": "country",
}
_ENGINE_VARIABLES = ("Engine Configuration", "Displacement (L)", "Engine Number of Cylinders")
_V6_MARKERS = ("V6", "V-Shaped", "6")


class NhtsaClient:
    """Thin async client for the ``DecodeVinExtended`` endpoint.

    Raises ``httpx.TransportError`` subclasses for connection problems,
    ``httpx.HTTPStatusError`` for non-2xx responses and
    ``MalformedResponseError`` when the body is not a vPIC payload.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/DecodeVinExtended/"

    async def decode_vin(self, vin: str) -> list[dict[str, Any]]:
        url = f"{self.endpoint}{vin}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            resp = await client.get(url, params={"format": "json"})
            resp.raise_for_status()
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Response from {url} is not JSON") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("Results"), list):
            raise MalformedResponseError("Invalid response format from NHTSA API")
        return payload["Results"]


def format_nhtsa_results(rows: list[dict[str, Any]], vin: str) -> dict[str, Any]:
    validation = dict(DEFAULT_VALIDATION)
    details: dict[str, Any] = {}
    vehicle: dict[str, Any] = {
        "additional_info": {
            "vin_structure": {
                "WMI": vin[:3],
                "VDS": vin[3:9],
                "VIS": vin[9:17],
                "check_digit": vin[8] if len(vin) > 8 else "0",
            },
            "nhtsa_details": details,
        },
        "validation": validation,
    }
    engine_parts: list[str] = []

    for row in rows:
        variable = row.get("Variable")
        if variable is None or "Value" not in row:
            continue
        value = row["Value"]

        if variable == "Error Code":
            validation["error_code"] = value
            if value and value != "0":
                validation["is_valid"] = False
            continue
        if variable == "Error Text":
            validation["error_text"] = value
            continue
        if value is None or str(value).strip() == "":
            continue

        if variable in _ENGINE_VARIABLES:
            engine_parts.append(str(value))
        elif variable in _FIELD_MAP:
            vehicle[_FIELD_MAP[variable]] = value
        else:
            details[variable] = value

    if engine_parts:
        vehicle["engine"] = " ".join(engine_parts)
    apply_transmission(vehicle, _V6_MARKERS)
    return vehicle


class NhtsaApiSource:
    cache_prefix = SOURCE_NAME

    def __init__(
        self,
        client: NhtsaClient | None = None,
        cache: VinCache | None = None,
        cache_ttl: int | None = 2_592_000,
        max_retries: int = 3,
        rate_limit_delay: float = 0.0,
        retry_backoff: float = 0.1,
        priority: int = 2,
    ) -> None:
        self.client = client or NhtsaClient()
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.max_retries = max(1, max_retries)
        self.rate_limit_delay = rate_limit_delay
        self.retry_backoff = retry_backoff
        self._priority = priority
        self._enabled = True
        self._last_request: float | None = None

    @property
    def name(self) -> str:
        return SOURCE_NAME

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def source_type(self) -> str:
        return "api"

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def can_handle(self, identifier: Identifier) -> bool:
        return (
            isinstance(identifier, Vin)
            and len(identifier.value) == 17
            and all(ch in VIN_ALPHABET for ch in identifier.value)
        )

    async def decode(self, identifier: Identifier) -> SourceResult:
        started = time.perf_counter()
        if not self._enabled:
            return SourceResult.failure(self.name, "NHTSA API source is disabled")
        if not self.can_handle(identifier):
            return SourceResult.failure(self.name, "Invalid VIN format for NHTSA API")

        vin = identifier.value
        key = cache_key(self.cache_prefix, vin)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return SourceResult.ok(
                    self.name,
                    cached,
                    **self._metadata(started, cache_hit=True, response_time=0, api_call_success=True),
                )

        await self._respect_rate_limit()
        attempts = 0
        last_error = "Max retries exceeded"
        while attempts < self.max_retries:
            attempts += 1
            request_started = time.perf_counter()
            try:
                rows = await self.client.decode_vin(vin)
            except (httpx.HTTPError, MalformedResponseError) as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("NHTSA attempt %d/%d failed for %s: %s", attempts, self.max_retries, vin, last_error)
                if attempts < self.max_retries:
                    await asyncio.sleep(self.retry_backoff * (2 ** attempts))
                continue
            finally:
                self._last_request = time.monotonic()

            response_time = time.perf_counter() - request_started
            if not rows:
                return self._failure("No results returned from NHTSA API", started, attempts)

            data = format_nhtsa_results(rows, vin)
            if self.cache is not None:
                await self.cache.set(key, data, self.cache_ttl)
            return SourceResult.ok(
                self.name,
                data,
                **self._metadata(
                    started, cache_hit=False, response_time=response_time, attempts=attempts, api_call_success=True
                ),
            )

        return self._failure(f"Max retries exceeded. Last error: {last_error}", started, attempts)

    async def clear_cache(self, identifier: Identifier) -> bool:
        if self.cache is None:
            return False
        return await self.cache.delete(cache_key(self.cache_prefix, identifier.value))

    async def _respect_rate_limit(self) -> None:
        if self.rate_limit_delay <= 0 or self._last_request is None:
            return
        elapsed = time.monotonic() - self._last_request
        if elapsed < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - elapsed)

    def _metadata(self, started: float, **extra: Any) -> dict[str, Any]:
        return decode_metadata(SOURCE_NAME, started, api_url=self.client.endpoint, **extra)

    def _failure(self, error: str, started: float, attempts: int) -> SourceResult:
        return SourceResult.failure(
            self.name,
            error,
            **self._metadata(started, cache_hit=False, attempts=attempts, api_call_success=False),
        )
