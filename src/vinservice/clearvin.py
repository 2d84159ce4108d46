"""ClearVIN decoder page, fetched as markdown through a reader proxy."""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

from vindecode.caching import VinCache, cache_key
from vindecode.data_models import DEFAULT_VALIDATION, Identifier, SourceResult, Vin
from vindecode.sources import decode_metadata
from vindecode.transmission import apply_transmission
from vindecode.validation import VIN_ALPHABET

logger = logging.getLogger(__name__)

SOURCE_NAME = "clearvin"
DEFAULT_BASE_URL = "https://r.jina.ai/https://www.clearvin.com/en/decoder/decode/"

_YMM_RE = re.compile(r"YMM\s*\n\s*([0-9]{4})\s+([A-Za-z]+)\s+(.+)")
_WS_RE = re.compile(r"\s+")
_V6_MARKERS = ("V6", "3.5")
_STRIP_CHARS = " \t\n\r\0\x0b*"


def _clean(value: str) -> str | None:
    value = _WS_RE.sub(" ", value.strip()).strip(_STRIP_CHARS)
    if not value or value == "N/A":
        return None
    return value


def _labelled_line(markdown: str, label: str) -> str | None:
    # "Label" on its own line, value on the next non-blank line.
    match = re.search(rf"{re.escape(label)}\s*\n\s*(.+?)(?=\n|$)", markdown, re.IGNORECASE)
    return _clean(match.group(1)) if match else None


def _inline(markdown: str, label: str) -> str | None:
    name = re.escape(label)
    patterns = (
        rf"\*\*{name}:\*\*\s*([^\n\r]+)",
        rf"\*\*{name}\*\*:\s*([^\n\r]+)",
        rf"{name}:\s*([^\n\r]+)",
    )
    for pattern in patterns:
        match = re.search(pattern, markdown, re.IGNORECASE)
        if match:
            return _clean(match.group(1))
    return None


def extract_field(markdown: str, label: str, inline_label: str | None = None) -> str | None:
    return _labelled_line(markdown, label) or _inline(markdown, inline_label or label)


def parse_clearvin_markdown(markdown: str, vin: str) -> dict[str, Any]:
    data: dict[str, Any] = {
        "additional_info": {
            "vin_structure": {
                "WMI": vin[:3],
                "VDS": vin[3:9],
                "VIS": vin[9:17],
                "check_digit": vin[8] if len(vin) > 8 else "0",
            },
        },
        "validation": dict(DEFAULT_VALIDATION),
    }

    ymm = _YMM_RE.search(markdown)
    if ymm:
        data["year"] = ymm.group(1).strip()
        data["make"] = ymm.group(2).strip()
        data["model"] = ymm.group(3).strip()
    else:
        data["make"] = _inline(markdown, "Make")
        data["model"] = _inline(markdown, "Model")
        data["year"] = _inline(markdown, "Year")
    data["manufacturer"] = data["make"]

    data["trim"] = extract_field(markdown, "Trim")
    data["engine"] = extract_field(markdown, "Engine")
    data["country"] = extract_field(markdown, "Made in", inline_label="Origin")
    data["body_style"] = extract_field(markdown, "Style")

    data["mileage"] = {
        "city": extract_field(markdown, "City Mileage"),
        "highway": extract_field(markdown, "Highway Mileage"),
    }
    data["dimensions"] = {
        "length": extract_field(markdown, "Length"),
        "width": extract_field(markdown, "Width"),
        "height": extract_field(markdown, "Height"),
        "wheelbase": extract_field(markdown, "Wheelbase"),
    }
    seating: dict[str, Any] = {"passengerVolume": extract_field(markdown, "Passenger Volume")}
    standard_seating = extract_field(markdown, "Standard Seating")
    if standard_seating and standard_seating.isdigit():
        seating["standardSeating"] = int(standard_seating)
    data["seating"] = seating
    data["pricing"] = {
        "msrp": extract_field(markdown, "MSRP"),
        "dealerInvoice": extract_field(markdown, "Dealer Invoice"),
    }
    data["additional_info"]["clearvin_details"] = {
        "wheel_drive": extract_field(markdown, "Wheel Drive"),
        "safety_rating": extract_field(markdown, "Safety Rating"),
        "fuel_economy_combined": extract_field(markdown, "Combined Fuel Economy"),
        "curb_weight": extract_field(markdown, "Curb Weight"),
        "cargo_volume": extract_field(markdown, "Cargo Volume"),
    }

    for group in ("mileage", "dimensions", "seating", "pricing"):
        data[group] = {k: v for k, v in data[group].items() if v}
    details = data["additional_info"]["clearvin_details"]
    data["additional_info"]["clearvin_details"] = {k: v for k, v in details.items() if v}

    apply_transmission(data, _V6_MARKERS)
    return data


def has_vehicle_data(data: dict[str, Any]) -> bool:
    return any(data.get(name) for name in ("make", "model", "year"))


class ClearVinSource:
    cache_prefix = SOURCE_NAME

    def __init__(
        self,
        cache: VinCache | None = None,
        cache_ttl: int | None = 2_592_000,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        priority: int = 3,
    ) -> None:
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self._priority = priority
        self._enabled = True

    @property
    def name(self) -> str:
        return SOURCE_NAME

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def source_type(self) -> str:
        return "web"

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

    def build_url(self, vin: str) -> str:
        return f"{self.base_url}{vin}"

    async def decode(self, identifier: Identifier) -> SourceResult:
        started = time.perf_counter()
        if not self._enabled:
            return SourceResult.failure(self.name, "ClearVIN source is disabled")
        if not self.can_handle(identifier):
            return SourceResult.failure(self.name, "Invalid VIN format for ClearVIN")

        vin = identifier.value
        url = self.build_url(vin)
        key = cache_key(self.cache_prefix, vin)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return SourceResult.ok(
                    self.name,
                    cached,
                    **decode_metadata(SOURCE_NAME, started, cache_hit=True, api_url=url, api_call_success=True),
                )

        request_started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = await client.get(url)
                resp.raise_for_status()
            markdown = resp.text
            response_time = time.perf_counter() - request_started
            if not markdown.strip():
                return self._failure("Empty response from ClearVIN", started, url)
            data = parse_clearvin_markdown(markdown, vin)
        except httpx.HTTPError as exc:
            logger.warning("ClearVIN request failed for %s: %s", vin, exc)
            return self._failure(f"HTTP error: {exc}", started, url)
        except (ValueError, re.error) as exc:
            logger.warning("ClearVIN parse failed for %s: %s", vin, exc)
            return self._failure(f"Parsing error: {exc}", started, url)

        if not has_vehicle_data(data):
            return self._failure("No vehicle data found in ClearVIN response", started, url)

        if self.cache is not None:
            await self.cache.set(key, data, self.cache_ttl)
        return SourceResult.ok(
            self.name,
            data,
            **decode_metadata(
                SOURCE_NAME,
                started,
                cache_hit=False,
                api_url=url,
                response_time=response_time,
                markdown_length=len(markdown),
                api_call_success=True,
            ),
        )

    async def clear_cache(self, identifier: Identifier) -> bool:
        if self.cache is None:
            return False
        return await self.cache.delete(cache_key(self.cache_prefix, identifier.value))

    def _failure(self, error: str, started: float, url: str) -> SourceResult:
        return SourceResult.failure(
            self.name,
            error,
            **decode_metadata(SOURCE_NAME, started, cache_hit=False, api_url=url, api_call_success=False),
        )
