from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Literal


ExecutionStrategy = Literal["fail_fast", "collect_all"]
MergeStrategy = Literal["priority", "best_effort", "complete"]
ConflictResolution = Literal["priority", "newest"]

EXECUTION_STRATEGIES: tuple[str, ...] = ("fail_fast", "collect_all")
MERGE_STRATEGIES: tuple[str, ...] = ("priority", "best_effort", "complete")
CONFLICT_RESOLUTIONS: tuple[str, ...] = ("priority", "newest")

MERGED_RECORD_PREFIX = "vin_data"
MANUFACTURER_CODES_KEY = "vin_manufacturer_codes"


def _default_field_priorities() -> Dict[str, tuple[str, ...]]:
    vin_api_first = ("nhtsa_api", "clearvin", "local")
    web_first = ("clearvin", "nhtsa_api", "local")
    return {
        "make": vin_api_first,
        "model": vin_api_first,
        "year": vin_api_first,
        "trim": web_first,
        "engine": web_first,
        "plant": vin_api_first,
        "body_style": vin_api_first,
        "fuel_type": vin_api_first,
        "transmission": vin_api_first,
        "manufacturer": vin_api_first,
        "country": vin_api_first,
        "validation": ("nhtsa_api",),
        "dimensions": ("clearvin",),
        "seating": ("clearvin",),
        "pricing": ("clearvin",),
        "mileage": ("clearvin",),
    }


@dataclass(frozen=True)
class DecodingConfig:
    cache_ttl_seconds: int = 2_592_000  # 30 days
    execution_strategy: ExecutionStrategy = "fail_fast"
    merge_strategy: MergeStrategy = "priority"
    conflict_resolution: ConflictResolution = "priority"
    standard_fields: tuple[str, ...] = (
        "make",
        "model",
        "year",
        "trim",
        "engine",
        "plant",
        "body_style",
        "fuel_type",
        "transmission",
        "manufacturer",
        "country",
    )
    special_fields: tuple[str, ...] = ("dimensions", "seating", "pricing", "mileage")
    special_fields_source: str = "clearvin"
    validation_source: str = "nhtsa_api"
    fallback_priority: tuple[str, ...] = ("nhtsa_api", "clearvin", "local")
    field_priorities: Dict[str, tuple[str, ...]] = field(default_factory=_default_field_priorities)


DEFAULT_CONFIG = DecodingConfig()


def check_choice(kind: str, value: str, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValueError(f"Invalid {kind}: {value}. Valid options: {', '.join(allowed)}")
    return value
