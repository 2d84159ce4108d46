from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union


IdentifierKind = Literal["vin", "japanese_chassis_number"]

STANDARD_FIELDS: tuple[str, ...] = (
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

DEFAULT_VALIDATION: dict[str, Any] = {"error_code": None, "error_text": None, "is_valid": True}


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections all count as "no value"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (dict, list, tuple, set, frozenset)):
        return len(value) == 0
    return False


def prune_empty(data: Mapping[str, Any]) -> dict[str, Any]:
    # Absent fields are simply missing keys; nothing else stands in for them.
    return {k: copy.deepcopy(v) for k, v in data.items() if not is_empty(v)}


@dataclass(frozen=True)
class Vin:
    value: str
    kind: IdentifierKind = field(default="vin", init=False)

    @property
    def wmi(self) -> str:
        return self.value[:3]

    @property
    def vds(self) -> str:
        return self.value[3:9]

    @property
    def vis(self) -> str:
        return self.value[9:17]

    @property
    def check_digit(self) -> str:
        return self.value[8]

    @property
    def year_code(self) -> str:
        return self.value[9]

    @property
    def plant_code(self) -> str:
        return self.value[10]

    @property
    def serial(self) -> str:
        return self.value[11:]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ChassisNumber:
    value: str
    kind: IdentifierKind = field(default="japanese_chassis_number", init=False)

    @property
    def model_code(self) -> str:
        return self.value.split("-", 1)[0]

    @property
    def serial_number(self) -> str:
        return self.value.split("-", 1)[1]

    def __str__(self) -> str:
        return self.value


Identifier = Union[Vin, ChassisNumber]


@dataclass(frozen=True)
class ValidationOutcome:
    is_valid: bool
    reason: str | None = None
    kind: IdentifierKind | None = None

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass(frozen=True)
class SourceResult:
    success: bool
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success:
            if not self.error:
                raise ValueError(f"Failed result from {self.source!r} must carry an error message")
            if self.data:
                raise ValueError(f"Failed result from {self.source!r} must not carry data")
        object.__setattr__(self, "data", prune_empty(self.data))
        object.__setattr__(self, "metadata", dict(self.metadata))

    @classmethod
    def ok(cls, source: str, data: Mapping[str, Any], **metadata: Any) -> SourceResult:
        return cls(success=True, source=source, data=dict(data), metadata=metadata)

    @classmethod
    def failure(cls, source: str, error: str, **metadata: Any) -> SourceResult:
        metadata.setdefault("error", error)
        return cls(success=False, source=source, error=error, metadata=metadata)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def meta(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": copy.deepcopy(self.data),
            "source": self.source,
            "error": self.error,
            "metadata": copy.deepcopy(self.metadata),
        }


@dataclass(frozen=True)
class ChainExecutionResult:
    successful: tuple[SourceResult, ...] = ()
    failed: tuple[SourceResult, ...] = ()
    strategy: str = "fail_fast"
    total_execution_time: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_successful_results(self) -> bool:
        return bool(self.successful)

    @property
    def has_failed_results(self) -> bool:
        return bool(self.failed)

    @property
    def all_results(self) -> tuple[SourceResult, ...]:
        return self.successful + self.failed

    @property
    def successful_sources(self) -> list[str]:
        return [r.source for r in self.successful]

    @property
    def failed_sources(self) -> list[str]:
        return [r.source for r in self.failed]

    def result_by_source(self, name: str) -> SourceResult | None:
        for result in self.all_results:
            if result.source == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful_results": [r.to_dict() for r in self.successful],
            "failed_results": [r.to_dict() for r in self.failed],
            "execution_strategy": self.strategy,
            "total_execution_time": self.total_execution_time,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class MergedRecord:
    """Reconciled vehicle attributes plus provenance for the sources behind them.

    Records are never updated in place; a new decode builds a new record.
    ``to_dict`` always emits every standard field (``None`` when absent) so the
    cached shape is stable, while ``fields`` only holds the present values.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    cache_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", prune_empty(self.fields))
        object.__setattr__(self, "cache_metadata", copy.deepcopy(dict(self.cache_metadata)))

    @classmethod
    def empty(cls) -> MergedRecord:
        return cls(cache_metadata={"sources": [], "total_execution_time": 0, "source_details": {}})

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MergedRecord:
        data = dict(payload)
        cache_metadata = data.pop("cache_metadata", None) or {}
        return cls(fields=data, cache_metadata=cache_metadata)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {name: None for name in STANDARD_FIELDS}
        out.update(copy.deepcopy(self.fields))
        out.setdefault("additional_info", {})
        out.setdefault("validation", dict(DEFAULT_VALIDATION))
        out["cache_metadata"] = copy.deepcopy(self.cache_metadata)
        return out

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self.fields.get(key, default))

    @property
    def is_empty(self) -> bool:
        return not self.fields

    @property
    def make(self) -> str | None:
        return self.fields.get("make")

    @property
    def model(self) -> str | None:
        return self.fields.get("model")

    @property
    def year(self) -> str | None:
        return self.fields.get("year")

    @property
    def trim(self) -> str | None:
        return self.fields.get("trim")

    @property
    def engine(self) -> str | None:
        return self.fields.get("engine")

    @property
    def manufacturer(self) -> str | None:
        return self.fields.get("manufacturer")

    @property
    def country(self) -> str | None:
        return self.fields.get("country")

    @property
    def additional_info(self) -> dict[str, Any]:
        return self.get("additional_info", {})

    @property
    def validation(self) -> dict[str, Any]:
        return self.get("validation", dict(DEFAULT_VALIDATION))

    @property
    def is_valid(self) -> bool:
        return bool(self.validation.get("is_valid", True))

    @property
    def sources(self) -> list[str]:
        return list(self.cache_metadata.get("sources", []))

    @property
    def decoded_by(self) -> str | None:
        return self.cache_metadata.get("decoded_by")

    @property
    def is_locally_decoded(self) -> bool:
        if self.decoded_by is not None:
            return self.decoded_by == "local_decoder"
        sources = self.sources
        if sources:
            return "local" in sources
        return self.fields.get("additional_info", {}).get("decoded_by") == "local_decoder"

    def source_details(self, source: str | None = None) -> dict[str, Any] | None:
        details = self.cache_metadata.get("source_details") or {}
        if source is not None:
            return copy.deepcopy(details.get(source))
        return copy.deepcopy(details) or None
