"""Reconciliation of partial source results into a single vehicle record."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from vindecode.config import (
    CONFLICT_RESOLUTIONS,
    DEFAULT_CONFIG,
    MERGE_STRATEGIES,
    ConflictResolution,
    DecodingConfig,
    MergeStrategy,
    check_choice,
)
from vindecode.data_models import DEFAULT_VALIDATION, MergedRecord, SourceResult, is_empty

logger = logging.getLogger(__name__)

# Fields that travel with the source that supplied their parent field.
_COMPANION_FIELDS: dict[str, tuple[str, ...]] = {"transmission": ("transmission_style",)}


def merge_metadata(results: Sequence[SourceResult]) -> dict[str, Any]:
    return {
        "sources": [r.source for r in results],
        "total_execution_time": sum(float(r.meta("execution_time", 0) or 0) for r in results),
        "source_details": {r.source: dict(r.metadata) for r in results},
    }


def fill_missing(merged: dict[str, Any], data: Mapping[str, Any]) -> None:
    for key, value in data.items():
        if is_empty(merged.get(key)) and not is_empty(value):
            merged[key] = value


class MergeEngine:
    def __init__(
        self,
        strategy: MergeStrategy = "priority",
        conflict_resolution: ConflictResolution = "priority",
        field_priorities: Mapping[str, Iterable[str]] | None = None,
        config: DecodingConfig = DEFAULT_CONFIG,
    ) -> None:
        self.config = config
        self.strategy = check_choice("merge strategy", strategy, MERGE_STRATEGIES)
        self.conflict_resolution = check_choice("conflict resolution", conflict_resolution, CONFLICT_RESOLUTIONS)
        self._field_priorities: dict[str, tuple[str, ...]] = dict(config.field_priorities)
        for name, order in (field_priorities or {}).items():
            self.set_field_priority(name, order)

    @property
    def field_priorities(self) -> dict[str, tuple[str, ...]]:
        return dict(self._field_priorities)

    def set_merge_strategy(self, strategy: str) -> MergeEngine:
        self.strategy = check_choice("merge strategy", strategy, MERGE_STRATEGIES)
        return self

    def set_conflict_resolution(self, resolution: str) -> MergeEngine:
        self.conflict_resolution = check_choice("conflict resolution", resolution, CONFLICT_RESOLUTIONS)
        return self

    def set_field_priority(self, name: str, order: Iterable[str]) -> MergeEngine:
        self._field_priorities[name] = tuple(order)
        return self

    def merge(self, results: Iterable[SourceResult]) -> MergedRecord:
        successful = [r for r in results if r.success]
        if not successful:
            return MergedRecord.empty()
        if len(successful) == 1:
            only = successful[0]
            return MergedRecord(fields=only.data, cache_metadata=merge_metadata(successful))

        if self.strategy == "best_effort":
            fields = self._merge_best_effort(successful)
        elif self.strategy == "complete":
            fields = self._merge_complete(successful)
        else:
            fields = self._merge_by_priority(successful)
        logger.debug("Merged %d results with %s strategy", len(successful), self.strategy)
        return MergedRecord(fields=fields, cache_metadata=merge_metadata(successful))

    def _merge_by_priority(self, results: Sequence[SourceResult]) -> dict[str, Any]:
        by_source: dict[str, SourceResult] = {}
        for result in results:
            by_source[result.source] = result

        merged: dict[str, Any] = {}
        for name in self.config.standard_fields:
            if self.conflict_resolution == "newest":
                winner = self._newest_source(name, by_source)
            else:
                winner = self._priority_source(name, by_source)
            if winner is None:
                continue
            merged[name] = winner.data[name]
            for companion in _COMPANION_FIELDS.get(name, ()):
                if not is_empty(winner.get(companion)):
                    merged[companion] = winner.data[companion]

        special = by_source.get(self.config.special_fields_source)
        if special is not None:
            for name in self.config.special_fields:
                if name in special.data:
                    merged[name] = special.data[name]

        additional: dict[str, Any] = {}
        for result in results:
            info = result.get("additional_info")
            if isinstance(info, Mapping):
                additional.update(info)
        merged["additional_info"] = additional
        merged["validation"] = self._validation(by_source)
        return merged

    def _priority_source(self, name: str, by_source: Mapping[str, SourceResult]) -> SourceResult | None:
        order = self._field_priorities.get(name, self.config.fallback_priority)
        for source_name in order:
            candidate = by_source.get(source_name)
            if candidate is not None and not is_empty(candidate.get(name)):
                return candidate
        for candidate in by_source.values():
            if not is_empty(candidate.get(name)):
                return candidate
        return None

    def _newest_source(self, name: str, by_source: Mapping[str, SourceResult]) -> SourceResult | None:
        candidates = [r for r in by_source.values() if not is_empty(r.get(name))]
        if not candidates:
            return None
        # sorted() is stable, so equal timestamps keep supply order.
        return sorted(candidates, key=lambda r: float(r.meta("timestamp", 0) or 0), reverse=True)[0]

    def _validation(self, by_source: Mapping[str, SourceResult]) -> dict[str, Any]:
        preferred = by_source.get(self.config.validation_source)
        if preferred is not None and "validation" in preferred.data:
            return preferred.data["validation"]
        for result in by_source.values():
            if "validation" in result.data:
                return result.data["validation"]
        return dict(DEFAULT_VALIDATION)

    def _merge_best_effort(self, results: Sequence[SourceResult]) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for result in results:
            fill_missing(merged, result.data)
        return merged

    def _merge_complete(self, results: Sequence[SourceResult]) -> dict[str, Any]:
        base: SourceResult | None = None
        best = 0
        for result in results:
            count = sum(1 for value in result.data.values() if not is_empty(value))
            if count > best:
                best, base = count, result
        if base is None:
            return self._merge_by_priority(results)

        merged = dict(base.data)
        for result in results:
            if result is not base:
                fill_missing(merged, result.data)
        return merged
