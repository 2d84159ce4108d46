from __future__ import annotations

from typing import Any

import pytest

from vindecode.data_models import Identifier, SourceResult
from vinservice.storage import RedisCache


HONDA_VIN = "1HGCM82633A004352"
UNKNOWN_WMI_VIN = "1N4AL3AP8JC123456"
SUPRA_CHASSIS = "JZA80-1004956"


class FakeSource:
    """Scriptable source; records every identifier it was asked to decode."""

    def __init__(
        self,
        name: str,
        priority: int,
        data: dict[str, Any] | None = None,
        error: str | None = None,
        timestamp: float | None = None,
        handles: bool = True,
        raises: Exception | None = None,
    ) -> None:
        self._name = name
        self._priority = priority
        self.data = data
        self.error = error
        self.timestamp = timestamp
        self.handles = handles
        self.raises = raises
        self.enabled = True
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def source_type(self) -> str:
        return "fake"

    def is_enabled(self) -> bool:
        return self.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def can_handle(self, identifier: Identifier) -> bool:
        return self.handles

    async def decode(self, identifier: Identifier) -> SourceResult:
        self.calls.append(identifier.value)
        if self.raises is not None:
            raise self.raises
        meta: dict[str, Any] = {"execution_time": 0.5}
        if self.timestamp is not None:
            meta["timestamp"] = self.timestamp
        if self.error is not None:
            return SourceResult.failure(self.name, self.error, **meta)
        return SourceResult.ok(self.name, self.data or {}, **meta)


def ok_result(source: str, data: dict[str, Any], **metadata: Any) -> SourceResult:
    metadata.setdefault("execution_time", 0.25)
    return SourceResult.ok(source, data, **metadata)


def nhtsa_payload(**overrides: Any) -> dict[str, Any]:
    values = {
        "Make": "HONDA",
        "Model": "Accord",
        "Model Year": "2003",
        "Trim": "EX-V6",
        "Engine Configuration": "V-Shaped",
        "Displacement (L)": "3.0",
        "Engine Number of Cylinders": "6",
        "Plant City": "MARYSVILLE",
        "Body Class": "Coupe",
        "Fuel Type - Primary": "Gasoline",
        "Transmission Style": "Automatic 5-Speed",
        "Manufacturer Name": "AMERICAN HONDA MOTOR CO., INC.",
        "Plant Country": "UNITED STATES (USA)",
        "Drive Type": "4x2",
        "Error Code": "0",
        "Error Text": "0 - VIN decoded clean.",
    }
    values.update(overrides)
    return {
        "Count": len(values),
        "Message": "Results returned successfully",
        # an override of None drops the variable entirely
        "Results": [{"Variable": k, "Value": v} for k, v in values.items() if v is not None],
    }


@pytest.fixture
def memory_cache() -> RedisCache:
    return RedisCache(redis_url=None, namespace="test")
