"""Japanese domestic-market chassis (frame) number decoding.

Chassis numbers never encode model year, plant, or a check digit, so
``year`` and ``plant`` are always absent from the decoded record.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from typing import Any, Mapping

from vindecode import reference
from vindecode.data_models import DEFAULT_VALIDATION, ChassisNumber


_ENGINE_PREFIX_RE = re.compile(r"^([A-Z]{1,3})")
_DESIGNATION_RE = re.compile(r"^[A-Z]{1,3}(.+)$")

DECODER_NAME = "japanese_chassis_decoder"


def engine_code_prefix(model_code: str) -> str | None:
    match = _ENGINE_PREFIX_RE.match(model_code)
    return match.group(1) if match else None


def chassis_designation(model_code: str) -> str:
    match = _DESIGNATION_RE.match(model_code)
    return match.group(1) if match else model_code


def infer_fuel_type(engine: str | None) -> str:
    if engine is None:
        return "Gasoline"
    lowered = engine.lower()
    for marker, fuel in (("diesel", "Diesel"), ("hybrid", "Hybrid"), ("electric", "Electric")):
        if marker in lowered:
            return fuel
    return "Gasoline"


class JapaneseChassisDecoder:
    def __init__(self, model_codes_path: str | None = None) -> None:
        self.model_codes_path = model_codes_path

    @property
    def database(self) -> Mapping[str, Any] | None:
        return reference.load_model_codes(self.model_codes_path)

    @property
    def database_version(self) -> str:
        db = self.database
        if db and "version" in db.get("metadata", {}):
            return str(db["metadata"]["version"])
        return "unknown"

    def supported_manufacturers(self) -> dict[str, str]:
        db = self.database
        if db is None:
            return {}
        return {key: data["name"] for key, data in db["manufacturers"].items()}

    def model_codes_for(self, manufacturer: str) -> list[str]:
        db = self.database
        if db is None:
            return []
        entry = db["manufacturers"].get(manufacturer.lower())
        return list(entry["models"]) if entry else []

    def find_model(self, model_code: str) -> dict[str, Any] | None:
        db = self.database
        if db is None:
            return None

        for key, data in db["manufacturers"].items():
            if model_code in data["models"]:
                return {
                    "manufacturer_key": key,
                    "manufacturer_name": data["name"],
                    "country": data["country"],
                    "model": copy.deepcopy(data["models"][model_code]),
                }

        for prefix in (model_code[:3], model_code[:2]):
            for key, data in db["manufacturers"].items():
                known = next((code for code in data["models"] if code.startswith(prefix)), None)
                if known is not None:
                    return {
                        "manufacturer_key": key,
                        "manufacturer_name": data["name"],
                        "country": data["country"],
                        "model": None,
                        "inferred_from": known,
                    }
        return None

    def decode(self, chassis: ChassisNumber) -> dict[str, Any]:
        model_code = chassis.model_code
        info = self.find_model(model_code)
        structure = {
            "raw": chassis.value,
            "model_code": model_code,
            "serial_number": chassis.serial_number,
            "engine_code_prefix": engine_code_prefix(model_code),
            "chassis_designation": chassis_designation(model_code),
        }
        decoder_info: dict[str, Any] = {
            "decoded_by": DECODER_NAME,
            "decoding_date": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            "database_version": self.database_version,
        }

        if info is None:
            guess = reference.jdm_prefix_match(model_code) or {}
            decoder_info["partial_info"] = True
            decoder_info["notes"] = "Model code not found in database. Limited information available."
            return {
                "make": guess.get("make"),
                "manufacturer": guess.get("manufacturer"),
                "fuel_type": "Gasoline",
                "country": "Japan",
                "additional_info": {
                    "chassis_number_structure": structure,
                    "identifier_type": chassis.kind,
                    "local_decoder_info": decoder_info,
                },
                "validation": dict(DEFAULT_VALIDATION),
            }

        model = info.get("model") or {}
        engine = self._resolve_engine(model_code, model.get("engine_codes") or {})
        body_styles = model.get("body_styles") or []
        years = model.get("production_years")
        if model.get("chassis_type"):
            structure["chassis_designation"] = model["chassis_type"]
        decoder_info["partial_info"] = not model
        additional: dict[str, Any] = {
            "chassis_number_structure": structure,
            "identifier_type": chassis.kind,
            "production_years": f"{years['start']}-{years['end']}" if years else None,
            "available_body_styles": body_styles or None,
            "local_decoder_info": decoder_info,
        }
        if "inferred_from" in info:
            additional["inferred_from"] = info["inferred_from"]

        return {
            "make": info["manufacturer_key"].capitalize(),
            "model": model.get("name"),
            "engine": engine,
            "body_style": body_styles[0] if body_styles else None,
            "fuel_type": infer_fuel_type(engine),
            "manufacturer": info["manufacturer_name"],
            "country": info["country"],
            "additional_info": additional,
            "validation": dict(DEFAULT_VALIDATION),
        }

    def _resolve_engine(self, model_code: str, engine_codes: Mapping[str, str]) -> str | None:
        prefix = engine_code_prefix(model_code)
        if prefix is not None:
            for length in range(len(prefix), 0, -1):
                engine = engine_codes.get(prefix[:length])
                if engine is not None:
                    return engine
        return next(iter(engine_codes.values()), None)
