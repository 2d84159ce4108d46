from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from vindecode import reference
from vindecode.chassis_decoder import JapaneseChassisDecoder
from vindecode.data_models import ChassisNumber, Identifier, Vin

logger = logging.getLogger(__name__)

DECODER_NAME = "local_decoder"


class LocalVinDecoder:
    """Offline decoding from the static reference tables.

    Never fails for a validated identifier. WMIs learned from remote decodes
    live in a per-instance overlay that only ever adds entries and never
    shadows a built-in code.
    """

    def __init__(self, chassis_decoder: JapaneseChassisDecoder | None = None) -> None:
        self.chassis_decoder = chassis_decoder or JapaneseChassisDecoder()
        self._learned: dict[str, str] = {}

    def manufacturer_for(self, wmi: str) -> str | None:
        return reference.manufacturer_for(wmi) or self._learned.get(wmi)

    def manufacturer_codes(self) -> dict[str, str]:
        codes = dict(self._learned)
        codes.update(reference.MANUFACTURER_CODES)
        return codes

    def learned_codes(self) -> dict[str, str]:
        return dict(self._learned)

    def add_manufacturer_code(self, wmi: str, manufacturer: str) -> bool:
        wmi = wmi.strip().upper()
        manufacturer = manufacturer.strip()
        if len(wmi) != 3 or not manufacturer:
            return False
        if wmi in reference.MANUFACTURER_CODES or self._learned.get(wmi) == manufacturer:
            return False
        self._learned[wmi] = manufacturer
        logger.info("Learned manufacturer code %s -> %s", wmi, manufacturer)
        return True

    def load_learned_codes(self, codes: Mapping[str, str]) -> int:
        return sum(1 for wmi, name in codes.items() if self.add_manufacturer_code(wmi, name))

    def decode(self, identifier: Identifier) -> dict[str, Any]:
        if isinstance(identifier, ChassisNumber):
            return self.chassis_decoder.decode(identifier)
        return self._decode_vin(identifier)

    def _decode_vin(self, vin: Vin) -> dict[str, Any]:
        additional: dict[str, Any] = {
            "decoded_by": DECODER_NAME,
            "decoding_date": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            "wmi": vin.wmi,
            "vds": vin.vds,
            "vis": vin.vis,
            "check_digit": vin.check_digit,
            "serial_number": vin.serial,
            "partial_info": True,
        }
        vehicle: dict[str, Any] = {
            "country": reference.country_for(vin.value),
            "year": reference.year_for(vin.year_code),
            "plant": f"Plant Code: {vin.plant_code}",
            "additional_info": additional,
        }

        manufacturer = self.manufacturer_for(vin.wmi)
        if manufacturer:
            make, _, vehicle_type = manufacturer.partition(" - ")
            vehicle["manufacturer"] = manufacturer
            vehicle["make"] = make
            if vehicle_type:
                additional["vehicle_type"] = vehicle_type
        return vehicle
