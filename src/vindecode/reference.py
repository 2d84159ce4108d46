from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)


COUNTRY_CODES: Mapping[str, str] = MappingProxyType({
    "A": "South Africa",
    "B": "Angola",
    "C": "Benin",
    "D": "Egypt",
    "E": "Ethiopia",
    "F": "Ghana",
    "G": "Ivory Coast",
    "H": "Kenya",
    "J": "Japan",
    "K": "Korea (South)",
    "L": "China",
    "M": "India",
    "N": "Iran",
    "P": "Philippines",
    "R": "Taiwan",
    "S": "United Kingdom",
    "T": "Switzerland",
    "U": "Denmark",
    "V": "Austria",
    "W": "Germany",
    "X": "Russia",
    "Y": "Belgium",
    "Z": "Italy",
    "1": "United States",
    "2": "Canada",
    "3": "Mexico",
    "4": "United States",
    "5": "United States",
    "6": "Australia",
    "7": "New Zealand",
    "8": "Argentina",
    "9": "Brazil",
})

MANUFACTURER_CODES: Mapping[str, str] = MappingProxyType({
    "1FT": "Ford Motor Company - Trucks",
    "1FA": "Ford Motor Company - Cars",
    "1FM": "Ford Motor Company - MPVs",
    "1FD": "Ford Motor Company - Commercial Vehicles",
    "1G1": "Chevrolet - Car",
    "1GC": "Chevrolet - Trucks",
    "1GT": "GMC - Trucks",
    "1G6": "Cadillac",
    "1HG": "Honda",
    "2G1": "Chevrolet (Canada)",
    "2T1": "Toyota (Canada)",
    "2HG": "Honda (Canada)",
    "3FA": "Ford (Mexico)",
    "3N1": "Nissan (Mexico)",
    "4S4": "Subaru",
    "4T1": "Toyota",
    "5FN": "Honda",
    "5TD": "Toyota",
    "5YJ": "Tesla",
    "JH4": "Acura",
    "JHM": "Honda",
    "JN1": "Nissan",
    "JT2": "Toyota",
    "JT4": "Toyota",
    "KL4": "Daewoo",
    "KM8": "Hyundai",
    "KNA": "Kia",
    "SCA": "Rolls-Royce",
    "SCC": "Lotus",
    "SCF": "Aston Martin",
    "VF1": "Renault",
    "VF3": "Peugeot",
    "VF7": "Citroën",
    "W04": "Buick",
    "W0L": "Opel",
    "WA1": "Audi SUV",
    "WAU": "Audi",
    "WBA": "BMW",
    "WDC": "Mercedes-Benz SUV",
    "WDD": "Mercedes-Benz",
    "WP0": "Porsche",
    "WVW": "Volkswagen",
    "YV1": "Volvo",
})

# 30-year model-year cycle; letters I, O, Q, U, Z and digit 0 are never used.
YEAR_CODES: Mapping[str, str] = MappingProxyType({
    "A": "2010", "B": "2011", "C": "2012", "D": "2013",
    "E": "2014", "F": "2015", "G": "2016", "H": "2017",
    "J": "2018", "K": "2019", "L": "2020", "M": "2021",
    "N": "2022", "P": "2023", "R": "2024", "S": "2025",
    "T": "1996", "V": "1997", "W": "1998", "X": "1999",
    "Y": "2000", "1": "2001", "2": "2002", "3": "2003",
    "4": "2004", "5": "2005", "6": "2006", "7": "2007",
    "8": "2008", "9": "2009",
})

_TOYOTA = {"make": "Toyota", "manufacturer": "Toyota Motor Corporation"}
_NISSAN = {"make": "Nissan", "manufacturer": "Nissan Motor Company"}
_HONDA = {"make": "Honda", "manufacturer": "Honda Motor Company"}
_SUBARU = {"make": "Subaru", "manufacturer": "Subaru Corporation"}
_MAZDA = {"make": "Mazda", "manufacturer": "Mazda Motor Corporation"}
_MITSUBISHI = {"make": "Mitsubishi", "manufacturer": "Mitsubishi Motors Corporation"}
_SUZUKI = {"make": "Suzuki", "manufacturer": "Suzuki Motor Corporation"}

# Model-code prefixes used when a code is missing from the model database.
# FD is ambiguous (Honda Civic Type R vs. Mazda RX-7); Honda wins.
JDM_PREFIX_PATTERNS: Mapping[str, Mapping[str, str]] = MappingProxyType({
    "JZ": _TOYOTA, "AE": _TOYOTA, "SW": _TOYOTA, "AW": _TOYOTA, "ST": _TOYOTA, "SV": _TOYOTA,
    "BN": _NISSAN, "BCN": _NISSAN, "EC": _NISSAN, "ER": _NISSAN, "RPS": _NISSAN, "Z3": _NISSAN,
    "DC": _HONDA, "DB": _HONDA, "EK": _HONDA, "EG": _HONDA, "EP": _HONDA, "FD": _HONDA,
    "AP": _HONDA, "NA": _HONDA,
    "GD": _SUBARU, "GC": _SUBARU, "GR": _SUBARU, "VA": _SUBARU, "BH": _SUBARU, "BP": _SUBARU,
    "SF": _SUBARU,
    "FC": _MAZDA, "SE": _MAZDA, "NB": _MAZDA, "NC": _MAZDA, "BK": _MAZDA,
    "CT": _MITSUBISHI, "CP": _MITSUBISHI, "CN": _MITSUBISHI, "CE": _MITSUBISHI, "CZ": _MITSUBISHI,
    "EA": _SUZUKI, "ZC": _SUZUKI, "HT": _SUZUKI,
})

DEFAULT_MODEL_CODES_PATH = Path(__file__).parent / "data" / "japanese_model_codes.json"


def country_for(code: str) -> str | None:
    return COUNTRY_CODES.get(code[:1])


def manufacturer_for(wmi: str) -> str | None:
    return MANUFACTURER_CODES.get(wmi)


def year_for(code: str) -> str | None:
    return YEAR_CODES.get(code)


def jdm_prefix_match(model_code: str) -> Mapping[str, str] | None:
    for length in (3, 2):
        match = JDM_PREFIX_PATTERNS.get(model_code[:length])
        if match is not None:
            return match
    return None


@lru_cache(maxsize=8)
def load_model_codes(path: str | None = None) -> Mapping[str, Any] | None:
    """Load the Japanese model-code database once per path; ``None`` if unreadable."""
    target = Path(path) if path else DEFAULT_MODEL_CODES_PATH
    try:
        payload = json.loads(target.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("Japanese model-code database not found at %s", target)
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Japanese model-code database at %s is unreadable: %s", target, exc)
        return None
    return MappingProxyType(payload)
