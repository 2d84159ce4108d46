"""Structural and check-digit validation for VINs and Japanese chassis numbers."""

from __future__ import annotations

import re
from typing import Any

from vindecode.data_models import ChassisNumber, Identifier, ValidationOutcome, Vin
from vindecode.errors import MalformedIdentifierError


VIN_LENGTH = 17
VIN_ALPHABET = frozenset("0123456789ABCDEFGHJKLMNPRSTUVWXYZ")

_TRANSLITERATION = {
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)

CHECKSUM_REGIONS = frozenset("1234567")
EUROPE = frozenset("STUVWXYZ")
ASIA = frozenset("JKLMNR")
SOUTH_AMERICA = frozenset("89")

CHASSIS_MIN_LENGTH = 9
CHASSIS_MAX_LENGTH = 14
_CHASSIS_RE = re.compile(r"^([A-Z0-9]{2,6})-([0-9]{6,7})$")
_MODEL_CODE_RE = re.compile(r"^[A-Z0-9]+$")


def normalize(raw: str) -> str:
    return raw.strip().upper()


def compute_check_digit(vin: str) -> str:
    total = 0
    for char, weight in zip(vin, _WEIGHTS):
        value = int(char) if char.isdigit() else _TRANSLITERATION[char]
        total += value * weight
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def has_valid_check_digit(vin: str) -> bool:
    return compute_check_digit(vin) == vin[8]


def passes_lenient_structure(vin: str) -> bool:
    # Known real-world VINs miss the ISO 3779 digit: accept a numeric
    # production sequence, or the 5T prefix.
    if vin.startswith("5T"):
        return True
    return vin[11:17].isdigit()


def looks_like_chassis_number(raw: str) -> bool:
    candidate = normalize(raw)
    if candidate.count("-") != 1:
        return False
    if not CHASSIS_MIN_LENGTH <= len(candidate) <= CHASSIS_MAX_LENGTH:
        return False
    return _CHASSIS_RE.match(candidate) is not None


class VinValidator:
    def validate(self, raw: str) -> ValidationOutcome:
        vin = normalize(raw)
        if looks_like_chassis_number(vin):
            return ValidationOutcome(True, kind="japanese_chassis_number")

        if len(vin) != VIN_LENGTH:
            return ValidationOutcome(
                False, f"Invalid VIN length: must be exactly {VIN_LENGTH} characters (found {len(vin)})"
            )
        if any(char not in VIN_ALPHABET for char in vin):
            return ValidationOutcome(False, "Invalid VIN characters: contains I, O, Q or other invalid characters")

        first = vin[0]
        if first in EUROPE or first in ASIA or first in SOUTH_AMERICA:
            return ValidationOutcome(True, kind="vin")

        if first in CHECKSUM_REGIONS:
            if has_valid_check_digit(vin) or passes_lenient_structure(vin):
                return ValidationOutcome(True, kind="vin")
            return ValidationOutcome(False, "Invalid check digit for North American VIN")

        if has_valid_check_digit(vin):
            return ValidationOutcome(True, kind="vin")
        return ValidationOutcome(False, "Failed check digit validation")

    def is_valid(self, raw: str) -> bool:
        return self.validate(raw).is_valid


class ChassisNumberValidator:
    """Japanese domestic-market frame numbers: ``MODEL_CODE-SERIAL``, no check digit."""

    def validate(self, raw: str) -> ValidationOutcome:
        chassis = normalize(raw)
        if any(not (char.isascii() and (char.isalnum() or char == "-")) for char in chassis):
            return ValidationOutcome(False, "Invalid chassis number characters: contains invalid characters")

        length = len(chassis)
        if not CHASSIS_MIN_LENGTH <= length <= CHASSIS_MAX_LENGTH:
            return ValidationOutcome(
                False,
                f"Invalid chassis number length: must be between {CHASSIS_MIN_LENGTH} and "
                f"{CHASSIS_MAX_LENGTH} characters (found {length})",
            )

        hyphens = chassis.count("-")
        if hyphens == 0:
            return ValidationOutcome(False, "Invalid chassis number format: missing hyphen separator")
        if hyphens > 1:
            return ValidationOutcome(False, "Invalid chassis number format: multiple hyphens found")

        model_code, serial = chassis.split("-")
        if not 2 <= len(model_code) <= 6:
            return ValidationOutcome(
                False, f"Invalid model code length: must be between 2 and 6 characters (found {len(model_code)})"
            )
        if not _MODEL_CODE_RE.match(model_code):
            return ValidationOutcome(False, "Invalid model code: must contain only letters and numbers")
        if not 6 <= len(serial) <= 7:
            return ValidationOutcome(
                False, f"Invalid serial number length: must be between 6 and 7 digits (found {len(serial)})"
            )
        if not serial.isdigit():
            return ValidationOutcome(False, "Invalid serial number: must contain only digits")

        return ValidationOutcome(True, kind="japanese_chassis_number")

    def parse(self, raw: str) -> dict[str, str] | None:
        chassis = normalize(raw)
        if not self.validate(chassis).is_valid:
            return None
        model_code, serial = chassis.split("-")
        return {"model_code": model_code, "serial_number": serial}


_vin_validator = VinValidator()
_chassis_validator = ChassisNumberValidator()


def validate(raw: str) -> ValidationOutcome:
    return _vin_validator.validate(raw)


def parse_chassis_number(raw: str) -> dict[str, str] | None:
    return _chassis_validator.parse(raw)


def parse_identifier(raw: str) -> Identifier:
    """Validate ``raw`` and return the matching identifier variant.

    Raises ``MalformedIdentifierError`` when the input is neither a valid VIN
    nor a valid chassis number; malformed input is never coerced.
    """
    value = normalize(raw)
    outcome = validate(value)
    if not outcome.is_valid:
        raise MalformedIdentifierError(value, outcome.reason or "invalid identifier")
    if outcome.kind == "japanese_chassis_number":
        return ChassisNumber(value)
    return Vin(value)


def is_vin_shaped(raw: str) -> bool:
    candidate = normalize(raw)
    return len(candidate) == VIN_LENGTH and all(char in VIN_ALPHABET for char in candidate)


def detect_type(raw: str) -> str:
    if looks_like_chassis_number(raw):
        return "japanese_chassis_number"
    if is_vin_shaped(raw):
        return "vin"
    return "unknown"


def analyze_identifier(raw: str) -> dict[str, Any]:
    candidate = normalize(raw)
    length = len(candidate)
    has_hyphen = "-" in candidate
    reasons: list[str] = []

    chassis_score = 0
    if has_hyphen:
        chassis_score += 40
        reasons.append("Contains hyphen separator")
    if 9 <= length <= 12:
        chassis_score += 30
        reasons.append("Length is 9-12 characters")
    if looks_like_chassis_number(candidate):
        chassis_score += 30
        reasons.append("Matches Japanese chassis number pattern")

    vin_score = 0
    if length == VIN_LENGTH:
        vin_score += 50
        reasons.append("Length is exactly 17 characters")
    if not has_hyphen:
        vin_score += 20
        reasons.append("No hyphen (VIN format)")
    if is_vin_shaped(candidate):
        vin_score += 30
        reasons.append("Matches VIN character requirements")

    if chassis_score > vin_score:
        return {"type": "japanese_chassis_number", "confidence": min(100, chassis_score), "reasons": reasons}
    if vin_score > chassis_score:
        return {"type": "vin", "confidence": min(100, vin_score), "reasons": reasons}
    return {"type": "unknown", "confidence": 0, "reasons": reasons + ["Unable to determine identifier type"]}
