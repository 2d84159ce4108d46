from __future__ import annotations

import re
from typing import Any, Mapping


_AUTO_STYLE_RE = re.compile(r"(\d+[-\s]?speed|cvt|ecvt)", re.IGNORECASE)
_MANUAL_STYLE_RE = re.compile(r"(\d+[-\s]?speed)", re.IGNORECASE)


def split_transmission(text: str) -> tuple[str, str | None]:
    """Normalize a free-text transmission into (type, style)."""
    lowered = text.lower()
    if "automatic" in lowered:
        match = _AUTO_STYLE_RE.search(text)
        return "Automatic", match.group(1) if match else None
    if "manual" in lowered:
        match = _MANUAL_STYLE_RE.search(text)
        return "Manual", match.group(1) if match else None
    return text, None


def infer_transmission(vehicle: Mapping[str, Any], v6_markers: tuple[str, ...] = ("V6",)) -> tuple[str | None, str | None]:
    make = str(vehicle.get("make") or "")
    model = str(vehicle.get("model") or "")
    year = str(vehicle.get("year") or "")
    trim = str(vehicle.get("trim") or "")
    engine = str(vehicle.get("engine") or "")

    if not make or not year:
        return None, None
    year_int = int(year) if year.isdigit() else 0
    if year_int < 1980 or year_int > 2030:
        return None, None

    make_l = make.lower()
    if "toyota" in make_l and "camry" in model.lower():
        if 2012 <= year_int <= 2017:
            haystack = f"{trim} {engine}".lower()
            if any(marker.lower() in haystack for marker in v6_markers):
                return "Automatic", "6-Speed"
            return "Automatic", "CVT"
        if year_int >= 2018:
            return "Automatic", "8-Speed"

    if year_int >= 2015:
        if "toyota" in make_l or "honda" in make_l:
            return "Automatic", "CVT/6-Speed"
        if any(brand in make_l for brand in ("bmw", "mercedes", "audi", "lexus")):
            return "Automatic", "8-Speed"
        return "Automatic", "6-Speed"
    if year_int >= 2005:
        return "Automatic", "5-Speed"
    return "Automatic", "4-Speed"


def apply_transmission(vehicle: dict[str, Any], v6_markers: tuple[str, ...] = ("V6",)) -> None:
    current = vehicle.get("transmission")
    if current:
        if not vehicle.get("transmission_style"):
            kind, style = split_transmission(str(current))
            vehicle["transmission"] = kind
            vehicle["transmission_style"] = style
        return
    kind, style = infer_transmission(vehicle, v6_markers)
    vehicle["transmission"] = kind
    vehicle["transmission_style"] = style
