"""Parsing de direcciones de NYC para consultas por dirección (OATH/DSNY).

"68 Perry Street, New York, NY 10014" -> ("68", "PERRY ST", "MANHATTAN")
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

BOROUGHS = ("MANHATTAN", "BROOKLYN", "QUEENS", "BRONX", "STATEN ISLAND")

_CITY_TO_BOROUGH = {
    "NEW YORK": "MANHATTAN",
    "MANHATTAN": "MANHATTAN",
    "BROOKLYN": "BROOKLYN",
    "BRONX": "BRONX",
    "THE BRONX": "BRONX",
    "STATEN ISLAND": "STATEN ISLAND",
    "QUEENS": "QUEENS",
    "LONG ISLAND CITY": "QUEENS",
    "ASTORIA": "QUEENS",
    "FLUSHING": "QUEENS",
    "JAMAICA": "QUEENS",
}

# Prefijos de ZIP (3 dígitos) -> borough
_ZIP_PREFIX_TO_BOROUGH = {
    "100": "MANHATTAN",
    "101": "MANHATTAN",
    "102": "MANHATTAN",
    "103": "STATEN ISLAND",
    "104": "BRONX",
    "112": "BROOKLYN",
    "110": "QUEENS",
    "111": "QUEENS",
    "113": "QUEENS",
    "114": "QUEENS",
    "116": "QUEENS",
}

STREET_SUFFIXES = {
    "STREET": "ST",
    "AVENUE": "AVE",
    "AV": "AVE",
    "BOULEVARD": "BLVD",
    "PLACE": "PL",
    "ROAD": "RD",
    "DRIVE": "DR",
    "LANE": "LN",
    "COURT": "CT",
    "TERRACE": "TER",
    "PARKWAY": "PKWY",
    "SQUARE": "SQ",
    "EXPRESSWAY": "EXPY",
    "HIGHWAY": "HWY",
}

_DIRECTIONS = {"EAST": "E", "WEST": "W", "NORTH": "N", "SOUTH": "S"}

_HOUSE_RE = re.compile(r"^\s*(\d+[A-Z]?(?:-\d+)?)\s+(.+)$", re.IGNORECASE)
_ZIP_RE = re.compile(r"\b(\d{5})(?:-\d{4})?\b")


@dataclass(frozen=True)
class AddressComponents:
    house_number: str
    street_name: str
    borough: Optional[str]


def normalize_street(street: str) -> str:
    """Upper-case, colapsa espacios y abrevia dirección y sufijo."""
    words = re.sub(r"[.,]", " ", street).upper().split()
    if not words:
        return ""
    if len(words) > 1 and words[0] in _DIRECTIONS:
        words[0] = _DIRECTIONS[words[0]]
    if len(words) > 1 and words[-1] in STREET_SUFFIXES:
        words[-1] = STREET_SUFFIXES[words[-1]]
    return " ".join(words)


def detect_borough(address: str) -> Optional[str]:
    upper = address.upper()
    parts = [p.strip() for p in upper.split(",")]
    for part in parts[1:]:
        # "NEW YORK NY 10014" -> "NEW YORK"
        city = re.sub(r"\b[A-Z]{2}\b\s*\d{5}(-\d{4})?$", "", part).strip()
        city = re.sub(r"\d{5}(-\d{4})?$", "", city).strip()
        if city in _CITY_TO_BOROUGH:
            return _CITY_TO_BOROUGH[city]
    for name in BOROUGHS:
        if re.search(rf"\b{name}\b", upper):
            return name
    zip_match = _ZIP_RE.search(upper)
    if zip_match:
        return _ZIP_PREFIX_TO_BOROUGH.get(zip_match.group(1)[:3])
    return None


def parse_address(address: str) -> Optional[AddressComponents]:
    """Descompone una dirección en número, calle y borough.

    Returns:
        None si la dirección no empieza con número de casa
    """
    if not address:
        return None
    street_part = address.split(",")[0]
    match = _HOUSE_RE.match(street_part)
    if not match:
        return None
    house, street = match.group(1).upper(), normalize_street(match.group(2))
    if not street:
        return None
    return AddressComponents(
        house_number=house,
        street_name=street,
        borough=detect_borough(address),
    )
