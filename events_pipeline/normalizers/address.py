"""Swiss address parser.

Handles formats like:
- "Bahnhofstrasse 1, 8952 Schlieren"
- "Marktplatz, Dorfstrasse 3, CH-8001 Zürich, Schweiz"
- "Rue du Marché 4 1204 Genève"
- "Gemeindehaus, Schlieren"
"""

import re
from typing import Optional

from events_pipeline.models import Address

# 4-digit Swiss postal code (no leading zero) followed by the locality
POSTAL_CODE_PATTERN = re.compile(
    r"(?<!\d)(?:CH\s?-?\s?)?([1-9]\d{3})\s+([^\W\d_][^\d,]*)",
    re.IGNORECASE,
)

COUNTRY_TOKENS = {
    "ch", "schweiz", "switzerland", "suisse", "svizzera", "svizra",
    "die schweiz", "la suisse",
}


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip(" .;")


def _is_country(part: str) -> bool:
    return part.lower().strip(" .") in COUNTRY_TOKENS


def parse_address(text: Optional[str]) -> Address:
    """Parse a free-text Swiss address into street, postal code and city.

    A postal code followed by a locality is the strongest signal; whatever
    precedes it is the street. Without one, the last comma-separated
    segment is the city and the rest is the street.
    """
    if not text:
        return Address(raw=text)

    raw = _clean(text)
    address = Address(raw=raw)

    parts = [_clean(p) for p in raw.split(",")]
    parts = [p for p in parts if p and not _is_country(p)]
    if not parts:
        return address

    # Postal code: prefer the one closest to the end
    for index in range(len(parts) - 1, -1, -1):
        match = POSTAL_CODE_PATTERN.search(parts[index])
        if not match:
            continue

        address.postal_code = match.group(1)
        address.city = _clean(match.group(2))

        street_parts = parts[:index]
        before = _clean(parts[index][:match.start()])
        if before:
            street_parts.append(before)
        if street_parts:
            address.street = ", ".join(street_parts)
        return address

    if len(parts) >= 2:
        address.street = ", ".join(parts[:-1])
        address.city = parts[-1]
    else:
        address.city = parts[0]

    return address


def format_swiss_address(
    street: Optional[str] = None,
    postal_code: Optional[str] = None,
    city: Optional[str] = None,
) -> Optional[str]:
    """Build a geocoding query from address parts.

    >>> format_swiss_address("Bahnhofstrasse 1", "8952", "Schlieren")
    'Bahnhofstrasse 1, 8952 Schlieren'
    """
    locality = " ".join(p for p in (postal_code, city) if p)
    parts = [p.strip() for p in (street, locality) if p and p.strip()]
    if not parts:
        return None
    return ", ".join(parts)
