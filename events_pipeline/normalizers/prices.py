"""Swiss price text parser ("CHF 15.-", "Fr. 10.50", "Eintritt frei")."""

import re
from typing import Optional

DEFAULT_CURRENCY = "CHF"

# CHF 15 / Fr. 12.50 / SFr 8,00 / 20.- / 25 CHF
PRICE_PATTERN = re.compile(
    r"(?:\b(?:CHF|SFr\.?|Fr\.)\s*(?P<prefixed>\d+(?:[.,]\d{2})?)(?:\.?[-–])?)"
    r"|(?:(?<![\d.,])(?P<suffixed>\d+(?:[.,]\d{2})?)\s*(?:\.[-–]|CHF\b|Fr\.))",
    re.IGNORECASE,
)

FREE_TERMS = ("eintritt frei", "gratis", "kostenlos", "entrée libre", "entrée gratuite", "free")


def parse_price(text: Optional[str]) -> tuple[Optional[float], Optional[float], Optional[str]]:
    """Extract (min, max, currency) from price text.

    Returns (None, None, None) when no price is stated.
    """
    if not text:
        return None, None, None

    amounts = []
    for match in PRICE_PATTERN.finditer(text):
        value = match.group("prefixed") or match.group("suffixed")
        amounts.append(float(value.replace(",", ".")))

    if amounts:
        return min(amounts), max(amounts), DEFAULT_CURRENCY

    lowered = text.lower()
    if any(term in lowered for term in FREE_TERMS):
        return 0.0, 0.0, DEFAULT_CURRENCY

    return None, None, None
