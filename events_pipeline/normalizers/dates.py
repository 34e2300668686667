"""Date parser for Swiss event listings.

Publishers write dates in several regional shapes:
- ISO 8601: 2025-09-15, 2025-09-15T19:30:00+02:00
- Swiss numeric: 15.09.2025, 15.9.25, 15/09/2025
- Month names (DE/FR): "Sa, 15. September 2025", "samedi 15 septembre 2025"
- Anything else python-dateutil can make sense of

Parsed dates outside a plausibility window around "now" are rejected, so a
phone number or a reference number that happens to look like a date does not
turn into an event in 1987.
"""

import re
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

SWISS_TZ = ZoneInfo("Europe/Zurich")

# Plausibility window
MAX_PAST_DAYS = 365
MAX_FUTURE_DAYS = 730

GERMAN_MONTHS = {
    "januar": 1, "jan": 1, "jänner": 1,
    "februar": 2, "feb": 2,
    "märz": 3, "maerz": 3, "mär": 3, "mrz": 3,
    "april": 4, "apr": 4,
    "mai": 5,
    "juni": 6, "jun": 6,
    "juli": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "oktober": 10, "okt": 10,
    "november": 11, "nov": 11,
    "dezember": 12, "dez": 12,
}

FRENCH_MONTHS = {
    "janvier": 1, "janv": 1,
    "février": 2, "fevrier": 2, "févr": 2, "fevr": 2,
    "mars": 3,
    "avril": 4, "avr": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7, "juil": 7,
    "août": 8, "aout": 8,
    "septembre": 9,
    "octobre": 10, "oct": 10,
    "novembre": 11,
    "décembre": 12, "decembre": 12, "déc": 12, "dec": 12,
}

MONTHS = {**GERMAN_MONTHS, **FRENCH_MONTHS}

_MONTH_ALTERNATION = "|".join(sorted((re.escape(m) for m in MONTHS), key=len, reverse=True))

ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
ISO_ANYWHERE_PATTERN = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)")

# 15.09.2025, 15.9.25, 15/09/2025
NUMERIC_PATTERN = re.compile(r"(?<!\d)(\d{1,2})\s?([./])\s?(\d{1,2})\s?\2\s?(\d{4}|\d{2})(?!\d)")

# [Weekday,] 15. September 2025 / 15 septembre 2025 / 1er octobre
MONTH_NAME_PATTERN = re.compile(
    r"(?<![\d.])(?P<day>\d{1,2})(?:\.|er)?\s*"
    r"(?P<month>" + _MONTH_ALTERNATION + r")\b\.?"
    r"(?:\s*(?P<year>\d{4}))?",
    re.IGNORECASE,
)

# 15.–17.09.2025, 15.-17.9.25
COMPACT_RANGE_PATTERN = re.compile(
    r"(?<!\d)(\d{1,2})\.?\s*[-–—]\s*(\d{1,2})\.(\d{1,2})\.(\d{4}|\d{2})(?!\d)"
)

# 19:30, 19.30 Uhr, 19h30. Must not be the start of another numeric date.
TIME_PATTERN = re.compile(r"(?<![\d.])([01]?\d|2[0-3])\s?[:.h]\s?([0-5]\d)(?!\.?\d)")
# 10 Uhr, 20h
HOUR_ONLY_PATTERN = re.compile(r"(?<![\d.:])([01]?\d|2[0-3])\s?(?:Uhr|h)\b", re.IGNORECASE)
TIME_LOOKAHEAD_CHARS = 40

# Cheap "does this look like it has a date in it" check for heuristics
DATE_SHAPE_PATTERN = re.compile(
    r"(?<!\d)\d{1,2}\.\s?\d{1,2}\.\s?(?:\d{4}|\d{2})(?!\d)"
    r"|(?<!\d)\d{4}-\d{2}-\d{2}(?!\d)"
    r"|(?<!\d)\d{1,2}(?:\.|er)?\s*(?:" + _MONTH_ALTERNATION + r")\b",
    re.IGNORECASE,
)

MAX_FALLBACK_LENGTH = 60


def _now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(SWISS_TZ)
    return localize(now)


def localize(dt: datetime) -> datetime:
    """Return ``dt`` as an aware Europe/Zurich datetime."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=SWISS_TZ)
    return dt.astimezone(SWISS_TZ)


def is_plausible(dt: datetime, now: Optional[datetime] = None) -> bool:
    """Check that a parsed date is within the plausibility window."""
    reference = _now(now)
    dt = localize(dt)
    return reference - timedelta(days=MAX_PAST_DAYS) <= dt <= reference + timedelta(days=MAX_FUTURE_DAYS)


def normalize_two_digit_year(year: int, now: Optional[datetime] = None) -> int:
    """Map a two-digit year to the century closest to the current year."""
    if year >= 100:
        return year
    current = _now(now).year
    candidates = [century + year for century in (
        (current // 100 - 1) * 100,
        (current // 100) * 100,
        (current // 100 + 1) * 100,
    )]
    return min(candidates, key=lambda y: abs(y - current))


def _build(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> Optional[datetime]:
    try:
        return datetime(year, month, day, hour, minute, tzinfo=SWISS_TZ)
    except ValueError:
        return None


def _find_time(text: str) -> Optional[tuple[int, int]]:
    window = text[:TIME_LOOKAHEAD_CHARS]
    match = TIME_PATTERN.search(window)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = HOUR_ONLY_PATTERN.search(window)
    if match:
        return int(match.group(1)), 0
    return None


def _with_time(date: datetime, trailing_text: str) -> datetime:
    found = _find_time(trailing_text)
    if not found:
        return date
    hour, minute = found
    return date.replace(hour=hour, minute=minute)


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def parse_iso(text: str) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime at the start of ``text``."""
    if not ISO_PATTERN.match(text):
        return None
    token = text.split()[0].rstrip(",;")
    try:
        parsed = date_parser.isoparse(token)
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.isoparse(token[:10])
        except (ValueError, OverflowError):
            return None
        token = token[:10]
    parsed = localize(parsed)
    if len(token) <= 10:
        parsed = _with_time(parsed, text[len(token):])
    return parsed


def parse_numeric(
    text: str,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Parse ``dd.mm.yyyy`` / ``dd.mm.yy`` (or the slash variants).

    Matches outside the plausibility window are skipped so that a later
    date in the same text still gets a chance.
    """
    month_first = bool(date_format and date_format.lower().startswith("mm"))

    for match in NUMERIC_PATTERN.finditer(text):
        first, _, second, year_text = match.groups()
        day, month = (int(second), int(first)) if month_first else (int(first), int(second))
        year = normalize_two_digit_year(int(year_text), now)
        date = _build(year, month, day)
        if date is None or not is_plausible(date, now):
            continue
        return _with_time(date, text[match.end():])

    return None


def _infer_year(month: int, day: int, now: Optional[datetime] = None) -> int:
    """Pick a year for a date written without one: the next occurrence."""
    reference = _now(now)
    candidate = _build(reference.year, month, day)
    if candidate and candidate < reference - timedelta(days=60):
        return reference.year + 1
    return reference.year


def parse_month_name(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse dates with German or French month names."""
    for match in MONTH_NAME_PATTERN.finditer(text):
        month = MONTHS.get(match.group("month").lower())
        if not month:
            continue
        day = int(match.group("day"))
        year_text = match.group("year")
        year = int(year_text) if year_text else _infer_year(month, day, now)
        date = _build(year, month, day)
        if date is None or not is_plausible(date, now):
            continue
        return _with_time(date, text[match.end():])

    return None


def parse_fallback(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Best-effort parse with python-dateutil (day-first, Swiss convention)."""
    if len(text) > MAX_FALLBACK_LENGTH or not re.search(r"\d", text):
        return None
    reference = _now(now)
    default = reference.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    try:
        parsed = date_parser.parse(text, dayfirst=True, default=default.replace(tzinfo=None))
    except (ValueError, OverflowError):
        return None
    return localize(parsed)


def parse_date(
    date_text: Optional[str],
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Parse a free-text date into an aware Europe/Zurich datetime.

    Tries, in order: ISO 8601, Swiss numeric, localized month names,
    dateutil. The first candidate inside the plausibility window wins.

    Args:
        date_text: Text containing a date, e.g. "Sa, 20. September 2025, 10 Uhr"
        date_format: Optional source hint such as "dd.mm.yyyy" or "mm/dd/yyyy"
        now: Reference time for the plausibility window (defaults to now)

    Returns:
        Parsed datetime, or None if nothing plausible was found.
    """
    if not date_text:
        return None

    cleaned = _clean(date_text)
    if not cleaned:
        return None

    attempts = (
        lambda: parse_iso(cleaned),
        lambda: parse_numeric(cleaned, date_format, now),
        lambda: parse_month_name(cleaned, now),
        lambda: parse_fallback(cleaned, now),
    )

    for attempt in attempts:
        parsed = attempt()
        if parsed is not None and is_plausible(parsed, now):
            return parsed

    return None


def find_dates(text: str, now: Optional[datetime] = None) -> list[datetime]:
    """Find every plausible date in a block of text, in order of appearance."""
    found: list[tuple[int, datetime]] = []
    cleaned = _clean(text)

    for match in ISO_ANYWHERE_PATTERN.finditer(cleaned):
        date = _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if date:
            found.append((match.start(), _with_time(date, cleaned[match.end():])))

    for match in NUMERIC_PATTERN.finditer(cleaned):
        day, _, month, year_text = match.groups()
        date = _build(normalize_two_digit_year(int(year_text), now), int(month), int(day))
        if date:
            found.append((match.start(), _with_time(date, cleaned[match.end():])))

    for match in MONTH_NAME_PATTERN.finditer(cleaned):
        month = MONTHS.get(match.group("month").lower())
        if not month:
            continue
        day = int(match.group("day"))
        year = int(match.group("year")) if match.group("year") else _infer_year(month, day, now)
        date = _build(year, month, day)
        if date:
            found.append((match.start("day"), _with_time(date, cleaned[match.end():])))

    found.sort(key=lambda item: item[0])
    return [date for _, date in found if is_plausible(date, now)]


def parse_date_range(
    date_text: Optional[str],
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Parse a start and an optional end date.

    Handles compact ranges ("15.–17.09.2025") and two full dates in one text
    ("15.09.2025 - 17.09.2025").
    """
    if not date_text:
        return None, None

    cleaned = _clean(date_text)

    compact = COMPACT_RANGE_PATTERN.search(cleaned)
    if compact:
        first_day, last_day, month, year_text = (int(g) for g in compact.groups())
        year = normalize_two_digit_year(year_text, now)
        start = _build(year, month, first_day)
        end = _build(year, month, last_day)
        if start and end and start <= end and is_plausible(start, now):
            return _with_time(start, cleaned[compact.end():]), end

    start = parse_date(cleaned, date_format, now)
    if start is None:
        return None, None

    end = None
    for date in find_dates(cleaned, now):
        if date.date() > start.date():
            end = date
            break

    return start, end


def contains_date(text: str) -> bool:
    """Return True if ``text`` contains a date-shaped substring."""
    return bool(DATE_SHAPE_PATTERN.search(text))
