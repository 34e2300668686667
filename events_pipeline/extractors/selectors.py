"""Selector-based event extraction.

Configured selector bundles (per publisher family, optionally overridden per
source) are tried first. Without a bundle, or when the bundle finds
nothing, generic families are tried in a fixed order until one yields any
event: common event classes, tables, lists, then card-like containers.

Every field selector is an ordered priority list; the first candidate that
yields non-empty text wins. The lists are plain tuples so they can be
inspected and tested without a DOM.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError
from rich.console import Console

from events_pipeline.extractors.structured import clean_text, to_soup, truncate_description
from events_pipeline.models import ExtractionResult, RawExtractedEvent, SelectorBundle
from events_pipeline.normalizers.dates import parse_date, parse_date_range
from events_pipeline.normalizers.prices import parse_price

console = Console()

SELF = "&self"

CONFIGURED_CONFIDENCE = 0.9
COMMON_CONFIDENCE = 0.8
TABLE_CONFIDENCE = 0.75
LIST_CONFIDENCE = 0.7
CARD_CONFIDENCE = 0.6

MIN_CONTAINER_TEXT = 10
MAX_TITLE_LENGTH = 200
FIRST_LINE_TITLE_LENGTH = 100

COMMON_CONTAINER_SELECTORS = (
    ".event",
    ".veranstaltung",
    ".termin",
    ".agenda-item",
    '[class*="event"]',
    '[class*="veranstaltung"]',
    '[class*="termin"]',
    "article",
    ".post",
    ".entry",
    ".item",
)

CARD_CONTAINER_SELECTORS = (
    ".card",
    ".box",
    ".panel",
    ".tile",
    ".widget",
    '[class*="card"]',
    '[class*="box"]',
    '[class*="widget"]',
)

LIST_SELECTORS = ("ul", "ol")

# Appended after the configured candidates for each field
DEFAULT_FIELD_SELECTORS: dict[str, tuple[str, ...]] = {
    "title": ("h1", "h2", "h3", "h4", ".title", ".name", "a"),
    "date": ("time[datetime]", ".date", ".datum", SELF),
    "location": (".location", ".ort", ".venue", ".address"),
    "description": ("p", ".description", ".summary"),
    "organizer": (".organizer", ".veranstalter"),
    "price": (".price", ".preis", ".eintritt"),
}

FIELDS = tuple(DEFAULT_FIELD_SELECTORS)


def split_selectors(selector_list: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated selector list, respecting brackets and quotes."""
    if not selector_list:
        return ()

    parts: list[str] = []
    current: list[str] = []
    depth = 0
    quote: Optional[str] = None

    for char in selector_list:
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "[(":
            depth += 1
        elif char in "])":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    parts.append("".join(current).strip())
    return tuple(p for p in parts if p)


def field_candidates(bundle: Optional[SelectorBundle], field: str) -> tuple[str, ...]:
    """Ordered candidate selectors for one field: configured, then defaults."""
    configured = split_selectors(getattr(bundle, field, None)) if bundle else ()
    candidates: list[str] = []
    for selector in configured + DEFAULT_FIELD_SELECTORS.get(field, ()):
        if selector not in candidates:
            candidates.append(selector)
    return tuple(candidates)


def container_candidates(bundle: Optional[SelectorBundle]) -> tuple[str, ...]:
    return split_selectors(bundle.container) if bundle else ()


def _text(element: Tag) -> Optional[str]:
    return clean_text(element.get_text(" ", strip=True))


def select_text(container: Tag, candidates: Iterable[str]) -> Optional[str]:
    """First non-empty text among candidate selectors."""
    for selector in candidates:
        if selector == SELF:
            text = _text(container)
            if text:
                return text
            continue
        for element in container.select(selector):
            text = _text(element)
            if text:
                return text
    return None


def select_dates(
    container: Tag,
    candidates: Iterable[str],
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Start (and end) date; a time[datetime] attribute is preferred."""
    for element in container.select("time[datetime]"):
        start = parse_date(element["datetime"], date_format, now)
        if start:
            end = None
            times = container.select("time[datetime]")
            if len(times) > 1:
                end = parse_date(times[-1]["datetime"], date_format, now)
                if end is not None and end <= start:
                    end = None
            return start, end

    for selector in candidates:
        elements = [container] if selector == SELF else container.select(selector)
        for element in elements:
            text = _text(element)
            if not text:
                continue
            start, end = parse_date_range(text, date_format, now)
            if start:
                return start, end

    return None, None


def _first_link(container: Tag, page_url: Optional[str]) -> Optional[str]:
    link = container if container.name == "a" and container.has_attr("href") else container.find("a", href=True)
    if link is None:
        return None
    href = link["href"].strip()
    if not href or href.startswith(("#", "javascript:", "mailto:")):
        return None
    return urljoin(page_url, href) if page_url else href


def _first_image(container: Tag, page_url: Optional[str]) -> Optional[str]:
    image = container.find("img", src=True)
    if image is None:
        return None
    return urljoin(page_url, image["src"]) if page_url else image["src"]


def _first_line(container: Tag) -> Optional[str]:
    for line in container.get_text("\n").split("\n"):
        line = clean_text(line)
        if line:
            return line[:FIRST_LINE_TITLE_LENGTH]
    return None


def container_to_event(
    container: Tag,
    bundle: Optional[SelectorBundle] = None,
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
    title_from_text: bool = False,
) -> Optional[RawExtractedEvent]:
    """Build an event from one container, or None without title and date."""
    title = select_text(container, field_candidates(bundle, "title"))
    if title and len(title) > MAX_TITLE_LENGTH:
        title = None
    if not title and title_from_text:
        title = _first_line(container)

    start, end = select_dates(container, field_candidates(bundle, "date"), date_format, now)
    if not title or start is None:
        return None

    description = select_text(container, field_candidates(bundle, "description"))
    if description == title:
        description = None

    price = select_text(container, field_candidates(bundle, "price"))
    price_min, price_max, currency = parse_price(price)

    return RawExtractedEvent(
        title=title,
        description=truncate_description(description),
        start=start,
        end=end,
        location=select_text(container, field_candidates(bundle, "location")),
        organizer=select_text(container, field_candidates(bundle, "organizer")),
        url=_first_link(container, page_url),
        image_url=_first_image(container, page_url),
        price=price,
        price_min=price_min,
        price_max=price_max,
        currency=currency,
    )


def _outermost(elements: list[Tag]) -> list[Tag]:
    """Drop elements nested inside another element of the same match set."""
    matched = {id(e) for e in elements}
    return [e for e in elements if not any(id(parent) in matched for parent in e.parents)]


def _collect(
    containers: Iterable[Tag],
    build: Callable[[Tag], Optional[RawExtractedEvent]],
    errors: list[str],
) -> list[RawExtractedEvent]:
    events: list[RawExtractedEvent] = []
    seen: set[tuple[str, datetime]] = set()
    for container in containers:
        try:
            event = build(container)
        except (ValidationError, ValueError, TypeError) as e:
            errors.append(f"Invalid container <{container.name}>: {e}")
            continue
        if event is None:
            continue
        key = (event.title.lower(), event.start)
        if key not in seen:
            seen.add(key)
            events.append(event)
    return events


def extract_configured(
    soup: BeautifulSoup,
    bundle: SelectorBundle,
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Extract with a publisher's selector bundle."""
    errors: list[str] = []
    containers: list[Tag] = []
    for selector in container_candidates(bundle):
        containers.extend(soup.select(selector))

    events = _collect(
        _outermost(containers),
        lambda c: container_to_event(c, bundle, page_url, date_format, now),
        errors,
    )
    if not events:
        return ExtractionResult.empty(method="selectors", errors=errors)
    return ExtractionResult(events=events, confidence=CONFIGURED_CONFIDENCE, method="selectors", errors=errors)


def _generic_build(page_url, date_format, now) -> Callable[[Tag], Optional[RawExtractedEvent]]:
    def build(container: Tag) -> Optional[RawExtractedEvent]:
        text = _text(container)
        if not text or len(text) < MIN_CONTAINER_TEXT:
            return None
        return container_to_event(container, None, page_url, date_format, now, title_from_text=True)

    return build


def _extract_by_container_selectors(
    soup: BeautifulSoup,
    selectors: tuple[str, ...],
    build: Callable[[Tag], Optional[RawExtractedEvent]],
    errors: list[str],
) -> list[RawExtractedEvent]:
    """Stop at the first container selector that yields events."""
    for selector in selectors:
        events = _collect(_outermost(soup.select(selector)), build, errors)
        if events:
            return events
    return []


def extract_common(soup, page_url=None, date_format=None, now=None) -> ExtractionResult:
    errors: list[str] = []
    build = _generic_build(page_url, date_format, now)
    events = _extract_by_container_selectors(soup, COMMON_CONTAINER_SELECTORS, build, errors)
    if not events:
        return ExtractionResult.empty(method="generic:common", errors=errors)
    return ExtractionResult(events=events, confidence=COMMON_CONFIDENCE, method="generic:common", errors=errors)


def _row_to_event(row: Tag, page_url, date_format, now) -> Optional[RawExtractedEvent]:
    cells = [_text(cell) for cell in row.find_all("td")]
    if len(cells) < 2:
        return None

    # Columns: date, title, location, organizer. Some tables swap the first two.
    start, end = parse_date_range(cells[0], date_format, now)
    title = cells[1]
    if start is None:
        start, end = parse_date_range(cells[1], date_format, now)
        title = cells[0]
    if start is None or not title:
        return None

    return RawExtractedEvent(
        title=title[:MAX_TITLE_LENGTH],
        start=start,
        end=end,
        location=cells[2] if len(cells) > 2 else None,
        organizer=cells[3] if len(cells) > 3 else None,
        url=_first_link(row, page_url),
    )


def extract_tables(soup, page_url=None, date_format=None, now=None) -> ExtractionResult:
    errors: list[str] = []
    rows = [row for table in soup.find_all("table") for row in table.find_all("tr") if row.find("td")]
    events = _collect(rows, lambda r: _row_to_event(r, page_url, date_format, now), errors)
    if not events:
        return ExtractionResult.empty(method="generic:table", errors=errors)
    return ExtractionResult(events=events, confidence=TABLE_CONFIDENCE, method="generic:table", errors=errors)


def extract_lists(soup, page_url=None, date_format=None, now=None) -> ExtractionResult:
    errors: list[str] = []
    build = _generic_build(page_url, date_format, now)
    items = [
        item
        for selector in LIST_SELECTORS
        for element in soup.select(selector)
        for item in element.find_all("li", recursive=False)
    ]
    events = _collect(items, build, errors)
    if not events:
        return ExtractionResult.empty(method="generic:list", errors=errors)
    return ExtractionResult(events=events, confidence=LIST_CONFIDENCE, method="generic:list", errors=errors)


def extract_cards(soup, page_url=None, date_format=None, now=None) -> ExtractionResult:
    errors: list[str] = []
    build = _generic_build(page_url, date_format, now)
    events = _extract_by_container_selectors(soup, CARD_CONTAINER_SELECTORS, build, errors)
    if not events:
        return ExtractionResult.empty(method="generic:card", errors=errors)
    return ExtractionResult(events=events, confidence=CARD_CONFIDENCE, method="generic:card", errors=errors)


# Fixed order; the first family that yields any event wins
GENERIC_FAMILIES = (
    ("common", extract_common),
    ("table", extract_tables),
    ("list", extract_lists),
    ("card", extract_cards),
)


def extract_generic(
    document: Union[str, BeautifulSoup],
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Try generic families in order until one yields events."""
    soup = to_soup(document)
    errors: list[str] = []
    for _, extractor in GENERIC_FAMILIES:
        result = extractor(soup, page_url, date_format, now)
        errors.extend(result.errors)
        if result.found:
            result.errors = errors
            return result
    return ExtractionResult.empty(method="generic", errors=errors)


def extract_with_selectors(
    document: Union[str, BeautifulSoup],
    bundle: Optional[SelectorBundle] = None,
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Configured bundle first, generic families when it finds nothing."""
    soup = to_soup(document)
    errors: list[str] = []

    if bundle is not None and container_candidates(bundle):
        result = extract_configured(soup, bundle, page_url, date_format, now)
        if result.found:
            return result
        errors.extend(result.errors)
        console.print("[dim]Configured selectors found nothing, trying generic families[/dim]")

    result = extract_generic(soup, page_url, date_format, now)
    result.errors = errors + result.errors
    return result
