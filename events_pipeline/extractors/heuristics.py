"""Pattern-based event extraction.

When neither linked data nor selectors find anything, scan the page for
elements whose text has both a date-shaped substring and an event keyword.
Matches nested inside each other collapse to the innermost element.
"""

from datetime import datetime
from typing import Optional, Union

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError
from rich.console import Console

from events_pipeline.extractors.structured import clean_text, to_soup, truncate_description
from events_pipeline.models import ExtractionResult, RawExtractedEvent
from events_pipeline.normalizers.dates import contains_date, parse_date_range

console = Console()

# Empirically tuned; keep as constants
HEURISTIC_CONFIDENCE = 0.5
HEURISTIC_KEYWORD_BONUS_CONFIDENCE = 0.6

# Event vocabulary (DE/FR/EN)
EVENT_KEYWORDS = (
    "veranstaltung",
    "event",
    "termin",
    "festival",
    "konzert",
    "workshop",
    "kurs",
    "meeting",
    "treffen",
    "markt",
    "führung",
    "ausstellung",
    "manifestation",
    "concert",
    "marché",
    "exposition",
    "spectacle",
    "atelier",
    "fête",
    "market",
    "exhibition",
)

# A match on one of these raises the result confidence
STRONG_KEYWORDS = ("festival", "konzert", "concert", "fête")

# Block and inline containers agenda markup uses; text-level tags such as
# b or a are left out so a title link never splits from its date
SCANNED_TAGS = ("article", "section", "div", "li", "tr", "td", "dt", "dd", "p", "span")
TITLE_SELECTORS = ("h1", "h2", "h3", "h4", ".title", "strong", "b", "a")
LOCATION_SELECTORS = (".location", ".ort", ".venue", ".address")
DESCRIPTION_SELECTORS = ("p", ".description", ".summary")

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 1500
MAX_TITLE_LENGTH = 200
FIRST_LINE_TITLE_LENGTH = 100


def has_event_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in EVENT_KEYWORDS)


def has_strong_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in STRONG_KEYWORDS)


def is_candidate(text: str) -> bool:
    """Date-shaped substring plus an event keyword."""
    return MIN_TEXT_LENGTH <= len(text) <= MAX_TEXT_LENGTH and contains_date(text) and has_event_keyword(text)


def find_candidate_elements(soup: BeautifulSoup) -> list[Tag]:
    """Matching elements, collapsed to the innermost of each nested chain."""
    for element in soup(["script", "style", "noscript", "head"]):
        element.decompose()

    matches = []
    for element in soup.find_all(SCANNED_TAGS):
        text = clean_text(element.get_text(" ")) or ""
        if is_candidate(text):
            matches.append(element)

    matched = {id(m) for m in matches}
    innermost = []
    for element in matches:
        has_matching_descendant = any(
            id(descendant) in matched
            for descendant in element.find_all(SCANNED_TAGS)
        )
        if not has_matching_descendant:
            innermost.append(element)
    return innermost


def _select_text(element: Tag, selectors: tuple[str, ...]) -> Optional[str]:
    for selector in selectors:
        for found in element.select(selector):
            text = clean_text(found.get_text(" "))
            if text:
                return text
    return None


def _title(element: Tag) -> Optional[str]:
    title = _select_text(element, TITLE_SELECTORS)
    if title and len(title) <= MAX_TITLE_LENGTH:
        return title
    for line in element.get_text("\n").split("\n"):
        line = clean_text(line)
        if line:
            return line[:FIRST_LINE_TITLE_LENGTH]
    return None


def element_to_event(
    element: Tag,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[RawExtractedEvent]:
    text = clean_text(element.get_text(" ")) or ""
    start, end = parse_date_range(text, date_format, now)
    title = _title(element)
    if start is None or not title:
        return None

    description = _select_text(element, DESCRIPTION_SELECTORS)
    if description == title:
        description = None

    return RawExtractedEvent(
        title=title,
        description=truncate_description(description),
        start=start,
        end=end,
        location=_select_text(element, LOCATION_SELECTORS),
    )


def extract_heuristic_events(
    document: Union[str, BeautifulSoup],
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Extract events by date + keyword patterns."""
    # Work on a private copy: candidate scanning strips scripts and styles
    soup = BeautifulSoup(str(document), "lxml") if isinstance(document, BeautifulSoup) else to_soup(document)
    errors: list[str] = []
    events: list[RawExtractedEvent] = []
    seen: set[tuple[str, datetime]] = set()
    strong = False

    for element in find_candidate_elements(soup):
        try:
            event = element_to_event(element, date_format, now)
        except (ValidationError, ValueError, TypeError) as e:
            errors.append(f"Invalid heuristic match <{element.name}>: {e}")
            continue
        if event is None:
            continue
        key = (event.title.lower(), event.start)
        if key in seen:
            continue
        seen.add(key)
        events.append(event)
        strong = strong or has_strong_keyword(element.get_text(" "))

    if not events:
        return ExtractionResult.empty(method="heuristic", errors=errors)

    confidence = HEURISTIC_KEYWORD_BONUS_CONFIDENCE if strong else HEURISTIC_CONFIDENCE
    return ExtractionResult(events=events, confidence=confidence, method="heuristic", errors=errors)
