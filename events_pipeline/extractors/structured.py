"""Extract events from linked data (Schema.org JSON-LD and microdata)."""

import json
import re
from datetime import datetime
from typing import Any, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError
from rich.console import Console

from events_pipeline.models import MAX_DESCRIPTION_LENGTH, ExtractionResult, RawExtractedEvent
from events_pipeline.normalizers.address import format_swiss_address
from events_pipeline.normalizers.dates import parse_date

console = Console()

STRUCTURED_CONFIDENCE = 0.95
DEFAULT_CURRENCY = "CHF"

# Schema.org Event and the subtypes publishers actually use
EVENT_TYPES = {
    "Event",
    "Festival",
    "SocialEvent",
    "MusicEvent",
    "SportsEvent",
    "EducationEvent",
    "BusinessEvent",
    "ExhibitionEvent",
    "TheaterEvent",
    "ChildrensEvent",
    "FoodEvent",
    "DanceEvent",
    "LiteraryEvent",
    "ComedyEvent",
    "VisualArtsEvent",
    "SaleEvent",
    "ScreeningEvent",
}


def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; strip HTML if the text carries markup."""
    if text is None:
        return None
    if not isinstance(text, str):
        text = str(text)
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "lxml").get_text(" ")
    text = re.sub(r"\s+", " ", text).strip()
    return text or None


def truncate_description(text: Optional[str], max_length: int = MAX_DESCRIPTION_LENGTH) -> Optional[str]:
    text = clean_text(text)
    if text and len(text) > max_length:
        return text[: max_length - 3].rstrip() + "..."
    return text


def to_soup(document: Union[str, BeautifulSoup]) -> BeautifulSoup:
    if isinstance(document, BeautifulSoup):
        return document
    return BeautifulSoup(document, "lxml")


def _type_name(value: str) -> str:
    # "https://schema.org/MusicEvent", "schema:MusicEvent" -> "MusicEvent"
    return value.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]


def is_event_type(node_type: Any) -> bool:
    """Check a Schema.org @type (string or list) for Event or a subtype."""
    types = node_type if isinstance(node_type, list) else [node_type]
    for value in types:
        if isinstance(value, str) and _type_name(value) in EVENT_TYPES:
            return True
    return False


def split_json_objects(text: str) -> list[Any]:
    """Parse one or more JSON documents concatenated in a single string.

    Some CMS templates emit several objects into one script tag without
    wrapping them in a list.
    """
    decoder = json.JSONDecoder()
    documents = []
    index = 0
    text = text.strip()
    while index < len(text):
        # Skip separators between documents
        while index < len(text) and text[index] in " \t\r\n,;":
            index += 1
        if index >= len(text):
            break
        document, index = decoder.raw_decode(text, index)
        documents.append(document)
    return documents


def flatten_json_ld(data: Any) -> list[dict]:
    """Flatten lists and @graph containers into a flat list of nodes."""
    nodes: list[dict] = []
    if isinstance(data, list):
        for item in data:
            nodes.extend(flatten_json_ld(item))
    elif isinstance(data, dict):
        if "@graph" in data:
            nodes.extend(flatten_json_ld(data["@graph"]))
        if "@type" in data:
            nodes.append(data)
    return nodes


def extract_json_ld(soup: BeautifulSoup, errors: Optional[list[str]] = None) -> list[dict]:
    """Extract all JSON-LD nodes from the page."""
    nodes: list[dict] = []

    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
            documents = [data]
        except json.JSONDecodeError:
            try:
                documents = split_json_objects(raw)
            except json.JSONDecodeError as e:
                if errors is not None:
                    errors.append(f"Invalid JSON-LD block: {e.msg} at position {e.pos}")
                continue
        for document in documents:
            nodes.extend(flatten_json_ld(document))

    return nodes


def _microdata_value(element: Tag) -> Optional[str]:
    for attr in ("content", "datetime", "href", "src"):
        if element.has_attr(attr):
            return element[attr]
    return element.get_text(" ", strip=True)


def _microdata_owner(element: Tag) -> Optional[Tag]:
    for parent in element.parents:
        if isinstance(parent, Tag) and parent.has_attr("itemscope"):
            return parent
    return None


def microdata_item(element: Tag) -> dict:
    """Convert an ``itemscope`` element into a JSON-LD-shaped dict."""
    item: dict[str, Any] = {"@type": _type_name(element.get("itemtype", "") or "Thing")}
    for prop in element.find_all(attrs={"itemprop": True}):
        if _microdata_owner(prop) is not element:
            continue
        value = microdata_item(prop) if prop.has_attr("itemscope") else _microdata_value(prop)
        for name in prop["itemprop"].split():
            item.setdefault(name, value)
    return item


def extract_microdata(soup: BeautifulSoup) -> list[dict]:
    """Extract Event items declared with microdata."""
    items = []
    for element in soup.find_all(attrs={"itemscope": True, "itemtype": True}):
        item = microdata_item(element)
        if is_event_type(item["@type"]):
            items.append(item)
    return items


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text_field(node: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = _first(node.get(key))
        if isinstance(value, dict):
            value = value.get("name") or value.get("@value")
        text = clean_text(value) if value is not None else None
        if text:
            return text
    return None


def _image_url(image: Any) -> Optional[str]:
    image = _first(image)
    if isinstance(image, dict):
        image = image.get("url") or image.get("contentUrl")
    return image if isinstance(image, str) and image else None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return None


def _offers(node: dict) -> tuple[Optional[float], Optional[float], Optional[str]]:
    offers = node.get("offers")
    if not offers:
        return None, None, None
    offers = offers if isinstance(offers, list) else [offers]

    prices: list[float] = []
    currency = None
    for offer in offers:
        if not isinstance(offer, dict):
            continue
        for key in ("price", "lowPrice", "highPrice"):
            value = _to_float(offer.get(key))
            if value is not None:
                prices.append(value)
        currency = currency or offer.get("priceCurrency")

    if not prices:
        return None, None, None
    return min(prices), max(prices), currency or DEFAULT_CURRENCY


def _location_fields(node: dict) -> dict:
    fields: dict[str, Any] = {}
    location = _first(node.get("location"))

    if isinstance(location, str):
        fields["location"] = clean_text(location)
        return fields
    if not isinstance(location, dict):
        return fields
    if _type_name(str(location.get("@type", ""))) == "VirtualLocation":
        return fields

    fields["venue_name"] = clean_text(location.get("name"))

    address = _first(location.get("address"))
    if isinstance(address, dict):
        fields["street"] = clean_text(address.get("streetAddress"))
        fields["postal_code"] = clean_text(address.get("postalCode"))
        fields["city"] = clean_text(address.get("addressLocality"))
        fields["location"] = format_swiss_address(
            fields["street"], fields["postal_code"], fields["city"]
        )
    elif isinstance(address, str):
        fields["location"] = clean_text(address)

    geo = location.get("geo") or node.get("geo")
    if isinstance(geo, dict):
        fields["lat"] = _to_float(geo.get("latitude"))
        fields["lon"] = _to_float(geo.get("longitude"))

    return fields


def node_to_event(
    node: dict,
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[RawExtractedEvent]:
    """Convert a Schema.org Event node. Returns None without name or start."""
    title = _text_field(node, "name", "headline", "title")
    start_text = _first(node.get("startDate") or node.get("startTime"))
    start = parse_date(str(start_text), date_format, now) if start_text else None
    if not title or start is None:
        return None

    end_text = _first(node.get("endDate") or node.get("endTime"))
    end = parse_date(str(end_text), date_format, now) if end_text else None
    if end is not None and end < start:
        end = None

    url = _first(node.get("url"))
    if not isinstance(url, str) or not url:
        node_id = node.get("@id")
        url = node_id if isinstance(node_id, str) and node_id.startswith("http") else None
    if url and page_url:
        url = urljoin(page_url, url)

    image_url = _image_url(node.get("image"))
    if image_url and page_url:
        image_url = urljoin(page_url, image_url)

    price_min, price_max, currency = _offers(node)

    return RawExtractedEvent(
        title=title,
        description=truncate_description(_text_field(node, "description")),
        start=start,
        end=end,
        url=url,
        image_url=image_url,
        organizer=_text_field(node, "organizer"),
        price_min=price_min,
        price_max=price_max,
        currency=currency,
        **_location_fields(node),
    )


def extract_structured_events(
    document: Union[str, BeautifulSoup],
    page_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Extract events from JSON-LD and microdata.

    Nodes that fail to convert are skipped and recorded in ``errors``;
    their siblings are still returned.
    """
    soup = to_soup(document)
    errors: list[str] = []

    nodes = [n for n in extract_json_ld(soup, errors) if is_event_type(n.get("@type"))]
    nodes.extend(extract_microdata(soup))

    events: list[RawExtractedEvent] = []
    seen: set[tuple[str, datetime]] = set()

    for node in nodes:
        try:
            event = node_to_event(node, page_url, date_format, now)
        except (ValidationError, ValueError, TypeError) as e:
            errors.append(f"Invalid event node: {e}")
            continue

        if event is None:
            name = _text_field(node, "name", "headline", "title") or "<unnamed>"
            errors.append(f"Skipped event node without name or parseable start: {name}")
            continue

        key = (event.title.lower(), event.start)
        if key in seen:
            continue
        seen.add(key)
        events.append(event)

    if not events:
        return ExtractionResult.empty(method="structured", errors=errors)

    return ExtractionResult(
        events=events,
        confidence=STRUCTURED_CONFIDENCE,
        method="structured",
        errors=errors,
    )
