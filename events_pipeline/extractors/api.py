"""Extract events from publisher REST payloads (OneGov, Localcities, custom)."""

import json
from datetime import datetime
from typing import Any, Optional, Union
from urllib.parse import urljoin

from pydantic import ValidationError
from rich.console import Console

from events_pipeline.extractors.structured import clean_text, truncate_description
from events_pipeline.models import ExtractionResult, RawExtractedEvent
from events_pipeline.normalizers.dates import parse_date
from events_pipeline.normalizers.prices import parse_price

console = Console()

API_CONFIDENCE = 0.9

# Field names vary per publisher; first present key wins
LIST_KEYS = ("events", "items", "results", "data")
TITLE_KEYS = ("title", "name", "subject", "event_name")
START_KEYS = ("start_date", "startDate", "start", "date", "event_date")
END_KEYS = ("end_date", "endDate", "end", "finishDate")
DESCRIPTION_KEYS = ("description", "body", "text", "lead")
VENUE_KEYS = ("venue", "location", "place")
ADDRESS_KEYS = ("address", "location_text")
ORGANIZER_KEYS = ("organizer", "organization", "organiser")
PRICE_KEYS = ("price", "cost", "fee")
URL_KEYS = ("url", "link", "event_url")
IMAGE_KEYS = ("image", "image_url", "thumbnail")
ID_KEYS = ("id", "uuid", "event_id")


def find_event_list(payload: Any) -> list:
    """Event list at the top level or under a well-known key."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            # {"data": {"events": [...]}}
            if isinstance(value, dict):
                nested = find_event_list(value)
                if nested:
                    return nested
    return []


def _pick(item: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name") or value.get("title") or value.get("text")
    if isinstance(value, list):
        value = value[0] if value else None
    return clean_text(value) if value is not None else None


def _coordinates(item: dict) -> tuple[Optional[float], Optional[float]]:
    sources = [item]
    for key in VENUE_KEYS:
        if isinstance(item.get(key), dict):
            sources.append(item[key])
    for source in sources:
        lat = source.get("lat", source.get("latitude"))
        lon = source.get("lon", source.get("lng", source.get("longitude")))
        if lat is not None and lon is not None:
            try:
                return float(lat), float(lon)
            except (TypeError, ValueError):
                continue
    return None, None


def item_to_event(
    item: dict,
    base_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[RawExtractedEvent]:
    """Map one payload item. Returns None without title or start."""
    title = _as_text(_pick(item, TITLE_KEYS))
    start_value = _pick(item, START_KEYS)
    start = parse_date(str(start_value), date_format, now) if start_value else None
    if not title or start is None:
        return None

    end_value = _pick(item, END_KEYS)
    end = parse_date(str(end_value), date_format, now) if end_value else None
    if end is not None and end < start:
        end = None

    venue = _pick(item, VENUE_KEYS)
    address = _pick(item, ADDRESS_KEYS)
    street = postal_code = city = None
    if isinstance(address, dict):
        street = clean_text(address.get("street") or address.get("streetAddress"))
        postal_code = clean_text(address.get("zip") or address.get("postal_code") or address.get("postalCode"))
        city = clean_text(address.get("city") or address.get("locality") or address.get("addressLocality"))
        address = None

    price = _pick(item, PRICE_KEYS)
    price_text = clean_text(str(price)) if price is not None else None
    price_min, price_max, currency = parse_price(price_text)
    if price_min is None and isinstance(price, (int, float)):
        price_min = price_max = float(price)
        currency = "CHF"

    url = _as_text(_pick(item, URL_KEYS))
    if url and base_url:
        url = urljoin(base_url, url)

    image = _pick(item, IMAGE_KEYS)
    if isinstance(image, dict):
        image = image.get("url") or image.get("src")

    lat, lon = _coordinates(item)
    item_id = _pick(item, ID_KEYS)

    return RawExtractedEvent(
        title=title,
        description=truncate_description(_as_text(_pick(item, DESCRIPTION_KEYS))),
        start=start,
        end=end,
        venue_name=_as_text(venue),
        location=_as_text(address),
        street=street,
        postal_code=postal_code,
        city=city,
        lat=lat,
        lon=lon,
        url=url,
        image_url=image if isinstance(image, str) and image else None,
        organizer=_as_text(_pick(item, ORGANIZER_KEYS)),
        price=price_text,
        price_min=price_min,
        price_max=price_max,
        currency=currency,
        source_event_id=str(item_id) if item_id is not None else None,
    )


def extract_api_events(
    payload: Union[str, bytes, dict, list],
    base_url: Optional[str] = None,
    date_format: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Extract events from a JSON payload (raw text or already decoded)."""
    errors: list[str] = []

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            return ExtractionResult.empty(method="api", errors=[f"Invalid JSON payload: {e.msg}"])

    events: list[RawExtractedEvent] = []
    for index, item in enumerate(find_event_list(payload)):
        if not isinstance(item, dict):
            errors.append(f"Skipped non-object item at index {index}")
            continue
        try:
            event = item_to_event(item, base_url, date_format, now)
        except (ValidationError, ValueError, TypeError) as e:
            errors.append(f"Invalid item at index {index}: {e}")
            continue
        if event is None:
            errors.append(f"Skipped item at index {index} without title or parseable start")
            continue
        events.append(event)

    if not events:
        return ExtractionResult.empty(method="api", errors=errors)

    return ExtractionResult(events=events, confidence=API_CONFIDENCE, method="api", errors=errors)
