"""Event identity and geospatial filtering.

The uniqueness hash fingerprints the identity-bearing fields of an event
(normalized title, start to the minute, coordinates to 4 decimals, about
11 m), so the same real event reported by two publishers or re-scraped on
the next run maps to one record.

Known limitation: two reports of one event whose geocoded coordinates differ
by more than the rounding step (geocoding jitter) still hash differently.
"""

import hashlib
import json
import math
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol, TypeVar

from events_pipeline.normalizers.dates import localize

EARTH_RADIUS_KM = 6371.0
COORDINATE_PRECISION = 4

# Schlieren ZH
DEFAULT_REFERENCE_LAT = 47.396
DEFAULT_REFERENCE_LON = 8.447
DEFAULT_MAX_DISTANCE_KM = 200.0


class HasCoordinates(Protocol):
    lat: Optional[float]
    lon: Optional[float]


T = TypeVar("T", bound=HasCoordinates)


def reference_point() -> tuple[float, float]:
    """Reference point for distance filtering, overridable via environment."""
    lat = float(os.environ.get("EVENTS_REFERENCE_LAT", DEFAULT_REFERENCE_LAT))
    lon = float(os.environ.get("EVENTS_REFERENCE_LON", DEFAULT_REFERENCE_LON))
    return lat, lon


def default_max_distance_km() -> float:
    return float(os.environ.get("EVENTS_MAX_DISTANCE_KM", DEFAULT_MAX_DISTANCE_KM))


def normalize_title(title: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace.

    >>> normalize_title("  Herbstmarkt - Schlieren!! ")
    'herbstmarkt schlieren'
    """
    text = re.sub(r"[^\w\s]", " ", title.lower())
    text = text.replace("_", " ")
    return re.sub(r"\s+", " ", text).strip()


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, COORDINATE_PRECISION)


def uniqueness_hash(
    title: str,
    start: datetime,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> str:
    """SHA-1 over normalized title, start minute (UTC) and rounded coordinates.

    The start is rounded to the nearest minute, half a minute rounds up.
    """
    start_utc = localize(start).astimezone(timezone.utc)
    start_minute = (start_utc + timedelta(seconds=30)).replace(second=0, microsecond=0)
    payload = {
        "title": normalize_title(title),
        "start": start_minute.strftime("%Y-%m-%dT%H:%M"),
        "lat": _round(lat),
        "lon": _round(lon),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def source_event_id(
    source: str,
    event_hash: str,
    explicit_id: Optional[str] = None,
    url: Optional[str] = None,
) -> str:
    """Publisher id, else the event URL, else ``<source>-<hash prefix>``."""
    if explicit_id:
        return explicit_id
    if url:
        return url
    return f"{source}-{event_hash[:8]}"


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def is_within_distance(item: HasCoordinates, lat: float, lon: float, max_km: float) -> bool:
    """True when within ``max_km``, or when the item has no coordinates.

    An unresolved location is not evidence of being far away.
    """
    if item.lat is None or item.lon is None:
        return True
    return haversine_km(lat, lon, item.lat, item.lon) <= max_km


def filter_by_distance(
    events: Iterable[T],
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    max_km: Optional[float] = None,
) -> list[T]:
    """Keep events within ``max_km`` of the reference point.

    Events lacking coordinates are always kept.
    """
    if lat is None or lon is None:
        lat, lon = reference_point()
    if max_km is None:
        max_km = default_max_distance_km()
    return [event for event in events if is_within_distance(event, lat, lon, max_km)]
