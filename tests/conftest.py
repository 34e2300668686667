"""Shared test fixtures and configuration."""

import json
from datetime import datetime
from typing import Callable, Optional

import httpx
import pytest

from events_pipeline.enrichers.geocoding import GeocodeCache, Geocoder, RateLimiter
from events_pipeline.models import RawExtractedEvent, SourceConfiguration
from events_pipeline.normalizers.dates import SWISS_TZ

SCHLIEREN = {"lat": "47.3960", "lon": "8.4470", "display_name": "Schlieren, Bezirk Dietikon, Zürich, Schweiz"}

HERBSTMARKT_JSON_LD = {
    "@type": "Event",
    "name": "Herbstmarkt",
    "startDate": "2025-09-20",
    "location": {
        "name": "Marktplatz",
        "address": {"postalCode": "8952", "addressLocality": "Schlieren"},
    },
}


def json_ld_page(*nodes: dict, body: str = "") -> str:
    """Minimal HTML page embedding one JSON-LD script per node."""
    scripts = "\n".join(
        f'<script type="application/ld+json">{json.dumps(node)}</script>' for node in nodes
    )
    return f"<html><head>{scripts}</head><body>{body}</body></html>"


@pytest.fixture
def now() -> datetime:
    """Reference time for the date plausibility window."""
    return datetime(2025, 9, 1, 10, 0, tzinfo=SWISS_TZ)


@pytest.fixture
def source() -> SourceConfiguration:
    return SourceConfiguration(
        name="Schlieren",
        event_page_url="https://www.schlieren.ch/veranstaltungen",
        cms_type="govis",
    )


@pytest.fixture
def herbstmarkt_html() -> str:
    return json_ld_page(HERBSTMARKT_JSON_LD)


@pytest.fixture
def raw_event() -> RawExtractedEvent:
    return RawExtractedEvent(
        title="Herbstmarkt",
        description="Markt mit regionalen Produkten",
        start=datetime(2025, 9, 20, 9, 0, tzinfo=SWISS_TZ),
        venue_name="Marktplatz",
        postal_code="8952",
        city="Schlieren",
    )


@pytest.fixture
def nominatim() -> Callable[..., tuple[httpx.MockTransport, list[httpx.Request]]]:
    """Factory for a fake Nominatim endpoint.

    ``results`` maps a substring of the query to the JSON list returned;
    queries matching nothing get an empty list.
    """
    def factory(results: Optional[dict[str, list]] = None):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            query = request.url.params.get("q", "")
            for needle, payload in (results or {}).items():
                if needle in query:
                    return httpx.Response(200, json=payload)
            return httpx.Response(200, json=[])

        return httpx.MockTransport(handler), requests

    return factory


@pytest.fixture
def offline_geocoder(nominatim) -> Callable[..., tuple[Geocoder, list[httpx.Request]]]:
    """Geocoder wired to the fake Nominatim with no rate-limit delay."""
    def factory(results: Optional[dict[str, list]] = None, cache: Optional[GeocodeCache] = None):
        transport, requests = nominatim(results)
        geocoder = Geocoder(
            cache=cache if cache is not None else GeocodeCache(),
            rate_limiter=RateLimiter(min_interval=0),
            transport=transport,
            email="test@example.org",
        )
        return geocoder, requests

    return factory
