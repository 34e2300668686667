"""Document → event extraction engine.

Turns a fetched publisher page or API payload into candidate events using
multiple strategies:
   - REST API payloads (OneGov Cloud, Localcities, custom endpoints)
   - Schema.org JSON-LD / microdata
   - Publisher-family selector bundles, then generic selector families
   - HTML heuristics (date patterns + event keywords)
The most confident non-empty result wins.
"""

from events_pipeline.extractors.api import extract_api_events
from events_pipeline.extractors.fetch import FetchError, fetch_document, fetch_json
from events_pipeline.extractors.heuristics import extract_heuristic_events
from events_pipeline.extractors.pipeline import extract_events, select_best
from events_pipeline.extractors.platforms import (
    PUBLISHER_FAMILIES,
    UNKNOWN_FAMILY,
    PublisherFamily,
    detect_cms_type,
    get_family,
)
from events_pipeline.extractors.selectors import extract_with_selectors
from events_pipeline.extractors.structured import extract_structured_events

__all__ = [
    "FetchError",
    "PUBLISHER_FAMILIES",
    "UNKNOWN_FAMILY",
    "PublisherFamily",
    "detect_cms_type",
    "extract_api_events",
    "extract_events",
    "extract_heuristic_events",
    "extract_structured_events",
    "extract_with_selectors",
    "fetch_document",
    "fetch_json",
    "get_family",
    "select_best",
]
