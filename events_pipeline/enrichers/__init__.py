"""Enrichment of extracted events with resolved coordinates."""

from events_pipeline.enrichers.geocoding import (
    GeocodeCache,
    Geocoder,
    RateLimiter,
    normalize_query,
)

__all__ = [
    "GeocodeCache",
    "Geocoder",
    "RateLimiter",
    "normalize_query",
]
