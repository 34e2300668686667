"""Data models for the event pipeline."""

from events_pipeline.models.event import (
    MAX_DESCRIPTION_LENGTH,
    Address,
    CanonicalEvent,
    ExtractionResult,
    GeoPoint,
    RawExtractedEvent,
    SelectorBundle,
    SourceConfiguration,
    SourceReport,
)

__all__ = [
    "MAX_DESCRIPTION_LENGTH",
    "Address",
    "CanonicalEvent",
    "ExtractionResult",
    "GeoPoint",
    "RawExtractedEvent",
    "SelectorBundle",
    "SourceConfiguration",
    "SourceReport",
]
