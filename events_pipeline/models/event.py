"""Data models for the event pipeline."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

MAX_DESCRIPTION_LENGTH = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GeoPoint(BaseModel):
    """Resolved coordinates for a place."""

    lat: float
    lon: float
    display_name: Optional[str] = None


class SelectorBundle(BaseModel):
    """CSS selectors for one publisher family.

    Every field is a comma-separated priority list: the first selector that
    yields non-empty text wins. ``&self`` refers to the container itself.
    """

    container: Optional[str] = None
    title: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    organizer: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None

    class Config:
        extra = "ignore"

    def merged_with(self, override: Optional["SelectorBundle"]) -> "SelectorBundle":
        """Return a bundle where every field set on ``override`` wins."""
        if override is None:
            return self.model_copy()
        values = self.model_dump()
        values.update(override.model_dump(exclude_none=True))
        return SelectorBundle(**values)

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class SourceConfiguration(BaseModel):
    """A publisher the pipeline scrapes. Read-only for the pipeline."""

    name: str
    event_page_url: str
    cms_type: Optional[str] = None  # publisher family tag, e.g. "govis"
    event_selectors: Optional[SelectorBundle] = None  # explicit override
    api_endpoint: Optional[str] = None
    date_format: Optional[str] = None  # e.g. "dd.mm.yyyy"
    language: str = "de"
    requires_javascript: bool = False

    source_id: str = "MUNICIPAL"
    country: str = "CH"
    max_distance_km: Optional[float] = None  # pre-persistence distance filter

    class Config:
        extra = "ignore"
        frozen = True


class RawExtractedEvent(BaseModel):
    """Event candidate as produced by an extractor. No identity yet."""

    title: str
    description: Optional[str] = None
    start: datetime
    end: Optional[datetime] = None

    # Location as published
    venue_name: Optional[str] = None
    location: Optional[str] = None  # free-text address
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    url: Optional[str] = None
    image_url: Optional[str] = None
    organizer: Optional[str] = None

    # Price: either free text or an offer range
    price: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: Optional[str] = None

    source_event_id: Optional[str] = None


class ExtractionResult(BaseModel):
    """Output of one extraction strategy for one document."""

    events: list[RawExtractedEvent] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    method: str = "none"
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, method: str = "none", errors: Optional[list[str]] = None) -> "ExtractionResult":
        return cls(events=[], confidence=0.0, method=method, errors=errors or [])

    @property
    def found(self) -> bool:
        return len(self.events) > 0


class CanonicalEvent(BaseModel):
    """Normalized, persisted event. Field names are a stable contract."""

    # Identity
    source: str
    source_event_id: Optional[str] = None
    uniqueness_hash: str

    # Content
    title: str
    title_norm: str
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    lang: str = "de"
    category: Optional[str] = None

    # Time
    start_time: datetime
    end_time: Optional[datetime] = None

    # Place
    venue_name: Optional[str] = None
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: str = "CH"
    lat: Optional[float] = None
    lon: Optional[float] = None

    # Price
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: Optional[str] = None

    # Links
    url: Optional[str] = None
    image_url: Optional[str] = None

    # Meta
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class Address(BaseModel):
    """Swiss postal address split into parts."""

    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: str = "CH"
    raw: Optional[str] = None


class SourceReport(BaseModel):
    """Outcome of processing one source in a run."""

    source: str
    method: str = "none"
    confidence: float = 0.0
    found: int = 0
    persisted: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0  # blocklisted, past or out of range
    detail_pages: int = 0  # detail pages fetched to complete listing events
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None and self.persisted == 0
