"""Persistent store of canonical events keyed by uniqueness hash.

Upserts are idempotent: persisting an event whose hash is already stored
updates the stored record's mutable fields in place instead of inserting a
second copy.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from rich.console import Console

from events_pipeline.dedup import filter_by_distance
from events_pipeline.models import CanonicalEvent
from events_pipeline.models.event import utcnow

console = Console()

DEFAULT_STORE_FILE = Path(".cache") / "events.json"

PersistOutcome = Literal["created", "updated"]

# Fields refreshed when a known event is seen again
MUTABLE_FIELDS = (
    "description",
    "category",
    "end_time",
    "venue_name",
    "street",
    "postal_code",
    "city",
    "lat",
    "lon",
    "price_min",
    "price_max",
    "currency",
    "url",
    "image_url",
)


class EventStore:
    """Manages canonical events, optionally persisted to a JSON file."""

    def __init__(self, store_path: Optional[Path] = None):
        self.store_path = Path(store_path) if store_path else None
        self._events: dict[str, CanonicalEvent] = {}
        self._load()

    @classmethod
    def from_env(cls) -> "EventStore":
        """Store at ``EVENTS_STORE_PATH`` (default .cache/events.json)."""
        return cls(Path(os.environ.get("EVENTS_STORE_PATH", DEFAULT_STORE_FILE)))

    def _load(self) -> None:
        """Load store from disk."""
        if self.store_path is None or not self.store_path.exists():
            return
        try:
            with open(self.store_path, encoding="utf-8") as f:
                data = json.load(f)
            for event_data in data.get("events", []):
                event = CanonicalEvent.model_validate(event_data)
                self._events[event.uniqueness_hash] = event
            console.print(f"[dim]Loaded {len(self._events)} events from store[/dim]")
        except (OSError, ValueError) as e:
            console.print(f"[yellow]Failed to load event store: {e}[/yellow]")
            self._events = {}

    def save(self) -> None:
        """Save store to disk (no-op for in-memory stores)."""
        if self.store_path is None:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.store_path, "w", encoding="utf-8") as f:
            json.dump({
                "updated_at": utcnow().isoformat(),
                "events": [event.model_dump(mode="json") for event in self._events.values()],
            }, f, indent=2, ensure_ascii=False)

    def persist(self, event: CanonicalEvent, save: bool = True) -> PersistOutcome:
        """Insert a new event or update the stored one with the same hash.

        Returns "created" or "updated".
        """
        existing = self._events.get(event.uniqueness_hash)

        if existing is None:
            self._events[event.uniqueness_hash] = event.model_copy()
            outcome: PersistOutcome = "created"
        else:
            for field in MUTABLE_FIELDS:
                value = getattr(event, field)
                if value is not None:
                    setattr(existing, field, value)
            existing.updated_at = utcnow()
            outcome = "updated"

        if save:
            self.save()
        return outcome

    def get(self, uniqueness_hash: str) -> Optional[CanonicalEvent]:
        return self._events.get(uniqueness_hash)

    def get_all(self) -> list[CanonicalEvent]:
        """All events, ordered by start time."""
        return sorted(self._events.values(), key=lambda e: e.start_time)

    def __len__(self) -> int:
        return len(self._events)

    def query(
        self,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        max_km: Optional[float] = None,
        category: Optional[str] = None,
        start_after: Optional[datetime] = None,
    ) -> list[CanonicalEvent]:
        """Read path: events near a point, optionally by category and date.

        Events without coordinates are never excluded by distance.
        """
        events = self.get_all()
        if category:
            events = [e for e in events if e.category == category]
        if start_after:
            events = [e for e in events if e.start_time >= start_after]
        return filter_by_distance(events, lat, lon, max_km)

    def stats(self) -> dict:
        """Get store statistics."""
        events = list(self._events.values())
        now = utcnow()

        by_source: dict[str, int] = {}
        by_category: dict[str, int] = {}
        for event in events:
            by_source[event.source] = by_source.get(event.source, 0) + 1
            category = event.category or "uncategorized"
            by_category[category] = by_category.get(category, 0) + 1

        return {
            "total": len(events),
            "upcoming": sum(1 for e in events if e.start_time >= now),
            "with_coordinates": sum(1 for e in events if e.has_coordinates),
            "by_source": by_source,
            "by_category": by_category,
        }
