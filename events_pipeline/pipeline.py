"""Main pipeline orchestration.

For each source: fetch the API payload and/or event page, pick the best
extraction, then parse, geocode, classify, canonicalize and upsert each
event. Listing events that lack a place or description are completed from
their detail pages, visited in link order with a pacing delay and a
per-page timeout. Sources are processed one at a time with a pacing delay
between them; a failure or timeout in one source is recorded in its report
and the run moves on.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from events_pipeline.dedup import is_within_distance, normalize_title, reference_point
from events_pipeline.dedup import source_event_id as derive_source_event_id
from events_pipeline.dedup import uniqueness_hash
from events_pipeline.enrichers.geocoding import Geocoder
from events_pipeline.extractors.fetch import FetchError, fetch_document, fetch_json
from events_pipeline.extractors.pipeline import extract_events
from events_pipeline.extractors.platforms import get_family, resolve_api_endpoint
from events_pipeline.extractors.structured import extract_structured_events, truncate_description
from events_pipeline.models import (
    Address,
    CanonicalEvent,
    ExtractionResult,
    GeoPoint,
    RawExtractedEvent,
    SourceConfiguration,
    SourceReport,
)
from events_pipeline.normalizers.address import format_swiss_address, parse_address
from events_pipeline.normalizers.categories import classify, is_blocklisted
from events_pipeline.normalizers.dates import SWISS_TZ, localize
from events_pipeline.store import EventStore

console = Console()

SOURCE_DELAY_SECONDS = 2.0
SOURCE_TIMEOUT_SECONDS = 120.0
DETAIL_DELAY_SECONDS = 2.0
DETAIL_TIMEOUT_SECONDS = 30.0
MAX_DETAIL_PAGES = 25

# Fields a detail page may fill in; title and start always come from the listing
DETAIL_FIELDS = (
    "description",
    "end",
    "venue_name",
    "location",
    "street",
    "postal_code",
    "city",
    "lat",
    "lon",
    "image_url",
    "organizer",
    "price",
    "price_min",
    "price_max",
    "currency",
)


def canonicalize(
    raw: RawExtractedEvent,
    source: str,
    coordinates: Optional[GeoPoint] = None,
    category: Optional[str] = None,
    address: Optional[Address] = None,
    lang: str = "de",
    country: str = "CH",
) -> Optional[CanonicalEvent]:
    """Build the canonical record for a resolved event.

    Returns None for blocklisted (administrative) events and events without
    a usable title.
    """
    title = raw.title.strip()
    if not title or not normalize_title(title):
        return None
    if is_blocklisted(title, raw.description):
        return None

    address = address or Address()
    lat = coordinates.lat if coordinates else raw.lat
    lon = coordinates.lon if coordinates else raw.lon

    event_hash = uniqueness_hash(title, raw.start, lat, lon)

    return CanonicalEvent(
        source=source,
        source_event_id=derive_source_event_id(source, event_hash, raw.source_event_id, raw.url),
        uniqueness_hash=event_hash,
        title=title,
        title_norm=normalize_title(title),
        description=truncate_description(raw.description),
        lang=lang,
        category=category,
        start_time=localize(raw.start),
        end_time=localize(raw.end) if raw.end else None,
        venue_name=raw.venue_name,
        street=raw.street or address.street,
        postal_code=raw.postal_code or address.postal_code,
        city=raw.city or address.city,
        country=country,
        lat=lat,
        lon=lon,
        price_min=raw.price_min,
        price_max=raw.price_max,
        currency=raw.currency,
        url=raw.url,
        image_url=raw.image_url,
    )


def needs_detail(raw: RawExtractedEvent) -> bool:
    """True when the listing left out the place or the description."""
    has_place = any((raw.location, raw.venue_name, raw.city, raw.postal_code, raw.lat is not None))
    return not has_place or not raw.description


def detail_targets(
    events: list[RawExtractedEvent],
    page_url: str,
    limit: int = MAX_DETAIL_PAGES,
) -> dict[str, list[int]]:
    """Detail page URL -> indices of the events linking to it.

    Keeps the order in which links were discovered on the listing page.
    """
    listing = page_url.rstrip("/")
    targets: dict[str, list[int]] = {}
    for index, raw in enumerate(events):
        url = raw.url
        if not url or not url.startswith(("http://", "https://")):
            continue
        if url.split("#")[0].rstrip("/") == listing or not needs_detail(raw):
            continue
        if url not in targets and len(targets) >= limit:
            continue
        targets.setdefault(url, []).append(index)
    return targets


def match_detail(
    raw: RawExtractedEvent,
    candidates: list[RawExtractedEvent],
) -> Optional[RawExtractedEvent]:
    """Pick the detail page event describing ``raw``.

    Same normalized title wins; a page with a single event is taken as is.
    """
    title = normalize_title(raw.title)
    for candidate in candidates:
        if normalize_title(candidate.title) == title:
            return candidate
    if len(candidates) == 1:
        return candidates[0]
    return None


def merge_detail(raw: RawExtractedEvent, detail: RawExtractedEvent) -> RawExtractedEvent:
    """Fill fields the listing left empty from the detail page event."""
    updates = {
        field: getattr(detail, field)
        for field in DETAIL_FIELDS
        if getattr(raw, field) is None and getattr(detail, field) is not None
    }
    if "end" in updates and localize(updates["end"]) < localize(raw.start):
        del updates["end"]
    return raw.model_copy(update=updates) if updates else raw


class EventPipeline:
    """Runs sources through extraction, resolution and persistence.

    The geocoder (with its cache and rate limiter) and the HTTP client are
    shared by every source of the run.
    """

    def __init__(
        self,
        store: Optional[EventStore] = None,
        geocoder: Optional[Geocoder] = None,
        client: Optional[httpx.AsyncClient] = None,
        geocode: bool = True,
        now: Optional[datetime] = None,
        max_distance_km: Optional[float] = None,
        reference: Optional[tuple[float, float]] = None,
        skip_past: bool = True,
        source_delay: float = SOURCE_DELAY_SECONDS,
        source_timeout: float = SOURCE_TIMEOUT_SECONDS,
        follow_details: bool = True,
        detail_delay: float = DETAIL_DELAY_SECONDS,
        detail_timeout: float = DETAIL_TIMEOUT_SECONDS,
    ):
        self.store = store if store is not None else EventStore()
        self.geocoder = geocoder if geocoder is not None else (Geocoder() if geocode else None)
        self.client = client
        self.now = now
        self.max_distance_km = max_distance_km
        self.reference = reference or reference_point()
        self.skip_past = skip_past
        self.source_delay = source_delay
        self.source_timeout = source_timeout
        self.follow_details = follow_details
        self.detail_delay = detail_delay
        self.detail_timeout = detail_timeout
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        return self.client

    async def close(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
        if self.geocoder is not None:
            await self.geocoder.close()

    async def __aenter__(self) -> "EventPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _now(self) -> datetime:
        return localize(self.now) if self.now else datetime.now(SWISS_TZ)

    async def resolve_coordinates(self, raw: RawExtractedEvent, address: Address) -> Optional[GeoPoint]:
        """Publisher coordinates when declared, else geocode address then city."""
        if raw.lat is not None and raw.lon is not None:
            return GeoPoint(lat=raw.lat, lon=raw.lon)
        if self.geocoder is None:
            return None

        query = format_swiss_address(address.street, address.postal_code, address.city)
        query = query or raw.location or raw.venue_name
        return await self.geocoder.resolve_with_fallback(query, address.city)

    async def resolve_event(
        self,
        raw: RawExtractedEvent,
        source: SourceConfiguration,
    ) -> Optional[CanonicalEvent]:
        """Parse address, geocode, classify and canonicalize one event."""
        if is_blocklisted(raw.title, raw.description):
            return None

        parsed = parse_address(raw.location) if raw.location else Address()
        address = Address(
            street=raw.street or parsed.street,
            postal_code=raw.postal_code or parsed.postal_code,
            city=raw.city or parsed.city,
            raw=raw.location,
        )

        coordinates = await self.resolve_coordinates(raw, address)
        category = classify(raw.title, raw.description)

        return canonicalize(
            raw,
            source.source_id,
            coordinates=coordinates,
            category=category,
            address=address,
            lang=source.language,
            country=source.country,
        )

    def _is_past(self, event: CanonicalEvent) -> bool:
        return (event.end_time or event.start_time) < self._now()

    async def process_document(
        self,
        source: SourceConfiguration,
        html: Optional[str] = None,
        api_payload: Any = None,
    ) -> SourceReport:
        """Extract and persist events from an already fetched document."""
        result = extract_events(source, html=html, api_payload=api_payload, now=self.now)
        return await self.persist_result(source, result)

    async def persist_result(self, source: SourceConfiguration, result: ExtractionResult) -> SourceReport:
        """Resolve, filter and persist the events of one extraction."""
        report = SourceReport(
            source=source.name,
            method=result.method,
            confidence=result.confidence,
            found=len(result.events),
        )
        if result.errors and not result.found:
            report.error = result.errors[-1]

        max_km = source.max_distance_km or self.max_distance_km
        lat, lon = self.reference

        for raw in result.events:
            event = await self.resolve_event(raw, source)
            if event is None:
                report.skipped += 1
                continue
            if self.skip_past and self._is_past(event):
                report.skipped += 1
                continue
            if max_km is not None and not is_within_distance(event, lat, lon, max_km):
                report.skipped += 1
                continue

            outcome = self.store.persist(event, save=False)
            report.persisted += 1
            if outcome == "created":
                report.created += 1
            else:
                report.updated += 1

        self.store.save()
        return report

    async def fetch_detail(self, source: SourceConfiguration, url: str) -> list[RawExtractedEvent]:
        """Fetch one detail page and return its linked-data events."""
        html = await asyncio.wait_for(
            fetch_document(url, client=self._get_client(), requires_javascript=source.requires_javascript),
            timeout=self.detail_timeout,
        )
        detail = extract_structured_events(html, page_url=url, date_format=source.date_format, now=self.now)
        return detail.events

    async def complete_from_detail_pages(
        self,
        source: SourceConfiguration,
        result: ExtractionResult,
    ) -> tuple[int, list[str]]:
        """Visit the detail pages of incomplete listing events, in link order.

        Each page runs under its own timeout; a failing page is recorded and
        the next one is tried. Returns (pages fetched, errors).
        """
        targets = detail_targets(result.events, source.event_page_url)
        errors: list[str] = []
        visited = 0

        for position, (url, indices) in enumerate(targets.items()):
            if position and self.detail_delay > 0:
                await asyncio.sleep(self.detail_delay)
            try:
                candidates = await self.fetch_detail(source, url)
            except asyncio.TimeoutError:
                errors.append(f"{url}: timed out after {self.detail_timeout:.0f}s")
                continue
            except FetchError as e:
                errors.append(f"{url}: {e}")
                continue
            except Exception as e:
                # One broken detail page must not cost the rest of the source
                errors.append(f"{url}: {type(e).__name__}: {e}")
                continue
            visited += 1

            for index in indices:
                match = match_detail(result.events[index], candidates)
                if match is not None:
                    result.events[index] = merge_detail(result.events[index], match)

        if errors:
            console.print(f"[yellow]{source.name}: {len(errors)} detail pages failed[/yellow]")
        return visited, errors

    async def process_source(self, source: SourceConfiguration) -> SourceReport:
        """Fetch a source (API first, then page) and process it.

        Listing events without a place or description are completed from
        their detail pages before resolution.

        Raises:
            FetchError: when neither the API nor the page could be fetched
        """
        client = self._get_client()
        api_payload = None
        api_error: Optional[FetchError] = None

        endpoint = resolve_api_endpoint(source, get_family(source.cms_type))
        if endpoint:
            try:
                api_payload = await fetch_json(endpoint, client=client)
            except FetchError as e:
                console.print(f"[yellow]API fetch failed for {source.name}: {e.reason}[/yellow]")
                api_error = e

        html = None
        try:
            html = await fetch_document(
                source.event_page_url,
                client=client,
                requires_javascript=source.requires_javascript,
            )
        except FetchError:
            if api_payload is None:
                raise

        result = extract_events(source, html=html, api_payload=api_payload, now=self.now)
        visited, detail_errors = 0, []
        if self.follow_details and result.found:
            visited, detail_errors = await self.complete_from_detail_pages(source, result)

        report = await self.persist_result(source, result)
        report.detail_pages = visited
        if report.error is None and detail_errors:
            report.error = detail_errors[-1]
        if api_error is not None and report.error is None:
            report.error = str(api_error)
        return report

    async def run_source(self, source: SourceConfiguration) -> SourceReport:
        """Process one source; never raises."""
        try:
            return await asyncio.wait_for(self.process_source(source), timeout=self.source_timeout)
        except asyncio.TimeoutError:
            message = f"Timed out after {self.source_timeout:.0f}s"
        except FetchError as e:
            message = str(e)
        except Exception as e:
            # Isolation boundary: one broken source must not abort the run
            message = f"{type(e).__name__}: {e}"

        console.print(f"[red]{source.name}: {message}[/red]")
        return SourceReport(source=source.name, error=message)

    async def run(self, sources: list[SourceConfiguration]) -> list[SourceReport]:
        """Process sources sequentially with a pacing delay between them."""
        console.print(f"\n[bold cyan]Processing {len(sources)} sources[/bold cyan]\n")
        reports: list[SourceReport] = []

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Scraping sources...", total=len(sources))

            for index, source in enumerate(sources):
                progress.update(task, description=f"[cyan]{source.name[:30]}[/cyan]")
                reports.append(await self.run_source(source))
                progress.advance(task)

                if index < len(sources) - 1 and self.source_delay > 0:
                    await asyncio.sleep(self.source_delay)

        persisted = sum(r.persisted for r in reports)
        console.print(f"[green]Run complete: {persisted} events persisted[/green]\n")
        return reports


def print_report_summary(reports: list[SourceReport]) -> None:
    """Print found vs persisted per source, with the last error."""
    table = Table(title=f"Sources ({len(reports)})")
    table.add_column("Source", style="cyan", max_width=30)
    table.add_column("Method", style="blue")
    table.add_column("Found", justify="right")
    table.add_column("Persisted", style="green", justify="right")
    table.add_column("New/Upd", justify="right")
    table.add_column("Skipped", style="yellow", justify="right")
    table.add_column("Last error", style="red", max_width=40)

    for report in reports:
        table.add_row(
            report.source[:30],
            report.method,
            str(report.found),
            str(report.persisted),
            f"{report.created}/{report.updated}",
            str(report.skipped),
            (report.error or "-")[:40],
        )

    console.print(table)


def print_event_summary(events: list[CanonicalEvent], limit: int = 20) -> None:
    """Print a summary table of events."""
    table = Table(title=f"Events (showing {min(len(events), limit)} of {len(events)})")
    table.add_column("Title", style="cyan", max_width=35)
    table.add_column("Start", style="magenta")
    table.add_column("City", style="green", max_width=20)
    table.add_column("Category", style="blue")
    table.add_column("Coords", style="dim")

    for event in sorted(events, key=lambda e: e.start_time)[:limit]:
        coords = f"{event.lat:.3f}, {event.lon:.3f}" if event.has_coordinates else "-"
        table.add_row(
            event.title[:35],
            event.start_time.strftime("%d.%m.%Y %H:%M"),
            (event.city or event.venue_name or "?")[:20],
            event.category or "-",
            coords,
        )

    console.print(table)


def print_stats(stats: dict) -> None:
    """Print store statistics."""
    console.print("\n[bold]Statistics[/bold]")
    console.print(f"  Total events: {stats['total']}")
    console.print(f"  Upcoming: {stats['upcoming']}")
    console.print(f"  With coordinates: {stats['with_coordinates']}")
    top_categories = sorted(stats["by_category"].items(), key=lambda x: x[1], reverse=True)[:8]
    console.print(f"  Top categories: {dict(top_categories)}")
    top_sources = sorted(stats["by_source"].items(), key=lambda x: x[1], reverse=True)[:5]
    console.print(f"  Top sources: {dict(top_sources)}")


