"""CLI for the events pipeline."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from dateutil import parser as date_parser
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from events_pipeline.dedup import default_max_distance_km, reference_point
from events_pipeline.extractors.platforms import PUBLISHER_FAMILIES, UNKNOWN_FAMILY
from events_pipeline.models import SourceConfiguration
from events_pipeline.normalizers.dates import localize
from events_pipeline.pipeline import (
    SOURCE_DELAY_SECONDS,
    EventPipeline,
    print_event_summary,
    print_report_summary,
    print_stats,
)
from events_pipeline.sources import SourceConfigError, load_sources
from events_pipeline.store import EventStore

# Load environment variables (override=True to beat shell env vars)
load_dotenv(override=True)

app = typer.Typer(
    name="events-pipeline",
    help="Swiss event extraction and normalization pipeline",
    add_completion=False,
)
console = Console()


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return localize(date_parser.isoparse(value))
    except ValueError:
        console.print(f"[red]Invalid --now value: {value} (expected ISO date)[/red]")
        raise typer.Exit(1)


@app.command()
def extract(
    file: Path = typer.Argument(..., help="Local HTML document to extract from"),
    cms: Optional[str] = typer.Option(None, "--cms", "-c", help="Publisher family (e.g. govis, typo3)"),
    url: str = typer.Option("https://example.ch/veranstaltungen", "--url", "-u", help="Page URL for resolving links"),
    api_payload: Optional[Path] = typer.Option(None, "--api-payload", "-a", help="JSON API payload file"),
    now: Optional[str] = typer.Option(None, "--now", help="Reference date (ISO) for date plausibility"),
    date_format: Optional[str] = typer.Option(None, "--date-format", help="Date hint, e.g. dd.mm.yyyy"),
    geocode: bool = typer.Option(False, "--geocode/--no-geocode", help="Resolve coordinates via Nominatim"),
    persist: bool = typer.Option(False, "--persist", help="Upsert into the event store"),
):
    """Run the extraction strategies on a local document and show the result."""
    if not file.exists():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    html = file.read_text(encoding="utf-8")
    payload = None
    if api_payload:
        try:
            payload = json.loads(api_payload.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read API payload: {e}[/red]")
            raise typer.Exit(1)

    source = SourceConfiguration(
        name=file.stem,
        event_page_url=url,
        cms_type=cms,
        date_format=date_format,
    )
    store = EventStore.from_env() if persist else EventStore()
    reference_now = _parse_now(now)

    async def _run():
        async with EventPipeline(store=store, geocode=geocode, now=reference_now) as pipeline:
            return await pipeline.process_document(source, html=html, api_payload=payload)

    report = asyncio.run(_run())

    console.print(
        f"\n[bold]Method:[/bold] {report.method}  "
        f"[bold]Found:[/bold] {report.found}  "
        f"[bold]Kept:[/bold] {report.persisted}  "
        f"[bold]Skipped:[/bold] {report.skipped}"
    )
    if report.error:
        console.print(f"[yellow]Last error: {report.error}[/yellow]")

    print_event_summary(store.get_all())


@app.command()
def run(
    sources_file: Path = typer.Argument(..., help="YAML or JSON file with source configurations"),
    limit: int = typer.Option(0, "--limit", "-l", help="Limit number of sources (0 = all)"),
    delay: float = typer.Option(SOURCE_DELAY_SECONDS, "--delay", help="Seconds between sources"),
    max_distance: Optional[float] = typer.Option(
        None, "--max-distance", "-d",
        help="Drop events farther than this (km) before persisting",
    ),
    include_past: bool = typer.Option(False, "--include-past", help="Keep events that already happened"),
    follow_details: bool = typer.Option(
        True, "--details/--no-details",
        help="Visit detail pages of listing events missing place or description",
    ),
    show_events: bool = typer.Option(False, "--events/--no-events", help="Show persisted events"),
):
    """Scrape every configured source and upsert events into the store."""
    try:
        sources = load_sources(sources_file)
    except SourceConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if limit > 0:
        sources = sources[:limit]

    if not sources:
        console.print("[yellow]No sources to process[/yellow]")
        raise typer.Exit(0)

    store = EventStore.from_env()

    async def _run():
        async with EventPipeline(
            store=store,
            max_distance_km=max_distance,
            skip_past=not include_past,
            source_delay=delay,
            follow_details=follow_details,
        ) as pipeline:
            reports = await pipeline.run(sources)
            stats = pipeline.geocoder.cache.stats()
            console.print(
                f"[dim]Geocoding: {pipeline.geocoder.requests} requests, "
                f"{stats['hits']} cache hits, {stats['negative']} not found[/dim]"
            )
            return reports

    reports = asyncio.run(_run())
    print_report_summary(reports)

    if show_events:
        print_event_summary(store.get_all(), limit=50)

    if all(report.failed for report in reports):
        raise typer.Exit(1)


@app.command()
def families():
    """List the known publisher families and their selectors."""
    table = Table(title="Publisher families")
    table.add_column("Tag", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Containers", max_width=50)
    table.add_column("API", style="yellow")

    for family in list(PUBLISHER_FAMILIES.values()) + [UNKNOWN_FAMILY]:
        containers = family.selectors.container if family.selectors else "-"
        table.add_row(family.tag, family.label, containers, "yes" if family.api_resolver else "-")

    console.print(table)


@app.command()
def stats():
    """Show event store statistics."""
    store = EventStore.from_env()
    print_stats(store.stats())


@app.command()
def query(
    lat: Optional[float] = typer.Option(None, "--lat", help="Reference latitude (default: EVENTS_REFERENCE_LAT)"),
    lon: Optional[float] = typer.Option(None, "--lon", help="Reference longitude (default: EVENTS_REFERENCE_LON)"),
    radius: Optional[float] = typer.Option(None, "--radius", "-r", help="Max distance in km"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category"),
    limit: int = typer.Option(20, "--limit", "-l", help="Rows to show"),
):
    """List stored events near a point."""
    if lat is None or lon is None:
        lat, lon = reference_point()
    radius = radius if radius is not None else default_max_distance_km()

    store = EventStore.from_env()
    events = store.query(lat, lon, radius, category=category)
    console.print(f"[dim]{len(events)} events within {radius:.0f} km of {lat:.3f}, {lon:.3f}[/dim]")
    print_event_summary(events, limit=limit)


if __name__ == "__main__":
    app()
