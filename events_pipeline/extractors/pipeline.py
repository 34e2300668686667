"""Strategy selector: run every extraction strategy, keep the most confident.

Strategies run in a fixed priority order (API, structured data, selectors,
heuristics). A later result replaces the current best only when it is
strictly more confident and non-empty, so ties keep the earlier strategy.
A strategy that raises is recorded as an error and never aborts the others.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from bs4 import BeautifulSoup
from rich.console import Console

from events_pipeline.extractors.api import extract_api_events
from events_pipeline.extractors.heuristics import extract_heuristic_events
from events_pipeline.extractors.platforms import resolve_family, resolve_selectors
from events_pipeline.extractors.selectors import extract_with_selectors
from events_pipeline.extractors.structured import extract_structured_events
from events_pipeline.models import ExtractionResult, SourceConfiguration

console = Console()

Strategy = tuple[str, Callable[[], ExtractionResult]]


def select_best(strategies: list[Strategy]) -> ExtractionResult:
    """Run strategies in order and return the best result.

    Errors from every strategy are collected on the returned result.
    """
    best: Optional[ExtractionResult] = None
    errors: list[str] = []

    for name, run in strategies:
        try:
            result = run()
        except Exception as e:
            # Strategies parse untrusted markup; one failing must not stop the rest
            console.print(f"[yellow]{name} extractor failed: {e}[/yellow]")
            errors.append(f"{name}: {type(e).__name__}: {e}")
            continue

        errors.extend(f"{name}: {error}" for error in result.errors)

        if result.found and (best is None or result.confidence > best.confidence):
            best = result

    if best is None:
        return ExtractionResult.empty(method="none", errors=errors)

    return best.model_copy(update={"errors": errors})


def build_strategies(
    source: SourceConfiguration,
    html: Optional[str] = None,
    api_payload: Any = None,
    now: Optional[datetime] = None,
) -> list[Strategy]:
    """Strategies applicable to the inputs, in priority order."""
    strategies: list[Strategy] = []
    page_url = source.event_page_url
    date_format = source.date_format

    if api_payload is not None:
        strategies.append((
            "api",
            lambda: extract_api_events(api_payload, page_url, date_format, now),
        ))

    if html:
        soup = BeautifulSoup(html, "lxml")
        family = resolve_family(source, html)
        bundle = resolve_selectors(source, family)

        strategies.extend([
            ("structured", lambda: extract_structured_events(soup, page_url, date_format, now)),
            ("selectors", lambda: extract_with_selectors(soup, bundle, page_url, date_format, now)),
            ("heuristic", lambda: extract_heuristic_events(soup, date_format, now)),
        ])

    return strategies


def extract_events(
    source: SourceConfiguration,
    html: Optional[str] = None,
    api_payload: Any = None,
    now: Optional[datetime] = None,
) -> ExtractionResult:
    """Extract events for one source from its document and/or API payload."""
    strategies = build_strategies(source, html, api_payload, now)
    if not strategies:
        return ExtractionResult.empty(method="none", errors=["No document or payload to extract from"])

    result = select_best(strategies)
    if result.found:
        console.print(
            f"[dim]{source.name}: {len(result.events)} events via {result.method} "
            f"(confidence {result.confidence:.2f})[/dim]"
        )
    return result
