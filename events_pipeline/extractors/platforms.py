"""Publisher-family registry for known municipal CMS platforms.

Each family carries a default selector bundle and, for platforms with a
public events API, a resolver that derives the REST endpoint from the event
page URL. Unknown publishers map to UNKNOWN_FAMILY: no selectors, no API,
so extraction falls through to the generic strategies.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urlencode, urlparse

from rich.console import Console

from events_pipeline.models import SelectorBundle, SourceConfiguration

console = Console()

ApiResolver = Callable[[str, str], Optional[str]]


def _origin(page_url: str) -> Optional[str]:
    parsed = urlparse(page_url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def onegov_api_endpoint(page_url: str, language: str = "de") -> Optional[str]:
    """OneGov Cloud exposes every event of the site under /api/events.json."""
    origin = _origin(page_url)
    return f"{origin}/api/events.json" if origin else None


def localcities_api_endpoint(page_url: str, language: str = "de") -> Optional[str]:
    """Localcities pages end with the municipality slug: /de/gemeinde/schlieren."""
    origin = _origin(page_url)
    segments = [s for s in urlparse(page_url).path.split("/") if s]
    if not origin or not segments:
        return None
    params = {
        "municipality": segments[-1],
        "language": language or segments[0] or "de",
        "limit": 100,
    }
    return f"{origin}/api/public/events?{urlencode(params)}"


@dataclass(frozen=True)
class PublisherFamily:
    """A CMS convention shared by many publishers."""

    tag: str
    label: str
    selectors: Optional[SelectorBundle] = None
    signatures: tuple[str, ...] = ()  # lowercase HTML substrings for detection
    api_resolver: Optional[ApiResolver] = field(default=None, compare=False)

    def api_endpoint(self, page_url: str, language: str = "de") -> Optional[str]:
        if self.api_resolver is None:
            return None
        return self.api_resolver(page_url, language)


GOVIS = PublisherFamily(
    tag="govis",
    label="GOViS",
    selectors=SelectorBundle(
        container=".content-teaser, .veranstaltung-item, .event-item",
        title=".teaser-title h3, .event-title, h3",
        date=".date-display-single, .event-date, .datum",
        location=".location-info, .event-location, .ort",
        description=".teaser-text, .event-description",
    ),
    signatures=("govis",),
)

ONEGOV_CLOUD = PublisherFamily(
    tag="onegov_cloud",
    label="OneGov Cloud",
    selectors=SelectorBundle(
        container=".onegov-event, article[data-event-id]",
        title=".event-title, h2, h3",
        date="time[datetime], .event-date",
        location=".event-location, .event-meta",
        description=".event-description, .text",
    ),
    signatures=("onegov", "seantis"),
    api_resolver=onegov_api_endpoint,
)

TYPO3 = PublisherFamily(
    tag="typo3",
    label="TYPO3",
    selectors=SelectorBundle(
        container=".tx-news-article, .event-item, .tx-sfeventmgt .event-item, .tx-calendarize .cal-event",
        title=".news-text-wrap h1, .event-title, h2, h3",
        date=".news-date, .event-date, .cal-date",
        location=".news-location, .event-location",
        description=".bodytext, .event-description",
    ),
    signatures=("typo3",),
)

DRUPAL = PublisherFamily(
    tag="drupal",
    label="Drupal",
    selectors=SelectorBundle(
        container=".event-item, .node-event, .view-content .views-row",
        title=".field-name-title a, .node-title a, h3 a",
        date=".field-name-field-date, .field-name-field-event-date",
        location=".field-name-field-location, .field-name-field-venue",
    ),
    signatures=("drupal", "sites/default/files"),
)

WORDPRESS = PublisherFamily(
    tag="wordpress",
    label="WordPress",
    selectors=SelectorBundle(
        container=".tribe-events-list-item, .sc-event, .wp-calendar .event-item, .event-listing .event",
        title=".tribe-event-title, .event-title, h3",
        date=".tribe-event-date, .event-date, time",
        location=".tribe-event-venue, .event-venue",
        description=".tribe-event-description, .event-description",
    ),
    signatures=("wp-content", "wordpress"),
)

LOCALCITIES = PublisherFamily(
    tag="localcities",
    label="Localcities",
    selectors=SelectorBundle(
        container=".localcities-event, .lc-event-card, [data-municipality-id]",
        title=".lc-event-title, .event-title",
        date=".lc-event-date, .event-date",
        location=".lc-event-location, .event-location",
        description=".lc-event-description, .event-description",
    ),
    signatures=("localcities",),
    api_resolver=localcities_api_endpoint,
)

UNKNOWN_FAMILY = PublisherFamily(tag="unknown", label="Unknown")

# Detection order: specific platforms before generic CMS engines
PUBLISHER_FAMILIES: dict[str, PublisherFamily] = {
    family.tag: family
    for family in (GOVIS, ONEGOV_CLOUD, LOCALCITIES, TYPO3, DRUPAL, WORDPRESS)
}

FAMILY_ALIASES = {
    "onegov": "onegov_cloud",
    "onegov-cloud": "onegov_cloud",
    "wp": "wordpress",
    "typo": "typo3",
}


def get_family(tag: Optional[str]) -> PublisherFamily:
    """Look up a publisher family by tag, falling back to UNKNOWN_FAMILY."""
    if not tag:
        return UNKNOWN_FAMILY
    key = tag.strip().lower()
    key = FAMILY_ALIASES.get(key, key)
    return PUBLISHER_FAMILIES.get(key, UNKNOWN_FAMILY)


def detect_cms_type(html: str) -> str:
    """Guess the publisher family from HTML signatures.

    Checks the generator meta tag first, then well-known asset paths and
    class prefixes. Returns "unknown" when nothing matches.
    """
    lowered = html.lower()

    generator = re.search(
        r"<meta[^>]+name=[\"']generator[\"'][^>]+content=[\"']([^\"']+)", lowered
    )
    if generator:
        for family in PUBLISHER_FAMILIES.values():
            if any(sig in generator.group(1) for sig in family.signatures):
                return family.tag

    for family in PUBLISHER_FAMILIES.values():
        if any(sig in lowered for sig in family.signatures):
            return family.tag

    return UNKNOWN_FAMILY.tag


def resolve_family(source: SourceConfiguration, html: Optional[str] = None) -> PublisherFamily:
    """Family from the source's cms_type, or detected from HTML when unset."""
    if source.cms_type:
        return get_family(source.cms_type)
    if html:
        detected = detect_cms_type(html)
        if detected != UNKNOWN_FAMILY.tag:
            console.print(f"[dim]Detected {detected} for {source.name}[/dim]")
        return get_family(detected)
    return UNKNOWN_FAMILY


def resolve_selectors(
    source: SourceConfiguration,
    family: Optional[PublisherFamily] = None,
) -> Optional[SelectorBundle]:
    """Explicit override merged field-by-field over the family default.

    Returns None when neither the family nor the source supplies selectors.
    """
    family = family or get_family(source.cms_type)
    override = source.event_selectors

    if family.selectors is None:
        if override is None or override.is_empty():
            return None
        return override

    return family.selectors.merged_with(override)


def resolve_api_endpoint(
    source: SourceConfiguration,
    family: Optional[PublisherFamily] = None,
) -> Optional[str]:
    """An explicit endpoint wins over the one derived from the family."""
    if source.api_endpoint:
        return source.api_endpoint
    family = family or get_family(source.cms_type)
    return family.api_endpoint(source.event_page_url, source.language)
