"""Geocoding via OSM Nominatim.

One cache and one rate limiter per run, both owned by the pipeline and
passed into the Geocoder, so tests can inject a pre-seeded cache and a
zero-interval limiter. Nominatim's usage policy asks for at most one request
per second and an identifying User-Agent.
"""

import asyncio
import os
import re
import time
from typing import Awaitable, Callable, Optional

import httpx
from rich.console import Console

from events_pipeline.models import GeoPoint

console = Console()

DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_MIN_INTERVAL_SECONDS = 1.0
COUNTRY_SUFFIX = "Switzerland"
COUNTRY_NAMES = ("switzerland", "schweiz", "suisse", "svizzera")


def normalize_query(text: str) -> str:
    """Collapse whitespace and make sure the query names the country."""
    query = re.sub(r"\s+", " ", text).strip(" ,")
    if not query:
        return ""
    if not any(name in query.lower() for name in COUNTRY_NAMES):
        query = f"{query}, {COUNTRY_SUFFIX}"
    return query


class GeocodeCache:
    """Geocode results keyed by normalized query.

    A stored ``None`` is a negative result: nothing was found or the lookup
    failed, so the query is not asked again during this run.
    """

    def __init__(self, entries: Optional[dict[str, Optional[GeoPoint]]] = None):
        self._entries: dict[str, Optional[GeoPoint]] = {}
        self.hits = 0
        self.misses = 0
        for query, point in (entries or {}).items():
            self.store(query, point)

    @staticmethod
    def key(query: str) -> str:
        return normalize_query(query).lower()

    def __contains__(self, query: str) -> bool:
        return self.key(query) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, query: str) -> tuple[bool, Optional[GeoPoint]]:
        """Return (cached, point). ``point`` is None for a negative entry."""
        key = self.key(query)
        if key in self._entries:
            self.hits += 1
            return True, self._entries[key]
        self.misses += 1
        return False, None

    def store(self, query: str, point: Optional[GeoPoint]) -> None:
        self._entries[self.key(query)] = point

    def stats(self) -> dict:
        negatives = sum(1 for point in self._entries.values() if point is None)
        return {
            "entries": len(self._entries),
            "negative": negatives,
            "hits": self.hits,
            "misses": self.misses,
        }


class RateLimiter:
    """Enforce a minimum interval between outbound requests.

    Shared by every caller within a run. Safe under the single-worker model
    only; concurrent callers would need a lock around ``wait``.
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval is None:
            min_interval = float(
                os.environ.get("GEOCODE_MIN_INTERVAL_SECONDS", DEFAULT_MIN_INTERVAL_SECONDS)
            )
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    async def wait(self) -> None:
        if self._last is not None:
            elapsed = self._clock() - self._last
            if elapsed < self.min_interval:
                await self._sleep(self.min_interval - elapsed)
        self._last = self._clock()


class Geocoder:
    """Resolve Swiss place names to coordinates."""

    def __init__(
        self,
        cache: Optional[GeocodeCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: Optional[str] = None,
        email: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.cache = cache if cache is not None else GeocodeCache()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.base_url = base_url or os.environ.get("NOMINATIM_URL", DEFAULT_NOMINATIM_URL)
        email = email or os.environ.get("NOMINATIM_EMAIL", "events@example.org")
        self.user_agent = f"EventsPipeline/1.0 ({email})"
        self.timeout = timeout
        self.requests = 0

        self._client = client
        self._transport = transport
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Geocoder":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _query_nominatim(self, query: str) -> Optional[GeoPoint]:
        """Ask Nominatim once. Any failure reads as "not found"."""
        await self.rate_limiter.wait()
        self.requests += 1

        params = {
            "q": query,
            "format": "json",
            "limit": 1,
            "countrycodes": "ch",
        }
        try:
            resp = await self._get_client().get(
                self.base_url,
                params=params,
                headers={"User-Agent": self.user_agent},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            console.print(f"[dim]Nominatim error for '{query}': {e}[/dim]")
            return None
        except ValueError as e:
            console.print(f"[dim]Nominatim returned invalid JSON for '{query}': {e}[/dim]")
            return None

        if not data:
            return None

        try:
            first = data[0]
            return GeoPoint(
                lat=float(first["lat"]),
                lon=float(first["lon"]),
                display_name=first.get("display_name"),
            )
        except (KeyError, TypeError, ValueError, IndexError) as e:
            console.print(f"[dim]Unexpected Nominatim payload for '{query}': {e}[/dim]")
            return None

    async def resolve(self, text: Optional[str]) -> Optional[GeoPoint]:
        """Resolve free text to coordinates, consulting the cache first.

        Failures and empty answers are both cached as negative entries.
        """
        if not text or not text.strip():
            return None

        query = normalize_query(text)
        cached, point = self.cache.lookup(query)
        if cached:
            return point

        point = await self._query_nominatim(query)
        self.cache.store(query, point)
        return point

    async def resolve_with_fallback(
        self,
        address: Optional[str],
        city: Optional[str] = None,
    ) -> Optional[GeoPoint]:
        """Resolve the full address, then retry with just the city."""
        point = await self.resolve(address)
        if point is not None:
            return point

        if city and (not address or normalize_query(city) != normalize_query(address)):
            return await self.resolve(city)
        return None
