"""HTTP fetcher with retries and optional Playwright rendering.

Two-tier fetching strategy:
1. Fast path: httpx for static pages and JSON APIs
2. Slow path: headless Firefox via Playwright for sources flagged
   ``requires_javascript`` (optional dependency)
"""

import asyncio
import os
from typing import Any, Optional

import httpx
from rich.console import Console

console = Console()

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 3

# Statuses worth retrying; anything else in 4xx fails immediately
RETRYABLE_STATUSES = {403, 408, 425, 429, 500, 502, 503, 504}


def user_agent() -> str:
    contact = os.environ.get("NOMINATIM_EMAIL", "events@example.org")
    return f"EventsPipeline/1.0 (+{contact})"


class FetchError(Exception):
    """Raised after a fetch failed all retries."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        self.url = url
        self.reason = reason  # "404", "timeout", "connection", ...
        self.status = status
        super().__init__(f"Failed to fetch {url}: {reason}")


async def fetch_with_httpx(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
) -> httpx.Response:
    """GET with bounded retries and exponential backoff.

    Raises:
        FetchError: when every attempt failed
    """
    headers = {
        "User-Agent": user_agent(),
        "Accept": accept,
        "Accept-Language": "de-CH,de;q=0.9,fr-CH;q=0.8,en;q=0.5",
    }

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    last_error = "unknown"
    last_status = None
    try:
        for attempt in range(retries):
            try:
                response = await client.get(url, headers=headers)
                last_status = response.status_code
                response.raise_for_status()
                return response
            except httpx.TimeoutException:
                last_error = "timeout"
            except httpx.HTTPStatusError as e:
                last_status = e.response.status_code
                last_error = str(e.response.status_code)
                if last_status not in RETRYABLE_STATUSES:
                    break
            except httpx.ConnectError:
                last_error = "connection"
            except httpx.HTTPError as e:
                last_error = type(e).__name__.lower()

            if attempt < retries - 1:
                await asyncio.sleep(0.5 * (2 ** attempt))
    finally:
        if owns_client:
            await client.aclose()

    console.print(f"[dim]httpx failed for {url}: {last_error}[/dim]")
    raise FetchError(url, last_error, last_status)


async def fetch_with_playwright(url: str, timeout: float = 30000) -> Optional[str]:
    """Render a page with Playwright Firefox. Returns None if unavailable."""
    try:
        from playwright.async_api import async_playwright
    except ImportError:
        console.print("[yellow]Playwright not installed, skipping JS rendering[/yellow]")
        return None

    console.print(f"[cyan]Playwright fetching: {url[:60]}...[/cyan]")

    try:
        async with async_playwright() as p:
            browser = await p.firefox.launch(headless=True)
            context = await browser.new_context(user_agent=user_agent(), locale="de-CH")
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=timeout)
            html = await page.content()
            await browser.close()
            return html
    except Exception as e:
        # Playwright raises its own error hierarchy; rendering is best-effort
        console.print(f"[red]Playwright error for {url}: {e}[/red]")
        return None


async def fetch_document(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    requires_javascript: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> str:
    """Fetch an HTML document, rendering it first when the source needs JS.

    Raises:
        FetchError: when the page could not be fetched
    """
    if requires_javascript:
        html = await fetch_with_playwright(url, timeout=timeout * 1000)
        if html:
            return html
        console.print(f"[yellow]Falling back to plain fetch for {url}[/yellow]")

    response = await fetch_with_httpx(url, client=client, timeout=timeout, retries=retries)
    return response.text


async def fetch_json(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> Any:
    """Fetch and decode a JSON payload.

    Raises:
        FetchError: on network failure or a body that is not JSON
    """
    response = await fetch_with_httpx(
        url, client=client, timeout=timeout, retries=retries, accept="application/json"
    )
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(url, "invalid-json", response.status_code) from e
