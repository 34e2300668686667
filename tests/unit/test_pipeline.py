"""Tests for per-source processing, resolution and run isolation."""

import asyncio
from datetime import datetime
from typing import Optional

import httpx
import pytest
from conftest import HERBSTMARKT_JSON_LD, SCHLIEREN, json_ld_page

from events_pipeline.models import RawExtractedEvent, SourceConfiguration
from events_pipeline.pipeline import EventPipeline, canonicalize, detail_targets, match_detail, merge_detail
from events_pipeline.store import EventStore

PAGE = "https://www.schlieren.ch/veranstaltungen"


def _run(coro):
    return asyncio.run(coro)


class TestCanonicalize:
    """Tests for building canonical records."""

    def test_fields(self, raw_event: RawExtractedEvent):
        event = canonicalize(raw_event, "MUNICIPAL", category="market")
        assert event.title_norm == "herbstmarkt"
        assert event.source == "MUNICIPAL"
        assert event.source_event_id == f"MUNICIPAL-{event.uniqueness_hash[:8]}"
        assert event.city == "Schlieren"
        assert event.country == "CH"
        assert event.start_time.utcoffset().total_seconds() == 7200

    def test_blocklisted(self, raw_event: RawExtractedEvent):
        meeting = raw_event.model_copy(update={"title": "Gemeindeversammlung"})
        assert canonicalize(meeting, "MUNICIPAL") is None

    def test_unusable_title(self, raw_event: RawExtractedEvent):
        assert canonicalize(raw_event.model_copy(update={"title": " !!! "}), "MUNICIPAL") is None


class TestProcessDocument:
    """End-to-end processing of already fetched documents."""

    def test_structured_page_end_to_end(self, source, herbstmarkt_html, offline_geocoder, now):
        geocoder, requests = offline_geocoder({"Schlieren": [SCHLIEREN]})
        store = EventStore()
        pipeline = EventPipeline(store=store, geocoder=geocoder, now=now)

        report = _run(pipeline.process_document(source, html=herbstmarkt_html))

        assert report.method == "structured"
        assert (report.found, report.persisted, report.created) == (1, 1, 1)
        assert report.error is None

        event = store.get_all()[0]
        assert event.title == "Herbstmarkt"
        assert event.category == "market"
        assert event.city == "Schlieren"
        assert event.postal_code == "8952"
        assert event.venue_name == "Marktplatz"
        assert event.lat == pytest.approx(47.396)
        assert event.lon == pytest.approx(8.447)
        assert requests[0].url.params["q"] == "8952 Schlieren, Switzerland"

    def test_rerun_is_idempotent(self, source, herbstmarkt_html, offline_geocoder, now):
        geocoder, requests = offline_geocoder({"Schlieren": [SCHLIEREN]})
        store = EventStore()
        pipeline = EventPipeline(store=store, geocoder=geocoder, now=now)

        async def twice():
            await pipeline.process_document(source, html=herbstmarkt_html)
            return await pipeline.process_document(source, html=herbstmarkt_html)

        report = _run(twice())
        assert (report.created, report.updated) == (0, 1)
        assert len(store) == 1
        assert len(requests) == 1

    def test_same_event_from_two_publishers(self, source, herbstmarkt_html, offline_geocoder, now):
        """A page and an API reporting the same event end up as one record."""
        geocoder, _ = offline_geocoder({"Schlieren": [SCHLIEREN]})
        store = EventStore()
        pipeline = EventPipeline(store=store, geocoder=geocoder, now=now)
        agenda = SourceConfiguration(name="Regionale Agenda", event_page_url="https://agenda.example.ch/")
        payload = {"events": [{
            "title": "Herbstmarkt",
            "start": "2025-09-20",
            "address": {"zip": "8952", "city": "Schlieren"},
        }]}

        async def both():
            await pipeline.process_document(source, html=herbstmarkt_html)
            return await pipeline.process_document(agenda, api_payload=payload)

        report = _run(both())
        assert report.method == "api"
        assert report.updated == 1
        assert len(store) == 1

    @pytest.mark.parametrize("html,method", [
        (json_ld_page({"@type": "Event", "name": "Gemeindeversammlung", "startDate": "2025-09-15"}), "structured"),
        (
            '<html><body><div class="event"><h3>Gemeindeversammlung</h3>'
            '<span class="date">15.09.2025</span></div></body></html>',
            "generic:common",
        ),
        ("<html><body><div><b>Gemeindeversammlung</b> Termin am 15.09.2025</div></body></html>", "heuristic"),
    ])
    def test_blocklisted_never_persisted(self, source, now, html: str, method: str):
        """Administrative events are dropped whichever strategy found them."""
        store = EventStore()
        pipeline = EventPipeline(store=store, geocode=False, now=now)
        report = _run(pipeline.process_document(source, html=html))
        assert report.method == method
        assert (report.found, report.persisted, report.skipped) == (1, 0, 1)
        assert len(store) == 0

    def test_past_events_skipped(self, source, now):
        html = json_ld_page(
            {"@type": "Event", "name": "Sommerfest", "startDate": "2025-08-20"},
            HERBSTMARKT_JSON_LD,
        )
        store = EventStore()
        report = _run(EventPipeline(store=store, geocode=False, now=now).process_document(source, html=html))
        assert (report.persisted, report.skipped) == (1, 1)
        assert [e.title for e in store.get_all()] == ["Herbstmarkt"]

    def test_past_events_kept_on_request(self, source, now):
        html = json_ld_page({"@type": "Event", "name": "Sommerfest", "startDate": "2025-08-20"})
        pipeline = EventPipeline(store=EventStore(), geocode=False, now=now, skip_past=False)
        assert _run(pipeline.process_document(source, html=html)).persisted == 1

    def test_distance_filter(self, now, offline_geocoder):
        geocoder, requests = offline_geocoder()
        source = SourceConfiguration(name="Genève", event_page_url="https://www.geneve.ch/agenda", max_distance_km=50)
        html = json_ld_page({
            "@type": "Event",
            "name": "Fête de la Musique",
            "startDate": "2025-09-21",
            "location": {"name": "Parc des Bastions", "geo": {"latitude": 46.2003, "longitude": 6.1450}},
        })
        store = EventStore()
        report = _run(EventPipeline(store=store, geocoder=geocoder, now=now).process_document(source, html=html))
        assert report.skipped == 1
        assert len(store) == 0
        # Publisher coordinates are used as-is
        assert requests == []

    def test_nothing_found_reports_error(self, source, now):
        pipeline = EventPipeline(store=EventStore(), geocode=False, now=now)
        report = _run(pipeline.process_document(source, html="<html><body><p>Leer</p></body></html>"))
        assert report.method == "none"
        assert report.found == 0


def _transport(routes: dict[str, httpx.Response]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return routes.get(str(request.url), httpx.Response(404))

    return httpx.MockTransport(handler)


class TestRun:
    """Tests for fetching sources and isolating failures."""

    def test_failing_source_isolated(self, source, herbstmarkt_html, now):
        broken = SourceConfiguration(name="Kaputt", event_page_url="https://kaputt.example.ch/agenda")
        transport = _transport({PAGE: httpx.Response(200, text=herbstmarkt_html)})
        store = EventStore()

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                pipeline = EventPipeline(store=store, client=client, geocode=False, now=now, source_delay=0)
                return await pipeline.run([broken, source])

        reports = _run(scenario())
        assert reports[0].failed
        assert "404" in reports[0].error
        assert reports[1].persisted == 1
        assert len(store) == 1

    def test_unexpected_exception_isolated(self, source, now):
        class Exploding(EventPipeline):
            async def process_source(self, src):
                raise RuntimeError("boom")

        report = _run(Exploding(store=EventStore(), geocode=False, now=now).run_source(source))
        assert report.error == "RuntimeError: boom"
        assert report.failed

    def test_timeout(self, source, now):
        class Slow(EventPipeline):
            async def process_source(self, src):
                await asyncio.sleep(5)

        pipeline = Slow(store=EventStore(), geocode=False, now=now, source_timeout=0.05)
        report = _run(pipeline.run_source(source))
        assert report.error.startswith("Timed out")

    def test_api_before_page(self, now):
        source = SourceConfiguration(name="Aarau", event_page_url="https://www.aarau.ch/veranstaltungen", cms_type="onegov_cloud")
        payload = {"events": [{"id": 4, "title": "Maienzug", "start": "2025-09-05T08:00:00"}]}
        transport = _transport({
            "https://www.aarau.ch/api/events.json": httpx.Response(200, json=payload),
            "https://www.aarau.ch/veranstaltungen": httpx.Response(200, text="<html><body></body></html>"),
        })
        store = EventStore()

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                pipeline = EventPipeline(store=store, client=client, geocode=False, now=now)
                return await pipeline.process_source(source)

        report = _run(scenario())
        assert report.method == "api"
        assert store.get_all()[0].source_event_id == "4"

    def test_api_failure_falls_back_to_page(self, herbstmarkt_html, now):
        source = SourceConfiguration(name="Aarau", event_page_url="https://www.aarau.ch/veranstaltungen", cms_type="onegov_cloud")
        transport = _transport({
            "https://www.aarau.ch/veranstaltungen": httpx.Response(200, text=herbstmarkt_html),
        })

        async def scenario():
            async with httpx.AsyncClient(transport=transport) as client:
                pipeline = EventPipeline(store=EventStore(), client=client, geocode=False, now=now)
                return await pipeline.process_source(source)

        report = _run(scenario())
        assert report.method == "structured"
        assert report.persisted == 1
        assert "404" in report.error
        assert not report.failed


LISTING = """
<html><body>
<div class="content-teaser">
  <h3><a href="/veranstaltungen/herbstmarkt">Herbstmarkt</a></h3>
  <div class="date-display-single">20.09.2025</div>
</div>
<div class="content-teaser">
  <h3><a href="/veranstaltungen/openair-kino">Openair Kino</a></h3>
  <div class="date-display-single">12.09.2025</div>
</div>
<div class="content-teaser">
  <h3><a href="/veranstaltungen/lesung">Lesung</a></h3>
  <div class="date-display-single">25.09.2025</div>
  <div class="location-info">Stadtbibliothek, 8952 Schlieren</div>
  <div class="teaser-text">Lesung mit Autorin</div>
</div>
</body></html>
"""

HERBSTMARKT_DETAIL = f"{PAGE}/herbstmarkt"
KINO_DETAIL = f"{PAGE}/openair-kino"


def _listing_event(title: str, url: Optional[str] = None, **fields) -> RawExtractedEvent:
    return RawExtractedEvent(title=title, start=datetime(2025, 9, 20, 9, 0), url=url, **fields)


class TestDetailHelpers:
    """Tests for choosing and merging detail pages."""

    def test_targets_in_discovery_order(self):
        events = [
            _listing_event("Kino", KINO_DETAIL),
            _listing_event("Ohne Link"),
            _listing_event("Herbstmarkt", HERBSTMARKT_DETAIL),
            _listing_event("Kino Wiederholung", KINO_DETAIL),
            _listing_event("Agenda", PAGE + "/"),
            _listing_event("Lesung", f"{PAGE}/lesung", city="Schlieren", description="Lesung mit Autorin"),
        ]
        targets = detail_targets(events, PAGE)
        assert list(targets) == [KINO_DETAIL, HERBSTMARKT_DETAIL]
        assert targets[KINO_DETAIL] == [0, 3]

    def test_targets_limited(self):
        events = [_listing_event(f"Anlass {i}", f"{PAGE}/anlass-{i}") for i in range(5)]
        assert list(detail_targets(events, PAGE, limit=2)) == [f"{PAGE}/anlass-0", f"{PAGE}/anlass-1"]

    def test_merge_fills_only_missing_fields(self):
        listing = _listing_event("Herbstmarkt", HERBSTMARKT_DETAIL, venue_name="Dorfplatz")
        detail = RawExtractedEvent(
            title="Herbstmarkt 2025",
            start=datetime(2025, 9, 21, 9, 0),
            end=datetime(2025, 9, 20, 8, 0),
            venue_name="Marktplatz",
            city="Schlieren",
            description="Regionale Produkte",
        )
        merged = merge_detail(listing, detail)
        assert merged.title == "Herbstmarkt"
        assert merged.start == listing.start
        assert merged.venue_name == "Dorfplatz"
        assert merged.city == "Schlieren"
        assert merged.description == "Regionale Produkte"
        # An end before the listing start is ignored
        assert merged.end is None

    def test_match_prefers_same_title(self):
        listing = _listing_event("Herbstmarkt")
        others = [_listing_event("Wintermarkt"), _listing_event("HERBSTMARKT!")]
        assert match_detail(listing, others) is others[1]
        assert match_detail(listing, [_listing_event("Wintermarkt")]).title == "Wintermarkt"
        assert match_detail(listing, [_listing_event("A"), _listing_event("B")]) is None


class TestDetailPages:
    """Tests for completing listing events from their detail pages."""

    def test_detail_pages_visited_in_order(self, source, now, monkeypatch):
        detail = json_ld_page({**HERBSTMARKT_JSON_LD, "description": "Regionale Produkte"})
        requested: list[str] = []
        routes = {
            PAGE: httpx.Response(200, text=LISTING),
            HERBSTMARKT_DETAIL: httpx.Response(200, text=detail),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return routes.get(str(request.url), httpx.Response(404))

        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        monkeypatch.setattr("events_pipeline.pipeline.asyncio.sleep", fake_sleep)
        store = EventStore()

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                pipeline = EventPipeline(store=store, client=client, geocode=False, now=now, detail_delay=1.5)
                return await pipeline.process_source(source)

        report = _run(scenario())

        assert requested == [PAGE, HERBSTMARKT_DETAIL, KINO_DETAIL]
        assert sleeps == [1.5]
        assert report.method == "selectors"
        assert report.detail_pages == 1
        assert report.persisted == 3
        assert "404" in report.error
        assert not report.failed

        herbstmarkt = next(e for e in store.get_all() if e.title == "Herbstmarkt")
        assert herbstmarkt.venue_name == "Marktplatz"
        assert herbstmarkt.postal_code == "8952"
        assert herbstmarkt.description == "Regionale Produkte"
        assert herbstmarkt.url == HERBSTMARKT_DETAIL

    def test_slow_detail_page_times_out(self, source, now):
        async def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == PAGE:
                return httpx.Response(200, text=LISTING)
            if str(request.url) == HERBSTMARKT_DETAIL:
                await asyncio.sleep(5)
            return httpx.Response(200, text="<html><body></body></html>")

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                pipeline = EventPipeline(
                    store=EventStore(),
                    client=client,
                    geocode=False,
                    now=now,
                    detail_delay=0,
                    detail_timeout=0.05,
                )
                return await pipeline.process_source(source)

        report = _run(scenario())
        # The page after the slow one is still fetched
        assert report.detail_pages == 1
        assert report.persisted == 3
        assert "timed out" in report.error

    def test_details_disabled(self, source, now):
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, text=LISTING)

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                pipeline = EventPipeline(store=EventStore(), client=client, geocode=False, now=now, follow_details=False)
                return await pipeline.process_source(source)

        report = _run(scenario())
        assert requested == [PAGE]
        assert report.detail_pages == 0
        assert report.error is None
