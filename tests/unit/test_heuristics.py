"""Tests for date + keyword pattern extraction."""

from datetime import date, datetime

from bs4 import BeautifulSoup

from events_pipeline.extractors.heuristics import (
    HEURISTIC_CONFIDENCE,
    HEURISTIC_KEYWORD_BONUS_CONFIDENCE,
    extract_heuristic_events,
    find_candidate_elements,
    is_candidate,
)

CONCERT_PAGE = """
<html><body><div id="main">
  <div><h4>Konzert der Musikgesellschaft</h4><span>Sonntag, 21.09.2025, 17:00</span></div>
  <div><p>Kontakt: Stadtkanzlei</p></div>
</div></body></html>
"""

WORKSHOP_PAGE = """
<html><body>
  <div><h3>Workshop Töpfern</h3><span>Donnerstag, 25.09.2025</span></div>
</body></html>
"""


class TestCandidates:
    """Tests for candidate detection."""

    def test_needs_date_and_keyword(self):
        assert is_candidate("Konzert am 15.09.2025")
        assert not is_candidate("Konzert im Herbst")
        assert not is_candidate("Öffnungszeiten ab 01.09.2025 geändert")

    def test_nested_matches_collapse_to_innermost(self):
        soup = BeautifulSoup(
            "<section><article><p>Führung durch die Altstadt am 28.09.2025</p></article></section>",
            "lxml",
        )
        elements = find_candidate_elements(soup)
        assert [e.name for e in elements] == ["p"]

    def test_inline_spans_split_into_events(self):
        soup = BeautifulSoup(
            "<p>Agenda: <span>Konzert im Park am 14.09.2025</span> · "
            "<span>Markt auf dem Dorfplatz am 20.09.2025</span></p>",
            "lxml",
        )
        elements = find_candidate_elements(soup)
        assert [e.name for e in elements] == ["span", "span"]

    def test_table_cell_scanned(self):
        soup = BeautifulSoup(
            "<table><tr><td>Führung Ortsmuseum 05.10.2025</td><td>Treffpunkt Bahnhof</td></tr></table>",
            "lxml",
        )
        assert [e.name for e in find_candidate_elements(soup)] == ["td"]


class TestHeuristicExtraction:
    """Tests for heuristic results."""

    def test_strong_keyword_bonus(self, now: datetime):
        result = extract_heuristic_events(CONCERT_PAGE, now=now)
        assert result.method == "heuristic"
        assert result.confidence == HEURISTIC_KEYWORD_BONUS_CONFIDENCE
        assert len(result.events) == 1

        event = result.events[0]
        assert event.title == "Konzert der Musikgesellschaft"
        assert event.start.date() == date(2025, 9, 21)
        assert event.start.hour == 17

    def test_base_confidence(self, now: datetime):
        result = extract_heuristic_events(WORKSHOP_PAGE, now=now)
        assert result.confidence == HEURISTIC_CONFIDENCE
        assert result.events[0].title == "Workshop Töpfern"

    def test_title_from_first_line(self, now: datetime):
        result = extract_heuristic_events(
            "<html><body><p>Führung durch die Altstadt am 28.09.2025</p></body></html>",
            now=now,
        )
        assert result.events[0].title == "Führung durch die Altstadt am 28.09.2025"

    def test_scripts_ignored_and_input_untouched(self, now: datetime):
        """Script text is never scanned, and the caller's soup keeps its scripts."""
        soup = BeautifulSoup(
            '<html><body><div><script>var t = "Konzert 01.10.2025";</script></div></body></html>',
            "lxml",
        )
        result = extract_heuristic_events(soup, now=now)
        assert not result.found
        assert soup.find("script") is not None

    def test_no_candidates(self, now: datetime):
        result = extract_heuristic_events("<html><body><p>Willkommen</p></body></html>", now=now)
        assert not result.found
        assert result.confidence == 0.0
