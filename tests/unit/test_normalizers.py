"""Tests for address, category and price normalizers."""

import pytest
from events_pipeline.normalizers.address import format_swiss_address, parse_address
from events_pipeline.normalizers.categories import CATEGORIES, classify, is_alpsabzug, is_blocklisted
from events_pipeline.normalizers.prices import parse_price


class TestAddressParser:
    """Tests for Swiss address parsing."""

    @pytest.mark.parametrize("raw,street,postal_code,city", [
        ("Bahnhofstrasse 1, 8952 Schlieren", "Bahnhofstrasse 1", "8952", "Schlieren"),
        ("Marktplatz, Dorfstrasse 3, CH-8001 Zürich, Schweiz", "Marktplatz, Dorfstrasse 3", "8001", "Zürich"),
        ("Rue du Marché 4 1204 Genève", "Rue du Marché 4", "1204", "Genève"),
        ("8952 Schlieren", None, "8952", "Schlieren"),
        ("Gemeindehaus, Schlieren", "Gemeindehaus", None, "Schlieren"),
    ])
    def test_address_shapes(self, raw: str, street, postal_code, city):
        """Street, postal code and locality are split for common layouts."""
        address = parse_address(raw)
        assert address.street == street
        assert address.postal_code == postal_code
        assert address.city == city

    def test_single_segment_is_city(self):
        """A bare place name is taken as the city."""
        address = parse_address("Dietikon")
        assert address.city == "Dietikon"
        assert address.street is None

    def test_keeps_raw_text(self):
        address = parse_address("  Bahnhofstrasse 1,   8952 Schlieren ")
        assert address.raw == "Bahnhofstrasse 1, 8952 Schlieren"

    def test_empty_input(self):
        address = parse_address(None)
        assert address.city is None
        assert address.postal_code is None

    def test_country_is_defaulted(self):
        assert parse_address("Bahnhofstrasse 1, 8952 Schlieren").country == "CH"

    @pytest.mark.parametrize("street,postal_code,city,expected", [
        ("Bahnhofstrasse 1", "8952", "Schlieren", "Bahnhofstrasse 1, 8952 Schlieren"),
        (None, "8952", "Schlieren", "8952 Schlieren"),
        ("Marktplatz", None, "Schlieren", "Marktplatz, Schlieren"),
        (None, None, None, None),
    ])
    def test_format_query(self, street, postal_code, city, expected):
        """Address parts are joined the Swiss way for geocoding."""
        assert format_swiss_address(street, postal_code, city) == expected


class TestCategoryClassifier:
    """Tests for keyword-based classification."""

    @pytest.mark.parametrize("title,expected", [
        ("Alpabzugsfest", "alpsabzug"),
        ("Désalpe de Charmey", "alpsabzug"),
        ("Dorffest Schlieren", "festival"),
        ("Chilbi", "festival"),
        ("Jazzkonzert im Park", "music"),
        ("Herbstmarkt", "market"),
        ("Kinderflohmarkt", "market"),
        ("Familientag im Zoo", "family"),
        ("Stadtlauf", "sports"),
        ("Theateraufführung", "culture"),
        ("Adventsfenster", "seasonal"),
    ])
    def test_title_keywords(self, title: str, expected: str):
        """Known keywords in the title pick the category."""
        assert classify(title) == expected
        assert expected in CATEGORIES

    def test_alpsabzug_wins_over_festival(self):
        """The narrow alpine family is checked before generic festivals."""
        assert is_alpsabzug("Alpabzugsfest")
        assert not is_alpsabzug("Dorffest")

    def test_description_contributes(self):
        assert classify("Samstag im Dorf", "Mit geschmückte Kühe und Musik") == "alpsabzug"

    def test_no_match(self):
        assert classify("Sitzung") is None
        assert classify("", None) is None

    @pytest.mark.parametrize("title", [
        "Ablauf der Sitzung",
        "Verlauf der Bauarbeiten",
        "Öffnungszeiten neu festgelegt",
        "Laufzeit des Vertrags",
    ])
    def test_stems_inside_unrelated_words(self, title: str):
        assert classify(title) is None

    @pytest.mark.parametrize("title,expected", [
        ("Frauenlauf Schlieren", "sports"),
        ("Lauftreff am Abend", "sports"),
        ("Festwirtschaft am See", "festival"),
    ])
    def test_stems_in_compounds(self, title: str, expected: str):
        assert classify(title) == expected


class TestBlocklist:
    """Tests for administrative event filtering."""

    @pytest.mark.parametrize("title,description", [
        ("Gemeindeversammlung", None),
        ("Budgetdebatte", None),
        ("Informationsabend", "Abstimmung über das neue Schulhaus"),
        ("Öffnungszeiten Steueramt", None),
    ])
    def test_blocked(self, title: str, description):
        assert is_blocklisted(title, description)

    @pytest.mark.parametrize("title", ["Herbstmarkt", "Alpabzug", "Jazzkonzert"])
    def test_leisure_events_pass(self, title: str):
        assert not is_blocklisted(title)


class TestPriceParser:
    """Tests for Swiss price text."""

    @pytest.mark.parametrize("text,expected_min,expected_max", [
        ("CHF 15.-", 15.0, 15.0),
        ("Fr. 12.50", 12.5, 12.5),
        ("SFr 8,50", 8.5, 8.5),
        ("25 CHF", 25.0, 25.0),
        ("Erwachsene Fr. 20.-, Kinder 10.-", 10.0, 20.0),
    ])
    def test_amounts(self, text: str, expected_min: float, expected_max: float):
        """Amounts in the usual Swiss notations are found."""
        price_min, price_max, currency = parse_price(text)
        assert price_min == expected_min
        assert price_max == expected_max
        assert currency == "CHF"

    @pytest.mark.parametrize("text", ["Eintritt frei", "Gratis", "entrée libre"])
    def test_free_entry(self, text: str):
        assert parse_price(text) == (0.0, 0.0, "CHF")

    @pytest.mark.parametrize("text", [None, "", "Anmeldung erforderlich"])
    def test_no_price(self, text):
        assert parse_price(text) == (None, None, None)
