"""Keyword-based event category classifier and administrative blocklist.

Rules are checked in order and the first match wins, so the narrow
alpine-cattle-descent family is tested before the broad festival one
("Alpabzugsfest" is an alpsabzug, not a generic festival).
"""

import re
from typing import Optional

# Alpine cattle descent: exact terms in DE/FR plus contextual phrases
ALPSABZUG_TERMS = (
    "alpabzug",
    "alpsabzug",
    "désalpe",
    "desalpe",
    "viehscheid",
    "alpabfahrt",
    "alpsabfahrt",
)

ALPSABZUG_CONTEXT_TERMS = (
    "cattle descent",
    "alpine cattle",
    "älplerfest",
    "alpfest",
    "geschmückte kühe",
    "vaches décorées",
)

# Ordered (category, keywords). Keywords match inside the lowercased
# title + description, so compounds like "Dorffest" still count.
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("alpsabzug", ALPSABZUG_TERMS + ALPSABZUG_CONTEXT_TERMS),
    ("festival", ("festival", "fest", "fête", "chilbi", "kilbi")),
    ("music", ("konzert", "musik", "music", "concert", "musique", "jazz", "chor")),
    ("market", ("markt", "market", "marché", "flohmarkt", "märit")),
    ("family", ("famil", "kinder", "enfant", "kids")),
    ("sports", ("sport", "lauf", "turnier", "course", "velo", "wandern")),
    ("culture", ("kultur", "theater", "culture", "théâtre", "museum", "ausstellung", "lesung")),
    ("seasonal", ("weihnacht", "advent", "christmas", "noël", "ostern", "fasnacht")),
)

# Short stems that also sit inside unrelated words ("Ablauf", "festgelegt")
# are guarded against those neighbours.
GUARDED_STEMS = {
    "fest": r"(?<!mani)fest(?!geleg|gehalt|gestell|stell|setz|nahme|netz|platte)",
    "lauf": r"(?<!ab)(?<!ver)(?<!um)(?<!vor)(?<!an)lauf(?!zeit)",
}


def _keyword_pattern(keyword: str) -> str:
    return GUARDED_STEMS.get(keyword, re.escape(keyword))


CATEGORY_PATTERNS = tuple(
    (category, re.compile("|".join(_keyword_pattern(k) for k in keywords)))
    for category, keywords in CATEGORY_RULES
)

CATEGORIES = tuple(category for category, _ in CATEGORY_RULES)

# Administrative / political announcements that are not leisure events
BLOCKLIST = (
    "gemeindeversammlung",
    "wahlen",
    "abstimmung",
    "verwaltung",
    "stadtrat",
    "gemeinderatssitzung",
    "budget",
    "rechnung",
    "bürgerversammlung",
    "politisch",
    "administrativ",
    "steueramt",
    "bauamt",
    "einwohneramt",
)


def _haystack(title: Optional[str], description: Optional[str]) -> str:
    text = f"{title or ''} {description or ''}".lower()
    return re.sub(r"\s+", " ", text)


def classify(title: Optional[str], description: Optional[str] = None) -> Optional[str]:
    """Assign a category from title and description, or None on a miss."""
    haystack = _haystack(title, description)
    if not haystack.strip():
        return None

    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(haystack):
            return category

    return None


def is_alpsabzug(title: Optional[str], description: Optional[str] = None) -> bool:
    """Check for an alpine cattle descent event."""
    return classify(title, description) == "alpsabzug"


def is_blocklisted(title: Optional[str], description: Optional[str] = None) -> bool:
    """Check for administrative keywords that exclude an event."""
    haystack = _haystack(title, description)
    return any(term in haystack for term in BLOCKLIST)
