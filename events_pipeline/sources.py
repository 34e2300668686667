"""Load publisher source configurations from YAML or JSON.

Accepted shapes: a top-level list of sources, or a mapping with a
``sources`` list. Example::

    sources:
      - name: Schlieren
        event_page_url: https://www.schlieren.ch/veranstaltungen
        cms_type: govis
      - name: Dietikon
        event_page_url: https://www.dietikon.ch/anlaesseaktuelles
        event_selectors:
          container: .event-card
          date: .event-card__date
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from rich.console import Console

from events_pipeline.models import SourceConfiguration

console = Console()


class SourceConfigError(Exception):
    """Raised when a sources file cannot be read or parsed."""


def parse_sources(data: Any) -> list[SourceConfiguration]:
    """Validate decoded source data. Invalid entries are reported and skipped."""
    if isinstance(data, dict):
        data = data.get("sources", [])
    if not isinstance(data, list):
        raise SourceConfigError("Expected a list of sources or a mapping with 'sources'")

    sources = []
    for index, item in enumerate(data):
        try:
            sources.append(SourceConfiguration.model_validate(item))
        except ValidationError as e:
            name = item.get("name", f"#{index}") if isinstance(item, dict) else f"#{index}"
            console.print(f"[yellow]Skipping invalid source {name}: {e.error_count()} error(s)[/yellow]")
    return sources


def load_sources(path: Path) -> list[SourceConfiguration]:
    """Read a sources file (.yaml, .yml or .json)."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise SourceConfigError(f"Cannot read {path}: {e}") from e

    try:
        if Path(path).suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise SourceConfigError(f"Cannot parse {path}: {e}") from e

    return parse_sources(data or [])
