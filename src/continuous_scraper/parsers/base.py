"""Parser contract and the category registry.

A parser is a pure function ``(page, ocr, metadata) -> list[ExtractedMention]``.
It never writes to the store.
"""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from bs4 import BeautifulSoup

from continuous_scraper.models.mentions import ExtractedMention
from continuous_scraper.ocr.models import OCRResult

MIN_CONTEXT_CHARS = 60
CONTEXT_RADIUS = 120


@dataclass
class FetchedPage:
    url: str
    category: str
    body: bytes
    content_type: str = "text/html"
    final_url: str | None = None

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type.lower()

    @cached_property
    def html(self) -> str:
        if not self.is_html:
            return ""
        return self.body.decode("utf-8", errors="replace")

    @cached_property
    def soup(self) -> BeautifulSoup | None:
        return BeautifulSoup(self.html, "html.parser") if self.html else None

    @cached_property
    def title(self) -> str | None:
        soup = self.soup
        if soup is None or soup.title is None:
            return None
        return soup.title.get_text(strip=True) or None


Parser = Callable[[FetchedPage, OCRResult, dict[str, Any]], list[ExtractedMention]]


@dataclass
class ParserRegistry:
    """Maps a source category to its parser; unknown categories use the default."""

    default: Parser | None = None
    _parsers: dict[str, Parser] = field(default_factory=dict)

    def register(self, category: str, parser: Parser) -> None:
        self._parsers[category.lower()] = parser

    def get(self, category: str) -> Parser:
        parser = self._parsers.get((category or "").lower(), self.default)
        if parser is None:
            raise KeyError(f"no parser for category {category!r}")
        return parser

    def categories(self) -> list[str]:
        return sorted(self._parsers)


def context_window(text: str, start: int, end: int, radius: int = CONTEXT_RADIUS) -> str:
    """Text around ``text[start:end]``, at least ``MIN_CONTEXT_CHARS`` long when the text allows."""
    radius = max(radius, MIN_CONTEXT_CHARS)
    lo = max(0, start - radius)
    hi = min(len(text), end + radius)
    return text[lo:hi]


def locations_from(metadata: dict[str, Any]) -> list[str]:
    return [str(metadata[k]) for k in ("state", "county", "location") if metadata.get(k)]


def clean_line(line: str) -> str:
    return re.sub(r"\s+", " ", line).strip()
