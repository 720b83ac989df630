"""Fallback parser for any category without a dedicated one.

Prefers an indexed panel, then the schedule layout when the text scores as
tabular, then the petition anchors over the page text.
"""
from __future__ import annotations

from typing import Any

from continuous_scraper.models.mentions import ExtractedMention
from continuous_scraper.ocr.models import OCRResult

from .base import FetchedPage
from .panel import has_panel, parse_panel
from .petition import extract_petition_mentions
from .schedule import parse_schedule


def parse_generic(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    if has_panel(page):
        return parse_panel(page, ocr, metadata)
    if ocr.document_type.is_tabular:
        return parse_schedule(page, ocr, metadata)
    return extract_petition_mentions(
        ocr.text,
        source_url=page.url,
        page_title=page.title or metadata.get("title"),
        metadata=metadata,
        extraction_method="generic",
    )


def parse_indexed_record(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    """Record-image pages: the volunteer index when present, otherwise the schedule OCR."""
    if has_panel(page):
        return parse_panel(page, ocr, metadata)
    return parse_schedule(page, ocr, metadata)
