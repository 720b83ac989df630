"""Volunteer-transcribed "image index" panels.

Rows carry a role label (``Owner`` or ``Slave``) plus sex, age, estimated
birth year and page number. Each enslaved row inherits the nearest preceding
owner. Panel rows are far more reliable than OCR, hence confidence 0.95.
"""
from __future__ import annotations

import re
from typing import Any

import structlog

from continuous_scraper.models.mentions import (
    ExtractedMention,
    MentionRole,
    RelationshipHint,
    RelationshipType,
    TabularRow,
)
from continuous_scraper.ocr.models import OCRResult

from .base import FetchedPage, clean_line, locations_from
from .schedule import placeholder_name

logger = structlog.get_logger(__name__)

PANEL_CONFIDENCE = 0.95

_OWNER_LABELS = {"owner", "slaveholder", "slave owner"}
_ENSLAVED_LABELS = {"slave", "enslaved", "enslaved person"}
_SKIP = re.compile(r"^(attach|more|years?|view|edit)$", re.I)


def _classify_cells(cells: list[str]) -> dict[str, Any]:
    row: dict[str, Any] = {"name": "", "sex": None, "age": None, "birth_year": None, "page": None, "label": None}
    for text in cells:
        lowered = text.lower()
        if lowered in _OWNER_LABELS:
            row["label"] = "owner"
        elif lowered in _ENSLAVED_LABELS:
            row["label"] = "enslaved"
        elif lowered in ("male", "female"):
            row["sex"] = lowered
        elif m := re.fullmatch(r"(\d{1,3})(?:\s*years?)?", text, re.I):
            value = int(m.group(1))
            if "year" in lowered:
                row["age"] = value
            elif row["page"] is None and row["age"] is not None:
                row["page"] = value
            elif row["age"] is None and row["sex"] is not None:
                row["age"] = value
            else:
                row["page"] = value
        elif re.fullmatch(r"\d{4}", text):
            year = int(text)
            if 1600 <= year <= 1870:
                row["birth_year"] = year
            else:
                row["page"] = year
        elif len(text) > 1 and not _SKIP.match(text) and not row["name"]:
            row["name"] = text
    return row


def panel_rows(page: FetchedPage) -> list[list[str]]:
    """Cell texts of every table row that carries an Owner/Slave label."""
    soup = page.soup
    if soup is None:
        return []
    rows = []
    for tr in soup.select('tr, [role="row"]'):
        cells = [clean_line(c.get_text(" ")) for c in tr.select('td, th, [role="cell"], [role="gridcell"]')]
        cells = [c for c in cells if c]
        if any(c.lower() in _OWNER_LABELS | _ENSLAVED_LABELS for c in cells):
            rows.append(cells)
    return rows


def has_panel(page: FetchedPage) -> bool:
    return bool(panel_rows(page))


def parse_panel(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    locations = locations_from(metadata)
    mentions: list[ExtractedMention] = []
    owner: str | None = None

    rows = panel_rows(page)
    for line_number, cells in enumerate(rows, start=1):
        row = _classify_cells(cells)
        # neighbouring rows widen the context to the minimum window
        context = " / ".join(" | ".join(r) for r in rows[max(0, line_number - 2):line_number + 1])
        shape_kwargs = {
            "line_number": line_number,
            "page_number": row["page"] or metadata.get("page_number"),
            "cells": {str(i): c for i, c in enumerate(cells)},
        }

        if row["label"] == "owner":
            if not row["name"]:
                continue
            owner = row["name"]
            mentions.append(
                ExtractedMention(
                    source_url=page.url,
                    page_title=page.title,
                    raw_name=owner,
                    role=MentionRole.OWNER,
                    locations=locations,
                    context_text=context,
                    confidence_score=PANEL_CONFIDENCE,
                    extraction_method="pre_indexed",
                    shape=TabularRow(owner_header=owner, **shape_kwargs),
                )
            )
            continue

        name = row["name"] or placeholder_name(row["sex"], row["age"])
        hints = [RelationshipHint(type=RelationshipType.ENSLAVED_BY, related_to=owner)] if owner else []
        mentions.append(
            ExtractedMention(
                source_url=page.url,
                page_title=page.title,
                raw_name=name,
                role=MentionRole.ENSLAVED,
                age=row["age"],
                sex=row["sex"],
                birth_year_estimate=row["birth_year"],
                locations=locations,
                context_text=context,
                relationship_hints=hints,
                confidence_score=PANEL_CONFIDENCE,
                extraction_method="pre_indexed",
                shape=TabularRow(owner_header=owner, **shape_kwargs),
            )
        )

    logger.debug("parser.panel_rows", url=page.url, mentions=len(mentions))
    return mentions
