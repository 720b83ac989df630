"""Prose emancipation petitions.

The petitioner (slaveholder) follows "Petition of" or "your petitioner";
enslaved persons follow racial-descriptor collocations, "service or labor of"
or "slave named"; officials follow witness/justice/oath anchors. The role is
only a hint; the classifier decides.
"""
from __future__ import annotations

from typing import Any

import structlog

from continuous_scraper.classify.rules import (
    ENSLAVED_CONFIDENCE,
    ENSLAVED_RULES,
    OFFICIAL_RULES,
    PETITIONER_CONFIDENCE,
    PETITIONER_PATTERNS,
    name_after,
)
from continuous_scraper.models.mentions import (
    ExtractedMention,
    MentionRole,
    ProseMention,
    RelationshipHint,
    RelationshipType,
)
from continuous_scraper.ocr.models import OCRResult

from .base import FetchedPage, context_window, locations_from
from .names import rejection_reason

logger = structlog.get_logger(__name__)

OFFICIAL_CONFIDENCE = 0.80

_ENSLAVED_EXTRACTORS = [(r.label, name_after(r)) for r in ENSLAVED_RULES]
_OFFICIAL_EXTRACTORS = [(r.label, name_after(r)) for r in OFFICIAL_RULES]


def find_petitioners(text: str) -> list[tuple[str, int, int]]:
    """``(name, start, end)`` for every petitioner anchor in ``text``."""
    found = []
    for pattern in PETITIONER_PATTERNS:
        for m in pattern.finditer(text):
            found.append((m.group("name"), m.start("name"), m.end("name")))
    return sorted(found, key=lambda t: t[1])


def extract_petition_mentions(
    text: str,
    *,
    source_url: str,
    page_title: str | None,
    metadata: dict[str, Any],
    extraction_method: str = "petition",
) -> list[ExtractedMention]:
    locations = locations_from(metadata)
    seen: set[tuple[int, int]] = set()
    mentions: list[ExtractedMention] = []

    def emit(name: str, start: int, end: int, role: MentionRole, confidence: float, anchor: str,
             hints: list[RelationshipHint] | None = None) -> None:
        if (start, end) in seen:
            return
        reason = rejection_reason(name)
        if reason is not None:
            logger.debug("parser.name_rejected", name=name, reason=reason)
            return
        seen.add((start, end))
        mentions.append(
            ExtractedMention(
                source_url=source_url,
                page_title=page_title,
                raw_name=name,
                role=role,
                locations=locations,
                context_text=context_window(text, start, end),
                relationship_hints=hints or [],
                confidence_score=confidence,
                extraction_method=extraction_method,
                shape=ProseMention(span_start=start, span_end=end, anchor=anchor),
            )
        )

    petitioners = find_petitioners(text)
    for name, start, end in petitioners:
        emit(name, start, end, MentionRole.OWNER, PETITIONER_CONFIDENCE, "petitioner")

    owner = petitioners[0][0] if petitioners else None
    for label, pattern in _ENSLAVED_EXTRACTORS:
        for m in pattern.finditer(text):
            hints = [RelationshipHint(type=RelationshipType.ENSLAVED_BY, related_to=owner)] if owner else []
            emit(m.group("name"), m.start("name"), m.end("name"), MentionRole.ENSLAVED,
                 ENSLAVED_CONFIDENCE, label, hints)

    for label, pattern in _OFFICIAL_EXTRACTORS:
        for m in pattern.finditer(text):
            emit(m.group("name"), m.start("name"), m.end("name"), MentionRole.OFFICIAL,
                 OFFICIAL_CONFIDENCE, label)

    mentions.sort(key=lambda mention: mention.shape.span_start)  # type: ignore[union-attr]
    return mentions


def parse_petition(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    return extract_petition_mentions(
        ocr.text,
        source_url=page.url,
        page_title=page.title or metadata.get("title"),
        metadata=metadata,
    )
