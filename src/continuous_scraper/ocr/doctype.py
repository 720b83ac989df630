"""Tabular-vs-prose heuristic for OCR text.

Scores the text against slave-schedule and regular-census indicators:
``+3`` per header pattern, ``+2`` per column pattern, ``+4`` when at least
three distinct occupations appear. The higher score wins when it leads the
other by at least 2; otherwise the type is ``uncertain`` (``unknown`` when
nothing matched at all).
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from .models import DocumentType

HEADER_WEIGHT = 3
COLUMN_WEIGHT = 2
OCCUPATION_BONUS = 4
MIN_GAP = 2

SCHEDULE_HEADERS = [
    re.compile(r"name\s+of\s+slave\s*holders?", re.I),
    re.compile(r"slave\s+owners?", re.I),
    re.compile(r"number\s+of\s+slaves", re.I),
    re.compile(r"fugitives?\s+from\s+the\s+state", re.I),
    re.compile(r"manumitted", re.I),
    re.compile(r"deaf.*dumb.*blind.*insane", re.I),
]

SCHEDULE_COLUMNS = [
    re.compile(r"\bage\b.*\bsex\b.*\bcolou?r\b", re.I),
    re.compile(r"\bblack\b.*\bmulatto\b", re.I),
    re.compile(r"\b[BM]\b\s+\b[BM]\b"),
]

CENSUS_HEADERS = [
    re.compile(r"occupation\s*,?\s*trade\s*,?\s*or\s*profession", re.I),
    re.compile(r"value\s+of\s+(real\s+)?estate", re.I),
    re.compile(r"place\s+of\s+birth", re.I),
    re.compile(r"whether\s+married", re.I),
    re.compile(r"attended\s+school", re.I),
    re.compile(r"cannot\s+read\s+and\s+write", re.I),
]

OCCUPATIONS = (
    "farmer", "laborer", "merchant", "blacksmith", "carpenter",
    "shoemaker", "teacher", "physician", "clerk", "overseer",
)


@dataclass(frozen=True)
class DocumentTypeScore:
    document_type: DocumentType
    schedule_score: int
    census_score: int


def score_document_type(text: str) -> DocumentTypeScore:
    schedule = sum(HEADER_WEIGHT for p in SCHEDULE_HEADERS if p.search(text))
    schedule += sum(COLUMN_WEIGHT for p in SCHEDULE_COLUMNS if p.search(text))

    census = sum(HEADER_WEIGHT for p in CENSUS_HEADERS if p.search(text))
    lowered = text.lower()
    distinct = sum(1 for occ in OCCUPATIONS if re.search(rf"\b{occ}\b", lowered))
    if distinct >= 3:
        census += OCCUPATION_BONUS

    if schedule == 0 and census == 0:
        kind = DocumentType.UNKNOWN
    elif schedule - census >= MIN_GAP:
        kind = DocumentType.SLAVE_SCHEDULE
    elif census - schedule >= MIN_GAP:
        kind = DocumentType.REGULAR_CENSUS
    else:
        kind = DocumentType.UNCERTAIN
    return DocumentTypeScore(kind, schedule, census)


def detect_document_type(text: str) -> DocumentType:
    return score_document_type(text).document_type
