"""Slave-schedule parser for OCR text of tabular census pages.

Rows are grouped under the nearest preceding slaveholder header. Enslaved
rows are usually unnamed (``age sex colour``); they are emitted verbatim as
tabular rows with a placeholder display name such as
``Unknown (Male, age 23)``.
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

from .base import FetchedPage, clean_line, context_window, locations_from
from .names import rejection_reason

logger = structlog.get_logger(__name__)

OWNER_PATTERNS = [
    re.compile(
        r"(?:name\s+of\s+slave\s*holder|slave\s*holder|slave\s*owner|owner)\s*[:\-]?\s*"
        r"([A-Z][a-z]+\s+(?:[A-Z]\.?\s*)?[A-Z][a-z]+)",
        re.I,
    ),
    re.compile(r"^([A-Z][a-z]+\s+(?:[A-Z]\.?\s+)?[A-Z][a-z]{2,})$"),
    re.compile(r"^((?:Mrs?\.?|Dr\.?|Rev\.?|Col\.?|Capt\.?|Gen\.?|Hon\.?)\s+[A-Z][a-z]+(?:\s+[A-Z]\.?)?(?:\s+[A-Z][a-z]+)?)$"),
    re.compile(r"^((?:Estate|Heirs|Widow)\s+of\s+[A-Z][a-z]+(?:\s+[A-Z]\.?)?(?:\s+[A-Z][a-z]+)?)$", re.I),
]

ROW_PATTERNS = [
    # line number, age, sex, colour
    re.compile(r"^(?:(?P<num>\d{1,3})\s+)?(?P<age>\d{1,2})\s+(?P<sex>[MF]|male|female)\s+(?P<colour>[BM]|black|mulatto)\b", re.I),
    # age and sex only
    re.compile(r"^(?:(?P<num>\d{1,3})\s+)?(?P<age>\d{1,2})\s+(?P<sex>[MF]|male|female)\b", re.I),
]

CHARACTERISTICS = [
    (re.compile(r"deaf|dumb|mute", re.I), "deaf/mute"),
    (re.compile(r"blind", re.I), "blind"),
    (re.compile(r"insane|lunatic", re.I), "insane"),
    (re.compile(r"idiot|idiotic|imbecile", re.I), "intellectually disabled"),
    (re.compile(r"fugitive|runaway", re.I), "fugitive"),
    (re.compile(r"manumit", re.I), "manumitted"),
]

# Words that look like names on a schedule page but never are
_NOT_OWNER_WORDS = frozenset({
    "beat", "best", "the", "and", "for", "with", "from", "this", "male", "female",
    "black", "mulatto", "color", "colour", "age", "sex", "schedule", "column", "page",
    "line", "number", "total", "ditto", "census", "slave", "slaves", "owner", "district",
    "county", "state", "township", "enumerated", "marshal", "assistant", "image",
    "document", "family", "tree", "search", "record", "source", "film", "digital",
})

STATE_NAMES = frozenset({
    "alabama", "arkansas", "delaware", "florida", "georgia", "kentucky", "louisiana",
    "maryland", "mississippi", "missouri", "north carolina", "south carolina",
    "tennessee", "texas", "virginia", "district of columbia",
})

# Given names commonly recorded for enslaved people on schedules
KNOWN_ENSLAVED_NAMES = frozenset({
    "quash", "quashee", "cudjoe", "cudjo", "cuffee", "cuffy", "quaco", "juba",
    "phibba", "phoebe", "abba", "cuba", "mingo", "cato", "pompey", "caesar",
    "scipio", "prince", "fortune", "phillis", "dinah", "beck", "sukey", "chloe",
})

# higher when the text came from a machine-readable transcription
OWNER_CONFIDENCE = (0.80, 0.70)
NAMED_CONFIDENCE = (0.80, 0.70)
UNNAMED_CONFIDENCE = 0.60


def placeholder_name(sex: str | None, age: int | None) -> str:
    """Display name for an unnamed row, e.g. ``Unknown (Male, age 23)``."""
    parts = []
    if sex:
        parts.append(sex.capitalize())
    if age is not None:
        parts.append(f"age {age}")
    return f"Unknown ({', '.join(parts)})" if parts else "Unknown"


def _sex(raw: str) -> str:
    return "male" if raw.lower().startswith("m") else "female"


def _colour(raw: str | None) -> str:
    if not raw:
        return "Unknown"
    return {"b": "Black", "m": "Mulatto"}.get(raw.lower()[0], "Unknown")


def _owner_in(line: str, metadata: dict[str, Any]) -> str | None:
    for pattern in OWNER_PATTERNS:
        m = pattern.search(line) if pattern is OWNER_PATTERNS[0] else pattern.match(line)
        if not m:
            continue
        candidate = clean_line(m.group(1))
        words = candidate.lower().split()
        if len(candidate) < 5 or len(words) < 2:
            return None
        if len(words[0]) < 2 or len(words[-1]) < 2:
            return None
        if words[0] in _NOT_OWNER_WORDS or words[-1] in _NOT_OWNER_WORDS:
            return None
        lowered = candidate.lower()
        if lowered in STATE_NAMES:
            return None
        if lowered in {str(metadata.get("county", "")).lower(), str(metadata.get("state", "")).lower()}:
            return None
        if rejection_reason(candidate) is not None:
            return None
        return candidate
    return None


def _page_lines(ocr: OCRResult) -> list[tuple[int, str]]:
    pages = ocr.per_page_text or [ocr.text]
    out = []
    for page_number, page_text in enumerate(pages, start=1):
        for line in page_text.splitlines():
            line = clean_line(line)
            if line:
                out.append((page_number, line))
    return out


def parse_schedule(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    locations = locations_from(metadata)
    transcribed = ocr.confidence >= 0.9
    owner_conf = OWNER_CONFIDENCE[0] if transcribed else OWNER_CONFIDENCE[1]
    named_conf = NAMED_CONFIDENCE[0] if transcribed else NAMED_CONFIDENCE[1]

    lines = _page_lines(ocr)
    mentions: list[ExtractedMention] = []
    owner: str | None = None
    seen_owners: set[str] = set()
    first_page = metadata.get("page_number")

    joined = " / ".join(text for _, text in lines)
    offsets = []
    position = 0
    for _, text in lines:
        offsets.append(position)
        position += len(text) + 3

    def context_for(index: int) -> str:
        start = offsets[index]
        return context_window(joined, start, start + len(lines[index][1]))

    for index, (page_number, line) in enumerate(lines):
        line_number = index + 1
        page_no = (first_page + page_number - 1) if isinstance(first_page, int) else page_number

        found_owner = _owner_in(line, metadata)
        if found_owner:
            owner = found_owner
            if owner.lower() not in seen_owners:
                seen_owners.add(owner.lower())
                mentions.append(
                    ExtractedMention(
                        source_url=page.url,
                        page_title=page.title,
                        raw_name=owner,
                        role=MentionRole.OWNER,
                        locations=locations,
                        context_text=context_for(index),
                        confidence_score=owner_conf,
                        extraction_method="schedule_ocr",
                        shape=TabularRow(
                            line_number=line_number,
                            page_number=page_no,
                            owner_header=owner,
                            cells={"line": line},
                        ),
                    )
                )
            continue

        hints = [RelationshipHint(type=RelationshipType.ENSLAVED_BY, related_to=owner)] if owner else []
        for pattern in ROW_PATTERNS:
            m = pattern.match(line)
            if not m:
                continue
            age = int(m.group("age"))
            if not 0 < age < 120:
                break
            sex = _sex(m.group("sex"))
            colour = _colour(m.groupdict().get("colour"))
            characteristics = [label for rx, label in CHARACTERISTICS if rx.search(line)]
            mentions.append(
                ExtractedMention(
                    source_url=page.url,
                    page_title=page.title,
                    raw_name=placeholder_name(sex, age),
                    role=MentionRole.ENSLAVED,
                    age=age,
                    sex=sex,
                    birth_year_estimate=(metadata["year"] - age) if isinstance(metadata.get("year"), int) else None,
                    locations=locations,
                    context_text=context_for(index),
                    relationship_hints=hints,
                    confidence_score=UNNAMED_CONFIDENCE,
                    extraction_method="schedule_ocr",
                    shape=TabularRow(
                        line_number=line_number,
                        page_number=page_no,
                        colour=colour,
                        owner_header=owner,
                        characteristics=characteristics,
                        cells={"age": str(age), "sex": sex, "colour": colour, "line": line},
                    ),
                )
            )
            break

        for word in re.findall(r"[A-Za-z]+", line):
            if word.lower() in KNOWN_ENSLAVED_NAMES and len(word) >= 3:
                mentions.append(
                    ExtractedMention(
                        source_url=page.url,
                        page_title=page.title,
                        raw_name=word.capitalize(),
                        role=MentionRole.ENSLAVED,
                        locations=locations,
                        context_text=context_for(index),
                        relationship_hints=hints,
                        confidence_score=named_conf,
                        extraction_method="schedule_ocr",
                        shape=TabularRow(
                            line_number=line_number,
                            page_number=page_no,
                            owner_header=owner,
                            cells={"line": line},
                        ),
                    )
                )

    logger.debug("parser.schedule_rows", url=page.url, mentions=len(mentions), owners=len(seen_owners))
    return mentions
