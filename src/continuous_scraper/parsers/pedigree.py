"""Family-tree person pages.

A rendered person page carries the name and life years in its title
(``"Jane Doe (1790–1861) • Person • Family Tree"``) and lists the parents,
each followed by a tree id, under "Parents and Siblings".
"""
from __future__ import annotations

import re
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from continuous_scraper.models.mentions import (
    ExtractedMention,
    MentionRole,
    PedigreeNode,
    RelationshipHint,
    RelationshipType,
)
from continuous_scraper.ocr.models import OCRResult

from .base import FetchedPage, context_window, locations_from
from .names import is_valid_name

logger = structlog.get_logger(__name__)

PERSON_URL = "https://www.familysearch.org/tree/person/details/{fs_id}"

FS_ID = re.compile(r"\b([A-Z0-9]{4}-[A-Z0-9]{2,4})\b")
_TITLE = re.compile(r"^\s*([^(•]+?)\s*\((\d{4})?(?:\s*[–-]\s*(\d{4}|Living))?")
_PARENTS_SECTION = re.compile(r"Parents and Siblings(.*?)(?:Children\s*\(|Add Parent|Spouses and Children|$)", re.S | re.I)
_NAMED_ID = re.compile(
    r"([A-Z][a-z]+(?:\s+[A-Z][a-z.]+)+)\s*\n?[^\n•]*?(?:\d{4}\s*[–-]\s*(?:\d{4}|Living))?\s*•\s*([A-Z0-9]{4}-[A-Z0-9]{2,4})"
)

PEDIGREE_CONFIDENCE = 0.90


class PedigreePerson(BaseModel):
    fs_id: str
    name: str | None = None
    birth_year: int | None = None
    death_year: int | None = None
    father_id: str | None = None
    mother_id: str | None = None
    father_name: str | None = None
    mother_name: str | None = None
    locations: list[str] = Field(default_factory=list)

    @property
    def parent_ids(self) -> list[str]:
        return [p for p in (self.father_id, self.mother_id) if p]


def fs_id_from_url(url: str) -> str | None:
    m = re.search(r"details/([A-Z0-9]{4}-[A-Z0-9]{2,4})", url)
    return m.group(1) if m else None


def parse_person_page(page: FetchedPage, text: str | None = None) -> PedigreePerson:
    """Read one person page.

    Parents are the first two tree ids under "Parents and Siblings" other
    than the person's own; without that section, person-detail links are used.
    """
    fs_id = fs_id_from_url(page.final_url or page.url) or fs_id_from_url(page.url) or ""
    person = PedigreePerson(fs_id=fs_id)

    title = page.title or ""
    if m := _TITLE.match(title):
        person.name = m.group(1).strip()
        if m.group(2):
            person.birth_year = int(m.group(2))
        if m.group(3) and m.group(3).isdigit():
            person.death_year = int(m.group(3))

    body = text if text is not None else (page.soup.get_text("\n") if page.soup is not None else page.body.decode("utf-8", "replace"))

    parents: list[tuple[str, str | None]] = []
    if section := _PARENTS_SECTION.search(body):
        chunk = section.group(1)
        names = {pid: name.strip() for name, pid in _NAMED_ID.findall(chunk)}
        for pid in FS_ID.findall(chunk):
            if pid != fs_id and pid not in (p for p, _ in parents):
                parents.append((pid, names.get(pid)))
    if not parents and page.soup is not None:
        for link in page.soup.select('a[href*="/tree/person/details/"]'):
            pid = fs_id_from_url(link.get("href", ""))
            if pid and pid != fs_id and pid not in (p for p, _ in parents):
                label = " ".join(link.get_text(" ").split()) or None
                parents.append((pid, label))

    if parents:
        person.father_id, person.father_name = parents[0]
    if len(parents) > 1:
        person.mother_id, person.mother_name = parents[1]
    return person


def parse_pedigree(page: FetchedPage, ocr: OCRResult, metadata: dict[str, Any]) -> list[ExtractedMention]:
    """Person and named parents as pedigree mentions, linked by ``parent_of``."""
    person = parse_person_page(page, ocr.text or None)
    if not person.name or not is_valid_name(person.name):
        return []

    depth = int(metadata.get("depth", 0))
    path = list(metadata.get("path", []))
    locations = locations_from(metadata)
    text = ocr.text or ""

    def context_for(name: str) -> str:
        idx = text.find(name)
        if idx < 0:
            return f"{name} ({person.birth_year or '?'}-{person.death_year or '?'}) {page.url}"
        return context_window(text, idx, idx + len(name))

    mentions = [
        ExtractedMention(
            source_url=page.url,
            page_title=page.title,
            raw_name=person.name,
            role=MentionRole.UNKNOWN,
            birth_year_estimate=person.birth_year,
            locations=locations,
            context_text=context_for(person.name),
            confidence_score=PEDIGREE_CONFIDENCE,
            extraction_method="pedigree",
            shape=PedigreeNode(
                fs_id=person.fs_id,
                depth=depth,
                birth_year=person.birth_year,
                death_year=person.death_year,
                father_id=person.father_id,
                mother_id=person.mother_id,
                path=path,
            ),
        )
    ]
    for parent_id, parent_name in ((person.father_id, person.father_name), (person.mother_id, person.mother_name)):
        if not parent_id or not parent_name or not is_valid_name(parent_name):
            continue
        mentions.append(
            ExtractedMention(
                source_url=page.url,
                page_title=page.title,
                raw_name=parent_name,
                role=MentionRole.UNKNOWN,
                locations=locations,
                context_text=context_for(parent_name),
                relationship_hints=[RelationshipHint(type=RelationshipType.PARENT_OF, related_to=person.name)],
                confidence_score=PEDIGREE_CONFIDENCE,
                extraction_method="pedigree",
                shape=PedigreeNode(fs_id=parent_id, depth=depth + 1, path=[*path, person.name]),
            )
        )
    return mentions


class PedigreeClient(Protocol):
    def person(self, fs_id: str) -> PedigreePerson: ...


class FetcherPedigreeClient:
    """Loads person pages through the shared fetcher (rate limit, cookies, archive)."""

    def __init__(self, fetcher, *, url_template: str = PERSON_URL, category: str = "pedigree") -> None:
        self.fetcher = fetcher
        self.url_template = url_template
        self.category = category

    def person(self, fs_id: str) -> PedigreePerson:
        url = self.url_template.format(fs_id=fs_id)
        result = self.fetcher.fetch(url, self.category, archive=False)
        page = FetchedPage(
            url=url,
            category=self.category,
            body=result.body,
            content_type=result.content_type,
            final_url=result.final_url,
        )
        person = parse_person_page(page)
        if not person.fs_id:
            person.fs_id = fs_id
        logger.debug("pedigree.person", fs_id=fs_id, name=person.name, parents=person.parent_ids)
        return person
