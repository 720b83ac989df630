"""Transient extraction records produced by source parsers.

A mention is never persisted raw. Its ``shape`` is a tagged union so every
source constructs exactly the fields it knows about instead of a loose
property bag.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class MentionRole(str, Enum):
    """Role guessed by a parser."""

    OWNER = "owner"
    ENSLAVED = "enslaved"
    OFFICIAL = "official"
    UNKNOWN = "unknown"


class FinalRole(str, Enum):
    """Role decided by the classifier."""

    OWNER = "owner"
    ENSLAVED = "enslaved"
    OFFICIAL = "official"  # rejected as procedural
    AMBIGUOUS = "ambiguous"
    REJECTED = "rejected"  # denylisted token

    @property
    def is_accepted(self) -> bool:
        return self in (FinalRole.OWNER, FinalRole.ENSLAVED, FinalRole.AMBIGUOUS)


class RelationshipType(str, Enum):
    PARENT_OF = "parent_of"
    SPOUSE_OF = "spouse_of"
    ENSLAVED_BY = "enslaved_by"
    SIBLING_OF = "sibling_of"

    @property
    def forbids_self(self) -> bool:
        return self in (RelationshipType.PARENT_OF, RelationshipType.SPOUSE_OF)


class RelationshipHint(BaseModel):
    """Relationship from this mention to another mention, by name."""

    type: RelationshipType
    related_to: str


class TabularRow(BaseModel):
    """A schedule or indexed-panel row, emitted verbatim."""

    kind: Literal["tabular"] = "tabular"
    line_number: int | None = None
    page_number: int | None = None
    colour: str | None = None
    owner_header: str | None = None
    characteristics: list[str] = Field(default_factory=list)
    cells: dict[str, str] = Field(default_factory=dict)


class ProseMention(BaseModel):
    """A name found in running text, with its span in the page text."""

    kind: Literal["prose"] = "prose"
    span_start: int
    span_end: int
    anchor: str | None = None


class PedigreeNode(BaseModel):
    """One person in a family-tree walk."""

    kind: Literal["pedigree"] = "pedigree"
    fs_id: str
    depth: int = 0
    birth_year: int | None = None
    death_year: int | None = None
    father_id: str | None = None
    mother_id: str | None = None
    path: list[str] = Field(default_factory=list)


MentionShape = Annotated[Union[TabularRow, ProseMention, PedigreeNode], Field(discriminator="kind")]


class ExtractedMention(BaseModel):
    source_url: str
    page_title: str | None = None
    raw_name: str
    role: MentionRole = MentionRole.UNKNOWN
    age: int | None = None
    sex: str | None = None
    birth_year_estimate: int | None = None
    locations: list[str] = Field(default_factory=list)
    context_text: str = ""
    relationship_hints: list[RelationshipHint] = Field(default_factory=list)
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    extraction_method: str
    shape: MentionShape

    @property
    def name(self) -> str:
        return " ".join(self.raw_name.split())


class ClassifiedMention(BaseModel):
    """A mention after the classifier's second pass."""

    mention: ExtractedMention
    role: FinalRole
    confidence: float = Field(ge=0.0, le=1.0)
    rule: str
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.role.is_accepted
