"""Identity models: canonical persons, their variants, and review records."""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .mentions import RelationshipType


class PersonType(str, Enum):
    OWNER = "owner"
    ENSLAVED = "enslaved"
    AMBIGUOUS = "ambiguous"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    AUTO_CREATED = "auto_created"
    HUMAN_VERIFIED = "human_verified"


class UnconfirmedStatus(str, Enum):
    NEEDS_REVIEW = "needs_review"
    PENDING = "pending"
    REJECTED = "rejected"
    LINKED = "linked"


class MatchQueueStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


class Resolution(str, Enum):
    """Operator decision on a review item."""

    LINKED_EXISTING = "linked_existing"
    CREATED_NEW = "created_new"
    MARKED_DUPLICATE = "marked_duplicate"
    NOT_A_PERSON = "not_a_person"


def _loads(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


class CanonicalPerson(BaseModel):
    """The identity root. Owns its name variants."""

    id: int
    canonical_name: str
    first_name: str
    middle_name: str | None = None
    last_name: str = ""
    suffix: str | None = None
    first_soundex: str = ""
    last_soundex: str = ""
    first_metaphone: str = ""
    last_metaphone: str = ""
    sex: str | None = None
    birth_year_estimate: int | None = None
    death_year_estimate: int | None = None
    primary_state: str | None = None
    primary_county: str | None = None
    person_type: PersonType = PersonType.AMBIGUOUS
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    source_url: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> CanonicalPerson:
        return cls.model_validate(dict(row))


class NameVariant(BaseModel):
    id: int
    canonical_person_id: int
    variant_name: str
    source_url: str | None = None
    source_type: str | None = None
    match_method: str
    match_confidence: float
    levenshtein_distance: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> NameVariant:
        return cls.model_validate(dict(row))


class RelatedTo(BaseModel):
    type: str
    related_to: str = Field(alias="relatedTo")

    model_config = {"populate_by_name": True}


class UnconfirmedPerson(BaseModel):
    lead_id: int
    full_name: str
    person_type: PersonType
    source_url: str
    source_page_title: str | None = None
    context_text: str = ""
    locations: list[str] = Field(default_factory=list)
    relationships: list[RelatedTo] = Field(default_factory=list)
    gender: str | None = None
    birth_year: int | None = None
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    status: UnconfirmedStatus = UnconfirmedStatus.NEEDS_REVIEW
    canonical_person_id: int | None = None
    rejection_reason: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> UnconfirmedPerson:
        data = dict(row)
        data["locations"] = _loads(data.get("locations"), [])
        data["relationships"] = _loads(data.get("relationships"), [])
        return cls.model_validate(data)


class MatchQueueItem(BaseModel):
    id: int
    unconfirmed_name: str
    unconfirmed_person_id: int | None = None
    candidate_canonical_ids: list[int] = Field(default_factory=list)
    candidate_scores: list[float] = Field(default_factory=list)
    location_context: list[str] = Field(default_factory=list)
    source_url: str | None = None
    priority: int = 3
    status: MatchQueueStatus = MatchQueueStatus.PENDING
    resolution: Resolution | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> MatchQueueItem:
        data = dict(row)
        for key in ("candidate_canonical_ids", "candidate_scores", "location_context"):
            data[key] = _loads(data.get(key), [])
        return cls.model_validate(data)

    def candidates(self) -> list[tuple[int, float]]:
        return list(zip(self.candidate_canonical_ids, self.candidate_scores))


class Relationship(BaseModel):
    id: int
    subject_id: int
    object_id: int
    type: RelationshipType
    source_url: str
    confidence_score: float = 0.5

    @classmethod
    def from_row(cls, row: Any) -> Relationship:
        return cls.model_validate(dict(row))


class IdentityStats(BaseModel):
    canonical_persons: int = 0
    name_variants: int = 0
    relationships: int = 0
    pending_reviews: int = 0
    unconfirmed_by_status: dict[str, int] = Field(default_factory=dict)
