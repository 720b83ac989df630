"""Identity resolution: attach a canonical person to each accepted mention.

Bands on the top candidate score:

- ``>= 0.90``: link as a name variant and enrich the canonical
- ``0.60 - 0.89``: review item with every candidate ``>= 0.40`` plus an
  unconfirmed lead (``needs_review``)
- ``< 0.60``: new canonical for a confident owner/enslaved mention,
  otherwise an unconfirmed lead only
"""
from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from continuous_scraper.errors import ReviewError, ScraperError
from continuous_scraper.models.mentions import ClassifiedMention, RelationshipHint
from continuous_scraper.models.persons import (
    CanonicalPerson,
    MatchQueueItem,
    MatchQueueStatus,
    PersonType,
    Resolution,
    UnconfirmedStatus,
    VerificationStatus,
)
from continuous_scraper.store.database import Database
from continuous_scraper.store.persons import PersonStore

from .names import parse_name
from .scoring import CandidateScore, MatchBand, MatchScorer, MentionKey, review_priority

logger = structlog.get_logger(__name__)

MAX_BATCH = 100

US_STATES = frozenset({
    "alabama", "arkansas", "delaware", "district of columbia", "florida", "georgia",
    "kentucky", "louisiana", "maryland", "mississippi", "missouri", "north carolina",
    "south carolina", "tennessee", "texas", "virginia", "west virginia", "new york",
    "new jersey", "pennsylvania", "ohio", "indiana", "illinois", "kansas",
    "massachusetts", "connecticut", "rhode island", "new hampshire",
})


class ResolveAction(str, Enum):
    MATCHED = "matched"
    CREATED = "created"
    QUEUED = "queued"
    UNCONFIRMED = "unconfirmed"
    FAILED = "failed"


class ResolveRequest(BaseModel):
    """One accepted mention, reduced to what identity resolution needs."""

    name: str
    role: str
    confidence: float = Field(ge=0.0, le=1.0)
    source_url: str
    source_page_title: str | None = None
    context_text: str = ""
    locations: list[str] = Field(default_factory=list)
    birth_year: int | None = None
    sex: str | None = None
    relationship_hints: list[RelationshipHint] = Field(default_factory=list)
    extraction_method: str | None = None

    @classmethod
    def from_classified(cls, cm: ClassifiedMention) -> ResolveRequest:
        m = cm.mention
        return cls(
            name=m.name,
            role=cm.role.value,
            confidence=cm.confidence,
            source_url=m.source_url,
            source_page_title=m.page_title,
            context_text=m.context_text,
            locations=m.locations,
            birth_year=m.birth_year_estimate,
            sex=m.sex,
            relationship_hints=m.relationship_hints,
            extraction_method=m.extraction_method,
        )


class ResolutionResult(BaseModel):
    name: str
    action: ResolveAction
    confidence: float = 0.0
    canonical_id: int | None = None
    unconfirmed_id: int | None = None
    match_item_id: int | None = None
    candidates: list[tuple[int, float]] = Field(default_factory=list)
    error: str | None = None


class BatchResult(BaseModel):
    results: list[ResolutionResult] = Field(default_factory=list)
    counts: dict[str, int] = Field(
        default_factory=lambda: {"matched": 0, "created": 0, "queued": 0, "unconfirmed": 0, "failed": 0}
    )

    def add(self, result: ResolutionResult) -> None:
        self.results.append(result)
        self.counts[result.action.value] = self.counts.get(result.action.value, 0) + 1


def split_locations(locations: Sequence[str]) -> tuple[str | None, str | None]:
    """Pick a state and a county out of free-text location strings."""
    state = county = None
    for loc in locations:
        text = (loc or "").strip()
        if not text:
            continue
        if state is None and text.lower() in US_STATES:
            state = text
        elif county is None and text.lower().endswith((" county", " parish")):
            county = text
    return state, county


def _person_type(role: str) -> PersonType:
    try:
        return PersonType(role)
    except ValueError:
        return PersonType.AMBIGUOUS


class IdentityResolver:
    """Maps noisy names to canonical persons, queueing ambiguous cases for review."""

    def __init__(self, db: Database, scorer: MatchScorer | None = None) -> None:
        self.db = db
        self.store = PersonStore(db)
        self.scorer = scorer or MatchScorer()

    # ----------------------------- Resolve ----------------------------

    def resolve(self, conn: sqlite3.Connection, req: ResolveRequest) -> ResolutionResult:
        """Resolve one mention inside the caller's transaction."""
        parsed = parse_name(req.name)
        if not parsed.first:
            return ResolutionResult(name=req.name, action=ResolveAction.FAILED, error="empty name")

        person_type = _person_type(req.role)
        prior = self.store.prior_link(
            conn,
            req.name,
            req.source_url,
            None if person_type is PersonType.AMBIGUOUS else person_type,
        )
        if prior is not None:
            return ResolutionResult(
                name=req.name,
                action=ResolveAction.MATCHED,
                confidence=1.0,
                canonical_id=prior.id,
            )

        key = MentionKey(
            name=req.name,
            role=req.role,
            locations=tuple(req.locations),
            birth_year=req.birth_year,
        )
        ranked = self.scorer.rank(key, self.store.find_candidates(conn, parsed, req.name))
        top = ranked[0] if ranked else None
        band = self.scorer.band(top.score if top else None, req.confidence, req.role)
        state, county = split_locations(req.locations)

        if band is MatchBand.LINK and top is not None:
            self.store.add_variant(
                conn,
                top.canonical.id,
                req.name,
                source_url=req.source_url,
                source_type=req.extraction_method,
                match_method="auto_" + "+".join(top.signals),
                match_confidence=top.score,
                levenshtein_distance=top.levenshtein_distance,
            )
            self.store.enrich_canonical(
                conn,
                top.canonical.id,
                primary_state=state,
                primary_county=county,
                birth_year=req.birth_year,
                sex=req.sex,
            )
            logger.debug("identity.linked", name=req.name, canonical_id=top.canonical.id, score=top.score)
            return ResolutionResult(
                name=req.name,
                action=ResolveAction.MATCHED,
                confidence=top.score,
                canonical_id=top.canonical.id,
            )

        if band is MatchBand.REVIEW and top is not None:
            candidates = [
                (c.canonical.id, c.score) for c in ranked if c.score >= self.scorer.CANDIDATE_MIN
            ]
            lead, _ = self._lead(conn, req)
            item_id = self.store.enqueue_match(
                conn,
                unconfirmed_name=req.name,
                unconfirmed_person_id=lead.lead_id,
                candidates=candidates,
                location_context=req.locations,
                source_url=req.source_url,
                source_context=req.context_text[:500],
                priority=review_priority(top.score),
            )
            logger.info("identity.queued_for_review", name=req.name, top_score=top.score, candidates=len(candidates))
            return ResolutionResult(
                name=req.name,
                action=ResolveAction.QUEUED,
                confidence=top.score,
                unconfirmed_id=lead.lead_id,
                match_item_id=item_id,
                candidates=candidates,
            )

        if band is MatchBand.CREATE:
            person = self.store.create_canonical(
                conn,
                parsed,
                person_type=_person_type(req.role),
                confidence=req.confidence,
                sex=req.sex,
                birth_year=req.birth_year,
                primary_state=state,
                primary_county=county,
                source_url=req.source_url,
            )
            self.store.add_variant(
                conn,
                person.id,
                req.name,
                source_url=req.source_url,
                source_type=req.extraction_method,
                match_method="canonical_created",
                match_confidence=1.0,
                levenshtein_distance=0,
            )
            return ResolutionResult(
                name=req.name,
                action=ResolveAction.CREATED,
                confidence=req.confidence,
                canonical_id=person.id,
            )

        lead, _ = self._lead(conn, req)
        return ResolutionResult(
            name=req.name,
            action=ResolveAction.UNCONFIRMED,
            confidence=req.confidence,
            unconfirmed_id=lead.lead_id,
        )

    def best_match(
        self,
        name: str,
        *,
        role: str,
        locations: Sequence[str] = (),
        birth_year: int | None = None,
    ) -> CandidateScore | None:
        """Top-scoring canonical of the same role, without writing anything."""
        parsed = parse_name(name)
        if not parsed.first:
            return None
        key = MentionKey(name=name, role=role, locations=tuple(locations), birth_year=birth_year)
        with self.db.connect() as conn:
            candidates = self.store.find_candidates(conn, parsed, name)
        ranked = [
            c for c in self.scorer.rank(key, candidates) if c.canonical.person_type.value == role
        ]
        return ranked[0] if ranked else None

    def _lead(self, conn: sqlite3.Connection, req: ResolveRequest):
        return self.store.upsert_unconfirmed(
            conn,
            full_name=req.name,
            person_type=_person_type(req.role),
            source_url=req.source_url,
            source_page_title=req.source_page_title,
            context_text=req.context_text,
            locations=req.locations,
            relationships=[
                {"type": h.type.value, "relatedTo": h.related_to} for h in req.relationship_hints
            ],
            gender=req.sex,
            birth_year=req.birth_year,
            confidence=req.confidence,
            extraction_method=req.extraction_method,
        )

    def resolve_many(self, conn: sqlite3.Connection, requests: Sequence[ResolveRequest]) -> BatchResult:
        """Resolve mentions in the caller's transaction; one bad mention does not sink the rest."""
        batch = BatchResult()
        for i, req in enumerate(requests):
            savepoint = f"mention_{i}"
            conn.execute(f"SAVEPOINT {savepoint}")
            try:
                result = self.resolve(conn, req)
            except (sqlite3.Error, ScraperError, ValueError) as exc:
                conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                logger.warning("identity.mention_failed", name=req.name, error=str(exc))
                result = ResolutionResult(name=req.name, action=ResolveAction.FAILED, error=str(exc))
            conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            batch.add(result)
        return batch

    def batch(self, requests: Sequence[ResolveRequest]) -> BatchResult:
        """Public batch API: at most 100 mentions, one transaction."""
        if len(requests) > MAX_BATCH:
            raise ValueError(f"batch holds {len(requests)} mentions; the limit is {MAX_BATCH}")
        with self.db.transaction() as conn:
            return self.resolve_many(conn, requests)

    # ------------------------- Human review ---------------------------

    def resolve_review(
        self,
        item_id: int,
        resolution: Resolution,
        *,
        canonical_id: int | None = None,
        resolved_by: str = "operator",
        notes: str | None = None,
    ) -> MatchQueueItem:
        """Apply an operator decision atomically with marking the item resolved.

        The write lock taken by the transaction serialises concurrent
        resolutions, so an item can be resolved only once.

        Raises:
            ReviewError: unknown item, item already resolved, or missing canonical
        """
        with self.db.transaction() as conn:
            item = self.store.get_match_item(item_id, conn)
            if item is None:
                raise ReviewError(f"review item {item_id} not found")
            if item.status is not MatchQueueStatus.PENDING:
                raise ReviewError(f"review item {item_id} is already {item.status.value}")

            lead = (
                self.store.get_unconfirmed(item.unconfirmed_person_id, conn)
                if item.unconfirmed_person_id is not None
                else None
            )

            if resolution in (Resolution.LINKED_EXISTING, Resolution.MARKED_DUPLICATE):
                target = self._review_target(conn, item, canonical_id)
                if resolution is Resolution.LINKED_EXISTING:
                    self.store.add_variant(
                        conn,
                        target.id,
                        item.unconfirmed_name,
                        source_url=item.source_url,
                        source_type="human_review",
                        match_method="human_review",
                        match_confidence=1.0,
                    )
                    if lead is not None:
                        self.store.set_unconfirmed_status(
                            conn, lead.lead_id, UnconfirmedStatus.LINKED, canonical_id=target.id
                        )
                elif lead is not None:
                    self.store.set_unconfirmed_status(
                        conn,
                        lead.lead_id,
                        UnconfirmedStatus.REJECTED,
                        rejection_reason=f"duplicate of canonical {target.id}",
                    )
            elif resolution is Resolution.CREATED_NEW:
                person_type = lead.person_type if lead is not None else PersonType.AMBIGUOUS
                state, county = split_locations(item.location_context)
                person = self.store.create_canonical(
                    conn,
                    parse_name(item.unconfirmed_name),
                    person_type=person_type,
                    confidence=1.0,
                    sex=lead.gender if lead else None,
                    birth_year=lead.birth_year if lead else None,
                    primary_state=state,
                    primary_county=county,
                    source_url=item.source_url,
                    verification_status=VerificationStatus.HUMAN_VERIFIED,
                )
                self.store.add_variant(
                    conn,
                    person.id,
                    item.unconfirmed_name,
                    source_url=item.source_url,
                    source_type="human_review",
                    match_method="canonical_created",
                    match_confidence=1.0,
                    levenshtein_distance=0,
                )
                if lead is not None:
                    self.store.set_unconfirmed_status(
                        conn, lead.lead_id, UnconfirmedStatus.LINKED, canonical_id=person.id
                    )
            elif resolution is Resolution.NOT_A_PERSON:
                if lead is not None:
                    self.store.set_unconfirmed_status(
                        conn, lead.lead_id, UnconfirmedStatus.REJECTED, rejection_reason="not a person"
                    )

            if not self.store.mark_match_resolved(conn, item_id, resolution.value, resolved_by, notes):
                raise ReviewError(f"review item {item_id} changed while resolving")
            updated = self.store.get_match_item(item_id, conn)

        logger.info("review.resolved", item_id=item_id, resolution=resolution.value, resolved_by=resolved_by)
        return updated  # type: ignore[return-value]

    def _review_target(
        self, conn: sqlite3.Connection, item: MatchQueueItem, canonical_id: int | None
    ) -> CanonicalPerson:
        if canonical_id is None:
            if not item.candidate_canonical_ids:
                raise ReviewError(f"review item {item.id} has no candidates; pass a canonical id")
            canonical_id = item.candidate_canonical_ids[0]
        target = self.store.get_canonical(canonical_id, conn)
        if target is None:
            raise ReviewError(f"canonical person {canonical_id} not found")
        return target
