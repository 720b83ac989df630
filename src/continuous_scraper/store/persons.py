"""Identity tables: canonical persons, variants, unconfirmed leads, review queue, relationships.

Write methods take the caller's connection so that everything produced for
one URL commits or rolls back together.
"""
from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import structlog

from continuous_scraper.models.mentions import RelationshipType
from continuous_scraper.models.persons import (
    CanonicalPerson,
    IdentityStats,
    MatchQueueItem,
    MatchQueueStatus,
    NameVariant,
    PersonType,
    Relationship,
    UnconfirmedPerson,
    UnconfirmedStatus,
    VerificationStatus,
)
from continuous_scraper.resolve.names import ParsedName, parse_name
from continuous_scraper.resolve.phonetics import metaphone, soundex

from .database import Database

logger = structlog.get_logger(__name__)


class PersonStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    @contextmanager
    def _reader(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.db.connect() as own:
            yield own

    # ------------------------ Canonical persons -----------------------

    def create_canonical(
        self,
        conn: sqlite3.Connection,
        parsed: ParsedName,
        *,
        person_type: PersonType,
        confidence: float,
        sex: str | None = None,
        birth_year: int | None = None,
        death_year: int | None = None,
        primary_state: str | None = None,
        primary_county: str | None = None,
        source_url: str | None = None,
        verification_status: VerificationStatus = VerificationStatus.AUTO_CREATED,
    ) -> CanonicalPerson:
        now = self.db.now()
        row = conn.execute(
            """
            INSERT INTO canonical_persons (
                canonical_name, first_name, middle_name, last_name, suffix,
                first_soundex, last_soundex, first_metaphone, last_metaphone,
                sex, birth_year_estimate, death_year_estimate, primary_state, primary_county,
                person_type, verification_status, confidence_score, source_url,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                parsed.render(),
                parsed.first,
                parsed.middle,
                parsed.last,
                parsed.suffix,
                soundex(parsed.first),
                soundex(parsed.last),
                metaphone(parsed.first),
                metaphone(parsed.last),
                sex,
                birth_year,
                death_year,
                primary_state,
                primary_county,
                person_type.value,
                verification_status.value,
                confidence,
                source_url,
                now,
                now,
            ),
        ).fetchall()[0]
        person = CanonicalPerson.from_row(row)
        logger.info("identity.canonical_created", canonical_id=person.id, name=person.canonical_name)
        return person

    def get_canonical(
        self, canonical_id: int, conn: sqlite3.Connection | None = None
    ) -> CanonicalPerson | None:
        with self._reader(conn) as c:
            row = c.execute("SELECT * FROM canonical_persons WHERE id = ?", (canonical_id,)).fetchone()
        return CanonicalPerson.from_row(row) if row else None

    def enrich_canonical(
        self,
        conn: sqlite3.Connection,
        canonical_id: int,
        *,
        primary_state: str | None = None,
        primary_county: str | None = None,
        birth_year: int | None = None,
        sex: str | None = None,
    ) -> None:
        """Fill location/date fields that are still empty; never overwrite."""
        conn.execute(
            """
            UPDATE canonical_persons SET
                primary_state = COALESCE(primary_state, ?),
                primary_county = COALESCE(primary_county, ?),
                birth_year_estimate = COALESCE(birth_year_estimate, ?),
                sex = COALESCE(sex, ?),
                updated_at = ?
            WHERE id = ?
            """,
            (primary_state, primary_county, birth_year, sex, self.db.now(), canonical_id),
        )

    def find_candidates(
        self,
        conn: sqlite3.Connection,
        parsed: ParsedName,
        raw_name: str,
        limit: int = 200,
    ) -> list[tuple[CanonicalPerson, list[str]]]:
        """Block on name, Soundex digits or Metaphone; return canonicals with their variant names.

        Exact name and variant hits are always returned. Phonetic hits fill
        the remaining ``limit``, Metaphone-pair matches before Soundex-only ones.
        """
        exact = conn.execute(
            """
            SELECT DISTINCT cp.* FROM canonical_persons cp
            LEFT JOIN name_variants nv ON nv.canonical_person_id = cp.id
            WHERE cp.canonical_name = ? COLLATE NOCASE
               OR nv.variant_name = ? COLLATE NOCASE
            ORDER BY cp.id
            """,
            (parsed.render() or raw_name, raw_name),
        ).fetchall()
        seen = [r["id"] for r in exact]
        room = max(0, limit - len(seen))
        phonetic = []
        if room:
            last_mp, first_mp = metaphone(parsed.last), metaphone(parsed.first)
            marks = ",".join("?" * len(seen))
            exclude = f"AND id NOT IN ({marks})" if seen else ""
            phonetic = conn.execute(
                f"""
                SELECT * FROM canonical_persons
                WHERE (substr(last_soundex, 2) = ? OR (last_metaphone = ? AND first_metaphone = ?))
                {exclude}
                ORDER BY (last_metaphone = ? AND first_metaphone = ?) DESC, id
                LIMIT ?
                """,
                (soundex(parsed.last)[1:], last_mp, first_mp, *seen, last_mp, first_mp, room),
            ).fetchall()
        persons = [CanonicalPerson.from_row(r) for r in [*exact, *phonetic]]
        return [(p, self.variant_names(p.id, conn)) for p in persons]

    def variant_names(self, canonical_id: int, conn: sqlite3.Connection | None = None) -> list[str]:
        with self._reader(conn) as c:
            rows = c.execute(
                "SELECT DISTINCT variant_name FROM name_variants WHERE canonical_person_id = ?",
                (canonical_id,),
            ).fetchall()
        return [r["variant_name"] for r in rows]

    def prior_link(
        self,
        conn: sqlite3.Connection,
        name: str,
        source_url: str,
        person_type: PersonType | None = None,
    ) -> CanonicalPerson | None:
        """Canonical this exact surface form was already linked to from this source.

        With ``person_type`` set, only canonicals of that type count, so an owner
        and an enslaved person sharing a name on one page stay apart.
        """
        sql = """
            SELECT cp.* FROM name_variants nv
            JOIN canonical_persons cp ON cp.id = nv.canonical_person_id
            WHERE nv.variant_name = ? AND nv.source_url = ?
        """
        params: list = [name, source_url]
        if person_type is not None:
            sql += " AND cp.person_type = ?"
            params.append(person_type.value)
        row = conn.execute(sql + " ORDER BY nv.id LIMIT 1", params).fetchone()
        return CanonicalPerson.from_row(row) if row else None

    # ----------------------------- Variants ---------------------------

    def add_variant(
        self,
        conn: sqlite3.Connection,
        canonical_id: int,
        variant_name: str,
        *,
        source_url: str | None,
        source_type: str | None,
        match_method: str,
        match_confidence: float,
        levenshtein_distance: int | None = None,
    ) -> bool:
        """Insert a variant; returns False when it was already recorded."""
        cur = conn.execute(
            """
            INSERT INTO name_variants (
                canonical_person_id, variant_name, source_url, source_type,
                match_method, match_confidence, levenshtein_distance, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (canonical_person_id, variant_name, source_url) DO NOTHING
            """,
            (
                canonical_id,
                variant_name,
                source_url,
                source_type,
                match_method,
                match_confidence,
                levenshtein_distance,
                self.db.now(),
            ),
        )
        return cur.rowcount == 1

    def list_variants(self, canonical_id: int) -> list[NameVariant]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM name_variants WHERE canonical_person_id = ? ORDER BY id",
                (canonical_id,),
            ).fetchall()
        return [NameVariant.from_row(r) for r in rows]

    # ----------------------- Unconfirmed persons ----------------------

    def upsert_unconfirmed(
        self,
        conn: sqlite3.Connection,
        *,
        full_name: str,
        person_type: PersonType,
        source_url: str,
        source_page_title: str | None,
        context_text: str,
        locations: Sequence[str],
        relationships: Sequence[dict],
        gender: str | None,
        birth_year: int | None,
        confidence: float,
        extraction_method: str | None,
        status: UnconfirmedStatus = UnconfirmedStatus.NEEDS_REVIEW,
    ) -> tuple[UnconfirmedPerson, bool]:
        """Insert a lead unless ``(full_name, source_url, person_type)`` exists; returns (lead, created)."""
        now = self.db.now()
        cur = conn.execute(
            """
            INSERT INTO unconfirmed_persons (
                full_name, person_type, source_url, source_page_title, context_text,
                locations, relationships, gender, birth_year, confidence_score,
                status, extraction_method, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (full_name, source_url, person_type) DO NOTHING
            """,
            (
                full_name,
                person_type.value,
                source_url,
                source_page_title,
                context_text,
                json.dumps(list(locations)),
                json.dumps(list(relationships)),
                gender,
                birth_year,
                confidence,
                status.value,
                extraction_method,
                now,
                now,
            ),
        )
        created = cur.rowcount == 1
        row = conn.execute(
            """
            SELECT * FROM unconfirmed_persons
            WHERE full_name = ? AND source_url = ? AND person_type = ?
            """,
            (full_name, source_url, person_type.value),
        ).fetchone()
        return UnconfirmedPerson.from_row(row), created

    def get_unconfirmed(self, lead_id: int, conn: sqlite3.Connection | None = None) -> UnconfirmedPerson | None:
        with self._reader(conn) as c:
            row = c.execute("SELECT * FROM unconfirmed_persons WHERE lead_id = ?", (lead_id,)).fetchone()
        return UnconfirmedPerson.from_row(row) if row else None

    def set_unconfirmed_status(
        self,
        conn: sqlite3.Connection,
        lead_id: int,
        status: UnconfirmedStatus,
        *,
        canonical_id: int | None = None,
        rejection_reason: str | None = None,
    ) -> None:
        conn.execute(
            """
            UPDATE unconfirmed_persons
            SET status = ?, canonical_person_id = COALESCE(?, canonical_person_id),
                rejection_reason = COALESCE(?, rejection_reason), updated_at = ?
            WHERE lead_id = ?
            """,
            (status.value, canonical_id, rejection_reason, self.db.now(), lead_id),
        )

    # --------------------------- Match queue --------------------------

    def enqueue_match(
        self,
        conn: sqlite3.Connection,
        *,
        unconfirmed_name: str,
        unconfirmed_person_id: int | None,
        candidates: Sequence[tuple[int, float]],
        location_context: Sequence[str],
        source_url: str | None,
        source_context: str | None,
        priority: int,
    ) -> int | None:
        """Insert a review item; returns None if the same name/source is already pending."""
        rows = conn.execute(
            """
            INSERT INTO name_match_queue (
                unconfirmed_name, unconfirmed_person_id, candidate_canonical_ids,
                candidate_scores, location_context, source_url, source_context,
                priority, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
            ON CONFLICT DO NOTHING
            RETURNING id
            """,
            (
                unconfirmed_name,
                unconfirmed_person_id,
                json.dumps([cid for cid, _ in candidates]),
                json.dumps([score for _, score in candidates]),
                json.dumps(list(location_context)),
                source_url,
                source_context,
                priority,
                self.db.now(),
            ),
        ).fetchall()
        return rows[0]["id"] if rows else None

    def get_match_item(self, item_id: int, conn: sqlite3.Connection | None = None) -> MatchQueueItem | None:
        with self._reader(conn) as c:
            row = c.execute("SELECT * FROM name_match_queue WHERE id = ?", (item_id,)).fetchone()
        return MatchQueueItem.from_row(row) if row else None

    def list_match_items(
        self, status: MatchQueueStatus | None = MatchQueueStatus.PENDING, limit: int = 50
    ) -> list[MatchQueueItem]:
        with self.db.connect() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM name_match_queue ORDER BY priority DESC, id LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM name_match_queue WHERE status = ?
                    ORDER BY priority DESC, id LIMIT ?
                    """,
                    (status.value, limit),
                ).fetchall()
        return [MatchQueueItem.from_row(r) for r in rows]

    def mark_match_resolved(
        self,
        conn: sqlite3.Connection,
        item_id: int,
        resolution: str,
        resolved_by: str,
        notes: str | None = None,
    ) -> bool:
        cur = conn.execute(
            """
            UPDATE name_match_queue
            SET status = 'resolved', resolution = ?, resolved_by = ?, resolved_at = ?,
                resolution_notes = ?
            WHERE id = ? AND status = 'pending'
            """,
            (resolution, resolved_by, self.db.now(), notes, item_id),
        )
        return cur.rowcount == 1

    # -------------------------- Relationships -------------------------

    def add_relationship(
        self,
        conn: sqlite3.Connection,
        subject_id: int,
        object_id: int,
        rel_type: RelationshipType,
        source_url: str,
        confidence: float,
    ) -> bool:
        """Insert a directed relationship; self-links for parent_of/spouse_of are refused."""
        if rel_type.forbids_self and subject_id == object_id:
            logger.warning("identity.self_relationship_skipped", person_id=subject_id, type=rel_type.value)
            return False
        cur = conn.execute(
            """
            INSERT INTO relationships (subject_id, object_id, type, source_url, confidence_score, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (subject_id, object_id, type, source_url) DO NOTHING
            """,
            (subject_id, object_id, rel_type.value, source_url, confidence, self.db.now()),
        )
        return cur.rowcount == 1

    def relationships_for(self, canonical_id: int) -> list[Relationship]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM relationships WHERE subject_id = ? OR object_id = ? ORDER BY id",
                (canonical_id, canonical_id),
            ).fetchall()
        return [Relationship.from_row(r) for r in rows]

    # ----------------------------- Queries ----------------------------

    def search(self, name: str, limit: int = 20) -> list[CanonicalPerson]:
        """Canonicals whose name, a variant, or the Soundex/Metaphone of first+last match."""
        parsed = parse_name(name)
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT cp.* FROM canonical_persons cp
                LEFT JOIN name_variants nv ON nv.canonical_person_id = cp.id
                WHERE cp.canonical_name LIKE ? COLLATE NOCASE
                   OR nv.variant_name LIKE ? COLLATE NOCASE
                   OR (cp.last_soundex = ? AND cp.first_soundex = ?)
                   OR (cp.last_metaphone = ? AND cp.first_metaphone = ?)
                ORDER BY cp.canonical_name, cp.id
                LIMIT ?
                """,
                (
                    f"%{name.strip()}%",
                    f"%{name.strip()}%",
                    soundex(parsed.last),
                    soundex(parsed.first),
                    metaphone(parsed.last),
                    metaphone(parsed.first),
                    limit,
                ),
            ).fetchall()
        return [CanonicalPerson.from_row(r) for r in rows]

    def stats(self) -> IdentityStats:
        with self.db.connect() as conn:
            canon = conn.execute("SELECT COUNT(*) FROM canonical_persons").fetchone()[0]
            variants = conn.execute("SELECT COUNT(*) FROM name_variants").fetchone()[0]
            rels = conn.execute("SELECT COUNT(*) FROM relationships").fetchone()[0]
            pending = conn.execute(
                "SELECT COUNT(*) FROM name_match_queue WHERE status = 'pending'"
            ).fetchone()[0]
            by_status = conn.execute(
                "SELECT status, COUNT(*) AS n FROM unconfirmed_persons GROUP BY status"
            ).fetchall()
        return IdentityStats(
            canonical_persons=canon,
            name_variants=variants,
            relationships=rels,
            pending_reviews=pending,
            unconfirmed_by_status={r["status"]: r["n"] for r in by_status},
        )
