"""Ancestor climb sessions."""
from __future__ import annotations

import json
from uuid import uuid4

import structlog

from continuous_scraper.models.climb import ClimbSession, FrontierItem

from .database import Database

logger = structlog.get_logger(__name__)


class ClimbStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(self, root_id: str, *, max_generations: int, cutoff_year: int) -> ClimbSession:
        session_id = uuid4().hex
        now = self.db.now()
        frontier = [FrontierItem(fs_id=root_id).model_dump()]
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO ancestor_climb_sessions
                    (id, root_id, status, frontier, visited, matches, visits,
                     max_generations, cutoff_year, created_at, updated_at)
                VALUES (?, ?, 'in_progress', ?, '[]', '[]', 0, ?, ?, ?, ?)
                """,
                (session_id, root_id, json.dumps(frontier), max_generations, cutoff_year, now, now),
            )
        logger.info("climb.session_created", session_id=session_id, root_id=root_id)
        return self.load(session_id)  # type: ignore[return-value]

    def save(self, session: ClimbSession) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE ancestor_climb_sessions
                SET status = ?, frontier = ?, visited = ?, matches = ?, visits = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    session.status.value,
                    json.dumps([f.model_dump() for f in session.frontier]),
                    json.dumps(sorted(session.visited)),
                    json.dumps([m.model_dump() for m in session.matches]),
                    session.visits,
                    self.db.now(),
                    session.id,
                ),
            )
        logger.debug("climb.snapshot", session_id=session.id, visits=session.visits, frontier=len(session.frontier))

    def load(self, session_id: str) -> ClimbSession | None:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM ancestor_climb_sessions WHERE id = ?", (session_id,)).fetchone()
        return ClimbSession.from_row(row) if row else None
