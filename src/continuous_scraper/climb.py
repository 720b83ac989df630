"""Ancestor climbing: breadth-first walk up a family tree looking for slaveholders.

The frontier, visited set and matches are snapshotted every
``snapshot_every`` visits so an interrupted climb resumes where it stopped.
"""
from __future__ import annotations

from collections import deque

import structlog

from continuous_scraper.errors import ScraperError
from continuous_scraper.models.climb import ClimbMatch, ClimbSession, ClimbStatus, FrontierItem
from continuous_scraper.parsers.names import is_valid_name
from continuous_scraper.parsers.pedigree import PedigreeClient, PedigreePerson
from continuous_scraper.resolve.resolver import IdentityResolver
from continuous_scraper.store.climb import ClimbStore

logger = structlog.get_logger(__name__)

DEFAULT_MAX_GENERATIONS = 15
DEFAULT_CUTOFF_YEAR = 1700
MATCH_MIN = 0.90


class AncestorClimber:
    def __init__(
        self,
        client: PedigreeClient,
        store: ClimbStore,
        resolver: IdentityResolver,
        *,
        max_generations: int = DEFAULT_MAX_GENERATIONS,
        cutoff_year: int = DEFAULT_CUTOFF_YEAR,
        snapshot_every: int = 10,
    ) -> None:
        self.client = client
        self.store = store
        self.resolver = resolver
        self.max_generations = max_generations
        self.cutoff_year = cutoff_year
        self.snapshot_every = max(1, snapshot_every)

    def start(self, root_id: str) -> ClimbSession:
        session = self.store.create(root_id, max_generations=self.max_generations, cutoff_year=self.cutoff_year)
        return self._climb(session)

    def resume(self, session_id: str) -> ClimbSession:
        session = self.store.load(session_id)
        if session is None:
            raise KeyError(f"climb session {session_id} not found")
        if session.status is ClimbStatus.COMPLETED:
            return session
        session.status = ClimbStatus.IN_PROGRESS
        logger.info("climb.resumed", session_id=session.id, visits=session.visits, frontier=len(session.frontier))
        return self._climb(session)

    def _match(self, person: PedigreePerson) -> ClimbMatch | None:
        # single given names match far too much
        if not person.name or len(person.name.split()) < 2 or not is_valid_name(person.name):
            return None
        best = self.resolver.best_match(person.name, role="owner", locations=person.locations, birth_year=person.birth_year)
        if best is None or best.score < MATCH_MIN:
            return None
        return ClimbMatch(
            fs_id=person.fs_id,
            name=person.name,
            depth=0,
            canonical_id=best.canonical.id,
            canonical_name=best.canonical.canonical_name,
            score=best.score,
        )

    def _climb(self, session: ClimbSession) -> ClimbSession:
        log = logger.bind(session_id=session.id, root_id=session.root_id)
        frontier = deque(session.frontier)
        since_snapshot = 0
        current: FrontierItem | None = None
        try:
            while frontier:
                item = current = frontier.popleft()
                if item.fs_id in session.visited or item.depth > session.max_generations:
                    continue
                session.visited.add(item.fs_id)
                session.visits += 1
                since_snapshot += 1

                try:
                    person = self.client.person(item.fs_id)
                except ScraperError as exc:
                    log.warning("climb.person_failed", fs_id=item.fs_id, error=exc.describe())
                    person = None

                if person is not None and person.name:
                    path = [*item.path, person.name]
                    match = self._match(person)
                    if match is not None:
                        match.depth = item.depth
                        match.path = path
                        session.matches.append(match)
                        log.info("climb.match", fs_id=person.fs_id, name=person.name, canonical_id=match.canonical_id, depth=item.depth)

                    past_cutoff = person.birth_year is not None and person.birth_year < session.cutoff_year
                    if item.depth < session.max_generations and not past_cutoff:
                        for parent_id in person.parent_ids:
                            if parent_id not in session.visited:
                                frontier.append(FrontierItem(fs_id=parent_id, depth=item.depth + 1, path=path))

                current = None
                if since_snapshot >= self.snapshot_every:
                    session.frontier = list(frontier)
                    self.store.save(session)
                    since_snapshot = 0
        except Exception:
            # the interrupted node is retried on resume
            if current is not None:
                frontier.appendleft(current)
                session.visited.discard(current.fs_id)
                session.visits -= 1
            session.frontier = list(frontier)
            session.status = ClimbStatus.FAILED
            self.store.save(session)
            log.exception("climb.failed", visits=session.visits)
            raise

        session.frontier = []
        session.status = ClimbStatus.COMPLETED
        self.store.save(session)
        log.info("climb.completed", visits=session.visits, matches=len(session.matches))
        return session
