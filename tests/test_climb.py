"""Tests for the resumable ancestor climb."""
from __future__ import annotations

import pytest
from conftest import add_canonical

from continuous_scraper.climb import AncestorClimber
from continuous_scraper.errors import HTTP5xxError
from continuous_scraper.models.climb import ClimbStatus
from continuous_scraper.parsers.pedigree import PedigreePerson
from continuous_scraper.resolve.resolver import IdentityResolver
from continuous_scraper.store.climb import ClimbStore


def person(fs_id: str, name: str, born: int, *parents: str) -> PedigreePerson:
    father, mother = (list(parents) + [None, None])[:2]
    return PedigreePerson(fs_id=fs_id, name=name, birth_year=born, father_id=father, mother_id=mother)


class FakeTree:
    """Five generations; C is a known slaveholder, F was born before the cutoff."""

    def __init__(self) -> None:
        self.people = {
            p.fs_id: p
            for p in [
                person("R", "Ann Lee", 1850, "A", "B"),
                person("A", "Robert Lee", 1820, "C", "D"),
                person("B", "Mary Hill", 1825, "C", "D"),
                person("C", "James Hill", 1792, "F"),
                person("D", "Sarah Lee", 1795),
                person("F", "Thomas Hill", 1690, "G"),
                person("G", "Edward Hill", 1660),
            ]
        }
        self.calls: list[str] = []
        self.broken: set[str] = set()
        self.crash_once: set[str] = set()

    def person(self, fs_id: str) -> PedigreePerson:
        self.calls.append(fs_id)
        if fs_id in self.crash_once:
            self.crash_once.discard(fs_id)
            raise RuntimeError("browser went away")
        if fs_id in self.broken:
            raise HTTP5xxError(f"HTTP 503 for {fs_id}", 503)
        return self.people[fs_id]


@pytest.fixture()
def tree() -> FakeTree:
    return FakeTree()


@pytest.fixture()
def store(db) -> ClimbStore:
    return ClimbStore(db)


@pytest.fixture()
def slaveholder(db):
    return add_canonical(db, "James Hill", birth_year=1795, primary_state="Virginia")


def climber(tree, store, db, **kwargs) -> AncestorClimber:
    return AncestorClimber(tree, store, IdentityResolver(db), **kwargs)


class TestClimb:
    def test_breadth_first_match(self, tree, store, db, slaveholder):
        session = climber(tree, store, db).start("R")

        assert session.status is ClimbStatus.COMPLETED
        assert tree.calls == ["R", "A", "B", "C", "D", "F"]
        assert session.visits == 6
        assert session.frontier == []
        [match] = session.matches
        assert match.fs_id == "C"
        assert match.canonical_id == slaveholder.id
        assert match.depth == 2
        assert match.path == ["Ann Lee", "Robert Lee", "James Hill"]
        assert match.score >= 0.90

    def test_session_is_persisted(self, tree, store, db, slaveholder):
        session = climber(tree, store, db).start("R")

        loaded = store.load(session.id)

        assert loaded.status is ClimbStatus.COMPLETED
        assert loaded.visited == {"R", "A", "B", "C", "D", "F"}
        assert [m.fs_id for m in loaded.matches] == ["C"]

    def test_generation_limit(self, tree, store, db, slaveholder):
        session = climber(tree, store, db, max_generations=1).start("R")

        assert tree.calls == ["R", "A", "B"]
        assert session.matches == []

    def test_cutoff_year_stops_the_branch(self, tree, store, db):
        climber(tree, store, db, cutoff_year=1800).start("R")

        # C (1792) is visited but its parents are not
        assert "C" in tree.calls
        assert "F" not in tree.calls

    def test_no_match_without_corroboration(self, tree, store, db):
        add_canonical(db, "Robert Lee")

        session = climber(tree, store, db).start("R")

        assert session.matches == []

    def test_fetch_errors_are_skipped(self, tree, store, db, slaveholder):
        tree.broken.add("A")

        session = climber(tree, store, db).start("R")

        assert session.status is ClimbStatus.COMPLETED
        assert session.visits == 6
        [match] = session.matches
        assert match.path == ["Ann Lee", "Mary Hill", "James Hill"]


class TestResume:
    def test_resume_after_crash(self, tree, store, db, slaveholder):
        tree.crash_once.add("C")
        runner = climber(tree, store, db)

        with pytest.raises(RuntimeError):
            runner.start("R")

        [row] = _sessions(db)
        saved = store.load(row)
        assert saved.status is ClimbStatus.FAILED
        assert saved.visits == 3
        assert "C" not in saved.visited
        assert saved.frontier[0].fs_id == "C"

        session = runner.resume(saved.id)

        assert session.status is ClimbStatus.COMPLETED
        assert session.visits == 6
        assert [m.fs_id for m in session.matches] == ["C"]
        assert tree.calls.count("R") == 1

    def test_completed_session_returned_as_is(self, tree, store, db, slaveholder):
        runner = climber(tree, store, db)
        done = runner.start("R")
        calls = len(tree.calls)

        again = runner.resume(done.id)

        assert again.status is ClimbStatus.COMPLETED
        assert len(tree.calls) == calls

    def test_unknown_session(self, tree, store, db):
        with pytest.raises(KeyError):
            climber(tree, store, db).resume("missing")


def _sessions(db) -> list[str]:
    with db.connect() as conn:
        return [r["id"] for r in conn.execute("SELECT id FROM ancestor_climb_sessions")]
