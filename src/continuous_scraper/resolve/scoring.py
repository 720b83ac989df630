"""Candidate scoring and decision bands for identity resolution."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from continuous_scraper.models.persons import CanonicalPerson

from .names import ParsedName, parse_name
from .phonetics import levenshtein, metaphone, soundex, soundex_match


class MatchBand(str, Enum):
    LINK = "link"
    REVIEW = "review"
    CREATE = "create"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class MentionKey:
    """What the scorer needs to know about one accepted mention."""

    name: str
    role: str
    locations: tuple[str, ...] = ()
    birth_year: int | None = None

    @property
    def parsed(self) -> ParsedName:
        return parse_name(self.name)


@dataclass
class CandidateScore:
    canonical: CanonicalPerson
    score: float
    levenshtein_distance: int
    signals: list[str] = field(default_factory=list)


class MatchScorer:
    """Additive scorer over a canonical candidate.

    Name signals (exact, case-insensitive, Soundex pair, Metaphone pair) are
    summed and capped at ``NAME_CAP``; corroborating signals (location, birth
    year, type) add on top. Totals are clamped to [0, 1] and rounded to four
    places so band comparisons are exact.
    """

    WEIGHTS: ClassVar[dict[str, float]] = {
        "exact_name": 0.50,
        "exact_name_nocase": 0.45,
        "soundex_pair": 0.30,
        "metaphone_pair": 0.25,
        "location": 0.25,
        "birth_year": 0.15,
        "person_type": 0.10,
    }
    NAME_SIGNALS: ClassVar[tuple[str, ...]] = (
        "exact_name", "exact_name_nocase", "soundex_pair", "metaphone_pair",
    )
    NAME_CAP: ClassVar[float] = 0.70
    BIRTH_YEAR_WINDOW: ClassVar[int] = 15

    LINK_MIN: ClassVar[float] = 0.90
    REVIEW_MIN: ClassVar[float] = 0.60
    CANDIDATE_MIN: ClassVar[float] = 0.40
    CREATE_CONFIDENCE_MIN: ClassVar[float] = 0.75

    def score(
        self,
        mention: MentionKey,
        candidate: CanonicalPerson,
        variant_names: Iterable[str] = (),
    ) -> CandidateScore:
        parsed = mention.parsed
        rendered = parsed.full or mention.name
        names = [candidate.canonical_name, *variant_names]
        signals: list[str] = []

        if any(n == rendered or n == mention.name for n in names):
            signals.append("exact_name")
        if any(n.lower() in (rendered.lower(), mention.name.lower()) for n in names):
            signals.append("exact_name_nocase")
        if (
            soundex_match(soundex(parsed.first), candidate.first_soundex)
            and self._last_matches(soundex_match, soundex(parsed.last), candidate.last_soundex)
        ):
            signals.append("soundex_pair")
        if (
            parsed.first
            and metaphone(parsed.first) == candidate.first_metaphone
            and self._last_matches(str.__eq__, metaphone(parsed.last), candidate.last_metaphone)
        ):
            signals.append("metaphone_pair")

        name_score = min(self.NAME_CAP, sum(self.WEIGHTS[s] for s in signals))

        extra = 0.0
        if self._location_matches(mention.locations, candidate):
            signals.append("location")
            extra += self.WEIGHTS["location"]
        if (
            mention.birth_year is not None
            and candidate.birth_year_estimate is not None
            and abs(mention.birth_year - candidate.birth_year_estimate) <= self.BIRTH_YEAR_WINDOW
        ):
            signals.append("birth_year")
            extra += self.WEIGHTS["birth_year"]
        if mention.role == candidate.person_type.value:
            signals.append("person_type")
            extra += self.WEIGHTS["person_type"]

        total = round(max(0.0, min(1.0, name_score + extra)), 4)
        distance = levenshtein(rendered.lower(), candidate.canonical_name.lower())
        return CandidateScore(candidate, total, distance, signals)

    @staticmethod
    def _last_matches(eq, mention_code: str, candidate_code: str) -> bool:
        # single-name persons match single-name canonicals on the first name alone
        if not mention_code and not candidate_code:
            return True
        return bool(eq(mention_code, candidate_code))

    @staticmethod
    def _location_matches(locations: Sequence[str], candidate: CanonicalPerson) -> bool:
        wanted = {loc.strip().lower() for loc in locations if loc and loc.strip()}
        if not wanted:
            return False
        for place in (candidate.primary_state, candidate.primary_county):
            if place and place.strip().lower() in wanted:
                return True
        return False

    def rank(
        self,
        mention: MentionKey,
        candidates: Iterable[tuple[CanonicalPerson, Sequence[str]]],
    ) -> list[CandidateScore]:
        scored = [self.score(mention, c, variants) for c, variants in candidates]
        scored.sort(key=lambda s: (-s.score, s.levenshtein_distance, s.canonical.id))
        return scored

    def band(self, top_score: float | None, confidence: float, role: str) -> MatchBand:
        """Decision band for the top candidate score.

        ``>= 0.90`` links, ``[0.60, 0.90)`` goes to review, anything lower
        creates a canonical for a confident owner/enslaved mention and
        otherwise leaves an unconfirmed lead.
        """
        if top_score is not None and top_score >= self.LINK_MIN:
            return MatchBand.LINK
        if top_score is not None and top_score >= self.REVIEW_MIN:
            return MatchBand.REVIEW
        if confidence >= self.CREATE_CONFIDENCE_MIN and role in ("owner", "enslaved"):
            return MatchBand.CREATE
        return MatchBand.UNCONFIRMED


def review_priority(top_score: float | None) -> int:
    """Review-queue priority 1-10; borderline scores near the link bar first."""
    if top_score is None:
        return 3
    if 0.80 <= top_score < 0.90:
        return 8
    if 0.70 <= top_score < 0.80:
        return 6
    if 0.60 <= top_score < 0.70:
        return 4
    return 3
