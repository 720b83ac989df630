"""Second-pass role classification over a page's mentions.

Rules are walked in order and the first that fires decides:

1. name fails the validity filter: rejected
2. official anchor just before the name: official (rejected)
3. the page names this person as petitioner: owner
4. enslaved anchor near the name: enslaved
5. parser's own owner/enslaved guess at or above ``adopt_min``: adopted
6. otherwise ambiguous, for human review

Mentions are never dropped; each comes back with a final role.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from continuous_scraper.models.mentions import (
    ClassifiedMention,
    ExtractedMention,
    FinalRole,
    MentionRole,
    ProseMention,
)
from continuous_scraper.parsers.names import rejection_reason

from .rules import (
    ADOPT_PARSER_MIN,
    AMBIGUOUS_CONFIDENCE,
    ENSLAVED_CONFIDENCE,
    ENSLAVED_RULES,
    OFFICIAL_RULES,
    PETITIONER_CONFIDENCE,
    PETITIONER_PATTERNS,
    AnchorRule,
)

logger = structlog.get_logger(__name__)

_ADOPTABLE = {MentionRole.OWNER: FinalRole.OWNER, MentionRole.ENSLAVED: FinalRole.ENSLAVED}


def petitioner_names(page_text: str) -> list[str]:
    return [m.group("name") for p in PETITIONER_PATTERNS for m in p.finditer(page_text)]


class RoleClassifier:
    def __init__(
        self,
        official_rules: Sequence[AnchorRule] = OFFICIAL_RULES,
        enslaved_rules: Sequence[AnchorRule] = ENSLAVED_RULES,
        adopt_min: float = ADOPT_PARSER_MIN,
    ) -> None:
        self.official_rules = tuple(official_rules)
        self.enslaved_rules = tuple(enslaved_rules)
        self.adopt_min = adopt_min

    def classify(self, mentions: Iterable[ExtractedMention], page_text: str = "") -> list[ClassifiedMention]:
        petitioners = [p.lower() for p in petitioner_names(page_text)]
        out = [self.classify_one(m, page_text, petitioners) for m in mentions]
        logger.debug(
            "classifier.page_done",
            mentions=len(out),
            accepted=sum(1 for c in out if c.accepted),
        )
        return out

    def classify_one(
        self,
        mention: ExtractedMention,
        page_text: str = "",
        petitioners: Sequence[str] = (),
    ) -> ClassifiedMention:
        name = mention.name

        reason = rejection_reason(mention.raw_name)
        if reason is not None:
            return self._decide(mention, FinalRole.REJECTED, 0.0, "name_filter", reason)

        located = self._locate(mention, page_text)
        if located is not None:
            text, start, end = located
            for rule in self.official_rules:
                if rule.near(text, start, end):
                    return self._decide(
                        mention, FinalRole.OFFICIAL, mention.confidence_score, rule.label, "procedural official"
                    )

        lowered = name.lower()
        if any(lowered in p or p in lowered for p in petitioners):
            return self._decide(mention, FinalRole.OWNER, PETITIONER_CONFIDENCE, "petitioner")

        if located is not None:
            text, start, end = located
            for rule in self.enslaved_rules:
                if rule.near(text, start, end):
                    return self._decide(mention, FinalRole.ENSLAVED, ENSLAVED_CONFIDENCE, rule.label)

        adopted = _ADOPTABLE.get(mention.role)
        if adopted is not None and mention.confidence_score >= self.adopt_min:
            return self._decide(mention, adopted, mention.confidence_score, "parser_role")

        return self._decide(
            mention,
            FinalRole.AMBIGUOUS,
            min(mention.confidence_score, AMBIGUOUS_CONFIDENCE),
            "ambiguous",
        )

    @staticmethod
    def _locate(mention: ExtractedMention, page_text: str) -> tuple[str, int, int] | None:
        """Where the name sits: its span in the page text, else its first occurrence in the context."""
        shape = mention.shape
        if isinstance(shape, ProseMention) and page_text[shape.span_start:shape.span_end] == mention.raw_name:
            return page_text, shape.span_start, shape.span_end
        idx = mention.context_text.find(mention.raw_name)
        if idx < 0:
            return None
        return mention.context_text, idx, idx + len(mention.raw_name)

    @staticmethod
    def _decide(
        mention: ExtractedMention,
        role: FinalRole,
        confidence: float,
        rule: str,
        reason: str | None = None,
    ) -> ClassifiedMention:
        if role in (FinalRole.REJECTED, FinalRole.OFFICIAL):
            logger.debug("classifier.rejected", name=mention.raw_name, role=role.value, rule=rule, reason=reason)
        return ClassifiedMention(mention=mention, role=role, confidence=confidence, rule=rule, reason=reason)
