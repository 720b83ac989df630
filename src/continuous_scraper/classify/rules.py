"""Anchor phrases for role classification, kept as data.

Each rule is ``(pattern, role, window)``. The window is ``(before, after)``:
how many characters may separate an anchor that precedes the name from the
name's start, and an anchor that follows the name from its end. Rules are
walked in order; the petition parser reuses the same anchors to find names.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from continuous_scraper.models.mentions import FinalRole

# Capitalised given name, optional initial, up to two more capitalised words
NAME_PATTERN = r"(?P<name>[A-Z][a-z]+(?:\s+[A-Z]\.)?(?:\s+[A-Z][a-z]+){0,2})"


@dataclass(frozen=True)
class AnchorRule:
    label: str
    pattern: re.Pattern[str]
    role: FinalRole
    before: int
    after: int

    def finditer(self, text: str):
        return self.pattern.finditer(text)

    def near(self, text: str, start: int, end: int) -> re.Match[str] | None:
        """First anchor occurrence within the window around ``text[start:end]``."""
        for m in self.pattern.finditer(text):
            if m.end() <= start and start - m.end() <= self.before:
                return m
            if m.start() >= end and m.start() - end <= self.after:
                return m
        return None


def _anchor(label: str, phrase: str, role: FinalRole, before: int, after: int) -> AnchorRule:
    return AnchorRule(label, re.compile(phrase), role, before, after)


OFFICIAL_RULES: tuple[AnchorRule, ...] = (
    _anchor("witness_for_petitioner", r"(?i:witness(?:es)?\s+for\s+(?:the\s+)?petitioners?)", FinalRole.OFFICIAL, 50, 0),
    _anchor("justice_of_the_peace", r"(?i:justice\s+of\s+the\s+peace)", FinalRole.OFFICIAL, 50, 0),
    _anchor("sworn_before", r"(?i:sworn\s+to\s+and\s+subscribed\s+before\s+me)", FinalRole.OFFICIAL, 50, 0),
    _anchor("signed_by", r"(?i:\(\s*signed\s+by\s*\))", FinalRole.OFFICIAL, 50, 0),
)

ENSLAVED_RULES: tuple[AnchorRule, ...] = (
    _anchor(
        "racial_descriptor",
        r"(?i:(?:negro|colou?red|mulatto)\s+(?:man|woman|boy|girl|child)(?:\s+(?:named|called))?)",
        FinalRole.ENSLAVED, 100, 100,
    ),
    _anchor("service_or_labor", r"(?i:service\s+or\s+labou?r\s+of)", FinalRole.ENSLAVED, 100, 100),
    _anchor("slave_named", r"(?i:slaves?\s+(?:named|called))", FinalRole.ENSLAVED, 100, 100),
)

# "Petition of NAME" / "your petitioner NAME"
PETITIONER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i:petition\s+of)\s+" + NAME_PATTERN),
    re.compile(r"(?i:your\s+petitioner),?\s+" + NAME_PATTERN),
)


def name_after(rule: AnchorRule) -> re.Pattern[str]:
    """The rule's anchor immediately followed by a name."""
    return re.compile(rule.pattern.pattern + r"[\s,:]*" + NAME_PATTERN)


PETITIONER_CONFIDENCE = 0.85
ENSLAVED_CONFIDENCE = 0.80
ADOPT_PARSER_MIN = 0.75
AMBIGUOUS_CONFIDENCE = 0.50
