"""Person-name parsing for identity resolution.

``parse_name`` normalises capitalisation, strips honorifics, detects suffixes
(Jr/Sr/II/III/IV) and surname particles, and accepts the ``Last, First`` form.
Titles and particles are recognised by ``nameparser``. Parsing is idempotent
through rendering: ``parse_name(parsed.render())`` returns an equal
``ParsedName``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from nameparser import HumanName
from nameparser.config import Constants

from .phonetics import metaphone, soundex

SUFFIXES = {
    "jr": "Jr.",
    "junior": "Jr.",
    "sr": "Sr.",
    "senior": "Sr.",
    "ii": "II",
    "iii": "III",
    "iv": "IV",
}

_CONSTANTS = Constants()
# honorifics seen in petitions and schedules that nameparser does not ship
_CONSTANTS.titles.add("widow", "judge", "esq")


@dataclass(frozen=True)
class ParsedName:
    first: str
    last: str = ""
    middle: str | None = None
    suffix: str | None = None

    def render(self) -> str:
        parts = [self.first, self.middle or "", self.last, self.suffix or ""]
        return " ".join(p for p in parts if p)

    @property
    def full(self) -> str:
        """First, middle and last without the suffix."""
        return " ".join(p for p in (self.first, self.middle or "", self.last) if p)

    @property
    def first_soundex(self) -> str:
        return soundex(self.first)

    @property
    def last_soundex(self) -> str:
        return soundex(self.last)

    @property
    def first_metaphone(self) -> str:
        return metaphone(self.first)

    @property
    def last_metaphone(self) -> str:
        return metaphone(self.last)


def _cap(token: str) -> str:
    """Title-case a token that is all upper or all lower; keep mixed case (McDonald)."""
    if token.isupper() or token.islower():
        return re.sub(
            r"[A-Za-z]+",
            lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(),
            token,
        )
    return token


def _cap_all(text: str) -> str:
    return " ".join(_cap(t) for t in text.split())


def _key(token: str) -> str:
    return token.lower().rstrip(".")


def parse_name(raw: str) -> ParsedName:
    """Split a raw name into first/middle/last/suffix.

    Examples:
        parse_name("JOHN SMITH") -> ParsedName(first="John", last="Smith")
        parse_name("Smith, John Jr.") -> ParsedName(first="John", last="Smith", suffix="Jr.")
        parse_name("Martin Van Buren") -> ParsedName(first="Martin", last="Van Buren")
        parse_name("Peter") -> ParsedName(first="Peter")
    """
    text = " ".join((raw or "").replace("\n", " ").split())
    text = re.sub(r"[^\w\s,.'\-]", "", text)

    if "," in text:
        head, _, tail = text.partition(",")
        tail_tokens = tail.split()
        # "Smith, Jr." is a suffix, not an inverted name
        if tail_tokens and not all(_key(t) in SUFFIXES for t in tail_tokens):
            given = [t for t in tail_tokens if _key(t) not in SUFFIXES]
            suffixes = [t for t in tail_tokens if _key(t) in SUFFIXES]
            text = " ".join([*given, head.strip(), *suffixes])
        else:
            text = f"{head.strip()} {tail.strip()}"

    tokens = [t for t in text.replace(",", " ").split() if t.strip(".")]

    suffix = None
    while len(tokens) > 1 and _key(tokens[-1]) in SUFFIXES:
        suffix = SUFFIXES[_key(tokens.pop())]
    if not tokens:
        return ParsedName(first="")
    if len(tokens) == 1:
        return ParsedName(first=_cap(tokens[0]), suffix=suffix)

    human = HumanName(" ".join(tokens), constants=_CONSTANTS)
    if suffix is None and _key(human.suffix) in SUFFIXES:
        suffix = SUFFIXES[_key(human.suffix)]

    first, middle, last = human.first, human.middle, human.last
    if not first:
        # "Dr. Hill": a title and one name
        first, last = last, ""
    if not first:
        first = tokens[-1]
    return ParsedName(
        first=_cap_all(first),
        last=_cap_all(last),
        middle=_cap_all(middle) or None,
        suffix=suffix,
    )


def normalize_name(raw: str) -> str:
    """Rendered form of ``parse_name(raw)``."""
    return parse_name(raw).render()
