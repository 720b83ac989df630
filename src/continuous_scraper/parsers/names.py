"""Name-validity filter shared by every parser and the classifier."""
from __future__ import annotations

import re

import structlog

from continuous_scraper.errors import ValidationError

logger = structlog.get_logger(__name__)

# Column headers, legal boilerplate and page furniture that OCR picks up as names
DENYLIST = frozenset({
    "names", "name", "age", "ages", "sex", "color", "colour", "black", "mulatto",
    "male", "female", "owner", "owners", "slave", "slaves", "slaveholder", "slave holder",
    "slave owner", "name of slave holder", "name of slaveholder", "number of slaves",
    "aforesaid", "the aforesaid", "said", "the said", "your petitioner", "petitioner",
    "your petitioners", "petitioners", "witness", "witness for petitioner", "justice",
    "justice of the peace", "the peace", "sworn", "subscribed", "signed", "his mark",
    "her mark", "deceased", "estate", "heirs", "county", "state", "district", "total",
    "ditto", "do", "schedule", "page", "line", "census", "township", "enumerated",
    "assistant marshal", "image index", "family tree", "full text", "browse images",
    "united states", "commonwealth", "court", "clerk", "register", "unknown",
})

_VOWELS = set("AEIOUYaeiouy")
_PLACEHOLDER = re.compile(r"^unknown\s*\(", re.I)


def rejection_reason(raw: str) -> str | None:
    """Why ``raw`` is not a usable person name, or None when it is."""
    if raw is None:
        return "empty"
    if "\n" in raw or "\r" in raw:
        return "contains newline"
    name = " ".join(raw.split())
    if len(name) < 2:
        return "too short"
    if re.fullmatch(r"[\d\s.,\-/]+", name):
        return "numeric"
    if _PLACEHOLDER.match(name):
        return "placeholder"
    if name.lower().strip(" .,:;") in DENYLIST:
        return "denylisted token"
    if name.isupper() and not (set(name) & _VOWELS):
        return "uppercase without vowel"
    return None


def is_valid_name(raw: str) -> bool:
    return rejection_reason(raw) is None


def validate_name(raw: str) -> str:
    """Return the whitespace-normalised name.

    Raises:
        ValidationError: the name fails the filter
    """
    reason = rejection_reason(raw)
    if reason is not None:
        logger.debug("parser.name_rejected", name=raw, reason=reason)
        raise ValidationError(raw, reason)
    return " ".join(raw.split())

