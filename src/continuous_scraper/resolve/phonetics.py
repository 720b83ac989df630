"""Phonetic and edit-distance codes used for identity matching.

Soundex and Metaphone are total on any input: non-letters are stripped and an
empty result encodes as ``""``.
"""
from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

# Letters that sound similar share a digit; A, E, I, O, U, H, W, Y are not coded
_SOUNDEX_MAP = {
    'B': '1', 'F': '1', 'P': '1', 'V': '1',
    'C': '2', 'G': '2', 'J': '2', 'K': '2', 'Q': '2', 'S': '2', 'X': '2', 'Z': '2',
    'D': '3', 'T': '3',
    'L': '4',
    'M': '5', 'N': '5',
    'R': '6',
}


def _letters(name: str) -> str:
    return re.sub(r'[^A-Z]', '', (name or "").upper())


def soundex(name: str) -> str:
    """American Soundex code for a name.

    Examples:
        soundex("Robert") -> "R163"
        soundex("Rupert") -> "R163"
        soundex("Carter") -> "C636"
        soundex("Karter") -> "K636"

    Args:
        name: Name to encode

    Returns:
        4-character code (letter + 3 digits), or "" when the name has no letters
    """
    name = _letters(name)
    if not name:
        return ""

    code = name[0]
    prev_digit = _SOUNDEX_MAP.get(name[0], '0')

    for char in name[1:]:
        digit = _SOUNDEX_MAP.get(char, '0')
        if digit != '0' and digit != prev_digit:
            code += digit
        # H and W do not separate letters with the same code; vowels do
        if char not in 'HW':
            prev_digit = digit

    return (code + '000')[:4]


def soundex_match(a: str, b: str) -> bool:
    """Whether two Soundex codes denote the same sound.

    Digits must agree; initial letters must be equal or share a consonant
    class, so ``C636`` and ``K636`` match.
    """
    if not a or not b:
        return False
    if a == b:
        return True
    if a[1:] != b[1:]:
        return False
    ca, cb = _SOUNDEX_MAP.get(a[0]), _SOUNDEX_MAP.get(b[0])
    return ca is not None and ca == cb


# Word-initial rules, applied once
_INITIAL = [
    (r'^KN', 'N'),
    (r'^GN', 'N'),
    (r'^PN', 'N'),
    (r'^AE', 'E'),
    (r'^WR', 'R'),
    (r'^WH', 'W'),
    (r'^X', 'S'),
]

_TRANSFORMS = [
    (r'MB$', 'M'),
    (r'GH', ''),
    (r'PH', 'F'),
    (r'SCH', 'SK'),
    (r'TCH', 'X'),
    (r'SH', 'X'),
    (r'CH', 'X'),
    (r'TH', '0'),  # 0 represents 'th' sound
    (r'CK', 'K'),
    (r'C([IEY])', r'S\1'),
    (r'C', 'K'),
    (r'DG([IEY])', r'J\1'),
    (r'D', 'T'),
    (r'G([IEY])', r'J\1'),
    (r'GN', 'N'),
    (r'G', 'K'),
    (r'Q', 'K'),
    (r'X', 'KS'),
    (r'Z', 'S'),
    (r'V', 'F'),
]


def metaphone(name: str) -> str:
    """Simplified Metaphone code for a name.

    Consonant rules apply to the whole word, including its first letter, so
    ``Carter`` and ``Karter`` both encode as ``KRTR``. Vowels are kept only in
    first position.

    Args:
        name: Name to encode

    Returns:
        Metaphone code of at most 6 characters, or ""
    """
    name = _letters(name)
    if not name:
        return ""

    # Drop duplicate adjacent letters except C (ACCENT -> AKSENT)
    result = name[0]
    for char in name[1:]:
        if char != result[-1] or char == 'C':
            result += char
    name = result

    for pattern, replacement in _INITIAL:
        name = re.sub(pattern, replacement, name)
    for pattern, replacement in _TRANSFORMS:
        name = re.sub(pattern, replacement, name)
    if not name:
        return ""

    first, rest = name[0], name[1:]
    rest = re.sub(r'[AEIOU]', '', rest)
    rest = re.sub(r'[HWY]', '', rest)

    result = first + rest
    result = re.sub(r'(.)\1+', r'\1', result)
    return result[:6]


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    return Levenshtein.distance(a or "", b or "")
