"""Tests for phonetic codes and name parsing."""
from __future__ import annotations

import pytest

from continuous_scraper.resolve.names import ParsedName, normalize_name, parse_name
from continuous_scraper.resolve.phonetics import levenshtein, metaphone, soundex, soundex_match


class TestSoundex:
    @pytest.mark.parametrize(
        ("name", "code"),
        [
            ("Robert", "R163"),
            ("Rupert", "R163"),
            ("Carter", "C636"),
            ("Karter", "K636"),
            ("Tymczak", "T522"),
            ("Pfister", "P236"),
            ("Ashcraft", "A261"),
            ("Lee", "L000"),
        ],
    )
    def test_codes(self, name, code):
        assert soundex(name) == code

    def test_total_on_junk(self):
        assert soundex("") == ""
        assert soundex("1850") == ""
        assert soundex("o'brien") == "O165"

    def test_match_across_consonant_class(self):
        assert soundex_match("C636", "K636")
        assert soundex_match("S530", "Z530")
        assert not soundex_match("C636", "C635")
        assert not soundex_match("B163", "R163")
        assert not soundex_match("", "")


class TestMetaphone:
    @pytest.mark.parametrize(
        ("a", "b"),
        [("Carter", "Karter"), ("Smith", "Smyth"), ("Knight", "Night"), ("Phillips", "Filips")],
    )
    def test_sound_alikes(self, a, b):
        assert metaphone(a) == metaphone(b)

    def test_carter(self):
        assert metaphone("Carter") == "KRTR"

    def test_different_names(self):
        assert metaphone("Smith") != metaphone("Jones")

    def test_empty(self):
        assert metaphone("") == ""


class TestLevenshtein:
    def test_distance(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("", "abc") == 3
        assert levenshtein("same", "same") == 0


class TestParseName:
    def test_uppercase(self):
        assert parse_name("JOHN SMITH") == ParsedName(first="John", last="Smith")

    def test_inverted_with_suffix(self):
        assert parse_name("Smith, John Jr.") == ParsedName(first="John", last="Smith", suffix="Jr.")

    def test_particle(self):
        assert parse_name("Martin Van Buren") == ParsedName(first="Martin", last="Van Buren")

    def test_honorific_stripped(self):
        parsed = parse_name("Dr. James Hill")

        assert parsed.first == "James"
        assert parsed.last == "Hill"

    def test_period_titles_stripped(self):
        assert parse_name("Widow Mary Jones") == ParsedName(first="Mary", last="Jones")
        assert parse_name("Dr. Hill") == ParsedName(first="Hill")

    def test_suffix_without_comma(self):
        assert parse_name("thomas jones sr") == ParsedName(first="Thomas", last="Jones", suffix="Sr.")

    def test_middle_name(self):
        parsed = parse_name("John Quincy Adams")

        assert parsed.middle == "Quincy"
        assert parsed.full == "John Quincy Adams"

    def test_single_name(self):
        assert parse_name("Peter") == ParsedName(first="Peter")

    def test_mixed_case_kept(self):
        assert parse_name("angus McDonald").last == "McDonald"

    @pytest.mark.parametrize("raw", ["Smith, John Jr.", "JOHN SMITH", "Martin Van Buren", "Peter", "Mary Ann O'Neal III"])
    def test_render_is_stable(self, raw):
        parsed = parse_name(raw)

        assert parse_name(parsed.render()) == parsed

    def test_normalize(self):
        assert normalize_name("  smith,   john ") == "John Smith"
