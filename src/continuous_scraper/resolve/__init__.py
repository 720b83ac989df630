"""Identity resolution: name parsing, phonetic codes, candidate scoring, resolver."""
