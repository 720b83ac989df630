"""Tests for OCR routing and document-type detection."""
from __future__ import annotations

import pytest

from continuous_scraper.errors import OCRFailedError
from continuous_scraper.ocr import DocumentType, EngineOutput, OCRRouter, OCRService, detect_document_type, score_document_type


class FakeEngine:
    def __init__(self, service: OCRService, text: str = "", confidence: float = 0.9, error: Exception | None = None):
        self.service = service
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls = 0

    def recognize(self, data: bytes, content_type: str) -> EngineOutput:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return EngineOutput(text=self.text, confidence=self.confidence, per_page_text=[self.text])


def vision(**kwargs) -> FakeEngine:
    return FakeEngine(OCRService.GOOGLE_VISION, **kwargs)


def tesseract(**kwargs) -> FakeEngine:
    return FakeEngine(OCRService.TESSERACT, **kwargs)


class TestBypass:
    def test_html_is_not_ocred(self):
        primary = vision(text="never")
        router = OCRRouter(primary, None)

        result = router.extract(b"<html><body><p>Petition of John Smith</p><script>x=1</script></body></html>", "text/html")

        assert result.service is OCRService.NONE
        assert result.confidence == 1.0
        assert result.text == "Petition of John Smith"
        assert primary.calls == 0

    def test_unknown_charset_decodes_as_utf8(self):
        body = "<html><body><p>Petition of José Smith</p></body></html>".encode()

        result = OCRRouter(None, None).extract(body, "text/html; charset=bogus-xyz")

        assert result.service is OCRService.NONE
        assert result.text == "Petition of José Smith"

    def test_json_is_pretty_printed(self):
        result = OCRRouter(None, None).extract(b'{"name": "Peter"}', "application/json")

        assert '"name": "Peter"' in result.text
        assert result.service is OCRService.NONE


class TestEngines:
    def test_confident_primary_wins(self):
        primary = vision(text="primary", confidence=0.92)
        fallback = tesseract(text="fallback", confidence=0.99)

        result = OCRRouter(primary, fallback).extract(b"\x89PNG", "image/png")

        assert result.service is OCRService.GOOGLE_VISION
        assert result.text == "primary"
        assert fallback.calls == 0

    def test_low_confidence_primary_runs_fallback(self):
        primary = vision(text="primary", confidence=0.50)
        fallback = tesseract(text="fallback", confidence=0.70)

        result = OCRRouter(primary, fallback).extract(b"\x89PNG", "image/png")

        assert result.service is OCRService.TESSERACT
        assert [a.service for a in result.attempts] == [OCRService.GOOGLE_VISION, OCRService.TESSERACT]

    def test_higher_confidence_kept_when_fallback_is_worse(self):
        primary = vision(text="primary", confidence=0.60)
        fallback = tesseract(text="fallback", confidence=0.40)

        result = OCRRouter(primary, fallback).extract(b"\x89PNG", "image/png")

        assert result.text == "primary"

    def test_primary_failure_falls_back(self):
        primary = vision(error=OCRFailedError("quota"))
        fallback = tesseract(text="fallback", confidence=0.65)

        result = OCRRouter(primary, fallback).extract(b"\x89PNG", "image/png")

        assert result.service is OCRService.TESSERACT
        assert result.attempts[0].error == "ocr_failed: quota"

    def test_all_engines_failing_raises(self):
        router = OCRRouter(vision(error=OCRFailedError("quota")), tesseract(error=OCRFailedError("missing binary")))

        with pytest.raises(OCRFailedError):
            router.extract(b"\x89PNG", "image/png")

    def test_no_engines_raises(self):
        with pytest.raises(OCRFailedError):
            OCRRouter(None, None).extract(b"\x89PNG", "image/png")


SCHEDULE = """
SCHEDULE 2.--Slave Inhabitants in Fairfax County
Name of Slave Holders  Number of Slaves  Age  Sex  Colour
Fugitives from the State  Manumitted  Deaf dumb blind insane
James Hill
1 35 M B
2 23 F M
"""

CENSUS = """
Place of birth  Whether married  Occupation, trade, or profession
Value of real estate
John Smith 45 farmer
Henry Wood 30 blacksmith
Peter Lane 28 carpenter
"""


class TestDocumentType:
    def test_schedule(self):
        assert detect_document_type(SCHEDULE) is DocumentType.SLAVE_SCHEDULE
        assert DocumentType.SLAVE_SCHEDULE.is_tabular

    def test_census(self):
        score = score_document_type(CENSUS)

        assert score.document_type is DocumentType.REGULAR_CENSUS
        assert score.census_score > score.schedule_score

    def test_prose_is_unknown(self):
        assert detect_document_type("Petition of John Smith to the honourable court") is DocumentType.UNKNOWN
