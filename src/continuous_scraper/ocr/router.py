"""Route fetched bytes to a text extractor and record its confidence.

1. HTML, JSON, XML and plain text bypass OCR (confidence 1.0).
2. PDFs with an embedded text layer use it (confidence 1.0).
3. Otherwise the primary engine runs and is accepted at or above
   ``primary_confidence_min``.
4. On primary failure or low confidence the fallback runs; the output with
   the higher confidence wins.
5. If no engine produced text, ``OCRFailedError`` (retryable once).
"""
from __future__ import annotations

import codecs
import json
import re

import structlog
from bs4 import BeautifulSoup

from continuous_scraper.errors import OCRFailedError, ScraperError

from .doctype import detect_document_type
from .engines import EngineOutput, OCREngine, pdf_text_layer
from .models import OCRAttempt, OCRResult, OCRService

logger = structlog.get_logger(__name__)

MACHINE_READABLE = ("text/html", "application/xhtml+xml", "application/json", "text/plain", "text/xml", "application/xml")
MIN_PDF_TEXT_CHARS = 20


def _mime(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def _charset(content_type: str | None) -> str:
    match = re.search(r"charset=([\w\-]+)", content_type or "", re.I)
    if not match:
        return "utf-8"
    try:
        return codecs.lookup(match.group(1)).name
    except LookupError:
        logger.debug("ocr.unknown_charset", charset=match.group(1))
        return "utf-8"


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def is_machine_readable(content_type: str | None) -> bool:
    mime = _mime(content_type)
    return mime in MACHINE_READABLE or mime.endswith("+json")


class OCRRouter:
    def __init__(
        self,
        primary: OCREngine | None,
        fallback: OCREngine | None,
        primary_confidence_min: float = 0.80,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.primary_confidence_min = primary_confidence_min

    def extract(self, data: bytes, content_type: str) -> OCRResult:
        mime = _mime(content_type)
        if is_machine_readable(mime):
            return self._bypass(data, content_type)

        if mime == "application/pdf":
            pages = pdf_text_layer(data)
            if sum(len(p.strip()) for p in pages) >= MIN_PDF_TEXT_CHARS:
                text = "\n".join(pages).strip()
                return OCRResult(
                    text=text,
                    confidence=1.0,
                    page_count=len(pages),
                    service=OCRService.PDF_TEXT,
                    per_page_text=pages,
                    document_type=detect_document_type(text),
                    attempts=[OCRAttempt(service=OCRService.PDF_TEXT, confidence=1.0)],
                )

        attempts: list[OCRAttempt] = []
        outputs: list[tuple[OCRService, EngineOutput]] = []

        if self.primary is not None:
            out = self._attempt(self.primary, data, content_type, attempts)
            if out is not None:
                if out.confidence >= self.primary_confidence_min:
                    return self._result(self.primary.service, out, attempts)
                logger.info(
                    "ocr.primary_low_confidence",
                    confidence=out.confidence,
                    threshold=self.primary_confidence_min,
                )
                outputs.append((self.primary.service, out))

        if self.fallback is not None:
            out = self._attempt(self.fallback, data, content_type, attempts)
            if out is not None:
                outputs.append((self.fallback.service, out))

        if not outputs:
            detail = "; ".join(f"{a.service.value}: {a.error}" for a in attempts) or "no OCR engine configured"
            raise OCRFailedError(f"all OCR engines failed ({detail})")

        service, best = max(outputs, key=lambda pair: pair[1].confidence)
        return self._result(service, best, attempts)

    def _attempt(
        self, engine: OCREngine, data: bytes, content_type: str, attempts: list[OCRAttempt]
    ) -> EngineOutput | None:
        try:
            out = engine.recognize(data, content_type)
        except ScraperError as exc:
            logger.warning("ocr.engine_failed", service=engine.service.value, error=exc.describe())
            attempts.append(OCRAttempt(service=engine.service, error=exc.describe()))
            return None
        attempts.append(OCRAttempt(service=engine.service, confidence=out.confidence))
        return out

    @staticmethod
    def _result(service: OCRService, out: EngineOutput, attempts: list[OCRAttempt]) -> OCRResult:
        confidence = max(0.0, min(1.0, out.confidence))
        logger.info("ocr.done", service=service.value, confidence=confidence, pages=out.page_count)
        return OCRResult(
            text=out.text,
            confidence=confidence,
            page_count=out.page_count,
            service=service,
            per_page_text=out.per_page_text or [out.text],
            document_type=detect_document_type(out.text),
            attempts=attempts,
        )

    @staticmethod
    def _bypass(data: bytes, content_type: str) -> OCRResult:
        raw = data.decode(_charset(content_type), errors="replace")
        mime = _mime(content_type)
        if mime in ("text/html", "application/xhtml+xml"):
            text = html_to_text(raw)
        elif mime == "application/json" or mime.endswith("+json"):
            try:
                text = json.dumps(json.loads(raw), indent=1, ensure_ascii=False)
            except json.JSONDecodeError:
                text = raw
        else:
            text = raw
        return OCRResult(
            text=text,
            confidence=1.0,
            page_count=1,
            service=OCRService.NONE,
            per_page_text=[text],
            document_type=detect_document_type(text),
        )
