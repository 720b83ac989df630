"""OCR engine adapters: cloud vision (primary), Tesseract (fallback), PDF text layer."""
from __future__ import annotations

import base64
import io
from typing import Any, Protocol

import httpx
import structlog

from continuous_scraper.errors import OCRFailedError, TransportError

from .models import EngineOutput, OCRService

logger = structlog.get_logger(__name__)


class OCREngine(Protocol):
    service: OCRService

    def recognize(self, data: bytes, content_type: str) -> EngineOutput: ...


def _mime(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


class CloudVisionOCR:
    """Google Cloud Vision ``DOCUMENT_TEXT_DETECTION`` over REST.

    Images go to ``images:annotate``; PDFs and TIFFs go to ``files:annotate``.
    Confidence is the mean of the per-block confidences (0.5 when the service
    reports none).
    """

    service = OCRService.GOOGLE_VISION

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        timeout_s: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self._transport = transport

    def _payload(self, data: bytes, mime: str) -> tuple[str, dict[str, Any]]:
        feature = [{"type": "DOCUMENT_TEXT_DETECTION"}]
        content = base64.b64encode(data).decode("ascii")
        if mime in ("application/pdf", "image/tiff"):
            url = self.endpoint.replace("images:annotate", "files:annotate")
            return url, {
                "requests": [
                    {"inputConfig": {"content": content, "mimeType": mime}, "features": feature}
                ]
            }
        return self.endpoint, {"requests": [{"image": {"content": content}, "features": feature}]}

    def recognize(self, data: bytes, content_type: str) -> EngineOutput:
        url, payload = self._payload(data, _mime(content_type))
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
                resp = client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as exc:
            raise TransportError("vision request timed out", kind="timeout") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"vision request failed: {exc}") from exc
        if resp.status_code == 429:
            raise OCRFailedError("vision rate limited", retry_after=60.0)
        if resp.status_code >= 400:
            raise OCRFailedError(f"vision returned HTTP {resp.status_code}")

        body = resp.json()
        responses = body.get("responses") or []
        # files:annotate nests one response per page
        if responses and "responses" in responses[0]:
            responses = responses[0]["responses"]
        pages: list[str] = []
        confidences: list[float] = []
        for r in responses:
            if "error" in r:
                raise OCRFailedError(f"vision error: {r['error'].get('message', r['error'])}")
            annotation = r.get("fullTextAnnotation") or {}
            pages.append(annotation.get("text", ""))
            for page in annotation.get("pages", []):
                for block in page.get("blocks", []):
                    if "confidence" in block:
                        confidences.append(float(block["confidence"]))
        text = "\n".join(pages).strip()
        if not text:
            raise OCRFailedError("vision returned no text")
        confidence = sum(confidences) / len(confidences) if confidences else 0.5
        return EngineOutput(text=text, confidence=round(confidence, 4), per_page_text=pages)


class TesseractOCR:
    """Local Tesseract through ``pytesseract``; one page per image frame."""

    service = OCRService.TESSERACT

    def __init__(self, lang: str = "eng", config: str = "--psm 6") -> None:
        self.lang = lang
        self.config = config

    def recognize(self, data: bytes, content_type: str) -> EngineOutput:
        import pytesseract
        from PIL import Image, ImageSequence, UnidentifiedImageError

        if _mime(content_type) == "application/pdf":
            raise OCRFailedError("tesseract cannot rasterise PDF input")
        try:
            image = Image.open(io.BytesIO(data))
        except UnidentifiedImageError as exc:
            raise OCRFailedError(f"unreadable image: {exc}") from exc

        pages: list[str] = []
        confidences: list[float] = []
        try:
            for frame in ImageSequence.Iterator(image):
                frame = frame.convert("L")
                result = pytesseract.image_to_data(
                    frame, lang=self.lang, config=self.config, output_type=pytesseract.Output.DICT
                )
                words = [w for w in result["text"] if w and w.strip()]
                confidences.extend(
                    float(c) for c, w in zip(result["conf"], result["text"]) if w and w.strip() and float(c) >= 0
                )
                pages.append(pytesseract.image_to_string(frame, lang=self.lang, config=self.config)
                             if words else "")
        except pytesseract.TesseractError as exc:
            raise OCRFailedError(f"tesseract failed: {exc}") from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise OCRFailedError("tesseract binary not installed") from exc

        text = "\n".join(pages).strip()
        if not text:
            raise OCRFailedError("tesseract produced no text")
        confidence = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
        return EngineOutput(text=text, confidence=round(confidence, 4), per_page_text=pages)


def pdf_text_layer(data: bytes) -> list[str]:
    """Embedded text per page; empty strings for scanned pages."""
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(io.BytesIO(data))
        return [(page.extract_text() or "") for page in reader.pages]
    except (PdfReadError, ValueError) as exc:
        logger.debug("ocr.pdf_text_unreadable", error=str(exc))
        return []
