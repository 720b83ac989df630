"""Text extraction for fetched documents."""

from .doctype import detect_document_type, score_document_type
from .engines import CloudVisionOCR, OCREngine, TesseractOCR
from .models import DocumentType, EngineOutput, OCRResult, OCRService
from .router import OCRRouter, html_to_text

__all__ = [
    "CloudVisionOCR",
    "DocumentType",
    "EngineOutput",
    "OCREngine",
    "OCRResult",
    "OCRRouter",
    "OCRService",
    "TesseractOCR",
    "detect_document_type",
    "html_to_text",
    "score_document_type",
]
