"""OCR result models."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


class OCRService(str, Enum):
    """Where a page's text came from."""
    NONE = "none"  # machine-readable content, OCR bypassed
    PDF_TEXT = "pdf_text"
    GOOGLE_VISION = "google_vision"
    TESSERACT = "tesseract"


class DocumentType(str, Enum):
    SLAVE_SCHEDULE = "slave_schedule"
    REGULAR_CENSUS = "regular_census"
    UNCERTAIN = "uncertain"
    UNKNOWN = "unknown"

    @property
    def is_tabular(self) -> bool:
        return self is DocumentType.SLAVE_SCHEDULE


@dataclass
class EngineOutput:
    """Raw output of one OCR engine."""
    text: str
    confidence: float
    per_page_text: list[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return max(1, len(self.per_page_text))


class OCRAttempt(BaseModel):
    service: OCRService
    confidence: float | None = None
    error: str | None = None


class OCRResult(BaseModel):
    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    page_count: int = 1
    service: OCRService
    per_page_text: list[str] = Field(default_factory=list)
    document_type: DocumentType = DocumentType.UNKNOWN
    # every engine tried, in order, including the one not chosen
    attempts: list[OCRAttempt] = Field(default_factory=list)
