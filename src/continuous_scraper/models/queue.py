"""Work queue entry model and its state machine vocabulary."""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueueStatus(str, Enum):
    """Lifecycle of a queue entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"  # terminal
    FAILED = "failed"  # terminal

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class FetchMode(str, Enum):
    HTTP = "http"
    HEADLESS = "headless"


class ResultSummary(BaseModel):
    """JSON summary written on every terminal transition."""

    persons_found: int = Field(default=0, alias="personsFound")
    documents_found: int = Field(default=0, alias="documentsFound")
    duration_seconds: float = Field(default=0.0, alias="durationSeconds")

    model_config = {"populate_by_name": True}

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))


class QueueEntry(BaseModel):
    id: int
    url: str
    category: str = "generic"
    priority: int = 0
    status: QueueStatus = QueueStatus.PENDING
    fetch_mode: FetchMode | None = None
    submitted_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    next_attempt_at: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    error_message: str | None = None
    result_summary: ResultSummary | None = None

    @property
    def effective_fetch_mode(self) -> FetchMode:
        """Unknown fetch mode defaults to headless rendering."""
        return self.fetch_mode or FetchMode.HEADLESS

    @classmethod
    def from_row(cls, row: Any) -> QueueEntry:
        data = dict(row)
        summary = data.pop("result_summary", None)
        if summary:
            data["result_summary"] = ResultSummary.model_validate(json.loads(summary))
        return cls.model_validate(data)


class QueueStats(BaseModel):
    counts: dict[str, int] = Field(default_factory=dict)
    oldest_pending: datetime | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())
