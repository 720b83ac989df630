"""Archived URL snapshots and watchdog alerts."""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ArchivedURL(BaseModel):
    """Immutable snapshot of the bytes a URL returned; ``(url, content_hash)`` is unique."""

    id: int | None = None
    url: str
    content_hash: str
    storage_key: str
    first_archived_at: datetime | None = None
    # when these bytes were last served; the newest value marks the current snapshot
    last_seen_at: datetime | None = None
    last_verified_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> ArchivedURL:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"]) if data.get("metadata") else {}
        return cls.model_validate(data)


class WatchdogOutcome(str, Enum):
    OK = "ok"
    CONTENT_CHANGED = "content_changed"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    SSL_ERROR = "ssl_error"

    @property
    def raises_alert(self) -> bool:
        return self is not WatchdogOutcome.OK


class WatchdogAlert(BaseModel):
    id: int | None = None
    alert_type: WatchdogOutcome
    url: str
    archived_url_id: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> WatchdogAlert:
        data = dict(row)
        data["details"] = json.loads(data["details"]) if data.get("details") else {}
        return cls.model_validate(data)


class WatchdogReport(BaseModel):
    checked: int = 0
    outcomes: dict[str, int] = Field(default_factory=dict)
    alerts: list[WatchdogAlert] = Field(default_factory=list)

    def record(self, outcome: WatchdogOutcome) -> None:
        self.checked += 1
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1
