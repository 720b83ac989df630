"""Persisted breadth-first frontier of an ancestor climb."""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ClimbStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FrontierItem(BaseModel):
    fs_id: str
    depth: int = 0
    path: list[str] = Field(default_factory=list)


class ClimbMatch(BaseModel):
    """A visited ancestor whose name resolves against a known slaveholder."""

    fs_id: str
    name: str
    depth: int
    canonical_id: int
    canonical_name: str
    score: float
    path: list[str] = Field(default_factory=list)


class ClimbSession(BaseModel):
    id: str
    root_id: str
    status: ClimbStatus = ClimbStatus.IN_PROGRESS
    frontier: list[FrontierItem] = Field(default_factory=list)
    visited: set[str] = Field(default_factory=set)
    matches: list[ClimbMatch] = Field(default_factory=list)
    visits: int = 0
    max_generations: int
    cutoff_year: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> ClimbSession:
        data = dict(row)
        data["frontier"] = json.loads(data["frontier"])
        data["visited"] = set(json.loads(data["visited"]))
        data["matches"] = json.loads(data["matches"])
        return cls.model_validate(data)
