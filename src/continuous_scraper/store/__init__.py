"""Relational store: connection management, queue, identities, archive."""

from .archive import ArchiveStore
from .climb import ClimbStore
from .database import Database, to_db, utcnow
from .persons import PersonStore
from .queue import WorkQueue

__all__ = ["ArchiveStore", "ClimbStore", "Database", "PersonStore", "WorkQueue", "to_db", "utcnow"]
