"""Data models for queue entries, extracted mentions, identities and archives."""

from .archive import ArchivedURL, WatchdogAlert, WatchdogOutcome, WatchdogReport
from .climb import ClimbMatch, ClimbSession, ClimbStatus, FrontierItem
from .mentions import (
    ClassifiedMention,
    ExtractedMention,
    FinalRole,
    MentionRole,
    PedigreeNode,
    ProseMention,
    RelationshipHint,
    RelationshipType,
    TabularRow,
)
from .persons import (
    CanonicalPerson,
    IdentityStats,
    MatchQueueItem,
    MatchQueueStatus,
    NameVariant,
    PersonType,
    Relationship,
    Resolution,
    UnconfirmedPerson,
    UnconfirmedStatus,
    VerificationStatus,
)
from .queue import FetchMode, QueueEntry, QueueStats, QueueStatus, ResultSummary

__all__ = [
    "ArchivedURL",
    "CanonicalPerson",
    "ClimbMatch",
    "ClimbSession",
    "ClimbStatus",
    "ClassifiedMention",
    "ExtractedMention",
    "FetchMode",
    "FinalRole",
    "FrontierItem",
    "IdentityStats",
    "MatchQueueItem",
    "MatchQueueStatus",
    "MentionRole",
    "NameVariant",
    "PedigreeNode",
    "PersonType",
    "ProseMention",
    "QueueEntry",
    "QueueStats",
    "QueueStatus",
    "Relationship",
    "RelationshipHint",
    "RelationshipType",
    "Resolution",
    "ResultSummary",
    "TabularRow",
    "UnconfirmedPerson",
    "UnconfirmedStatus",
    "VerificationStatus",
    "WatchdogAlert",
    "WatchdogOutcome",
    "WatchdogReport",
]
