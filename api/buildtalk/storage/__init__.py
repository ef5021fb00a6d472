from .base import (
    BookmarkOutcome,
    ConflictError,
    Storage,
    UserStats,
    VoteCounts,
    VoteOutcome,
    reconcile_vote,
)
from .database import DatabaseStorage
from .memory import MemoryStorage

__all__ = [
    "BookmarkOutcome",
    "ConflictError",
    "DatabaseStorage",
    "MemoryStorage",
    "Storage",
    "UserStats",
    "VoteCounts",
    "VoteOutcome",
    "reconcile_vote",
]
