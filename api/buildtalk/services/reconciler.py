"""
Vote and bookmark reconciliation.

The storage backends apply the per-(user, target) state machine atomically.
This module checks the target, then applies the side effects of a cast:
karma for the author and, in ledger mode, the target's upvote counter.
"""

from __future__ import annotations

import logging
from uuid import UUID

from ..storage import BookmarkOutcome, Storage, VoteOutcome
from .achievements import sync_user_achievements

logger = logging.getLogger(__name__)


class TargetNotFoundError(LookupError):
    """The thread or comment a vote or bookmark refers to does not exist."""

    def __init__(self, target_type: str, target_id: UUID):
        super().__init__(f"{target_type.capitalize()} not found")
        self.target_type = target_type
        self.target_id = target_id


def _records_up_vote(outcome: VoteOutcome) -> bool:
    return outcome.vote is not None and outcome.vote.vote_type == "up" and outcome.previous != "up"


def recount_upvotes(storage: Storage, target_type: str, target_id: UUID) -> int:
    """Derive the target's counter from the vote ledger and store it."""
    counts = storage.get_vote_counts(target_type, target_id)
    storage.set_target_upvotes(target_type, target_id, counts.upvotes)
    return counts.upvotes


def cast_vote(
    storage: Storage,
    *,
    user_id: UUID,
    target_type: str,
    target_id: UUID,
    vote_type: str,
    counter_mode: str = "direct",
) -> tuple[VoteOutcome, int]:
    """
    Cast a vote and apply its side effects.

    Returns the outcome and the target's upvote counter afterwards.

    Raises:
        TargetNotFoundError: the target does not exist
        ConflictError: a concurrent cast on the same pair won the insert
    """
    target = storage.get_target(target_type, target_id)
    if target is None:
        raise TargetNotFoundError(target_type, target_id)
    author_id = target.author_id

    outcome = storage.cast_vote(user_id, target_type, target_id, vote_type)
    logger.info(
        f"Vote {outcome.action} by {user_id} on {target_type} {target_id} "
        f"({outcome.previous} -> {outcome.vote.vote_type if outcome.vote else None})"
    )

    # One point per voter and target; retracting never takes it back
    if (
        _records_up_vote(outcome)
        and author_id != user_id
        and storage.grant_vote_karma(user_id, target_type, target_id, author_id)
    ):
        sync_user_achievements(storage, author_id)

    if counter_mode == "ledger":
        upvotes = recount_upvotes(storage, target_type, target_id)
    else:
        refreshed = storage.get_target(target_type, target_id)
        upvotes = refreshed.upvotes if refreshed is not None else 0
    return outcome, upvotes


def toggle_bookmark(
    storage: Storage, *, user_id: UUID, target_type: str, target_id: UUID
) -> BookmarkOutcome:
    """
    Add the bookmark if absent, remove it if present.

    Raises:
        TargetNotFoundError: the target does not exist
    """
    if storage.get_target(target_type, target_id) is None:
        raise TargetNotFoundError(target_type, target_id)
    outcome = storage.toggle_bookmark(user_id, target_type, target_id)
    logger.info(f"Bookmark {outcome.action} by {user_id} on {target_type} {target_id}")
    return outcome
