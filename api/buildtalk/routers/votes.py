"""Vote ledger endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .. import models, schemas
from ..auth import get_current_user, get_current_user_optional
from ..deps import get_settings, get_storage
from ..services import reconciler
from ..settings import Settings
from ..storage import Storage

router = APIRouter(prefix="/api/votes", tags=["Votes"])

VOTE_MESSAGES = {
    "created": "Vote recorded",
    "replaced": "Vote changed",
    "removed": "Vote removed",
}


@router.post("", response_model=schemas.VoteResult, status_code=status.HTTP_201_CREATED)
def cast_vote(
    payload: schemas.VoteCreate,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    current_user: models.User = Depends(get_current_user),
) -> schemas.VoteResult:
    """
    Cast a vote on a thread or comment.

    Repeating the stored direction retracts the vote (200); a new or changed
    vote is 201.
    """
    try:
        outcome, upvotes = reconciler.cast_vote(
            storage,
            user_id=current_user.id,
            target_type=payload.target_type,
            target_id=payload.target_id,
            vote_type=payload.vote_type,
            counter_mode=settings.counter_mode,
        )
    except reconciler.TargetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if outcome.action == "removed":
        response.status_code = status.HTTP_200_OK
    return schemas.VoteResult(
        action=outcome.action,
        message=VOTE_MESSAGES[outcome.action],
        vote=schemas.Vote.model_validate(outcome.vote) if outcome.vote is not None else None,
        upvotes=upvotes,
    )


@router.get("/{target_type}/{target_id}", response_model=schemas.VoteTotals)
def get_vote_counts(
    target_type: schemas.TargetType,
    target_id: UUID,
    storage: Storage = Depends(get_storage),
    current_user: models.User | None = Depends(get_current_user_optional),
) -> schemas.VoteTotals:
    """Aggregate up/down counts; includes the caller's own direction when signed in."""
    if storage.get_target(target_type, target_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{target_type.capitalize()} not found",
        )
    counts = storage.get_vote_counts(target_type, target_id)
    mine = None
    if current_user is not None:
        vote = storage.get_vote(current_user.id, target_type, target_id)
        mine = vote.vote_type if vote is not None else None
    return schemas.VoteTotals(upvotes=counts.upvotes, downvotes=counts.downvotes, mine=mine)
