"""Comment endpoints."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from .. import models, schemas
from ..auth import get_author_or_fallback, get_current_user, require_author
from ..deps import get_settings, get_storage
from ..serializers import comment_out, comments_out
from ..settings import Settings
from ..storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Comments"])


def _get_comment_or_404(storage: Storage, comment_id: UUID) -> models.Comment:
    comment = storage.get_comment(comment_id)
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    return comment


@router.get("/threads/{thread_id}/comments", response_model=list[schemas.Comment])
def list_comments(thread_id: UUID, storage: Storage = Depends(get_storage)) -> list[schemas.Comment]:
    """List comments of a thread, oldest first."""
    if storage.get_thread(thread_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return comments_out(storage, storage.get_comments(thread_id))


@router.post(
    "/threads/{thread_id}/comments",
    response_model=schemas.Comment,
    status_code=status.HTTP_201_CREATED,
)
def create_comment(
    thread_id: UUID,
    payload: schemas.CommentCreate,
    storage: Storage = Depends(get_storage),
    author: models.User = Depends(get_author_or_fallback),
) -> schemas.Comment:
    comment = storage.create_comment(thread_id=thread_id, content=payload.content, author_id=author.id)
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    logger.info(f"Comment {comment.id} added to thread {thread_id} by {author.id}")
    return comment_out(storage, comment)


@router.get("/comments/{comment_id}", response_model=schemas.Comment)
def get_comment(comment_id: UUID, storage: Storage = Depends(get_storage)) -> schemas.Comment:
    return comment_out(storage, _get_comment_or_404(storage, comment_id))


@router.patch("/comments/{comment_id}", response_model=schemas.Comment)
def update_comment(
    comment_id: UUID,
    payload: schemas.CommentUpdate,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Comment:
    """Edit a comment (author only)."""
    comment = _get_comment_or_404(storage, comment_id)
    require_author(comment.author_id, current_user)
    comment = storage.update_comment(comment_id, payload.changes())
    return comment_out(storage, comment)


@router.patch("/comments/{comment_id}/upvotes", response_model=schemas.Comment)
def set_comment_upvotes(
    comment_id: UUID,
    payload: schemas.UpvotesUpdate,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Comment:
    if settings.counter_mode == "ledger":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Upvote counters are derived from votes; cast a vote instead",
        )
    comment = storage.update_comment_upvotes(comment_id, payload.upvotes)
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    return comment_out(storage, comment)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_comment(
    comment_id: UUID,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> None:
    comment = _get_comment_or_404(storage, comment_id)
    require_author(comment.author_id, current_user)
    storage.delete_comment(comment_id)
    logger.info(f"Comment {comment_id} deleted by {current_user.id}")
