"""Thread endpoints."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .. import models, schemas
from ..auth import get_author_or_fallback, get_current_user, require_author
from ..deps import get_settings, get_storage
from ..serializers import thread_out, threads_out
from ..settings import Settings
from ..storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/threads", tags=["Threads"])


def _get_thread_or_404(storage: Storage, thread_id: UUID) -> models.Thread:
    thread = storage.get_thread(thread_id)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return thread


@router.get("", response_model=list[schemas.Thread])
def list_threads(
    category: schemas.Category | None = None,
    author_id: UUID | None = None,
    q: str | None = Query(None, max_length=200),
    storage: Storage = Depends(get_storage),
) -> list[schemas.Thread]:
    """
    List threads, newest first.

    Optional filters: category, author, and a case-insensitive search over
    title and content.
    """
    threads = storage.get_threads(category=category, author_id=author_id, search=q or None)
    return threads_out(storage, threads)


@router.post("", response_model=schemas.Thread, status_code=status.HTTP_201_CREATED)
def create_thread(
    payload: schemas.ThreadCreate,
    storage: Storage = Depends(get_storage),
    author: models.User = Depends(get_author_or_fallback),
) -> schemas.Thread:
    thread = storage.create_thread(
        title=payload.title,
        content=payload.content,
        category=payload.category,
        author_id=author.id,
    )
    logger.info(f"Thread {thread.id} created by {author.id} in {thread.category}")
    return thread_out(storage, thread)


@router.get("/{thread_id}", response_model=schemas.Thread)
def get_thread(thread_id: UUID, storage: Storage = Depends(get_storage)) -> schemas.Thread:
    return thread_out(storage, _get_thread_or_404(storage, thread_id))


@router.patch("/{thread_id}", response_model=schemas.Thread)
def update_thread(
    thread_id: UUID,
    payload: schemas.ThreadUpdate,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Thread:
    """Edit title, content or category (author only)."""
    thread = _get_thread_or_404(storage, thread_id)
    require_author(thread.author_id, current_user)
    thread = storage.update_thread(thread_id, payload.changes())
    return thread_out(storage, thread)


@router.patch("/{thread_id}/upvotes", response_model=schemas.Thread)
def set_thread_upvotes(
    thread_id: UUID,
    payload: schemas.UpvotesUpdate,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Thread:
    """
    Overwrite the upvote counter with an absolute value.

    Disabled when counters are derived from the vote ledger.
    """
    if settings.counter_mode == "ledger":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Upvote counters are derived from votes; cast a vote instead",
        )
    thread = storage.update_thread_upvotes(thread_id, payload.upvotes)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return thread_out(storage, thread)


@router.delete("/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_thread(
    thread_id: UUID,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> None:
    """Delete a thread together with all of its comments (author only)."""
    thread = _get_thread_or_404(storage, thread_id)
    require_author(thread.author_id, current_user)
    storage.delete_thread(thread_id)
    logger.info(f"Thread {thread_id} deleted by {current_user.id}")
