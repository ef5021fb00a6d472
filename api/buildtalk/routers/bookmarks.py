"""Bookmark endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_storage
from ..services import reconciler
from ..storage import Storage

router = APIRouter(prefix="/api/bookmarks", tags=["Bookmarks"])


@router.post("", response_model=schemas.BookmarkResult, status_code=status.HTTP_201_CREATED)
def toggle_bookmark(
    payload: schemas.BookmarkCreate,
    response: Response,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.BookmarkResult:
    """Bookmark a thread or comment, or remove the bookmark if it exists."""
    try:
        outcome = reconciler.toggle_bookmark(
            storage,
            user_id=current_user.id,
            target_type=payload.target_type,
            target_id=payload.target_id,
        )
    except reconciler.TargetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if outcome.action == "removed":
        response.status_code = status.HTTP_200_OK
        return schemas.BookmarkResult(action="removed", message="Bookmark removed")
    return schemas.BookmarkResult(
        action="created",
        message="Bookmark added",
        bookmark=schemas.Bookmark.model_validate(outcome.bookmark),
    )


@router.get("", response_model=list[schemas.Bookmark])
def list_bookmarks(
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.Bookmark]:
    """Own bookmarks, newest first."""
    return [schemas.Bookmark.model_validate(b) for b in storage.get_bookmarks(current_user.id)]


@router.get("/{target_type}/{target_id}", response_model=schemas.BookmarkStatus)
def get_bookmark_status(
    target_type: schemas.TargetType,
    target_id: UUID,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.BookmarkStatus:
    return schemas.BookmarkStatus(
        bookmarked=storage.is_bookmarked(current_user.id, target_type, target_id)
    )
