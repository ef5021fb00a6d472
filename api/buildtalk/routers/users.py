"""Public user profiles."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from .. import models, schemas
from ..auth import get_current_user_optional
from ..deps import get_storage
from ..serializers import threads_out
from ..storage import Storage

router = APIRouter(prefix="/api/users", tags=["Users"])


def _get_visible_user(storage: Storage, user_id: UUID, viewer: models.User | None) -> models.User:
    user = storage.get_user(user_id)
    # Private profiles look exactly like missing ones to everybody but the owner
    if user is None or (not user.is_profile_public and (viewer is None or viewer.id != user.id)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/{user_id}", response_model=schemas.UserPublic)
def get_user(
    user_id: UUID,
    storage: Storage = Depends(get_storage),
    viewer: models.User | None = Depends(get_current_user_optional),
) -> schemas.UserPublic:
    return schemas.UserPublic.model_validate(_get_visible_user(storage, user_id, viewer))


@router.get("/{user_id}/threads", response_model=list[schemas.Thread])
def list_user_threads(
    user_id: UUID,
    storage: Storage = Depends(get_storage),
    viewer: models.User | None = Depends(get_current_user_optional),
) -> list[schemas.Thread]:
    user = _get_visible_user(storage, user_id, viewer)
    return threads_out(storage, storage.get_threads(author_id=user.id))
