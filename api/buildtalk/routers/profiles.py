"""Own profile endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_storage
from ..serializers import comments_out, threads_out
from ..services.achievements import evaluate, sync_user_achievements
from ..storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


def build_profile(storage: Storage, user: models.User) -> schemas.ProfileResponse:
    """
    Profile with stats and achievement progress.

    Milestones the user's karma has reached are awarded first, so the earned
    list and the current milestone always agree.
    """
    sync_user_achievements(storage, user.id)

    catalogue = storage.get_achievements()
    by_id = {achievement.id: achievement for achievement in catalogue}
    earned = []
    for grant in storage.get_user_achievements(user.id):
        achievement = by_id.get(grant.achievement_id)
        if achievement is None:
            continue
        earned.append(
            schemas.EarnedAchievement(
                **schemas.Achievement.model_validate(achievement).model_dump(),
                earned_at=grant.earned_at,
            )
        )
    earned.sort(key=lambda a: a.requirement)

    current, upcoming = evaluate(user.karma, catalogue)
    stats = storage.get_user_stats(user.id)
    return schemas.ProfileResponse(
        user=schemas.UserFull.model_validate(user),
        stats=schemas.ProfileStats.model_validate(stats),
        achievements=earned,
        current_achievement=schemas.Achievement.model_validate(current) if current else None,
        next_achievement=schemas.Achievement.model_validate(upcoming) if upcoming else None,
    )


@router.get("", response_model=schemas.ProfileResponse)
def get_profile(
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.ProfileResponse:
    return build_profile(storage, current_user)


@router.patch("", response_model=schemas.UserFull)
def update_profile(
    payload: schemas.ProfileUpdate,
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> schemas.UserFull:
    """Update own profile. Karma and email are not editable here."""
    user = storage.update_user_profile(current_user.id, payload.changes())
    logger.info(f"Profile updated for user {current_user.id}: {sorted(payload.changes())}")
    return schemas.UserFull.model_validate(user)


@router.get("/threads", response_model=list[schemas.Thread])
def list_own_threads(
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.Thread]:
    return threads_out(storage, storage.get_threads(author_id=current_user.id))


@router.get("/comments", response_model=list[schemas.Comment])
def list_own_comments(
    storage: Storage = Depends(get_storage),
    current_user: models.User = Depends(get_current_user),
) -> list[schemas.Comment]:
    return comments_out(storage, storage.get_comments_by_author(current_user.id))
