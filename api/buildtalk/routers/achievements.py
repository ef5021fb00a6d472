"""Achievement catalogue."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .. import schemas
from ..deps import get_storage
from ..storage import Storage

router = APIRouter(prefix="/api/achievements", tags=["Achievements"])


@router.get("", response_model=list[schemas.Achievement])
def list_achievements(storage: Storage = Depends(get_storage)) -> list[schemas.Achievement]:
    """All karma milestones, lowest requirement first."""
    return [schemas.Achievement.model_validate(a) for a in storage.get_achievements()]
