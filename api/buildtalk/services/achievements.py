"""Karma milestones: catalogue, evaluation and idempotent awarding."""

from __future__ import annotations

import logging
from typing import Sequence, TypeVar

from ..storage import ConflictError, Storage

logger = logging.getLogger(__name__)

# name, requirement, description, icon
ACHIEVEMENT_CATALOGUE: tuple[tuple[str, int, str, str], ...] = (
    ("Что-то понимающий", 10, "Набрал 10 кармы", "lightbulb"),
    ("Можно доверять", 30, "Набрал 30 кармы", "handshake"),
    ("Отвечает по делу", 50, "Набрал 50 кармы", "message-circle"),
    ("Эксперт по ремонту", 100, "Набрал 100 кармы", "wrench"),
    ("Мастер на все руки", 300, "Набрал 300 кармы", "hammer"),
    ("Прораб", 500, "Набрал 500 кармы", "hard-hat"),
    ("Гуру ремонта", 1000, "Набрал 1000 кармы", "crown"),
)

T = TypeVar("T")


def _requirement(item) -> int:
    return item if isinstance(item, int) else item.requirement


def evaluate(karma: int, thresholds: Sequence[T]) -> tuple[T | None, T | None]:
    """
    Locate a karma value on the milestone ladder.

    ``thresholds`` may hold plain integers or objects with a ``requirement``
    attribute. Returns the highest milestone reached and the lowest one not yet
    reached; either side is None past the ends of the ladder.
    """
    ladder = sorted(thresholds, key=_requirement)
    current = None
    upcoming = None
    for item in ladder:
        if _requirement(item) <= karma:
            current = item
        else:
            upcoming = item
            break
    return current, upcoming


def ensure_catalogue(storage: Storage) -> None:
    for name, requirement, description, icon in ACHIEVEMENT_CATALOGUE:
        storage.ensure_achievement(
            name=name,
            description=description,
            icon=icon,
            category="karma",
            requirement=requirement,
        )


def sync_user_achievements(storage: Storage, user_id) -> list:
    """
    Award every milestone the user's karma has reached but they do not hold yet.

    Safe to call repeatedly and concurrently: a grant that already exists is
    skipped. Returns the newly awarded rows.
    """
    user = storage.get_user(user_id)
    if user is None:
        return []

    held = {grant.achievement_id for grant in storage.get_user_achievements(user_id)}
    awarded = []
    for achievement in storage.get_achievements():
        if achievement.requirement > user.karma or achievement.id in held:
            continue
        try:
            awarded.append(storage.award_achievement(user_id, achievement.id))
        except ConflictError:
            continue
        logger.info(f"User {user_id} earned achievement {achievement.name!r}")
    return awarded
