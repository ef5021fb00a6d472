"""Build response models that embed the author of threads and comments."""

from __future__ import annotations

from uuid import UUID

from . import models, schemas
from .storage import Storage

AuthorCache = dict[UUID, "schemas.AuthorSummary | None"]


def author_summary(storage: Storage, author_id: UUID, cache: AuthorCache | None = None) -> schemas.AuthorSummary | None:
    if cache is not None and author_id in cache:
        return cache[author_id]
    user = storage.get_user(author_id)
    summary = schemas.AuthorSummary.model_validate(user) if user is not None else None
    if cache is not None:
        cache[author_id] = summary
    return summary


def thread_out(storage: Storage, thread: models.Thread, cache: AuthorCache | None = None) -> schemas.Thread:
    data = {column: getattr(thread, column) for column in schemas.Thread.model_fields if column != "author"}
    data["author"] = author_summary(storage, thread.author_id, cache)
    return schemas.Thread.model_validate(data)


def comment_out(storage: Storage, comment: models.Comment, cache: AuthorCache | None = None) -> schemas.Comment:
    data = {column: getattr(comment, column) for column in schemas.Comment.model_fields if column != "author"}
    data["author"] = author_summary(storage, comment.author_id, cache)
    return schemas.Comment.model_validate(data)


def threads_out(storage: Storage, threads: list[models.Thread]) -> list[schemas.Thread]:
    cache: AuthorCache = {}
    return [thread_out(storage, thread, cache) for thread in threads]


def comments_out(storage: Storage, comments: list[models.Comment]) -> list[schemas.Comment]:
    cache: AuthorCache = {}
    return [comment_out(storage, comment, cache) for comment in comments]
