"""Persistence gateway contract shared by the memory and database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from .. import models

VoteAction = Literal["created", "replaced", "removed"]
BookmarkAction = Literal["created", "removed"]

USER_PROFILE_FIELDS = frozenset(
    {"first_name", "last_name", "profile_image_url", "role", "bio", "is_profile_public"}
)
THREAD_FIELDS = frozenset({"title", "content", "category"})
COMMENT_FIELDS = frozenset({"content"})


class ConflictError(Exception):
    """A unique-key invariant would be violated (duplicate email, vote, bookmark, ...)."""


@dataclass
class VoteOutcome:
    action: VoteAction
    vote: models.Vote | None  # None once the vote has been removed
    previous: str | None  # direction stored before the cast


@dataclass
class BookmarkOutcome:
    action: BookmarkAction
    bookmark: models.Bookmark | None


@dataclass
class VoteCounts:
    upvotes: int
    downvotes: int


@dataclass
class UserStats:
    threads_count: int
    comments_count: int
    best_answers_count: int
    total_upvotes: int


def reconcile_vote(existing: str | None, cast: str) -> tuple[VoteAction, str | None]:
    """
    Per (voter, target) state machine over {no-vote, up, down}.

    Returns the action taken and the resulting stored direction.
    """
    if existing is None:
        return "created", cast
    if existing == cast:
        return "removed", None
    return "replaced", cast


def pick_fields(updates: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    return {key: value for key, value in updates.items() if key in allowed}


class Storage(ABC):
    """
    CRUD gateway for users, threads, comments, votes, bookmarks, achievements
    and sessions.

    Lookups of unknown identifiers return None (or False) and never raise.
    Unique-key violations raise ConflictError.
    """

    # ------------------------------------------------------------------ users

    @abstractmethod
    def get_user(self, user_id: UUID) -> models.User | None: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> models.User | None: ...

    @abstractmethod
    def get_user_by_oidc_subject(self, subject: str) -> models.User | None: ...

    @abstractmethod
    def create_user(
        self,
        *,
        email: str | None,
        password_hash: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        profile_image_url: str | None = None,
        oidc_subject: str | None = None,
        user_id: UUID | None = None,
    ) -> models.User: ...

    def upsert_user(
        self,
        *,
        oidc_subject: str | None,
        email: str | None,
        email_verified: bool = False,
        first_name: str | None = None,
        last_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> models.User:
        """
        Create or refresh a user from an external identity.

        Matches on the OIDC subject first, then on email when the provider
        vouches for it. An unverified email that belongs to another account
        raises ConflictError instead of linking. Identity fields the
        provider supplies overwrite the stored ones; karma, role, bio and
        visibility are never touched.
        """
        user = self.get_user_by_oidc_subject(oidc_subject) if oidc_subject else None
        if user is None and email and email_verified:
            user = self.get_user_by_email(email)

        if user is None:
            return self.create_user(
                email=email,
                first_name=first_name,
                last_name=last_name,
                profile_image_url=profile_image_url,
                oidc_subject=oidc_subject,
            )

        updates: dict[str, Any] = {}
        if first_name:
            updates["first_name"] = first_name
        if last_name:
            updates["last_name"] = last_name
        if profile_image_url:
            updates["profile_image_url"] = profile_image_url
        # An unverified address never replaces one already on file
        if not email_verified and user.email:
            email = None
        return self._refresh_identity(user.id, oidc_subject=oidc_subject, email=email, updates=updates)

    @abstractmethod
    def _refresh_identity(
        self,
        user_id: UUID,
        *,
        oidc_subject: str | None,
        email: str | None,
        updates: dict[str, Any],
    ) -> models.User: ...

    @abstractmethod
    def update_user_profile(self, user_id: UUID, updates: dict[str, Any]) -> models.User | None: ...

    @abstractmethod
    def add_karma(self, user_id: UUID, delta: int) -> models.User | None: ...

    # ---------------------------------------------------------------- threads

    @abstractmethod
    def create_thread(
        self, *, title: str, content: str, category: str, author_id: UUID
    ) -> models.Thread: ...

    @abstractmethod
    def get_thread(self, thread_id: UUID) -> models.Thread | None: ...

    @abstractmethod
    def get_threads(
        self,
        category: str | None = None,
        author_id: UUID | None = None,
        search: str | None = None,
    ) -> list[models.Thread]:
        """Threads newest first, optionally filtered."""

    @abstractmethod
    def update_thread(self, thread_id: UUID, updates: dict[str, Any]) -> models.Thread | None: ...

    @abstractmethod
    def update_thread_upvotes(self, thread_id: UUID, upvotes: int) -> models.Thread | None: ...

    @abstractmethod
    def delete_thread(self, thread_id: UUID) -> bool:
        """Delete a thread after all of its comments."""

    # --------------------------------------------------------------- comments

    @abstractmethod
    def create_comment(
        self, *, thread_id: UUID, content: str, author_id: UUID
    ) -> models.Comment | None:
        """Returns None when the parent thread does not exist."""

    @abstractmethod
    def get_comment(self, comment_id: UUID) -> models.Comment | None: ...

    @abstractmethod
    def get_comments(self, thread_id: UUID) -> list[models.Comment]:
        """Comments of a thread, oldest first."""

    @abstractmethod
    def get_comments_by_author(self, author_id: UUID) -> list[models.Comment]: ...

    @abstractmethod
    def update_comment(self, comment_id: UUID, updates: dict[str, Any]) -> models.Comment | None: ...

    @abstractmethod
    def update_comment_upvotes(self, comment_id: UUID, upvotes: int) -> models.Comment | None: ...

    @abstractmethod
    def delete_comment(self, comment_id: UUID) -> bool: ...

    # ------------------------------------------------------------------ votes

    @abstractmethod
    def get_vote(self, user_id: UUID, target_type: str, target_id: UUID) -> models.Vote | None: ...

    @abstractmethod
    def cast_vote(
        self, user_id: UUID, target_type: str, target_id: UUID, vote_type: str
    ) -> VoteOutcome:
        """Apply reconcile_vote atomically for the (user, target) pair."""

    @abstractmethod
    def get_vote_counts(self, target_type: str, target_id: UUID) -> VoteCounts: ...

    @abstractmethod
    def grant_vote_karma(
        self, voter_id: UUID, target_type: str, target_id: UUID, author_id: UUID
    ) -> bool:
        """
        Credit the author one karma point for this voter's up vote on the target.

        Each (voter, target) pair credits at most once, however often the vote
        is retracted and cast again. Returns False when it already has.
        """

    # -------------------------------------------------------------- bookmarks

    @abstractmethod
    def toggle_bookmark(self, user_id: UUID, target_type: str, target_id: UUID) -> BookmarkOutcome: ...

    @abstractmethod
    def is_bookmarked(self, user_id: UUID, target_type: str, target_id: UUID) -> bool: ...

    @abstractmethod
    def get_bookmarks(self, user_id: UUID) -> list[models.Bookmark]: ...

    # ----------------------------------------------------------- achievements

    @abstractmethod
    def get_achievements(self) -> list[models.Achievement]:
        """Catalogue ordered by ascending requirement."""

    @abstractmethod
    def ensure_achievement(
        self,
        *,
        name: str,
        description: str | None,
        icon: str | None,
        category: str,
        requirement: int,
    ) -> models.Achievement: ...

    @abstractmethod
    def get_user_achievements(self, user_id: UUID) -> list[models.UserAchievement]: ...

    @abstractmethod
    def award_achievement(self, user_id: UUID, achievement_id: UUID) -> models.UserAchievement: ...

    # ------------------------------------------------------------------ stats

    @abstractmethod
    def get_user_stats(self, user_id: UUID) -> UserStats: ...

    # --------------------------------------------------------------- sessions

    @abstractmethod
    def create_session(
        self,
        *,
        user_id: UUID,
        token_hash: str,
        identity: dict[str, Any],
        expires_at: datetime,
    ) -> models.UserSession: ...

    @abstractmethod
    def get_session(self, token_hash: str) -> models.UserSession | None:
        """Live session for a token hash; expired sessions are purged and None returned."""

    @abstractmethod
    def delete_session(self, token_hash: str) -> bool: ...

    # ---------------------------------------------------------------- helpers

    def get_target(self, target_type: str, target_id: UUID) -> models.Thread | models.Comment | None:
        if target_type == "thread":
            return self.get_thread(target_id)
        if target_type == "comment":
            return self.get_comment(target_id)
        return None

    def set_target_upvotes(self, target_type: str, target_id: UUID, upvotes: int) -> None:
        if target_type == "thread":
            self.update_thread_upvotes(target_id, upvotes)
        elif target_type == "comment":
            self.update_comment_upvotes(target_id, upvotes)
