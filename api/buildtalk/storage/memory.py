"""In-process storage backend.

One instance lives for the lifetime of the application (on ``app.state``);
nothing here is module-global. Records are the ORM classes used as plain
transient objects, so both backends hand routers the same types.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator
from uuid import UUID

from .. import models
from ..models import utcnow
from .base import (
    COMMENT_FIELDS,
    THREAD_FIELDS,
    USER_PROFILE_FIELDS,
    BookmarkOutcome,
    ConflictError,
    Storage,
    UserStats,
    VoteCounts,
    VoteOutcome,
    pick_fields,
    reconcile_vote,
)

logger = logging.getLogger(__name__)

KEY_LOCK_STRIPES = 256


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        # Fixed pool shared by hashing the key; pairs that collide just wait on each other
        self._key_locks = tuple(threading.Lock() for _ in range(KEY_LOCK_STRIPES))

        self._users: dict[UUID, models.User] = {}
        self._users_by_email: dict[str, UUID] = {}
        self._threads: dict[UUID, models.Thread] = {}
        self._comments: dict[UUID, models.Comment] = {}
        self._votes: dict[tuple[UUID, str, UUID], models.Vote] = {}
        self._bookmarks: dict[tuple[UUID, str, UUID], models.Bookmark] = {}
        self._achievements: dict[UUID, models.Achievement] = {}
        self._user_achievements: dict[tuple[UUID, UUID], models.UserAchievement] = {}
        self._sessions: dict[str, models.UserSession] = {}
        self._karma_grants: set[tuple[UUID, str, UUID]] = set()

    @contextmanager
    def _serialized(self, key: tuple) -> Iterator[None]:
        """Hold the key's lock stripe for a whole read-modify-write."""
        with self._key_locks[hash(key) % len(self._key_locks)]:
            yield

    # ------------------------------------------------------------------ users

    def get_user(self, user_id: UUID) -> models.User | None:
        return self._users.get(user_id)

    def get_user_by_email(self, email: str) -> models.User | None:
        user_id = self._users_by_email.get(email.lower())
        return self._users.get(user_id) if user_id else None

    def get_user_by_oidc_subject(self, subject: str) -> models.User | None:
        with self._lock:
            return next((u for u in self._users.values() if u.oidc_subject == subject), None)

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
    ) -> models.User:
        email = email.lower() if email else None
        with self._lock:
            if email and email in self._users_by_email:
                raise ConflictError("An account with this email already exists")
            if oidc_subject and self.get_user_by_oidc_subject(oidc_subject):
                raise ConflictError("An account for this identity already exists")
            user_id = user_id or uuid.uuid4()
            if user_id in self._users:
                raise ConflictError("User already exists")

            now = utcnow()
            user = models.User(
                id=user_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                profile_image_url=profile_image_url,
                password_hash=password_hash,
                oidc_subject=oidc_subject,
                karma=0,
                role="diy",
                bio=None,
                is_profile_public=True,
                created_at=now,
                updated_at=now,
            )
            self._users[user_id] = user
            if email:
                self._users_by_email[email] = user_id
        logger.info(f"Created user {user_id} in memory")
        return user

    def _refresh_identity(
        self,
        user_id: UUID,
        *,
        oidc_subject: str | None,
        email: str | None,
        updates: dict[str, Any],
    ) -> models.User:
        email = email.lower() if email else None
        with self._lock:
            user = self._users[user_id]
            if email and email != user.email:
                if email in self._users_by_email:
                    raise ConflictError("An account with this email already exists")
                if user.email:
                    self._users_by_email.pop(user.email, None)
                self._users_by_email[email] = user_id
                user.email = email
            if oidc_subject:
                user.oidc_subject = oidc_subject
            for key, value in updates.items():
                setattr(user, key, value)
            user.updated_at = utcnow()
            return user

    def update_user_profile(self, user_id: UUID, updates: dict[str, Any]) -> models.User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            for key, value in pick_fields(updates, USER_PROFILE_FIELDS).items():
                setattr(user, key, value)
            user.updated_at = utcnow()
            return user

    def add_karma(self, user_id: UUID, delta: int) -> models.User | None:
        if delta < 0:
            raise ValueError("Karma never decreases")
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.karma += delta
            return user

    # ---------------------------------------------------------------- threads

    def create_thread(
        self, *, title: str, content: str, category: str, author_id: UUID
    ) -> models.Thread:
        now = utcnow()
        thread = models.Thread(
            id=uuid.uuid4(),
            title=title,
            content=content,
            category=category,
            author_id=author_id,
            upvotes=0,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._threads[thread.id] = thread
        return thread

    def get_thread(self, thread_id: UUID) -> models.Thread | None:
        return self._threads.get(thread_id)

    def get_threads(
        self,
        category: str | None = None,
        author_id: UUID | None = None,
        search: str | None = None,
    ) -> list[models.Thread]:
        with self._lock:
            indexed = list(enumerate(self._threads.values()))

        if category:
            indexed = [(i, t) for i, t in indexed if t.category == category]
        if author_id:
            indexed = [(i, t) for i, t in indexed if t.author_id == author_id]
        if search:
            needle = search.lower()
            indexed = [
                (i, t) for i, t in indexed
                if needle in t.title.lower() or needle in t.content.lower()
            ]

        # Insertion order breaks timestamp ties
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [thread for _, thread in indexed]

    def update_thread(self, thread_id: UUID, updates: dict[str, Any]) -> models.Thread | None:
        with self._lock:
            thread = self._threads.get(thread_id)
            if thread is None:
                return None
            for key, value in pick_fields(updates, THREAD_FIELDS).items():
                setattr(thread, key, value)
            thread.updated_at = utcnow()
            return thread

    def update_thread_upvotes(self, thread_id: UUID, upvotes: int) -> models.Thread | None:
        with self._lock:
            thread = self._threads.get(thread_id)
            if thread is None:
                return None
            thread.upvotes = upvotes
            return thread

    def delete_thread(self, thread_id: UUID) -> bool:
        with self._lock:
            if thread_id not in self._threads:
                return False
            comment_ids = [c.id for c in self._comments.values() if c.thread_id == thread_id]
            for comment_id in comment_ids:
                self._delete_comment_locked(comment_id)
            self._drop_target_rows("thread", thread_id)
            del self._threads[thread_id]
        logger.info(f"Deleted thread {thread_id} and {len(comment_ids)} comment(s)")
        return True

    # --------------------------------------------------------------- comments

    def create_comment(
        self, *, thread_id: UUID, content: str, author_id: UUID
    ) -> models.Comment | None:
        now = utcnow()
        with self._lock:
            if thread_id not in self._threads:
                return None
            comment = models.Comment(
                id=uuid.uuid4(),
                content=content,
                thread_id=thread_id,
                author_id=author_id,
                upvotes=0,
                created_at=now,
                updated_at=now,
            )
            self._comments[comment.id] = comment
        return comment

    def get_comment(self, comment_id: UUID) -> models.Comment | None:
        return self._comments.get(comment_id)

    def get_comments(self, thread_id: UUID) -> list[models.Comment]:
        with self._lock:
            indexed = [
                (i, c) for i, c in enumerate(self._comments.values()) if c.thread_id == thread_id
            ]
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]))
        return [comment for _, comment in indexed]

    def get_comments_by_author(self, author_id: UUID) -> list[models.Comment]:
        with self._lock:
            indexed = [
                (i, c) for i, c in enumerate(self._comments.values()) if c.author_id == author_id
            ]
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [comment for _, comment in indexed]

    def update_comment(self, comment_id: UUID, updates: dict[str, Any]) -> models.Comment | None:
        with self._lock:
            comment = self._comments.get(comment_id)
            if comment is None:
                return None
            for key, value in pick_fields(updates, COMMENT_FIELDS).items():
                setattr(comment, key, value)
            comment.updated_at = utcnow()
            return comment

    def update_comment_upvotes(self, comment_id: UUID, upvotes: int) -> models.Comment | None:
        with self._lock:
            comment = self._comments.get(comment_id)
            if comment is None:
                return None
            comment.upvotes = upvotes
            return comment

    def delete_comment(self, comment_id: UUID) -> bool:
        with self._lock:
            if comment_id not in self._comments:
                return False
            self._delete_comment_locked(comment_id)
            return True

    def _delete_comment_locked(self, comment_id: UUID) -> None:
        self._drop_target_rows("comment", comment_id)
        del self._comments[comment_id]

    def _drop_target_rows(self, target_type: str, target_id: UUID) -> None:
        for ledger in (self._votes, self._bookmarks):
            for key in [k for k in ledger if k[1] == target_type and k[2] == target_id]:
                del ledger[key]

    # ------------------------------------------------------------------ votes

    def get_vote(self, user_id: UUID, target_type: str, target_id: UUID) -> models.Vote | None:
        return self._votes.get((user_id, target_type, target_id))

    def cast_vote(
        self, user_id: UUID, target_type: str, target_id: UUID, vote_type: str
    ) -> VoteOutcome:
        key = (user_id, target_type, target_id)
        with self._serialized(("vote",) + key):
            existing = self._votes.get(key)
            previous = existing.vote_type if existing else None
            action, direction = reconcile_vote(previous, vote_type)

            with self._lock:
                if action == "removed":
                    del self._votes[key]
                    return VoteOutcome(action=action, vote=None, previous=previous)
                if action == "replaced":
                    existing.vote_type = direction
                    return VoteOutcome(action=action, vote=existing, previous=previous)

                vote = models.Vote(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    target_type=target_type,
                    target_id=target_id,
                    vote_type=direction,
                    created_at=utcnow(),
                )
                self._votes[key] = vote
                return VoteOutcome(action=action, vote=vote, previous=previous)

    def get_vote_counts(self, target_type: str, target_id: UUID) -> VoteCounts:
        with self._lock:
            directions = [
                v.vote_type for (_, t_type, t_id), v in self._votes.items()
                if t_type == target_type and t_id == target_id
            ]
        return VoteCounts(upvotes=directions.count("up"), downvotes=directions.count("down"))

    def grant_vote_karma(
        self, voter_id: UUID, target_type: str, target_id: UUID, author_id: UUID
    ) -> bool:
        key = (voter_id, target_type, target_id)
        with self._lock:
            if key in self._karma_grants:
                return False
            author = self._users.get(author_id)
            if author is None:
                return False
            self._karma_grants.add(key)
            author.karma += 1
            author.updated_at = utcnow()
        return True

    # -------------------------------------------------------------- bookmarks

    def toggle_bookmark(self, user_id: UUID, target_type: str, target_id: UUID) -> BookmarkOutcome:
        key = (user_id, target_type, target_id)
        with self._serialized(("bookmark",) + key):
            with self._lock:
                if key in self._bookmarks:
                    del self._bookmarks[key]
                    return BookmarkOutcome(action="removed", bookmark=None)
                bookmark = models.Bookmark(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    target_type=target_type,
                    target_id=target_id,
                    created_at=utcnow(),
                )
                self._bookmarks[key] = bookmark
                return BookmarkOutcome(action="created", bookmark=bookmark)

    def is_bookmarked(self, user_id: UUID, target_type: str, target_id: UUID) -> bool:
        return (user_id, target_type, target_id) in self._bookmarks

    def get_bookmarks(self, user_id: UUID) -> list[models.Bookmark]:
        with self._lock:
            indexed = [
                (i, b) for i, b in enumerate(self._bookmarks.values()) if b.user_id == user_id
            ]
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [bookmark for _, bookmark in indexed]

    # ----------------------------------------------------------- achievements

    def get_achievements(self) -> list[models.Achievement]:
        with self._lock:
            return sorted(self._achievements.values(), key=lambda a: a.requirement)

    def ensure_achievement(
        self,
        *,
        name: str,
        description: str | None,
        icon: str | None,
        category: str,
        requirement: int,
    ) -> models.Achievement:
        with self._lock:
            for achievement in self._achievements.values():
                if achievement.name == name:
                    return achievement
            achievement = models.Achievement(
                id=uuid.uuid4(),
                name=name,
                description=description,
                icon=icon,
                category=category,
                requirement=requirement,
                created_at=utcnow(),
            )
            self._achievements[achievement.id] = achievement
            return achievement

    def get_user_achievements(self, user_id: UUID) -> list[models.UserAchievement]:
        with self._lock:
            earned = [ua for (uid, _), ua in self._user_achievements.items() if uid == user_id]
        return sorted(earned, key=lambda ua: ua.earned_at)

    def award_achievement(self, user_id: UUID, achievement_id: UUID) -> models.UserAchievement:
        key = (user_id, achievement_id)
        with self._lock:
            if key in self._user_achievements:
                raise ConflictError("Achievement already earned")
            grant = models.UserAchievement(
                id=uuid.uuid4(),
                user_id=user_id,
                achievement_id=achievement_id,
                earned_at=utcnow(),
            )
            self._user_achievements[key] = grant
            return grant

    # ------------------------------------------------------------------ stats

    def get_user_stats(self, user_id: UUID) -> UserStats:
        with self._lock:
            threads = [t for t in self._threads.values() if t.author_id == user_id]
            comments = [c for c in self._comments.values() if c.author_id == user_id]
        return UserStats(
            threads_count=len(threads),
            comments_count=len(comments),
            best_answers_count=0,
            total_upvotes=sum(t.upvotes for t in threads) + sum(c.upvotes for c in comments),
        )

    # --------------------------------------------------------------- sessions

    def create_session(
        self,
        *,
        user_id: UUID,
        token_hash: str,
        identity: dict[str, Any],
        expires_at: datetime,
    ) -> models.UserSession:
        with self._lock:
            if token_hash in self._sessions:
                raise ConflictError("Session token collision")
            session = models.UserSession(
                id=uuid.uuid4(),
                user_id=user_id,
                token_hash=token_hash,
                identity=identity,
                expires_at=expires_at,
                created_at=utcnow(),
            )
            self._sessions[token_hash] = session
            return session

    def get_session(self, token_hash: str) -> models.UserSession | None:
        with self._lock:
            session = self._sessions.get(token_hash)
            if session is None:
                return None
            if session.expires_at <= utcnow():
                del self._sessions[token_hash]
                return None
            return session

    def delete_session(self, token_hash: str) -> bool:
        with self._lock:
            return self._sessions.pop(token_hash, None) is not None
