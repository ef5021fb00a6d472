"""SQLAlchemy storage backend, one instance per request session."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

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

VOTE_RACE_DETAIL = "A concurrent vote on this target was recorded first"


class DatabaseStorage(Storage):
    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self, conflict_detail: str) -> None:
        """Commit, translating unique-key violations into ConflictError."""
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Integrity violation: {e.orig if hasattr(e, 'orig') else e}")
            raise ConflictError(conflict_detail) from e

    # ------------------------------------------------------------------ users

    def get_user(self, user_id: UUID) -> models.User | None:
        return self.db.query(models.User).filter(models.User.id == user_id).first()

    def get_user_by_email(self, email: str) -> models.User | None:
        return self.db.query(models.User).filter(models.User.email == email.lower()).first()

    def get_user_by_oidc_subject(self, subject: str) -> models.User | None:
        return self.db.query(models.User).filter(models.User.oidc_subject == subject).first()

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
        user = models.User(
            email=email.lower() if email else None,
            first_name=first_name,
            last_name=last_name,
            profile_image_url=profile_image_url,
            password_hash=password_hash,
            oidc_subject=oidc_subject,
            karma=0,
            role="diy",
            is_profile_public=True,
        )
        if user_id is not None:
            user.id = user_id
        self.db.add(user)
        self._commit("An account with this email already exists")
        self.db.refresh(user)
        logger.info(f"Created user {user.id}")
        return user

    def _refresh_identity(
        self,
        user_id: UUID,
        *,
        oidc_subject: str | None,
        email: str | None,
        updates: dict[str, Any],
    ) -> models.User:
        user = self.get_user(user_id)
        if email:
            user.email = email.lower()
        if oidc_subject:
            user.oidc_subject = oidc_subject
        for key, value in updates.items():
            setattr(user, key, value)
        self._commit("An account with this email already exists")
        self.db.refresh(user)
        return user

    def update_user_profile(self, user_id: UUID, updates: dict[str, Any]) -> models.User | None:
        user = self.get_user(user_id)
        if not user:
            return None
        for key, value in pick_fields(updates, USER_PROFILE_FIELDS).items():
            setattr(user, key, value)
        self._commit("Profile update conflicts with existing data")
        self.db.refresh(user)
        return user

    def add_karma(self, user_id: UUID, delta: int) -> models.User | None:
        if delta < 0:
            raise ValueError("Karma never decreases")
        updated = (
            self.db.query(models.User)
            .filter(models.User.id == user_id)
            .update({models.User.karma: models.User.karma + delta}, synchronize_session=False)
        )
        self.db.commit()
        if not updated:
            return None
        user = self.get_user(user_id)
        self.db.refresh(user)
        return user

    # ---------------------------------------------------------------- threads

    def create_thread(
        self, *, title: str, content: str, category: str, author_id: UUID
    ) -> models.Thread:
        thread = models.Thread(
            title=title,
            content=content,
            category=category,
            author_id=author_id,
            upvotes=0,
        )
        self.db.add(thread)
        self._commit("Thread could not be created")
        self.db.refresh(thread)
        logger.info(f"Created thread {thread.id} in {category}")
        return thread

    def get_thread(self, thread_id: UUID) -> models.Thread | None:
        return self.db.query(models.Thread).filter(models.Thread.id == thread_id).first()

    def get_threads(
        self,
        category: str | None = None,
        author_id: UUID | None = None,
        search: str | None = None,
    ) -> list[models.Thread]:
        query = self.db.query(models.Thread)
        if category:
            query = query.filter(models.Thread.category == category)
        if author_id:
            query = query.filter(models.Thread.author_id == author_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(models.Thread.title.ilike(pattern), models.Thread.content.ilike(pattern))
            )
        return query.order_by(models.Thread.created_at.desc(), models.Thread.id.desc()).all()

    def update_thread(self, thread_id: UUID, updates: dict[str, Any]) -> models.Thread | None:
        thread = self.get_thread(thread_id)
        if not thread:
            return None
        for key, value in pick_fields(updates, THREAD_FIELDS).items():
            setattr(thread, key, value)
        self.db.commit()
        self.db.refresh(thread)
        return thread

    def update_thread_upvotes(self, thread_id: UUID, upvotes: int) -> models.Thread | None:
        thread = self.get_thread(thread_id)
        if not thread:
            return None
        thread.upvotes = upvotes
        self.db.commit()
        self.db.refresh(thread)
        return thread

    def delete_thread(self, thread_id: UUID) -> bool:
        thread = self.get_thread(thread_id)
        if not thread:
            return False

        comment_ids = [
            row.id
            for row in self.db.query(models.Comment.id).filter(models.Comment.thread_id == thread_id)
        ]
        # Comments must go before the thread they reference
        if comment_ids:
            self._drop_target_rows("comment", comment_ids)
            self.db.query(models.Comment).filter(
                models.Comment.id.in_(comment_ids)
            ).delete(synchronize_session=False)
        self._drop_target_rows("thread", [thread_id])
        self.db.query(models.Thread).filter(models.Thread.id == thread_id).delete(
            synchronize_session=False
        )
        self.db.commit()
        self.db.expunge(thread)
        logger.info(f"Deleted thread {thread_id} and {len(comment_ids)} comment(s)")
        return True

    def _drop_target_rows(self, target_type: str, target_ids: list[UUID]) -> None:
        for model in (models.Vote, models.Bookmark):
            self.db.query(model).filter(
                model.target_type == target_type,
                model.target_id.in_(target_ids),
            ).delete(synchronize_session=False)

    # --------------------------------------------------------------- comments

    def create_comment(
        self, *, thread_id: UUID, content: str, author_id: UUID
    ) -> models.Comment | None:
        if not self.get_thread(thread_id):
            return None
        comment = models.Comment(
            thread_id=thread_id,
            content=content,
            author_id=author_id,
            upvotes=0,
        )
        self.db.add(comment)
        self._commit("Comment could not be created")
        self.db.refresh(comment)
        return comment

    def get_comment(self, comment_id: UUID) -> models.Comment | None:
        return self.db.query(models.Comment).filter(models.Comment.id == comment_id).first()

    def get_comments(self, thread_id: UUID) -> list[models.Comment]:
        return (
            self.db.query(models.Comment)
            .filter(models.Comment.thread_id == thread_id)
            .order_by(models.Comment.created_at.asc(), models.Comment.id.asc())
            .all()
        )

    def get_comments_by_author(self, author_id: UUID) -> list[models.Comment]:
        return (
            self.db.query(models.Comment)
            .filter(models.Comment.author_id == author_id)
            .order_by(models.Comment.created_at.desc(), models.Comment.id.desc())
            .all()
        )

    def update_comment(self, comment_id: UUID, updates: dict[str, Any]) -> models.Comment | None:
        comment = self.get_comment(comment_id)
        if not comment:
            return None
        for key, value in pick_fields(updates, COMMENT_FIELDS).items():
            setattr(comment, key, value)
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def update_comment_upvotes(self, comment_id: UUID, upvotes: int) -> models.Comment | None:
        comment = self.get_comment(comment_id)
        if not comment:
            return None
        comment.upvotes = upvotes
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def delete_comment(self, comment_id: UUID) -> bool:
        comment = self.get_comment(comment_id)
        if not comment:
            return False
        self._drop_target_rows("comment", [comment_id])
        self.db.delete(comment)
        self.db.commit()
        return True

    # ------------------------------------------------------------------ votes

    def get_vote(self, user_id: UUID, target_type: str, target_id: UUID) -> models.Vote | None:
        return (
            self.db.query(models.Vote)
            .filter(
                models.Vote.user_id == user_id,
                models.Vote.target_type == target_type,
                models.Vote.target_id == target_id,
            )
            .first()
        )

    def cast_vote(
        self, user_id: UUID, target_type: str, target_id: UUID, vote_type: str
    ) -> VoteOutcome:
        pair = (
            models.Vote.user_id == user_id,
            models.Vote.target_type == target_type,
            models.Vote.target_id == target_id,
        )
        # Row lock on PostgreSQL only; on SQLite the writes below are conditional
        # on the direction read here, so a lost race matches no row
        existing = self.db.query(models.Vote).filter(*pair).with_for_update().first()
        previous = existing.vote_type if existing else None
        action, direction = reconcile_vote(previous, vote_type)

        try:
            if action == "removed":
                matched = (
                    self.db.query(models.Vote)
                    .filter(*pair, models.Vote.vote_type == previous)
                    .delete(synchronize_session=False)
                )
            elif action == "replaced":
                matched = (
                    self.db.query(models.Vote)
                    .filter(*pair, models.Vote.vote_type == previous)
                    .update({models.Vote.vote_type: direction}, synchronize_session=False)
                )
            else:
                self.db.add(
                    models.Vote(
                        user_id=user_id,
                        target_type=target_type,
                        target_id=target_id,
                        vote_type=direction,
                    )
                )
                self.db.flush()
                matched = 1
            if matched:
                self.db.commit()
        except (IntegrityError, OperationalError, StaleDataError) as e:
            self.db.rollback()
            logger.info(f"Vote on {target_type} {target_id} lost a race: {e}")
            raise ConflictError(VOTE_RACE_DETAIL) from e

        if not matched:
            self.db.rollback()
            logger.info(f"Vote on {target_type} {target_id} changed before it could be {action}")
            raise ConflictError(VOTE_RACE_DETAIL)

        if action == "removed":
            self.db.expunge(existing)
            return VoteOutcome(action=action, vote=None, previous=previous)

        vote = self.get_vote(user_id, target_type, target_id)
        if vote is None:
            raise ConflictError(VOTE_RACE_DETAIL)
        return VoteOutcome(action=action, vote=vote, previous=previous)

    def get_vote_counts(self, target_type: str, target_id: UUID) -> VoteCounts:
        row = (
            self.db.query(
                func.coalesce(func.sum(case((models.Vote.vote_type == "up", 1), else_=0)), 0).label("up"),
                func.coalesce(func.sum(case((models.Vote.vote_type == "down", 1), else_=0)), 0).label("down"),
            )
            .filter(
                models.Vote.target_type == target_type,
                models.Vote.target_id == target_id,
            )
            .one()
        )
        return VoteCounts(upvotes=int(row.up), downvotes=int(row.down))

    def grant_vote_karma(
        self, voter_id: UUID, target_type: str, target_id: UUID, author_id: UUID
    ) -> bool:
        updated = (
            self.db.query(models.User)
            .filter(models.User.id == author_id)
            .update({models.User.karma: models.User.karma + 1}, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            return False
        self.db.add(
            models.KarmaGrant(
                voter_id=voter_id,
                target_type=target_type,
                target_id=target_id,
                author_id=author_id,
            )
        )
        try:
            self._commit("Karma already granted for this vote")
        except ConflictError:
            return False
        return True

    # -------------------------------------------------------------- bookmarks

    def _find_bookmark(self, user_id: UUID, target_type: str, target_id: UUID) -> models.Bookmark | None:
        return (
            self.db.query(models.Bookmark)
            .filter(
                models.Bookmark.user_id == user_id,
                models.Bookmark.target_type == target_type,
                models.Bookmark.target_id == target_id,
            )
            .first()
        )

    def toggle_bookmark(self, user_id: UUID, target_type: str, target_id: UUID) -> BookmarkOutcome:
        existing = self._find_bookmark(user_id, target_type, target_id)
        if existing:
            self.db.delete(existing)
            self.db.commit()
            return BookmarkOutcome(action="removed", bookmark=None)

        bookmark = models.Bookmark(user_id=user_id, target_type=target_type, target_id=target_id)
        self.db.add(bookmark)
        self._commit("A concurrent bookmark on this target was recorded first")
        self.db.refresh(bookmark)
        return BookmarkOutcome(action="created", bookmark=bookmark)

    def is_bookmarked(self, user_id: UUID, target_type: str, target_id: UUID) -> bool:
        return self._find_bookmark(user_id, target_type, target_id) is not None

    def get_bookmarks(self, user_id: UUID) -> list[models.Bookmark]:
        return (
            self.db.query(models.Bookmark)
            .filter(models.Bookmark.user_id == user_id)
            .order_by(models.Bookmark.created_at.desc())
            .all()
        )

    # ----------------------------------------------------------- achievements

    def get_achievements(self) -> list[models.Achievement]:
        return self.db.query(models.Achievement).order_by(models.Achievement.requirement.asc()).all()

    def ensure_achievement(
        self,
        *,
        name: str,
        description: str | None,
        icon: str | None,
        category: str,
        requirement: int,
    ) -> models.Achievement:
        existing = self.db.query(models.Achievement).filter(models.Achievement.name == name).first()
        if existing:
            return existing
        achievement = models.Achievement(
            name=name,
            description=description,
            icon=icon,
            category=category,
            requirement=requirement,
        )
        self.db.add(achievement)
        self._commit("Achievement already exists")
        self.db.refresh(achievement)
        return achievement

    def get_user_achievements(self, user_id: UUID) -> list[models.UserAchievement]:
        return (
            self.db.query(models.UserAchievement)
            .filter(models.UserAchievement.user_id == user_id)
            .order_by(models.UserAchievement.earned_at.asc())
            .all()
        )

    def award_achievement(self, user_id: UUID, achievement_id: UUID) -> models.UserAchievement:
        grant = models.UserAchievement(user_id=user_id, achievement_id=achievement_id)
        self.db.add(grant)
        self._commit("Achievement already earned")
        self.db.refresh(grant)
        return grant

    # ------------------------------------------------------------------ stats

    def get_user_stats(self, user_id: UUID) -> UserStats:
        threads_count, thread_upvotes = self.db.query(
            func.count(models.Thread.id),
            func.coalesce(func.sum(models.Thread.upvotes), 0),
        ).filter(models.Thread.author_id == user_id).one()

        comments_count, comment_upvotes = self.db.query(
            func.count(models.Comment.id),
            func.coalesce(func.sum(models.Comment.upvotes), 0),
        ).filter(models.Comment.author_id == user_id).one()

        return UserStats(
            threads_count=threads_count,
            comments_count=comments_count,
            best_answers_count=0,
            total_upvotes=int(thread_upvotes) + int(comment_upvotes),
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
        session = models.UserSession(
            user_id=user_id,
            token_hash=token_hash,
            identity=identity,
            expires_at=expires_at,
        )
        self.db.add(session)
        self._commit("Session token collision")
        self.db.refresh(session)
        return session

    def get_session(self, token_hash: str) -> models.UserSession | None:
        session = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.token_hash == token_hash)
            .first()
        )
        if not session:
            return None
        if session.expires_at <= utcnow():
            self.db.delete(session)
            self.db.commit()
            return None
        return session

    def delete_session(self, token_hash: str) -> bool:
        deleted = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.token_hash == token_hash)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0
