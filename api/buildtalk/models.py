from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from .db import Base

CATEGORIES = ("construction", "furniture", "services")
ROLES = ("contractor", "homeowner", "supplier", "architect", "diy")
TARGET_TYPES = ("thread", "comment")
VOTE_TYPES = ("up", "down")


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every datetime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# USERS & SESSIONS
# ============================================================================


class User(Base):
    """Forum member, created on registration or first federated login."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    profile_image_url = Column(String(500), nullable=True)

    # Absent for identities that only authenticate through OIDC
    password_hash = Column(String(255), nullable=True)
    oidc_subject = Column(String(255), unique=True, nullable=True, index=True)

    karma = Column(Integer, nullable=False, default=0)
    role = Column(String(20), nullable=False, default="diy")
    bio = Column(Text, nullable=True)
    is_profile_public = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    threads = relationship("Thread", back_populates="author")
    comments = relationship("Comment", back_populates="author")
    votes = relationship("Vote", back_populates="user", cascade="all, delete-orphan")
    bookmarks = relationship("Bookmark", back_populates="user", cascade="all, delete-orphan")
    achievements = relationship(
        "UserAchievement", back_populates="user", cascade="all, delete-orphan"
    )
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    karma_grants = relationship(
        "KarmaGrant",
        back_populates="voter",
        foreign_keys="KarmaGrant.voter_id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("karma >= 0", name="ck_users_karma_non_negative"),
    )


class UserSession(Base):
    """Server-side session keyed by the hash of an opaque cookie token."""

    __tablename__ = "user_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    # Minimal identity projection: id, email, names, avatar
    identity = Column(JSON, nullable=False, default=dict)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="sessions")


# ============================================================================
# THREADS & COMMENTS
# ============================================================================


class Thread(Base):
    """Top-level discussion post in one category."""

    __tablename__ = "threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, index=True)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    upvotes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    author = relationship("User", back_populates="threads")
    comments = relationship("Comment", back_populates="thread")

    __table_args__ = (
        CheckConstraint("upvotes >= 0", name="ck_threads_upvotes_non_negative"),
        Index("ix_threads_category_created", category, created_at),
    )


class Comment(Base):
    """Reply attached to exactly one thread."""

    __tablename__ = "comments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    content = Column(Text, nullable=False)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id"), nullable=False, index=True)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    upvotes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    thread = relationship("Thread", back_populates="comments")
    author = relationship("User", back_populates="comments")

    __table_args__ = (
        CheckConstraint("upvotes >= 0", name="ck_comments_upvotes_non_negative"),
    )


# ============================================================================
# VOTES & BOOKMARKS
# ============================================================================


class Vote(Base):
    """Directional vote on a thread or comment (the vote ledger)."""

    __tablename__ = "votes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)  # "thread" | "comment"
    target_id = Column(Uuid(as_uuid=True), nullable=False)
    vote_type = Column(String(10), nullable=False)  # "up" | "down"
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_votes_user_target"),
        Index("ix_votes_target", target_type, target_id),
    )


class KarmaGrant(Base):
    """
    Karma credited to an author for a voter's up vote on one target.

    Outlives the vote itself, so retracting and re-casting credits nothing new.
    """

    __tablename__ = "karma_grants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    voter_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)
    target_id = Column(Uuid(as_uuid=True), nullable=False)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    voter = relationship("User", back_populates="karma_grants", foreign_keys=[voter_id])

    __table_args__ = (
        UniqueConstraint("voter_id", "target_type", "target_id", name="uq_karma_grants_voter_target"),
    )


class Bookmark(Base):
    """Saved thread or comment."""

    __tablename__ = "bookmarks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)
    target_id = Column(Uuid(as_uuid=True), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="bookmarks")

    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_bookmarks_user_target"),
    )


# ============================================================================
# ACHIEVEMENTS
# ============================================================================


class Achievement(Base):
    """Static karma milestone."""

    __tablename__ = "achievements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    category = Column(String(50), nullable=False, default="karma")
    requirement = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    grants = relationship("UserAchievement", back_populates="achievement")


class UserAchievement(Base):
    """Achievement earned by a user; at most once."""

    __tablename__ = "user_achievements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    achievement_id = Column(
        Uuid(as_uuid=True), ForeignKey("achievements.id"), nullable=False, index=True
    )
    earned_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="achievements")
    achievement = relationship("Achievement", back_populates="grants")

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )
