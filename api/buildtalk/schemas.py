from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

Category = Literal["construction", "furniture", "services"]
Role = Literal["contractor", "homeowner", "supplier", "architect", "diy"]
TargetType = Literal["thread", "comment"]
VoteType = Literal["up", "down"]


# ============================================================================
# BASE SCHEMAS
# ============================================================================


class Problem(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str | None = None
    errors: dict[str, list[str]] | None = None


class RequestModel(BaseModel):
    """
    Base for every write payload.

    Unknown keys are rejected. Fields are accepted under their snake_case
    name or the camelCase alias the web client sends.
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )


class UpdateModel(RequestModel):
    """Partial update: at least one recognised field, none explicitly null."""

    nullable_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def require_fields(self):
        if not self.model_fields_set:
            raise ValueError("At least one field is required for update")
        for name in self.model_fields_set:
            if getattr(self, name) is None and name not in self.nullable_fields:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ============================================================================
# HEALTH & CONFIG
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    uptime_s: float | None = None


class Config(BaseModel):
    """Public configuration for the client."""

    categories: list[str] = ["construction", "furniture", "services"]
    roles: list[str] = ["contractor", "homeowner", "supplier", "architect", "diy"]
    auth_strategy: Literal["credentials", "oidc"]
    counter_mode: Literal["direct", "ledger"]


# ============================================================================
# USER SCHEMAS
# ============================================================================


class AuthorSummary(BaseModel):
    """Author fields embedded in threads and comments."""

    id: UUID
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    role: Role
    karma: int

    model_config = ConfigDict(from_attributes=True)


class UserPublic(BaseModel):
    """Public user profile."""

    id: UUID
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    karma: int
    role: Role
    bio: str | None = None
    is_profile_public: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserFull(UserPublic):
    """Own profile, including private fields."""

    email: str | None = None
    updated_at: datetime | None = None


class ProfileUpdate(UpdateModel):
    """Update own profile."""

    nullable_fields: ClassVar[tuple[str, ...]] = (
        "bio",
        "profile_image_url",
        "first_name",
        "last_name",
    )

    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    profile_image_url: str | None = Field(None, max_length=500)
    role: Role | None = None
    bio: str | None = Field(None, max_length=1000)
    is_profile_public: bool | None = None


class SessionUser(BaseModel):
    """Identity projection stored in the server-side session."""

    id: UUID
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None


# ============================================================================
# THREAD SCHEMAS
# ============================================================================


class Thread(BaseModel):
    """Discussion thread."""

    id: UUID
    title: str
    content: str
    category: Category
    author_id: UUID
    author: AuthorSummary | None = None
    upvotes: int = Field(..., ge=0)
    created_at: datetime
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ThreadCreate(RequestModel):
    """Create thread request. The author always comes from the session."""

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=10000)
    category: Category


class ThreadUpdate(UpdateModel):
    """Update thread request."""

    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = Field(None, min_length=1, max_length=10000)
    category: Category | None = None


class UpvotesUpdate(RequestModel):
    """Absolute upvote counter overwrite."""

    upvotes: int = Field(..., ge=0, strict=True)


# ============================================================================
# COMMENT SCHEMAS
# ============================================================================


class Comment(BaseModel):
    """Reply on a thread."""

    id: UUID
    content: str
    thread_id: UUID
    author_id: UUID
    author: AuthorSummary | None = None
    upvotes: int = Field(..., ge=0)
    created_at: datetime
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CommentCreate(RequestModel):
    """Create comment request."""

    content: str = Field(..., min_length=1, max_length=5000)


class CommentUpdate(UpdateModel):
    """Update comment request."""

    content: str | None = Field(None, min_length=1, max_length=5000)


# ============================================================================
# VOTE & BOOKMARK SCHEMAS
# ============================================================================


class Vote(BaseModel):
    """Entry in the vote ledger."""

    id: UUID
    user_id: UUID
    target_type: TargetType
    target_id: UUID
    vote_type: VoteType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VoteCreate(RequestModel):
    """Cast a vote; repeating the stored direction retracts it."""

    target_type: TargetType
    target_id: UUID
    vote_type: VoteType


class VoteResult(BaseModel):
    """Outcome of a vote cast."""

    action: Literal["created", "replaced", "removed"]
    message: str
    vote: Vote | None = None
    upvotes: int | None = None  # counter of the target after the cast


class VoteTotals(BaseModel):
    """Aggregate of the vote ledger for one target."""

    upvotes: int
    downvotes: int
    mine: VoteType | None = None


class Bookmark(BaseModel):
    """Saved thread or comment."""

    id: UUID
    user_id: UUID
    target_type: TargetType
    target_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookmarkCreate(RequestModel):
    """Toggle a bookmark."""

    target_type: TargetType
    target_id: UUID


class BookmarkResult(BaseModel):
    """Outcome of a bookmark toggle."""

    action: Literal["created", "removed"]
    message: str
    bookmark: Bookmark | None = None


class BookmarkStatus(BaseModel):
    bookmarked: bool


# ============================================================================
# ACHIEVEMENT & PROFILE SCHEMAS
# ============================================================================


class Achievement(BaseModel):
    """Karma milestone."""

    id: UUID
    name: str
    description: str | None = None
    icon: str | None = None
    category: str
    requirement: int

    model_config = ConfigDict(from_attributes=True)


class EarnedAchievement(Achievement):
    """Achievement with the moment it was earned."""

    earned_at: datetime


class ProfileStats(BaseModel):
    """Activity counters shown on the profile."""

    threads_count: int
    comments_count: int
    best_answers_count: int
    total_upvotes: int

    model_config = ConfigDict(from_attributes=True)


class ProfileResponse(BaseModel):
    """Own profile with stats and achievement progress."""

    user: UserFull
    stats: ProfileStats
    achievements: list[EarnedAchievement]
    current_achievement: Achievement | None = None
    next_achievement: Achievement | None = None


# ============================================================================
# AUTH SCHEMAS
# ============================================================================


class RegisterRequest(RequestModel):
    """Register with email and password."""

    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)


class LoginRequest(RequestModel):
    """Login with email and password."""

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class AuthResponse(BaseModel):
    """Successful sign-in or registration."""

    success: bool = True
    user: SessionUser
