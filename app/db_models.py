"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class ListPrivacy(str, enum.Enum):
    """Who may see a curated list."""

    public = "public"
    private = "private"
    friends = "friends"


class Title(Base):
    """Catalog metadata cached locally so other rows can reference it."""

    __tablename__ = "titles"
    __table_args__ = (
        UniqueConstraint("tmdb_id", "media_type", name="uq_titles_tmdb_media"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tmdb_id: Mapped[int] = mapped_column(Integer, index=True)
    media_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str] = mapped_column(String(512))
    original_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    reviews: Mapped[list["Review"]] = relationship(back_populates="title")
    diary_entries: Mapped[list["DiaryEntry"]] = relationship(back_populates="title")


class AuthUser(Base):
    """Email and password credential record."""

    __tablename__ = "auth_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    profile: Mapped[UserProfile | None] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )
    lists: Mapped[list["UserList"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class UserProfile(Base):
    """Public-facing profile attached one-to-one to an auth user."""

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), unique=True
    )
    username: Mapped[str] = mapped_column(String(120), unique=True)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user: Mapped[AuthUser] = relationship(back_populates="profile")


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(64), unique=True)


class Review(Base):
    """A written review of a title."""

    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("titles.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("auth_users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    watched_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    rating: Mapped[float | None] = mapped_column(
        Numeric(3, 1, asdecimal=False), nullable=True
    )
    contains_spoilers: Mapped[bool] = mapped_column(Boolean, default=False)
    liked: Mapped[bool] = mapped_column(Boolean, default=False)
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    title: Mapped[Title] = relationship(back_populates="reviews")
    tag_links: Mapped[list["ReviewTag"]] = relationship(
        back_populates="review", cascade="all, delete-orphan"
    )


class ReviewTag(Base):
    __tablename__ = "review_tags"
    __table_args__ = (
        UniqueConstraint("review_id", "tag_id", name="uq_review_tags_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    review_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reviews.id", ondelete="CASCADE")
    )
    tag_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tags.id", ondelete="CASCADE")
    )

    review: Mapped[Review] = relationship(back_populates="tag_links")
    tag: Mapped[Tag] = relationship()


class DiaryEntry(Base):
    """A single logged viewing of a title."""

    __tablename__ = "diary_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("titles.id", ondelete="CASCADE"), index=True
    )
    watched_on: Mapped[date] = mapped_column(Date, index=True)
    rating: Mapped[float | None] = mapped_column(
        Numeric(3, 1, asdecimal=False), nullable=True
    )
    liked: Mapped[bool] = mapped_column(Boolean, default=False)
    rewatch: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    title: Mapped[Title] = relationship(back_populates="diary_entries")


class UserList(Base):
    """A ranked, user-curated collection of titles."""

    __tablename__ = "lists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    privacy: Mapped[ListPrivacy] = mapped_column(
        Enum(ListPrivacy, name="list_privacy", native_enum=False),
        default=ListPrivacy.public,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped[AuthUser] = relationship(back_populates="lists")
    items: Mapped[list["ListItem"]] = relationship(
        back_populates="user_list", order_by="ListItem.rank"
    )


class ListItem(Base):
    __tablename__ = "list_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    list_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lists.id", ondelete="CASCADE"), index=True
    )
    title_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("titles.id", ondelete="CASCADE")
    )
    rank: Mapped[int] = mapped_column(Integer)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user_list: Mapped[UserList] = relationship(back_populates="items")
    title: Mapped[Title] = relationship()
