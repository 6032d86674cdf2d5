"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .utils import utcnow


class User(Base):
    """A media-server user whose channels are materialized as libraries."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_user_id: Mapped[str] = mapped_column(String(128))
    username: Mapped[str] = mapped_column(String(120))
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_parental_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    channels: Mapped[list["Channel"]] = relationship(
        back_populates="owner", cascade="all, delete-orphan"
    )


class Channel(Base):
    """A saved taste definition owned by a user."""

    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    media_type: Mapped[str] = mapped_column(String(16), default="movie")
    genre_filters: Mapped[list[str]] = mapped_column(JSON, default=list)
    text_preferences: Mapped[str | None] = mapped_column(Text, nullable=True)
    example_item_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    item_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    library_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    owner: Mapped[User] = relationship(back_populates="channels")


class MediaItem(Base):
    """A movie or series from the shared library."""

    __tablename__ = "media_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    media_type: Mapped[str] = mapped_column(String(16), default="movie")
    provider_item_id: Mapped[str] = mapped_column(String(128))
    title: Mapped[str] = mapped_column(String(512))
    original_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    sort_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    premiere_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    path: Mapped[str | None] = mapped_column(Text, nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(Text, nullable=True)
    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    critic_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    content_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    studios: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    directors: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    writers: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    actors: Mapped[list[dict[str, str]] | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    production_countries: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    network: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    poster_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    backdrop_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tmdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tvdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="series", cascade="all, delete-orphan"
    )


class Episode(Base):
    """An episode belonging to a series item."""

    __tablename__ = "episodes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    series_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("media_items.id", ondelete="CASCADE")
    )
    provider_item_id: Mapped[str] = mapped_column(String(128))
    season_number: Mapped[int] = mapped_column(Integer)
    episode_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(512))
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    premiere_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    path: Mapped[str | None] = mapped_column(Text, nullable=True)

    series: Mapped[MediaItem] = relationship(back_populates="episodes")


class ItemEmbedding(Base):
    """Stored embedding vector for a media item."""

    __tablename__ = "item_embeddings"

    item_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("media_items.id", ondelete="CASCADE"), primary_key=True
    )
    model: Mapped[str] = mapped_column(String(120), default="default")
    vector: Mapped[list[float]] = mapped_column(JSON)


class ParentalRatingValue(Base):
    """Numeric weight of a content rating name, used for policy ceilings."""

    __tablename__ = "parental_rating_values"

    rating_name: Mapped[str] = mapped_column(String(32), primary_key=True)
    rating_value: Mapped[int] = mapped_column(Integer)


class WatchHistory(Base):
    """Items a user has already consumed."""

    __tablename__ = "watch_history"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_watch_history_user_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE")
    )
    item_id: Mapped[str] = mapped_column(String(64))
    watched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class RecommendationRun(Base):
    """Append-only record of one candidate generation for a channel."""

    __tablename__ = "recommendation_runs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(64), index=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    media_type: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default="running")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    candidates: Mapped[list["RecommendationCandidate"]] = relationship(
        back_populates="run", cascade="all, delete-orphan"
    )


class RecommendationCandidate(Base):
    """A ranked candidate stored against a run."""

    __tablename__ = "recommendation_candidates"
    __table_args__ = (
        UniqueConstraint("run_id", "item_id", name="uq_candidate_run_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("recommendation_runs.id", ondelete="CASCADE")
    )
    item_id: Mapped[str] = mapped_column(String(64))
    rank: Mapped[int] = mapped_column(Integer)
    score: Mapped[float] = mapped_column(Float)
    is_selected: Mapped[bool] = mapped_column(Boolean, default=True)

    run: Mapped[RecommendationRun] = relationship(back_populates="candidates")


class StrmLibrary(Base):
    """Local record of the media-server library bound to a channel."""

    __tablename__ = "strm_libraries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(64), unique=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    path: Mapped[str] = mapped_column(Text)
    provider_library_id: Mapped[str] = mapped_column(String(128))
    provider_library_guid: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
