"""
SQLAlchemy ORM models for the anime catalogue and user activity.

- Anime / Genre / AnimeGenre: the catalogue the engine recommends from
- User / UserPreferences: stated taste and data-sharing consent
- UserAnimeList: watch list entries with status, score and favorite flag
- RecommendationFeedback: dismiss/hide/not-interested per (user, anime)
- UserInteraction: best-effort telemetry

Column types stay portable (JSON instead of ARRAY) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, DateTime,
    ForeignKey, JSON, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Genre(Base):
    """Anime genre (Action, Romance, Slice of Life, ...)."""

    __tablename__ = "genres"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)


class Anime(Base):
    """Anime metadata."""

    __tablename__ = "anime"

    id = Column(String(36), primary_key=True)
    slug = Column(String(255), unique=True, nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    cover_image = Column(String(500))
    year = Column(Integer)
    type = Column(String(20))  # TV, Movie, OVA, ONA, Special
    episodes = Column(Integer)
    average_rating = Column(Float)  # 0-10, NULL until rated
    view_count = Column(Integer, default=0, nullable=False)
    tags = Column(JSON, default=list)  # Free-form tag strings
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    genres = relationship(
        "AnimeGenre",
        back_populates="anime",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_anime_rating", "average_rating"),
        Index("idx_anime_view_count", "view_count"),
        Index("idx_anime_created_at", "created_at"),
    )


class AnimeGenre(Base):
    """Anime-genre association."""

    __tablename__ = "anime_genres"

    anime_id = Column(String(36), ForeignKey("anime.id", ondelete="CASCADE"), primary_key=True)
    genre_id = Column(String(36), ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True)

    anime = relationship("Anime", back_populates="genres")
    genre = relationship("Genre", lazy="selectin")

    __table_args__ = (
        Index("idx_anime_genres_genre", "genre_id"),
    )


class User(Base):
    """Account stub; identity and auth live elsewhere."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(100), unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    preferences = relationship("UserPreferences", uselist=False, lazy="selectin")


class UserPreferences(Base):
    """Stated recommendation preferences and data sharing consent."""

    __tablename__ = "user_preferences"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    favorite_genres = Column(JSON, default=list)  # Genre ids
    favorite_tags = Column(JSON, default=list)
    discovery_mode = Column(String(20), default="balanced", nullable=False)
    share_data_for_recommendations = Column(Boolean, default=False, nullable=False)


class UserAnimeList(Base):
    """Watch list entry."""

    __tablename__ = "user_anime_list"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    anime_id = Column(String(36), ForeignKey("anime.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)  # watching, completed, plan-to-watch, on-hold, dropped
    score = Column(Integer)  # 1-10, NULL if unrated
    is_favorite = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "anime_id", name="uq_user_anime_list"),
        Index("idx_user_anime_list_user_status", "user_id", "status"),
        Index("idx_user_anime_list_anime", "anime_id"),
    )


class RecommendationFeedback(Base):
    """Explicit negative feedback on a recommendation."""

    __tablename__ = "recommendation_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    anime_id = Column(String(36), ForeignKey("anime.id", ondelete="CASCADE"), nullable=False)
    feedback_type = Column(String(30), nullable=False)  # dismiss, hide, not_interested_genre
    reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "anime_id", name="uq_recommendation_feedback"),
        Index("idx_recommendation_feedback_user", "user_id", "feedback_type"),
    )


class UserInteraction(Base):
    """Telemetry event (page views, clicks, list adds)."""

    __tablename__ = "user_interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    anime_id = Column(String(36))
    action_type = Column(String(30), nullable=False)
    interaction_metadata = Column("metadata", JSON)
    duration = Column(Integer)  # Milliseconds
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_user_interactions_user", "user_id", "created_at"),
    )
