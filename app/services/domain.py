"""
Core records shared by the recommendation pipeline.

AnimeRecord and UserHistory are snapshots loaded from storage. UserProfile is
derived from a UserHistory once per request and treated as read-only for the
rest of the scoring pass. RecommendationScore is the output record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class WatchStatus(str, Enum):
    WATCHING = "watching"
    COMPLETED = "completed"
    PLAN_TO_WATCH = "plan-to-watch"
    ON_HOLD = "on-hold"
    DROPPED = "dropped"


class DiscoveryMode(str, Enum):
    FOCUSED = "focused"
    BALANCED = "balanced"
    EXPLORATORY = "exploratory"


class FeedbackType(str, Enum):
    DISMISS = "dismiss"
    HIDE = "hide"
    NOT_INTERESTED_GENRE = "not_interested_genre"


# Feedback kinds that remove an anime from every personalized list
EXCLUDING_FEEDBACK = (FeedbackType.DISMISS, FeedbackType.HIDE)


class InteractionType(str, Enum):
    VIEW_PAGE = "view_page"
    SEARCH = "search"
    CLICK = "click"
    HOVER = "hover"
    ADD_TO_LIST = "add_to_list"


@dataclass(frozen=True)
class GenreRef:
    id: str
    name: str
    slug: str = ""

    def matches(self, key: str) -> bool:
        """Case-insensitive match on name or slug."""
        key = key.strip().lower()
        return key == self.name.lower() or (bool(self.slug) and key == self.slug.lower())


@dataclass(frozen=True)
class AnimeRecord:
    """Anime metadata as owned by the storage layer."""

    id: str
    title: str
    slug: str = ""
    description: str | None = None
    year: int | None = None
    content_type: str | None = None  # TV, Movie, OVA, ...
    episodes: int | None = None
    average_rating: float | None = None  # 0-10
    view_count: int = 0
    tags: tuple[str, ...] = ()
    genres: tuple[GenreRef, ...] = ()
    cover_image: str | None = None

    @property
    def genre_ids(self) -> list[str]:
        return [g.id for g in self.genres]

    def has_genre(self, key: str) -> bool:
        return any(g.matches(key) for g in self.genres)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "year": self.year,
            "content_type": self.content_type,
            "episodes": self.episodes,
            "average_rating": self.average_rating,
            "view_count": self.view_count,
            "tags": list(self.tags),
            "genres": [{"id": g.id, "name": g.name, "slug": g.slug} for g in self.genres],
            "cover_image": self.cover_image,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnimeRecord":
        return cls(
            id=data["id"],
            title=data["title"],
            slug=data.get("slug") or "",
            description=data.get("description"),
            year=data.get("year"),
            content_type=data.get("content_type"),
            episodes=data.get("episodes"),
            average_rating=data.get("average_rating"),
            view_count=data.get("view_count") or 0,
            tags=tuple(data.get("tags") or ()),
            genres=tuple(GenreRef(**g) for g in data.get("genres") or ()),
            cover_image=data.get("cover_image"),
        )


@dataclass(frozen=True)
class RatedAnime:
    anime_id: str
    score: int  # 1-10


@dataclass(frozen=True)
class WatchListEntry:
    anime_id: str
    status: WatchStatus
    score: int | None = None
    is_favorite: bool = False
    updated_at: datetime | None = None


@dataclass
class UserHistory:
    """Stored preferences plus watch list and ratings for one user."""

    user_id: str
    favorite_genres: list[str] = field(default_factory=list)
    favorite_tags: list[str] = field(default_factory=list)
    discovery_mode: DiscoveryMode = DiscoveryMode.BALANCED
    ratings: list[RatedAnime] = field(default_factory=list)
    watch_list: list[WatchListEntry] = field(default_factory=list)  # Most recently updated first

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "favorite_genres": list(self.favorite_genres),
            "favorite_tags": list(self.favorite_tags),
            "discovery_mode": self.discovery_mode.value,
            "ratings": [{"anime_id": r.anime_id, "score": r.score} for r in self.ratings],
            "watch_list": [
                {
                    "anime_id": e.anime_id,
                    "status": e.status.value,
                    "score": e.score,
                    "is_favorite": e.is_favorite,
                    "updated_at": e.updated_at.isoformat() if e.updated_at else None,
                }
                for e in self.watch_list
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserHistory":
        return cls(
            user_id=data["user_id"],
            favorite_genres=list(data.get("favorite_genres") or []),
            favorite_tags=list(data.get("favorite_tags") or []),
            discovery_mode=DiscoveryMode(data.get("discovery_mode") or DiscoveryMode.BALANCED.value),
            ratings=[RatedAnime(r["anime_id"], r["score"]) for r in data.get("ratings") or []],
            watch_list=[
                WatchListEntry(
                    anime_id=e["anime_id"],
                    status=WatchStatus(e["status"]),
                    score=e.get("score"),
                    is_favorite=bool(e.get("is_favorite")),
                    updated_at=datetime.fromisoformat(e["updated_at"]) if e.get("updated_at") else None,
                )
                for e in data.get("watch_list") or []
            ],
        )


@dataclass(frozen=True)
class UserProfile:
    """Normalized view of a user's taste, rebuilt for every request."""

    user_id: str
    favorite_genres: tuple[str, ...]
    favorite_tags: tuple[str, ...]
    discovery_mode: DiscoveryMode
    rated_anime: tuple[RatedAnime, ...]
    watch_list: tuple[WatchListEntry, ...]
    favorite_ids: tuple[str, ...] = ()
    plan_to_watch_ids: tuple[str, ...] = ()
    watching_ids: tuple[str, ...] = ()
    completed_ids: tuple[str, ...] = ()
    # Metadata of every anime touched by the watch list or ratings
    history_anime: Mapping[str, AnimeRecord] = field(default_factory=dict)
    genres_derived: bool = False

    @property
    def seen_ids(self) -> frozenset[str]:
        return frozenset(e.anime_id for e in self.watch_list)

    @property
    def ratings_by_anime(self) -> dict[str, int]:
        return {r.anime_id: r.score for r in self.rated_anime}

    def top_rated(self, count: int, min_score: int) -> list[RatedAnime]:
        """Highest rated anime at or above min_score, ties by anime id."""
        eligible = [r for r in self.rated_anime if r.score >= min_score]
        eligible.sort(key=lambda r: (-r.score, r.anime_id))
        return eligible[:count]

    def watched_entries(self) -> list[WatchListEntry]:
        """Entries the user has actually started, i.e. everything but plan-to-watch."""
        return [e for e in self.watch_list if e.status != WatchStatus.PLAN_TO_WATCH]


@dataclass
class RecommendationScore:
    """A single ranked suggestion with the reason shown to the user."""

    anime: AnimeRecord
    score: float
    reason: str
    confidence: float = 0.0
    content_score: float = 0.0
    collaborative_score: float = 0.0
    embedding_score: float = 0.0

    @property
    def anime_id(self) -> str:
        return self.anime.id
