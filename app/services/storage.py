"""
Storage contract consumed by the recommendation engine.

The engine never touches SQL directly. It talks to an AnimeStore, which the
SQLAlchemy implementation in app/db/anime_store.py fulfils in production.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Iterable

from app.services.domain import AnimeRecord, FeedbackType, GenreRef, UserHistory


class CandidateOrder(str, Enum):
    RATING = "rating"  # rating desc, then popularity desc
    POPULARITY = "popularity"  # popularity desc, then rating desc
    NEWEST = "newest"  # most recently added first


@dataclass(frozen=True)
class GateThresholds:
    """Quality gate resolved to absolute values; passes if ANY condition holds."""
    min_rating: float
    min_popularity: int
    min_year: int

    def passes(self, anime: AnimeRecord) -> bool:
        return (
            (anime.average_rating is not None and anime.average_rating >= self.min_rating)
            or anime.view_count >= self.min_popularity
            or (anime.year is not None and anime.year >= self.min_year)
        )


@dataclass
class CandidateFilter:
    """Filter for candidate queries. Unset fields do not constrain."""

    exclude_ids: set[str] = field(default_factory=set)
    genre_ids: list[str] | None = None  # Anime must carry at least one
    quality_gate: GateThresholds | None = None
    min_rating: float | None = None
    max_popularity: int | None = None  # Exclusive

    def matches(self, anime: AnimeRecord) -> bool:
        if anime.id in self.exclude_ids:
            return False
        if self.genre_ids is not None and not set(anime.genre_ids) & set(self.genre_ids):
            return False
        if self.quality_gate is not None and not self.quality_gate.passes(anime):
            return False
        if self.min_rating is not None and (
            anime.average_rating is None or anime.average_rating < self.min_rating
        ):
            return False
        if self.max_popularity is not None and anime.view_count >= self.max_popularity:
            return False
        return True


class AnimeStore(ABC):
    """Read and write operations the engine needs from persistent storage."""

    # ============ Users ============

    @abstractmethod
    async def load_user_history(self, user_id: str) -> UserHistory | None:
        """Preferences, ratings and watch list. None when the user does not exist."""

    @abstractmethod
    async def get_dismissed_ids(self, user_id: str) -> set[str]:
        """Anime the user dismissed or hid."""

    @abstractmethod
    async def get_seen_ids(self, user_id: str) -> set[str]:
        """Anime on the user's watch list, in any status."""

    @abstractmethod
    async def get_stale_watching_ids(
        self, user_id: str, updated_before: datetime, limit: int
    ) -> list[str]:
        """Watching entries not updated since `updated_before`, newest first."""

    # ============ Anime ============

    @abstractmethod
    async def get_anime(self, anime_id: str) -> AnimeRecord | None:
        ...

    @abstractmethod
    async def get_anime_by_ids(self, anime_ids: Iterable[str]) -> dict[str, AnimeRecord]:
        ...

    @abstractmethod
    async def query_anime(
        self,
        candidate_filter: CandidateFilter,
        order_by: CandidateOrder,
        limit: int,
    ) -> list[AnimeRecord]:
        ...

    @abstractmethod
    async def list_genres(self) -> list[GenreRef]:
        ...

    @abstractmethod
    async def list_anime_for_embedding(self) -> list[AnimeRecord]:
        """Every anime with the fields needed to build embeddings."""

    # ============ Ratings (collaborative filtering) ============

    @abstractmethod
    async def get_user_ratings(self, user_id: str, consenting_only: bool = False) -> dict[str, int]:
        """anime_id -> score. Empty when consenting_only and the user opted out."""

    @abstractmethod
    async def get_neighbour_ratings(
        self, user_id: str, max_users: int
    ) -> dict[str, dict[str, int]]:
        """Ratings of other users who opted in to data sharing: user_id -> anime_id -> score."""

    # ============ Writes ============

    @abstractmethod
    async def upsert_feedback(
        self,
        user_id: str,
        anime_id: str,
        feedback_type: FeedbackType,
        reason: str | None = None,
    ) -> None:
        ...

    @abstractmethod
    async def record_interaction(
        self,
        user_id: str,
        anime_id: str | None,
        action_type: str,
        metadata: dict[str, Any] | None = None,
        duration: int | None = None,
    ) -> None:
        ...


# Opens a store bound to its own unit of work (e.g. a fresh database session)
StoreFactory = Callable[[], AsyncContextManager[AnimeStore]]
