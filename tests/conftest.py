import fnmatch
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from app.config import ScoringConfig
from app.services.domain import (
    EXCLUDING_FEEDBACK,
    AnimeRecord,
    DiscoveryMode,
    FeedbackType,
    GenreRef,
    UserHistory,
    WatchListEntry,
    WatchStatus,
)
from app.services.providers import CollaborativeProvider, EmbeddingProvider
from app.services.recommendation_service import RecommendationService
from app.services.storage import AnimeStore, CandidateOrder

CURRENT_YEAR = 2024

ACTION = GenreRef("g-action", "Action", "action")
ADVENTURE = GenreRef("g-adventure", "Adventure", "adventure")
COMEDY = GenreRef("g-comedy", "Comedy", "comedy")
DRAMA = GenreRef("g-drama", "Drama", "drama")
FANTASY = GenreRef("g-fantasy", "Fantasy", "fantasy")
HORROR = GenreRef("g-horror", "Horror", "horror")
MYSTERY = GenreRef("g-mystery", "Mystery", "mystery")
ROMANCE = GenreRef("g-romance", "Romance", "romance")
SCIFI = GenreRef("g-scifi", "Sci-Fi", "sci-fi")
SLICE_OF_LIFE = GenreRef("g-slice", "Slice of Life", "slice-of-life")
SPORTS = GenreRef("g-sports", "Sports", "sports")

ALL_GENRES = [ACTION, ADVENTURE, COMEDY, DRAMA, FANTASY, HORROR, MYSTERY, ROMANCE, SCIFI, SLICE_OF_LIFE, SPORTS]


def make_anime(
    anime_id: str,
    genres=(),
    rating: float | None = 8.0,
    views: int = 1000,
    year: int | None = 2020,
    tags=(),
    content_type: str | None = "TV",
    description: str | None = None,
    title: str | None = None,
) -> AnimeRecord:
    return AnimeRecord(
        id=anime_id,
        title=title or f"Title {anime_id}",
        slug=anime_id,
        description=description,
        year=year,
        content_type=content_type,
        average_rating=rating,
        view_count=views,
        tags=tuple(tags),
        genres=tuple(genres),
    )


def entry(
    anime_id: str,
    status: WatchStatus = WatchStatus.COMPLETED,
    score: int | None = None,
    favorite: bool = False,
    days_ago: int = 0,
) -> WatchListEntry:
    return WatchListEntry(
        anime_id=anime_id,
        status=status,
        score=score,
        is_favorite=favorite,
        updated_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
    )


class InMemoryAnimeStore(AnimeStore):
    """AnimeStore over plain dicts, ordered the same way as the SQL store."""

    def __init__(self):
        self.anime: dict[str, AnimeRecord] = {}
        self.histories: dict[str, UserHistory] = {}
        self.consenting: set[str] = set()
        self.feedback: dict[tuple[str, str], tuple[FeedbackType, str | None]] = {}
        self.interactions: list[dict] = []
        self.fail_interactions = False
        self.history_loads = 0
        self.queries = 0

    def add_anime(self, *anime: AnimeRecord) -> None:
        for record in anime:
            self.anime[record.id] = record

    def add_user(
        self,
        user_id: str,
        watch_list=(),
        favorite_genres=(),
        favorite_tags=(),
        discovery_mode: DiscoveryMode = DiscoveryMode.BALANCED,
        consenting: bool = False,
    ) -> None:
        watch_list = sorted(watch_list, key=lambda e: e.updated_at, reverse=True)
        self.histories[user_id] = UserHistory(
            user_id=user_id,
            favorite_genres=list(favorite_genres),
            favorite_tags=list(favorite_tags),
            discovery_mode=discovery_mode,
            watch_list=watch_list,
        )
        if consenting:
            self.consenting.add(user_id)

    async def load_user_history(self, user_id):
        self.history_loads += 1
        return self.histories.get(user_id)

    async def get_dismissed_ids(self, user_id):
        return {
            anime_id
            for (uid, anime_id), (kind, _) in self.feedback.items()
            if uid == user_id and kind in EXCLUDING_FEEDBACK
        }

    async def get_seen_ids(self, user_id):
        history = self.histories.get(user_id)
        return {e.anime_id for e in history.watch_list} if history else set()

    async def get_stale_watching_ids(self, user_id, updated_before, limit):
        history = self.histories.get(user_id)
        if history is None:
            return []
        stale = [
            e for e in history.watch_list
            if e.status == WatchStatus.WATCHING and e.updated_at < updated_before
        ]
        stale.sort(key=lambda e: e.updated_at, reverse=True)
        return [e.anime_id for e in stale[:limit]]

    async def get_anime(self, anime_id):
        return self.anime.get(anime_id)

    async def get_anime_by_ids(self, anime_ids):
        return {i: self.anime[i] for i in anime_ids if i in self.anime}

    async def query_anime(self, candidate_filter, order_by, limit):
        self.queries += 1
        matches = [a for a in self.anime.values() if candidate_filter.matches(a)]

        def rating(a):
            return a.average_rating if a.average_rating is not None else -1.0

        if order_by == CandidateOrder.RATING:
            matches.sort(key=lambda a: (-rating(a), -a.view_count, a.id))
        elif order_by == CandidateOrder.POPULARITY:
            matches.sort(key=lambda a: (-a.view_count, -rating(a), a.id))
        else:
            # Insertion order stands in for created_at
            matches.reverse()
        return matches[:limit]

    async def list_genres(self):
        genres = {g.id: g for a in self.anime.values() for g in a.genres}
        return sorted(genres.values(), key=lambda g: (g.name, g.id))

    async def list_anime_for_embedding(self):
        return sorted(self.anime.values(), key=lambda a: (-a.view_count, a.id))

    def _ratings(self, user_id):
        history = self.histories.get(user_id)
        if history is None:
            return {}
        return {e.anime_id: e.score for e in history.watch_list if e.score is not None}

    async def get_user_ratings(self, user_id, consenting_only=False):
        if consenting_only and user_id not in self.consenting:
            return {}
        return self._ratings(user_id)

    async def get_neighbour_ratings(self, user_id, max_users):
        others = sorted(u for u in self.consenting if u != user_id)[:max_users]
        return {u: self._ratings(u) for u in others if self._ratings(u)}

    async def upsert_feedback(self, user_id, anime_id, feedback_type, reason=None):
        self.feedback[(user_id, anime_id)] = (FeedbackType(feedback_type), reason)

    async def record_interaction(self, user_id, anime_id, action_type, metadata=None, duration=None):
        if self.fail_interactions:
            raise RuntimeError("interactions table unavailable")
        self.interactions.append({
            "user_id": user_id,
            "anime_id": anime_id,
            "action_type": action_type,
            "metadata": metadata,
            "duration": duration,
        })


class FakeCache:
    """Dict-backed stand-in for CacheService. TTLs are recorded, not enforced."""

    def __init__(self):
        self.data: dict = {}
        self.ttls: dict = {}
        self.deleted: list[str] = []

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, key):
        self.deleted.append(key)
        self.data.pop(key, None)
        return True

    async def flush_pattern(self, pattern):
        keys = [k for k in self.data if fnmatch.fnmatch(k, pattern)]
        for key in keys:
            del self.data[key]
        return len(keys)


class FakeCollaborative(CollaborativeProvider):
    def __init__(self, predictions=(), error: Exception | None = None):
        self.predictions = list(predictions)
        self.error = error
        self.invalidated: list[str] = []
        self.calls = 0

    async def get_collaborative_recommendations(self, user_id, limit):
        self.calls += 1
        if self.error:
            raise self.error
        return self.predictions[:limit]

    async def invalidate_user_similarity_cache(self, user_id):
        self.invalidated.append(user_id)
        if self.error:
            raise self.error


class FakeEmbedding(EmbeddingProvider):
    def __init__(self, matches=None, error: Exception | None = None):
        self.matches = matches or {}
        self.error = error
        self.calls: list[str] = []

    async def find_similar_anime_by_embedding(self, anime_id, k):
        self.calls.append(anime_id)
        if self.error:
            raise self.error
        return self.matches.get(anime_id, [])[:k]


@pytest.fixture
def config():
    return ScoringConfig()


@pytest.fixture
def store():
    return InMemoryAnimeStore()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def collaborative():
    return FakeCollaborative()


@pytest.fixture
def embedding():
    return FakeEmbedding()


@pytest.fixture
def store_factory(store):
    @asynccontextmanager
    async def scope():
        yield store

    return scope


@pytest.fixture
def service(store, cache, collaborative, embedding, config):
    return RecommendationService(
        store=store,
        cache=cache,
        collaborative=collaborative,
        embedding=embedding,
        config=config,
        current_year=CURRENT_YEAR,
    )
