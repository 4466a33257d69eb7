"""
Build a UserProfile from a user's stored preferences and watch history.

When the user never set favorite genres, they are derived from the watch
list: each touched anime contributes (rating/10, or 0.5 when unrated) times a
status multiplier to each of its genres, and the heaviest genres win.
"""

import logging
from collections import defaultdict
from typing import Mapping

from app.config import ProfileConfig, ScoringConfig
from app.core.cache import CacheService
from app.services.domain import (
    AnimeRecord,
    RatedAnime,
    UserHistory,
    UserProfile,
    WatchListEntry,
    WatchStatus,
)
from app.services.storage import AnimeStore

logger = logging.getLogger(__name__)


def status_multiplier(status: WatchStatus | None, config: ProfileConfig) -> float:
    if status == WatchStatus.COMPLETED:
        return config.completed_multiplier
    if status == WatchStatus.WATCHING:
        return config.watching_multiplier
    if status == WatchStatus.PLAN_TO_WATCH:
        return config.plan_to_watch_multiplier
    return config.other_status_multiplier


def derive_favorite_genres(
    watch_list: list[WatchListEntry],
    ratings: list[RatedAnime],
    anime_by_id: Mapping[str, AnimeRecord],
    config: ProfileConfig,
) -> list[str]:
    """
    Top genre ids by accumulated taste weight.

    Sorted by weight descending, ties broken by genre id ascending, so the
    same history always yields the same genres.
    """
    scores = {r.anime_id: r.score for r in ratings}
    statuses: dict[str, WatchStatus] = {}
    for entry in watch_list:
        statuses.setdefault(entry.anime_id, entry.status)
        if entry.score is not None:
            scores.setdefault(entry.anime_id, entry.score)

    touched = list(dict.fromkeys([e.anime_id for e in watch_list] + [r.anime_id for r in ratings]))

    genre_weights: dict[str, float] = defaultdict(float)
    for anime_id in touched:
        anime = anime_by_id.get(anime_id)
        if anime is None:
            continue
        score = scores.get(anime_id)
        base = score / 10 if score is not None else config.unrated_weight
        weight = base * status_multiplier(statuses.get(anime_id), config)
        for genre_id in dict.fromkeys(anime.genre_ids):
            genre_weights[genre_id] += weight

    ranked = sorted(genre_weights.items(), key=lambda item: (-item[1], item[0]))
    return [genre_id for genre_id, _ in ranked[: config.derived_genre_count]]


class UserProfileBuilder:
    """Assemble the per-request taste profile for a user."""

    def __init__(
        self,
        store: AnimeStore,
        config: ScoringConfig,
        cache: CacheService | None = None,
        cache_ttl: int = 0,
    ):
        self.store = store
        self.config = config
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def load_history(self, user_id: str) -> UserHistory | None:
        """Stored history, served from the snapshot cache when enabled."""
        use_cache = self.cache is not None and self.cache_ttl > 0
        key = CacheService.user_profile_key(user_id)

        if use_cache:
            cached = await self.cache.get(key)
            if cached:
                return UserHistory.from_dict(cached)

        history = await self.store.load_user_history(user_id)
        if history is not None and use_cache:
            await self.cache.set(key, history.to_dict(), ttl=self.cache_ttl)
        return history

    async def build(self, user_id: str) -> UserProfile | None:
        """Profile for user_id, or None if the user does not exist."""
        history = await self.load_history(user_id)
        if history is None:
            logger.debug(f"No profile for user {user_id}")
            return None

        # Everything scoring compares against is prefetched here in one query
        touched_ids = list(dict.fromkeys(
            [e.anime_id for e in history.watch_list] + [r.anime_id for r in history.ratings]
        ))
        history_anime = await self.store.get_anime_by_ids(touched_ids) if touched_ids else {}

        favorite_genres = list(history.favorite_genres)
        derived = False
        if not favorite_genres and history.watch_list:
            favorite_genres = derive_favorite_genres(
                history.watch_list, history.ratings, history_anime, self.config.profile
            )
            derived = True

        # Ratings live on the watch list too; merge both so every score is visible
        rated = {r.anime_id: r.score for r in history.ratings}
        for entry in history.watch_list:
            if entry.score is not None:
                rated.setdefault(entry.anime_id, entry.score)

        watch_list = tuple(history.watch_list)
        return UserProfile(
            user_id=history.user_id,
            favorite_genres=tuple(favorite_genres),
            favorite_tags=tuple(history.favorite_tags),
            discovery_mode=history.discovery_mode,
            rated_anime=tuple(RatedAnime(anime_id, score) for anime_id, score in rated.items()),
            watch_list=watch_list,
            favorite_ids=tuple(e.anime_id for e in watch_list if e.is_favorite),
            plan_to_watch_ids=_ids_with_status(watch_list, WatchStatus.PLAN_TO_WATCH),
            watching_ids=_ids_with_status(watch_list, WatchStatus.WATCHING),
            completed_ids=_ids_with_status(watch_list, WatchStatus.COMPLETED),
            history_anime=history_anime,
            genres_derived=derived,
        )


def _ids_with_status(watch_list: tuple[WatchListEntry, ...], status: WatchStatus) -> tuple[str, ...]:
    return tuple(e.anime_id for e in watch_list if e.status == status)
