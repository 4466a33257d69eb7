"""
Recommendation service - every personalized and editorial list.

============================================================================
PIPELINE (For You)
============================================================================
    UserProfileBuilder      profile + prefetched history anime
          |
    CandidatePoolBuilder    unseen, undismissed, quality-gated pool
          |
    MultiSignalScorer       content + collaborative + embedding, fused
          |                 (both providers queried concurrently)
    DiversityComposer       main slice + discovery slice
============================================================================

All lists are best-effort: an unknown user or source anime yields an empty
list, and a failing signal provider only lowers quality. Storage errors
propagate, since nothing sensible can be returned without storage.
"""

import logging
from datetime import datetime, timedelta, timezone

from app.config import ScoringConfig
from app.core.cache import CacheService
from app.services.candidate_pool import CandidatePoolBuilder
from app.services.diversity_composer import DiversityComposer
from app.services.domain import AnimeRecord, RecommendationScore, UserProfile
from app.services.profile_builder import UserProfileBuilder
from app.services.providers import (
    CollaborativeProvider,
    EmbeddingProvider,
    ProviderOk,
    call_provider,
)
from app.services.scorer import MultiSignalScorer
from app.services.similarity import anime_similarity, set_similarity
from app.services.storage import AnimeStore, CandidateFilter, CandidateOrder

logger = logging.getLogger(__name__)

# Sample and pool sizes for the secondary lists
BECAUSE_YOU_WATCHED_SAMPLE = 100
HIDDEN_GEM_POOL = 50
HIDDEN_GEM_MIN_RATING = 8.0
HIDDEN_GEM_MAX_POPULARITY = 5000  # Exclusive
TRENDING_POOL = 50
DISCOVERY_MIN_RATING = 7.5
FANS_LIKE_YOU_STRONG_SUPPORT = 5  # Similar users needed for the stronger reason


class RecommendationService:
    """Entry point for every recommendation list."""

    def __init__(
        self,
        store: AnimeStore,
        cache: CacheService,
        collaborative: CollaborativeProvider,
        embedding: EmbeddingProvider,
        config: ScoringConfig,
        profile_cache_ttl: int = 0,
        trending_cache_ttl: int = 3600,
        stale_watching_days: int = 7,
        current_year: int | None = None,
    ):
        self.store = store
        self.cache = cache
        self.collaborative = collaborative
        self.embedding = embedding
        self.config = config
        self.trending_cache_ttl = trending_cache_ttl
        self.stale_watching_days = stale_watching_days

        self.profiles = UserProfileBuilder(store, config, cache=cache, cache_ttl=profile_cache_ttl)
        self.pool_builder = CandidatePoolBuilder(store, config, current_year=current_year)
        self.scorer = MultiSignalScorer(collaborative, embedding, config, current_year=current_year)
        self.composer = DiversityComposer(config.diversity)

    async def _excluded_ids(self, profile: UserProfile) -> tuple[frozenset[str], set[str]]:
        """Seen and dismissed ids, read fresh for this request.

        The profile snapshot may come from the cache, so list additions made
        since it was taken are only visible in the store.
        """
        seen = await self.store.get_seen_ids(profile.user_id)
        dismissed = await self.store.get_dismissed_ids(profile.user_id)
        return frozenset(seen) | profile.seen_ids, dismissed

    # ============ For You ============

    async def get_for_you_recommendations(self, user_id: str, limit: int = 20) -> list[RecommendationScore]:
        """Main personalized feed."""
        profile = await self.profiles.build(user_id)
        if profile is None:
            return []

        seen, dismissed = await self._excluded_ids(profile)
        pool = await self.pool_builder.build(profile, seen, dismissed)
        if not pool.anime:
            logger.info(f"Empty candidate pool for user {user_id}")
            return []

        ranked = await self.scorer.score(profile, pool.anime, pool.signal.avg_year)
        return self.composer.compose(ranked, profile, limit)

    # ============ Content-based lists ============

    async def get_because_you_watched_recommendations(
        self, user_id: str, source_anime_id: str, limit: int = 12
    ) -> list[RecommendationScore]:
        source = await self.store.get_anime(source_anime_id)
        if source is None:
            return []
        profile = await self.profiles.build(user_id)
        if profile is None:
            return []

        seen, dismissed = await self._excluded_ids(profile)
        candidates = await self.store.query_anime(
            CandidateFilter(exclude_ids=set(seen) | dismissed | {source.id}),
            CandidateOrder.RATING,
            BECAUSE_YOU_WATCHED_SAMPLE,
        )

        reason = f"Because you watched {source.title}"
        scored = [
            RecommendationScore(anime=anime, score=anime_similarity(source, anime, self.config.similarity), reason=reason)
            for anime in candidates
        ]
        scored.sort(key=lambda r: (-r.score, r.anime.id))
        return scored[:limit]

    async def get_hidden_gems(self, user_id: str, limit: int = 8) -> list[RecommendationScore]:
        """Highly rated, rarely watched anime ranked by genre match plus rating."""
        profile = await self.profiles.build(user_id)
        if profile is None:
            return []

        seen, dismissed = await self._excluded_ids(profile)
        gems = await self.store.query_anime(
            CandidateFilter(
                exclude_ids=set(seen) | dismissed,
                min_rating=HIDDEN_GEM_MIN_RATING,
                max_popularity=HIDDEN_GEM_MAX_POPULARITY,
            ),
            CandidateOrder.RATING,
            HIDDEN_GEM_POOL,
        )

        scored = []
        for anime in gems:
            # The store already filters, but the popularity ceiling is a hard rule
            if anime.view_count >= HIDDEN_GEM_MAX_POPULARITY:
                continue
            genre_match = set_similarity(anime.genre_ids, profile.favorite_genres)
            scored.append(RecommendationScore(
                anime=anime,
                score=genre_match + (anime.average_rating or 0) / 10,
                reason="Hidden gem you might love",
            ))
        scored.sort(key=lambda r: (-r.score, r.anime.id))
        return scored[:limit]

    async def get_discovery_recommendations(self, user_id: str, limit: int = 10) -> list[RecommendationScore]:
        """Quality anime from genres outside the user's favorites."""
        profile = await self.profiles.build(user_id)
        if profile is None:
            return []

        favorites = set(profile.favorite_genres)
        unexplored = [g.id for g in await self.store.list_genres() if g.id not in favorites]
        if not unexplored:
            return []

        seen, dismissed = await self._excluded_ids(profile)
        anime_list = await self.store.query_anime(
            CandidateFilter(
                exclude_ids=set(seen) | dismissed,
                genre_ids=unexplored,
                min_rating=DISCOVERY_MIN_RATING,
            ),
            CandidateOrder.RATING,
            limit,
        )

        results = []
        for anime in anime_list:
            new_genres = [g.name for g in anime.genres if g.id not in favorites]
            results.append(RecommendationScore(
                anime=anime,
                score=anime.average_rating or 0.0,
                reason=f"Discover {new_genres[0]}" if new_genres else "Expand your horizons",
            ))
        return results

    # ============ Popularity lists ============

    async def get_trending_anime(self, limit: int = 12) -> list[RecommendationScore]:
        """Most watched anime overall, cached for everyone."""
        key = CacheService.trending_key()
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            trending = [AnimeRecord.from_dict(item) for item in cached]
        else:
            trending = await self.store.query_anime(CandidateFilter(), CandidateOrder.POPULARITY, TRENDING_POOL)
            await self.cache.set(key, [a.to_dict() for a in trending], ttl=self.trending_cache_ttl)

        return [RecommendationScore(anime=a, score=1.0, reason="Trending now") for a in trending[:limit]]

    async def get_trending_in_favorite_genres(self, user_id: str, limit: int = 12) -> list[RecommendationScore]:
        profile = await self.profiles.build(user_id)
        if profile is None or not profile.favorite_genres:
            return await self.get_trending_anime(limit)

        seen, dismissed = await self._excluded_ids(profile)
        trending = await self.store.query_anime(
            CandidateFilter(exclude_ids=set(seen) | dismissed, genre_ids=list(profile.favorite_genres)),
            CandidateOrder.POPULARITY,
            limit,
        )

        genre_names = {g.id: g.name for g in await self.store.list_genres()}
        names = [genre_names[g] for g in profile.favorite_genres if g in genre_names][:2]
        reason = f"Trending in {' & '.join(names)}" if names else "Trending now"
        return [RecommendationScore(anime=a, score=1.0, reason=reason) for a in trending]

    async def get_new_releases(self, limit: int = 12) -> list[RecommendationScore]:
        newest = await self.store.query_anime(CandidateFilter(), CandidateOrder.NEWEST, limit)
        return [RecommendationScore(anime=a, score=1.0, reason="New on AnimeSenpai") for a in newest]

    # ============ History lists ============

    async def get_continue_watching(self, user_id: str, limit: int = 6) -> list[RecommendationScore]:
        """Anime the user is watching but has not touched for a while."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.stale_watching_days)
        anime_ids = await self.store.get_stale_watching_ids(user_id, cutoff, limit)
        if not anime_ids:
            return []

        details = await self.store.get_anime_by_ids(anime_ids)
        return [
            RecommendationScore(anime=details[anime_id], score=1.0, reason="Continue watching")
            for anime_id in anime_ids
            if anime_id in details
        ]

    async def get_fans_like_you(self, user_id: str, limit: int = 12) -> list[RecommendationScore]:
        """Pure collaborative list. Never reveals which users were similar."""
        profile = await self.profiles.build(user_id)
        if profile is None:
            return []

        result = await call_provider(
            "collaborative",
            self.collaborative.get_collaborative_recommendations,
            user_id,
            limit * 2,
        )
        if not isinstance(result, ProviderOk):
            return []

        seen, dismissed = await self._excluded_ids(profile)
        predictions = [p for p in result.value if p.anime_id not in seen and p.anime_id not in dismissed][:limit]
        details = await self.store.get_anime_by_ids([p.anime_id for p in predictions])

        results = []
        for prediction in predictions:
            anime = details.get(prediction.anime_id)
            if anime is None:
                continue
            strong = prediction.similar_user_count > FANS_LIKE_YOU_STRONG_SUPPORT
            results.append(RecommendationScore(
                anime=anime,
                score=prediction.predicted_score,
                reason="Highly recommended by fans like you" if strong else "Fans with similar taste loved this",
                collaborative_score=prediction.predicted_score / 10,
            ))
        return results

    # ============ Anime-to-anime ============

    async def get_similar_anime(self, anime_id: str, limit: int = 12) -> list[RecommendationScore]:
        """Semantic neighbours, falling back to genre overlap when none exist."""
        source = await self.store.get_anime(anime_id)
        if source is None:
            return []

        result = await call_provider(
            "embedding",
            self.embedding.find_similar_anime_by_embedding,
            anime_id,
            limit,
        )
        matches = result.value if isinstance(result, ProviderOk) else []
        if matches:
            details = await self.store.get_anime_by_ids([m.anime_id for m in matches])
            return [
                RecommendationScore(
                    anime=details[m.anime_id],
                    score=m.similarity,
                    reason="Semantically similar",
                    embedding_score=m.similarity,
                )
                for m in matches
                if m.anime_id in details
            ]

        if not source.genre_ids:
            return []
        candidates = await self.store.query_anime(
            CandidateFilter(exclude_ids={source.id}, genre_ids=source.genre_ids),
            CandidateOrder.RATING,
            limit * 2,
        )
        scored = [
            RecommendationScore(
                anime=anime,
                score=set_similarity(source.genre_ids, anime.genre_ids),
                reason="Similar genres",
            )
            for anime in candidates
        ]
        scored.sort(key=lambda r: (-r.score, r.anime.id))
        return scored[:limit]
