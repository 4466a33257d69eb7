"""
User-based collaborative filtering.

"Fans like you also loved..." predictions from users with similar rating
patterns. Only users who opted in to data sharing are ever compared, and
results never reveal which users were similar.

Similarity is cosine over commonly rated anime plus a small bonus for larger
overlaps. Similar users and their predictions are cached in Redis; rating or
feedback changes invalidate both.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

import numpy as np

from app.core.cache import CacheService
from app.services.providers import CollaborativePrediction, CollaborativeProvider
from app.services.storage import StoreFactory

logger = logging.getLogger(__name__)

MIN_USER_RATINGS = 5  # Ratings needed on both sides before comparing users
MIN_COMMON_RATINGS = 3
OVERLAP_BONUS_SCALE = 20  # Common ratings at which the overlap bonus maxes out
OVERLAP_BONUS = 0.2
MIN_SIMILARITY = 0.3
MAX_SIMILAR_USERS = 50
MAX_CANDIDATE_USERS = 1000
MIN_RECOMMEND_SCORE = 8  # Only anime similar users loved
MIN_SUPPORTING_USERS = 2
MIN_PREDICTED_SCORE = 7.0


@dataclass(frozen=True)
class SimilarUser:
    user_id: str
    similarity: float


def rating_similarity(ratings_a: dict[str, int], ratings_b: dict[str, int]) -> float:
    """
    Cosine similarity over commonly rated anime, plus an overlap bonus.

    Returns 0 with fewer than MIN_COMMON_RATINGS shared anime. Capped at 1.
    """
    common = sorted(set(ratings_a) & set(ratings_b))
    if len(common) < MIN_COMMON_RATINGS:
        return 0.0

    a = np.array([ratings_a[anime_id] for anime_id in common], dtype=float)
    b = np.array([ratings_b[anime_id] for anime_id in common], dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0

    cosine = float(np.dot(a, b) / norm)
    bonus = min(len(common) / OVERLAP_BONUS_SCALE, 1.0) * OVERLAP_BONUS
    return min(cosine + bonus, 1.0)


class UserSimilarityProvider(CollaborativeProvider):
    """In-process collaborative filtering over the local ratings table."""

    def __init__(
        self,
        store_factory: StoreFactory,
        cache: CacheService,
        similar_users_ttl: int = 3600,
        recommendations_ttl: int = 1800,
    ):
        self.store_factory = store_factory
        self.cache = cache
        self.similar_users_ttl = similar_users_ttl
        self.recommendations_ttl = recommendations_ttl

    async def find_similar_users(self, user_id: str, limit: int = MAX_SIMILAR_USERS) -> list[SimilarUser]:
        key = CacheService.similar_users_key(user_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [SimilarUser(**item) for item in cached][:limit]

        async with self.store_factory() as store:
            user_ratings = await store.get_user_ratings(user_id, consenting_only=True)
            if len(user_ratings) < MIN_USER_RATINGS:
                return []
            neighbours = await store.get_neighbour_ratings(user_id, MAX_CANDIDATE_USERS)

        similar = []
        for other_id, other_ratings in neighbours.items():
            if other_id == user_id or len(other_ratings) < MIN_USER_RATINGS:
                continue
            similarity = rating_similarity(user_ratings, other_ratings)
            if similarity > MIN_SIMILARITY:
                similar.append(SimilarUser(other_id, similarity))

        similar.sort(key=lambda u: (-u.similarity, u.user_id))
        similar = similar[:MAX_SIMILAR_USERS]

        await self.cache.set(
            key,
            [{"user_id": u.user_id, "similarity": u.similarity} for u in similar],
            ttl=self.similar_users_ttl,
        )
        return similar[:limit]

    async def get_collaborative_recommendations(
        self, user_id: str, limit: int
    ) -> list[CollaborativePrediction]:
        key = CacheService.collaborative_recs_key(user_id, limit)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [CollaborativePrediction(**item) for item in cached]

        similar = await self.find_similar_users(user_id)
        if not similar:
            return []

        async with self.store_factory() as store:
            excluded = await store.get_seen_ids(user_id) | await store.get_dismissed_ids(user_id)
            neighbours = await store.get_neighbour_ratings(user_id, MAX_CANDIDATE_USERS)

        totals: dict[str, float] = defaultdict(float)
        supporters: dict[str, int] = defaultdict(int)
        for user in similar:
            for anime_id, score in neighbours.get(user.user_id, {}).items():
                if score < MIN_RECOMMEND_SCORE or anime_id in excluded:
                    continue
                totals[anime_id] += score * user.similarity
                supporters[anime_id] += 1

        predictions = []
        for anime_id, total in totals.items():
            count = supporters[anime_id]
            if count < MIN_SUPPORTING_USERS:
                continue
            predicted = total / count
            if predicted >= MIN_PREDICTED_SCORE:
                predictions.append(CollaborativePrediction(anime_id, predicted, count))

        predictions.sort(key=lambda p: (-p.predicted_score, -p.similar_user_count, p.anime_id))
        predictions = predictions[:limit]

        await self.cache.set(
            key,
            [
                {
                    "anime_id": p.anime_id,
                    "predicted_score": p.predicted_score,
                    "similar_user_count": p.similar_user_count,
                }
                for p in predictions
            ],
            ttl=self.recommendations_ttl,
        )
        logger.debug(f"Collaborative predictions for {user_id}: {len(predictions)} from {len(similar)} similar users")
        return predictions

    async def invalidate_user_similarity_cache(self, user_id: str) -> None:
        await self.cache.delete(CacheService.similar_users_key(user_id))
        await self.cache.flush_pattern(CacheService.collaborative_recs_pattern(user_id))
