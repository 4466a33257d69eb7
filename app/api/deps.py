"""Service wiring for API endpoints."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.cache import CacheService, get_cache
from app.db.anime_store import SQLAlchemyAnimeStore
from app.db.database import get_db, store_scope
from app.services.collaborative_filtering import UserSimilarityProvider
from app.services.embedding_service import TfidfEmbeddingProvider
from app.services.feedback_service import FeedbackService
from app.services.recommendation_service import RecommendationService

settings = get_settings()

# Providers are process-wide: the embedding index lives in memory, and both
# open their own sessions so they can run concurrently with request queries.
_collaborative: UserSimilarityProvider | None = None
_embedding: TfidfEmbeddingProvider | None = None


def get_collaborative_provider() -> UserSimilarityProvider:
    global _collaborative
    if _collaborative is None:
        _collaborative = UserSimilarityProvider(
            store_scope,
            get_cache(),
            similar_users_ttl=settings.similar_users_cache_ttl_seconds,
            recommendations_ttl=settings.collaborative_cache_ttl_seconds,
        )
    return _collaborative


def get_embedding_provider() -> TfidfEmbeddingProvider:
    global _embedding
    if _embedding is None:
        _embedding = TfidfEmbeddingProvider(
            store_scope,
            candidate_limit=settings.embedding_candidate_limit,
            min_similarity=settings.embedding_min_similarity,
        )
    return _embedding


async def get_recommendation_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    collaborative: UserSimilarityProvider = Depends(get_collaborative_provider),
    embedding: TfidfEmbeddingProvider = Depends(get_embedding_provider),
) -> RecommendationService:
    return RecommendationService(
        store=SQLAlchemyAnimeStore(db),
        cache=cache,
        collaborative=collaborative,
        embedding=embedding,
        config=settings.scoring,
        profile_cache_ttl=settings.profile_cache_ttl_seconds,
        trending_cache_ttl=settings.trending_cache_ttl_seconds,
        stale_watching_days=settings.continue_watching_stale_days,
    )


async def get_feedback_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    collaborative: UserSimilarityProvider = Depends(get_collaborative_provider),
) -> FeedbackService:
    return FeedbackService(SQLAlchemyAnimeStore(db), cache, collaborative)


async def track_interaction_in_background(
    user_id: str,
    anime_id: str | None,
    action_type: str,
    metadata: dict | None = None,
    duration: int | None = None,
) -> None:
    """Record telemetry on a session of its own, after the request has returned."""
    async with store_scope() as store:
        service = FeedbackService(store, get_cache(), get_collaborative_provider())
        await service.track_interaction(user_id, anime_id, action_type, metadata, duration)


def get_interaction_tracker():
    return track_interaction_in_background
