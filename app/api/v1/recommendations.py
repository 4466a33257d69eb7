"""
Recommendation endpoints.

Thin HTTP layer over RecommendationService and FeedbackService. Input limits
are validated here; the engine assumes well-formed arguments. Unknown users
or anime come back as empty lists, never as errors.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_feedback_service, get_interaction_tracker, get_recommendation_service
from app.core.auth import require_user
from app.core.tasks import TaskManager
from app.db import schemas
from app.services.feedback_service import FeedbackService
from app.services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/for-you", response_model=schemas.RecommendationsResponse)
async def get_for_you(
    limit: int = Query(default=20, ge=1, le=50, description="Number of recommendations"),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    Main personalized feed.

    Combines content similarity, collaborative filtering and description
    embeddings, then balances the list between the user's favorite genres
    and a discovery slice of new genres.
    """
    recs = await service.get_for_you_recommendations(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/because-you-watched/{anime_id}", response_model=schemas.RecommendationsResponse)
async def get_because_you_watched(
    anime_id: str,
    limit: int = Query(default=12, ge=1, le=20),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Anime most similar to one the user watched."""
    recs = await service.get_because_you_watched_recommendations(user_id, anime_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/hidden-gems", response_model=schemas.RecommendationsResponse)
async def get_hidden_gems(
    limit: int = Query(default=8, ge=1, le=20),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Highly rated anime with a small audience."""
    recs = await service.get_hidden_gems(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/trending-in-genres", response_model=schemas.RecommendationsResponse)
async def get_trending_in_genres(
    limit: int = Query(default=12, ge=1, le=20),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_trending_in_favorite_genres(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/discovery", response_model=schemas.RecommendationsResponse)
async def get_discovery(
    limit: int = Query(default=10, ge=1, le=20),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Quality anime from genres the user has not explored."""
    recs = await service.get_discovery_recommendations(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/fans-like-you", response_model=schemas.RecommendationsResponse)
async def get_fans_like_you(
    limit: int = Query(default=12, ge=1, le=20),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_fans_like_you(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/continue-watching", response_model=schemas.RecommendationsResponse)
async def get_continue_watching(
    limit: int = Query(default=6, ge=1, le=10),
    user_id: str = Depends(require_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_continue_watching(user_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


# ============ Public lists ============

@router.get("/trending", response_model=schemas.RecommendationsResponse)
async def get_trending(
    limit: int = Query(default=12, ge=1, le=20),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_trending_anime(limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/new-releases", response_model=schemas.RecommendationsResponse)
async def get_new_releases(
    limit: int = Query(default=12, ge=1, le=20),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_new_releases(limit)
    return schemas.RecommendationsResponse.from_scores(recs)


@router.get("/similar/{anime_id}", response_model=schemas.RecommendationsResponse)
async def get_similar(
    anime_id: str,
    limit: int = Query(default=12, ge=1, le=20),
    service: RecommendationService = Depends(get_recommendation_service),
):
    recs = await service.get_similar_anime(anime_id, limit)
    return schemas.RecommendationsResponse.from_scores(recs)


# ============ Feedback ============

@router.post("/feedback", response_model=schemas.StatusResponse)
async def submit_feedback(
    body: schemas.FeedbackRequest,
    user_id: str = Depends(require_user),
    service: FeedbackService = Depends(get_feedback_service),
):
    """Dismiss or hide an anime from future recommendations."""
    await service.submit_feedback(user_id, body.anime_id, body.feedback_type, body.reason)
    return schemas.StatusResponse()


@router.post(
    "/interactions",
    response_model=schemas.StatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def track_interaction(
    body: schemas.InteractionRequest,
    user_id: str = Depends(require_user),
    tracker=Depends(get_interaction_tracker),
):
    """Fire-and-forget telemetry. Always accepted, even if recording later fails."""
    TaskManager.get_instance().create_task(
        tracker(user_id, body.anime_id, body.action_type.value, body.metadata, body.duration),
        name=f"interaction:{user_id}:{body.action_type.value}",
    )
    return schemas.StatusResponse()
