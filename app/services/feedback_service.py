"""
Recommendation feedback, interaction telemetry and cache invalidation.

Feedback only ever flows back into scoring through storage and cache
invalidation; it never touches a computation already in flight.
"""

import logging
from typing import Any

from app.core.cache import CacheService
from app.services.domain import FeedbackType
from app.services.providers import CollaborativeProvider
from app.services.storage import AnimeStore

logger = logging.getLogger(__name__)


class FeedbackService:
    def __init__(
        self,
        store: AnimeStore,
        cache: CacheService,
        collaborative: CollaborativeProvider,
    ):
        self.store = store
        self.cache = cache
        self.collaborative = collaborative

    async def submit_feedback(
        self,
        user_id: str,
        anime_id: str,
        feedback_type: FeedbackType,
        reason: str | None = None,
    ) -> None:
        """
        Record dismiss/hide/not-interested feedback for one anime.

        Resubmitting for the same (user, anime) replaces the previous kind and
        reason. Storage errors propagate; the caller asked for a write.
        """
        await self.store.upsert_feedback(user_id, anime_id, FeedbackType(feedback_type), reason)
        logger.info(f"Recorded {FeedbackType(feedback_type).value} feedback from {user_id} on {anime_id}")
        await self.invalidate_user_caches(user_id)

    async def invalidate_user_caches(self, user_id: str) -> None:
        """
        Drop every cache derived from this user's ratings and feedback.

        Idempotent and safe to run while a recommendation request for the same
        user is in flight; that request keeps its snapshot.
        """
        await self.cache.delete(CacheService.user_profile_key(user_id))
        try:
            await self.collaborative.invalidate_user_similarity_cache(user_id)
        except Exception as e:
            logger.warning(f"Collaborative cache invalidation failed for {user_id}: {e}")
        logger.info(f"Invalidated recommendation caches for user {user_id}")

    async def track_interaction(
        self,
        user_id: str,
        anime_id: str | None,
        action_type: str,
        metadata: dict[str, Any] | None = None,
        duration: int | None = None,
    ) -> None:
        """Best-effort telemetry. Failures are logged and never raised."""
        try:
            await self.store.record_interaction(user_id, anime_id, action_type, metadata, duration)
        except Exception as e:
            logger.error(f"Failed to track interaction {action_type} for {user_id}: {e}")
