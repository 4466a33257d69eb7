"""Pydantic schemas for API request/response validation."""

from typing import Any

from pydantic import BaseModel, Field

from app.services.domain import FeedbackType, InteractionType, RecommendationScore


# ============ Anime Schemas ============

class GenreResponse(BaseModel):
    id: str
    name: str
    slug: str = ""


class AnimeSummary(BaseModel):
    """Anime fields shown on a recommendation card."""
    id: str
    slug: str = ""
    title: str
    cover_image: str | None = None
    year: int | None = None
    type: str | None = None
    episodes: int | None = None
    average_rating: float | None = None
    view_count: int = 0
    genres: list[GenreResponse] = []


# ============ Recommendation Schemas ============

class RecommendationItem(BaseModel):
    """Single recommendation with its reason."""
    anime: AnimeSummary
    score: float
    reason: str
    confidence: float = 0.0

    @classmethod
    def from_score(cls, rec: RecommendationScore) -> "RecommendationItem":
        anime = rec.anime
        return cls(
            anime=AnimeSummary(
                id=anime.id,
                slug=anime.slug,
                title=anime.title,
                cover_image=anime.cover_image,
                year=anime.year,
                type=anime.content_type,
                episodes=anime.episodes,
                average_rating=anime.average_rating,
                view_count=anime.view_count,
                genres=[GenreResponse(id=g.id, name=g.name, slug=g.slug) for g in anime.genres],
            ),
            score=rec.score,
            reason=rec.reason,
            confidence=rec.confidence,
        )


class RecommendationsResponse(BaseModel):
    """A list of recommendations."""
    recommendations: list[RecommendationItem]
    total: int

    @classmethod
    def from_scores(cls, scores: list[RecommendationScore]) -> "RecommendationsResponse":
        items = [RecommendationItem.from_score(rec) for rec in scores]
        return cls(recommendations=items, total=len(items))


# ============ Feedback Schemas ============

class FeedbackRequest(BaseModel):
    anime_id: str = Field(min_length=1, max_length=36)
    feedback_type: FeedbackType
    reason: str | None = Field(default=None, max_length=500)


class InteractionRequest(BaseModel):
    anime_id: str | None = Field(default=None, max_length=36)
    action_type: InteractionType
    metadata: dict[str, Any] | None = None
    duration: int | None = Field(default=None, ge=0)


class StatusResponse(BaseModel):
    success: bool = True
