"""SQLAlchemy implementation of the recommendation engine's storage contract."""

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import (
    Anime,
    AnimeGenre,
    Genre,
    RecommendationFeedback,
    User,
    UserAnimeList,
    UserInteraction,
    UserPreferences,
    utcnow,
)
from app.services.domain import (
    EXCLUDING_FEEDBACK,
    AnimeRecord,
    DiscoveryMode,
    FeedbackType,
    GenreRef,
    RatedAnime,
    UserHistory,
    WatchListEntry,
    WatchStatus,
)
from app.services.storage import AnimeStore, CandidateFilter, CandidateOrder

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT support (production and tests)
UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def parse_status(value: str) -> WatchStatus:
    # Older rows use underscores (plan_to_watch, on_hold)
    return WatchStatus(value.replace("_", "-"))


def parse_discovery_mode(value: str | None) -> DiscoveryMode:
    try:
        return DiscoveryMode(value or DiscoveryMode.BALANCED.value)
    except ValueError:
        return DiscoveryMode.BALANCED


def to_record(anime: Anime) -> AnimeRecord:
    genres = sorted(
        (GenreRef(id=link.genre.id, name=link.genre.name, slug=link.genre.slug) for link in anime.genres),
        key=lambda g: (g.name, g.id),
    )
    return AnimeRecord(
        id=anime.id,
        title=anime.title,
        slug=anime.slug,
        description=anime.description,
        year=anime.year,
        content_type=anime.type,
        episodes=anime.episodes,
        average_rating=anime.average_rating,
        view_count=anime.view_count or 0,
        tags=tuple(anime.tags or ()),
        genres=tuple(genres),
        cover_image=anime.cover_image,
    )


class SQLAlchemyAnimeStore(AnimeStore):
    """AnimeStore backed by an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============ Users ============

    async def load_user_history(self, user_id: str) -> UserHistory | None:
        user = await self.db.get(User, user_id)
        if user is None:
            return None

        result = await self.db.execute(
            select(UserAnimeList)
            .where(UserAnimeList.user_id == user_id)
            .order_by(UserAnimeList.updated_at.desc(), UserAnimeList.id.desc())
        )
        entries = result.scalars().all()

        watch_list = []
        for entry in entries:
            try:
                status = parse_status(entry.status)
            except ValueError:
                logger.warning(f"Skipping list entry with unknown status {entry.status!r} for {user_id}")
                continue
            watch_list.append(WatchListEntry(
                anime_id=entry.anime_id,
                status=status,
                score=entry.score,
                is_favorite=bool(entry.is_favorite),
                updated_at=entry.updated_at,
            ))

        prefs = user.preferences
        return UserHistory(
            user_id=user_id,
            favorite_genres=list(prefs.favorite_genres or []) if prefs else [],
            favorite_tags=list(prefs.favorite_tags or []) if prefs else [],
            discovery_mode=parse_discovery_mode(prefs.discovery_mode if prefs else None),
            ratings=[RatedAnime(e.anime_id, e.score) for e in watch_list if e.score is not None],
            watch_list=watch_list,
        )

    async def get_dismissed_ids(self, user_id: str) -> set[str]:
        result = await self.db.execute(
            select(RecommendationFeedback.anime_id).where(
                RecommendationFeedback.user_id == user_id,
                RecommendationFeedback.feedback_type.in_([f.value for f in EXCLUDING_FEEDBACK]),
            )
        )
        return set(result.scalars().all())

    async def get_seen_ids(self, user_id: str) -> set[str]:
        result = await self.db.execute(
            select(UserAnimeList.anime_id).where(UserAnimeList.user_id == user_id)
        )
        return set(result.scalars().all())

    async def get_stale_watching_ids(
        self, user_id: str, updated_before: datetime, limit: int
    ) -> list[str]:
        result = await self.db.execute(
            select(UserAnimeList.anime_id)
            .where(
                UserAnimeList.user_id == user_id,
                UserAnimeList.status == WatchStatus.WATCHING.value,
                UserAnimeList.updated_at < updated_before,
            )
            .order_by(UserAnimeList.updated_at.desc(), UserAnimeList.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ============ Anime ============

    async def get_anime(self, anime_id: str) -> AnimeRecord | None:
        anime = await self.db.get(Anime, anime_id)
        return to_record(anime) if anime else None

    async def get_anime_by_ids(self, anime_ids: Iterable[str]) -> dict[str, AnimeRecord]:
        ids = list(dict.fromkeys(anime_ids))
        if not ids:
            return {}
        result = await self.db.execute(select(Anime).where(Anime.id.in_(ids)))
        return {anime.id: to_record(anime) for anime in result.scalars().all()}

    async def query_anime(
        self,
        candidate_filter: CandidateFilter,
        order_by: CandidateOrder,
        limit: int,
    ) -> list[AnimeRecord]:
        stmt = select(Anime)

        if candidate_filter.exclude_ids:
            stmt = stmt.where(Anime.id.not_in(candidate_filter.exclude_ids))
        if candidate_filter.genre_ids is not None:
            stmt = stmt.where(Anime.id.in_(
                select(AnimeGenre.anime_id).where(AnimeGenre.genre_id.in_(candidate_filter.genre_ids))
            ))
        if candidate_filter.quality_gate is not None:
            gate = candidate_filter.quality_gate
            stmt = stmt.where(or_(
                Anime.average_rating >= gate.min_rating,
                Anime.view_count >= gate.min_popularity,
                Anime.year >= gate.min_year,
            ))
        if candidate_filter.min_rating is not None:
            stmt = stmt.where(Anime.average_rating >= candidate_filter.min_rating)
        if candidate_filter.max_popularity is not None:
            stmt = stmt.where(Anime.view_count < candidate_filter.max_popularity)

        rating = func.coalesce(Anime.average_rating, -1.0)
        if order_by == CandidateOrder.RATING:
            stmt = stmt.order_by(rating.desc(), Anime.view_count.desc(), Anime.id)
        elif order_by == CandidateOrder.POPULARITY:
            stmt = stmt.order_by(Anime.view_count.desc(), rating.desc(), Anime.id)
        else:
            stmt = stmt.order_by(Anime.created_at.desc(), Anime.id)

        result = await self.db.execute(stmt.limit(limit))
        return [to_record(anime) for anime in result.scalars().all()]

    async def list_genres(self) -> list[GenreRef]:
        result = await self.db.execute(select(Genre).order_by(Genre.name, Genre.id))
        return [GenreRef(id=g.id, name=g.name, slug=g.slug) for g in result.scalars().all()]

    async def list_anime_for_embedding(self) -> list[AnimeRecord]:
        result = await self.db.execute(select(Anime).order_by(Anime.view_count.desc(), Anime.id))
        return [to_record(anime) for anime in result.scalars().all()]

    # ============ Ratings ============

    async def get_user_ratings(self, user_id: str, consenting_only: bool = False) -> dict[str, int]:
        if consenting_only:
            prefs = await self.db.get(UserPreferences, user_id)
            if prefs is None or not prefs.share_data_for_recommendations:
                return {}

        result = await self.db.execute(
            select(UserAnimeList.anime_id, UserAnimeList.score).where(
                UserAnimeList.user_id == user_id,
                UserAnimeList.score.is_not(None),
            )
        )
        return {anime_id: score for anime_id, score in result.all()}

    async def get_neighbour_ratings(
        self, user_id: str, max_users: int
    ) -> dict[str, dict[str, int]]:
        eligible = (
            select(UserPreferences.user_id)
            .where(
                UserPreferences.share_data_for_recommendations.is_(True),
                UserPreferences.user_id != user_id,
            )
            .order_by(UserPreferences.user_id)
            .limit(max_users)
        )
        user_ids = list((await self.db.execute(eligible)).scalars().all())
        if not user_ids:
            return {}

        result = await self.db.execute(
            select(UserAnimeList.user_id, UserAnimeList.anime_id, UserAnimeList.score).where(
                UserAnimeList.user_id.in_(user_ids),
                UserAnimeList.score.is_not(None),
            )
        )
        ratings: dict[str, dict[str, int]] = {}
        for other_id, anime_id, score in result.all():
            ratings.setdefault(other_id, {})[anime_id] = score
        return ratings

    # ============ Writes ============

    async def upsert_feedback(
        self,
        user_id: str,
        anime_id: str,
        feedback_type: FeedbackType,
        reason: str | None = None,
    ) -> None:
        """Insert or overwrite the feedback row for (user, anime) in one statement."""
        dialect = self.db.get_bind().dialect.name
        if dialect not in UPSERT_INSERTS:
            raise NotImplementedError(f"Feedback upsert is not supported on {dialect}")

        stmt = UPSERT_INSERTS[dialect](RecommendationFeedback).values(
            user_id=user_id,
            anime_id=anime_id,
            feedback_type=feedback_type.value,
            reason=reason,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "anime_id"],
            set_={
                "feedback_type": stmt.excluded.feedback_type,
                "reason": stmt.excluded.reason,
                "created_at": stmt.excluded.created_at,
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def record_interaction(
        self,
        user_id: str,
        anime_id: str | None,
        action_type: str,
        metadata: dict[str, Any] | None = None,
        duration: int | None = None,
    ) -> None:
        self.db.add(UserInteraction(
            user_id=user_id,
            anime_id=anime_id,
            action_type=action_type,
            interaction_metadata=metadata,
            duration=duration,
        ))
        await self.db.commit()
