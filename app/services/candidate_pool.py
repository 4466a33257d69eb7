"""
Candidate pool selection.

The pool is every not-yet-seen, not-dismissed anime that passes an adaptive
quality gate, optionally restricted to the user's favorite genres. Users
whose completed anime skew old or obscure get a looser gate so the niche
titles they actually want are not filtered away.

A strict genre filter can starve users with narrow preferences, so a pool
smaller than the fallback threshold is widened with "secondary" genres:
genres that frequently co-occur with the favorites.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.config import QualityGate, ScoringConfig
from app.services.domain import AnimeRecord, DiscoveryMode, UserProfile
from app.services.storage import AnimeStore, CandidateFilter, CandidateOrder, GateThresholds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BehaviourSignal:
    """Averages over a sample of the user's completed anime."""
    avg_year: float | None
    avg_popularity: float | None
    sample_size: int
    prefers_niche: bool


@dataclass
class CandidatePool:
    anime: list[AnimeRecord]
    signal: BehaviourSignal
    gate: GateThresholds
    secondary_genres: list[str] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.secondary_genres)


def resolve_gate(gate: QualityGate, current_year: int) -> GateThresholds:
    if gate.max_age_years is not None:
        min_year = current_year - gate.max_age_years
    else:
        min_year = gate.min_year if gate.min_year is not None else 0
    return GateThresholds(
        min_rating=gate.min_rating,
        min_popularity=gate.min_popularity,
        min_year=min_year,
    )


class CandidatePoolBuilder:
    def __init__(self, store: AnimeStore, config: ScoringConfig, current_year: int | None = None):
        self.store = store
        self.config = config
        self.current_year = current_year or datetime.now(timezone.utc).year

    def behaviour_signal(self, profile: UserProfile) -> BehaviourSignal:
        """Classify the user from up to `behaviour_sample` completed anime."""
        pool_config = self.config.candidate_pool
        sample = [
            profile.history_anime[anime_id]
            for anime_id in profile.completed_ids[: pool_config.behaviour_sample]
            if anime_id in profile.history_anime
        ]

        years = [a.year for a in sample if a.year is not None]
        avg_year = sum(years) / len(years) if years else None
        avg_popularity = sum(a.view_count for a in sample) / len(sample) if sample else None

        prefers_niche = (avg_year is not None and avg_year < pool_config.niche_avg_year) or (
            avg_popularity is not None and avg_popularity < pool_config.niche_avg_popularity
        )
        return BehaviourSignal(
            avg_year=avg_year,
            avg_popularity=avg_popularity,
            sample_size=len(sample),
            prefers_niche=prefers_niche,
        )

    def quality_gate(self, signal: BehaviourSignal) -> GateThresholds:
        pool_config = self.config.candidate_pool
        gate = pool_config.niche_gate if signal.prefers_niche else pool_config.mainstream_gate
        return resolve_gate(gate, self.current_year)

    async def build(
        self,
        profile: UserProfile,
        seen_ids: set[str] | frozenset[str],
        dismissed_ids: set[str],
    ) -> CandidatePool:
        pool_config = self.config.candidate_pool
        signal = self.behaviour_signal(profile)
        gate = self.quality_gate(signal)
        excluded = set(seen_ids) | set(dismissed_ids)
        favorites = list(profile.favorite_genres)
        # Only users who asked for focus get a genre-restricted pool; everyone
        # else keeps off-genre candidates for the genre gate and discovery slice
        restrict = bool(favorites) and profile.discovery_mode == DiscoveryMode.FOCUSED

        candidates = await self.store.query_anime(
            CandidateFilter(
                exclude_ids=excluded,
                genre_ids=favorites if restrict else None,
                quality_gate=gate,
            ),
            CandidateOrder.RATING,
            pool_config.pool_size,
        )

        secondary: list[str] = []
        if len(candidates) < pool_config.fallback_threshold and restrict:
            secondary = await self.secondary_genres(favorites)
            if secondary:
                logger.debug(
                    f"Pool for {profile.user_id} has {len(candidates)} items, "
                    f"widening with {len(secondary)} secondary genres"
                )
                candidates = await self.store.query_anime(
                    CandidateFilter(
                        exclude_ids=excluded,
                        genre_ids=favorites + secondary,
                        quality_gate=gate,
                    ),
                    CandidateOrder.RATING,
                    pool_config.pool_size,
                )

        logger.debug(
            f"Candidate pool for {profile.user_id}: {len(candidates)} anime "
            f"(niche={signal.prefers_niche})"
        )
        return CandidatePool(anime=candidates, signal=signal, gate=gate, secondary_genres=secondary)

    async def secondary_genres(self, favorites: list[str]) -> list[str]:
        """Genres co-occurring most often with the favorites, ties by genre id."""
        pool_config = self.config.candidate_pool
        sample = await self.store.query_anime(
            CandidateFilter(genre_ids=favorites),
            CandidateOrder.POPULARITY,
            pool_config.cooccurrence_sample,
        )

        favorite_set = set(favorites)
        counts: Counter[str] = Counter()
        for anime in sample:
            for genre_id in set(anime.genre_ids) - favorite_set:
                counts[genre_id] += 1

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [genre_id for genre_id, _ in ranked[: pool_config.secondary_genre_count]]
