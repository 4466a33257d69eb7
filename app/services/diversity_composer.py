"""
Diversity composition for ranked recommendations.

Splits the requested result count into a "main" slice of genre-aligned picks
and a "discovery" slice of anime that bring in genres the main slice lacks.
The split comes from an effective discovery mode derived from how much, and
how widely, the user actually watches; the stated preference is overridden.
"""

import logging
import math
from dataclasses import dataclass

from app.config import DiversityConfig
from app.services.domain import DiscoveryMode, RecommendationScore, UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeDecision:
    """Effective discovery mode and the share of results given to the main slice."""
    mode: DiscoveryMode
    main_ratio: float
    watched_count: int
    unique_genres: int | None = None


class DiversityComposer:
    def __init__(self, config: DiversityConfig):
        self.config = config

    def main_ratio(self, mode: DiscoveryMode) -> float:
        if mode == DiscoveryMode.FOCUSED:
            return self.config.focused_main
        if mode == DiscoveryMode.EXPLORATORY:
            return self.config.exploratory_main
        return self.config.balanced_main

    def resolve_mode(self, profile: UserProfile) -> ModeDecision:
        config = self.config
        watched = profile.watched_entries()
        count = len(watched)

        # New users need exploration
        if count < config.new_user_threshold:
            return ModeDecision(DiscoveryMode.BALANCED, config.balanced_main, count)
        if count <= config.established_threshold:
            return ModeDecision(DiscoveryMode.FOCUSED, config.focused_main, count)

        genres: set[str] = set()
        for entry in watched[: config.genre_sample]:
            anime = profile.history_anime.get(entry.anime_id)
            if anime is not None:
                genres.update(anime.genre_ids)

        unique = len(genres)
        if unique < config.narrow_genre_count:
            return ModeDecision(DiscoveryMode.FOCUSED, config.narrow_focused_main, count, unique)
        if unique >= config.wide_genre_count:
            return ModeDecision(DiscoveryMode.EXPLORATORY, config.exploratory_main, count, unique)
        return ModeDecision(DiscoveryMode.BALANCED, config.balanced_main, count, unique)

    def compose(
        self,
        ranked: list[RecommendationScore],
        profile: UserProfile,
        limit: int,
    ) -> list[RecommendationScore]:
        """
        Arrange score-ranked candidates into main + discovery slices.

        Args:
            ranked: Candidates sorted by score, highest first
            profile: The requesting user's profile
            limit: Number of results requested

        Returns:
            Main slice followed by discovery slice, at most `limit` items
        """
        if limit <= 0 or not ranked:
            return []

        decision = self.resolve_mode(profile)
        main_count = math.floor(limit * decision.main_ratio)
        discovery_count = limit - main_count
        favorites = list(profile.favorite_genres)

        balance = (
            len(favorites) >= self.config.min_favorite_genres_for_balancing
            and decision.mode != DiscoveryMode.FOCUSED
        )
        if balance:
            main = balance_by_genre(ranked, favorites, main_count)
        else:
            main = ranked[:main_count]

        chosen = {r.anime.id for r in main}
        remainder = [r for r in ranked if r.anime.id not in chosen]
        discovery = pick_discovery(main, remainder, discovery_count, backfill=balance)

        logger.debug(
            f"Composed {len(main)} main + {len(discovery)} discovery for {profile.user_id} "
            f"(mode={decision.mode.value}, watched={decision.watched_count})"
        )
        return (main + discovery)[:limit]


def balance_by_genre(
    ranked: list[RecommendationScore],
    favorites: list[str],
    main_count: int,
) -> list[RecommendationScore]:
    """
    Round-robin the main slice across favorite genres.

    Each genre takes at most ceil(main_count / len(favorites)) picks. Any
    shortfall is backfilled with the next highest scored candidates.
    """
    if main_count <= 0:
        return []

    cap = math.ceil(main_count / len(favorites))
    per_genre = {genre: 0 for genre in favorites}
    chosen: list[RecommendationScore] = []
    used: set[str] = set()

    progress = True
    while len(chosen) < main_count and progress:
        progress = False
        for genre in favorites:
            if len(chosen) >= main_count:
                break
            if per_genre[genre] >= cap:
                continue
            pick = next(
                (r for r in ranked if r.anime.id not in used and genre in r.anime.genre_ids),
                None,
            )
            if pick is None:
                continue
            chosen.append(pick)
            used.add(pick.anime.id)
            per_genre[genre] += 1
            progress = True

    for rec in ranked:
        if len(chosen) >= main_count:
            break
        if rec.anime.id not in used:
            chosen.append(rec)
            used.add(rec.anime.id)
    return chosen


def pick_discovery(
    main: list[RecommendationScore],
    remainder: list[RecommendationScore],
    count: int,
    backfill: bool = False,
) -> list[RecommendationScore]:
    """
    Highest scored remaining candidates that add a genre missing from main.

    With backfill, any shortfall is filled from the rest of the remainder.
    """
    if count <= 0:
        return []

    main_genres = {genre_id for r in main for genre_id in r.anime.genre_ids}
    novel = [r for r in remainder if any(g not in main_genres for g in r.anime.genre_ids)]
    picked = novel[:count]

    if backfill and len(picked) < count:
        taken = {r.anime.id for r in picked}
        for rec in remainder:
            if len(picked) >= count:
                break
            if rec.anime.id not in taken:
                picked.append(rec)
                taken.add(rec.anime.id)
    return picked
