"""
Multi-signal scoring for recommendation candidates.

Each candidate gets three sub-scores:

- content: genre/tag overlap with the user's favorites, the candidate's own
  rating and popularity, and similarity to the user's top rated, favorited,
  plan-to-watch and currently-watching anime. Unbounded above.
- collaborative: predicted score from similar users, divided by 10.
- embedding: sum of (similarity * source rating / 10) over the user's top
  rated anime that list the candidate as a semantic neighbour.

The sub-scores are fused with the configured weights, then contextual
multipliers are applied in a fixed order: recency, popularity within the
user's genres, the genre gate, and the genre affinity rule table.

Scoring one candidate never looks at another candidate, and nothing here is
random, so identical inputs always produce identical rankings.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from app.config import AffinityRule, FusionWeights, MultiplierConfig, ScoringConfig, SimilarityWeights
from app.services.domain import AnimeRecord, RatedAnime, RecommendationScore, UserProfile
from app.services.providers import (
    CollaborativePrediction,
    CollaborativeProvider,
    EmbeddingProvider,
    ProviderOk,
    call_provider,
    value_or,
)
from app.services.similarity import anime_similarity, set_similarity

logger = logging.getLogger(__name__)

GENERIC_REASON = "Recommended for you"


@dataclass(frozen=True)
class ReferenceMatch:
    """Closest anime from one of the user's reference sets."""
    title: str
    similarity: float


@dataclass(frozen=True)
class ContentSignal:
    score: float
    genre_match: float
    matched_genres: list[str]
    top_rated: ReferenceMatch | None = None
    favorite: ReferenceMatch | None = None
    plan_to_watch: ReferenceMatch | None = None
    watching: ReferenceMatch | None = None


@dataclass(frozen=True)
class ScoringContext:
    """Everything a single candidate is scored against, prepared once per request."""
    profile: UserProfile
    top_rated: list[tuple[RatedAnime, AnimeRecord]]
    favorites: list[AnimeRecord]
    plan_to_watch: list[AnimeRecord]
    watching: list[AnimeRecord]
    collaborative: dict[str, CollaborativePrediction]
    embedding: dict[str, float]
    avg_completed_year: float | None
    genre_watch_counts: dict[str, int]  # lowercased genre name/slug -> watched anime count
    favorite_genre_keys: frozenset[str]
    ratings: dict[str, int]
    current_year: int


# ============ Content sub-score ============

def best_match(
    anime: AnimeRecord,
    references: list[AnimeRecord],
    weights: SimilarityWeights,
) -> ReferenceMatch | None:
    best = None
    for ref in references:
        similarity = anime_similarity(anime, ref, weights)
        if best is None or similarity > best.similarity:
            best = ReferenceMatch(ref.title, similarity)
    return best


def content_signal(anime: AnimeRecord, ctx: ScoringContext, config: ScoringConfig) -> ContentSignal:
    weights = config.content
    favorites = ctx.profile.favorite_genres

    genre_match = set_similarity(anime.genre_ids, favorites)
    tag_match = set_similarity(anime.tags, ctx.profile.favorite_tags)

    score = genre_match * weights.genre_weight + tag_match * weights.tag_weight
    if anime.average_rating is not None:
        score += anime.average_rating / 10 * weights.rating_weight
    score += min(anime.view_count / weights.popularity_scale, 1.0) * weights.popularity_weight

    top_rated = None
    for _, ref in ctx.top_rated:
        similarity = anime_similarity(anime, ref, config.similarity)
        score += similarity * weights.top_rated_weight
        if top_rated is None or similarity > top_rated.similarity:
            top_rated = ReferenceMatch(ref.title, similarity)

    favorite = best_match(anime, ctx.favorites, config.similarity)
    if favorite:
        score += favorite.similarity * weights.favorites_bonus
    plan_to_watch = best_match(anime, ctx.plan_to_watch, config.similarity)
    if plan_to_watch:
        score += plan_to_watch.similarity * weights.plan_to_watch_bonus
    watching = best_match(anime, ctx.watching, config.similarity)
    if watching:
        score += watching.similarity * weights.watching_bonus

    favorite_set = set(favorites)
    matched = [g.name for g in anime.genres if g.id in favorite_set]

    return ContentSignal(
        score=score,
        genre_match=genre_match,
        matched_genres=matched,
        top_rated=top_rated,
        favorite=favorite,
        plan_to_watch=plan_to_watch,
        watching=watching,
    )


def fuse(content: float, collaborative: float, embedding: float, weights: FusionWeights) -> float:
    return (
        content * weights.content
        + collaborative * weights.collaborative
        + embedding * weights.embedding
    )


# ============ Contextual multipliers ============

def recency_multiplier(
    year: int | None,
    avg_user_year: float | None,
    current_year: int,
    m: MultiplierConfig,
) -> float:
    if year is None:
        return 1.0
    age = current_year - year

    if avg_user_year is None:
        return m.no_signal_boost if age <= m.old_window_years else 1.0

    if avg_user_year >= m.recent_trend_year:
        if age <= m.recent_window_years:
            return m.recent_trend_boost
        if age > m.old_window_years:
            return m.old_penalty
        return 1.0

    return m.recent_mild_boost if age <= m.recent_window_years else 1.0


def popularity_in_genre_multiplier(genre_match: float, view_count: int, m: MultiplierConfig) -> float:
    if genre_match < m.popularity_overlap_threshold:
        return 1.0
    return 1 + min(view_count / m.popularity_scale, 1.0) * m.popularity_factor


def genre_gate_multiplier(genre_match: float, has_favorites: bool, m: MultiplierConfig) -> float:
    """Boost genre-aligned candidates, halve the rest instead of dropping them."""
    if not has_favorites:
        return 1.0
    if genre_match > m.genre_gate_threshold:
        return 1 + genre_match * m.genre_gate_boost
    return m.genre_gate_penalty


def genre_watch_counts(profile: UserProfile) -> dict[str, int]:
    """How many watch-list anime carry each genre, keyed by lowercased name and slug."""
    counts: dict[str, int] = defaultdict(int)
    for entry in profile.watch_list:
        anime = profile.history_anime.get(entry.anime_id)
        if anime is None:
            continue
        keys = set()
        for genre in anime.genres:
            keys.add(genre.name.lower())
            if genre.slug:
                keys.add(genre.slug.lower())
        for key in keys:
            counts[key] += 1
    return dict(counts)


def favorite_genre_keys(profile: UserProfile) -> frozenset[str]:
    """Lowercased id, name and slug of every favorite genre seen in the user's history."""
    favorites = set(profile.favorite_genres)
    keys = {genre_id.lower() for genre_id in favorites}
    for anime in profile.history_anime.values():
        for genre in anime.genres:
            if genre.id in favorites:
                keys.add(genre.name.lower())
                if genre.slug:
                    keys.add(genre.slug.lower())
    return frozenset(keys)


def affinity_multiplier(
    anime: AnimeRecord,
    rules: list[AffinityRule],
    watch_counts: dict[str, int],
    ratings: dict[str, int],
    favorite_keys: frozenset[str] | set[str],
) -> float:
    multiplier = 1.0
    for rule in rules:
        key = rule.genre.strip().lower()
        # Only favorites the user watches heavily are amplified
        if key not in favorite_keys or watch_counts.get(key, 0) <= rule.min_watch_count:
            continue

        if anime.has_genre(rule.genre):
            multiplier *= rule.boost
            for genre, factor in rule.complements.items():
                if anime.has_genre(genre):
                    multiplier *= factor
            continue

        # Already validated by the user's own rating
        if ratings.get(anime.id, 0) >= rule.validated_min_score:
            continue
        for genre, factor in rule.conflicts.items():
            if anime.has_genre(genre):
                multiplier *= factor
    return multiplier


# ============ Reasons and confidence ============

def select_reason(
    signal: ContentSignal,
    content_part: float,
    collaborative_part: float,
    embedding_part: float,
    config: ScoringConfig,
) -> str:
    """First applicable reason in priority order."""
    threshold = config.content.reason_similarity_threshold

    if signal.genre_match > config.content.genre_reason_threshold and signal.matched_genres:
        return f"Popular in {' & '.join(signal.matched_genres[:2])}"
    if signal.top_rated and signal.top_rated.similarity > threshold:
        return f"Similar to {signal.top_rated.title}"
    if signal.favorite and signal.favorite.similarity > threshold:
        return f"Similar to your favorite {signal.favorite.title}"
    if signal.plan_to_watch and signal.plan_to_watch.similarity > threshold:
        return f"Like {signal.plan_to_watch.title} on your watchlist"
    if signal.watching and signal.watching.similarity > threshold:
        return f"Pairs well with {signal.watching.title} you're watching"

    if embedding_part > 0 and embedding_part > collaborative_part and embedding_part > content_part:
        return "Matches your taste perfectly"
    if collaborative_part > 0 and collaborative_part > content_part:
        return "Fans with similar taste loved this"
    return GENERIC_REASON


def confidence_score(
    content: float,
    collaborative: float | None,
    embedding: float | None,
    rating_count: int,
    similar_user_count: int,
) -> float:
    """How much evidence backs a recommendation, in [0, 1]."""
    confidence = 0.0
    signals = 0

    if content > 0:
        confidence += content
        signals += 1
    if collaborative:
        confidence += collaborative / 10
        signals += 1
        if similar_user_count > 5:
            confidence += 0.1
    if embedding:
        confidence += embedding
        signals += 1

    if rating_count > 20:
        confidence += 0.15
    elif rating_count > 10:
        confidence += 0.10
    elif rating_count > 5:
        confidence += 0.05

    average = confidence / signals if signals else 0.0
    return max(0.0, min(1.0, average))


# ============ Scorer ============

class MultiSignalScorer:
    """Fuse content, collaborative and embedding signals into one ranking score."""

    def __init__(
        self,
        collaborative: CollaborativeProvider,
        embedding: EmbeddingProvider,
        config: ScoringConfig,
        current_year: int | None = None,
    ):
        self.collaborative = collaborative
        self.embedding = embedding
        self.config = config
        self.current_year = current_year or datetime.now(timezone.utc).year

    async def gather_signals(
        self, profile: UserProfile
    ) -> tuple[dict[str, CollaborativePrediction], dict[str, float]]:
        """Query both providers concurrently. A failed provider contributes nothing."""
        fusion = self.config.fusion
        collaborative_result, embedding_scores = await asyncio.gather(
            call_provider(
                "collaborative",
                self.collaborative.get_collaborative_recommendations,
                profile.user_id,
                fusion.collaborative_limit,
            ),
            self.embedding_scores(profile),
        )

        collaborative: dict[str, CollaborativePrediction] = {}
        for prediction in value_or(collaborative_result, []):
            collaborative.setdefault(prediction.anime_id, prediction)
        return collaborative, embedding_scores

    async def embedding_scores(self, profile: UserProfile) -> dict[str, float]:
        content = self.config.content
        top_rated = profile.top_rated(content.top_rated_count, content.top_rated_min_score)
        if not top_rated:
            return {}

        results = await asyncio.gather(*(
            call_provider(
                "embedding",
                self.embedding.find_similar_anime_by_embedding,
                rated.anime_id,
                self.config.fusion.embedding_k,
            )
            for rated in top_rated
        ))

        scores: dict[str, float] = defaultdict(float)
        available = 0
        for rated, result in zip(top_rated, results):
            if not isinstance(result, ProviderOk):
                continue
            available += 1
            for match in result.value:
                scores[match.anime_id] += match.similarity * rated.score / 10
        if available < len(top_rated):
            logger.debug(f"Embedding signal for {profile.user_id}: {available}/{len(top_rated)} sources")
        return dict(scores)

    def build_context(
        self,
        profile: UserProfile,
        collaborative: dict[str, CollaborativePrediction],
        embedding: dict[str, float],
        avg_completed_year: float | None,
    ) -> ScoringContext:
        content = self.config.content
        anime = profile.history_anime

        def refs(ids) -> list[AnimeRecord]:
            return [anime[i] for i in ids if i in anime]

        top_rated = [
            (rated, anime[rated.anime_id])
            for rated in profile.top_rated(content.top_rated_count, content.top_rated_min_score)
            if rated.anime_id in anime
        ]
        return ScoringContext(
            profile=profile,
            top_rated=top_rated,
            favorites=refs(profile.favorite_ids),
            plan_to_watch=refs(profile.plan_to_watch_ids),
            watching=refs(profile.watching_ids),
            collaborative=collaborative,
            embedding=embedding,
            avg_completed_year=avg_completed_year,
            genre_watch_counts=genre_watch_counts(profile),
            favorite_genre_keys=favorite_genre_keys(profile),
            ratings=profile.ratings_by_anime,
            current_year=self.current_year,
        )

    def score_candidate(self, anime: AnimeRecord, ctx: ScoringContext) -> RecommendationScore:
        config = self.config
        signal = content_signal(anime, ctx, config)

        prediction = ctx.collaborative.get(anime.id)
        collaborative = prediction.predicted_score / 10 if prediction else 0.0
        embedding = ctx.embedding.get(anime.id, 0.0)

        final = fuse(signal.score, collaborative, embedding, config.fusion)

        m = config.multipliers
        final *= recency_multiplier(anime.year, ctx.avg_completed_year, ctx.current_year, m)
        final *= popularity_in_genre_multiplier(signal.genre_match, anime.view_count, m)
        final *= genre_gate_multiplier(signal.genre_match, bool(ctx.profile.favorite_genres), m)
        final *= affinity_multiplier(
            anime, config.affinity_rules, ctx.genre_watch_counts, ctx.ratings, ctx.favorite_genre_keys
        )

        reason = select_reason(
            signal,
            signal.score * config.fusion.content,
            collaborative * config.fusion.collaborative,
            embedding * config.fusion.embedding,
            config,
        )
        confidence = confidence_score(
            signal.score,
            prediction.predicted_score if prediction else None,
            embedding or None,
            len(ctx.profile.rated_anime),
            prediction.similar_user_count if prediction else 0,
        )
        return RecommendationScore(
            anime=anime,
            score=final,
            reason=reason,
            confidence=confidence,
            content_score=signal.score,
            collaborative_score=collaborative,
            embedding_score=embedding,
        )

    async def score(
        self,
        profile: UserProfile,
        candidates: list[AnimeRecord],
        avg_completed_year: float | None = None,
    ) -> list[RecommendationScore]:
        """Score every candidate, highest first. Ties are ordered by anime id."""
        collaborative, embedding = await self.gather_signals(profile)
        ctx = self.build_context(profile, collaborative, embedding, avg_completed_year)

        scored = [self.score_candidate(anime, ctx) for anime in candidates]
        scored.sort(key=lambda r: (-r.score, r.anime.id))
        return scored
