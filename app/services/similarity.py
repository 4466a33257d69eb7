"""Set-overlap and pairwise anime content similarity."""

from typing import Iterable

from app.config import SimilarityWeights
from app.services.domain import AnimeRecord

DEFAULT_WEIGHTS = SimilarityWeights()


def set_similarity(a: Iterable, b: Iterable) -> float:
    """
    Jaccard index of two identifier collections.

    Two empty sets have no similarity (0), not an undefined ratio.
    """
    set_a = set(a)
    set_b = set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def proximity(x: float | None, y: float | None, window: float) -> float:
    """1 for equal values, falling linearly to 0 at `window` apart. 0 if either is missing."""
    if x is None or y is None:
        return 0.0
    return max(0.0, 1.0 - abs(x - y) / window)


def anime_similarity(
    x: AnimeRecord,
    y: AnimeRecord,
    weights: SimilarityWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Content similarity of two anime in roughly [0, 1].

    Weighted sum of genre Jaccard, tag Jaccard, rating proximity, release
    year proximity and content type match. The popularity weight is left to
    call sites that want a popularity term.
    """
    genre_score = set_similarity(x.genre_ids, y.genre_ids)
    tag_score = set_similarity(x.tags, y.tags)
    rating_score = proximity(x.average_rating, y.average_rating, weights.rating_window)
    year_score = proximity(x.year, y.year, weights.year_window)
    type_score = 1.0 if x.content_type and x.content_type == y.content_type else 0.0

    return (
        weights.genre * genre_score
        + weights.tag * tag_score
        + weights.rating * rating_score
        + weights.year * year_score
        + weights.content_type * type_score
    )
