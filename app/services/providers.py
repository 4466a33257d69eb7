"""
Contracts for the external signal providers.

Every provider call goes through call_provider(), which turns the outcome into
a ProviderResult: ProviderOk carrying the value, or ProviderUnavailable when
the provider raised. Callers branch on the result type instead of catching
exceptions, and an unavailable provider contributes nothing to the score.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderOk(Generic[T]):
    value: T


@dataclass(frozen=True)
class ProviderUnavailable:
    provider: str
    reason: str


ProviderResult = Union[ProviderOk[T], ProviderUnavailable]


@dataclass(frozen=True)
class CollaborativePrediction:
    anime_id: str
    predicted_score: float  # 0-10
    similar_user_count: int


@dataclass(frozen=True)
class EmbeddingMatch:
    anime_id: str
    similarity: float  # 0-1


class CollaborativeProvider(ABC):
    """Predicted scores derived from users with similar taste."""

    @abstractmethod
    async def get_collaborative_recommendations(
        self, user_id: str, limit: int
    ) -> list[CollaborativePrediction]:
        ...

    @abstractmethod
    async def invalidate_user_similarity_cache(self, user_id: str) -> None:
        ...


class EmbeddingProvider(ABC):
    """Semantically similar anime for a source anime."""

    @abstractmethod
    async def find_similar_anime_by_embedding(
        self, anime_id: str, k: int
    ) -> list[EmbeddingMatch]:
        ...


async def call_provider(
    name: str,
    func: Callable[..., Awaitable[T]],
    *args,
) -> ProviderResult:
    """Await a provider call, converting any failure into ProviderUnavailable."""
    try:
        return ProviderOk(await func(*args))
    except Exception as e:
        logger.warning(f"{name} provider unavailable: {type(e).__name__}: {e}")
        return ProviderUnavailable(provider=name, reason=str(e) or type(e).__name__)


def value_or(result: ProviderResult, default: T) -> T:
    if isinstance(result, ProviderOk):
        return result.value
    return default
