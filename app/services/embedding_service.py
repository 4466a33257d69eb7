"""
Description embeddings for semantic anime similarity.

Each anime is represented by a TF-IDF vector of its description and a one-hot
vector of its genres. Both blocks are L2-normalized, weighted 60/40 and
stacked into one sparse row. Similar anime are the rows with the highest
cosine similarity above a minimum threshold.

The index is built lazily on first use and rebuilt by the scheduler.
"""

import asyncio
import logging
import re
from dataclasses import dataclass

from scipy.sparse import csr_matrix, hstack
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity
from sklearn.preprocessing import MultiLabelBinarizer, normalize

from app.services.domain import AnimeRecord
from app.services.providers import EmbeddingMatch, EmbeddingProvider
from app.services.storage import StoreFactory

logger = logging.getLogger(__name__)

DESCRIPTION_WEIGHT = 0.6
GENRE_WEIGHT = 0.4
MAX_DESCRIPTION_CHARS = 5000
TOKEN_PATTERN = r"(?u)\b[a-z0-9]{3,20}\b"
HTML_TAG = re.compile(r"<[^>]+>")


@dataclass
class EmbeddingIndex:
    anime_ids: list[str]
    positions: dict[str, int]
    vectors: csr_matrix

    def __len__(self) -> int:
        return len(self.anime_ids)


def clean_description(text: str | None) -> str:
    if not text:
        return ""
    return HTML_TAG.sub(" ", text)[:MAX_DESCRIPTION_CHARS].lower()


def build_embedding_index(anime: list[AnimeRecord]) -> EmbeddingIndex:
    """Combined description + genre vectors for every anime, in input order."""
    anime_ids = [a.id for a in anime]
    blocks = []

    if anime:
        documents = [clean_description(a.description) for a in anime]
        vectorizer = TfidfVectorizer(stop_words="english", token_pattern=TOKEN_PATTERN)
        try:
            descriptions = vectorizer.fit_transform(documents)
            blocks.append(normalize(descriptions) * DESCRIPTION_WEIGHT)
        except ValueError:
            # Empty vocabulary: no anime has a usable description
            logger.warning("No description vocabulary, embedding index uses genres only")

        binarizer = MultiLabelBinarizer(sparse_output=True)
        genres = binarizer.fit_transform([a.genre_ids for a in anime])
        if genres.shape[1] > 0:
            blocks.append(normalize(csr_matrix(genres, dtype=float)) * GENRE_WEIGHT)

    if blocks:
        vectors = csr_matrix(hstack(blocks))
    else:
        vectors = csr_matrix((len(anime_ids), 0))

    return EmbeddingIndex(
        anime_ids=anime_ids,
        positions={anime_id: i for i, anime_id in enumerate(anime_ids)},
        vectors=vectors,
    )


def rank_neighbours(
    index: EmbeddingIndex, source: int, candidates: list[int], min_similarity: float
) -> list[EmbeddingMatch]:
    """Candidates more similar to the source row than min_similarity, best first, ties by id."""
    similarities = cosine_similarity(index.vectors[source], index.vectors[candidates]).ravel()
    matches = [
        EmbeddingMatch(index.anime_ids[row], float(similarity))
        for row, similarity in zip(candidates, similarities)
        if similarity > min_similarity
    ]
    matches.sort(key=lambda m: (-m.similarity, m.anime_id))
    return matches


class TfidfEmbeddingProvider(EmbeddingProvider):
    """In-process embedding similarity over the local anime catalogue."""

    def __init__(
        self,
        store_factory: StoreFactory,
        candidate_limit: int = 500,
        min_similarity: float = 0.5,
    ):
        self.store_factory = store_factory
        self.candidate_limit = candidate_limit  # 0 compares against the whole catalogue
        self.min_similarity = min_similarity
        self._index: EmbeddingIndex | None = None
        self._lock = asyncio.Lock()

    async def refresh_index(self) -> int:
        """Rebuild the index from storage. Returns the number of indexed anime."""
        async with self.store_factory() as store:
            anime = await store.list_anime_for_embedding()
        index = await asyncio.to_thread(build_embedding_index, anime)
        self._index = index
        logger.info(f"Embedding index rebuilt with {len(index)} anime")
        return len(index)

    async def _get_index(self) -> EmbeddingIndex:
        if self._index is None:
            async with self._lock:
                if self._index is None:
                    await self.refresh_index()
        return self._index

    async def find_similar_anime_by_embedding(self, anime_id: str, k: int) -> list[EmbeddingMatch]:
        index = await self._get_index()
        source = index.positions.get(anime_id)
        if source is None or index.vectors.shape[1] == 0 or k <= 0:
            return []

        candidates = [i for i in range(len(index)) if i != source]
        if self.candidate_limit:
            candidates = candidates[: self.candidate_limit]
        if not candidates:
            return []

        # CPU-bound; runs in a worker thread
        matches = await asyncio.to_thread(rank_neighbours, index, source, candidates, self.min_similarity)
        return matches[:k]
