"""
Semantic search over embedded Quran verses.

Embeds the query, asks the verse store for nearest neighbors and returns
RetrievalCandidate objects above the similarity threshold, most similar first.
"""
from typing import List
import time

from quran_assistant.db.stores import VerseStore
from quran_assistant.ingestion.embeddings import EmbeddingService
from quran_assistant.logging_config import get_logger
from quran_assistant.models import SCORE_DECIMALS, RetrievalCandidate

logger = get_logger(__name__)


class SemanticRetriever:
    """Query -> top-K verses by cosine similarity. Read-only."""

    def __init__(self, verse_store: VerseStore, embedder: EmbeddingService):
        self.verse_store = verse_store
        self.embedder = embedder

    async def search(self, query: str, limit: int = 5, threshold: float = 0.7) -> List[RetrievalCandidate]:
        """
        Return up to `limit` verses with similarity strictly above `threshold`.

        Args:
            query: Natural language query string (non-empty)
            limit: Maximum number of candidates (> 0)
            threshold: Minimum similarity, exclusive, within [0, 1]

        Returns:
            Candidates sorted by similarity descending, ties by ascending (surah, ayat)

        Raises:
            ValueError: on invalid arguments
            EmbeddingUnavailable: when the query cannot be embedded
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty")
        if limit <= 0:
            raise ValueError("limit must be positive")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")

        query_embedding = await self.embedder.embed(query)

        search_start = time.time()
        neighbors = await self.verse_store.nearest_neighbors(query_embedding, limit, threshold)
        search_time = (time.time() - search_start) * 1000
        logger.info(f"  Vector search time: {search_time:.0f}ms ({len(neighbors)} verses)")

        # Re-apply filter and order so every store honors the same contract
        candidates = [
            RetrievalCandidate(verse=verse, similarity=similarity)
            for verse, similarity in neighbors
            if similarity > threshold
        ]
        candidates.sort(key=lambda c: (-round(c.similarity, SCORE_DECIMALS), c.surah, c.ayat))
        return candidates[:limit]
