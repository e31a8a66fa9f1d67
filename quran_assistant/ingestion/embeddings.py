"""
Embedding generation for verses and queries.

Supports OpenAI (text-embedding-3-small, 1536d, the default corpus) and
self-hosted Ollama (nomic-embed-text, 768d). The corpus and the queries must
use the same provider and model.
"""
import asyncio
import os
import time
from typing import List, Optional

import requests
from openai import OpenAI

from quran_assistant.errors import EmbeddingUnavailable
from quran_assistant.logging_config import get_logger
from quran_assistant.models import Verse

logger = get_logger(__name__)


def build_embedding_text(verse: Verse) -> str:
    """Text that represents a verse in vector space: header, context, text, tafsir, themes."""
    parts = [f"Surah {verse.surah_name_latin} ({verse.surah_name_arabic}) ayat {verse.ayat_number}"]

    if verse.context_before:
        parts.append(f"Context before: {verse.context_before}")

    parts.append(f"Arabic: {verse.arabic_text}")
    parts.append(f"Translation: {verse.translation}")

    if verse.context_after:
        parts.append(f"Context after: {verse.context_after}")

    if verse.tafsir_summary:
        parts.append(f"Tafsir: {verse.tafsir_summary}")

    if verse.themes:
        parts.append(f"Themes: {', '.join(verse.themes)}")

    return "\n".join(parts)


class EmbeddingService:
    """Turns text into a fixed-length vector using OpenAI or Ollama."""

    def __init__(
        self,
        provider: str = "openai",
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        expected_dim: Optional[int] = None,
        client: Optional[OpenAI] = None
    ):
        """
        Args:
            provider: "openai" or "ollama"
            model: Embedding model name (default depends on provider)
            base_url: Ollama API URL (ignored for OpenAI)
            timeout_seconds: Per-call timeout; exceeded calls raise EmbeddingUnavailable
            expected_dim: When set, vectors of any other length are rejected
            client: Preconfigured OpenAI client (tests inject a mock here)
        """
        if provider not in ("openai", "ollama"):
            raise ValueError(f"Unknown embedding provider: {provider}")

        self.provider = provider
        self.model = model or ("text-embedding-3-small" if provider == "openai" else "nomic-embed-text")
        self.base_url = base_url or os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        self.timeout_seconds = timeout_seconds
        self.expected_dim = expected_dim
        self._client = client

        logger.info(f"Initialized EmbeddingService with {provider} model: {self.model}")

    @property
    def client(self) -> OpenAI:
        # Created on first use so Ollama-only deployments never need OPENAI_API_KEY
        if self._client is None:
            self._client = OpenAI(timeout=self.timeout_seconds, max_retries=0)
        return self._client

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text (used for queries).

        Raises:
            EmbeddingUnavailable: on empty input, timeout, provider error or wrong dimensionality
        """
        if not text or not text.strip():
            raise EmbeddingUnavailable("Cannot embed empty text")

        embed_start = time.time()
        try:
            vector = await asyncio.wait_for(
                asyncio.to_thread(self._embed_blocking, text),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"Embedding timed out after {self.timeout_seconds:.1f}s")
            raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout_seconds:.1f}s")
        except EmbeddingUnavailable:
            raise
        except Exception as e:
            logger.error(f"Embedding failed: {e}", exc_info=True)
            raise EmbeddingUnavailable(f"Embedding failed: {e}") from e

        embed_time = (time.time() - embed_start) * 1000
        logger.info(f"  Query embedding time: {embed_time:.0f}ms")
        return vector

    def embed_many(self, texts: List[str]) -> List[Optional[List[float]]]:
        """
        Embed texts one by one for the batch indexer.

        Returns:
            One vector per text, None where embedding failed
        """
        all_embeddings = []
        for text in texts:
            try:
                all_embeddings.append(self._embed_blocking(text))
            except Exception as e:
                logger.error(f"Embedding failed for text starting {text[:80]!r}: {e}")
                all_embeddings.append(None)

        failed_count = sum(1 for emb in all_embeddings if emb is None)
        logger.info(f"Generated {len(texts) - failed_count}/{len(texts)} embeddings")
        return all_embeddings

    def _embed_blocking(self, text: str) -> List[float]:
        if self.provider == "openai":
            response = self.client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float"
            )
            vector = list(response.data[0].embedding)
        else:
            response = requests.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
            vector = response.json()["embedding"]

        if self.expected_dim is not None and len(vector) != self.expected_dim:
            raise EmbeddingUnavailable(
                f"Embedding has {len(vector)} dimensions, expected {self.expected_dim}"
            )
        return vector
