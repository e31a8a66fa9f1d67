"""
Tests for EmbeddingService (provider calls mocked).
"""
import time
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from quran_assistant.errors import EmbeddingUnavailable
from quran_assistant.ingestion.embeddings import EmbeddingService, build_embedding_text
from tests.fixtures import make_verse


def openai_client(vector=None, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.embeddings.create.side_effect = side_effect
    else:
        client.embeddings.create.return_value = SimpleNamespace(data=[SimpleNamespace(embedding=vector)])
    return client


class TestBuildEmbeddingText(unittest.TestCase):

    def test_includes_available_parts(self):
        """Test the embedded text includes only the parts a verse has."""
        verse = make_verse(
            2, 1, "الم", "Alif Lam Mim.",
            tafsir_summary="Huruf muqatta'ah.", themes=["umum"], context_after="Kitab ini",
        )

        text = build_embedding_text(verse)

        assert text.splitlines()[0] == "Surah Al-Baqarah (البقرة) ayat 1"
        assert "Translation: Alif Lam Mim." in text
        assert "Context after: Kitab ini" in text
        assert "Context before" not in text
        assert text.endswith("Themes: umum")


class TestEmbeddingService(unittest.IsolatedAsyncioTestCase):

    def test_unknown_provider(self):
        """Test an unknown provider is rejected."""
        with self.assertRaises(ValueError):
            EmbeddingService(provider="cohere")

    async def test_openai_embed(self):
        """Test embedding through the OpenAI client."""
        client = openai_client([0.1, 0.2, 0.3])
        service = EmbeddingService(provider="openai", client=client, expected_dim=3)

        vector = await service.embed("rahmat")

        assert vector == [0.1, 0.2, 0.3]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input="rahmat", encoding_format="float"
        )

    async def test_ollama_embed(self):
        """Test embedding through the Ollama HTTP endpoint."""
        service = EmbeddingService(provider="ollama", base_url="http://ollama:11434")
        response = MagicMock()
        response.json.return_value = {"embedding": [0.5, 0.5]}

        with patch("quran_assistant.ingestion.embeddings.requests.post", return_value=response) as post:
            vector = await service.embed("sabar")

        assert vector == [0.5, 0.5]
        assert post.call_args.args[0] == "http://ollama:11434/api/embeddings"
        assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "prompt": "sabar"}

    async def test_empty_text(self):
        """Test empty text raises EmbeddingUnavailable."""
        service = EmbeddingService(client=openai_client([0.1]))
        with self.assertRaises(EmbeddingUnavailable):
            await service.embed("  ")

    async def test_provider_error_is_wrapped(self):
        """Test provider errors are wrapped in EmbeddingUnavailable."""
        service = EmbeddingService(client=openai_client(side_effect=RuntimeError("rate limited")))
        with self.assertRaises(EmbeddingUnavailable):
            await service.embed("rahmat")

    async def test_wrong_dimension(self):
        """Test a vector of the wrong length is rejected."""
        service = EmbeddingService(client=openai_client([0.1, 0.2]), expected_dim=3)
        with self.assertRaises(EmbeddingUnavailable):
            await service.embed("rahmat")

    async def test_timeout(self):
        """Test a slow provider times out as EmbeddingUnavailable."""
        def slow(**kwargs):
            time.sleep(0.5)
            return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1])])

        service = EmbeddingService(client=openai_client(side_effect=slow), timeout_seconds=0.05)
        with self.assertRaises(EmbeddingUnavailable):
            await service.embed("rahmat")

    def test_embed_many_marks_failures(self):
        """Test embed_many returns None for items that fail."""
        client = openai_client(side_effect=[
            SimpleNamespace(data=[SimpleNamespace(embedding=[0.1])]),
            RuntimeError("boom"),
            SimpleNamespace(data=[SimpleNamespace(embedding=[0.3])]),
        ])
        service = EmbeddingService(client=client)

        vectors = service.embed_many(["a", "b", "c"])

        assert vectors == [[0.1], None, [0.3]]


if __name__ == "__main__":
    unittest.main()
