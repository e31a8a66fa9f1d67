"""
Tests for guided tafsir discussion.
"""
import unittest

from quran_assistant.errors import VerseNotFound
from quran_assistant.rag.tafsir_mode import (
    TAFSIR_NOT_AVAILABLE,
    TafsirMode,
    build_tafsir_context,
    discussion_points,
)
from quran_assistant.retrieval.semantic_search import SemanticRetriever
from tests.fixtures import FakeEmbedder, FakeGenerator, make_stores, make_verse


class TestDiscussionPoints(unittest.TestCase):

    def test_points_follow_available_material(self):
        """Test discussion points follow the material a verse has."""
        bare = make_verse(1, 4, "مَالِكِ يَوْمِ الدِّينِ", "Pemilik hari pembalasan.")
        rich = make_verse(
            2, 1, "الم", "Alif Lam Mim.",
            tafsir_summary="Huruf muqatta'ah.", themes=["umum"], context_after="Kitab ini",
        )

        assert discussion_points(bare) == []
        points = discussion_points(rich)
        assert len(points) == 6
        assert "Tema utama: umum" in points
        assert points[-1] == "Konteks dalam struktur surah"

    def test_context_mentions_verse_and_related(self):
        """Test the discussion context names the verse and related verses."""
        verse = make_verse(2, 1, "الم", "Alif Lam Mim.", tafsir_summary="Huruf muqatta'ah.")

        context = build_tafsir_context(verse, [])

        assert context.startswith("Ayat: QS. 2:1\n")
        assert "Tafsir: Huruf muqatta'ah." in context
        assert "Ayat terkait" not in context


class TestTafsirMode(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        verse_store, _, _ = make_stores()
        self.embedder = FakeEmbedder(default=[1.0, 0.0, 0.0])
        self.generator = FakeGenerator(reply="Penjelasan tafsir")
        self.mode = TafsirMode(verse_store, SemanticRetriever(verse_store, self.embedder), self.generator)

    async def test_start_discussion(self):
        """Test starting a discussion for an indexed verse."""
        discussion = await self.mode.start_discussion(2, 1)

        assert discussion.surah_name == "Al-Baqarah"
        assert discussion.tafsir == "Huruf muqatta'ah di awal surah."
        assert "Tema utama: umum" in discussion.discussion_points
        assert self.embedder.calls == ["Huruf muqatta'ah di awal surah. umum"]

    async def test_related_verses_exclude_self_and_are_capped(self):
        """Test related verses exclude the verse itself and are capped."""
        discussion = await self.mode.start_discussion(1, 1)

        keys = [(r.surah, r.ayat) for r in discussion.related_verses]
        assert keys == [(1, 3), (1, 2), (1, 5)]
        assert discussion.tafsir == TAFSIR_NOT_AVAILABLE
        assert discussion.discussion_points == []

    async def test_related_verses_empty_when_embedding_fails(self):
        """Test related verses are empty when embedding fails."""
        self.embedder.fail = True

        discussion = await self.mode.start_discussion(1, 5)

        assert discussion.related_verses == []
        assert discussion.discussion_points == ["Tema utama: ibadah"]

    async def test_unknown_verse(self):
        """Test an unknown verse raises VerseNotFound."""
        with self.assertRaises(VerseNotFound):
            await self.mode.start_discussion(3, 1)
        with self.assertRaises(VerseNotFound):
            await self.mode.answer_question(3, 1, "Apa maknanya?")

    async def test_answer_question(self):
        """Test a question is answered with the verse as grounding."""
        answer = await self.mode.answer_question(2, 1, "Apa makna huruf ini?")

        assert answer == "Penjelasan tafsir"
        messages = self.generator.calls[0]["messages"]
        assert "Ayat: QS. 2:1" in messages[0]["content"]
        assert "Ayat terkait:" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "Apa makna huruf ini?"}

    async def test_answer_question_requires_question(self):
        """Test an empty question is rejected."""
        with self.assertRaises(ValueError):
            await self.mode.answer_question(2, 1, "  ")
        assert self.generator.calls == []


if __name__ == "__main__":
    unittest.main()
