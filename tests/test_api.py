"""
API tests against in-memory services (no database, no model calls).
"""
import random
import unittest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from quran_assistant.config import Settings
from quran_assistant.hafalan.session_engine import MemorizationSessionEngine
from quran_assistant.main import Services, create_app
from quran_assistant.rag.chat_pipeline import ChatPipeline
from quran_assistant.rag.tafsir_mode import TafsirMode
from quran_assistant.retrieval.context_reranker import ConversationContextTracker
from quran_assistant.retrieval.semantic_search import SemanticRetriever
from tests.fixtures import AL_FATIHAH, FakeEmbedder, FakeGenerator, make_stores


def build_test_services(embedder, generator) -> Services:
    verse_store, context_store, session_store = make_stores()
    retriever = SemanticRetriever(verse_store, embedder)
    tracker = ConversationContextTracker(context_store)
    tafsir = TafsirMode(verse_store, retriever, generator)
    return Services(
        settings=Settings(use_memory_store=True),
        verse_store=verse_store,
        context_store=context_store,
        session_store=session_store,
        retriever=retriever,
        tracker=tracker,
        chat=ChatPipeline(retriever, tracker, generator, tafsir_mode=tafsir),
        tafsir=tafsir,
        hafalan=MemorizationSessionEngine(verse_store, session_store, rng=random.Random(0)),
    )


class TestAPI(unittest.TestCase):

    def setUp(self):
        self.embedder = FakeEmbedder(default=[1.0, 0.0, 0.0])
        self.generator = FakeGenerator(reply="Jawaban dengan QS. Al-Fatihah:1")
        self.services = build_test_services(self.embedder, self.generator)
        self.client = TestClient(create_app(self.services))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    # -- health / search -------------------------------------------------

    def test_health(self):
        """Test health reports corpus population status."""
        response = self.client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["corpus"]["total_verses"] == 8

    def test_health_reports_store_failure(self):
        """Test health returns 503 when the verse store is down."""
        self.services.verse_store = AsyncMock()
        self.services.verse_store.population_status.side_effect = RuntimeError("db down")

        response = self.client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_search(self):
        """Test search returns verses above the threshold, most similar first."""
        response = self.client.post("/search", json={"query": "rahmat", "limit": 2, "threshold": 0.5})

        assert response.status_code == 200
        results = response.json()["results"]
        assert [(r["surah"], r["ayat"]) for r in results] == [(1, 1), (1, 3)]
        assert results[0]["similarity"] == 1.0
        assert results[0]["final_score"] is None

    def test_search_validation(self):
        """Test out-of-range search parameters are rejected."""
        assert self.client.post("/search", json={"query": "rahmat", "limit": 0}).status_code == 422
        assert self.client.post("/search", json={"query": "rahmat", "threshold": 2}).status_code == 422
        assert self.client.post("/search", json={"query": "  "}).status_code == 400

    def test_search_embedding_unavailable(self):
        """Test search returns 503 when the query cannot be embedded."""
        self.embedder.fail = True

        response = self.client.post("/search", json={"query": "rahmat"})

        assert response.status_code == 503

    # -- chat --------------------------------------------------------------

    def test_chat_and_context(self):
        """Test a chat turn answers from verses and records them in the context."""
        response = self.client.post("/chat", json={"message": "Siapa Yang Maha Pengasih?"})

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "rag"
        assert body["grounded"] is True
        assert body["answer"] == "Jawaban dengan QS. Al-Fatihah:1"
        assert len(body["verses"]) == 5

        context = self.client.get(f"/conversations/{body['conversation_id']}/context").json()
        assert {(v["surah"], v["ayat"]) for v in context["discussed_verses"]} == {
            (1, 1), (1, 3), (1, 2), (1, 5), (2, 1)
        }
        assert context["themes"] == ["ibadah", "umum"]

    def test_second_turn_reports_context_scores(self):
        """Test a follow-up turn carries context boosts on its verses."""
        first = self.client.post("/chat", json={"message": "Siapa Yang Maha Pengasih?"}).json()

        second = self.client.post("/chat", json={
            "message": "Siapa Yang Maha Penyayang?",
            "conversation_id": first["conversation_id"],
        }).json()

        assert all(v["context_score"] is not None for v in second["verses"])
        assert second["verses"][0]["final_score"] > second["verses"][0]["similarity"]

    def test_chat_without_embeddings_is_ungrounded(self):
        """Test chat still answers, ungrounded, when embedding fails."""
        self.embedder.fail = True

        body = self.client.post("/chat", json={"message": "Siapa Yang Maha Pengasih?"}).json()

        assert body["grounded"] is False
        assert body["verses"] == []

    def test_chat_generation_failure(self):
        """Test a generation failure surfaces as a 500."""
        self.generator.fail = True

        response = self.client.post("/chat", json={"message": "Siapa Yang Maha Pengasih?"})

        assert response.status_code == 500

    def test_chat_empty_message(self):
        """Test an empty chat message is rejected."""
        assert self.client.post("/chat", json={"message": ""}).status_code == 400

    def test_unknown_conversation_context_is_empty(self):
        """Test an unknown conversation has an empty context."""
        context = self.client.get("/conversations/nope/context").json()
        assert context == {"conversation_id": "nope", "discussed_verses": [], "themes": []}

    # -- tafsir ------------------------------------------------------------

    def test_tafsir_start(self):
        """Test starting a tafsir discussion returns the verse, tafsir and related verses."""
        body = self.client.post("/tafsir/start", json={"surah": 2, "ayat": 1}).json()

        assert body["surah_name"] == "Al-Baqarah"
        assert body["tafsir"] == "Huruf muqatta'ah di awal surah."
        assert [(r["surah"], r["ayat"]) for r in body["related_verses"]] == [(1, 1), (1, 3), (1, 2)]

    def test_tafsir_unknown_verse(self):
        """Test tafsir for a verse outside the corpus is a 404."""
        assert self.client.post("/tafsir/start", json={"surah": 3, "ayat": 1}).status_code == 404

    def test_tafsir_question(self):
        """Test a tafsir question is answered for the given verse."""
        body = self.client.post("/tafsir/question", json={"surah": 2, "ayat": 1, "question": "Apa maknanya?"}).json()

        assert body == {"surah": 2, "ayat": 1, "answer": "Jawaban dengan QS. Al-Fatihah:1"}

    # -- hafalan -----------------------------------------------------------

    def _start(self, **overrides):
        payload = {"user_id": "user-1", "surah": 1, "ayat": 1, "mode": "forward", "difficulty": "easy"}
        payload.update(overrides)
        return self.client.post("/hafalan/start", json=payload)

    def test_hafalan_flow(self):
        """Test a full hafalan session: start, evaluate, next, stats, end."""
        start = self._start().json()
        session_id = start["session_id"]
        assert start["current_verse"]["ayat"] == 1
        assert start["current_verse"]["hint"] == "Surah Al-Fatihah, ayat ke-1"

        evaluation = self.client.post("/hafalan/evaluate", json={
            "session_id": session_id, "user_input": AL_FATIHAH[1][0], "surah": 1, "ayat": 1,
        }).json()
        assert evaluation["is_correct"] is True
        assert evaluation["feedback_tier"] == "perfect"
        assert evaluation["next_verse"]["ayat"] == 2

        next_verse = self.client.get(f"/hafalan/next/{session_id}").json()
        assert next_verse["ayat"] == 3

        stats = self.client.get(f"/hafalan/stats/{session_id}").json()
        assert stats["total_attempts"] == 1
        assert stats["accuracy"] == 100.0

        ended = self.client.post("/hafalan/end", json={"session_id": session_id}).json()
        assert ended["correct_attempts"] == 1

        assert self.client.get(f"/hafalan/next/{session_id}").status_code == 404
        assert self.client.post("/hafalan/end", json={"session_id": session_id}).status_code == 404

    def test_hafalan_invalid_start(self):
        """Test invalid start positions and modes are rejected."""
        assert self._start(surah=115).status_code == 400
        assert self._start(ayat=0).status_code == 400
        assert self._start(mode="sideways").status_code == 422

    def test_hafalan_start_at_missing_verse(self):
        """Test starting at a verse missing from the corpus is a 404."""
        response = self._start(surah=3)

        assert response.status_code == 404

    def test_hafalan_unknown_session(self):
        """Test unknown session ids are a 404."""
        assert self.client.get("/hafalan/stats/nope").status_code == 404
        response = self.client.post("/hafalan/evaluate", json={
            "session_id": "nope", "user_input": "x", "surah": 1, "ayat": 1,
        })
        assert response.status_code == 404

    def test_hafalan_negative_hints(self):
        """Test negative hints_used fails validation."""
        session_id = self._start().json()["session_id"]
        response = self.client.post("/hafalan/evaluate", json={
            "session_id": session_id, "user_input": "x", "surah": 1, "ayat": 1, "hints_used": -1,
        })
        assert response.status_code == 422


if __name__ == "__main__":
    unittest.main()
