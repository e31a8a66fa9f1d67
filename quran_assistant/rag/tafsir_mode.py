"""
Guided tafsir discussion for a single verse.
"""
from dataclasses import dataclass, field
from typing import List

from quran_assistant.db.stores import VerseStore
from quran_assistant.errors import EmbeddingUnavailable, VerseNotFound
from quran_assistant.logging_config import get_logger
from quran_assistant.models import Verse
from quran_assistant.rag.generation import ResponseGenerator
from quran_assistant.retrieval.semantic_search import SemanticRetriever

logger = get_logger(__name__)

RELATED_SEARCH_LIMIT = 5
RELATED_SEARCH_THRESHOLD = 0.6
MAX_RELATED_VERSES = 3
TAFSIR_NOT_AVAILABLE = "Tafsir tidak tersedia untuk ayat ini."

TAFSIR_SYSTEM_PROMPT = """Kamu adalah ahli tafsir Al-Quran yang menjelaskan makna ayat dengan pendekatan ilmiah dan kontekstual.

Konteks ayat:
{context}

Berikan jawaban yang:
1. Berdasarkan tafsir yang sahih
2. Mudah dipahami oleh orang awam
3. Menyertakan konteks turunnya ayat jika relevan
4. Menghubungkan dengan tema-tema terkait
5. Tidak memaksa interpretasi yang subjektif"""


@dataclass
class RelatedVerse:
    surah: int
    ayat: int
    arabic_text: str
    translation: str
    relevance_score: float


@dataclass
class TafsirDiscussion:
    surah: int
    ayat: int
    surah_name: str
    arabic_text: str
    translation: str
    tafsir: str
    related_verses: List[RelatedVerse] = field(default_factory=list)
    discussion_points: List[str] = field(default_factory=list)


def discussion_points(verse: Verse) -> List[str]:
    points = []
    if verse.tafsir_summary:
        points.extend([
            "Makna kata-kata kunci dalam ayat ini",
            "Konteks turunnya ayat (asbabun nuzul)",
            "Pelajaran utama dari ayat ini",
            "Hubungan dengan ayat sebelumnya dan sesudahnya",
        ])
    if verse.themes:
        points.append(f"Tema utama: {', '.join(verse.themes)}")
    if verse.context_before or verse.context_after:
        points.append("Konteks dalam struktur surah")
    return points


def build_tafsir_context(verse: Verse, related: List[RelatedVerse]) -> str:
    context = (
        f"Ayat: QS. {verse.surah_number}:{verse.ayat_number}\n"
        f"Arab: {verse.arabic_text}\n"
        f"Terjemahan: {verse.translation}"
    )
    if verse.tafsir_summary:
        context += f"\nTafsir: {verse.tafsir_summary}"
    if verse.context_before:
        context += f"\nKonteks sebelum: {verse.context_before}"
    if verse.context_after:
        context += f"\nKonteks sesudah: {verse.context_after}"
    if verse.themes:
        context += f"\nTema: {', '.join(verse.themes)}"
    if related:
        context += "\n\nAyat terkait:"
        for r in related:
            context += f"\n- QS. {r.surah}:{r.ayat} - {r.translation}"
    return context


class TafsirMode:

    def __init__(self, verse_store: VerseStore, retriever: SemanticRetriever, generator: ResponseGenerator):
        self.verse_store = verse_store
        self.retriever = retriever
        self.generator = generator

    async def _require_verse(self, surah: int, ayat: int) -> Verse:
        verse = await self.verse_store.find_by_key(surah, ayat)
        if verse is None:
            raise VerseNotFound(surah, ayat)
        return verse

    async def find_related_verses(self, verse: Verse) -> List[RelatedVerse]:
        """Up to 3 semantically close verses, excluding the verse itself. Empty on retrieval failure."""
        query = f"{verse.tafsir_summary or verse.translation} {' '.join(verse.themes)}".strip()
        try:
            candidates = await self.retriever.search(query, RELATED_SEARCH_LIMIT, RELATED_SEARCH_THRESHOLD)
        except (EmbeddingUnavailable, ValueError) as e:
            logger.warning(f"Related verse search failed for {verse.key}: {e}")
            return []

        return [
            RelatedVerse(
                surah=c.surah,
                ayat=c.ayat,
                arabic_text=c.verse.arabic_text,
                translation=c.verse.translation,
                relevance_score=c.similarity,
            )
            for c in candidates
            if c.key != verse.key
        ][:MAX_RELATED_VERSES]

    async def start_discussion(self, surah: int, ayat: int) -> TafsirDiscussion:
        verse = await self._require_verse(surah, ayat)
        related = await self.find_related_verses(verse)

        return TafsirDiscussion(
            surah=verse.surah_number,
            ayat=verse.ayat_number,
            surah_name=verse.surah_name_latin,
            arabic_text=verse.arabic_text,
            translation=verse.translation,
            tafsir=verse.tafsir_summary or TAFSIR_NOT_AVAILABLE,
            related_verses=related,
            discussion_points=discussion_points(verse),
        )

    async def answer_question(self, surah: int, ayat: int, question: str) -> str:
        """Answer a question about one verse, with its tafsir and related verses as context."""
        if not question or not question.strip():
            raise ValueError("question must not be empty")

        verse = await self._require_verse(surah, ayat)
        related = await self.find_related_verses(verse)

        messages = [
            {'role': 'system', 'content': TAFSIR_SYSTEM_PROMPT.format(context=build_tafsir_context(verse, related))},
            {'role': 'user', 'content': question},
        ]
        return await self.generator.complete(messages)
