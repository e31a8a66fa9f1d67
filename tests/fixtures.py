"""
Shared test data: Al-Fatihah plus Al-Baqarah 1, with small hand-made embeddings.
"""
from typing import Dict, List, Optional

from quran_assistant.db.memory_stores import InMemoryContextStore, InMemorySessionStore, InMemoryVerseStore
from quran_assistant.errors import EmbeddingUnavailable
from quran_assistant.models import RetrievalCandidate, Verse

AL_FATIHAH = {
    1: ("بِسْمِ اللَّهِ الرَّحْمَٰنِ الرَّحِيمِ",
        "Dengan nama Allah Yang Maha Pengasih, Maha Penyayang."),
    2: ("الْحَمْدُ لِلَّهِ رَبِّ الْعَالَمِينَ",
        "Segala puji bagi Allah, Tuhan seluruh alam,"),
    3: ("الرَّحْمَٰنِ الرَّحِيمِ",
        "Yang Maha Pengasih, Maha Penyayang,"),
    4: ("مَالِكِ يَوْمِ الدِّينِ",
        "Pemilik hari pembalasan."),
    5: ("إِيَّاكَ نَعْبُدُ وَإِيَّاكَ نَسْتَعِينُ",
        "Hanya kepada Engkaulah kami menyembah dan hanya kepada Engkaulah kami mohon pertolongan."),
    6: ("اهْدِنَا الصِّرَاطَ الْمُسْتَقِيمَ",
        "Tunjukilah kami jalan yang lurus,"),
    7: ("صِرَاطَ الَّذِينَ أَنْعَمْتَ عَلَيْهِمْ غَيْرِ الْمَغْضُوبِ عَلَيْهِمْ وَلَا الضَّالِّينَ",
        "(yaitu) jalan orang-orang yang telah Engkau beri nikmat kepadanya; bukan (jalan) mereka yang dimurkai, dan bukan (pula jalan) mereka yang sesat."),
}

# 3-d embeddings; verse 1:1 and 1:3 point the same way on purpose (equal similarity ties)
EMBEDDINGS = {
    (1, 1): [1.0, 0.0, 0.0],
    (1, 2): [0.9, 0.1, 0.0],
    (1, 3): [1.0, 0.0, 0.0],
    (1, 4): [0.0, 1.0, 0.0],
    (1, 5): [0.5, 0.5, 0.0],
    (1, 6): [0.0, 0.0, 1.0],
    (1, 7): [0.0, 0.2, 1.0],
    (2, 1): [0.7, 0.0, 0.7],
}


def make_verse(surah: int, ayat: int, arabic_text: str, translation: str, **kwargs) -> Verse:
    defaults = {
        "surah_name_latin": "Al-Fatihah" if surah == 1 else "Al-Baqarah",
        "surah_name_arabic": "الفاتحة" if surah == 1 else "البقرة",
        "embedding": EMBEDDINGS.get((surah, ayat), [0.0, 0.0, 1.0]),
    }
    defaults.update(kwargs)
    return Verse(surah_number=surah, ayat_number=ayat, arabic_text=arabic_text, translation=translation, **defaults)


def sample_verses() -> List[Verse]:
    verses = [
        make_verse(1, ayat, arabic, translation, themes=["ibadah"] if ayat == 5 else [])
        for ayat, (arabic, translation) in AL_FATIHAH.items()
    ]
    verses.append(make_verse(
        2, 1, "الم", "Alif Lam Mim.",
        tafsir_summary="Huruf muqatta'ah di awal surah.",
        themes=["umum"],
    ))
    return verses


def make_stores():
    return InMemoryVerseStore(sample_verses()), InMemoryContextStore(), InMemorySessionStore()


def make_candidate(surah: int, ayat: int, similarity: float, **verse_kwargs) -> RetrievalCandidate:
    """Helper to create a RetrievalCandidate without touching a store."""
    if surah == 1:
        arabic, translation = AL_FATIHAH[ayat]
    else:
        arabic, translation = "الم", "Alif Lam Mim."
    return RetrievalCandidate(verse=make_verse(surah, ayat, arabic, translation, **verse_kwargs), similarity=similarity)


class FakeEmbedder:
    """Deterministic stand-in for EmbeddingService: fixed vectors per text."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Optional[List[float]] = None, fail: bool = False):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingUnavailable("embedding service down")
        return self.vectors.get(text, self.default)


class FakeGenerator:
    """Records prompts instead of calling an LLM."""

    provider = "fake"
    model = "fake-model"

    def __init__(self, reply: str = "Jawaban", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls: List[dict] = []

    async def complete(self, messages: List[dict]) -> str:
        self.calls.append({"messages": messages})
        if self.fail:
            raise RuntimeError("LLM down")
        return self.reply

    async def generate(self, user_message, verses, conversation_history=None) -> str:
        self.calls.append({"user_message": user_message, "verses": list(verses), "history": conversation_history})
        if self.fail:
            raise RuntimeError("LLM down")
        return self.reply
