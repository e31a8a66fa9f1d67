"""
Tests for chat message routing helpers.
"""
import unittest

from quran_assistant.models import VerseKey
from quran_assistant.rag.intent import (
    extract_verse_reference,
    is_memorization_attempt,
    is_memorization_message,
    is_tafsir_question,
)


class TestIntent(unittest.TestCase):

    def test_tafsir_question(self):
        """Test tafsir keywords are detected."""
        assert is_tafsir_question("Apa makna ayat kursi?")
        assert is_tafsir_question("Jelaskan TAFSIR surah Al-Ikhlas")
        assert is_tafsir_question("QS. 2:255")
        assert is_tafsir_question("surah baqarah ayat 255")
        assert not is_tafsir_question("Siapa Yang Maha Pengasih?")

    def test_extract_verse_reference(self):
        """Test surah and ayat references are extracted."""
        assert extract_verse_reference("Apa tafsir QS. 2:255?") == VerseKey(2, 255)
        assert extract_verse_reference("qs 112:1") == VerseKey(112, 1)
        assert extract_verse_reference("tolong jelaskan surah 1 ayat 7") == VerseKey(1, 7)
        assert extract_verse_reference("surah Al-Baqarah ayat 255") is None
        assert extract_verse_reference("tentang sabar") is None

    def test_memorization_message(self):
        """Test hafalan requests are detected."""
        assert is_memorization_message("Saya mau menghafal juz 30")
        assert is_memorization_message("Lanjutkan ayat berikutnya")
        assert not is_memorization_message("Apa itu sabar?")

    def test_memorization_attempt(self):
        """Test Arabic recitations are detected."""
        assert is_memorization_attempt("بسم الله الرحمن الرحيم")
        assert not is_memorization_attempt("الم")
        assert not is_memorization_attempt("bismillahirrahmanirrahim")


if __name__ == "__main__":
    unittest.main()
