"""
Keyword routing for chat messages: tafsir questions, verse references and hafalan requests.
"""
import re
from typing import Optional

from quran_assistant.models import VerseKey

TAFSIR_KEYWORDS = [
    'tafsir', 'makna', 'arti', 'penjelasan', 'maksud', 'yang dimaksud',
    'bagaimana', 'mengapa', 'kenapa', 'apa arti', 'apa maksud',
]

HAFALAN_KEYWORDS = [
    'hafal', 'hafalan', 'menghafal', 'mengaji', 'tilawah',
    'lanjutkan ayat', 'ayat berikutnya', 'teks arab', 'teks arabnya',
]

_VERSE_MENTION_RE = re.compile(r"qs\.?\s*\d+:\d+|surah\s+\w+\s+ayat\s+\d+", re.IGNORECASE)
_QS_RE = re.compile(r"qs\.?\s*(\d+):(\d+)", re.IGNORECASE)
_SURAH_AYAT_RE = re.compile(r"surah\s+(\d+)\s+ayat\s+(\d+)", re.IGNORECASE)
_ARABIC_RE = re.compile(r"[\u0600-\u06FF]")


def is_tafsir_question(message: str) -> bool:
    """True when the message asks about meaning/explanation or names a verse."""
    lower_message = message.lower()
    if any(keyword in lower_message for keyword in TAFSIR_KEYWORDS):
        return True
    return _VERSE_MENTION_RE.search(message) is not None


def extract_verse_reference(message: str) -> Optional[VerseKey]:
    """Parse "QS. 2:255" or "surah 2 ayat 255". Numeric references only."""
    for pattern in (_QS_RE, _SURAH_AYAT_RE):
        match = pattern.search(message)
        if match:
            return VerseKey(int(match.group(1)), int(match.group(2)))
    return None


def is_memorization_message(message: str) -> bool:
    lower_message = message.lower()
    return any(keyword in lower_message for keyword in HAFALAN_KEYWORDS)


def is_memorization_attempt(message: str) -> bool:
    """Arabic script and longer than 10 characters: looks like a recitation."""
    return _ARABIC_RE.search(message) is not None and len(message) > 10
