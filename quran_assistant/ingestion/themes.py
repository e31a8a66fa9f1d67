"""
Heuristic theme tagging and tafsir summarization for the indexer.

Keywords match the Indonesian translation and tafsir text from equran.id.
"""
from typing import Dict, List, Optional

DEFAULT_THEME = "umum"
TAFSIR_SUMMARY_MAX_CHARS = 500

THEME_KEYWORDS: Dict[str, List[str]] = {
    'tauhid': ['allah', 'tuhan', 'sembah', 'ibadah', 'tawakal', 'iman'],
    'akhlak': ['baik', 'buruk', 'sabar', 'rendah hati', 'pemaaf'],
    'ibadah': ['shalat', 'salat', 'puasa', 'zakat', 'haji', 'sembahyang'],
    'sosial': ['orang', 'hamba', 'sahabat', 'keluarga', 'anak', 'istri'],
    'hukum': ['haram', 'halal', 'wajib', 'sunnah', 'hukum', 'perintah'],
    'cerita': ['kisah', 'nabi', 'rasul', 'firaun', 'kaum', 'masa lalu'],
    'akhirat': ['surga', 'neraka', 'hari kemudian', 'hisab', 'pahala', 'dosa'],
    'alam': ['langit', 'bumi', 'laut', 'gunung', 'matahari', 'bulan'],
    'ketuhanan': ['maha', 'kuasa', 'tahu', 'melihat', 'mendengar'],
    'petunjuk': ['petunjuk', 'hidayah', 'jalan', 'lurus', 'benar'],
}


def identify_themes(translation: str, tafsir: Optional[str] = None) -> List[str]:
    """Tag a verse with every theme whose keywords appear in its translation or tafsir."""
    text = f"{translation} {tafsir or ''}".lower()
    themes = [
        theme for theme, keywords in THEME_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    ]
    return themes or [DEFAULT_THEME]


def summarize_tafsir(tafsir_text: str, max_length: int = TAFSIR_SUMMARY_MAX_CHARS) -> str:
    """
    Shorten a tafsir to at most max_length characters.

    Cuts at the last sentence end when it falls in the final 20% of the window,
    otherwise truncates hard and appends an ellipsis.
    """
    tafsir_text = tafsir_text.strip()
    if len(tafsir_text) <= max_length:
        return tafsir_text

    truncated = tafsir_text[:max_length]
    last_sentence_end = max(truncated.rfind('.'), truncated.rfind('!'), truncated.rfind('?'))

    if last_sentence_end > max_length * 0.8:
        return truncated[:last_sentence_end + 1]

    return truncated + '...'
