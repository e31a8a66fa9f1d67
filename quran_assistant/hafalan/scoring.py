"""
Recitation similarity scoring.

Both texts are normalized (composed to NFC, harakat and other combining marks
removed, tatweel removed, whitespace collapsed) and compared by Levenshtein edit distance:

    score = max(0, 1 - distance / max(len(a), len(b)))

Two texts that are empty after normalization score 1.0.
"""
import re
import unicodedata

from Levenshtein import distance as lev_distance

TATWEEL = "\u0640"
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Strip diacritics and elongation, collapse whitespace, trim."""
    if not text:
        return ""
    # NFC keeps hamza and madda letters (أ إ آ ؤ ئ) whole, only harakat are dropped
    composed = unicodedata.normalize("NFC", text)
    stripped = "".join(
        ch for ch in composed
        if ch != TATWEEL and unicodedata.category(ch) != "Mn"
    )
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def similarity_score(user_input: str, canonical_text: str) -> float:
    """Normalized edit-distance similarity in [0, 1]. Symmetric."""
    a = normalize_text(user_input)
    b = normalize_text(canonical_text)

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0

    distance = lev_distance(a, b)
    return max(0.0, 1.0 - distance / longest)
