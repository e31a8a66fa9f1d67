"""
Hafalan (memorization) drill: recitation scoring and session control.
"""
from .scoring import normalize_text, similarity_score
from .session_engine import MemorizationSessionEngine, PASS_THRESHOLDS

__all__ = ['normalize_text', 'similarity_score', 'MemorizationSessionEngine', 'PASS_THRESHOLDS']
