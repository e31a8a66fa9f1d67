"""
Error taxonomy for retrieval, conversation context and hafalan sessions.

Optional enrichment steps (context rerank/update) absorb these and log them.
Required steps (query embedding, verse lookup during evaluation) let them propagate.
"""
from typing import Optional


class QuranAssistantError(Exception):
    """Base class for all domain errors."""


class EmbeddingUnavailable(QuranAssistantError):
    """Embedding call failed or timed out. Callers degrade to an ungrounded answer."""


class VerseNotFound(QuranAssistantError):
    """The corpus has no verse for the requested (surah, ayat)."""

    def __init__(self, surah: int, ayat: int):
        self.surah = surah
        self.ayat = ayat
        super().__init__(f"Verse {surah}:{ayat} not found")


class ContextPersistenceFailed(QuranAssistantError):
    """Conversation context could not be loaded or saved."""


class SessionNotFound(QuranAssistantError):
    """Session id is unknown, ended or expired. The drill must be restarted."""

    def __init__(self, session_id: str, reason: Optional[str] = None):
        self.session_id = session_id
        message = f"Memorization session {session_id} not found"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidRange(QuranAssistantError, ValueError):
    """Surah or ayat number outside the valid bounds."""
