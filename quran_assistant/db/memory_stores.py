"""
In-process store implementations.

Used when USE_MEMORY_STORE=true (local development without PostgreSQL) and by the tests.
Ordering and threshold semantics match the pgvector queries in sql_stores.
"""
import copy
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from quran_assistant.models import (
    SCORE_DECIMALS,
    ConversationContext,
    MemorizationAttempt,
    MemorizationSession,
    Verse,
    VerseKey,
)


class InMemoryVerseStore:
    """Verse corpus held in a dict keyed by (surah, ayat)."""

    def __init__(self, verses: Iterable[Verse] = ()):
        self._verses: Dict[VerseKey, Verse] = {}
        self._dimension: Optional[int] = None
        for verse in verses:
            self._put(verse)

    def _put(self, verse: Verse) -> None:
        if verse.embedding:
            if self._dimension is None:
                self._dimension = len(verse.embedding)
            elif len(verse.embedding) != self._dimension:
                raise ValueError(
                    f"Verse {verse.key} has embedding length {len(verse.embedding)}, "
                    f"corpus uses {self._dimension}"
                )
        self._verses[verse.key] = verse

    async def find_by_key(self, surah: int, ayat: int) -> Optional[Verse]:
        return self._verses.get(VerseKey(surah, ayat))

    async def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        limit: int,
        min_similarity: float
    ) -> List[Tuple[Verse, float]]:
        embedded = [v for v in self._verses.values() if v.embedding]
        if not embedded or limit <= 0:
            return []

        query = np.asarray(query_vector, dtype=float)
        if query.shape[0] != self._dimension:
            raise ValueError(f"Query vector has length {query.shape[0]}, corpus uses {self._dimension}")

        matrix = np.asarray([v.embedding for v in embedded], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)

        results = []
        for verse, dot, norm in zip(embedded, matrix @ query, norms):
            if norm == 0:
                continue  # cosine undefined for zero vectors
            similarity = float(dot / norm)
            if similarity > min_similarity:
                results.append((verse, similarity))

        results.sort(key=lambda item: (-round(item[1], SCORE_DECIMALS), item[0].surah_number, item[0].ayat_number))
        return results[:limit]

    async def count_verses_in_surah(self, surah: int) -> int:
        return sum(1 for key in self._verses if key.surah == surah)

    async def upsert_verse(self, verse: Verse) -> None:
        self._put(verse)

    async def population_status(self) -> dict:
        verses = list(self._verses.values())
        return {
            "total_verses": len(verses),
            "verses_with_embeddings": sum(1 for v in verses if v.embedding),
            "verses_with_tafsir": sum(1 for v in verses if v.tafsir_summary),
            "verses_with_themes": sum(1 for v in verses if v.themes),
        }


class InMemoryContextStore:

    def __init__(self):
        self._contexts: Dict[str, ConversationContext] = {}

    async def load_context(self, conversation_id: str) -> Optional[ConversationContext]:
        context = self._contexts.get(conversation_id)
        # Callers mutate what they load; hand out copies like a real row fetch would
        return copy.deepcopy(context) if context is not None else None

    async def save_context(self, context: ConversationContext) -> None:
        self._contexts[context.conversation_id] = copy.deepcopy(context)

    async def delete_contexts_older_than(self, cutoff: datetime) -> int:
        stale = [cid for cid, ctx in self._contexts.items() if ctx.last_updated < cutoff]
        for cid in stale:
            del self._contexts[cid]
        return len(stale)


class InMemorySessionStore:

    def __init__(self):
        self._sessions: Dict[str, MemorizationSession] = {}
        self._attempts: Dict[str, List[MemorizationAttempt]] = {}

    async def create_session(self, session: MemorizationSession) -> None:
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} already exists")
        self._sessions[session.session_id] = copy.deepcopy(session)
        self._attempts[session.session_id] = []

    async def load_session(self, session_id: str) -> Optional[MemorizationSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    async def update_session_cursor(self, session_id: str, surah: int, ayat: int, at: datetime) -> None:
        session = self._require(session_id)
        session.current_surah = surah
        session.current_ayat = ayat
        session.last_activity_at = at

    async def finalize_session(
        self,
        session_id: str,
        total_attempts: int,
        correct_attempts: int,
        score: float,
        ended_at: datetime
    ) -> None:
        session = self._require(session_id)
        session.total_attempts = total_attempts
        session.correct_attempts = correct_attempts
        session.score = score
        session.ended_at = ended_at
        session.last_activity_at = ended_at

    async def append_attempt(self, attempt: MemorizationAttempt) -> None:
        session = self._require(attempt.session_id)
        session.last_activity_at = attempt.attempted_at
        self._attempts[attempt.session_id].append(attempt)

    async def list_attempts(self, session_id: str) -> List[MemorizationAttempt]:
        return list(self._attempts.get(session_id, []))

    async def list_idle_session_ids(self, idle_before: datetime) -> List[str]:
        return [
            s.session_id for s in self._sessions.values()
            if s.ended_at is None and s.last_activity_at < idle_before
        ]

    def _require(self, session_id: str) -> MemorizationSession:
        if session_id not in self._sessions:
            raise KeyError(f"Session {session_id} not found")
        return self._sessions[session_id]
