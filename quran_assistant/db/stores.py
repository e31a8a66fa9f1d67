"""
Storage contracts used by retrieval, context tracking and the hafalan engine.

Two implementations exist: PostgreSQL/pgvector (sql_stores) and in-process
(memory_stores, used in development mode and tests). Both must return the
same results in the same order.
"""
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Tuple

from quran_assistant.models import ConversationContext, MemorizationAttempt, MemorizationSession, Verse


class VerseStore(Protocol):

    async def find_by_key(self, surah: int, ayat: int) -> Optional[Verse]:
        ...

    async def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        limit: int,
        min_similarity: float
    ) -> List[Tuple[Verse, float]]:
        """Verses with 1 - cosine distance > min_similarity, most similar first."""
        ...

    async def count_verses_in_surah(self, surah: int) -> int:
        ...

    async def upsert_verse(self, verse: Verse) -> None:
        """Insert or replace by (surah, ayat). Used by the batch indexer only."""
        ...

    async def population_status(self) -> dict:
        """Counts of total, embedded, tafsir-bearing and themed verses."""
        ...


class ContextStore(Protocol):

    async def load_context(self, conversation_id: str) -> Optional[ConversationContext]:
        ...

    async def save_context(self, context: ConversationContext) -> None:
        """Full upsert: replaces any previous snapshot for the conversation."""
        ...

    async def delete_contexts_older_than(self, cutoff: datetime) -> int:
        ...


class SessionStore(Protocol):

    async def create_session(self, session: MemorizationSession) -> None:
        ...

    async def load_session(self, session_id: str) -> Optional[MemorizationSession]:
        ...

    async def update_session_cursor(self, session_id: str, surah: int, ayat: int, at: datetime) -> None:
        ...

    async def finalize_session(
        self,
        session_id: str,
        total_attempts: int,
        correct_attempts: int,
        score: float,
        ended_at: datetime
    ) -> None:
        ...

    async def append_attempt(self, attempt: MemorizationAttempt) -> None:
        """Append to the log and bump the session's last_activity_at."""
        ...

    async def list_attempts(self, session_id: str) -> List[MemorizationAttempt]:
        """Attempts for a session in insertion order."""
        ...

    async def list_idle_session_ids(self, idle_before: datetime) -> List[str]:
        """Active sessions whose last activity is older than idle_before."""
        ...
