"""
PostgreSQL + pgvector store implementations.

SQLAlchemy sessions are blocking, so every public coroutine runs its work in a
worker thread (asyncio.to_thread) and the event loop stays free for other requests.
"""
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import asyncio

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from quran_assistant.db.models import (
    ConversationContextRecord,
    MemorizationAttemptRecord,
    MemorizationSessionRecord,
    QuranVerse,
)
from quran_assistant.logging_config import get_logger
from quran_assistant.models import (
    ConversationContext,
    Difficulty,
    MemorizationAttempt,
    MemorizationSession,
    TraversalMode,
    Verse,
)

logger = get_logger(__name__)


NEAREST_NEIGHBORS_SQL = text(
    """
select
v.surah_number
, v.ayat_number
, v.surah_name_latin
, v.surah_name_arabic
, v.arabic_text
, v.translation
, v.context_before
, v.context_after
, v.tafsir_summary
, v.themes
, 1 - (v.embedding <=> CAST(:query_vector AS vector)) as similarity

from quran_verses v
where v.embedding is not null
  and 1 - (v.embedding <=> CAST(:query_vector AS vector)) > :min_similarity
order by v.embedding <=> CAST(:query_vector AS vector) asc, v.surah_number asc, v.ayat_number asc
limit :limit
"""
)


def _row_to_verse(row, with_embedding: bool = False) -> Verse:
    embedding = []
    if with_embedding and getattr(row, "embedding", None) is not None:
        embedding = [float(x) for x in row.embedding]
    return Verse(
        surah_number=row.surah_number,
        ayat_number=row.ayat_number,
        arabic_text=row.arabic_text,
        translation=row.translation,
        surah_name_latin=row.surah_name_latin or "",
        surah_name_arabic=row.surah_name_arabic or "",
        tafsir_summary=row.tafsir_summary,
        context_before=row.context_before,
        context_after=row.context_after,
        themes=list(row.themes or []),
        embedding=embedding,
    )


class SqlVerseStore:

    def __init__(self, engine: Engine):
        self.engine = engine

    async def find_by_key(self, surah: int, ayat: int) -> Optional[Verse]:
        return await asyncio.to_thread(self._find_by_key, surah, ayat)

    def _find_by_key(self, surah: int, ayat: int) -> Optional[Verse]:
        with Session(self.engine) as session:
            row = session.execute(
                select(QuranVerse).where(
                    QuranVerse.surah_number == surah,
                    QuranVerse.ayat_number == ayat,
                )
            ).scalar_one_or_none()
            return _row_to_verse(row) if row is not None else None

    async def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        limit: int,
        min_similarity: float
    ) -> List[Tuple[Verse, float]]:
        return await asyncio.to_thread(self._nearest_neighbors, list(query_vector), limit, min_similarity)

    def _nearest_neighbors(self, query_vector: List[float], limit: int, min_similarity: float) -> List[Tuple[Verse, float]]:
        with Session(self.engine) as session:
            rows = session.execute(NEAREST_NEIGHBORS_SQL, {
                'query_vector': str(query_vector),
                'min_similarity': min_similarity,
                'limit': limit,
            }).fetchall()
        return [(_row_to_verse(row), float(row.similarity)) for row in rows]

    async def count_verses_in_surah(self, surah: int) -> int:
        return await asyncio.to_thread(self._count_verses_in_surah, surah)

    def _count_verses_in_surah(self, surah: int) -> int:
        with Session(self.engine) as session:
            return session.execute(
                select(func.count()).select_from(QuranVerse).where(QuranVerse.surah_number == surah)
            ).scalar_one()

    async def upsert_verse(self, verse: Verse) -> None:
        await asyncio.to_thread(self._upsert_verse, verse)

    def _upsert_verse(self, verse: Verse) -> None:
        values = {
            'surah_number': verse.surah_number,
            'ayat_number': verse.ayat_number,
            'surah_name_latin': verse.surah_name_latin,
            'surah_name_arabic': verse.surah_name_arabic,
            'arabic_text': verse.arabic_text,
            'translation': verse.translation,
            'context_before': verse.context_before,
            'context_after': verse.context_after,
            'tafsir_summary': verse.tafsir_summary,
            'themes': list(verse.themes),
            'embedding': list(verse.embedding) or None,
        }
        stmt = insert(QuranVerse).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint='uq_surah_ayat',
            set_={
                **{k: stmt.excluded[k] for k in values if k not in ('surah_number', 'ayat_number')},
                'updated_at': func.now(),
            }
        )
        with Session(self.engine) as session:
            session.execute(stmt)
            session.commit()

    async def population_status(self) -> dict:
        return await asyncio.to_thread(self._population_status)

    def _population_status(self) -> dict:
        with Session(self.engine) as session:
            row = session.execute(text(
                """
select
count(*) as total_verses
, count(embedding) as verses_with_embeddings
, count(tafsir_summary) as verses_with_tafsir
, count(*) filter (where themes is not null and array_length(themes, 1) > 0) as verses_with_themes
from quran_verses
"""
            )).one()
        return dict(row._mapping)


class SqlContextStore:

    def __init__(self, engine: Engine):
        self.engine = engine

    async def load_context(self, conversation_id: str) -> Optional[ConversationContext]:
        return await asyncio.to_thread(self._load_context, conversation_id)

    def _load_context(self, conversation_id: str) -> Optional[ConversationContext]:
        with Session(self.engine) as session:
            record = session.get(ConversationContextRecord, conversation_id)
            if record is None:
                return None
            snapshot = {"discussed_verses": record.discussed_verses, "themes": record.themes}
            return ConversationContext.from_snapshot(conversation_id, snapshot, record.last_updated)

    async def save_context(self, context: ConversationContext) -> None:
        await asyncio.to_thread(self._save_context, context)

    def _save_context(self, context: ConversationContext) -> None:
        snapshot = context.to_snapshot()
        stmt = insert(ConversationContextRecord).values(
            conversation_id=context.conversation_id,
            discussed_verses=snapshot["discussed_verses"],
            themes=snapshot["themes"],
            last_updated=context.last_updated,
        )
        # Whole-row overwrite: concurrent turns on one conversation are last-write-wins
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConversationContextRecord.conversation_id],
            set_={
                'discussed_verses': stmt.excluded.discussed_verses,
                'themes': stmt.excluded.themes,
                'last_updated': stmt.excluded.last_updated,
            }
        )
        with Session(self.engine) as session:
            session.execute(stmt)
            session.commit()

    async def delete_contexts_older_than(self, cutoff: datetime) -> int:
        return await asyncio.to_thread(self._delete_contexts_older_than, cutoff)

    def _delete_contexts_older_than(self, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.execute(
                delete(ConversationContextRecord).where(ConversationContextRecord.last_updated < cutoff)
            )
            session.commit()
            return result.rowcount


class SqlSessionStore:

    def __init__(self, engine: Engine):
        self.engine = engine

    async def create_session(self, session: MemorizationSession) -> None:
        await asyncio.to_thread(self._create_session, session)

    def _create_session(self, s: MemorizationSession) -> None:
        with Session(self.engine) as session:
            session.add(MemorizationSessionRecord(
                session_id=s.session_id,
                user_id=s.user_id,
                current_surah=s.current_surah,
                current_ayat=s.current_ayat,
                mode=s.mode.value,
                difficulty=s.difficulty.value,
                total_attempts=s.total_attempts,
                correct_attempts=s.correct_attempts,
                final_score=s.score,
                started_at=s.started_at,
                last_activity_at=s.last_activity_at,
            ))
            session.commit()

    async def load_session(self, session_id: str) -> Optional[MemorizationSession]:
        return await asyncio.to_thread(self._load_session, session_id)

    def _load_session(self, session_id: str) -> Optional[MemorizationSession]:
        with Session(self.engine) as session:
            record = session.get(MemorizationSessionRecord, session_id)
            if record is None:
                return None
            return MemorizationSession(
                session_id=record.session_id,
                user_id=record.user_id,
                current_surah=record.current_surah,
                current_ayat=record.current_ayat,
                mode=TraversalMode(record.mode),
                difficulty=Difficulty(record.difficulty),
                total_attempts=record.total_attempts,
                correct_attempts=record.correct_attempts,
                score=record.final_score,
                started_at=record.started_at,
                last_activity_at=record.last_activity_at,
                ended_at=record.ended_at,
            )

    async def update_session_cursor(self, session_id: str, surah: int, ayat: int, at: datetime) -> None:
        await asyncio.to_thread(self._update_session, session_id, {
            'current_surah': surah,
            'current_ayat': ayat,
            'last_activity_at': at,
        })

    async def finalize_session(
        self,
        session_id: str,
        total_attempts: int,
        correct_attempts: int,
        score: float,
        ended_at: datetime
    ) -> None:
        await asyncio.to_thread(self._update_session, session_id, {
            'total_attempts': total_attempts,
            'correct_attempts': correct_attempts,
            'final_score': score,
            'ended_at': ended_at,
            'last_activity_at': ended_at,
        })

    def _update_session(self, session_id: str, values: dict) -> None:
        with Session(self.engine) as session:
            result = session.execute(
                update(MemorizationSessionRecord)
                .where(MemorizationSessionRecord.session_id == session_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise KeyError(f"Session {session_id} not found")
            session.commit()

    async def append_attempt(self, attempt: MemorizationAttempt) -> None:
        await asyncio.to_thread(self._append_attempt, attempt)

    def _append_attempt(self, attempt: MemorizationAttempt) -> None:
        with Session(self.engine) as session:
            session.add(MemorizationAttemptRecord(
                session_id=attempt.session_id,
                surah_number=attempt.surah,
                ayat_number=attempt.ayat,
                user_input=attempt.user_input,
                is_correct=attempt.is_correct,
                similarity_score=attempt.similarity_score,
                hints_used=attempt.hints_used,
                attempted_at=attempt.attempted_at,
            ))
            session.execute(
                update(MemorizationSessionRecord)
                .where(MemorizationSessionRecord.session_id == attempt.session_id)
                .values(last_activity_at=attempt.attempted_at)
            )
            session.commit()

    async def list_attempts(self, session_id: str) -> List[MemorizationAttempt]:
        return await asyncio.to_thread(self._list_attempts, session_id)

    def _list_attempts(self, session_id: str) -> List[MemorizationAttempt]:
        with Session(self.engine) as session:
            records = session.execute(
                select(MemorizationAttemptRecord)
                .where(MemorizationAttemptRecord.session_id == session_id)
                .order_by(MemorizationAttemptRecord.attempt_id)
            ).scalars().all()
            return [
                MemorizationAttempt(
                    session_id=r.session_id,
                    surah=r.surah_number,
                    ayat=r.ayat_number,
                    user_input=r.user_input,
                    is_correct=r.is_correct,
                    similarity_score=r.similarity_score,
                    hints_used=r.hints_used,
                    attempted_at=r.attempted_at,
                )
                for r in records
            ]

    async def list_idle_session_ids(self, idle_before: datetime) -> List[str]:
        return await asyncio.to_thread(self._list_idle_session_ids, idle_before)

    def _list_idle_session_ids(self, idle_before: datetime) -> List[str]:
        with Session(self.engine) as session:
            return list(session.execute(
                select(MemorizationSessionRecord.session_id).where(
                    MemorizationSessionRecord.ended_at.is_(None),
                    MemorizationSessionRecord.last_activity_at < idle_before,
                )
            ).scalars().all())
