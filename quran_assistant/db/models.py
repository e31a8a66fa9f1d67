"""
Database models for Quran Assistant.

SCHEMA OVERVIEW
===============================================================================

TABLE: quran_verses - Verse corpus with embeddings (written by the indexer)
-------------------------------------------------------------------------------
verse_id           SERIAL        PRIMARY KEY
surah_number       INTEGER       NOT NULL           1..114
ayat_number        INTEGER       NOT NULL           >= 1
surah_name_latin   TEXT          NOT NULL           "Al-Fatihah"
surah_name_arabic  TEXT          NOT NULL           "الفاتحة"
arabic_text        TEXT          NOT NULL
translation        TEXT          NOT NULL
context_before     TEXT                             Translation of the previous ayat
context_after      TEXT                             Translation of the next ayat
tafsir_summary     TEXT                             <= 500 chars
themes             TEXT[]                           Keyword theme tags
embedding          VECTOR(D)                        D = EMBEDDING_DIM (1536 for OpenAI)
created_at         TIMESTAMP     DEFAULT NOW()
updated_at         TIMESTAMP

UNIQUE: (surah_number, ayat_number)
INDEX:  idx_quran_verses_surah ON surah_number
INDEX:  idx_quran_verses_embedding ON embedding USING hnsw (vector_cosine_ops)


TABLE: conversation_contexts - Discussed verses per conversation (full snapshot)
-------------------------------------------------------------------------------
conversation_id    VARCHAR       PRIMARY KEY
discussed_verses   JSONB         NOT NULL           [{surah, ayat, relevance_score, discussion_count}]
themes             JSONB         NOT NULL           ["tauhid", ...]
last_updated       TIMESTAMP     NOT NULL

INDEX: idx_conversation_contexts_last_updated ON last_updated


TABLE: memorization_sessions - Hafalan drills
-------------------------------------------------------------------------------
session_id         VARCHAR       PRIMARY KEY        UUID
user_id            VARCHAR       NOT NULL
current_surah      INTEGER       NOT NULL
current_ayat       INTEGER       NOT NULL
mode               VARCHAR       NOT NULL           'forward' | 'backward' | 'random'
difficulty         VARCHAR       NOT NULL           'easy' | 'medium' | 'hard'
total_attempts     INTEGER       DEFAULT 0          Flushed on end
correct_attempts   INTEGER       DEFAULT 0          Flushed on end
final_score        FLOAT         DEFAULT 0          Flushed on end
started_at         TIMESTAMP     NOT NULL
last_activity_at   TIMESTAMP     NOT NULL           Drives idle expiry
ended_at           TIMESTAMP                        NULL = active

INDEX: idx_memorization_sessions_user ON user_id
INDEX: idx_memorization_sessions_active ON last_activity_at WHERE ended_at IS NULL


TABLE: memorization_attempts - Append-only attempt log
-------------------------------------------------------------------------------
attempt_id         SERIAL        PRIMARY KEY
session_id         VARCHAR       NOT NULL
surah_number       INTEGER       NOT NULL
ayat_number        INTEGER       NOT NULL
user_input         TEXT          NOT NULL
is_correct         BOOLEAN       NOT NULL
similarity_score   FLOAT         NOT NULL
hints_used         INTEGER       DEFAULT 0
attempted_at       TIMESTAMP     NOT NULL

INDEX: idx_memorization_attempts_session ON session_id
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, func, text, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from pgvector.sqlalchemy import Vector
from dotenv import load_dotenv

from quran_assistant.config import embedding_dim_from_env
from .database import Base

load_dotenv()

EMBEDDING_DIM = embedding_dim_from_env()


class QuranVerse(Base):
    """One ayat with translation, tafsir summary, theme tags and embedding."""
    __tablename__ = "quran_verses"

    verse_id = Column(Integer, primary_key=True)

    surah_number = Column(Integer, nullable=False)
    ayat_number = Column(Integer, nullable=False)
    surah_name_latin = Column(Text, nullable=False, default="")
    surah_name_arabic = Column(Text, nullable=False, default="")

    arabic_text = Column(Text, nullable=False)
    translation = Column(Text, nullable=False)
    context_before = Column(Text)
    context_after = Column(Text)
    tafsir_summary = Column(Text)
    themes = Column(ARRAY(Text))

    # NULL = not embedded yet, excluded from semantic search
    embedding = Column(Vector(EMBEDDING_DIM))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('surah_number', 'ayat_number', name='uq_surah_ayat'),
        Index('idx_quran_verses_surah', 'surah_number'),
        Index('idx_quran_verses_embedding', 'embedding', postgresql_using='hnsw',
              postgresql_with={'m': 16, 'ef_construction': 64},
              postgresql_ops={'embedding': 'vector_cosine_ops'}),
    )

    def __repr__(self):
        return f"<QuranVerse({self.surah_number}:{self.ayat_number})>"


class ConversationContextRecord(Base):
    """Full snapshot of the verses discussed in a conversation."""
    __tablename__ = "conversation_contexts"

    conversation_id = Column(String, primary_key=True)
    discussed_verses = Column(JSONB, nullable=False, default=list)
    themes = Column(JSONB, nullable=False, default=list)
    last_updated = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_conversation_contexts_last_updated', 'last_updated'),
    )

    def __repr__(self):
        return f"<ConversationContextRecord(id={self.conversation_id})>"


class MemorizationSessionRecord(Base):
    __tablename__ = "memorization_sessions"

    session_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)

    current_surah = Column(Integer, nullable=False)
    current_ayat = Column(Integer, nullable=False)
    mode = Column(String, nullable=False, default='forward')
    difficulty = Column(String, nullable=False, default='medium')

    # Only authoritative after the session ends; live counters come from the attempt log
    total_attempts = Column(Integer, nullable=False, default=0)
    correct_attempts = Column(Integer, nullable=False, default=0)
    final_score = Column(Float, nullable=False, default=0.0)

    started_at = Column(DateTime(timezone=True), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_memorization_sessions_user', 'user_id'),
        Index('idx_memorization_sessions_active', 'last_activity_at',
              postgresql_where=text('ended_at IS NULL')),
    )

    def __repr__(self):
        return f"<MemorizationSessionRecord(id={self.session_id}, at={self.current_surah}:{self.current_ayat})>"


class MemorizationAttemptRecord(Base):
    __tablename__ = "memorization_attempts"

    attempt_id = Column(Integer, primary_key=True)
    session_id = Column(String, nullable=False)
    surah_number = Column(Integer, nullable=False)
    ayat_number = Column(Integer, nullable=False)
    user_input = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    similarity_score = Column(Float, nullable=False)
    hints_used = Column(Integer, nullable=False, default=0)
    attempted_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_memorization_attempts_session', 'session_id'),
    )

    def __repr__(self):
        return f"<MemorizationAttemptRecord(session={self.session_id}, verse={self.surah_number}:{self.ayat_number})>"
