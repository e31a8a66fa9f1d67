"""
Core data models for Quran Assistant.

These models are shared by retrieval, conversation context re-ranking,
tafsir discussion and the hafalan (memorization) drill.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Ranking compares scores at this precision so equal cosines tie
SCORE_DECIMALS = 9


class VerseKey(NamedTuple):
    """(surah, ayat) pair, the unique key of a verse in the corpus."""
    surah: int
    ayat: int

    def __str__(self) -> str:
        return f"{self.surah}:{self.ayat}"


@dataclass(frozen=True)
class Verse:
    """
    A single ayat with its translation, commentary and embedding.

    Written by the batch indexer, read-only everywhere else.
    """
    surah_number: int
    ayat_number: int
    arabic_text: str
    translation: str
    surah_name_latin: str = ""
    surah_name_arabic: str = ""
    tafsir_summary: Optional[str] = None
    context_before: Optional[str] = None
    context_after: Optional[str] = None
    themes: List[str] = field(default_factory=list)
    embedding: List[float] = field(default_factory=list, repr=False)

    @property
    def key(self) -> VerseKey:
        return VerseKey(self.surah_number, self.ayat_number)


@dataclass
class RetrievalCandidate:
    """
    A verse returned by semantic search for one query. Never persisted.

    similarity is 1 - cosine distance. context_score and final_score are
    filled in by conversation context re-ranking.
    """
    verse: Verse
    similarity: float
    context_score: Optional[float] = None
    final_score: Optional[float] = None

    @property
    def key(self) -> VerseKey:
        return self.verse.key

    @property
    def surah(self) -> int:
        return self.verse.surah_number

    @property
    def ayat(self) -> int:
        return self.verse.ayat_number

    @property
    def ranking_score(self) -> float:
        return self.final_score if self.final_score is not None else self.similarity


@dataclass
class DiscussedVerse:
    surah: int
    ayat: int
    relevance_score: float
    discussion_count: int = 1

    @property
    def key(self) -> VerseKey:
        return VerseKey(self.surah, self.ayat)


@dataclass
class ConversationContext:
    """
    Verses already discussed in one conversation, with discussion counts.

    Stored as a full snapshot; every update overwrites the previous row.
    """
    conversation_id: str
    discussed_verses: Dict[VerseKey, DiscussedVerse] = field(default_factory=dict)
    themes: Set[str] = field(default_factory=set)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.discussed_verses

    def count_in_surah(self, surah: int) -> int:
        return sum(1 for key in self.discussed_verses if key.surah == surah)

    def to_snapshot(self) -> dict:
        """JSON-serializable form used by the context stores."""
        return {
            "discussed_verses": [
                {
                    "surah": v.surah,
                    "ayat": v.ayat,
                    "relevance_score": v.relevance_score,
                    "discussion_count": v.discussion_count,
                }
                for v in self.discussed_verses.values()
            ],
            "themes": sorted(self.themes),
        }

    @classmethod
    def from_snapshot(cls, conversation_id: str, snapshot: dict, last_updated: datetime) -> "ConversationContext":
        discussed = {}
        for item in snapshot.get("discussed_verses") or []:
            verse = DiscussedVerse(
                surah=int(item["surah"]),
                ayat=int(item["ayat"]),
                relevance_score=float(item.get("relevance_score", 0.0)),
                discussion_count=int(item.get("discussion_count", 1)),
            )
            discussed[verse.key] = verse
        return cls(
            conversation_id=conversation_id,
            discussed_verses=discussed,
            themes=set(snapshot.get("themes") or []),
            last_updated=last_updated,
        )


class TraversalMode(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    RANDOM = "random"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class FeedbackTier(str, Enum):
    PERFECT = "perfect"
    VERY_GOOD = "very_good"
    GOOD = "good"
    CLOSE = "close"
    NEEDS_WORK = "needs_work"
    INCORRECT = "incorrect"


@dataclass
class MemorizationSession:
    """One active hafalan drill. The durable row is the source of truth."""
    session_id: str
    user_id: str
    current_surah: int
    current_ayat: int
    mode: TraversalMode
    difficulty: Difficulty
    total_attempts: int = 0
    correct_attempts: int = 0
    score: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None


@dataclass(frozen=True)
class MemorizationAttempt:
    """Append-only log record of one recitation attempt."""
    session_id: str
    surah: int
    ayat: int
    user_input: str
    is_correct: bool
    similarity_score: float
    hints_used: int = 0
    attempted_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> VerseKey:
        return VerseKey(self.surah, self.ayat)


@dataclass
class VerseView:
    """What the drill shows the user for the verse to recite."""
    surah: int
    ayat: int
    arabic_text: str
    translation: str
    surah_name: str = ""
    hint: Optional[str] = None


@dataclass
class Evaluation:
    is_correct: bool
    similarity_score: float
    feedback_tier: FeedbackTier
    feedback: str
    correct_text: str
    next_verse: Optional[VerseView] = None


@dataclass
class SessionStats:
    total_attempts: int
    correct_attempts: int
    accuracy: float
    average_score: float
    current_progress: float
