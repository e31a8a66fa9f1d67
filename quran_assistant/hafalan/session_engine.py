"""
Hafalan (memorization) drill controller.

Session lifecycle: start -> active (any number of get_next_verse / evaluate_attempt)
-> ended (explicit end or idle expiry). Ended sessions raise SessionNotFound.

The session store is the source of truth. The in-memory table is only a cache:
on a miss the session is rebuilt from its durable row, with counters recomputed
from the append-only attempt log, so a process restart does not lose drills.
Calls for the same session id are serialized with a per-session asyncio.Lock.
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple
import asyncio
import random
import uuid

from quran_assistant.db.stores import SessionStore, VerseStore
from quran_assistant.errors import InvalidRange, SessionNotFound, VerseNotFound
from quran_assistant.hafalan.scoring import similarity_score
from quran_assistant.logging_config import get_logger
from quran_assistant.models import (
    Difficulty,
    Evaluation,
    FeedbackTier,
    MemorizationAttempt,
    MemorizationSession,
    SessionStats,
    TraversalMode,
    Verse,
    VerseView,
    utcnow,
)
from quran_assistant.quran_reference import SURAH_COUNT, fallback_verse_count, is_valid_surah

logger = get_logger(__name__)

PASS_THRESHOLDS: Dict[Difficulty, float] = {
    Difficulty.EASY: 0.7,
    Difficulty.MEDIUM: 0.8,
    Difficulty.HARD: 0.9,
}

FEEDBACK_MESSAGES: Dict[FeedbackTier, str] = {
    FeedbackTier.PERFECT: "Sempurna! Hafalan Anda sangat akurat.",
    FeedbackTier.VERY_GOOD: "Bagus! Hafalan Anda sudah sangat baik.",
    FeedbackTier.GOOD: "Benar! Hafalan Anda sudah cukup baik.",
    FeedbackTier.CLOSE: "Hampir benar! Perhatikan beberapa kata kunci.",
    FeedbackTier.NEEDS_WORK: "Belum tepat. Coba perhatikan struktur ayatnya.",
    FeedbackTier.INCORRECT: "Belum benar. Silakan coba lagi dengan lebih teliti.",
}

MAX_CACHED_SESSIONS = 100


def feedback_tier(score: float, is_correct: bool) -> FeedbackTier:
    if is_correct:
        if score >= 0.95:
            return FeedbackTier.PERFECT
        if score >= 0.9:
            return FeedbackTier.VERY_GOOD
        return FeedbackTier.GOOD
    if score >= 0.6:
        return FeedbackTier.CLOSE
    if score >= 0.4:
        return FeedbackTier.NEEDS_WORK
    return FeedbackTier.INCORRECT


def build_hint(difficulty: Difficulty, surah_name: str, ayat: int) -> Optional[str]:
    if difficulty == Difficulty.EASY:
        return f"Surah {surah_name}, ayat ke-{ayat}"
    if difficulty == Difficulty.MEDIUM:
        return f"Surah {surah_name}"
    return None


class MemorizationSessionEngine:
    """
    Drives hafalan sessions: verse traversal, attempt evaluation and statistics.

    Args:
        verse_store: canonical verse text
        session_store: durable sessions and attempt log
        idle_ttl_seconds: sessions idle longer than this are finalized and evicted
        clock: returns the current aware datetime (injectable for tests)
        rng: random source for random traversal (injectable for tests)
    """

    def __init__(
        self,
        verse_store: VerseStore,
        session_store: SessionStore,
        idle_ttl_seconds: int = 2 * 3600,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None
    ):
        self.verse_store = verse_store
        self.session_store = session_store
        self.idle_ttl = timedelta(seconds=idle_ttl_seconds)
        self.clock = clock
        self.rng = rng or random.Random()
        self.sessions: Dict[str, MemorizationSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    # ------------------------------------------------------------------
    # Session lookup
    # ------------------------------------------------------------------

    async def _rebuild(self, session_id: str) -> Optional[MemorizationSession]:
        session = await self.session_store.load_session(session_id)
        if session is None or session.is_ended:
            return session

        attempts = await self.session_store.list_attempts(session_id)
        session.total_attempts = len(attempts)
        session.correct_attempts = sum(1 for a in attempts if a.is_correct)
        session.score = sum(a.similarity_score for a in attempts)
        logger.info(f"Rebuilt session {session_id} from storage ({len(attempts)} attempts)")
        return session

    async def _get_active(self, session_id: str) -> MemorizationSession:
        """Cached or rebuilt active session. Dead ids also drop their lock."""
        session = self.sessions.get(session_id)
        if session is None:
            session = await self._rebuild(session_id)
            if session is None:
                self._locks.pop(session_id, None)
                raise SessionNotFound(session_id)
            if session.is_ended:
                self._locks.pop(session_id, None)
                raise SessionNotFound(session_id, reason="ended")
            self.sessions[session_id] = session

        if self.clock() - session.last_activity_at > self.idle_ttl:
            await self._finalize(session)
            self._locks.pop(session_id, None)
            raise SessionNotFound(session_id, reason="expired")

        return session

    async def _finalize(self, session: MemorizationSession) -> None:
        ended_at = self.clock()
        await self.session_store.finalize_session(
            session.session_id,
            session.total_attempts,
            session.correct_attempts,
            session.score,
            ended_at,
        )
        session.ended_at = ended_at
        self.sessions.pop(session.session_id, None)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def _verse_count(self, surah: int) -> int:
        try:
            count = await self.verse_store.count_verses_in_surah(surah)
        except Exception as e:
            logger.warning(f"Verse count lookup failed for surah {surah}, using reference table: {e}")
            return fallback_verse_count(surah)
        return count or fallback_verse_count(surah)

    async def _next_position(self, session: MemorizationSession) -> Tuple[int, int]:
        surah, ayat = session.current_surah, session.current_ayat

        if session.mode == TraversalMode.RANDOM:
            count = await self._verse_count(surah)
            return surah, self.rng.randint(1, max(count, 1))

        if session.mode == TraversalMode.FORWARD:
            count = await self._verse_count(surah)
            if ayat + 1 <= count:
                return surah, ayat + 1
            if surah < SURAH_COUNT:
                return surah + 1, 1
            return surah, ayat

        # backward
        if ayat - 1 >= 1:
            return surah, ayat - 1
        if surah > 1:
            return surah - 1, await self._verse_count(surah - 1)
        return 1, 1

    async def _lookup(self, surah: int, ayat: int) -> Verse:
        verse = await self.verse_store.find_by_key(surah, ayat)
        if verse is None:
            raise VerseNotFound(surah, ayat)
        return verse

    def _view(self, session: MemorizationSession, verse: Verse) -> VerseView:
        return VerseView(
            surah=verse.surah_number,
            ayat=verse.ayat_number,
            arabic_text=verse.arabic_text,
            translation=verse.translation,
            surah_name=verse.surah_name_latin,
            hint=build_hint(session.difficulty, verse.surah_name_latin, verse.ayat_number),
        )

    async def _advance(self, session: MemorizationSession) -> VerseView:
        surah, ayat = await self._next_position(session)
        verse = await self._lookup(surah, ayat)

        now = self.clock()
        await self.session_store.update_session_cursor(session.session_id, surah, ayat, now)
        session.current_surah = surah
        session.current_ayat = ayat
        session.last_activity_at = now
        return self._view(session, verse)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        user_id: str,
        start_surah: int,
        start_ayat: int = 1,
        mode: TraversalMode = TraversalMode.FORWARD,
        difficulty: Difficulty = Difficulty.MEDIUM
    ) -> MemorizationSession:
        """
        Create a session positioned at (start_surah, start_ayat).

        Raises:
            InvalidRange: surah outside 1..114 or ayat below 1
            ValueError: unknown mode or difficulty
        """
        if not is_valid_surah(start_surah):
            raise InvalidRange(f"Surah must be between 1 and {SURAH_COUNT}, got {start_surah}")
        if start_ayat < 1:
            raise InvalidRange(f"Ayat must be at least 1, got {start_ayat}")

        mode = TraversalMode(mode)
        difficulty = Difficulty(difficulty)

        if len(self.sessions) > MAX_CACHED_SESSIONS:
            await self.expire_idle_sessions()

        now = self.clock()
        session = MemorizationSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            current_surah=start_surah,
            current_ayat=start_ayat,
            mode=mode,
            difficulty=difficulty,
            started_at=now,
            last_activity_at=now,
        )
        await self.session_store.create_session(session)
        self.sessions[session.session_id] = session

        logger.info(f"Started hafalan session {session.session_id} for user {user_id} "
                    f"at {start_surah}:{start_ayat} ({mode.value}, {difficulty.value})")
        return session

    async def get_current_verse(self, session_id: str) -> VerseView:
        """The verse at the session cursor, without moving it."""
        async with self._lock_for(session_id):
            session = await self._get_active(session_id)
            verse = await self._lookup(session.current_surah, session.current_ayat)
            return self._view(session, verse)

    async def get_next_verse(self, session_id: str) -> VerseView:
        """
        Move the cursor per the session's traversal mode and return the verse there.

        Raises:
            SessionNotFound: unknown, ended or expired session
            VerseNotFound: the resolved position is not in the corpus (cursor unchanged)
        """
        async with self._lock_for(session_id):
            session = await self._get_active(session_id)
            return await self._advance(session)

    async def evaluate_attempt(
        self,
        session_id: str,
        user_input: str,
        surah: int,
        ayat: int,
        hints_used: int = 0
    ) -> Evaluation:
        """
        Score a recitation of (surah, ayat) and record it.

        A passing attempt also advances the cursor and returns the next verse.

        Raises:
            SessionNotFound: unknown, ended or expired session
            VerseNotFound: (surah, ayat) is not in the corpus
        """
        if hints_used < 0:
            raise ValueError("hints_used must not be negative")

        async with self._lock_for(session_id):
            session = await self._get_active(session_id)
            verse = await self._lookup(surah, ayat)

            score = similarity_score(user_input, verse.arabic_text)
            is_correct = score >= PASS_THRESHOLDS[session.difficulty]

            attempt = MemorizationAttempt(
                session_id=session_id,
                surah=surah,
                ayat=ayat,
                user_input=user_input,
                is_correct=is_correct,
                similarity_score=score,
                hints_used=hints_used,
                attempted_at=self.clock(),
            )
            await self.session_store.append_attempt(attempt)

            session.total_attempts += 1
            if is_correct:
                session.correct_attempts += 1
            session.score += score
            session.last_activity_at = attempt.attempted_at

            tier = feedback_tier(score, is_correct)

            next_verse = None
            if is_correct:
                try:
                    next_verse = await self._advance(session)
                except VerseNotFound as e:
                    logger.warning(f"No next verse for session {session_id}: {e}")

            logger.info(f"Session {session_id} attempt {surah}:{ayat}: "
                        f"score={score:.3f} correct={is_correct}")

            return Evaluation(
                is_correct=is_correct,
                similarity_score=score,
                feedback_tier=tier,
                feedback=FEEDBACK_MESSAGES[tier],
                correct_text=verse.arabic_text,
                next_verse=next_verse,
            )

    async def get_session_stats(self, session_id: str) -> SessionStats:
        async with self._lock_for(session_id):
            session = await self._get_active(session_id)
            attempts = await self.session_store.list_attempts(session_id)

        total = session.total_attempts
        distinct_verses = len({a.key for a in attempts})
        return SessionStats(
            total_attempts=total,
            correct_attempts=session.correct_attempts,
            accuracy=(session.correct_attempts / total * 100) if total else 0.0,
            average_score=(session.score / total) if total else 0.0,
            current_progress=float(min(distinct_verses * 10, 100)),
        )

    async def end(self, session_id: str) -> MemorizationSession:
        """Flush final counters, stamp ended_at and evict. The id is invalid afterwards."""
        async with self._lock_for(session_id):
            session = await self._get_active(session_id)
            await self._finalize(session)
        self._locks.pop(session_id, None)

        logger.info(f"Ended hafalan session {session_id}: "
                    f"{session.correct_attempts}/{session.total_attempts} correct")
        return session

    async def expire_idle_sessions(self) -> int:
        """Finalize and evict every active session idle longer than the TTL. Returns the count."""
        idle_before = self.clock() - self.idle_ttl
        session_ids = set(await self.session_store.list_idle_session_ids(idle_before))
        session_ids.update(
            sid for sid, s in self.sessions.items() if s.last_activity_at < idle_before
        )

        expired = 0
        for session_id in session_ids:
            async with self._lock_for(session_id):
                session = self.sessions.get(session_id) or await self._rebuild(session_id)
                if session is None or session.is_ended or session.last_activity_at >= idle_before:
                    continue
                await self._finalize(session)
            self._locks.pop(session_id, None)
            expired += 1

        if expired:
            logger.info(f"Expired {expired} idle hafalan sessions")
        return expired
