"""
Conversation context tracking and re-ranking.

Each conversation remembers which verses it has already discussed. Candidates
that continue the discussion get a small, capped boost on top of their raw
similarity:

    context_score = min(0.1 * discussion_count, 0.3)   (exact verse seen before)
                  + 0.05 * verses already discussed in the same surah
    final_score   = similarity + context_score

Contexts are persisted as full snapshots. Two turns racing on the same
conversation are last-write-wins: the later save overwrites the earlier one.
"""
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple, Union
import time

from quran_assistant.db.stores import ContextStore
from quran_assistant.errors import ContextPersistenceFailed
from quran_assistant.logging_config import get_logger
from quran_assistant.models import (
    SCORE_DECIMALS,
    ConversationContext,
    DiscussedVerse,
    RetrievalCandidate,
    Verse,
    VerseKey,
    utcnow,
)

logger = get_logger(__name__)

DISCUSSION_BOOST_PER_COUNT = 0.1
DISCUSSION_BOOST_CAP = 0.3
SAME_SURAH_BOOST = 0.05

UsedVerse = Union[Verse, RetrievalCandidate, VerseKey, Tuple[int, int]]


def compute_context_score(context: ConversationContext, surah: int, ayat: int) -> float:
    """Boost for one candidate given the conversation history."""
    score = 0.0
    discussed = context.discussed_verses.get(VerseKey(surah, ayat))
    if discussed is not None:
        score += min(DISCUSSION_BOOST_PER_COUNT * discussed.discussion_count, DISCUSSION_BOOST_CAP)
    score += SAME_SURAH_BOOST * context.count_in_surah(surah)
    return score


def _as_key(item: UsedVerse) -> VerseKey:
    if isinstance(item, (Verse, RetrievalCandidate)):
        return item.key
    surah, ayat = item
    return VerseKey(int(surah), int(ayat))


def _themes_of(item: UsedVerse) -> List[str]:
    if isinstance(item, RetrievalCandidate):
        return list(item.verse.themes)
    if isinstance(item, Verse):
        return list(item.themes)
    return []


class ConversationContextTracker:
    """Remembers discussed verses per conversation and re-ranks candidates with that history."""

    def __init__(self, context_store: ContextStore):
        self.context_store = context_store

    async def _load(self, conversation_id: str) -> Optional[ConversationContext]:
        try:
            return await self.context_store.load_context(conversation_id)
        except Exception as e:
            raise ContextPersistenceFailed(f"Could not load context for {conversation_id}: {e}") from e

    async def get_context(self, conversation_id: str) -> ConversationContext:
        """Stored context, or a fresh empty one (not persisted until the first update)."""
        context = await self._load(conversation_id)
        if context is None:
            context = ConversationContext(conversation_id=conversation_id)
        return context

    async def rerank(
        self,
        conversation_id: str,
        candidates: List[RetrievalCandidate],
        query: str = ""
    ) -> List[RetrievalCandidate]:
        """
        Re-order candidates by similarity + context boost.

        An empty context returns the input list untouched. Any failure is logged
        and the original list is returned, so re-ranking never breaks a chat turn.
        """
        if not candidates:
            return candidates

        try:
            rerank_start = time.time()
            context = await self.get_context(conversation_id)
            if context.is_empty:
                return candidates

            rescored = []
            for candidate in candidates:
                context_score = compute_context_score(context, candidate.surah, candidate.ayat)
                rescored.append(RetrievalCandidate(
                    verse=candidate.verse,
                    similarity=candidate.similarity,
                    context_score=context_score,
                    final_score=candidate.similarity + context_score,
                ))

            # sorted() is stable: equal final scores keep their incoming order
            reranked = sorted(rescored, key=lambda c: round(c.final_score, SCORE_DECIMALS), reverse=True)

            rerank_time = (time.time() - rerank_start) * 1000
            logger.info(f"  Context rerank time: {rerank_time:.0f}ms "
                        f"({len(context.discussed_verses)} discussed verses)")
            return reranked

        except Exception as e:
            logger.warning(f"Context rerank failed for {conversation_id}, keeping original order: {e}")
            return candidates

    async def update(
        self,
        conversation_id: str,
        used_verses: Iterable[UsedVerse],
        base_relevance: float = 1.0,
        themes: Optional[Iterable[str]] = None
    ) -> ConversationContext:
        """
        Record verses used in a turn and overwrite the stored snapshot.

        Known verses get discussion_count + 1 and relevance max(existing, base_relevance);
        new verses start at discussion_count 1. Theme tags of the used verses (and any
        `themes` passed in) are merged into the context.

        Raises:
            ContextPersistenceFailed: when the context cannot be loaded or saved
        """
        used = list(used_verses)
        context = await self.get_context(conversation_id)

        for item in used:
            key = _as_key(item)
            existing = context.discussed_verses.get(key)
            if existing is not None:
                existing.discussion_count += 1
                existing.relevance_score = max(existing.relevance_score, base_relevance)
            else:
                context.discussed_verses[key] = DiscussedVerse(
                    surah=key.surah,
                    ayat=key.ayat,
                    relevance_score=base_relevance,
                )
            context.themes.update(_themes_of(item))

        if themes:
            context.themes.update(themes)
        context.last_updated = utcnow()

        try:
            await self.context_store.save_context(context)
        except Exception as e:
            raise ContextPersistenceFailed(f"Could not save context for {conversation_id}: {e}") from e

        logger.debug(f"Context {conversation_id} now tracks {len(context.discussed_verses)} verses")
        return context

    async def cleanup_old_contexts(self, max_age_days: int = 30) -> int:
        """Delete contexts not updated within max_age_days. Returns the number removed."""
        cutoff = utcnow() - timedelta(days=max_age_days)
        try:
            removed = await self.context_store.delete_contexts_older_than(cutoff)
        except Exception as e:
            raise ContextPersistenceFailed(f"Context retention sweep failed: {e}") from e
        logger.info(f"Removed {removed} conversation contexts older than {max_age_days} days")
        return removed
