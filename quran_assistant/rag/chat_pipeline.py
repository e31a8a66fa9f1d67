"""
One chat turn: route the message, retrieve and re-rank grounding verses,
generate the answer and record the verses used in the conversation context.

    query -> SemanticRetriever.search -> ConversationContextTracker.rerank
          -> dedupe -> top-N -> ResponseGenerator -> ConversationContextTracker.update

Retrieval failure never aborts the turn: the answer is generated without
grounding and flagged grounded=False. Rerank and update failures are logged
and absorbed.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import time

from quran_assistant.errors import ContextPersistenceFailed, EmbeddingUnavailable, VerseNotFound
from quran_assistant.logging_config import get_logger
from quran_assistant.models import RetrievalCandidate
from quran_assistant.rag.conversation_history import ConversationHistory
from quran_assistant.rag.generation import ResponseGenerator
from quran_assistant.rag.intent import (
    extract_verse_reference,
    is_memorization_attempt,
    is_memorization_message,
    is_tafsir_question,
)
from quran_assistant.rag.tafsir_mode import TafsirMode
from quran_assistant.retrieval.context_reranker import ConversationContextTracker
from quran_assistant.retrieval.semantic_search import SemanticRetriever

logger = get_logger(__name__)

HAFALAN_INSTRUCTIONS = (
    "Saya bisa membantu Anda berlatih hafalan! Untuk memulai:\n\n"
    "1. Ketik \"mulai hafalan surah X ayat Y\" untuk memulai dari ayat tertentu\n"
    "2. Atau berikan input awal ayat yang ingin Anda lanjutkan\n"
    "3. Saya akan mengevaluasi hafalan Anda dan memberikan feedback\n\n"
    "Mode hafalan tersedia: maju (forward), mundur (backward), atau acak (random)"
)


@dataclass
class ChatTurnResult:
    conversation_id: str
    answer: str
    mode: str  # "rag" | "tafsir" | "hafalan"
    grounded: bool
    verses: List[RetrievalCandidate] = field(default_factory=list)
    llm_provider: Optional[str] = None
    generation_time_ms: float = 0.0


def dedupe_by_verse(candidates: List[RetrievalCandidate]) -> List[RetrievalCandidate]:
    """Keep the first occurrence of each (surah, ayat), preserving order."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        unique.append(candidate)
    return unique


class ChatPipeline:

    def __init__(
        self,
        retriever: SemanticRetriever,
        tracker: ConversationContextTracker,
        generator: ResponseGenerator,
        history: Optional[ConversationHistory] = None,
        tafsir_mode: Optional[TafsirMode] = None,
        search_limit: int = 5,
        search_threshold: float = 0.7,
        grounding_top_n: int = 5
    ):
        self.retriever = retriever
        self.tracker = tracker
        self.generator = generator
        self.history = history or ConversationHistory()
        self.tafsir_mode = tafsir_mode
        self.search_limit = search_limit
        self.search_threshold = search_threshold
        self.grounding_top_n = grounding_top_n

    async def retrieve(self, conversation_id: str, message: str) -> List[RetrievalCandidate]:
        """
        Grounding verses for a message, context re-ranked and deduplicated.

        Returns an empty list when the query cannot be embedded.
        """
        retrieval_start = time.time()
        try:
            candidates = await self.retriever.search(message, self.search_limit, self.search_threshold)
        except EmbeddingUnavailable as e:
            logger.warning(f"Retrieval unavailable, answering without grounding: {e}")
            return []

        candidates = await self.tracker.rerank(conversation_id, candidates, message)
        grounding = dedupe_by_verse(candidates)[:self.grounding_top_n]

        retrieval_time = (time.time() - retrieval_start) * 1000
        logger.info(f"Retrieval time: {retrieval_time:.0f}ms ({len(grounding)} grounding verses)")
        return grounding

    async def _record_context(self, conversation_id: str, grounding: List[RetrievalCandidate]) -> None:
        if not grounding:
            return
        try:
            await self.tracker.update(conversation_id, grounding, base_relevance=grounding[0].similarity)
        except ContextPersistenceFailed as e:
            logger.error(f"Context update failed for {conversation_id}: {e}")

    async def _try_tafsir(self, message: str) -> Optional[str]:
        if self.tafsir_mode is None or not is_tafsir_question(message):
            return None
        reference = extract_verse_reference(message)
        if reference is None:
            return None
        try:
            return await self.tafsir_mode.answer_question(reference.surah, reference.ayat, message)
        except VerseNotFound as e:
            logger.info(f"Tafsir reference not in corpus, falling back to retrieval: {e}")
            return None

    async def answer(
        self,
        conversation_id: Optional[str],
        message: str,
        history: Optional[List[dict]] = None
    ) -> ChatTurnResult:
        """
        Answer one user message.

        Args:
            conversation_id: Existing id, or None to start a new conversation
            message: User message
            history: Prior turns; defaults to the in-memory history of the conversation

        Raises:
            ValueError: empty message
            Exception: generation errors propagate (the user message is rolled back)
        """
        if not message or not message.strip():
            raise ValueError("message must not be empty")

        logger.info(f"Received question: {message[:100]}...")
        conversation_id = self.history.get_or_create(conversation_id)
        if history is None:
            history = self.history.get_messages(conversation_id)

        # Save user message immediately, optimistic
        self.history.add_message(conversation_id, "user", message)

        try:
            generation_start = time.time()

            tafsir_answer = await self._try_tafsir(message)
            if tafsir_answer is not None:
                result = ChatTurnResult(
                    conversation_id=conversation_id,
                    answer=tafsir_answer,
                    mode="tafsir",
                    grounded=True,
                    llm_provider=self.generator.provider,
                )
            elif is_memorization_message(message) and not is_memorization_attempt(message):
                result = ChatTurnResult(
                    conversation_id=conversation_id,
                    answer=HAFALAN_INSTRUCTIONS,
                    mode="hafalan",
                    grounded=False,
                )
            else:
                grounding = await self.retrieve(conversation_id, message)
                generated = await self.generator.generate(message, grounding, history)
                result = ChatTurnResult(
                    conversation_id=conversation_id,
                    answer=generated,
                    mode="rag",
                    grounded=bool(grounding),
                    verses=grounding,
                    llm_provider=self.generator.provider,
                )
                await self._record_context(conversation_id, grounding)

            result.generation_time_ms = (time.time() - generation_start) * 1000

        except Exception as e:
            deleted_message = self.history.delete_last_message(conversation_id)
            logger.error(f"Error generating response: {str(e)}", exc_info=True)
            logger.error(f"Removing latest message: {str(deleted_message)}")
            raise

        self.history.add_message(
            conversation_id,
            "assistant",
            result.answer,
            verse_keys=[str(v.key) for v in result.verses],
        )
        logger.info(f"Chat turn ({result.mode}, grounded={result.grounded}) "
                    f"in {result.generation_time_ms:.0f}ms")
        return result
