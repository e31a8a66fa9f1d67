"""
HTTP API for Quran Assistant.

Components are built once by build_services() and stored on app.state;
handlers read them from there instead of module-level singletons.
"""
from dataclasses import asdict, dataclass
from typing import List, Optional
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from quran_assistant import __version__
from quran_assistant.config import Settings, load_settings
from quran_assistant.db.stores import ContextStore, SessionStore, VerseStore
from quran_assistant.errors import EmbeddingUnavailable, InvalidRange, SessionNotFound, VerseNotFound
from quran_assistant.hafalan.session_engine import MemorizationSessionEngine
from quran_assistant.ingestion.embeddings import EmbeddingService
from quran_assistant.logging_config import get_logger, setup_logging
from quran_assistant.models import Difficulty, RetrievalCandidate, TraversalMode
from quran_assistant.rag.chat_pipeline import ChatPipeline
from quran_assistant.rag.conversation_history import ConversationHistory
from quran_assistant.rag.generation import ResponseGenerator
from quran_assistant.rag.tafsir_mode import TafsirMode
from quran_assistant.retrieval.context_reranker import ConversationContextTracker
from quran_assistant.retrieval.semantic_search import SemanticRetriever

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    verse_store: VerseStore
    context_store: ContextStore
    session_store: SessionStore
    retriever: SemanticRetriever
    tracker: ConversationContextTracker
    chat: ChatPipeline
    tafsir: TafsirMode
    hafalan: MemorizationSessionEngine


def build_services(settings: Settings) -> Services:
    """Construct every component once, wired explicitly."""
    if settings.use_memory_store:
        from quran_assistant.db.memory_stores import InMemoryContextStore, InMemorySessionStore, InMemoryVerseStore
        logger.info("Using in-memory stores (development mode)")
        verse_store = InMemoryVerseStore()
        context_store = InMemoryContextStore()
        session_store = InMemorySessionStore()
    else:
        from quran_assistant.db.database import create_db_engine
        from quran_assistant.db.sql_stores import SqlContextStore, SqlSessionStore, SqlVerseStore
        engine = create_db_engine(settings.database_url)
        verse_store = SqlVerseStore(engine)
        context_store = SqlContextStore(engine)
        session_store = SqlSessionStore(engine)

    embedder = EmbeddingService(
        provider=settings.embedding_provider,
        model=settings.embedding_model,
        base_url=settings.ollama_base_url,
        timeout_seconds=settings.embedding_timeout_seconds,
        expected_dim=settings.embedding_dim,
    )
    generator = ResponseGenerator(
        use_local=settings.use_local_llm,
        ollama_model=settings.ollama_model,
        ollama_base_url=settings.ollama_base_url,
        openai_model=settings.openai_chat_model,
    )

    retriever = SemanticRetriever(verse_store, embedder)
    tracker = ConversationContextTracker(context_store)
    tafsir = TafsirMode(verse_store, retriever, generator)
    chat = ChatPipeline(
        retriever,
        tracker,
        generator,
        history=ConversationHistory(max_age_seconds=3600),
        tafsir_mode=tafsir,
        search_limit=settings.search_limit,
        search_threshold=settings.search_threshold,
        grounding_top_n=settings.grounding_top_n,
    )
    hafalan = MemorizationSessionEngine(
        verse_store,
        session_store,
        idle_ttl_seconds=settings.session_idle_ttl_seconds,
    )

    return Services(
        settings=settings,
        verse_store=verse_store,
        context_store=context_store,
        session_store=session_store,
        retriever=retriever,
        tracker=tracker,
        chat=chat,
        tafsir=tafsir,
        hafalan=hafalan,
    )


# ----------------------------------------------------------------------
# Request / response models
# ----------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str
    limit: int = Field(5, gt=0)
    threshold: float = Field(0.7, ge=0.0, le=1.0)

class VerseResult(BaseModel):
    surah: int
    ayat: int
    surah_name: str
    arabic_text: str
    translation: str
    tafsir_summary: Optional[str] = None
    themes: List[str] = []
    similarity: float
    context_score: Optional[float] = None
    final_score: Optional[float] = None

class SearchResponse(BaseModel):
    query: str
    results: List[VerseResult]
    search_time_ms: float

class ChatRequest(BaseModel):
    message: str
    conversation_id: Optional[str] = None

class ChatResponse(BaseModel):
    conversation_id: str
    answer: str
    mode: str
    grounded: bool
    verses: List[VerseResult]
    llm_provider: Optional[str] = None
    generation_time_ms: float

class DiscussedVerseResponse(BaseModel):
    surah: int
    ayat: int
    relevance_score: float
    discussion_count: int

class ConversationContextResponse(BaseModel):
    conversation_id: str
    discussed_verses: List[DiscussedVerseResponse]
    themes: List[str]

class TafsirStartRequest(BaseModel):
    surah: int
    ayat: int

class TafsirQuestionRequest(BaseModel):
    surah: int
    ayat: int
    question: str

class HafalanStartRequest(BaseModel):
    user_id: str
    surah: int
    ayat: int = 1
    mode: TraversalMode = TraversalMode.FORWARD
    difficulty: Difficulty = Difficulty.MEDIUM

class VerseViewResponse(BaseModel):
    surah: int
    ayat: int
    arabic_text: str
    translation: str
    surah_name: str
    hint: Optional[str] = None

class HafalanStartResponse(BaseModel):
    session_id: str
    user_id: str
    mode: TraversalMode
    difficulty: Difficulty
    current_verse: VerseViewResponse

class HafalanEvaluateRequest(BaseModel):
    session_id: str
    user_input: str
    surah: int
    ayat: int
    hints_used: int = Field(0, ge=0)

class EvaluationResponse(BaseModel):
    is_correct: bool
    similarity_score: float
    feedback_tier: str
    feedback: str
    correct_text: str
    next_verse: Optional[VerseViewResponse] = None

class SessionStatsResponse(BaseModel):
    total_attempts: int
    correct_attempts: int
    accuracy: float
    average_score: float
    current_progress: float

class HafalanEndRequest(BaseModel):
    session_id: str


def _verse_result(candidate: RetrievalCandidate) -> VerseResult:
    v = candidate.verse
    return VerseResult(
        surah=v.surah_number,
        ayat=v.ayat_number,
        surah_name=v.surah_name_latin,
        arabic_text=v.arabic_text,
        translation=v.translation,
        tafsir_summary=v.tafsir_summary,
        themes=list(v.themes),
        similarity=candidate.similarity,
        context_score=candidate.context_score,
        final_score=candidate.final_score,
    )


# ----------------------------------------------------------------------
# App
# ----------------------------------------------------------------------

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Prebuilt components (tests pass in-memory ones). When None,
            settings are loaded from the environment and services built here.
    """
    if services is None:
        settings = load_settings()
        setup_logging(level=settings.log_level, log_file=settings.log_file)
        services = build_services(settings)

    app = FastAPI(title="Quran Assistant API", version=__version__)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFound)
    async def session_not_found_handler(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(VerseNotFound)
    async def verse_not_found_handler(request: Request, exc: VerseNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidRange)
    async def invalid_range_handler(request: Request, exc: InvalidRange):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(EmbeddingUnavailable)
    async def embedding_unavailable_handler(request: Request, exc: EmbeddingUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        s = get_services(request)
        try:
            corpus = await s.verse_store.population_status()
        except Exception as e:
            logger.error(f"Health check could not read the verse store: {e}")
            return JSONResponse(status_code=503, content={"status": "unhealthy", "detail": str(e)})
        return {"status": "healthy", "message": "Quran Assistant API is running", "corpus": corpus}

    @app.post("/search", response_model=SearchResponse)
    async def search(request: Request, body: SearchRequest):
        s = get_services(request)
        search_start = time.time()
        candidates = await s.retriever.search(body.query, body.limit, body.threshold)
        return SearchResponse(
            query=body.query,
            results=[_verse_result(c) for c in candidates],
            search_time_ms=(time.time() - search_start) * 1000,
        )

    @app.post("/chat", response_model=ChatResponse)
    async def send_message(request: Request, body: ChatRequest):
        """Send a message and get a verse-grounded answer"""
        s = get_services(request)
        try:
            result = await s.chat.answer(body.conversation_id, body.message)
        except ValueError:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Error generating response: {str(e)}")

        return ChatResponse(
            conversation_id=result.conversation_id,
            answer=result.answer,
            mode=result.mode,
            grounded=result.grounded,
            verses=[_verse_result(v) for v in result.verses],
            llm_provider=result.llm_provider,
            generation_time_ms=result.generation_time_ms,
        )

    @app.get("/conversations/{conversation_id}/context", response_model=ConversationContextResponse)
    async def get_conversation_context(request: Request, conversation_id: str):
        s = get_services(request)
        context = await s.tracker.get_context(conversation_id)
        snapshot = context.to_snapshot()
        return ConversationContextResponse(
            conversation_id=conversation_id,
            discussed_verses=snapshot["discussed_verses"],
            themes=snapshot["themes"],
        )

    @app.post("/tafsir/start")
    async def start_tafsir(request: Request, body: TafsirStartRequest):
        s = get_services(request)
        discussion = await s.tafsir.start_discussion(body.surah, body.ayat)
        return asdict(discussion)

    @app.post("/tafsir/question")
    async def tafsir_question(request: Request, body: TafsirQuestionRequest):
        s = get_services(request)
        answer = await s.tafsir.answer_question(body.surah, body.ayat, body.question)
        return {"surah": body.surah, "ayat": body.ayat, "answer": answer}

    @app.post("/hafalan/start", response_model=HafalanStartResponse)
    async def start_hafalan(request: Request, body: HafalanStartRequest):
        s = get_services(request)
        session = await s.hafalan.start(body.user_id, body.surah, body.ayat, body.mode, body.difficulty)
        current = await s.hafalan.get_current_verse(session.session_id)
        return HafalanStartResponse(
            session_id=session.session_id,
            user_id=session.user_id,
            mode=session.mode,
            difficulty=session.difficulty,
            current_verse=VerseViewResponse(**asdict(current)),
        )

    @app.get("/hafalan/next/{session_id}", response_model=VerseViewResponse)
    async def next_verse(request: Request, session_id: str):
        s = get_services(request)
        view = await s.hafalan.get_next_verse(session_id)
        return VerseViewResponse(**asdict(view))

    @app.post("/hafalan/evaluate", response_model=EvaluationResponse)
    async def evaluate(request: Request, body: HafalanEvaluateRequest):
        s = get_services(request)
        evaluation = await s.hafalan.evaluate_attempt(
            body.session_id, body.user_input, body.surah, body.ayat, body.hints_used
        )
        return EvaluationResponse(
            is_correct=evaluation.is_correct,
            similarity_score=evaluation.similarity_score,
            feedback_tier=evaluation.feedback_tier.value,
            feedback=evaluation.feedback,
            correct_text=evaluation.correct_text,
            next_verse=VerseViewResponse(**asdict(evaluation.next_verse)) if evaluation.next_verse else None,
        )

    @app.get("/hafalan/stats/{session_id}", response_model=SessionStatsResponse)
    async def session_stats(request: Request, session_id: str):
        s = get_services(request)
        stats = await s.hafalan.get_session_stats(session_id)
        return SessionStatsResponse(**asdict(stats))

    @app.post("/hafalan/end")
    async def end_hafalan(request: Request, body: HafalanEndRequest):
        s = get_services(request)
        session = await s.hafalan.end(body.session_id)
        return {
            "session_id": session.session_id,
            "total_attempts": session.total_attempts,
            "correct_attempts": session.correct_attempts,
            "ended_at": session.ended_at.isoformat(),
        }

    return app
