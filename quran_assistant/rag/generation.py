"""
LLM-based generation for Quran Assistant.

Takes re-ranked grounding verses and produces an answer with QS. references.
Retrieval is done by the caller; this module only builds prompts and calls the model.
"""
from typing import List, Optional
import time

import ollama
from openai import AsyncOpenAI

from quran_assistant.logging_config import get_logger
from quran_assistant.models import RetrievalCandidate

logger = get_logger(__name__)

HISTORY_TURNS = 10

SYSTEM_PROMPT = """Kamu adalah asisten Islam yang menjawab berdasarkan Al-Quran dan Hadits.
ATURAN WAJIB:
1. Setiap jawaban HARUS menyertakan referensi ayat (QS. NamaSurah:NomorAyat)
2. Jika tidak ada referensi langsung, katakan dengan jelas
3. Tidak memberikan fatwa atau hukum fiqh tanpa referensi ulama
4. Jawab dalam bahasa yang sama dengan pertanyaan user
5. Sertakan terjemahan ayat dalam jawaban
6. Gunakan HANYA referensi yang diberikan dalam context. Jangan mengarang ayat."""

NO_GROUNDING_MESSAGE = (
    "Tidak ditemukan ayat Al-Quran yang relevan dengan pertanyaan ini. "
    "Sampaikan kepada user bahwa jawaban ini tidak didukung referensi ayat, dan jangan mengutip ayat apa pun."
)


def format_grounding(verses: List[RetrievalCandidate]) -> str:
    """Grounding block sent to the model as a system message."""
    if not verses:
        return NO_GROUNDING_MESSAGE

    blocks = []
    for candidate in verses:
        v = candidate.verse
        block = (
            f"QS. {v.surah_name_latin} {v.surah_number}:{v.ayat_number} "
            f"(Similarity: {candidate.similarity * 100:.1f}%)\n"
            f"Arab: {v.arabic_text}\n"
            f"Terjemahan: {v.translation}\n"
        )
        if v.tafsir_summary:
            block += f"Tafsir: {v.tafsir_summary}\n"
        if v.themes:
            block += f"Tema: {', '.join(v.themes)}\n"
        if v.context_before:
            block += f"Konteks Sebelum: {v.context_before}\n"
        if v.context_after:
            block += f"Konteks Sesudah: {v.context_after}\n"
        blocks.append(block)

    return "Referensi Al-Quran yang relevan:\n" + "\n\n".join(blocks)


def build_messages(
    user_message: str,
    verses: List[RetrievalCandidate],
    conversation_history: Optional[List[dict]] = None
) -> List[dict]:
    """System prompt, last 10 history turns, grounding block, then the user message."""
    messages = [{'role': 'system', 'content': SYSTEM_PROMPT}]

    # Only role/content go to the model; extra bookkeeping keys are dropped
    for msg in (conversation_history or [])[-HISTORY_TURNS:]:
        messages.append({'role': msg['role'], 'content': msg['content']})

    messages.append({'role': 'system', 'content': format_grounding(verses)})
    messages.append({'role': 'user', 'content': user_message})
    return messages


class ResponseGenerator:
    """Chat completion through a local Ollama model or OpenAI."""

    def __init__(
        self,
        use_local: bool = False,
        ollama_model: str = "llama3.1:8b",
        ollama_base_url: str = "http://localhost:11434",
        openai_model: str = "gpt-4o-mini",
        max_tokens: int = 1000,
        temperature: float = 0.3,
        ollama_client: Optional[ollama.AsyncClient] = None,
        openai_client: Optional[AsyncOpenAI] = None
    ):
        self.use_local = use_local
        self.ollama_model = ollama_model
        self.ollama_base_url = ollama_base_url
        self.openai_model = openai_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._ollama_client = ollama_client
        self._openai_client = openai_client

    @property
    def provider(self) -> str:
        return "ollama" if self.use_local else "openai"

    @property
    def model(self) -> str:
        return self.ollama_model if self.use_local else self.openai_model

    async def complete(self, messages: List[dict]) -> str:
        """Send a message list to the configured model and return the reply text."""
        logger.debug(f"Messages:\n{messages}\n")
        llm_start = time.time()
        try:
            if self.use_local:
                if self._ollama_client is None:
                    self._ollama_client = ollama.AsyncClient(host=self.ollama_base_url)
                response = await self._ollama_client.chat(
                    model=self.ollama_model,
                    messages=messages,
                    options={'temperature': self.temperature, 'num_predict': self.max_tokens}
                )
                content = response['message']['content']
            else:
                if self._openai_client is None:
                    self._openai_client = AsyncOpenAI()
                completion = await self._openai_client.chat.completions.create(
                    model=self.openai_model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature
                )
                content = completion.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"Error generating response with {self.provider}: {str(e)}", exc_info=True)
            raise

        llm_time = (time.time() - llm_start) * 1000
        logger.info(f"LLM generation time ({self.provider}/{self.model}): {llm_time:.0f}ms")
        return content

    async def generate(
        self,
        user_message: str,
        verses: List[RetrievalCandidate],
        conversation_history: Optional[List[dict]] = None
    ) -> str:
        """Generate an answer grounded in `verses` (retrieval done by caller)."""
        return await self.complete(build_messages(user_message, verses, conversation_history))
