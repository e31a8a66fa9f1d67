"""
Tests for prompt building and the LLM provider switch in ResponseGenerator.
"""
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from quran_assistant.rag.generation import (
    NO_GROUNDING_MESSAGE,
    SYSTEM_PROMPT,
    ResponseGenerator,
    build_messages,
    format_grounding,
)
from tests.fixtures import make_candidate


class TestPromptBuilding(unittest.TestCase):

    def test_format_grounding_lists_each_verse(self):
        """Test every verse appears in the grounding block."""
        block = format_grounding([make_candidate(1, 1, 0.923), make_candidate(2, 1, 0.81, tafsir_summary="Huruf muqatta'ah.", themes=["umum"])])

        assert block.startswith("Referensi Al-Quran yang relevan:\n")
        assert "QS. Al-Fatihah 1:1 (Similarity: 92.3%)" in block
        assert "Terjemahan: Dengan nama Allah" in block
        assert "QS. Al-Baqarah 2:1 (Similarity: 81.0%)" in block
        assert "Tafsir: Huruf muqatta'ah." in block
        assert "Tema: umum" in block

    def test_format_grounding_without_verses(self):
        """Test the grounding block when no verse was retrieved."""
        assert format_grounding([]) == NO_GROUNDING_MESSAGE

    def test_build_messages_order(self):
        """Test system prompt, history and user message order."""
        history = [{"role": "user", "content": "q1"}, {"role": "assistant", "content": "a1", "verse_keys": ["1:1"]}]

        messages = build_messages("q2", [make_candidate(1, 1, 0.9)], history)

        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert messages[1] == {"role": "user", "content": "q1"}
        assert messages[2] == {"role": "assistant", "content": "a1"}
        assert messages[3]["role"] == "system"
        assert "QS. Al-Fatihah 1:1" in messages[3]["content"]
        assert messages[4] == {"role": "user", "content": "q2"}

    def test_build_messages_keeps_last_ten_turns(self):
        """Test only the last ten history turns are sent."""
        history = [{"role": "user", "content": f"m{i}"} for i in range(15)]

        messages = build_messages("q", [], history)

        contents = [m["content"] for m in messages[1:-2]]
        assert contents == [f"m{i}" for i in range(5, 15)]


class TestResponseGenerator(unittest.IsolatedAsyncioTestCase):

    async def test_openai_provider(self):
        """Test generation through the OpenAI client."""
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Jawaban OpenAI"))]
        ))
        generator = ResponseGenerator(use_local=False, openai_model="gpt-4o-mini", openai_client=client)

        answer = await generator.generate("q", [make_candidate(1, 1, 0.9)])

        assert answer == "Jawaban OpenAI"
        assert generator.provider == "openai"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 1000
        assert kwargs["messages"][-1] == {"role": "user", "content": "q"}

    async def test_openai_empty_content(self):
        """Test an empty OpenAI reply is an error."""
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))]
        ))
        generator = ResponseGenerator(openai_client=client)

        assert await generator.complete([{"role": "user", "content": "q"}]) == ""

    async def test_ollama_provider(self):
        """Test generation through the Ollama client."""
        client = MagicMock()
        client.chat = AsyncMock(return_value={"message": {"content": "Jawaban lokal"}})
        generator = ResponseGenerator(use_local=True, ollama_model="llama3.1:8b", ollama_client=client)

        answer = await generator.generate("q", [])

        assert answer == "Jawaban lokal"
        assert generator.provider == "ollama"
        assert generator.model == "llama3.1:8b"
        kwargs = client.chat.call_args.kwargs
        assert kwargs["options"] == {"temperature": 0.3, "num_predict": 1000}
        assert kwargs["messages"][-2]["content"] == NO_GROUNDING_MESSAGE

    async def test_provider_errors_propagate(self):
        """Test provider errors propagate to the caller."""
        client = MagicMock()
        client.chat = AsyncMock(side_effect=ConnectionError("ollama not running"))
        generator = ResponseGenerator(use_local=True, ollama_client=client)

        with self.assertRaises(ConnectionError):
            await generator.complete([{"role": "user", "content": "q"}])


if __name__ == "__main__":
    unittest.main()
