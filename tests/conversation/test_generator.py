"""Tests for response generators."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from memkeeper.conversation import GenerationResult, GroqResponseGenerator, format_memories_for_prompt
from memkeeper.config import EngineConfig
from memkeeper.memory import AgentMemoryStore, ResponseGenerationError


def groq_returning(content, total_tokens=42) -> MagicMock:
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content
    mock_response.usage.total_tokens = total_tokens

    mock_groq = MagicMock()
    mock_groq.chat.completions.create = AsyncMock(return_value=mock_response)
    return mock_groq


class TestFormatMemories:
    """Tests for prompt formatting."""

    def test_empty(self):
        assert format_memories_for_prompt([]) == ""

    def test_block(self, make_record):
        block = format_memories_for_prompt([make_record(actor_id="alex", text="nice sword")])

        assert block.startswith("<memory>")
        assert block.endswith("</memory>")
        assert 'Alex said: "nice sword"' in block
        assert 'you replied: "reply to nice sword"' in block


class TestGenerationResult:
    def test_failure(self):
        result = GenerationResult.failure("timeout", 12.0)
        assert not result.success
        assert result.text == ""
        assert result.error == "timeout"
        assert result.response_time_ms == 12.0


class TestGroqResponseGenerator:
    """Tests for the Groq-backed generator."""

    def test_default_model(self):
        assert GroqResponseGenerator(MagicMock()).model == "llama-3.1-70b-versatile"

    def test_from_config_uses_configured_model(self):
        client = MagicMock()
        generator = GroqResponseGenerator.from_config(EngineConfig(model="test-model"), client)

        assert generator.model == "test-model"

    def test_from_config_default_client(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "test-key")
        assert GroqResponseGenerator.from_config(EngineConfig()).model == "llama-3.1-70b-versatile"

    def test_build_messages_without_context(self):
        generator = GroqResponseGenerator(MagicMock(), system_prompt="Be a baker.")
        messages = generator.build_messages("Hi", [])

        assert messages == [
            {"role": "system", "content": "Be a baker."},
            {"role": "user", "content": "Hi"},
        ]

    def test_build_messages_with_memories_and_context(self, make_record):
        generator = GroqResponseGenerator(MagicMock(), system_prompt="Be a baker.")
        messages = generator.build_messages("Hi", [make_record()], external_context="It is raining.")

        system = messages[0]["content"]
        assert system.startswith("Be a baker.")
        assert "<memory>" in system
        assert "<context>\nIt is raining.\n</context>" in system

    @pytest.mark.asyncio
    async def test_generate_success(self):
        mock_groq = groq_returning("Fresh bread today!")
        generator = GroqResponseGenerator(mock_groq, model="test-model")

        result = await generator.generate("Hello", AgentMemoryStore(agent_id="baker"), [])

        assert result.success
        assert result.text == "Fresh bread today!"
        assert result.tokens_used == 42
        call = mock_groq.chat.completions.create.call_args
        assert call.kwargs["model"] == "test-model"
        assert call.kwargs["messages"][-1] == {"role": "user", "content": "Hello"}

    @pytest.mark.asyncio
    async def test_generate_empty_response_raises(self):
        generator = GroqResponseGenerator(groq_returning(None))

        with pytest.raises(ResponseGenerationError, match="Empty response"):
            await generator.generate("Hello", AgentMemoryStore(agent_id="baker"), [])

    @pytest.mark.asyncio
    async def test_generate_api_error_raises(self):
        mock_groq = MagicMock()
        mock_groq.chat.completions.create = AsyncMock(side_effect=Exception("API Error"))
        generator = GroqResponseGenerator(mock_groq)

        with pytest.raises(ResponseGenerationError, match="API Error") as exc_info:
            await generator.generate("Hello", AgentMemoryStore(agent_id="baker"), [])

        assert str(exc_info.value.__cause__) == "API Error"
