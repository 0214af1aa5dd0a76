"""Response generators the Context Assembler delegates to.

The engine only depends on the ResponseGenerator Protocol. The Groq
implementation is provided for hosts that want an LLM-backed agent.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from groq import AsyncGroq

from ..config import EngineConfig
from ..memory import AgentMemoryStore, MemoryRecord, ResponseGenerationError

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a long-lived character who remembers the people you talk to. "
    "Answer in character, briefly, and use your memories when they are relevant."
)


@dataclass
class GenerationResult:
    """Outcome of one generator call."""

    text: str
    success: bool = True
    error: str | None = None
    response_time_ms: float = 0.0
    tokens_used: int = 0

    @classmethod
    def failure(cls, error: str, response_time_ms: float = 0.0) -> "GenerationResult":
        return cls(text="", success=False, error=error, response_time_ms=response_time_ms)


class ResponseGenerator(Protocol):
    """Produces an agent's reply for one conversation turn.

    Implementations report failure either by returning
    ``GenerationResult.failure`` or by raising ResponseGenerationError.
    """

    async def generate(
        self,
        input_content: str,
        store: AgentMemoryStore,
        context: list[MemoryRecord],
        external_context: str | None = None,
    ) -> GenerationResult:
        """Generate a reply.

        Args:
            input_content: What the actor said.
            store: The agent's memory store (read only).
            context: Memories selected for this turn, most relevant first.
            external_context: Free-form host context (location, time, ...).
        """
        ...


def format_memories_for_prompt(records: list[MemoryRecord]) -> str:
    """Format memories as a block for injection into the system prompt.

    Returns:
        XML-style memory block, or empty string if there are no records.
    """
    if not records:
        return ""

    lines = [
        f'- {r.actor_name} said: "{r.input_content}" / you replied: "{r.response_content}"'
        for r in records
    ]
    content = "\n".join(lines)

    return f"""<memory>
What you remember:
{content}
</memory>"""


class GroqResponseGenerator:
    """ResponseGenerator that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq
        from memkeeper.conversation import GroqResponseGenerator

        groq = AsyncGroq(api_key="...")
        generator = GroqResponseGenerator(groq, model="llama-3.1-70b-versatile")

        # or, with GROQ_API_KEY set and the model taken from the config
        generator = GroqResponseGenerator.from_config(config)
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        """Initialize the generator.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
            system_prompt: Base persona prompt for the agent.
        """
        self._client = client
        self._model = model
        self._system_prompt = system_prompt

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        client: AsyncGroq | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> "GroqResponseGenerator":
        """Build a generator for ``config.model``.

        A default AsyncGroq client, which reads GROQ_API_KEY, is created if
        none is given.
        """
        return cls(client or AsyncGroq(), model=config.model, system_prompt=system_prompt)

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def build_messages(
        self,
        input_content: str,
        context: list[MemoryRecord],
        external_context: str | None = None,
    ) -> list[dict[str, Any]]:
        system = self._system_prompt
        memory_block = format_memories_for_prompt(context)
        if memory_block:
            system = f"{system}\n\n{memory_block}"
        if external_context:
            system = f"{system}\n\n<context>\n{external_context}\n</context>"

        return [
            {"role": "system", "content": system},
            {"role": "user", "content": input_content},
        ]

    async def generate(
        self,
        input_content: str,
        store: AgentMemoryStore,
        context: list[MemoryRecord],
        external_context: str | None = None,
    ) -> GenerationResult:
        """Ask the model for a reply.

        Raises:
            ResponseGenerationError: If the request fails or the reply is empty.
        """
        start = time.monotonic()
        messages = self.build_messages(input_content, context, external_context)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
            )
        except Exception as e:
            logger.warning("Response generation failed for agent %s: %s", store.agent_id, e)
            raise ResponseGenerationError(f"Groq request failed: {e}") from e

        elapsed_ms = (time.monotonic() - start) * 1000
        text = response.choices[0].message.content or ""
        if not text.strip():
            raise ResponseGenerationError("Empty response")

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) or 0
        return GenerationResult(text=text, response_time_ms=elapsed_ms, tokens_used=tokens)
