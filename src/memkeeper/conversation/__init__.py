"""Conversation turns: context selection, reply generation, memory capture."""

from .assembler import (
    BUSY_MESSAGE,
    ContextAssembler,
    ContinuityBucket,
    ConversationContinuity,
    ConversationResult,
    retrieve_contextual_memories,
)
from .generator import (
    GenerationResult,
    GroqResponseGenerator,
    ResponseGenerator,
    format_memories_for_prompt,
)
from .limiter import ConversationLimiter

__all__ = [
    "BUSY_MESSAGE",
    "ContextAssembler",
    "ContinuityBucket",
    "ConversationContinuity",
    "ConversationLimiter",
    "ConversationResult",
    "GenerationResult",
    "GroqResponseGenerator",
    "ResponseGenerator",
    "format_memories_for_prompt",
    "retrieve_contextual_memories",
]
