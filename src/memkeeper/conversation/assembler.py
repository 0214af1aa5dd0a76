"""Context selection and memory capture around a conversation turn."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ..config import EngineConfig
from ..logging import JSONLLogger
from ..memory import (
    Actor,
    AgentMemoryStore,
    AgentNotFoundError,
    CorruptDataError,
    InteractionKind,
    KeyedLock,
    MemoryRecord,
    RecordStore,
    ResponseGenerationError,
    StoreIOError,
    now_ms,
    validate_agent_id,
)
from .generator import GenerationResult, ResponseGenerator
from .limiter import ConversationLimiter

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

BUSY_MESSAGE = "Too many conversations active"


class ContinuityBucket(Enum):
    """How long ago an actor last spoke to an agent."""

    JUST_NOW = "just now"
    EARLIER_TODAY = "earlier today"
    A_WHILE_AGO = "a while ago"

    @classmethod
    def for_elapsed(cls, elapsed_ms: int) -> "ContinuityBucket":
        if elapsed_ms < HOUR_MS:
            return cls.JUST_NOW
        if elapsed_ms < DAY_MS:
            return cls.EARLIER_TODAY
        return cls.A_WHILE_AGO


_CONTINUITY_PHRASES = {
    ContinuityBucket.JUST_NOW: 'We were just talking about: "{}"',
    ContinuityBucket.EARLIER_TODAY: 'Earlier today you mentioned: "{}"',
    ContinuityBucket.A_WHILE_AGO: 'Last time we spoke, you said: "{}"',
}


@dataclass
class ConversationContinuity:
    """Continuity hint for an actor returning to an agent."""

    phrase: str
    bucket: ContinuityBucket | None = None
    last_interaction: MemoryRecord | None = None
    elapsed_ms: int | None = None


@dataclass
class ConversationResult:
    """Outcome of one processed conversation turn.

    Attributes:
        success: True if the generator produced a reply.
        response: The reply text, empty on failure.
        context_memories: Memories handed to the generator.
        recent_history: The actor's most recent records, newest first.
        error: Failure reason, if any.
        response_time_ms: Time spent in the generator.
        stored: True if the new record was persisted.
    """

    success: bool
    response: str = ""
    context_memories: list[MemoryRecord] = field(default_factory=list)
    recent_history: list[MemoryRecord] = field(default_factory=list)
    error: str | None = None
    response_time_ms: float = 0.0
    stored: bool = False

    @classmethod
    def failure(cls, error: str, response_time_ms: float = 0.0) -> "ConversationResult":
        return cls(success=False, error=error, response_time_ms=response_time_ms)


def retrieve_contextual_memories(
    store: AgentMemoryStore, actor_id: str, max_count: int
) -> list[MemoryRecord]:
    """Pick up to ``max_count`` memories relevant to a conversation with an actor.

    The actor's own most recent records come first. If there are fewer than
    ``max_count``, the rest is filled with the most recent records from any
    actor, skipping ones already selected.
    """
    if max_count <= 0:
        return []

    selected = store.recent_records(actor_id, max_count)
    if len(selected) >= max_count:
        return selected

    # Records are frozen dataclasses, so equal values would collapse; use identity.
    chosen = {id(r) for r in selected}
    for record in store.recent_records(None, store.record_count):
        if len(selected) >= max_count:
            break
        if id(record) not in chosen:
            selected.append(record)
            chosen.add(id(record))
    return selected


class ContextAssembler:
    """Feeds memories to the response generator and records each completed turn.

    A new record is written only after the generator reports success. The
    generator is awaited without holding any lock; only the final
    load-append-save takes the agent's lock.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: KeyedLock,
        day_source: Callable[[], int],
        generator: ResponseGenerator | None,
        config: EngineConfig | None = None,
        limiter: ConversationLimiter | None = None,
        event_log: JSONLLogger | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.locks = locks
        self.day_source = day_source
        self.generator = generator
        self.config = config or EngineConfig()
        self.limiter = limiter or ConversationLimiter(self.config.max_concurrent_conversations)
        self.event_log = event_log
        self.clock = clock

    def ensure_agent(self, agent_id: str) -> AgentMemoryStore:
        """Load an agent's store, creating an empty one if it has none."""
        validate_agent_id(agent_id)
        with self.locks.hold(agent_id):
            agent_store = self.store.load(agent_id)
            if agent_store is None:
                agent_store = AgentMemoryStore(agent_id=agent_id, created_at=self.clock())
                self.store.save(agent_store)
                logger.info("Created memory store for agent %s", agent_id)
            return agent_store

    def delete_agent(self, agent_id: str) -> bool:
        """Delete an agent's store and forget its lock.

        Returns:
            True if the agent had a store.
        """
        validate_agent_id(agent_id)
        with self.locks.hold(agent_id):
            existed = agent_id in self.store.list_ids()
            if existed:
                self.store.delete(agent_id)
                logger.info("Deleted memory store for agent %s", agent_id)
        self.locks.discard(agent_id)
        return existed

    def _require(self, agent_id: str) -> AgentMemoryStore:
        agent_store = self.store.load(agent_id)
        if agent_store is None:
            raise AgentNotFoundError(agent_id)
        return agent_store

    def get_conversation_history(
        self, agent_id: str, actor_id: str, limit: int | None = None
    ) -> list[MemoryRecord]:
        """The actor's most recent records with an agent, newest first."""
        if limit is None:
            limit = self.config.max_conversation_history
        agent_store = self.store.load(agent_id)
        if agent_store is None:
            return []
        return agent_store.recent_records(actor_id, limit)

    def has_previous_interactions(self, agent_id: str, actor_id: str) -> bool:
        return bool(self.get_conversation_history(agent_id, actor_id, 1))

    def get_last_interaction(self, agent_id: str, actor_id: str) -> MemoryRecord | None:
        history = self.get_conversation_history(agent_id, actor_id, 1)
        return history[0] if history else None

    def store_interaction(
        self,
        agent_id: str,
        actor: Actor,
        input_content: str,
        response_content: str,
        interaction_kind: InteractionKind = InteractionKind.TEXT,
    ) -> MemoryRecord:
        """Append a record for a turn that happened outside the generator.

        Raises:
            AgentNotFoundError: If the agent has no store.
            StoreIOError: If the store cannot be written.
        """
        record = self._new_record(actor, input_content, response_content, interaction_kind)
        with self.locks.hold(agent_id):
            agent_store = self._require(agent_id)
            agent_store.add_record(record)
            self.store.save(agent_store)
        return record

    def _new_record(
        self,
        actor: Actor,
        input_content: str,
        response_content: str,
        interaction_kind: InteractionKind,
    ) -> MemoryRecord:
        return MemoryRecord(
            actor_id=actor.id,
            actor_name=actor.display_name,
            input_content=input_content,
            response_content=response_content,
            interaction_kind=interaction_kind,
            logical_day=self.day_source(),
            timestamp=self.clock(),
        )

    def _append(self, agent_id: str, record: MemoryRecord) -> AgentMemoryStore | None:
        """Append a record to the current store. None if the agent was deleted meanwhile."""
        with self.locks.hold(agent_id):
            # Reload so records written during generation are kept.
            agent_store = self.store.load(agent_id)
            if agent_store is None:
                logger.warning(
                    "Agent %s was deleted during the conversation, turn not stored", agent_id
                )
                return None
            agent_store.add_record(record)
            self.store.save(agent_store)
            return agent_store

    async def process_conversation(
        self,
        agent_id: str,
        actor: Actor,
        input_content: str,
        interaction_kind: InteractionKind = InteractionKind.VOICE,
        external_context: str | None = None,
    ) -> ConversationResult:
        """Generate a reply using the agent's memories and remember the turn.

        Any failure before the generator returns successfully produces a
        failed result and leaves the agent's store untouched.

        Args:
            agent_id: The agent being spoken to.
            actor: Who is speaking.
            input_content: What they said.
            interaction_kind: Category of the turn.
            external_context: Free-form host context passed to the generator.

        Returns:
            ConversationResult with the reply, context, and recent history.
        """
        if not self.limiter.try_acquire():
            logger.warning("Conversation with agent %s rejected: %s", agent_id, BUSY_MESSAGE)
            return ConversationResult.failure(BUSY_MESSAGE)

        start = time.monotonic()
        try:
            result = await self._process(agent_id, actor, input_content, interaction_kind, external_context)
        finally:
            self.limiter.release()

        if self.event_log:
            self.event_log.log_conversation(
                agent_id,
                actor.id,
                result.success,
                duration_ms=(time.monotonic() - start) * 1000,
                error=result.error,
            )
        return result

    async def _process(
        self,
        agent_id: str,
        actor: Actor,
        input_content: str,
        interaction_kind: InteractionKind,
        external_context: str | None,
    ) -> ConversationResult:
        if self.generator is None:
            return ConversationResult.failure("No response generator configured")

        try:
            validate_agent_id(agent_id)
            agent_store = await asyncio.to_thread(self._require, agent_id)
        except (AgentNotFoundError, StoreIOError, CorruptDataError, ValueError) as e:
            logger.warning("Cannot start conversation with agent %s: %s", agent_id, e)
            return ConversationResult.failure(str(e))

        context = retrieve_contextual_memories(agent_store, actor.id, self.config.max_context_memories)

        try:
            generated: GenerationResult = await self.generator.generate(
                input_content, agent_store, context, external_context
            )
        except ResponseGenerationError as e:
            logger.warning("Response generation failed for agent %s: %s", agent_id, e)
            return ConversationResult.failure(str(e))
        except Exception as e:
            logger.warning("Response generator raised for agent %s: %s", agent_id, e)
            return ConversationResult.failure(f"Response generation failed: {e}")

        if not generated.success:
            return ConversationResult.failure(
                generated.error or "Response generation failed", generated.response_time_ms
            )

        record = self._new_record(actor, input_content, generated.text, interaction_kind)
        updated = None
        try:
            updated = await asyncio.to_thread(self._append, agent_id, record)
        except StoreIOError as e:
            logger.error("Failed to store conversation memory for agent %s: %s", agent_id, e)
        stored = updated is not None
        if updated is not None:
            agent_store = updated

        return ConversationResult(
            success=True,
            response=generated.text,
            context_memories=context,
            recent_history=agent_store.recent_records(actor.id, self.config.max_conversation_history),
            response_time_ms=generated.response_time_ms,
            stored=stored,
        )

    def get_conversation_continuity(self, agent_id: str, actor_id: str) -> ConversationContinuity:
        """Describe how recently an actor last spoke to an agent."""
        last = self.get_last_interaction(agent_id, actor_id)
        if last is None:
            return ConversationContinuity(phrase="")

        elapsed = max(0, self.clock() - last.timestamp)
        bucket = ContinuityBucket.for_elapsed(elapsed)
        return ConversationContinuity(
            phrase=_CONTINUITY_PHRASES[bucket].format(last.input_content),
            bucket=bucket,
            last_interaction=last,
            elapsed_ms=elapsed,
        )
