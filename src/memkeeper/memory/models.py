"""Data models for agent memories."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class InteractionKind(Enum):
    """Category of a logged interaction."""

    VOICE = "voice"
    TEXT = "text"
    TRADE = "trade"
    NAME_TAG = "name_tag"
    REPUTATION_EVENT = "reputation_event"
    SYSTEM = "system"

    @property
    def is_voice(self) -> bool:
        return "voice" in self.value


@dataclass(frozen=True)
class Actor:
    """The counterpart talking to an agent.

    Calling code builds this from its own domain types; the engine never
    inspects anything beyond these two fields.
    """

    id: str
    display_name: str


@dataclass(frozen=True)
class MemoryRecord:
    """One logged interaction turn.

    Attributes:
        actor_id: Opaque id of the actor who spoke.
        actor_name: Display name of the actor at the time.
        input_content: What the actor said or did.
        response_content: What the agent answered.
        interaction_kind: Category of the interaction.
        logical_day: Host-supplied day counter used for retention.
        timestamp: Creation time in epoch milliseconds.
    """

    actor_id: str
    actor_name: str
    input_content: str
    response_content: str
    interaction_kind: InteractionKind
    logical_day: int
    timestamp: int = field(default_factory=now_ms)

    def is_expired(self, current_day: int, retention_days: int) -> bool:
        """Check if the record is older than the retention window."""
        return (current_day - self.logical_day) > retention_days

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "input_content": self.input_content,
            "response_content": self.response_content,
            "interaction_kind": self.interaction_kind.value,
            "logical_day": self.logical_day,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryRecord":
        return cls(
            actor_id=str(data["actor_id"]),
            actor_name=str(data["actor_name"]),
            input_content=str(data["input_content"]),
            response_content=str(data["response_content"]),
            interaction_kind=InteractionKind(data["interaction_kind"]),
            logical_day=int(data["logical_day"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass
class AgentMemoryStore:
    """All memories one agent holds, plus lifecycle counters."""

    agent_id: str
    records: list[MemoryRecord] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    last_interaction_at: int = 0
    total_interactions: int = 0

    def __post_init__(self) -> None:
        if not self.last_interaction_at:
            self.last_interaction_at = self.created_at

    @property
    def record_count(self) -> int:
        return len(self.records)

    def add_record(self, record: MemoryRecord) -> None:
        """Append a record and bump the interaction counters."""
        self.records.append(record)
        self.last_interaction_at = now_ms()
        self.total_interactions += 1

    def recent_records(self, actor_id: str | None = None, limit: int = 10) -> list[MemoryRecord]:
        """Get the most recent records, newest first.

        Args:
            actor_id: Only consider this actor's records. None means any actor.
            limit: Maximum number of records to return.
        """
        if limit <= 0:
            return []

        candidates = self.records
        if actor_id is not None:
            candidates = [r for r in candidates if r.actor_id == actor_id]

        return sorted(candidates, key=lambda r: r.timestamp, reverse=True)[:limit]

    def remove_expired(self, current_day: int, retention_days: int) -> int:
        """Drop records outside the retention window. Returns removed count."""
        before = len(self.records)
        self.records = [r for r in self.records if not r.is_expired(current_day, retention_days)]
        return before - len(self.records)

    def replace_records(self, records: list[MemoryRecord]) -> int:
        """Replace the record collection. Returns how many records were dropped."""
        removed = len(self.records) - len(records)
        self.records = list(records)
        return removed

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "created_at": self.created_at,
            "last_interaction_at": self.last_interaction_at,
            "total_interactions": self.total_interactions,
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentMemoryStore":
        """Build a store from its serialized form.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")
        return cls(
            agent_id=str(data["agent_id"]),
            records=[MemoryRecord.from_dict(item) for item in data.get("records", [])],
            created_at=int(data.get("created_at", 0)) or now_ms(),
            last_interaction_at=int(data.get("last_interaction_at", 0)),
            total_interactions=int(data.get("total_interactions", 0)),
        )
