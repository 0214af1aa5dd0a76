"""Memory records, per-agent stores, and their persistence."""

from .errors import (
    AgentNotFoundError,
    BackupError,
    CorruptDataError,
    MemoryEngineError,
    ResponseGenerationError,
    StoreIOError,
)
from .locks import KeyedLock
from .models import Actor, AgentMemoryStore, InteractionKind, MemoryRecord, now_ms
from .store import JsonRecordStore, RecordStore, validate_agent_id

__all__ = [
    "Actor",
    "AgentMemoryStore",
    "AgentNotFoundError",
    "BackupError",
    "CorruptDataError",
    "InteractionKind",
    "JsonRecordStore",
    "KeyedLock",
    "MemoryEngineError",
    "MemoryRecord",
    "RecordStore",
    "ResponseGenerationError",
    "StoreIOError",
    "now_ms",
    "validate_agent_id",
]
