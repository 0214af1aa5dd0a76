"""Exceptions raised by the memory engine."""


class MemoryEngineError(Exception):
    """Base error for the memory engine."""


class StoreIOError(MemoryEngineError):
    """A per-agent file could not be read or written."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(f"{agent_id}: {message}")
        self.agent_id = agent_id


class CorruptDataError(MemoryEngineError):
    """A per-agent file exists but cannot be decoded."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(f"{agent_id}: {message}")
        self.agent_id = agent_id


class AgentNotFoundError(MemoryEngineError):
    """No memory store exists for the requested agent."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class BackupError(MemoryEngineError):
    """A snapshot could not be written, read, or understood."""


class ResponseGenerationError(MemoryEngineError):
    """The external response generator failed."""
