"""File-backed persistence of agent memory stores."""

import json
import logging
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from .errors import CorruptDataError, StoreIOError
from .models import AgentMemoryStore

logger = logging.getLogger(__name__)

FILE_EXTENSION = ".json"

# Agent ids end up in file names.
_AGENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

RecoveryCallback = Callable[[str], AgentMemoryStore | None]


def validate_agent_id(agent_id: str) -> str:
    """Check an agent id is safe to use as a file name.

    Raises:
        ValueError: If the id is empty or contains other characters.
    """
    if not agent_id or not _AGENT_ID_PATTERN.match(agent_id):
        raise ValueError(f"Invalid agent id: {agent_id!r}")
    return agent_id


class RecordStore(Protocol):
    """Durable key-value persistence of one memory store per agent."""

    def load(self, agent_id: str) -> AgentMemoryStore | None:
        """Load an agent's store, or None if the agent has no data."""
        ...

    def save(self, store: AgentMemoryStore) -> None:
        """Persist an agent's store, replacing what was there."""
        ...

    def delete(self, agent_id: str) -> None:
        """Remove an agent's store. Missing stores are ignored."""
        ...

    def list_ids(self) -> set[str]:
        """Ids of every agent with persisted data."""
        ...


class JsonRecordStore:
    """One JSON file per agent under a data directory.

    Files are written to a temporary sibling first and then moved into
    place, so a crash mid-write never leaves a truncated store behind.
    When a file cannot be decoded, the optional recovery callback is asked
    for a replacement (normally the newest snapshot holding that agent).
    """

    def __init__(
        self,
        data_dir: Path,
        recovery: RecoveryCallback | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory holding one file per agent.
            recovery: Called with an agent id when its file is corrupt.
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._recovery = recovery

    def set_recovery(self, recovery: RecoveryCallback | None) -> None:
        """Install the callback used to recover corrupt files."""
        self._recovery = recovery

    def _path(self, agent_id: str) -> Path:
        return self.data_dir / f"{validate_agent_id(agent_id)}{FILE_EXTENSION}"

    def load(self, agent_id: str) -> AgentMemoryStore | None:
        """Load an agent's store.

        Returns:
            The store, a recovered copy if the file was corrupt, or None.

        Raises:
            StoreIOError: If the file exists but cannot be read.
        """
        path = self._path(agent_id)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StoreIOError(agent_id, f"failed to read {path}: {e}") from e

        try:
            return self._decode(agent_id, raw)
        except CorruptDataError as e:
            logger.warning("Corrupt memory file for agent %s: %s", agent_id, e)
            return self._recover(agent_id)

    def _decode(self, agent_id: str, raw: str) -> AgentMemoryStore:
        try:
            store = AgentMemoryStore.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CorruptDataError(agent_id, str(e)) from e

        if store.agent_id != agent_id:
            raise CorruptDataError(agent_id, f"file holds data for {store.agent_id}")
        return store

    def _recover(self, agent_id: str) -> AgentMemoryStore | None:
        if self._recovery is None:
            return None

        try:
            recovered = self._recovery(agent_id)
        except Exception as e:
            logger.warning("Recovery failed for agent %s: %s", agent_id, e)
            return None

        if recovered is None:
            logger.warning("No snapshot holds agent %s, treating it as empty", agent_id)
            return None

        self.save(recovered)
        logger.info("Recovered agent %s from snapshot", agent_id)
        return recovered

    def save(self, store: AgentMemoryStore) -> None:
        """Persist a store atomically.

        Raises:
            StoreIOError: If the file cannot be written.
        """
        path = self._path(store.agent_id)
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(store.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as e:
            raise StoreIOError(store.agent_id, f"failed to write {path}: {e}") from e
        logger.debug("Saved %d records for agent %s", store.record_count, store.agent_id)

    def delete(self, agent_id: str) -> None:
        """Delete an agent's file if it exists."""
        path = self._path(agent_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreIOError(agent_id, f"failed to delete {path}: {e}") from e

    def exists(self, agent_id: str) -> bool:
        return self._path(agent_id).exists()

    def list_ids(self) -> set[str]:
        """Ids of every agent with a file in the data directory.

        Raises:
            StoreIOError: If the directory cannot be listed.
        """
        ids: set[str] = set()
        try:
            paths = list(self.data_dir.glob(f"*{FILE_EXTENSION}"))
        except OSError as e:
            raise StoreIOError("*", f"failed to list {self.data_dir}: {e}") from e

        for path in paths:
            agent_id = path.stem
            if _AGENT_ID_PATTERN.match(agent_id):
                ids.add(agent_id)
            else:
                logger.warning("Ignoring file with invalid agent id: %s", path.name)
        return ids
