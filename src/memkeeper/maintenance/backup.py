"""Snapshots of every agent store, with retention and restore."""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import EngineConfig
from ..logging import JSONLLogger
from ..memory import (
    AgentMemoryStore,
    BackupError,
    CorruptDataError,
    KeyedLock,
    RecordStore,
    StoreIOError,
    now_ms,
)

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "agent_memory_backup_"
BACKUP_EXTENSION = ".json"
BACKUP_VERSION = "1.0"

# A backup younger than this counts as recent.
RECENT_BACKUP_SECONDS = 2 * 24 * 60 * 60

_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _decode_entry(agent_id: str, entry: Any) -> AgentMemoryStore:
    """Decode one snapshot entry, which must hold data for ``agent_id``."""
    agent_store = AgentMemoryStore.from_dict(entry)
    if agent_store.agent_id != agent_id:
        raise ValueError(f"entry holds data for {agent_store.agent_id}")
    return agent_store


@dataclass
class BackupInfo:
    """Metadata about one snapshot file."""

    file_name: str
    path: Path
    size: int
    created_at: float
    agent_count: int
    backup_timestamp: int

    @property
    def formatted_size(self) -> str:
        return _format_size(self.size)

    @property
    def formatted_created_at(self) -> str:
        return datetime.fromtimestamp(self.created_at).strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class BackupStatistics:
    last_backup_time: float | None
    total_backups_created: int
    total_backups_restored: int
    available_backups: int
    last_error: str | None
    backup_dir: Path

    @property
    def has_recent_backup(self) -> bool:
        """True if a backup succeeded within the last two days."""
        if self.last_backup_time is None:
            return False
        return time.time() - self.last_backup_time < RECENT_BACKUP_SECONDS


@dataclass
class RestoreSummary:
    path: Path
    restored: int
    skipped: int


class BackupCoordinator:
    """Writes consolidated snapshots of every agent and restores from them.

    Each snapshot is a single JSON document::

        {
          "backup_timestamp": 1700000000000,
          "backup_version": "1.0",
          "agent_count": 2,
          "agent_data": {"agent-a": {...}, "agent-b": {...}}
        }

    Agent entries use the same shape the record store persists. After every
    backup the oldest snapshots beyond ``max_backup_files`` are deleted.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: KeyedLock,
        config: EngineConfig | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self.locks = locks
        self.config = config or EngineConfig()
        self.backup_dir = Path(self.config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.event_log = event_log
        self._write_lock = threading.Lock()

        self.last_backup_time: float | None = None
        self.total_backups_created = 0
        self.total_backups_restored = 0
        self.last_error: str | None = None
        self.last_restore: RestoreSummary | None = None

    def _snapshot_path(self, name: str | None) -> Path:
        stamp = datetime.now().strftime(_TIMESTAMP_FORMAT)
        if name:
            file_name = f"{BACKUP_PREFIX}{name}_{stamp}{BACKUP_EXTENSION}"
        else:
            file_name = f"{BACKUP_PREFIX}{stamp}{BACKUP_EXTENSION}"
        return self.backup_dir / file_name

    def _collect(self) -> dict[str, Any]:
        """Load every agent store, omitting the ones that fail to load."""
        agent_data: dict[str, Any] = {}
        try:
            agent_ids = self.store.list_ids()
        except StoreIOError as e:
            raise BackupError(f"Cannot list agents: {e}") from e

        for agent_id in sorted(agent_ids):
            try:
                with self.locks.hold(agent_id):
                    agent_store = self.store.load(agent_id)
            except (StoreIOError, CorruptDataError) as e:
                logger.warning("Failed to back up memories for agent %s: %s", agent_id, e)
                continue
            if agent_store is not None:
                agent_data[agent_id] = agent_store.to_dict()
        return agent_data

    def _write_snapshot(self, name: str | None) -> Path:
        start = time.monotonic()
        agent_data = self._collect()
        snapshot = {
            "backup_timestamp": now_ms(),
            "backup_version": BACKUP_VERSION,
            "agent_count": len(agent_data),
            "agent_data": agent_data,
        }

        path = self._snapshot_path(name)
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as e:
            raise BackupError(f"Cannot write snapshot {path}: {e}") from e

        self.last_backup_time = time.time()
        self.total_backups_created += 1
        self.last_error = None
        logger.info("Backup created: %s (%d agents)", path.name, len(agent_data))
        if self.event_log:
            self.event_log.log_backup(
                path, len(agent_data), duration_ms=(time.monotonic() - start) * 1000
            )

        self.cleanup_old_backups()
        return path

    def create_manual_backup(self, name: str | None = None) -> Path:
        """Write a snapshot now.

        Args:
            name: Optional label included in the file name.

        Returns:
            Path of the new snapshot.

        Raises:
            BackupError: If the snapshot cannot be written.
        """
        if name is not None and not name.replace("-", "").replace("_", "").isalnum():
            raise ValueError(f"Invalid backup name: {name!r}")

        with self._write_lock:
            try:
                return self._write_snapshot(name or "manual")
            except BackupError as e:
                self._record_failure(e)
                raise

    def perform_scheduled_backup(self) -> Path | None:
        """Daily snapshot. Failures are recorded rather than raised."""
        with self._write_lock:
            try:
                return self._write_snapshot(None)
            except BackupError as e:
                self._record_failure(e)
                return None

    def _record_failure(self, error: Exception) -> None:
        self.last_error = str(error)
        logger.error("Backup failed: %s", error)
        if self.event_log:
            self.event_log.log_backup(None, 0, success=False, error=str(error))

    def _snapshot_entries(self) -> list[tuple[Path, os.stat_result]]:
        """Snapshot files with their stat results, newest first.

        Files removed by a concurrent retention sweep are left out.
        """
        entries = []
        for path in self.backup_dir.glob(f"{BACKUP_PREFIX}*{BACKUP_EXTENSION}"):
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if path.is_file():
                entries.append((path, stat))
        return sorted(entries, key=lambda e: (e[1].st_mtime_ns, e[0].name), reverse=True)

    def _snapshot_files(self) -> list[Path]:
        """Snapshot files, newest first."""
        return [path for path, _ in self._snapshot_entries()]

    def cleanup_old_backups(self) -> int:
        """Delete snapshots beyond the retention cap. Returns deleted count."""
        deleted = 0
        for path in self._snapshot_files()[self.config.max_backup_files:]:
            try:
                path.unlink()
                deleted += 1
                logger.debug("Deleted old backup: %s", path.name)
            except OSError as e:
                logger.warning("Failed to delete old backup %s: %s", path.name, e)
        return deleted

    def _read_snapshot(self, path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise BackupError(f"Backup file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise BackupError(f"Cannot read snapshot {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("agent_data"), dict):
            raise BackupError(f"Invalid snapshot format: {path}")
        return data

    def restore_from_backup(self, path: str | Path, overwrite_existing: bool = False) -> int:
        """Restore agent stores from a snapshot.

        Agents that already have data are skipped unless ``overwrite_existing``
        is set. The check and the write happen under the agent's lock, so an
        agent created while the restore runs is never overwritten. An agent
        whose entry cannot be decoded or saved is skipped.

        Returns:
            Number of agents restored.

        Raises:
            BackupError: If the snapshot is missing or unreadable.
        """
        path = Path(path)
        data = self._read_snapshot(path)
        logger.info("Restoring from backup: %s", path.name)

        restored = 0
        skipped = 0
        for agent_id, entry in data["agent_data"].items():
            try:
                agent_store = _decode_entry(agent_id, entry)
                with self.locks.hold(agent_id):
                    if not overwrite_existing and self.store.load(agent_id) is not None:
                        logger.debug("Skipping agent %s, it already has data", agent_id)
                        skipped += 1
                        continue
                    self.store.save(agent_store)
                restored += 1
            except (KeyError, TypeError, ValueError, StoreIOError) as e:
                logger.warning("Failed to restore agent %s: %s", agent_id, e)
                skipped += 1

        self.total_backups_restored += 1
        self.last_restore = RestoreSummary(path=path, restored=restored, skipped=skipped)
        logger.info("Restore completed: %d agents restored, %d skipped", restored, skipped)
        if self.event_log:
            self.event_log.log_restore(path, restored, skipped)
        return restored

    def recover_agent(self, agent_id: str) -> AgentMemoryStore | None:
        """The agent's store from the newest snapshot that contains it."""
        for path in self._snapshot_files():
            try:
                data = self._read_snapshot(path)
            except BackupError as e:
                logger.warning("Skipping unreadable backup %s: %s", path.name, e)
                continue

            entry = data["agent_data"].get(agent_id)
            if entry is None:
                continue
            try:
                return _decode_entry(agent_id, entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Agent %s in %s is unreadable: %s", agent_id, path.name, e)
        return None

    def list_available_backups(self) -> list[BackupInfo]:
        """Metadata for every snapshot, newest first."""
        backups = []
        for path, stat in self._snapshot_entries():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                agent_count = int(data.get("agent_count", 0))
                backup_timestamp = int(data.get("backup_timestamp", 0))
            except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                logger.warning("Failed to read backup info from %s: %s", path.name, e)
                continue
            backups.append(
                BackupInfo(
                    file_name=path.name,
                    path=path,
                    size=stat.st_size,
                    created_at=stat.st_mtime,
                    agent_count=agent_count,
                    backup_timestamp=backup_timestamp,
                )
            )
        return backups

    def get_backup_statistics(self) -> BackupStatistics:
        files = self._snapshot_entries()
        last_backup_time = self.last_backup_time
        # Snapshots written by an earlier process still count.
        if files:
            newest = files[0][1].st_mtime
            if last_backup_time is None or newest > last_backup_time:
                last_backup_time = newest

        return BackupStatistics(
            last_backup_time=last_backup_time,
            total_backups_created=self.total_backups_created,
            total_backups_restored=self.total_backups_restored,
            available_backups=len(files),
            last_error=self.last_error,
            backup_dir=self.backup_dir,
        )
