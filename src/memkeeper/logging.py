"""JSONL event log for maintenance observability."""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    agent_id: str | None = None
    duration_ms: float | None = None
    removed: int | None = None
    success: bool | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes one JSON line per engine event.

    Maintenance sweeps run on worker threads, so writes are serialized.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".memkeeper" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        with self._lock:
            self._rotate_if_needed()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        agent_id: str | None = None,
        duration_ms: float | None = None,
        removed: int | None = None,
        success: bool | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            agent_id=agent_id,
            duration_ms=duration_ms,
            removed=removed,
            success=success,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_sweep(
        self,
        event: str,
        removed: int,
        agents: int,
        duration_ms: float,
        *,
        agent_id: str | None = None,
        **extra: Any,
    ) -> None:
        """Log a cleanup or optimization pass."""
        self.log(
            event,
            agent_id=agent_id,
            removed=removed,
            duration_ms=duration_ms,
            agents=agents,
            **extra,
        )

    def log_backup(
        self,
        path: Path | None,
        agent_count: int,
        *,
        success: bool = True,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log a snapshot write."""
        self.log(
            "backup",
            success=success,
            error=error if not success else None,
            duration_ms=duration_ms,
            path=str(path) if path else None,
            agent_count=agent_count,
        )

    def log_restore(self, path: Path, restored: int, skipped: int) -> None:
        """Log a snapshot restore."""
        self.log("restore", success=True, path=str(path), restored=restored, skipped=skipped)

    def log_health(self, healthy: bool, status: str) -> None:
        """Log the outcome of a health check."""
        self.log("health_check", success=healthy, status=status)

    def log_conversation(
        self,
        agent_id: str,
        actor_id: str,
        success: bool,
        *,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a processed conversation turn."""
        self.log(
            "conversation",
            agent_id=agent_id,
            success=success,
            duration_ms=duration_ms,
            error=error,
            actor_id=actor_id,
        )


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
