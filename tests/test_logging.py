"""Tests for JSONL event logging."""

import json
import tempfile
from pathlib import Path

import pytest

from memkeeper.logging import JSONLLogger, LogEntry, configure_logger, get_logger


@pytest.fixture
def temp_log_dir():
    """Create a temporary directory for logs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def logger(temp_log_dir: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=temp_log_dir)


def read_entries(logger: JSONLLogger) -> list[dict]:
    with open(logger.log_path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """Test LogEntry excludes None values."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert "timestamp" in data
    assert "event" in data
    assert "agent_id" not in data  # None excluded
    assert "extra" not in data  # Empty dict excluded


def test_log_creates_file(logger: JSONLLogger):
    logger.log("test_event")
    assert logger.log_path.exists()


def test_log_writes_jsonl(logger: JSONLLogger):
    logger.log("event1", agent_id="smith")
    logger.log("event2", agent_id="baker")

    entries = read_entries(logger)

    assert len(entries) == 2
    assert entries[0]["event"] == "event1"
    assert entries[0]["agent_id"] == "smith"
    assert entries[1]["event"] == "event2"


def test_log_sweep(logger: JSONLLogger):
    logger.log_sweep("cleanup", removed=4, agents=2, duration_ms=12.5, retention_days=30)

    entry = read_entries(logger)[0]
    assert entry["event"] == "cleanup"
    assert entry["removed"] == 4
    assert entry["duration_ms"] == 12.5
    assert entry["extra"] == {"agents": 2, "retention_days": 30}


def test_log_backup_failure(logger: JSONLLogger):
    logger.log_backup(None, 0, success=False, error="disk full")

    entry = read_entries(logger)[0]
    assert entry["event"] == "backup"
    assert entry["success"] is False
    assert entry["error"] == "disk full"


def test_log_backup_success_omits_error(logger: JSONLLogger, temp_log_dir: Path):
    logger.log_backup(temp_log_dir / "snap.json", 3, error="ignored")

    entry = read_entries(logger)[0]
    assert "error" not in entry
    assert entry["extra"]["agent_count"] == 3


def test_log_restore(logger: JSONLLogger):
    logger.log_restore(Path("/tmp/snap.json"), restored=1, skipped=1)

    entry = read_entries(logger)[0]
    assert entry["event"] == "restore"
    assert entry["extra"]["restored"] == 1
    assert entry["extra"]["skipped"] == 1


def test_log_health(logger: JSONLLogger):
    logger.log_health(False, "Backup: No recent backup")

    entry = read_entries(logger)[0]
    assert entry["event"] == "health_check"
    assert entry["success"] is False
    assert entry["extra"]["status"] == "Backup: No recent backup"


def test_log_conversation(logger: JSONLLogger):
    logger.log_conversation("smith", "alex", False, duration_ms=3.0, error="rate limited")

    entry = read_entries(logger)[0]
    assert entry["agent_id"] == "smith"
    assert entry["error"] == "rate limited"
    assert entry["extra"]["actor_id"] == "alex"


def test_rotation(temp_log_dir: Path):
    """Test log rotation when file exceeds max size."""
    logger = JSONLLogger(log_dir=temp_log_dir, max_size_mb=0.0001)  # ~100 bytes

    for i in range(10):
        logger.log(f"event_{i}", agent_id="x" * 50)

    log_files = list(temp_log_dir.glob("*.jsonl"))
    assert len(log_files) > 1


def test_configure_logger(temp_log_dir: Path):
    configured = configure_logger(temp_log_dir)
    assert get_logger() is configured
    assert configured.log_dir == temp_log_dir
