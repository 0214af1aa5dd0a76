"""Shared fixtures for memkeeper tests."""

from pathlib import Path

import pytest

from memkeeper.config import EngineConfig
from memkeeper.memory import InteractionKind, JsonRecordStore, KeyedLock, MemoryRecord

DAY_MS = 24 * 60 * 60 * 1000
BASE_TS = 1_700_000_000_000


class DayCounter:
    """Settable logical-day source."""

    def __init__(self, day: int = 100) -> None:
        self.day = day

    def __call__(self) -> int:
        return self.day


def make_record(
    day: int = 1,
    actor_id: str = "actor-1",
    text: str = "hello",
    kind: InteractionKind = InteractionKind.TEXT,
    timestamp: int | None = None,
) -> MemoryRecord:
    """Build a record whose timestamp follows its logical day by default."""
    return MemoryRecord(
        actor_id=actor_id,
        actor_name=actor_id.title(),
        input_content=text,
        response_content=f"reply to {text}",
        interaction_kind=kind,
        logical_day=day,
        timestamp=BASE_TS + day * DAY_MS if timestamp is None else timestamp,
    )


@pytest.fixture
def config(tmp_path: Path) -> EngineConfig:
    """Config with every directory under tmp_path."""
    return EngineConfig(
        data_dir=tmp_path / "agents",
        backup_dir=tmp_path / "backups",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def store(config: EngineConfig) -> JsonRecordStore:
    return JsonRecordStore(config.data_dir)


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def days() -> DayCounter:
    return DayCounter()


@pytest.fixture(name="make_record")
def make_record_fixture():
    return make_record
