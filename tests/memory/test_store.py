"""Tests for JsonRecordStore."""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from memkeeper.memory import (
    AgentMemoryStore,
    InteractionKind,
    JsonRecordStore,
    StoreIOError,
    validate_agent_id,
)


class TestValidateAgentId:
    """Tests for agent id validation."""

    @pytest.mark.parametrize("agent_id", ["smith", "agent_01", "a-b-c"])
    def test_valid(self, agent_id):
        assert validate_agent_id(agent_id) == agent_id

    @pytest.mark.parametrize("agent_id", ["", "../etc", "a b", "a/b", "é"])
    def test_invalid(self, agent_id):
        with pytest.raises(ValueError):
            validate_agent_id(agent_id)


class TestJsonRecordStore:
    """Tests for loading and saving stores."""

    def test_creates_data_dir(self, tmp_path: Path):
        data_dir = tmp_path / "nested" / "agents"
        JsonRecordStore(data_dir)
        assert data_dir.is_dir()

    def test_load_missing_returns_none(self, store: JsonRecordStore):
        assert store.load("nobody") is None

    def test_round_trip(self, store: JsonRecordStore, make_record):
        """Saving then loading yields identical records."""
        saved = AgentMemoryStore(
            agent_id="smith",
            records=[
                make_record(day=1, text="first"),
                make_record(day=2, text="second", kind=InteractionKind.VOICE),
                make_record(day=3, actor_id="other", text="third"),
            ],
            created_at=123,
            total_interactions=3,
        )
        store.save(saved)
        loaded = store.load("smith")

        assert loaded is not None
        assert loaded.record_count == saved.record_count
        assert sorted(r.to_dict()["input_content"] for r in loaded.records) == ["first", "second", "third"]
        assert set(map(str, loaded.records)) == set(map(str, saved.records))
        assert loaded.total_interactions == 3

    def test_save_leaves_no_temp_file(self, store: JsonRecordStore):
        store.save(AgentMemoryStore(agent_id="smith"))
        assert [p.name for p in store.data_dir.iterdir()] == ["smith.json"]

    def test_list_ids(self, store: JsonRecordStore):
        store.save(AgentMemoryStore(agent_id="a"))
        store.save(AgentMemoryStore(agent_id="b"))
        (store.data_dir / "not an id.json").write_text("{}")

        assert store.list_ids() == {"a", "b"}

    def test_delete(self, store: JsonRecordStore):
        store.save(AgentMemoryStore(agent_id="smith"))
        store.delete("smith")
        store.delete("smith")  # Missing is fine

        assert store.load("smith") is None
        assert not store.exists("smith")

    def test_load_unreadable_raises_store_io_error(self, store: JsonRecordStore):
        (store.data_dir / "smith.json").mkdir()
        with pytest.raises(StoreIOError):
            store.load("smith")


class TestCorruptRecovery:
    """Tests for recovering corrupt files."""

    def test_corrupt_without_recovery_is_empty(self, store: JsonRecordStore):
        (store.data_dir / "smith.json").write_text("{not json")
        assert store.load("smith") is None

    def test_corrupt_uses_recovery_and_resaves(self, store: JsonRecordStore, make_record):
        recovered = AgentMemoryStore(agent_id="smith", records=[make_record()])
        recovery = Mock(return_value=recovered)
        store.set_recovery(recovery)
        (store.data_dir / "smith.json").write_text("{not json")

        loaded = store.load("smith")

        recovery.assert_called_once_with("smith")
        assert loaded == recovered
        data = json.loads((store.data_dir / "smith.json").read_text())
        assert data["agent_id"] == "smith"

    def test_mismatched_agent_id_is_corrupt(self, store: JsonRecordStore):
        (store.data_dir / "smith.json").write_text(json.dumps({"agent_id": "baker", "records": []}))
        assert store.load("smith") is None

    def test_recovery_returning_none(self, store: JsonRecordStore):
        store.set_recovery(Mock(return_value=None))
        (store.data_dir / "smith.json").write_text("[]")
        assert store.load("smith") is None

    def test_recovery_error_is_contained(self, store: JsonRecordStore):
        store.set_recovery(Mock(side_effect=RuntimeError("boom")))
        (store.data_dir / "smith.json").write_text("garbage")
        assert store.load("smith") is None
