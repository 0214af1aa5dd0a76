"""Tests for ExpiryCleaner."""

import json
from unittest.mock import patch

import pytest

from memkeeper.logging import JSONLLogger
from memkeeper.maintenance import ExpiryCleaner
from memkeeper.memory import AgentMemoryStore, InteractionKind, StoreIOError


@pytest.fixture
def cleaner(store, locks, days, config) -> ExpiryCleaner:
    return ExpiryCleaner(store, locks, days, config)


def seed(store, agent_id, make_record, days_list, actor_id="actor-1"):
    store.save(
        AgentMemoryStore(
            agent_id=agent_id,
            records=[make_record(day=d, actor_id=actor_id, text=f"day {d}") for d in days_list],
        )
    )


class TestCleanupExpired:
    """Tests for the retention sweep."""

    def test_removes_only_expired(self, cleaner, store, make_record):
        seed(store, "a", make_record, [10, 69, 70, 100])
        seed(store, "b", make_record, [1, 2])

        removed = cleaner.cleanup_expired(current_day=100, retention_days=30)

        assert removed == 4
        assert [r.logical_day for r in store.load("a").records] == [70, 100]
        assert store.load("b").records == []

    def test_idempotent(self, cleaner, store, make_record):
        """A second sweep with no time advance removes nothing and writes nothing."""
        seed(store, "a", make_record, [1, 100])

        assert cleaner.cleanup_expired(100, 30) == 1
        with patch.object(store, "save", wraps=store.save) as save:
            assert cleaner.cleanup_expired(100, 30) == 0
            save.assert_not_called()

    def test_negative_retention_rejected(self, cleaner):
        with pytest.raises(ValueError):
            cleaner.cleanup_expired(100, -1)

    def test_failure_on_one_agent_does_not_stop_sweep(self, cleaner, store, make_record):
        seed(store, "a", make_record, [1])
        seed(store, "b", make_record, [1])
        real_load = store.load

        def flaky_load(agent_id):
            if agent_id == "a":
                raise StoreIOError(agent_id, "disk on fire")
            return real_load(agent_id)

        with patch.object(store, "load", side_effect=flaky_load):
            removed = cleaner.cleanup_expired(100, 30)

        assert removed == 1
        assert store.load("a").record_count == 1
        assert store.load("b").record_count == 0

    def test_updates_counters(self, cleaner, store, make_record):
        seed(store, "a", make_record, [1, 2, 100])
        cleaner.cleanup_expired(100, 30)

        assert cleaner.last_cleanup_removed == 2
        assert cleaner.total_records_removed == 2
        assert cleaner.total_agents_processed == 1
        assert cleaner.last_cleanup_time is not None

    def test_automatic_cleanup_uses_config(self, cleaner, store, days, make_record):
        days.day = 200
        seed(store, "a", make_record, [100, 169, 170])

        assert cleaner.perform_automatic_cleanup() == 2

    def test_writes_event(self, store, locks, days, config, make_record, tmp_path):
        event_log = JSONLLogger(tmp_path / "events")
        cleaner = ExpiryCleaner(store, locks, days, config, event_log)
        seed(store, "a", make_record, [1])

        cleaner.cleanup_expired(100, 30)

        entry = json.loads(event_log.log_path.read_text().splitlines()[-1])
        assert entry["event"] == "cleanup"
        assert entry["removed"] == 1
        assert entry["extra"]["agents"] == 1


class TestCleanupForAgent:
    """Tests for targeted cleanup."""

    def test_only_touches_one_agent(self, cleaner, store, make_record):
        seed(store, "a", make_record, [1, 100])
        seed(store, "b", make_record, [1, 100])

        assert cleaner.cleanup_for_agent("a") == 1
        assert store.load("b").record_count == 2

    def test_unknown_agent(self, cleaner):
        assert cleaner.cleanup_for_agent("ghost") == 0

    def test_empty_id_rejected(self, cleaner):
        with pytest.raises(ValueError):
            cleaner.cleanup_for_agent("")


class TestForceCleanup:
    """Tests for the absolute-age emergency sweep."""

    def test_boundary(self, cleaner, store, days, make_record):
        """Age exactly 90 days is kept, anything older is removed."""
        days.day = 200
        seed(store, "a", make_record, [100, 109, 110, 111, 200])

        removed = cleaner.force_cleanup_older_than(90)

        assert removed == 2
        remaining = [r.logical_day for r in store.load("a").records]
        assert remaining == [110, 111, 200]
        assert all(200 - d <= 90 for d in remaining)

    def test_ignores_configured_retention(self, cleaner, store, days, make_record):
        days.day = 100
        seed(store, "a", make_record, [1, 50])

        assert cleaner.force_cleanup_older_than(90) == 1

    def test_negative_rejected(self, cleaner):
        with pytest.raises(ValueError):
            cleaner.force_cleanup_older_than(-5)


class TestStatistics:
    """Tests for retention statistics."""

    def test_agent_statistics(self, cleaner, store, make_record):
        store.save(
            AgentMemoryStore(
                agent_id="a",
                records=[
                    make_record(day=1, actor_id="x"),
                    make_record(day=90, actor_id="y", kind=InteractionKind.VOICE),
                    make_record(day=100, actor_id="x"),
                ],
            )
        )

        stats = cleaner.agent_statistics("a")

        assert stats.total_records == 3
        assert stats.expired_records == 1
        assert stats.active_records == 2
        assert stats.oldest_day == 1
        assert stats.newest_day == 100
        assert stats.records_by_kind == {"text": 2, "voice": 1}
        assert stats.unique_actors == 2

    def test_agent_statistics_unknown(self, cleaner):
        assert cleaner.agent_statistics("ghost") is None

    def test_overall_statistics(self, cleaner, store, make_record):
        seed(store, "a", make_record, [1, 100])
        seed(store, "b", make_record, [99])

        stats = cleaner.overall_statistics()

        assert stats.total_agents == 2
        assert stats.total_records == 3
        assert stats.expired_records == 1
        assert stats.active_records == 2
        assert stats.last_cleanup_time is None
