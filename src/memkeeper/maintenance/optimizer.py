"""Pressure-based eviction of memories."""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from functools import cmp_to_key

from ..config import EngineConfig
from ..logging import JSONLLogger
from ..memory import AgentMemoryStore, CorruptDataError, KeyedLock, MemoryRecord, RecordStore, StoreIOError
from .expiry import DaySource, ExpiryCleaner

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

# Input length difference that makes one record outrank another.
LENGTH_ADVANTAGE = 20

HIGH_USAGE_RATIO = 0.8


def compare_importance(a: MemoryRecord, b: MemoryRecord) -> int:
    """Order two records by importance. Negative means ``a`` is more important.

    Records more than a day apart are ordered by recency. Closer together,
    voice beats non-voice, then a clearly longer input wins, and finally
    the more recent record wins.
    """
    if abs(b.timestamp - a.timestamp) > DAY_MS:
        return b.timestamp - a.timestamp

    if a.interaction_kind != b.interaction_kind:
        if a.interaction_kind.is_voice:
            return -1
        if b.interaction_kind.is_voice:
            return 1

    length_diff = len(b.input_content) - len(a.input_content)
    if abs(length_diff) > LENGTH_ADVANTAGE:
        return length_diff

    return b.timestamp - a.timestamp


def rank_by_importance(records: list[MemoryRecord]) -> list[MemoryRecord]:
    """Sort records most important first."""
    return sorted(records, key=cmp_to_key(compare_importance))


@dataclass
class MemoryUsageStatistics:
    """Usage across all agents relative to the global cap."""

    total_agents: int
    agents_with_records: int
    total_records: int
    average_records_per_agent: float
    max_records_per_agent: int
    oldest_record_timestamp: int | None
    newest_record_timestamp: int | None
    records_by_kind: dict[str, int] = field(default_factory=dict)
    max_total_records: int = 10_000
    last_optimization_time: float | None = None
    total_records_optimized: int = 0
    total_agents_optimized: int = 0
    last_optimization_result: str = ""

    @property
    def usage_percentage(self) -> float:
        return self.total_records / self.max_total_records * 100

    @property
    def is_memory_usage_high(self) -> bool:
        return self.total_records > self.max_total_records * HIGH_USAGE_RATIO

    @property
    def is_memory_usage_critical(self) -> bool:
        return self.total_records > self.max_total_records


class UsageOptimizer:
    """Keeps per-agent and global record counts under their caps.

    Below the global cap, every store gets the configured retention and is
    trimmed to the per-agent cap. Above it, the largest stores are trimmed
    hard, mid-sized stores get a shorter retention, and small stores get
    the normal retention.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: KeyedLock,
        cleaner: ExpiryCleaner,
        day_source: DaySource,
        config: EngineConfig | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self.locks = locks
        self.cleaner = cleaner
        self.day_source = day_source
        self.config = config or EngineConfig()
        self.event_log = event_log
        self._run_lock = threading.Lock()

        self.last_optimization_time: float | None = None
        self.total_records_optimized = 0
        self.total_agents_optimized = 0
        self.last_optimization_result = ""

    def _load_all(self) -> dict[str, AgentMemoryStore]:
        """Load every store, skipping agents that fail to load."""
        stores: dict[str, AgentMemoryStore] = {}
        for agent_id in self.store.list_ids():
            try:
                agent_store = self.store.load(agent_id)
            except (StoreIOError, CorruptDataError) as e:
                logger.warning("Failed to load memories for agent %s: %s", agent_id, e)
                continue
            if agent_store is not None:
                stores[agent_id] = agent_store
        return stores

    def trim_to(self, agent_store: AgentMemoryStore, max_records: int) -> int:
        """Keep the ``max_records`` most important records. Returns removed count."""
        if agent_store.record_count <= max_records:
            return 0

        kept = rank_by_importance(agent_store.records)[:max_records]
        removed = agent_store.replace_records(kept)
        logger.debug(
            "Trimmed agent %s to %d records (removed %d)", agent_store.agent_id, len(kept), removed
        )
        return removed

    def perform_optimization(self) -> int:
        """Run standard or aggressive optimization depending on global usage.

        Returns:
            Number of records removed.
        """
        with self._run_lock:
            start = time.monotonic()
            optimized = 0
            try:
                logger.info("Starting memory optimization")
                stores = self._load_all()
                total = sum(s.record_count for s in stores.values())
                logger.info("Current memory usage: %d records across %d agents", total, len(stores))

                aggressive = total > self.config.max_total_records
                if aggressive:
                    optimized = self._aggressive(stores)
                else:
                    optimized = self._standard(stores)

                self.last_optimization_time = time.time()
                self.total_records_optimized += optimized
                self.total_agents_optimized += len(stores)

                duration_ms = (time.monotonic() - start) * 1000
                self.last_optimization_result = (
                    f"Optimized {optimized} memories from {len(stores)} agents in {duration_ms:.0f}ms"
                )
                logger.info("Memory optimization completed: %s", self.last_optimization_result)
                if self.event_log:
                    self.event_log.log_sweep(
                        "optimization",
                        optimized,
                        len(stores),
                        duration_ms,
                        strategy="aggressive" if aggressive else "standard",
                        total_records=total,
                    )
            except StoreIOError as e:
                logger.error("Memory optimization failed: %s", e)
                self.last_optimization_result = f"Failed: {e}"
            return optimized

    def _standard(self, stores: dict[str, AgentMemoryStore]) -> int:
        current_day = self.day_source()
        retention = self.config.retention_days
        cap = self.config.max_records_per_agent

        total = 0
        for agent_id in sorted(stores):
            try:
                with self.locks.hold(agent_id):
                    agent_store = self.store.load(agent_id)
                    if agent_store is None:
                        continue
                    removed = self.cleaner.expire_store(agent_store, current_day, retention)
                    if agent_store.record_count > cap:
                        removed += self.trim_to(agent_store, cap)
                    if removed > 0:
                        self.store.save(agent_store)
                        total += removed
            except (StoreIOError, CorruptDataError) as e:
                logger.warning("Failed to optimize memories for agent %s: %s", agent_id, e)
        return total

    def _aggressive(self, stores: dict[str, AgentMemoryStore]) -> int:
        logger.warning("Performing aggressive memory optimization due to high usage")
        current_day = self.day_source()
        config = self.config

        ordered = sorted(stores.values(), key=lambda s: s.record_count, reverse=True)
        total = 0
        for snapshot in ordered:
            agent_id = snapshot.agent_id
            try:
                with self.locks.hold(agent_id):
                    agent_store = self.store.load(agent_id)
                    if agent_store is None:
                        continue
                    count = agent_store.record_count
                    if count > config.aggressive_trim_threshold:
                        removed = self.trim_to(agent_store, config.aggressive_trim_target)
                    elif count > config.moderate_threshold:
                        removed = self.cleaner.expire_store(
                            agent_store, current_day, config.halved_retention_days
                        )
                    else:
                        removed = self.cleaner.expire_store(
                            agent_store, current_day, config.retention_days
                        )
                    if removed > 0:
                        self.store.save(agent_store)
                        total += removed
            except (StoreIOError, CorruptDataError) as e:
                logger.warning("Failed to aggressively optimize memories for agent %s: %s", agent_id, e)
        return total

    def perform_emergency_cleanup(self) -> int:
        """Force-remove everything older than the absolute maximum age."""
        logger.warning("Performing emergency memory cleanup")
        removed = self.cleaner.force_cleanup_older_than(self.config.max_record_age_days)
        if self.event_log:
            self.event_log.log("emergency_cleanup", removed=removed)
        return removed

    def get_memory_usage_statistics(self) -> MemoryUsageStatistics:
        """Summarize record counts, ages, and kinds across all agents."""
        try:
            stores = self._load_all()
        except StoreIOError as e:
            logger.error("Failed to get memory usage statistics: %s", e)
            stores = {}

        counts = [s.record_count for s in stores.values()]
        with_records = [c for c in counts if c > 0]
        timestamps = [r.timestamp for s in stores.values() for r in s.records]
        kinds = Counter(r.interaction_kind.value for s in stores.values() for r in s.records)
        total = sum(counts)

        return MemoryUsageStatistics(
            total_agents=len(stores),
            agents_with_records=len(with_records),
            total_records=total,
            average_records_per_agent=total / len(with_records) if with_records else 0.0,
            max_records_per_agent=max(counts, default=0),
            oldest_record_timestamp=min(timestamps, default=None),
            newest_record_timestamp=max(timestamps, default=None),
            records_by_kind=dict(kinds),
            max_total_records=self.config.max_total_records,
            last_optimization_time=self.last_optimization_time,
            total_records_optimized=self.total_records_optimized,
            total_agents_optimized=self.total_agents_optimized,
            last_optimization_result=self.last_optimization_result,
        )

    def is_memory_usage_high(self) -> bool:
        """True if global usage or any single agent is above 80% of its cap."""
        stats = self.get_memory_usage_statistics()
        return (
            stats.is_memory_usage_high
            or stats.max_records_per_agent > self.config.max_records_per_agent * HIGH_USAGE_RATIO
        )
