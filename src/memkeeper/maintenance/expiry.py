"""Age-based removal of expired memories."""

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

from ..config import EngineConfig
from ..logging import JSONLLogger
from ..memory import AgentMemoryStore, CorruptDataError, KeyedLock, RecordStore, StoreIOError

logger = logging.getLogger(__name__)

DaySource = Callable[[], int]


@dataclass
class AgentMemoryStatistics:
    """Retention view of one agent's store."""

    agent_id: str
    total_records: int
    expired_records: int
    oldest_day: int | None
    newest_day: int | None
    records_by_kind: dict[str, int] = field(default_factory=dict)
    unique_actors: int = 0

    @property
    def active_records(self) -> int:
        return self.total_records - self.expired_records


@dataclass
class OverallMemoryStatistics:
    """Retention view across every agent, plus sweep counters."""

    total_agents: int
    total_records: int
    expired_records: int
    last_cleanup_time: float | None
    last_cleanup_removed: int
    total_agents_processed: int
    total_records_removed: int

    @property
    def active_records(self) -> int:
        return self.total_records - self.expired_records


class ExpiryCleaner:
    """Removes records older than a retention window from every store.

    A failure on one agent is logged and the sweep moves on to the next.
    Stores are only written when something was removed, so repeated sweeps
    with nothing to expire perform no writes.
    """

    def __init__(
        self,
        store: RecordStore,
        locks: KeyedLock,
        day_source: DaySource,
        config: EngineConfig | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize the cleaner.

        Args:
            store: Persistence for agent stores.
            locks: Per-agent locks shared with the rest of the engine.
            day_source: Host-supplied current logical day.
            config: Engine configuration. Defaults are used if None.
            event_log: Optional structured event log.
        """
        self.store = store
        self.locks = locks
        self.day_source = day_source
        self.config = config or EngineConfig()
        self.event_log = event_log
        self._sweep_lock = threading.Lock()

        self.last_cleanup_time: float | None = None
        self.last_cleanup_removed = 0
        self.total_agents_processed = 0
        self.total_records_removed = 0

    def expire_store(self, agent_store: AgentMemoryStore, current_day: int, retention_days: int) -> int:
        """Remove expired records from an already-loaded store (no persistence)."""
        return agent_store.remove_expired(current_day, retention_days)

    def _sweep(self, event: str, current_day: int, retention_days: int) -> tuple[int, int]:
        """Expire records across every agent. Returns (removed, agents processed)."""
        try:
            agent_ids = self.store.list_ids()
        except StoreIOError as e:
            logger.error("Failed to list agents for %s: %s", event, e)
            return 0, 0

        removed_total = 0
        processed = 0
        for agent_id in sorted(agent_ids):
            try:
                with self.locks.hold(agent_id):
                    agent_store = self.store.load(agent_id)
                    if agent_store is None:
                        continue
                    removed = self.expire_store(agent_store, current_day, retention_days)
                    if removed > 0:
                        self.store.save(agent_store)
                        removed_total += removed
                        logger.debug("Removed %d expired records for agent %s", removed, agent_id)
                processed += 1
            except (StoreIOError, CorruptDataError, ValueError) as e:
                logger.warning("Failed to clean up memories for agent %s: %s", agent_id, e)

        return removed_total, processed

    def cleanup_expired(self, current_day: int, retention_days: int) -> int:
        """Remove every record with ``current_day - logical_day > retention_days``.

        Args:
            current_day: The current logical day.
            retention_days: Retention window in logical days.

        Returns:
            Number of records removed across all agents.
        """
        if retention_days < 0:
            raise ValueError("retention_days cannot be negative")

        with self._sweep_lock:
            start = time.monotonic()
            logger.info("Starting memory cleanup (day %d, retention %d)", current_day, retention_days)

            removed, processed = self._sweep("cleanup", current_day, retention_days)

            self.last_cleanup_time = time.time()
            self.last_cleanup_removed = removed
            self.total_agents_processed += processed
            self.total_records_removed += removed

            duration_ms = (time.monotonic() - start) * 1000
            if removed > 0:
                logger.info("Memory cleanup removed %d expired records from %d agents", removed, processed)
            else:
                logger.debug("Memory cleanup found no expired records")

            if self.event_log:
                self.event_log.log_sweep(
                    "cleanup", removed, processed, duration_ms, retention_days=retention_days
                )
            return removed

    def perform_automatic_cleanup(self) -> int:
        """Sweep with the configured retention and the host's current day."""
        return self.cleanup_expired(self.day_source(), self.config.retention_days)

    def cleanup_for_agent(self, agent_id: str, retention_days: int | None = None) -> int:
        """Expire records for a single agent.

        Returns:
            Number of records removed, 0 if the agent has no data.

        Raises:
            StoreIOError: If the agent's store cannot be read or written.
        """
        if not agent_id:
            raise ValueError("agent_id cannot be empty")
        if retention_days is None:
            retention_days = self.config.retention_days

        with self.locks.hold(agent_id):
            agent_store = self.store.load(agent_id)
            if agent_store is None:
                return 0

            removed = self.expire_store(agent_store, self.day_source(), retention_days)
            if removed > 0:
                self.store.save(agent_store)
                self.total_records_removed += removed
                logger.debug("Removed %d expired records for agent %s", removed, agent_id)
            return removed

    def force_cleanup_older_than(self, max_age_days: int) -> int:
        """Remove every record older than an absolute age, ignoring retention.

        Used for emergencies. A record aged exactly ``max_age_days`` is kept.

        Returns:
            Number of records removed across all agents.
        """
        if max_age_days < 0:
            raise ValueError("max_age_days cannot be negative")

        with self._sweep_lock:
            start = time.monotonic()
            logger.info("Force cleaning memories older than %d days", max_age_days)

            removed, processed = self._sweep("force_cleanup", self.day_source(), max_age_days)
            self.total_records_removed += removed

            logger.info("Force cleanup removed %d records", removed)
            if self.event_log:
                self.event_log.log_sweep(
                    "force_cleanup",
                    removed,
                    processed,
                    (time.monotonic() - start) * 1000,
                    max_age_days=max_age_days,
                )
            return removed

    def agent_statistics(
        self, agent_id: str, retention_days: int | None = None
    ) -> AgentMemoryStatistics | None:
        """Retention statistics for one agent, or None if it has no data."""
        if retention_days is None:
            retention_days = self.config.retention_days

        agent_store = self.store.load(agent_id)
        if agent_store is None:
            return None

        current_day = self.day_source()
        records = agent_store.records
        days = [r.logical_day for r in records]
        return AgentMemoryStatistics(
            agent_id=agent_id,
            total_records=len(records),
            expired_records=sum(1 for r in records if r.is_expired(current_day, retention_days)),
            oldest_day=min(days) if days else None,
            newest_day=max(days) if days else None,
            records_by_kind=dict(Counter(r.interaction_kind.value for r in records)),
            unique_actors=len({r.actor_id for r in records}),
        )

    def overall_statistics(self, retention_days: int | None = None) -> OverallMemoryStatistics:
        """Retention statistics across all agents."""
        if retention_days is None:
            retention_days = self.config.retention_days

        try:
            agent_ids = self.store.list_ids()
        except StoreIOError as e:
            logger.warning("Failed to list agents for statistics: %s", e)
            agent_ids = set()

        current_day = self.day_source()
        total = 0
        expired = 0
        for agent_id in agent_ids:
            try:
                agent_store = self.store.load(agent_id)
            except (StoreIOError, CorruptDataError) as e:
                logger.warning("Failed to get statistics for agent %s: %s", agent_id, e)
                continue
            if agent_store is None:
                continue
            total += agent_store.record_count
            expired += sum(1 for r in agent_store.records if r.is_expired(current_day, retention_days))

        return OverallMemoryStatistics(
            total_agents=len(agent_ids),
            total_records=total,
            expired_records=expired,
            last_cleanup_time=self.last_cleanup_time,
            last_cleanup_removed=self.last_cleanup_removed,
            total_agents_processed=self.total_agents_processed,
            total_records_removed=self.total_records_removed,
        )
