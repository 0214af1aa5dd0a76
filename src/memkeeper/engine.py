"""The memory engine: one object wiring every component together.

Hosts construct a single MemoryEngine at startup, call ``start()`` from
their event loop, and ``await shutdown()`` on exit.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .config import EngineConfig
from .conversation import ContextAssembler, ConversationLimiter, ConversationResult, ResponseGenerator
from .logging import JSONLLogger
from .maintenance import (
    DAY,
    HOUR,
    BackupCoordinator,
    BackupStatistics,
    ExpiryCleaner,
    MemoryUsageStatistics,
    OverallMemoryStatistics,
    PeriodicTask,
    UsageOptimizer,
    seconds_until_hour,
)
from .memory import (
    Actor,
    AgentMemoryStore,
    BackupError,
    InteractionKind,
    JsonRecordStore,
    KeyedLock,
    MemoryEngineError,
    RecordStore,
    now_ms,
)

logger = logging.getLogger(__name__)


def wall_clock_day() -> int:
    """Days since the Unix epoch, for hosts without their own day counter."""
    return int(time.time() // DAY)


@dataclass
class HealthReport:
    healthy: bool
    status: str
    checked_at: float
    usage_percentage: float
    emergency_removed: int = 0


@dataclass
class CleanupResult:
    """Outcome of a comprehensive cleanup."""

    success: bool
    records_removed: int
    agents_processed: int
    duration_ms: float
    report: str
    backup_path: Path | None = None


@dataclass
class EngineStatistics:
    overall: OverallMemoryStatistics
    usage: MemoryUsageStatistics
    backups: BackupStatistics
    last_health: HealthReport | None
    active_conversations: int


class MemoryEngine:
    """Owns the record store, the maintenance components, and their schedules.

    Example:
        engine = MemoryEngine(config, day_source=world.current_day, generator=generator)
        engine.start()
        engine.ensure_agent("blacksmith")
        result = await engine.process_conversation(
            "blacksmith", Actor("p-1", "Alex"), "Hello there"
        )
        await engine.shutdown()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        day_source: Callable[[], int] = wall_clock_day,
        generator: ResponseGenerator | None = None,
        store: RecordStore | None = None,
        event_log: JSONLLogger | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration. Defaults are used if None.
            day_source: Host-supplied current logical day.
            generator: Produces replies for conversations. Without one,
                conversations fail but maintenance still works.
            store: Record store. A JsonRecordStore in ``config.data_dir`` if None.
            event_log: Optional structured event log.
            clock: Current time in epoch milliseconds.
        """
        self.config = config or EngineConfig()
        self.day_source = day_source
        self.event_log = event_log
        self.store = store or JsonRecordStore(self.config.data_dir)
        self.locks = KeyedLock()

        self.cleaner = ExpiryCleaner(self.store, self.locks, day_source, self.config, event_log)
        self.optimizer = UsageOptimizer(
            self.store, self.locks, self.cleaner, day_source, self.config, event_log
        )
        self.backups = BackupCoordinator(self.store, self.locks, self.config, event_log)
        self.limiter = ConversationLimiter(self.config.max_concurrent_conversations)
        self.conversations = ContextAssembler(
            self.store,
            self.locks,
            day_source,
            generator,
            self.config,
            limiter=self.limiter,
            event_log=event_log,
            clock=clock,
        )

        if isinstance(self.store, JsonRecordStore):
            self.store.set_recovery(self.backups.recover_agent)

        self.last_health: HealthReport | None = None
        self._tasks = self._build_tasks()

    def _build_tasks(self) -> list[PeriodicTask]:
        config = self.config
        return [
            PeriodicTask(
                "memory-cleanup",
                self.cleaner.perform_automatic_cleanup,
                config.cleanup_interval_hours * HOUR,
            ),
            PeriodicTask(
                "memory-optimization",
                self.optimizer.perform_optimization,
                config.optimization_interval_hours * HOUR,
            ),
            PeriodicTask(
                "memory-backup",
                self.backups.perform_scheduled_backup,
                DAY,
                next_delay=lambda: seconds_until_hour(self.config.backup_hour, self.config.timezone),
            ),
            PeriodicTask(
                "memory-health-check",
                self.perform_health_check,
                config.health_check_interval_hours * HOUR,
            ),
        ]

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks)

    def start(self) -> None:
        """Start every maintenance schedule. Must be called from a running event loop."""
        for task in self._tasks:
            task.start()
        logger.info("Memory engine started with %d maintenance tasks", len(self._tasks))

    async def shutdown(self) -> None:
        """Stop the schedules, waiting for in-flight runs up to the configured timeout."""
        timeout = self.config.shutdown_timeout_seconds
        await asyncio.gather(*(task.stop(timeout) for task in self._tasks))
        logger.info("Memory engine stopped")

    def apply_config(self, config: EngineConfig) -> None:
        """Switch to a new configuration.

        Retention, caps, and the conversation limit take effect immediately.
        A new backup hour applies from the next scheduled snapshot.
        Directories and schedule intervals are fixed at construction.
        """
        self.config = config
        for component in (self.cleaner, self.optimizer, self.backups, self.conversations):
            component.config = config
        self.limiter.resize(config.max_concurrent_conversations)
        logger.info(
            "Configuration applied (retention %d days, %d concurrent conversations)",
            config.retention_days,
            config.max_concurrent_conversations,
        )

    def ensure_agent(self, agent_id: str) -> AgentMemoryStore:
        return self.conversations.ensure_agent(agent_id)

    def delete_agent(self, agent_id: str) -> bool:
        return self.conversations.delete_agent(agent_id)

    async def process_conversation(
        self,
        agent_id: str,
        actor: Actor,
        input_content: str,
        interaction_kind: InteractionKind = InteractionKind.VOICE,
        external_context: str | None = None,
    ) -> ConversationResult:
        return await self.conversations.process_conversation(
            agent_id, actor, input_content, interaction_kind, external_context
        )

    def perform_health_check(self) -> HealthReport:
        """Check usage and backups, running emergency cleanup if usage is critical.

        Unhealthy when usage is critical after self-correction, when there is
        no recent backup, or when the last backup failed.
        """
        healthy = True
        parts = []

        overall = self.cleaner.overall_statistics()
        if overall.total_records > 0:
            parts.append(
                f"Memory: {overall.total_records} memories "
                f"(last cleanup removed {overall.last_cleanup_removed})"
            )
        else:
            parts.append("Memory: No data")

        usage = self.optimizer.get_memory_usage_statistics()
        emergency_removed = 0
        if usage.is_memory_usage_critical:
            logger.warning(
                "Critical memory usage (%.1f%%), optimizing", usage.usage_percentage
            )
            self.optimizer.perform_optimization()
            usage = self.optimizer.get_memory_usage_statistics()
            if usage.is_memory_usage_critical:
                emergency_removed = self.optimizer.perform_emergency_cleanup()
                usage = self.optimizer.get_memory_usage_statistics()

        if usage.is_memory_usage_critical:
            healthy = False
            parts.append(f"CRITICAL memory usage ({usage.usage_percentage:.1f}%)")
        elif self.optimizer.is_memory_usage_high():
            parts.append(f"HIGH memory usage ({usage.usage_percentage:.1f}%)")
        else:
            parts.append("Memory usage OK")

        backup_stats = self.backups.get_backup_statistics()
        if backup_stats.has_recent_backup:
            parts.append("Backup: Recent backup available")
        else:
            healthy = False
            parts.append("Backup: No recent backup")
        if backup_stats.last_error:
            healthy = False
            parts.append(f"Backup error: {backup_stats.last_error}")

        status = ", ".join(parts)
        report = HealthReport(
            healthy=healthy,
            status=status,
            checked_at=time.time(),
            usage_percentage=usage.usage_percentage,
            emergency_removed=emergency_removed,
        )
        self.last_health = report

        if healthy:
            logger.info("Memory system health: %s", status)
        else:
            logger.warning("Memory system health issues: %s", status)
        if self.event_log:
            self.event_log.log_health(healthy, status)
        return report

    def _comprehensive_cleanup(self) -> CleanupResult:
        start = time.monotonic()
        processed_before = self.cleaner.total_agents_processed

        try:
            removed = self.cleaner.perform_automatic_cleanup()
            self.optimizer.perform_optimization()
        except MemoryEngineError as e:
            logger.error("Comprehensive cleanup failed: %s", e)
            return CleanupResult(
                success=False,
                records_removed=0,
                agents_processed=0,
                duration_ms=(time.monotonic() - start) * 1000,
                report=f"Cleanup failed: {e}",
            )

        report = (
            f"Memory cleanup: {removed} memories removed. "
            f"Optimization: {self.optimizer.last_optimization_result}. "
        )

        backup_path = None
        try:
            backup_path = self.backups.create_manual_backup("comprehensive_cleanup")
            report += f"Backup created: {backup_path.name}. "
        except BackupError as e:
            report += f"Backup failed: {e}. "

        return CleanupResult(
            success=True,
            records_removed=removed,
            agents_processed=self.cleaner.total_agents_processed - processed_before,
            duration_ms=(time.monotonic() - start) * 1000,
            report=report.strip(),
            backup_path=backup_path,
        )

    async def perform_comprehensive_cleanup(self) -> CleanupResult:
        """Expire, optimize, then back up.

        A failed backup is noted in the report but does not fail the result.
        """
        logger.info("Starting comprehensive memory cleanup")
        result = await asyncio.to_thread(self._comprehensive_cleanup)
        logger.info("Comprehensive cleanup completed: %s", result.report)
        if self.event_log:
            self.event_log.log(
                "comprehensive_cleanup",
                success=result.success,
                removed=result.records_removed,
                duration_ms=result.duration_ms,
                report=result.report,
            )
        return result

    def comprehensive_statistics(self) -> EngineStatistics:
        return EngineStatistics(
            overall=self.cleaner.overall_statistics(),
            usage=self.optimizer.get_memory_usage_statistics(),
            backups=self.backups.get_backup_statistics(),
            last_health=self.last_health,
            active_conversations=self.limiter.active,
        )
