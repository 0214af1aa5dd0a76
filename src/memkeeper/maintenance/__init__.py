"""Background upkeep of agent memories: expiry, optimization, and backups."""

from .backup import BackupCoordinator, BackupInfo, BackupStatistics, RestoreSummary
from .expiry import AgentMemoryStatistics, DaySource, ExpiryCleaner, OverallMemoryStatistics
from .optimizer import MemoryUsageStatistics, UsageOptimizer, compare_importance, rank_by_importance
from .scheduler import DAY, HOUR, PeriodicTask, seconds_until_hour, seconds_until_next

__all__ = [
    "AgentMemoryStatistics",
    "BackupCoordinator",
    "BackupInfo",
    "BackupStatistics",
    "DAY",
    "DaySource",
    "ExpiryCleaner",
    "HOUR",
    "MemoryUsageStatistics",
    "OverallMemoryStatistics",
    "PeriodicTask",
    "RestoreSummary",
    "UsageOptimizer",
    "compare_importance",
    "rank_by_importance",
    "seconds_until_hour",
    "seconds_until_next",
]
