"""memkeeper - lifecycle management for long-lived agent memories."""

from .config import EngineConfig, config_from_env, load_config
from .engine import CleanupResult, EngineStatistics, HealthReport, MemoryEngine, wall_clock_day
from .memory import Actor, AgentMemoryStore, InteractionKind, MemoryRecord

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "AgentMemoryStore",
    "CleanupResult",
    "EngineConfig",
    "EngineStatistics",
    "HealthReport",
    "InteractionKind",
    "MemoryEngine",
    "MemoryRecord",
    "config_from_env",
    "load_config",
    "wall_clock_day",
]
